"""reqfile core - config loading, environment files, scope building."""

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values

from reqfile.builtins import BuiltinEvaluator
from reqfile.errors import ConfigError
from reqfile.parser import Request, Variable
from reqfile.resolver import Scope

logger = logging.getLogger(__name__)

CWD_CONFIG_CANDIDATES = [
    ".reqfile.yaml",
    ".reqfile.yml",
    "reqfile.yaml",
    "reqfile.yml",
]

HTTP_ENV_FILE = "http-client.env.json"
HTTP_USER_ENV_FILE = "http-client.env.json.user"

ENV_NAME_VAR = "REQFILE_ENV"
DEFAULT_TIMEOUT = 30


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (hard: no fallthrough if missing)
      2. .reqfile.yaml (variants) in CWD
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty defaults if not found.

    Stores '_config_dir' in the returned dict so env_file can be resolved
    relative to the config file.
    """
    if config_path is None:
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "_config_dir": None}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e
    logger.debug("loaded config %s", path)
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def load_env(env_file: str | None, base_dir: str | Path = ".") -> dict[str, str]:
    """Load .env file and merge with os.environ.

    The result is the process environment seen by ``$processEnv``; .env
    values take precedence over os.environ.
    """
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
        else:
            logger.warning("env file not found: %s", dotenv_path)
    return env


def resolve_env_name(
    cli_env: str | None,
    config: dict,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Pick the http-client environment: --env, then config, then $REQFILE_ENV."""
    if cli_env:
        return cli_env
    configured = config.get("defaults", {}).get("env")
    if configured:
        return configured
    environ = os.environ if environ is None else environ
    return environ.get(ENV_NAME_VAR) or None


def deep_merge(base: dict, override: Mapping) -> dict:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _read_json(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid environment file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"environment file {path} must hold a JSON object")
    logger.debug("loaded environment file %s", path)
    return data


def load_http_envs(directory: str | Path) -> dict[str, Any]:
    """All environments from http-client.env.json, .user file merged on top."""
    directory = Path(directory)
    return deep_merge(
        _read_json(directory / HTTP_ENV_FILE),
        _read_json(directory / HTTP_USER_ENV_FILE),
    )


def load_http_env(directory: str | Path, env_name: str | None) -> dict[str, str]:
    """Flat ``{key: value}`` map of one environment (empty if unknown)."""
    if not env_name:
        return {}
    envs = load_http_envs(directory)
    selected = envs.get(env_name)
    if selected is None:
        logger.warning("environment %r not found in %s", env_name, directory)
        return {}
    if not isinstance(selected, dict):
        raise ConfigError(f"environment {env_name!r} must be a JSON object")
    return {k: v if isinstance(v, str) else json.dumps(v) for k, v in selected.items()}


def build_scope(
    request: Request,
    env: Mapping[str, str],
    global_variables: Mapping[str, Variable],
    outcomes: Mapping[str, Any],
    builtins: BuiltinEvaluator | None = None,
) -> Scope:
    """Scope for one request: its own variables plus the shared layers."""
    return Scope(
        env=env,
        global_variables=global_variables,
        variables=request.variables,
        outcomes=outcomes,
        builtins=builtins or BuiltinEvaluator(),
    )
