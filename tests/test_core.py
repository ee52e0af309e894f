"""Tests for config resolution, environment files and scope building."""

import json
import logging

import pytest
import yaml

from reqfile import core
from reqfile.builtins import BuiltinEvaluator
from reqfile.errors import ConfigError
from reqfile.parser import Variable, parse


def _write_config(path, **defaults):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump({"defaults": defaults}))


def _write_json(path, data):
    path.write_text(json.dumps(data))


# ── resolve_config_path ─────────────────────────────────────────────────


class TestResolveConfigPath:
    def test_explicit_flag_takes_priority(self, tmp_project):
        explicit = tmp_project / "custom" / "my.yaml"
        _write_config(explicit, env="explicit")
        _write_config(tmp_project / ".reqfile.yaml", env="cwd")

        assert core.resolve_config_path(str(explicit)) == explicit.resolve()

    def test_explicit_flag_nonexistent_returns_none(self, tmp_project):
        """Explicit -c pointing to a missing file does not fall through."""
        _write_config(tmp_project / ".reqfile.yaml")
        assert core.resolve_config_path("/nonexistent/config.yaml") is None

    @pytest.mark.parametrize("name", [".reqfile.yaml", ".reqfile.yml", "reqfile.yaml", "reqfile.yml"])
    def test_cwd_variants(self, tmp_project, name):
        _write_config(tmp_project / name)
        assert core.resolve_config_path(None) == (tmp_project / name).resolve()

    def test_dotfile_wins_over_plain_name(self, tmp_project):
        _write_config(tmp_project / "reqfile.yaml")
        _write_config(tmp_project / ".reqfile.yaml")
        assert core.resolve_config_path(None) == (tmp_project / ".reqfile.yaml").resolve()

    def test_nothing_found(self, tmp_project):
        assert core.resolve_config_path(None) is None


# ── load_config ──────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_defaults_and_config_dir(self, tmp_path):
        path = tmp_path / "conf" / ".reqfile.yaml"
        _write_config(path, env="dev", timeout=5)
        config = core.load_config(path)
        assert config["defaults"] == {"env": "dev", "timeout": 5}
        assert config["_config_dir"] == path.parent.resolve()

    def test_missing_file(self, tmp_path):
        assert core.load_config(tmp_path / "nope.yaml") == {"defaults": {}, "_config_dir": None}
        assert core.load_config(None) == {"defaults": {}, "_config_dir": None}

    def test_empty_file(self, tmp_path):
        path = tmp_path / ".reqfile.yaml"
        path.write_text("")
        assert core.load_config(path)["defaults"] == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / ".reqfile.yaml"
        path.write_text("defaults: [unclosed\n")
        with pytest.raises(ConfigError, match="invalid config file"):
            core.load_config(path)


# ── load_env ─────────────────────────────────────────────────────────────


class TestLoadEnv:
    def test_os_environ_without_file(self, monkeypatch):
        monkeypatch.setenv("REQFILE_TEST_VAR", "os")
        assert core.load_env(None)["REQFILE_TEST_VAR"] == "os"

    def test_dotenv_overrides_os_environ(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REQFILE_TEST_VAR", "os")
        (tmp_path / ".env").write_text("REQFILE_TEST_VAR=dotenv\nTOKEN=abc\nEMPTY\n")
        env = core.load_env(".env", base_dir=tmp_path)
        assert env["REQFILE_TEST_VAR"] == "dotenv"
        assert env["TOKEN"] == "abc"
        assert "EMPTY" not in env

    def test_missing_file_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="reqfile.core"):
            core.load_env("missing.env", base_dir=tmp_path)
        assert "env file not found" in caplog.text


# ── resolve_env_name ─────────────────────────────────────────────────────


class TestResolveEnvName:
    CONFIG = {"defaults": {"env": "staging"}}

    def test_cli_wins(self):
        assert core.resolve_env_name("dev", self.CONFIG, {"REQFILE_ENV": "prod"}) == "dev"

    def test_config_before_environ(self):
        assert core.resolve_env_name(None, self.CONFIG, {"REQFILE_ENV": "prod"}) == "staging"

    def test_environ_fallback(self):
        assert core.resolve_env_name(None, {"defaults": {}}, {"REQFILE_ENV": "prod"}) == "prod"

    def test_none(self):
        assert core.resolve_env_name(None, {"defaults": {}}, {}) is None


# ── http-client.env.json ─────────────────────────────────────────────────


class TestHttpEnv:
    @pytest.fixture
    def env_dir(self, tmp_path):
        _write_json(
            tmp_path / core.HTTP_ENV_FILE,
            {
                "dev": {"host": "localhost", "port": 3000, "auth": {"user": "a"}},
                "prod": {"host": "api.example.com"},
            },
        )
        _write_json(
            tmp_path / core.HTTP_USER_ENV_FILE,
            {"dev": {"host": "127.0.0.1", "auth": {"password": "secret"}}},
        )
        return tmp_path

    def test_user_file_is_deep_merged(self, env_dir):
        envs = core.load_http_envs(env_dir)
        assert envs["dev"] == {
            "host": "127.0.0.1",
            "port": 3000,
            "auth": {"user": "a", "password": "secret"},
        }
        assert envs["prod"] == {"host": "api.example.com"}

    def test_flat_values(self, env_dir):
        assert core.load_http_env(env_dir, "dev") == {
            "host": "127.0.0.1",
            "port": "3000",
            "auth": '{"user": "a", "password": "secret"}',
        }

    def test_no_env_selected(self, env_dir):
        assert core.load_http_env(env_dir, None) == {}

    def test_unknown_env_warns(self, env_dir, caplog):
        with caplog.at_level(logging.WARNING, logger="reqfile.core"):
            assert core.load_http_env(env_dir, "qa") == {}
        assert "'qa' not found" in caplog.text

    def test_no_files(self, tmp_path):
        assert core.load_http_envs(tmp_path) == {}

    def test_invalid_json(self, tmp_path):
        (tmp_path / core.HTTP_ENV_FILE).write_text("{nope")
        with pytest.raises(ConfigError, match="invalid environment file"):
            core.load_http_envs(tmp_path)

    def test_top_level_must_be_object(self, tmp_path):
        _write_json(tmp_path / core.HTTP_ENV_FILE, ["dev"])
        with pytest.raises(ConfigError, match="must hold a JSON object"):
            core.load_http_envs(tmp_path)

    def test_environment_must_be_object(self, tmp_path):
        _write_json(tmp_path / core.HTTP_ENV_FILE, {"dev": "localhost"})
        with pytest.raises(ConfigError, match="'dev' must be a JSON object"):
            core.load_http_env(tmp_path, "dev")


class TestDeepMerge:
    def test_nested(self):
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        assert core.deep_merge(base, {"a": {"c": 20, "e": 5}, "d": {"x": 1}}) == {
            "a": {"b": 1, "c": 20, "e": 5},
            "d": {"x": 1},
        }
        assert base == {"a": {"b": 1, "c": 2}, "d": 3}


# ── build_scope ──────────────────────────────────────────────────────────


class TestBuildScope:
    def test_layers(self):
        request = parse("@a=1\nGET https://example.com")[0]
        globals_ = {"g": Variable("2", True)}
        builtins = BuiltinEvaluator(environ={})
        scope = core.build_scope(request, {"e": "3"}, globals_, {}, builtins)
        assert scope.variables == {"a": Variable("1")}
        assert scope.global_variables is globals_
        assert scope.env == {"e": "3"}
        assert scope.builtins is builtins

    def test_default_builtins(self):
        request = parse("GET https://example.com")[0]
        scope = core.build_scope(request, {}, {}, {})
        assert isinstance(scope.builtins, BuiltinEvaluator)
