"""reqfile CLI - run .http request scripts."""

import json
import logging
import sys
from pathlib import Path

import click

TOOL_HELP = """\
reqfile — Run the requests of .http files, in order.

\b
USAGE
─────
  reqfile api.http
  reqfile api.http users.http --env dev
  reqfile api.http --list

\b
FILE FORMAT
───────────
  Requests are separated by ### lines. Variables and directives go
  before the request line, headers follow it, the body comes last.

  \b
  @@host=https://api.example.com      # global, visible in every block
  @user=admin                         # local to this block
  # @name login
  # @status 200
  # @expect $.response.body.ok true
  POST {{host}}/login
  content-type: application/json

  {"user": "{{user}}"}

  ###

  GET {{host}}/me
  authorization: Bearer {{login.$.response.body.token}}

\b
PLACEHOLDERS
────────────
  \b
  {{name}}                       Local, global or environment variable
  {{login.$.response.body.id}}   Value from the response of request "login"
  {{$guid}} / {{$uuid}}          Random UUID v4
  {{$processEnv HOME}}           Process environment variable
  {{$randomInt 1 10}}            Random integer in [1, 10]
  {{$datetime iso8601}}          Now (iso8601, rfc1123 or "yyyy-MM-dd")
  {{$datetime rfc1123 -1 d}}     Shifted by y, M, w, d, h, m or s
  {{$timestamp}}                 Unix timestamp (seconds)

\b
DIRECTIVES (in # or // comments)
────────────────────────────────
  \b
  @name login                    Register the outcome for later requests
  @title Log in                  Report title
  @status 200 OK                 Expect status code (and text)
  @expect <path> <json>          Expect a value in the outcome
  @ignore <path>                 Redact a value in the reported outcome
  @ignoreHeaders ^x-             Redact matching response headers
  @throws [pattern]              Expect the request to fail
  @only / @skip                  Select requests

\b
ENVIRONMENTS
────────────
  http-client.env.json next to the .http file holds one object per
  environment; http-client.env.json.user is merged on top of it.
  Select one with --env, `env` in the config, or $REQFILE_ENV.

\b
CONFIG FILE FORMAT (.reqfile.yaml)
──────────────────────────────────
  \b
  defaults:
    env: dev                        # http-client environment name
    env_file: .env                  # dotenv file for $processEnv
    timeout: 30                     # seconds
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("files", nargs=-1, required=True, type=click.Path(dir_okay=False))
@click.option(
    "-e",
    "--env",
    "env_name",
    default=None,
    help="Environment from http-client.env.json. Default: config, then $REQFILE_ENV.",
)
@click.option(
    "--env-file",
    default=None,
    help="Dotenv file merged into the process environment.",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .reqfile.yaml in CWD.",
)
@click.option(
    "--timeout",
    type=int,
    default=None,
    help="Request timeout in seconds. Default: 30.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Include response headers and body in output.",
)
@click.option(
    "--raw",
    is_flag=True,
    default=False,
    help="Output the redacted outcomes as JSON.",
)
@click.option(
    "--list",
    "list_only",
    is_flag=True,
    default=False,
    help="List the parsed requests without sending them.",
)
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging.")
def main(files, env_name, env_file, config_file, timeout, verbose, raw, list_only, debug):
    """Run .http request scripts."""
    from reqfile.core import (
        DEFAULT_TIMEOUT,
        load_config,
        load_env,
        resolve_config_path,
        resolve_env_name,
    )
    from reqfile.errors import ConfigError

    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    # --- Load config ---
    try:
        config_path = resolve_config_path(config_file)
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)
    defaults = config.get("defaults", {})

    base_dir = config.get("_config_dir") or "."
    environ = load_env(env_file or defaults.get("env_file"), base_dir=base_dir)
    selected_env = resolve_env_name(env_name, config, environ)
    timeout = _resolve_timeout(timeout, defaults.get("timeout"), default=DEFAULT_TIMEOUT)

    ok = True
    raw_outcomes = []
    for file in files:
        if list_only:
            ok = _cmd_list(file) and ok
            continue
        file_ok, outcomes = _cmd_run(file, selected_env, environ, timeout, verbose, quiet=raw)
        ok = file_ok and ok
        raw_outcomes.extend(outcomes)

    if raw:
        click.echo(json.dumps(raw_outcomes, indent=2))

    if not ok:
        sys.exit(1)


def _parse(file):
    from reqfile.errors import ParseError
    from reqfile.parser import parse_file

    try:
        return parse_file(file)
    except ParseError as e:
        click.echo(f"ERROR: {file}: {e}", err=True)
    except OSError as e:
        click.echo(f"ERROR: cannot read {file}: {e.strerror}", err=True)
    return None


def _cmd_list(file) -> bool:
    from reqfile.parser import collect_globals, requests_of

    records = _parse(file)
    if records is None:
        return False

    pending = requests_of(records)
    click.echo(f"{file}: {len(pending)} request(s)")
    for request in pending:
        name = f"  [{request.name}]" if request.name else ""
        click.echo(f"  {request.line:>4}  {request.method:<6} {request.url}{name}")
    global_names = sorted(collect_globals(records))
    if global_names:
        click.echo(f"  globals: {', '.join(global_names)}")
    return True


def _cmd_run(file, env_name, environ, timeout, verbose, quiet=False):
    """Parse and run one file. Returns (ok, redacted outcomes)."""
    from reqfile.core import load_http_env
    from reqfile.errors import ConfigError
    from reqfile.executor import Runner
    from reqfile.filters import format_report

    records = _parse(file)
    if records is None:
        return False, []

    try:
        env = load_http_env(Path(file).resolve().parent, env_name)
    except ConfigError as e:
        click.echo(f"ERROR: {e}", err=True)
        return False, []

    runner = Runner(env=env, environ=environ, timeout=timeout)
    reports = runner.run(records)

    if not quiet:
        click.echo(f"{file}")
        for report in reports:
            click.echo(format_report(report, verbose=verbose))
        passed = sum(1 for r in reports if r.state == "passed")
        skipped = sum(1 for r in reports if r.state == "skipped")
        failed = len(reports) - passed - skipped
        click.echo(f"{passed} passed, {failed} failed, {skipped} skipped\n")

    outcomes = [
        {"title": r.title, "state": r.state, "outcome": r.redacted}
        for r in reports
        if r.redacted is not None
    ]
    return all(r.ok for r in reports), outcomes


def _resolve_timeout(*sources, default=30):
    """Return the first non-None timeout from sources, or default."""
    for source in sources:
        if source is not None:
            return int(source)
    return default
