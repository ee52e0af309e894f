"""reqfile executor - HTTP request execution and sequential runs."""

import json
import logging
import re
import time
from typing import Any

import requests

from reqfile.builtins import BuiltinEvaluator
from reqfile.core import DEFAULT_TIMEOUT, build_scope
from reqfile.errors import ParseError, ReqfileError, TransportError
from reqfile.filters import IGNORED, evaluate_expectation, redact
from reqfile.parser import Block, Request, Variable, collect_globals, requests_of
from reqfile.resolver import resolve_request

logger = logging.getLogger(__name__)

# Response headers that change on every call.
DEFAULT_IGNORED_HEADERS = ("age", "date")


class RequestResult:
    """Result of an HTTP request."""

    def __init__(self):
        self.status_code: int = 0
        self.status_text: str = ""
        self.headers: list[list[str]] = []
        self.body: Any = None  # parsed JSON, text, or hex for binary content
        self.elapsed_ms: float = 0
        self.error: str | None = None
        self.raw_text: str = ""


def _merge_headers(headers: list | None) -> dict[str, str]:
    """Collapse repeated header names into one comma-separated value."""
    merged: dict[str, str] = {}
    for key, value in headers or []:
        merged[key] = f"{merged[key]}, {value}" if key in merged else value
    return merged


def _decode_response_body(resp: requests.Response) -> Any:
    content_type = resp.headers.get("content-type", "")
    if content_type.startswith("text/"):
        return resp.text
    if "json" in content_type:
        try:
            return json.loads(resp.text or "null")
        except (json.JSONDecodeError, ValueError):
            return resp.text
    return resp.content.hex() if resp.content else None


def execute_request(
    method: str,
    url: str,
    headers: list | None = None,
    body: str | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> RequestResult:
    """Execute an HTTP request and return structured result.

    - text/* responses are kept as text, JSON is decoded, anything else
      is hex-encoded
    - GET and HEAD never send a body
    - Never raises - always returns RequestResult with error field set
    """
    result = RequestResult()
    method = method.upper()

    try:
        start = time.monotonic()
        resp = requests.request(
            method=method,
            url=url,
            headers=_merge_headers(headers),
            data=body.encode("utf-8") if body and method not in ("GET", "HEAD") else None,
            timeout=timeout,
            allow_redirects=True,
        )
        result.elapsed_ms = (time.monotonic() - start) * 1000

        result.status_code = resp.status_code
        result.status_text = resp.reason or ""
        result.headers = [[k.lower(), v] for k, v in resp.headers.items()]
        result.raw_text = resp.text
        result.body = _decode_response_body(resp)

    except requests.exceptions.Timeout:
        result.error = f"Request timed out after {timeout}s"
    except requests.exceptions.ConnectionError as e:
        result.error = f"Connection error: {e}"
    except requests.exceptions.RequestException as e:
        result.error = f"Request failed: {e}"

    return result


# ── Outcomes ─────────────────────────────────────────────────────────────


class Outcome:
    """A resolved request together with the response it received."""

    def __init__(self, request: dict, response: dict, elapsed_ms: float = 0):
        self.request = request
        self.response = response
        self.elapsed_ms = elapsed_ms

    @property
    def status(self) -> int:
        return self.response["status"]

    def to_dict(self) -> dict:
        return {"request": self.request, "response": self.response}


def decode_body(request: Request, body: str | None) -> Any:
    """Resolved request body as recorded in the outcome.

    JSON requests are decoded; a body that is not valid JSON once its
    placeholders are resolved raises ParseError at the request line.
    """
    if not body:
        return None
    if not request.is_json():
        return body
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON body: {e.msg}", request.line, body) from e


def build_outcome(
    request: Request,
    resolved: dict,
    result: RequestResult,
    body: Any = None,
) -> Outcome:
    sent: dict[str, Any] = {
        "method": resolved["method"],
        "url": resolved["url"],
        "headers": resolved["headers"],
    }
    if body is None:
        body = decode_body(request, resolved["body"])
    if body is not None:
        sent["body"] = body

    response: dict[str, Any] = {
        "status": result.status_code,
        "statusText": result.status_text,
        "headers": result.headers,
    }
    if result.body not in (None, ""):
        response["body"] = result.body
    return Outcome(sent, response, result.elapsed_ms)


def redact_outcome(request: Request, outcome: Outcome) -> dict:
    """Copy of the outcome with ignored paths and volatile headers replaced."""
    data = redact(outcome.to_dict(), request.meta.value("ignore", []))
    pattern = request.meta.value("ignoreHeaders")
    regex = re.compile(pattern) if pattern else None
    for pair in data["response"]["headers"]:
        if pair[0] in DEFAULT_IGNORED_HEADERS or (regex and regex.search(pair[0])):
            pair[1] = IGNORED
    return data


# ── Runner ───────────────────────────────────────────────────────────────


class RequestReport:
    """What happened to one request of a run."""

    def __init__(self, request: Request, title: str):
        self.request = request
        self.title = title
        self.state: str = "passed"  # passed | failed | skipped | error
        self.outcome: Outcome | None = None
        self.redacted: dict | None = None
        self.failures: list[str] = []
        self.error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state in ("passed", "skipped")


class Runner:
    """Runs the requests of a document one at a time, in order.

    Named outcomes are shared across every ``run`` call of the same runner,
    so several documents can be chained by running them in sequence.
    """

    def __init__(
        self,
        env: dict[str, str] | None = None,
        environ: dict[str, str] | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        send=None,
        builtins: BuiltinEvaluator | None = None,
    ):
        self.env = dict(env or {})
        self.timeout = timeout
        self.send = send
        self.builtins = builtins or BuiltinEvaluator(environ=environ)
        self.outcomes: dict[str, Outcome] = {}

    def run(self, records: list[Block]) -> list[RequestReport]:
        global_variables = collect_globals(records)
        pending = requests_of(records)
        focused = any(r.meta.value("only") for r in pending)

        reports: list[RequestReport] = []
        for request in pending:
            if request.meta.value("skip") or (focused and not request.meta.value("only")):
                report = RequestReport(request, self._title(request))
                report.state = "skipped"
                logger.info("skipped %s", report.title)
                reports.append(report)
                continue
            reports.append(self.run_request(request, global_variables))
        return reports

    def run_request(
        self,
        request: Request,
        global_variables: dict[str, Variable] | None = None,
    ) -> RequestReport:
        report = RequestReport(request, self._title(request))
        scope = build_scope(request, self.env, global_variables or {}, self.outcomes, self.builtins)
        try:
            resolved = resolve_request(request, scope)
            report.title = self._title(request, resolved["url"])
            body = decode_body(request, resolved["body"])
            report.outcome = self.execute(request, resolved, body)
            report.redacted = redact_outcome(request, report.outcome)
            for path, expected in request.expectations():
                passed, message = evaluate_expectation(report.outcome.to_dict(), path, expected)
                if not passed:
                    report.failures.append(message)
        except ReqfileError as e:
            report.error = str(e)
        return self._settle(report, request.meta.value("throws"))

    def execute(self, request: Request, resolved: dict, body: Any = None) -> Outcome:
        """Send a resolved request and register its outcome under its name."""
        send = self.send or execute_request
        result = send(
            resolved["method"],
            resolved["url"],
            headers=resolved["headers"],
            body=resolved["body"],
            timeout=self.timeout,
        )
        if result.error:
            raise TransportError(result.error)
        outcome = build_outcome(request, resolved, result, body)
        if request.name:
            self.outcomes[request.name] = outcome
            logger.debug("registered outcome %r", request.name)
        return outcome

    @staticmethod
    def _title(request: Request, url: str | None = None) -> str:
        return request.meta.value("title") or f"{request.method} {url or request.url}"

    @staticmethod
    def _settle(report: RequestReport, throws: str | bool | None) -> RequestReport:
        problem = report.error or "\n".join(report.failures)
        if not throws:
            report.state = "error" if report.error else "failed" if report.failures else "passed"
            return report

        if not problem:
            report.state = "failed"
            report.failures.append("expected the request to fail but it succeeded")
        elif throws is not True and not re.search(throws, problem):
            report.state = "failed"
            report.failures = [f"failure did not match /{throws}/: {problem}"]
            report.error = None
        else:
            report.state = "passed"
            report.failures = []
            report.error = None
        return report
