"""reqfile filters - path queries over outcomes, redaction, report output."""

from __future__ import annotations

import copy
import json
import re
from typing import Any

from reqfile.errors import QueryError

# ---------------------------------------------------------------------------
# Segment types returned by parse_path:
#   str              → dict key
#   int              → list index (supports negative)
#   None             → every child (``*`` / ``[*]``)
#   (start, stop)    → Python-style slice  e.g. [2:], [:-1], [1:3]
#   DESCEND          → the node itself and all of its descendants (``..``)
# ---------------------------------------------------------------------------

DESCEND = object()
IGNORED = "<ignored>"

_INT_RE = re.compile(r"^-?\d+$")
_SLICE_RE = re.compile(r"^(-?\d*):(-?\d*)$")
_TOKEN_RE = re.compile(
    r"""
      \.\.(\*|[^.\[\]]+)?                          # ..key / ..* / ..[...]
    | \.(\*|[^.\[\]]+)                             # .key / .*
    | \[\s*(?:'([^']*)'|"([^"]*)"|([^\]]*?))\s*\]  # ['key'] / [0] / [1:2] / [*]
    """,
    re.VERBOSE,
)

_MISSING = object()


def parse_path(expr: str) -> list[Any]:
    """Parse a query path into typed segments.

    The leading ``$`` is optional, so ``response.status`` and
    ``$.response.status`` are the same query:

      $.body.id               → key, key
      $.items[0].id           → key, 0, key
      $.items[-1]             → key, -1
      $.items[*].id           → key, iter, key
      $.items[1:3]            → key, (1, 3)
      $..id                   → descend, key
      $.headers['x-id']       → key, key
      $.body.items.2          → key, key, 2 (numeric dot segment = index)
    """
    text = expr.strip()
    if text.startswith("$"):
        text = text[1:]
    elif text and not text.startswith((".", "[")):
        text = "." + text

    segments: list[Any] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m:
            raise QueryError(f"invalid query path: {expr}")
        pos = m.end()
        if m.group(0).startswith(".."):
            segments.append(DESCEND)
            if m.group(1) is not None:
                segments.append(_classify_name(m.group(1)))
        elif m.group(2) is not None:
            segments.append(_classify_name(m.group(2)))
        elif m.group(3) is not None or m.group(4) is not None:
            segments.append(m.group(3) if m.group(3) is not None else m.group(4))
        else:
            segments.append(_classify_bracket(m.group(5).strip()))
    return segments


def _classify_name(name: str) -> str | int | None:
    name = name.strip()
    if name == "*":
        return None
    if _INT_RE.match(name):
        return int(name)
    return name


def _classify_bracket(content: str) -> str | int | tuple[int | None, int | None] | None:
    """Classify the contents of a single unquoted [...] bracket."""
    if not content or content == "*":
        return None

    sm = _SLICE_RE.match(content)
    if sm:
        start = int(sm.group(1)) if sm.group(1) else None
        stop = int(sm.group(2)) if sm.group(2) else None
        return (start, stop)

    if _INT_RE.match(content):
        return int(content)

    # Non-numeric → dict key
    return content


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def _children(value: Any) -> list[tuple[str | int, Any]]:
    if isinstance(value, dict):
        return list(value.items())
    if isinstance(value, list | tuple):
        return list(enumerate(value))
    return []


def _descendants(path: list, value: Any) -> list[tuple[list, Any]]:
    found = [(path, value)]
    for key, child in _children(value):
        found.extend(_descendants(path + [key], child))
    return found


def _step(path: list, value: Any, seg: Any) -> list[tuple[list, Any]]:
    """Apply one segment to one node, returning the selected (path, value) pairs."""
    if seg is DESCEND:
        return _descendants(path, value)
    if seg is None:
        return [(path + [k], v) for k, v in _children(value)]
    if isinstance(seg, tuple):
        if not isinstance(value, list | tuple):
            return []
        sl = slice(*seg)
        indices = range(*sl.indices(len(value)))
        return [(path + [i], value[i]) for i in indices]
    if isinstance(seg, int):
        if isinstance(value, list | tuple):
            idx = seg if seg >= 0 else len(value) + seg
            if 0 <= idx < len(value):
                return [(path + [idx], value[idx])]
            return []
        seg = str(seg)
    if isinstance(value, dict) and seg in value:
        return [(path + [seg], value[seg])]
    return []


def _select(data: Any, expr: str) -> list[tuple[list, Any]]:
    nodes: list[tuple[list, Any]] = [([], data)]
    for seg in parse_path(expr):
        nodes = [selected for path, value in nodes for selected in _step(path, value, seg)]
    return nodes


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def query(data: Any, expr: str) -> list[Any]:
    """Every value matched by ``expr``, in document order."""
    return [value for _, value in _select(data, expr)]


def paths(data: Any, expr: str) -> list[list[Any]]:
    """Paths (``["$", key, index, ...]``) of every match of ``expr``."""
    return [["$", *path] for path, _ in _select(data, expr)]


def query_value(data: Any, expr: str) -> Any:
    """Single-value view of a query.

    No match gives None, one match its value, several the list of values.
    """
    results = query(data, expr)
    if not results:
        return None
    return results[0] if len(results) == 1 else results


def set_at_path(data: Any, path: list[Any], value: Any) -> None:
    """Replace the value at a path returned by :func:`paths`."""
    keys = path[1:] if path and path[0] == "$" else path
    if not keys:
        return
    current = data
    for key in keys[:-1]:
        current = current[key]
    current[keys[-1]] = value


def redact(data: Any, exprs: list[str], placeholder: Any = IGNORED) -> Any:
    """Deep copy of ``data`` with every match of ``exprs`` replaced."""
    result = copy.deepcopy(data)
    for expr in exprs:
        for path in paths(result, expr):
            set_at_path(result, path, placeholder)
    return result


# ---------------------------------------------------------------------------
# Expectations
# ---------------------------------------------------------------------------


def strict_equal(a: Any, b: Any) -> bool:
    """JSON equality: booleans never equal numbers, 1 equals 1.0."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, int | float) and isinstance(b, int | float):
        return a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(strict_equal(a[k], b[k]) for k in a)
    if isinstance(a, list | tuple) and isinstance(b, list | tuple):
        return len(a) == len(b) and all(strict_equal(x, y) for x, y in zip(a, b, strict=True))
    return type(a) is type(b) and a == b


def evaluate_expectation(data: Any, path: str, expected: Any) -> tuple[bool, str]:
    """Compare the value at ``path`` with ``expected``.

    Returns (passed, message).
    """
    results = query(data, path)
    if not results:
        actual: Any = _MISSING
    else:
        actual = results[0] if len(results) == 1 else results

    label = f"{path} == {json.dumps(expected)}"
    if actual is not _MISSING and strict_equal(actual, expected):
        return (True, f"EXPECT PASSED: {label}")
    shown = "(absent)" if actual is _MISSING else _summarize(actual)
    return (False, f"EXPECT FAILED: {label} (actual: {shown})")


def _summarize(value) -> str:
    """Short string representation of a value for report output."""
    s = json.dumps(value) if isinstance(value, dict | list) else json.dumps(value, default=str)
    if len(s) > 80:
        return s[:77] + "..."
    return s


# ---------------------------------------------------------------------------
# Report output
# ---------------------------------------------------------------------------


def format_report(report, verbose: bool = False) -> str:
    """Format one request report for CLI output.

    One status line, then failure details; ``verbose`` adds the response
    headers and body.
    """
    label = report.state.upper()
    if label == "PASSED":
        label = "PASS"
    elif label == "FAILED":
        label = "FAIL"
    elif label == "SKIPPED":
        label = "SKIP"

    line = f"{label:<5} {report.title}"
    outcome = report.outcome
    if outcome is not None:
        line += f"  {outcome.status} ({int(outcome.elapsed_ms)}ms)"
    lines = [line]

    if report.error:
        lines.append(f"  ERROR: {report.error}")
    for message in report.failures:
        lines.append(f"  {message}")

    if verbose and outcome is not None:
        data = report.redacted or outcome.to_dict()
        response = data["response"]
        if response.get("headers"):
            lines.append("  HEADERS:")
            for key, value in response["headers"]:
                lines.append(f"    {key}: {value}")
        if "body" in response:
            lines.append("  BODY:")
            body = response["body"]
            text = json.dumps(body, indent=2) if isinstance(body, dict | list) else str(body)
            lines.extend(f"    {part}" for part in text.splitlines())

    return "\n".join(lines)
