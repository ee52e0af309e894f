"""reqfile parser - .http request scripts into request records.

A document is a sequence of blocks separated by ``###`` lines::

    # @name login
    @@host=https://api.example.com
    @user=admin
    POST {{host}}/login
    content-type: application/json

    {"user": "{{user}}"}

    ###

    GET {{host}}/me
    authorization: Bearer {{login.$.response.body.token}}

Each block yields at most one ``Request``. A block that only declares
variables or directives yields a bare ``Block``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from reqfile.cursor import SourceCursor
from reqfile.errors import ParseError

logger = logging.getLogger(__name__)

SEPARATOR_RE = re.compile(r"^\s*###\s*$")
REQUEST_LINE_RE = re.compile(r"^\s*([A-Z]+)\s+(.*)$")
HEADER_RE = re.compile(r"^\s*([\w-]+)\s*:(.*)$")
VARIABLE_RE = re.compile(r"^\s*(@@?[A-Za-z_]\w*)\s*(?:=(.*))?$")
COMMENT_RE = re.compile(r"^\s*(?:#(?!#)|//)(.*)$")
DIRECTIVE_RE = re.compile(r"^\s*(@@?[A-Za-z_]\w*)(?:\s+(.*))?$")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_]\w*$")
STATUS_RE = re.compile(r"^(\d{3})(?:\s+(.*))?$")


# ---------------------------------------------------------------------------
# Directive values
#
# Every converter receives the raw directive value (``True`` when the
# directive has none) and returns the typed value, or raises ValueError.
# Directives missing from the table (``title``, custom ones) keep the raw
# value.
# ---------------------------------------------------------------------------


def _as_name(value: str | bool) -> str:
    if value is True or not IDENTIFIER_RE.match(value):
        raise ValueError(f"invalid request name: {value}")
    return value


def _as_flag(value: str | bool) -> bool:
    if value is True:
        return True
    lowered = value.lower()
    if lowered in ("true", "yes", "1"):
        return True
    if lowered in ("false", "no", "0"):
        return False
    raise ValueError(f"expected a boolean but found: {value}")


def _as_expectation(value: str | bool) -> tuple[str, Any]:
    parts = value.split(None, 1) if value is not True else []
    if len(parts) != 2:
        raise ValueError("expect needs a query path and a JSON value")
    path, literal = parts
    try:
        return path, json.loads(literal)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON value for {path}: {literal}") from e


def _as_status(value: str | bool) -> tuple[int, str | None]:
    m = STATUS_RE.match(value) if value is not True else None
    if not m:
        raise ValueError(f"expected a status code but found: {value}")
    return int(m.group(1)), (m.group(2) or "").strip() or None


def _as_path(value: str | bool) -> str:
    if value is True:
        raise ValueError("expected a query path")
    return value


def _as_pattern(value: str | bool) -> str:
    if value is True:
        raise ValueError("expected a regular expression")
    try:
        re.compile(value)
    except re.error as e:
        raise ValueError(f"invalid regular expression {value}: {e}") from e
    return value


def _as_throws(value: str | bool) -> str | bool:
    return True if value is True else _as_pattern(value)


DIRECTIVE_TYPES = {
    "name": _as_name,
    "only": _as_flag,
    "skip": _as_flag,
    "expect": _as_expectation,
    "status": _as_status,
    "ignore": _as_path,
    "ignoreHeaders": _as_pattern,
    "throws": _as_throws,
}

ACCUMULATIVE_DIRECTIVES = frozenset({"expect", "ignore"})
SINGLE_DIRECTIVES = frozenset({"name"})


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Variable:
    value: str | bool
    global_: bool = False

    def to_dict(self) -> dict:
        return {"value": self.value, "global": self.global_}


@dataclass
class MetaEntry:
    value: Any
    global_: bool = False

    def to_dict(self) -> dict:
        if isinstance(self.value, list):
            return {"value": [list(v) if isinstance(v, tuple) else v for v in self.value]}
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"value": value, "global": self.global_}


class MetaMap(dict):
    """Directive name -> MetaEntry, with a fixed accumulation policy.

    ``expect`` and ``ignore`` collect every occurrence in declaration order,
    ``name`` may only be declared once, anything else keeps the last value.
    """

    def add(self, name: str, raw: str | bool, global_: bool = False) -> None:
        convert = DIRECTIVE_TYPES.get(name)
        value = convert(raw) if convert else raw
        if name in ACCUMULATIVE_DIRECTIVES:
            self.setdefault(name, MetaEntry([])).value.append(value)
            return
        if name in SINGLE_DIRECTIVES and name in self:
            raise ValueError(f'only a single "{name}" request variable is allowed per request')
        self[name] = MetaEntry(value, global_)

    def value(self, name: str, default: Any = None) -> Any:
        entry = self.get(name)
        return entry.value if entry is not None else default

    def to_dict(self) -> dict:
        return {k: v.to_dict() for k, v in self.items()}


@dataclass
class Block:
    """Variables and directives of one ``###`` segment."""

    variables: dict[str, Variable] = field(default_factory=dict)
    meta: MetaMap = field(default_factory=MetaMap)
    line: int = 0

    is_request = False

    @property
    def name(self) -> str | None:
        return self.meta.value("name")

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"line": self.line}
        if self.variables:
            data["variables"] = {k: v.to_dict() for k, v in self.variables.items()}
        if self.meta:
            data["meta"] = self.meta.to_dict()
        return data


@dataclass
class Request(Block):
    method: str = ""
    url: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: str | None = None
    body_json: Any = None

    is_request = True

    def header(self, name: str) -> str | None:
        """First header value with the given name (case-insensitive)."""
        lower = name.lower()
        for key, value in self.headers:
            if key.lower() == lower:
                return value
        return None

    def is_json(self) -> bool:
        content_type = self.header("content-type")
        return content_type is not None and "json" in content_type.lower()

    def expectations(self) -> list[tuple[str, Any]]:
        """``expect`` pairs followed by those implied by ``status``."""
        pairs = list(self.meta.value("expect", []))
        status = self.meta.value("status")
        if status:
            code, text = status
            pairs.append(("$.response.status", code))
            if text:
                pairs.append(("$.response.statusText", text))
        return pairs

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["method"] = self.method
        data["url"] = self.url
        if self.headers:
            data["headers"] = [[k, v] for k, v in self.headers]
        if self.body is not None:
            data["body"] = self.body
        return data


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class DocumentParser:
    """Single forward pass over a document; no backtracking."""

    def __init__(self, text: str | None):
        self.cursor = SourceCursor(text)

    def parse(self) -> list[Block]:
        records: list[Block] = []
        while not self.cursor.at_end():
            block = Block(line=self.cursor.line_number())
            self._skip(block)
            self._variables(block)

            line = self.cursor.current_line()
            if line is None or SEPARATOR_RE.match(line):
                self.cursor.consume_line()
                if block.variables or block.meta:
                    records.append(block)
                continue

            records.append(self._request(block))
        return records

    def _fail(self, message: str, line_number: int | None = None, text: str | None = None):
        if line_number is None:
            line_number = self.cursor.line_number()
            text = self.cursor.current_line()
        raise ParseError(message, line_number, text)

    def _skip(self, block: Block) -> None:
        """Discard blank lines and comments, collecting directives."""
        while not self.cursor.at_end():
            line = self.cursor.current_line()
            if not line:
                self.cursor.consume_line()
                continue
            m = COMMENT_RE.match(line)
            if not m:
                return
            line_number = self.cursor.line_number()
            self.cursor.consume_line()
            directive = DIRECTIVE_RE.match(m.group(1))
            if not directive:
                continue
            marker, raw = directive.group(1), directive.group(2)
            value = raw.strip() if raw and raw.strip() else True
            try:
                block.meta.add(marker.lstrip("@"), value, global_=marker.startswith("@@"))
            except ValueError as e:
                self._fail(str(e), line_number, line)

    def _variables(self, block: Block) -> None:
        while not self.cursor.at_end():
            m = VARIABLE_RE.match(self.cursor.current_line())
            if not m:
                return
            self.cursor.consume_line()
            marker, raw = m.group(1), m.group(2)
            value = raw.strip() if raw is not None else True
            block.variables[marker.lstrip("@")] = Variable(value, marker.startswith("@@"))
            self._skip(block)

    def _request(self, block: Block) -> Request:
        line = self.cursor.current_line()
        m = REQUEST_LINE_RE.match(line)
        if not m:
            self._fail(f"method + url expected but found: {line}")
        request = Request(
            variables=block.variables,
            meta=block.meta,
            line=self.cursor.line_number(),
            method=m.group(1),
            url=m.group(2).strip(),
        )
        self.cursor.consume_line()
        request.headers = self._headers()
        while self.cursor.is_blank():
            self.cursor.consume_line()
        body_line = self._body(request)
        if request.body is not None and request.is_json() and "{{" not in request.body:
            try:
                request.body_json = json.loads(request.body)
            except json.JSONDecodeError as e:
                self._fail(f"invalid JSON body: {e.msg}", body_line + e.lineno - 1, request.body)
        # Separator closing this block, if any.
        self.cursor.consume_line()
        logger.debug("parsed %s %s (line %d)", request.method, request.url, request.line)
        return request

    def _is_comment(self, offset: int) -> bool:
        line = self.cursor.peek(offset)
        return line is not None and bool(COMMENT_RE.match(line))

    def _headers(self) -> list[tuple[str, str]]:
        headers: list[tuple[str, str]] = []
        while not self.cursor.at_end():
            # Lookahead to the next header. Comments count as part of the
            # header section only until the first blank line; after it
            # they start the body.
            offset = 0
            seen_blank = False
            while True:
                if self.cursor.is_blank(offset):
                    seen_blank = True
                elif seen_blank or not self._is_comment(offset):
                    break
                offset += 1
            line = self.cursor.peek(offset)
            m = HEADER_RE.match(line) if line is not None else None
            if not m:
                break
            for _ in range(offset + 1):
                self.cursor.consume_line()
            headers.append((m.group(1).strip(), m.group(2).strip()))
        return headers

    def _body(self, request: Request) -> int:
        """Read the body into ``request``; return the line its text starts on.

        Every line up to the separator belongs to the body. A body made
        only of comment lines is a trailing comment, not a body.
        """
        lines: list[str] = []
        first_line = 0
        only_comments = True
        while not self.cursor.at_end() and not SEPARATOR_RE.match(self.cursor.raw_line()):
            if self.cursor.current_line():
                first_line = first_line or self.cursor.line_number()
                only_comments = only_comments and self._is_comment(0)
            lines.append(self.cursor.consume_raw())
        text = "\n".join(lines).strip()
        request.body = text if text and not only_comments else None
        return first_line


def parse(text: str | None) -> list[Block]:
    """Parse a document into its ordered records."""
    return DocumentParser(text).parse()


def parse_file(path: str | Path) -> list[Block]:
    with open(path, encoding="utf-8") as f:
        return parse(f.read())


def requests_of(records: list[Block]) -> list[Request]:
    return [r for r in records if r.is_request]


def collect_globals(records: list[Block]) -> dict[str, Variable]:
    """Every ``@@`` variable of the document, whichever block declared it."""
    return {
        name: variable
        for record in records
        for name, variable in record.variables.items()
        if variable.global_
    }
