"""reqfile cursor - line-addressable view over a document."""

import re

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


class SourceCursor:
    """Forward-only cursor over the lines of a document.

    Line numbers are 1-based and always refer to the current (not yet
    consumed) line, so they can be used directly in error messages.
    """

    def __init__(self, text: str | None):
        self._lines: list[str] = _LINE_BREAK_RE.split(text) if text else []
        self._pos = 0

    def at_end(self) -> bool:
        return self._pos >= len(self._lines)

    def line_number(self) -> int:
        return self._pos + 1

    def raw_line(self) -> str | None:
        """Current line, untrimmed."""
        if self.at_end():
            return None
        return self._lines[self._pos]

    def current_line(self) -> str | None:
        """Current line, trimmed. None at end of input."""
        raw = self.raw_line()
        return raw.strip() if raw is not None else None

    def peek(self, offset: int = 0) -> str | None:
        """Trimmed line ``offset`` lines ahead of the current one."""
        idx = self._pos + offset
        if idx < 0 or idx >= len(self._lines):
            return None
        return self._lines[idx].strip()

    def is_blank(self, offset: int = 0) -> bool:
        line = self.peek(offset)
        return line is not None and line == ""

    def consume_line(self) -> str | None:
        """Return the trimmed current line and advance."""
        line = self.current_line()
        if line is not None:
            self._pos += 1
        return line

    def consume_raw(self) -> str | None:
        """Return the untrimmed current line and advance."""
        raw = self.raw_line()
        if raw is not None:
            self._pos += 1
        return raw
