"""reqfile errors - parse, resolution and config failures."""


class ReqfileError(Exception):
    """Base class for every error raised by reqfile."""


class ParseError(ReqfileError, ValueError):
    """A document line could not be parsed.

    Carries the 1-based line number and the offending text.
    """

    def __init__(self, message: str, line: int, text: str | None = None):
        self.message = message
        self.line = line
        self.text = text
        super().__init__(f"(line: {line}) {message}")


class ConfigError(ReqfileError):
    """An environment or config file could not be read."""


# ── Resolution ───────────────────────────────────────────────────────────


class ResolutionError(ReqfileError):
    """A placeholder could not be expanded."""


class CycleError(ResolutionError):
    def __init__(self, path: list[str]):
        self.path = list(path)
        super().__init__(f"variable cycle found: {' -> '.join(self.path)}")


class ScopeVisibilityError(ResolutionError):
    """A global variable's value referenced a non-global identifier."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"variable not found on global scope: {name}")


class UndefinedVariableError(ResolutionError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"variable not found: {name}")


class BuiltinError(ResolutionError):
    """A $function call failed."""


class UnknownFunctionError(BuiltinError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"not implemented: ${name}")


class InvalidIntegerError(BuiltinError):
    def __init__(self, value: str):
        self.value = value
        super().__init__(f'"{value}" is not a integer number')


class QueryError(ReqfileError, ValueError):
    """A query path could not be parsed."""


class TransportError(ReqfileError):
    """The HTTP request itself failed (connection, timeout, ...)."""
