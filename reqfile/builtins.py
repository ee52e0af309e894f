"""reqfile builtins - the $functions available inside placeholders.

    {{$guid}}                       random UUID v4
    {{$uuid}}                       same as $guid
    {{$processEnv HOME}}            process environment variable
    {{$randomInt 1 10}}             integer in [1, 10]
    {{$datetime iso8601}}           UTC now, ISO 8601
    {{$datetime rfc1123 -1 d}}      yesterday, RFC 1123
    {{$datetime "yyyy-MM-dd" 1 M}}  next month, custom pattern
    {{$localDatetime iso8601}}      local now
    {{$timestamp 10 m}}             Unix seconds, ten minutes from now
"""

import datetime
import os
import random
import re
import uuid
from collections.abc import Callable, Mapping
from email.utils import format_datetime

from dateutil.relativedelta import relativedelta

from reqfile.errors import BuiltinError, InvalidIntegerError, UnknownFunctionError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_INTEGER_RE = re.compile(r"^-?\d+$")
_DATETIME_ARGS_RE = re.compile(
    r"""^(iso8601|rfc1123|"[^"]+"|'[^']+')(?:\s+(-?\d+)\s+(\w+))?$""",
)
_OFFSET_ARGS_RE = re.compile(r"^(?:(-?\d+)\s+(\w+))?$")

OFFSET_UNITS = {
    "y": "years",
    "M": "months",
    "w": "weeks",
    "d": "days",
    "h": "hours",
    "m": "minutes",
    "s": "seconds",
}


# ---------------------------------------------------------------------------
# Custom datetime patterns (date-fns style tokens)
# ---------------------------------------------------------------------------

_PATTERN_TOKEN_RE = re.compile(
    r"'[^']*'|yyyy|yy|MMMM|MMM|MM|M|dd|d|EEEE|EEE|HH|H|hh|h|mm|m|ss|s|SSS|a|xxx|xx|XXX",
)


def _utc_offset(dt: datetime.datetime, colon: bool) -> str:
    offset = dt.utcoffset() or datetime.timedelta(0)
    minutes = int(offset.total_seconds() // 60)
    sign = "-" if minutes < 0 else "+"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}" if colon else f"{sign}{hours:02d}{minutes:02d}"


_PATTERN_TOKENS: dict[str, Callable[[datetime.datetime], str]] = {
    "yyyy": lambda dt: f"{dt.year:04d}",
    "yy": lambda dt: f"{dt.year % 100:02d}",
    "MMMM": lambda dt: dt.strftime("%B"),
    "MMM": lambda dt: dt.strftime("%b"),
    "MM": lambda dt: f"{dt.month:02d}",
    "M": lambda dt: str(dt.month),
    "dd": lambda dt: f"{dt.day:02d}",
    "d": lambda dt: str(dt.day),
    "EEEE": lambda dt: dt.strftime("%A"),
    "EEE": lambda dt: dt.strftime("%a"),
    "HH": lambda dt: f"{dt.hour:02d}",
    "H": lambda dt: str(dt.hour),
    "hh": lambda dt: f"{(dt.hour % 12) or 12:02d}",
    "h": lambda dt: str((dt.hour % 12) or 12),
    "mm": lambda dt: f"{dt.minute:02d}",
    "m": lambda dt: str(dt.minute),
    "ss": lambda dt: f"{dt.second:02d}",
    "s": lambda dt: str(dt.second),
    "SSS": lambda dt: f"{dt.microsecond // 1000:03d}",
    "a": lambda dt: "AM" if dt.hour < 12 else "PM",
    "xxx": lambda dt: _utc_offset(dt, colon=True),
    "xx": lambda dt: _utc_offset(dt, colon=False),
    "XXX": lambda dt: "Z" if not dt.utcoffset() else _utc_offset(dt, colon=True),
}


def format_pattern(dt: datetime.datetime, pattern: str) -> str:
    """Format ``dt`` with a date-fns style pattern such as ``yyyy-MM-dd``.

    Text between single quotes is copied literally (``''`` is a quote).
    """

    def _replace(m: re.Match) -> str:
        token = m.group(0)
        if token.startswith("'"):
            return token[1:-1] or "'"
        return _PATTERN_TOKENS[token](dt)

    return _PATTERN_TOKEN_RE.sub(_replace, pattern)


def shift(dt: datetime.datetime, offset: str | None, unit: str | None) -> datetime.datetime:
    """Apply an ``<offset> <unit>`` shift, e.g. ``-1 d`` or ``2 M``."""
    if not offset or not unit:
        return dt
    if unit not in OFFSET_UNITS:
        raise BuiltinError(f"unknown offset unit: {unit} (expected one of {', '.join(OFFSET_UNITS)})")
    return dt + relativedelta(**{OFFSET_UNITS[unit]: int(offset)})


def assert_integer(value: str) -> int:
    if not _INTEGER_RE.match(value):
        raise InvalidIntegerError(value)
    return int(value)


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class BuiltinEvaluator:
    """Evaluates ``$name args...`` placeholder identifiers.

    ``environ``, ``rng`` and ``clock`` default to the process environment,
    the ``random`` module and the current UTC time; tests pass their own.
    """

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ):
        self.environ = environ if environ is not None else os.environ
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))
        self.functions: dict[str, Callable[[str], str]] = {
            "processEnv": self.process_env,
            "randomInt": self.random_int,
            "guid": self.guid,
            "uuid": self.guid,
            "datetime": self.utc_datetime,
            "localDatetime": self.local_datetime,
            "timestamp": self.timestamp,
        }

    def evaluate(self, identifier: str) -> str:
        """Evaluate ``$fn arg1 arg2`` (leading ``$`` included)."""
        fn, _, args = identifier.strip()[1:].partition(" ")
        func = self.functions.get(fn)
        if func is None:
            raise UnknownFunctionError(fn)
        return func(args.strip())

    def process_env(self, args: str) -> str:
        if not args:
            raise BuiltinError("$processEnv needs a variable name")
        return self.environ.get(args.split()[0], "")

    def random_int(self, args: str) -> str:
        bounds = args.split()
        low = assert_integer(bounds[0]) if len(bounds) > 0 else INT64_MIN
        high = assert_integer(bounds[1]) if len(bounds) > 1 else INT64_MAX
        if low > high:
            raise BuiltinError(f"$randomInt lower bound {low} is greater than {high}")
        return str(self.rng.randint(low, high))

    def guid(self, args: str) -> str:
        return str(uuid.uuid4())

    def utc_datetime(self, args: str) -> str:
        return self._format_datetime(self.clock(), args)

    def local_datetime(self, args: str) -> str:
        return self._format_datetime(self.clock().astimezone(), args)

    def timestamp(self, args: str) -> str:
        m = _OFFSET_ARGS_RE.match(args)
        if not m:
            raise BuiltinError(f"invalid $timestamp arguments: {args}")
        return str(int(shift(self.clock(), m.group(1), m.group(2)).timestamp()))

    def _format_datetime(self, now: datetime.datetime, args: str) -> str:
        m = _DATETIME_ARGS_RE.match(args)
        if not m:
            raise BuiltinError(f"invalid $datetime arguments: {args}")
        fmt, offset, unit = m.groups()
        dt = shift(now, offset, unit)
        if fmt == "iso8601":
            return dt.isoformat(timespec="seconds")
        if fmt == "rfc1123":
            return format_datetime(dt.astimezone(datetime.timezone.utc), usegmt=True)
        return format_pattern(dt, fmt[1:-1])
