"""reqfile resolver - {{placeholder}} expansion against a layered scope.

Lookup order for ``{{name}}``:

  1. ``$fn args``            built-in function (not re-scanned)
  2. ``request.path``        query against a named prior outcome
  3. local variables         (skipped inside a global variable's value)
  4. global variables        ``@@name=...`` anywhere in the document
  5. environment             http-client.env.json values

Resolved values are expanded again, so variables may reference other
variables. A value reached through the global scope may only reference
globals, environment values or outcomes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from reqfile.builtins import BuiltinEvaluator
from reqfile.errors import CycleError, ScopeVisibilityError, UndefinedVariableError
from reqfile.filters import query_value
from reqfile.parser import Variable

logger = logging.getLogger(__name__)


@dataclass
class Scope:
    """Everything a placeholder can see while one request is resolved."""

    env: Mapping[str, str] = field(default_factory=dict)
    global_variables: Mapping[str, Variable] = field(default_factory=dict)
    variables: Mapping[str, Variable] = field(default_factory=dict)
    outcomes: Mapping[str, Any] = field(default_factory=dict)
    builtins: BuiltinEvaluator = field(default_factory=BuiltinEvaluator)


def stringify(value: Any) -> str:
    """Render a resolved value for insertion into text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list | tuple):
        return json.dumps(value)
    return str(value)


def resolve(text: str | None, scope: Scope) -> str:
    """Expand every placeholder in ``text``.

    Raises a ResolutionError subclass when any placeholder cannot be
    expanded; a partially expanded string is never returned.
    """
    if text is None:
        return ""
    return _visit(stringify(text), scope, (), in_global=False)


def _outcome_value(outcome: Any, expr: str) -> Any:
    data = outcome.to_dict() if hasattr(outcome, "to_dict") else outcome
    return query_value(data, expr)


def _lookup(identifier: str, scope: Scope, in_global: bool) -> tuple[Any, bool]:
    """Find the raw value of ``identifier``.

    Returns (value, from_global_scope).
    """
    request_name, dot, expr = identifier.partition(".")
    if dot and request_name in scope.outcomes:
        return _outcome_value(scope.outcomes[request_name], expr), True

    if in_global:
        if identifier not in scope.global_variables and identifier not in scope.env:
            raise ScopeVisibilityError(identifier)
    elif identifier in scope.variables:
        variable = scope.variables[identifier]
        return variable.value, variable.global_

    if identifier in scope.global_variables:
        return scope.global_variables[identifier].value, True
    if identifier in scope.env:
        return scope.env[identifier], True
    raise UndefinedVariableError(identifier)


def _visit(text: str, scope: Scope, path: tuple[str, ...], in_global: bool) -> str:
    head, *fragments = text.split("{{")
    segments = [head]

    for fragment in fragments:
        end = fragment.find("}}")
        if end == -1:
            # Unterminated placeholder: plain text.
            segments.append("{{" + fragment)
            continue

        identifier = fragment[:end].strip()
        if identifier.startswith("$"):
            segments.append(stringify(scope.builtins.evaluate(identifier)))
        else:
            if identifier in path:
                raise CycleError([*path, identifier])
            value, from_global = _lookup(identifier, scope, in_global)
            if isinstance(value, str):
                value = _visit(value, scope, (*path, identifier), in_global=from_global)
            segments.append(stringify(value))

        segments.append(fragment[end + 2 :])

    return "".join(segments)


def resolve_request(request, scope: Scope) -> dict:
    """Resolve URL, header values and body of a parsed request.

    Returns ``{"method", "url", "headers", "body"}`` with the body left as
    None when the request has none.
    """
    resolved = {
        "method": request.method,
        "url": resolve(request.url, scope),
        "headers": [[key, resolve(value, scope)] for key, value in request.headers],
        "body": resolve(request.body, scope) if request.body is not None else None,
    }
    logger.debug("resolved %s %s", resolved["method"], resolved["url"])
    return resolved
