"""Condition trees and their evaluation against a form value snapshot."""
from __future__ import annotations

import logging
import operator as op
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterator, Mapping

from .errors import MalformedPathError, UnsupportedOperatorError
from .path_util import get_value, is_relative, resolve_dependency_path
from .registry import ALLOWED_OPERATORS

logger = logging.getLogger(__name__)

_SEQUENCES = (list, tuple)


@dataclass(frozen=True)
class Condition:
    """A field/operator/value test, optionally combined with ``and``/``or`` groups.

    Wire form (as written in schemas)::

        {"field": "./type", "operator": "==", "value": "company",
         "and": [...], "or": [...]}

    A condition with only ``and``/``or`` is a pure logical group.
    """

    field: str | None = None
    operator: str | None = None
    value: Any = None
    and_: tuple["Condition", ...] = ()
    or_: tuple["Condition", ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | "Condition") -> "Condition":
        """Parse the wire form, rejecting unknown operators and malformed groups."""
        if isinstance(data, Condition):
            return data
        if not isinstance(data, Mapping):
            raise ValueError(f"Condition must be a mapping; got {type(data).__name__}")
        field_ref = data.get("field")
        operator = data.get("operator")
        if field_ref is not None and not isinstance(field_ref, str):
            raise ValueError(f"Condition field must be a string; got {type(field_ref).__name__}")
        if operator is not None and operator not in ALLOWED_OPERATORS:
            raise UnsupportedOperatorError(operator)
        if field_ref is not None and operator is None:
            raise ValueError(f"Condition on {field_ref!r} is missing an operator")
        if field_ref is None and operator is not None:
            raise ValueError(f"Condition operator {operator!r} has no field")
        groups = {}
        for key in ("and", "or"):
            raw = data.get(key)
            if raw is None:
                groups[key] = ()
                continue
            if not isinstance(raw, (list, tuple)):
                raise ValueError(f"Condition '{key}' must be a list of conditions")
            groups[key] = tuple(cls.from_dict(item) for item in raw)
        return cls(
            field=field_ref,
            operator=operator,
            value=data.get("value"),
            and_=groups["and"],
            or_=groups["or"],
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.field is not None:
            out["field"] = self.field
            out["operator"] = self.operator
            if self.value is not None:
                out["value"] = self.value
        if self.and_:
            out["and"] = [c.to_dict() for c in self.and_]
        if self.or_:
            out["or"] = [c.to_dict() for c in self.or_]
        return out

    def fields(self) -> Iterator[str]:
        """Yield every field referenced in this tree, depth-first."""
        if self.field is not None:
            yield self.field
        for child in (*self.and_, *self.or_):
            yield from child.fields()

    def resolve_paths(self, context_path: str) -> "Condition":
        """Return a copy whose field references are absolute for ``context_path``."""
        return replace(
            self,
            field=resolve_dependency_path(self.field, context_path) if self.field is not None else None,
            and_=tuple(c.resolve_paths(context_path) for c in self.and_),
            or_=tuple(c.resolve_paths(context_path) for c in self.or_),
        )


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple)) and len(value) == 0)


def _strict_equal(a: Any, b: Any) -> bool:
    """Equality that never equates a bool with a number."""
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _member(container: Any, item: Any) -> bool | None:
    """Strict membership in a list or tuple; None when ``container`` is not one."""
    if not isinstance(container, _SEQUENCES):
        return None
    return any(_strict_equal(entry, item) for entry in container)


def _contains(container: Any, item: Any) -> bool:
    return bool(_member(container, item))


def _not_contains(container: Any, item: Any) -> bool:
    return _member(container, item) is False


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    """Wrap an ordering comparison so missing or incomparable values are not satisfied."""

    def check(actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False
        try:
            return bool(compare(actual, expected))
        except TypeError:
            logger.debug("Incomparable values %r and %r", actual, expected)
            return False

    return check


class ConditionEvaluator:
    """Evaluate condition trees. Context-free: references must already be absolute."""

    OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
        "==": _strict_equal,
        "!=": lambda actual, expected: not _strict_equal(actual, expected),
        ">": _ordered(op.gt),
        "<": _ordered(op.lt),
        ">=": _ordered(op.ge),
        "<=": _ordered(op.le),
        "in": lambda actual, expected: _contains(expected, actual),
        "notIn": lambda actual, expected: _not_contains(expected, actual),
        "includes": lambda actual, expected: _contains(actual, expected),
        "notIncludes": lambda actual, expected: _not_contains(actual, expected),
        "isEmpty": lambda actual, _expected: _is_empty(actual),
        "isNotEmpty": lambda actual, _expected: not _is_empty(actual),
    }

    @classmethod
    def evaluate(cls, expr: Condition | Mapping[str, Any], values: Mapping[str, Any]) -> bool:
        """Evaluate ``expr`` against ``values``.

        The base field test runs first; ``and`` conditions are then required
        (short-circuit) and ``or`` conditions may rescue a false result.

        Raises:
            UnsupportedOperatorError: operator outside the closed set.
            MalformedPathError: a relative reference reached the evaluator.
        """
        condition = Condition.from_dict(expr)
        result: bool | None = None
        if condition.field is not None:
            result = cls._test(condition, values)
        if condition.and_ and result is not False:
            result = all(cls.evaluate(child, values) for child in condition.and_)
        if condition.or_ and result is not True:
            result = any(cls.evaluate(child, values) for child in condition.or_)
        return True if result is None else result

    @classmethod
    def _test(cls, condition: Condition, values: Mapping[str, Any]) -> bool:
        if is_relative(condition.field):
            raise MalformedPathError(
                condition.field,
                f"Relative reference {condition.field!r} must be resolved before evaluation",
            )
        compare = cls.OPERATORS.get(condition.operator)
        if compare is None:
            raise UnsupportedOperatorError(condition.operator)
        actual = get_value(values, condition.field)
        return bool(compare(actual, condition.value))
