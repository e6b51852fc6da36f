"""Condition DSL for classification rules.

A stored condition is JSON in one of three shapes::

    {"field": "merchant", "operator": "contains", "value": "Starbucks"}
    {"all": [<simple>, ...]}
    {"any": [<simple>, ...]}

:func:`parse_condition` turns that JSON into typed nodes and :func:`matches`
evaluates them against a receipt snapshot. Only one level of ``all``/``any``
is supported: a compound node inside the list has no ``field`` and therefore
never matches. Evaluation is pure and never raises.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from .normalizers import parse_decimal


@dataclass(frozen=True, slots=True)
class SimpleCondition:
    field: str
    operator: str = "equals"
    value: Any = None


@dataclass(frozen=True, slots=True)
class AllOf:
    conditions: tuple[SimpleCondition, ...]


@dataclass(frozen=True, slots=True)
class AnyOf:
    conditions: tuple[SimpleCondition, ...]


type Condition = SimpleCondition | AllOf | AnyOf


# ---- Parsing -----------------------------------------------------------------


def _parse_simple(raw: Any) -> SimpleCondition:
    if not isinstance(raw, Mapping):
        return SimpleCondition(field="")
    field = raw.get("field")
    operator = raw.get("operator")
    return SimpleCondition(
        field=field if isinstance(field, str) else "",
        operator=str(operator).strip().lower() if operator is not None else "equals",
        value=raw.get("value"),
    )


def parse_condition(raw: Any) -> Condition:
    """Build a typed condition from decoded JSON.

    ``all`` takes precedence over ``any`` when both are present. Anything that
    is not a mapping becomes a simple condition with an empty field.
    """

    if not isinstance(raw, Mapping):
        return SimpleCondition(field="")
    all_items = raw.get("all")
    if isinstance(all_items, list):
        return AllOf(tuple(_parse_simple(item) for item in all_items))
    any_items = raw.get("any")
    if isinstance(any_items, list):
        return AnyOf(tuple(_parse_simple(item) for item in any_items))
    return _parse_simple(raw)


# ---- Value coercion ----------------------------------------------------------


def _as_text(value: Any) -> str:
    """Comparable text form: trimmed and case-folded."""

    if value is None:
        text = ""
    elif isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (int, float, Decimal)):
        d = parse_decimal(value)
        text = format(d.normalize(), "f") if d is not None else str(value)
    elif isinstance(value, (date, datetime)):
        text = value.isoformat()
    else:
        text = str(value)
    return text.strip().casefold()


def _as_number(value: Any) -> Decimal:
    d = parse_decimal(value)
    return d if d is not None else Decimal(0)


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple))


# ---- Operators ---------------------------------------------------------------


def _equals(actual: Any, expected: Any) -> bool:
    if _is_list(actual):
        actual_texts = [_as_text(v) for v in actual]
        if _is_list(expected):
            return sorted(actual_texts) == sorted(_as_text(v) for v in expected)
        return _as_text(expected) in actual_texts
    if _is_list(expected):
        return False
    return _as_text(actual) == _as_text(expected)


def _contains(actual: Any, expected: Any) -> bool:
    needle = _as_text(expected)
    if _is_list(actual):
        return any(_as_text(v) == needle for v in actual)
    return needle in _as_text(actual)


def _affix(actual: Any, expected: Any, *, prefix: bool) -> bool:
    needle = _as_text(expected)
    if not needle:
        return False
    candidates = actual if _is_list(actual) else [actual]
    for v in candidates:
        text = _as_text(v)
        if text.startswith(needle) if prefix else text.endswith(needle):
            return True
    return False


def _in(actual: Any, expected: Any) -> bool:
    if not _is_list(expected):
        return False
    options = {_as_text(v) for v in expected}
    if _is_list(actual):
        return any(_as_text(v) in options for v in actual)
    return _as_text(actual) in options


_OPERATOR_FUNCS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": lambda a, e: not _equals(a, e),
    "contains": _contains,
    "not_contains": lambda a, e: not _contains(a, e),
    "starts_with": lambda a, e: _affix(a, e, prefix=True),
    "ends_with": lambda a, e: _affix(a, e, prefix=False),
    "gt": lambda a, e: _as_number(a) > _as_number(e),
    "gte": lambda a, e: _as_number(a) >= _as_number(e),
    "lt": lambda a, e: _as_number(a) < _as_number(e),
    "lte": lambda a, e: _as_number(a) <= _as_number(e),
    "in": _in,
}

OPERATORS: frozenset[str] = frozenset(_OPERATOR_FUNCS)


def _match_simple(snapshot: Mapping[str, Any], cond: SimpleCondition) -> bool:
    if not cond.field or cond.field not in snapshot:
        return False
    op = _OPERATOR_FUNCS.get(cond.operator)
    if op is None:
        return False
    return op(snapshot[cond.field], cond.value)


def matches(snapshot: Mapping[str, Any], condition: Condition | Mapping[str, Any]) -> bool:
    """Evaluate ``condition`` (typed or raw JSON) against ``snapshot``.

    ``AllOf(())`` is vacuously true; ``AnyOf(())`` is false.
    """

    if not isinstance(condition, (SimpleCondition, AllOf, AnyOf)):
        condition = parse_condition(condition)

    if isinstance(condition, AllOf):
        return all(_match_simple(snapshot, c) for c in condition.conditions)
    if isinstance(condition, AnyOf):
        return any(_match_simple(snapshot, c) for c in condition.conditions)
    return _match_simple(snapshot, condition)


__all__ = [
    "AllOf",
    "AnyOf",
    "Condition",
    "OPERATORS",
    "SimpleCondition",
    "matches",
    "parse_condition",
]
