"""
workflow_engines.conditions -- Step skip-condition predicates.

Responsibility:
    Evaluate and validate the ``conditions`` attached to a template step.
    A condition decides, from the submitted entity's attributes, whether
    a non-mandatory step is skipped at runtime.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Condition shape::

    {"skip_if": <predicate>}      skip when the predicate holds
    {"run_if": <predicate>}       skip when the predicate does not hold

    <predicate> :=
        {"field": "trip.destination", "op": "eq", "value": "domestic"}
      | {"field": "advance", "op": "exists"}
      | {"all": [<predicate>, ...]}
      | {"any": [<predicate>, ...]}
      | {"not": <predicate>}

Comparison ops: eq, ne, lt, lte, gt, gte, in, not_in, contains.
Presence ops: exists, missing.

Semantics:
    - A field that is absent makes every comparison False (including
      ``ne``); only ``missing`` is True for it.
    - Numbers compare as Decimal.  Numeric strings are coerced too, so
      "900" < "1000" holds for the Decimal text in stored snapshots.
    - Incomparable types make the comparison False, never an exception.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

COMPARISON_OPS: frozenset[str] = frozenset({
    "eq", "ne", "lt", "lte", "gt", "gte", "in", "not_in", "contains",
})
PRESENCE_OPS: frozenset[str] = frozenset({"exists", "missing"})
CONDITION_KEYS: frozenset[str] = frozenset({"skip_if", "run_if"})
_COMBINATORS: frozenset[str] = frozenset({"all", "any", "not"})

_MISSING = object()


def resolve_field(field_path: str, data: dict[str, Any]) -> Any:
    """Resolve a dotted field path against nested dicts.

    ``trip.destination`` -> data["trip"]["destination"].  Returns the
    module-private ``_MISSING`` sentinel when any segment is absent.
    """
    current: Any = data
    for part in field_path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _as_number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float, Decimal)):
            number = Decimal(str(value))
        elif isinstance(value, str):
            number = Decimal(value.strip())
        else:
            return None
    except InvalidOperation:
        return None
    # NaN and infinities never compare as numbers
    return number if number.is_finite() else None


def _coerce_pair(actual: Any, expected: Any) -> tuple[Any, Any]:
    """Compare as Decimals when both operands read as finite numbers."""
    a, e = _as_number(actual), _as_number(expected)
    if a is not None and e is not None:
        return a, e
    return actual, expected


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op in ("in", "not_in"):
        candidates = [_coerce_pair(actual, item) for item in expected]
        found = any(a == e for a, e in candidates)
        return found if op == "in" else not found

    if op == "contains":
        if isinstance(actual, str):
            return isinstance(expected, str) and expected in actual
        if isinstance(actual, (list, tuple)):
            return any(a == e for a, e in (_coerce_pair(item, expected) for item in actual))
        return False

    a, e = _coerce_pair(actual, expected)
    try:
        if op == "eq":
            return a == e
        if op == "ne":
            return a != e
        if op == "lt":
            return a < e
        if op == "lte":
            return a <= e
        if op == "gt":
            return a > e
        if op == "gte":
            return a >= e
    except (TypeError, InvalidOperation):
        return False
    return False


def evaluate_predicate(predicate: dict[str, Any], data: dict[str, Any]) -> bool:
    """Evaluate one predicate.  Assumes it passed ``validate_predicate``."""
    if "all" in predicate:
        return all(evaluate_predicate(p, data) for p in predicate["all"])
    if "any" in predicate:
        return any(evaluate_predicate(p, data) for p in predicate["any"])
    if "not" in predicate:
        return not evaluate_predicate(predicate["not"], data)

    op = predicate["op"]
    actual = resolve_field(predicate["field"], data)
    if op == "exists":
        return actual is not _MISSING and actual is not None
    if op == "missing":
        return actual is _MISSING or actual is None
    if actual is _MISSING:
        return False
    return _compare(op, actual, predicate.get("value"))


def should_skip(conditions: dict[str, Any] | None, data: dict[str, Any]) -> bool:
    """True when the step's conditions say it does not apply to ``data``."""
    if not conditions:
        return False
    if "skip_if" in conditions and evaluate_predicate(conditions["skip_if"], data):
        return True
    if "run_if" in conditions and not evaluate_predicate(conditions["run_if"], data):
        return True
    return False


# =========================================================================
# Validation
# =========================================================================


def validate_predicate(predicate: Any, path: str) -> list[str]:
    """Return a message per structural problem found in ``predicate``."""
    if not isinstance(predicate, dict):
        return [f"{path}: predicate must be an object"]

    combinators = _COMBINATORS & predicate.keys()
    if combinators:
        if len(predicate) != 1:
            return [f"{path}: combinator must be the only key, got {sorted(predicate, key=str)}"]
        key = next(iter(combinators))
        operand = predicate[key]
        if key == "not":
            return validate_predicate(operand, f"{path}.not")
        if not isinstance(operand, list) or not operand:
            return [f"{path}.{key}: expected a non-empty list of predicates"]
        errors: list[str] = []
        for i, child in enumerate(operand):
            errors.extend(validate_predicate(child, f"{path}.{key}[{i}]"))
        return errors

    errors = []
    unknown = set(predicate) - {"field", "op", "value"}
    if unknown:
        errors.append(f"{path}: unknown keys {sorted(unknown, key=str)}")

    field_path = predicate.get("field")
    if not isinstance(field_path, str) or not field_path.strip():
        errors.append(f"{path}: 'field' must be a non-empty dotted path")

    op = predicate.get("op")
    if not isinstance(op, str):
        errors.append(f"{path}: unknown operator {op!r}")
    elif op in PRESENCE_OPS:
        if "value" in predicate:
            errors.append(f"{path}: operator '{op}' takes no value")
    elif op in COMPARISON_OPS:
        if "value" not in predicate:
            errors.append(f"{path}: operator '{op}' requires a value")
        elif op in ("in", "not_in") and not isinstance(predicate["value"], list):
            errors.append(f"{path}: operator '{op}' requires a list value")
    else:
        errors.append(f"{path}: unknown operator {op!r}")
    return errors


def validate_conditions(conditions: Any) -> list[str]:
    """Return a message per problem in a step's ``conditions`` block."""
    if conditions is None:
        return []
    if not isinstance(conditions, dict):
        return ["conditions: must be an object"]
    if not conditions:
        return ["conditions: empty object; omit it instead"]

    errors: list[str] = []
    unknown = set(conditions) - CONDITION_KEYS
    if unknown:
        errors.append(
            f"conditions: unknown keys {sorted(unknown, key=str)} "
            f"(expected {sorted(CONDITION_KEYS)})"
        )
    for key in sorted(CONDITION_KEYS & conditions.keys()):
        errors.extend(validate_predicate(conditions[key], key))
    return errors
