from __future__ import annotations

import re
from typing import Any

from .errors import FINDINGS_002_UNKNOWN_OPERATOR, ConfigError
from .facts import get_path, unwrap_answer
from .models import OPERATORS, AllOf, AnyOf, Condition, Leaf

_MEMBER_SPLIT = re.compile(r"[,\n;|]")
_MISSING = object()


def parse_condition(obj: Any) -> Condition:
    if isinstance(obj, (Leaf, AllOf, AnyOf)):
        return obj
    if not isinstance(obj, dict):
        raise ConfigError(f"condition must be an object, got {type(obj).__name__}")
    if "all" in obj or "any" in obj:
        groups: list[Condition] = []
        if "all" in obj:
            groups.append(AllOf(tuple(parse_condition(x) for x in _group_items(obj["all"], "all"))))
        if "any" in obj:
            groups.append(AnyOf(tuple(parse_condition(x) for x in _group_items(obj["any"], "any"))))
        return groups[0] if len(groups) == 1 else AllOf(tuple(groups))
    fld = str(obj.get("field") or "").strip()
    if not fld:
        raise ConfigError("condition.field is required")
    op = str(obj.get("operator") or "").strip()
    if op not in OPERATORS:
        raise ConfigError(f"operator={op!r} field={fld}", err=FINDINGS_002_UNKNOWN_OPERATOR)
    return Leaf(field=fld, operator=op, value=obj.get("value"))


def _group_items(value: Any, name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"condition group '{name}' must be a list")
    return value


def _as_text(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def _to_number(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    if isinstance(v, str):
        try:
            return float(v.strip())
        except ValueError:
            return None
    return None


def _same(a: Any, b: Any) -> bool:
    numeric = (int, float)
    if isinstance(a, bool) or isinstance(b, bool):
        if isinstance(a, bool) and isinstance(b, bool):
            return a is b
    elif isinstance(a, numeric) and isinstance(b, numeric):
        return a == b
    if type(a) is type(b):
        return a == b
    return _as_text(a) == _as_text(b)


def _members(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return [t.strip() for t in _MEMBER_SPLIT.split(value) if t.strip()]
    return [value]


def _contains(actual: Any, members: list[Any]) -> bool:
    candidates = actual if isinstance(actual, list) else [actual]
    return any(_same(a, m) for a in candidates for m in members)


def evaluate_leaf(leaf: Leaf, facts: dict[str, Any]) -> bool:
    found, raw = get_path(facts, leaf.field)
    actual = unwrap_answer(raw) if found else _MISSING
    if isinstance(actual, dict) or actual is None:
        actual = _MISSING
    op = leaf.operator

    if op not in OPERATORS:
        raise ConfigError(f"operator={op!r} field={leaf.field}", err=FINDINGS_002_UNKNOWN_OPERATOR)
    if actual is _MISSING:
        return op == "ne" and leaf.value is not None

    if op == "eq":
        return _same(actual, leaf.value)
    if op == "ne":
        return not _same(actual, leaf.value)
    if op in ("gt", "lt", "gte", "lte"):
        left = _to_number(actual)
        right = _to_number(leaf.value)
        if left is None or right is None:
            return False
        if op == "gt":
            return left > right
        if op == "lt":
            return left < right
        if op == "gte":
            return left >= right
        return left <= right
    members = _members(leaf.value)
    if op == "in":
        return _contains(actual, members)
    return not _contains(actual, members)


def evaluate_with_paths(cond: Condition, facts: dict[str, Any]) -> tuple[bool, tuple[str, ...]]:
    if isinstance(cond, Leaf):
        ok = evaluate_leaf(cond, facts)
        return ok, ((cond.field,) if ok else ())
    results = [evaluate_with_paths(c, facts) for c in cond.items]
    if isinstance(cond, AllOf):
        if all(ok for ok, _ in results):
            return True, tuple(p for _, paths in results for p in paths)
        return False, ()
    hits = [paths for ok, paths in results if ok]
    if not hits:
        return False, ()
    return True, tuple(p for paths in hits for p in paths)


def evaluate(cond: Condition, facts: dict[str, Any]) -> bool:
    return evaluate_with_paths(cond, facts)[0]
