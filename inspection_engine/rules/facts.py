from __future__ import annotations

from typing import Any


def unwrap_answer(value: Any) -> Any:
    """Strip nested ``{"value": ...}`` answer envelopes."""
    cur = value
    while isinstance(cur, dict) and "value" in cur:
        cur = cur["value"]
    return cur


def extract_value(value: Any) -> Any:
    """Unwrap an answer down to a primitive; containers yield ``None``."""
    cur = unwrap_answer(value)
    if isinstance(cur, (str, int, float, bool)):
        return cur
    return None


def get_path(obj: Any, path: str) -> tuple[bool, Any]:
    if isinstance(obj, dict) and path in obj:
        return True, obj[path]
    cur: Any = obj
    for p in path.split("."):
        if not isinstance(cur, dict) or p not in cur:
            return False, None
        cur = cur[p]
    return True, cur


def get_value(obj: Any, path: str) -> Any:
    ok, raw = get_path(obj, path)
    if not ok:
        return None
    return extract_value(raw)


def _set_path(obj: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur: Any = obj
    for p in parts[:-1]:
        if p not in cur or not isinstance(cur[p], dict):
            cur[p] = {}
        cur = cur[p]
    cur[parts[-1]] = value


def flatten_facts(raw: dict[str, Any]) -> dict[str, Any]:
    """
    Reduce an inspection payload to plain values for rule evaluation.

    Answer envelopes are unwrapped recursively and arrays are kept whole.
    """
    out: dict[str, Any] = {}

    def walk(node: Any, prefix: str) -> None:
        if node is None:
            return
        if isinstance(node, list):
            if prefix:
                _set_path(out, prefix, [unwrap_answer(x) for x in node])
            return
        if not isinstance(node, dict):
            if prefix:
                _set_path(out, prefix, node)
            return
        for k, v in node.items():
            path = f"{prefix}.{k}" if prefix else str(k)
            if isinstance(v, dict) and "value" in v:
                _set_path(out, path, unwrap_answer(v))
            else:
                walk(v, path)

    walk(raw if isinstance(raw, dict) else {}, "")
    return out
