from __future__ import annotations

import logging
from typing import Any, Iterable

from .errors import ConfigError
from .models import (
    DIMENSION_FIELDS,
    ESCALATION_VALUES,
    LIABILITY_VALUES,
    PRIORITY_BUCKETS,
    SAFETY_VALUES,
    URGENCY_VALUES,
    Dimensions,
)

logger = logging.getLogger("dimension_resolver")

BUILTIN_DEFAULTS: dict[str, Any] = {
    "safety": "LOW",
    "urgency": "LONG_TERM",
    "liability": "LOW",
    "budget_low": 100.0,
    "budget_high": 500.0,
    "priority": "PLAN_MONITOR",
    "severity": 2,
    "likelihood": 2,
    "escalation": "LOW",
}

BUDGET_BANDS: dict[str, tuple[float, float]] = {
    "LOW": (100.0, 500.0),
    "MED": (500.0, 2000.0),
    "HIGH": (2000.0, 10000.0),
}

PRIORITY_ALIASES = {
    "URGENT": "IMMEDIATE",
    "RECOMMENDED": "RECOMMENDED_0_3_MONTHS",
    "PLAN": "PLAN_MONITOR",
}

_ENUMS: dict[str, tuple[str, ...]] = {
    "safety": SAFETY_VALUES,
    "urgency": URGENCY_VALUES,
    "liability": LIABILITY_VALUES,
    "priority": PRIORITY_BUCKETS,
    "escalation": ESCALATION_VALUES,
}


def _coerce_field(name: str, value: Any) -> Any:
    if name in _ENUMS:
        s = str(value).strip().upper()
        if name == "priority":
            s = PRIORITY_ALIASES.get(s, s)
        if name == "escalation" and s == "MEDIUM":
            s = "MODERATE"
        if s not in _ENUMS[name]:
            raise ConfigError(f"{name}={value!r} not in {list(_ENUMS[name])}")
        return s
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be numeric")
    if name in ("budget_low", "budget_high"):
        try:
            num = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name}={value!r} is not a number") from None
        if num < 0:
            raise ConfigError(f"{name} must be >= 0")
        return num
    try:
        num_i = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}={value!r} is not an integer") from None
    if num_i < 1 or num_i > 5:
        raise ConfigError(f"{name} must be within 1..5")
    return num_i


def normalize_partial(data: Any, *, strict: bool = False, label: str = "") -> dict[str, Any]:
    """
    Keep only known dimension fields with valid values.

    ``strict`` raises ConfigError on the first bad value (admin writes);
    otherwise bad fields are dropped with a warning so one malformed field
    never hides the rest of a layer.
    """
    if not isinstance(data, dict):
        if strict:
            raise ConfigError("dimensions must be an object")
        return {}
    out: dict[str, Any] = {}
    for name in DIMENSION_FIELDS:
        if name not in data or data[name] is None or data[name] == "":
            continue
        try:
            out[name] = _coerce_field(name, data[name])
        except ConfigError as e:
            if strict:
                raise
            logger.warning("dimension field dropped layer=%s field=%s err=%s", label, name, e)
    if strict and "budget_low" in out and "budget_high" in out and out["budget_low"] > out["budget_high"]:
        raise ConfigError("budget_low must be <= budget_high")
    return out


def profile_to_partial(raw: Any) -> dict[str, Any]:
    """Accept either the flat 9-field form or the nested seed-profile form."""
    if not isinstance(raw, dict):
        return {}
    risk = raw.get("risk") if isinstance(raw.get("risk"), dict) else {}
    budget = raw.get("budgetary_range") if isinstance(raw.get("budgetary_range"), dict) else {}
    nested: dict[str, Any] = {
        "safety": risk.get("safety"),
        "urgency": raw.get("urgency"),
        "liability": risk.get("compliance") or raw.get("liability"),
        "budget_low": budget.get("low"),
        "budget_high": budget.get("high"),
        "priority": raw.get("default_priority"),
        "severity": raw.get("risk_severity"),
        "likelihood": raw.get("likelihood"),
        "escalation": risk.get("escalation"),
    }
    band = str(raw.get("budget_band") or "").strip().upper()
    if band in BUDGET_BANDS and nested["budget_low"] is None and nested["budget_high"] is None:
        nested["budget_low"], nested["budget_high"] = BUDGET_BANDS[band]
    for name in DIMENSION_FIELDS:
        if raw.get(name) is not None:
            nested[name] = raw[name]
    return {k: v for k, v in nested.items() if v is not None}


def merge_layers(layers: Iterable[tuple[str, dict[str, Any]]]) -> tuple[Dimensions, dict[str, str]]:
    """
    Merge ordered partial layers (lowest precedence first) over the built-in
    defaults. Returns the populated profile and the winning layer per field.
    """
    values: dict[str, Any] = dict(BUILTIN_DEFAULTS)
    origin: dict[str, str] = {k: "builtin" for k in DIMENSION_FIELDS}
    for name, partial in layers:
        for k, v in partial.items():
            if k in values:
                values[k] = v
                origin[k] = name
    if values["budget_low"] > values["budget_high"]:
        logger.warning(
            "budget band inverted after merge low=%s high=%s; widening high",
            values["budget_low"],
            values["budget_high"],
        )
        values["budget_high"] = values["budget_low"]
    return Dimensions(**values), origin
