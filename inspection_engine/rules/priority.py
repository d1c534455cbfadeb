from __future__ import annotations

from typing import Any

from .errors import ConfigError
from .models import PRIORITY_BUCKETS, Dimensions, PriorityDecision, PriorityRule

DEFAULT_PRIORITY = "PLAN_MONITOR"

_RANK = {bucket: idx for idx, bucket in enumerate(PRIORITY_BUCKETS)}


def parse_priority_matrix(items: Any) -> list[PriorityRule]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ConfigError("base_priority_matrix must be a list")
    out: list[PriorityRule] = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict) or not isinstance(item.get("when", {}), dict):
            raise ConfigError(f"base_priority_matrix[{idx}] must have a 'when' object")
        then = str(item.get("then") or "").strip()
        if then not in PRIORITY_BUCKETS:
            raise ConfigError(f"base_priority_matrix[{idx}].then={then!r} is not a priority bucket")
        when = {str(k): str(v) for k, v in (item.get("when") or {}).items() if k in ("safety", "urgency", "liability")}
        out.append(PriorityRule(when=when, then=then))
    return out


def _matches(cond: dict[str, Any], dims: Dimensions) -> bool:
    return all(getattr(dims, k, None) == v for k, v in cond.items())


class PriorityMatrix:
    """Ordered matrix with hard-override short-circuit and liability shift."""

    def __init__(
        self,
        rules: list[PriorityRule],
        *,
        hard_override_ids: frozenset[str] = frozenset(),
        hard_bucket: str | None = None,
        liability_rules: list[dict[str, Any]] | None = None,
        guardrails: list[dict[str, Any]] | None = None,
    ) -> None:
        self.rules = tuple(rules)
        self.hard_override_ids = frozenset(hard_override_ids)
        self.hard_bucket = hard_bucket if hard_bucket in PRIORITY_BUCKETS else None
        self.liability_rules = tuple(liability_rules or ())
        self.guardrails = tuple(guardrails or ())

    def _guardrail_flags(self, dims: Dimensions) -> dict[str, bool]:
        flags = {"allow_downgrade": True, "allow_liability_adjustment": True}
        for g in self.guardrails:
            cond = g.get("if") if isinstance(g.get("if"), dict) else {}
            then = g.get("then") if isinstance(g.get("then"), dict) else {}
            if cond and _matches(cond, dims):
                for k, v in then.items():
                    if k in flags and v is False:
                        flags[k] = False
        return flags

    def _adjust(self, bucket: str, dims: Dimensions) -> str:
        flags = self._guardrail_flags(dims)
        if not flags["allow_liability_adjustment"] or dims.urgency == "IMMEDIATE":
            return bucket
        for rule in self.liability_rules:
            when = rule.get("when") if isinstance(rule.get("when"), dict) else {}
            if when.get("liability") != dims.liability:
                continue
            action = rule.get("action") if isinstance(rule.get("action"), dict) else {}
            shift = str(action.get("shift") or "NONE").upper()
            if shift == "UP" and bucket in ("PLAN_MONITOR", "RECOMMENDED_0_3_MONTHS"):
                ceiling = str(action.get("max_priority") or bucket)
                if ceiling in _RANK and _RANK[ceiling] < _RANK[bucket]:
                    return ceiling
            elif shift == "DOWN" and bucket == "RECOMMENDED_0_3_MONTHS" and flags["allow_downgrade"]:
                floor = str(action.get("min_priority") or DEFAULT_PRIORITY)
                if floor in _RANK and _RANK[floor] > _RANK[bucket]:
                    return floor
            return bucket
        return bucket

    def resolve(self, finding_id: str, dims: Dimensions) -> PriorityDecision:
        if finding_id in self.hard_override_ids and self.hard_bucket:
            return PriorityDecision(bucket=self.hard_bucket, source="hard_override")
        for idx, rule in enumerate(self.rules):
            if _matches(rule.when, dims):
                adjusted = self._adjust(rule.then, dims)
                return PriorityDecision(
                    bucket=adjusted,
                    source="matrix",
                    rule_index=idx,
                    liability_adjusted=adjusted != rule.then,
                )
        fallback = dims.priority if dims.priority in PRIORITY_BUCKETS else DEFAULT_PRIORITY
        return PriorityDecision(bucket=fallback, source="profile_default")


def resolve_priority_final(finding: dict[str, Any]) -> str:
    """
    Final priority of a finding record.

    ``priority_final`` wins when set. Otherwise the calculated priority is
    used unless an engineer selected a different one and gave an
    ``override_reason``. Records without a calculated priority use their
    legacy ``priority`` field.
    """
    already = finding.get("priority_final")
    if already:
        return str(already)
    calculated = finding.get("priority_calculated")
    if calculated:
        selected = finding.get("priority_selected") or finding.get("priority")
        if selected and is_override_valid(finding):
            return str(selected)
        return str(calculated)
    return str(finding.get("priority") or DEFAULT_PRIORITY)


def is_override_valid(finding: dict[str, Any]) -> bool:
    selected = finding.get("priority_selected") or finding.get("priority")
    calculated = finding.get("priority_calculated")
    if not calculated or selected == calculated:
        return True
    return bool(str(finding.get("override_reason") or "").strip())
