from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

SAFETY_VALUES = ("HIGH", "MODERATE", "LOW")
URGENCY_VALUES = ("IMMEDIATE", "SHORT_TERM", "LONG_TERM")
LIABILITY_VALUES = ("HIGH", "MEDIUM", "LOW")
ESCALATION_VALUES = ("HIGH", "MODERATE", "LOW")
PRIORITY_BUCKETS = ("IMMEDIATE", "RECOMMENDED_0_3_MONTHS", "PLAN_MONITOR")

DIMENSION_FIELDS = (
    "safety",
    "urgency",
    "liability",
    "budget_low",
    "budget_high",
    "priority",
    "severity",
    "likelihood",
    "escalation",
)

OPERATORS = ("eq", "ne", "gt", "lt", "gte", "lte", "in", "not_in")


@dataclass(frozen=True)
class Leaf:
    field: str
    operator: str
    value: Any


@dataclass(frozen=True)
class AllOf:
    items: tuple["Condition", ...]


@dataclass(frozen=True)
class AnyOf:
    items: tuple["Condition", ...]


Condition = Union[Leaf, AllOf, AnyOf]


@dataclass(frozen=True)
class MappingRule:
    rule_id: str
    finding_id: str
    condition: Condition


@dataclass(frozen=True)
class Trigger:
    rule_id: str
    paths: tuple[str, ...]


@dataclass(frozen=True)
class Activation:
    finding_id: str
    triggers: tuple[Trigger, ...]


@dataclass(frozen=True)
class RuleDiagnostic:
    rule_id: str
    finding_id: str
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "rule_id": self.rule_id,
            "finding_id": self.finding_id,
            "code": self.code,
            "message": self.message,
        }


@dataclass(frozen=True)
class ActivationResult:
    activations: tuple[Activation, ...]
    diagnostics: tuple[RuleDiagnostic, ...] = ()

    @property
    def finding_ids(self) -> list[str]:
        return [a.finding_id for a in self.activations]


@dataclass(frozen=True)
class Dimensions:
    """Fully populated 9-dimension profile of one finding."""

    safety: str
    urgency: str
    liability: str
    budget_low: float
    budget_high: float
    priority: str
    severity: int
    likelihood: int
    escalation: str

    def to_dict(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in DIMENSION_FIELDS}


@dataclass(frozen=True)
class PriorityRule:
    when: dict[str, str]
    then: str


@dataclass(frozen=True)
class PriorityDecision:
    bucket: str
    source: str
    rule_index: int | None = None
    liability_adjusted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "bucket": self.bucket,
            "source": self.source,
            "rule_index": self.rule_index,
            "liability_adjusted": self.liability_adjusted,
        }


@dataclass(frozen=True)
class OverrideVersion:
    finding_id: str
    version: int
    status: str
    active: bool
    dimensions: dict[str, Any] = field(default_factory=dict)
    note: str | None = None
    updated_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    version_text: str | None = None
    source_version: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "status": self.status,
            "active": self.active,
            "dimensions": dict(self.dimensions),
            "note": self.note,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "updated_by": self.updated_by,
            "version_text": self.version_text,
            "source_version": self.source_version,
        }


@dataclass(frozen=True)
class NoOverride:
    kind: str = "no_override"


@dataclass(frozen=True)
class DraftOnly:
    draft: OverrideVersion
    kind: str = "draft_only"


@dataclass(frozen=True)
class Published:
    published: OverrideVersion
    kind: str = "published"


@dataclass(frozen=True)
class PublishedWithDraft:
    published: OverrideVersion
    draft: OverrideVersion
    kind: str = "published_with_draft"


OverrideState = Union[NoOverride, DraftOnly, Published, PublishedWithDraft]


def state_published(state: OverrideState) -> OverrideVersion | None:
    if isinstance(state, (Published, PublishedWithDraft)):
        return state.published
    return None


def state_draft(state: OverrideState) -> OverrideVersion | None:
    if isinstance(state, (DraftOnly, PublishedWithDraft)):
        return state.draft
    return None


@dataclass(frozen=True)
class FindingResolution:
    finding_id: str
    dimensions: Dimensions
    dimensions_source: str
    override_version: int | None
    priority: PriorityDecision
    layers: tuple[str, ...]
    triggers: tuple[Trigger, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "finding_id": self.finding_id,
            "dimensions": self.dimensions.to_dict(),
            "dimensions_source": self.dimensions_source,
            "override_version": self.override_version,
            "priority": self.priority.bucket,
            "priority_decision": self.priority.to_dict(),
            "layers": list(self.layers),
            "triggers": [{"rule_id": t.rule_id, "paths": list(t.paths)} for t in self.triggers],
        }
