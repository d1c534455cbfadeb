from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable

MODULE_IDS = ("safety", "capacity", "energy", "lifecycle")
PROFILE_IDS = ("investor", "owner", "tenant")
DENSITIES = ("compact", "standard", "detailed")


@dataclass(frozen=True)
class ContentContribution:
    """One keyed line of executive/what-this-means/capex content."""

    key: str
    text: str
    module_id: str
    sort_key: str
    row_key: str | None = None
    priority: str | None = None
    allow_duplicates: bool = False

    def with_text(self, fn: Callable[[str], str]) -> "ContentContribution":
        return replace(self, text=fn(self.text))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "key": self.key,
            "text": self.text,
            "moduleId": self.module_id,
            "sortKey": self.sort_key,
        }
        if self.row_key is not None:
            out["rowKey"] = self.row_key
        if self.priority is not None:
            out["priority"] = self.priority
        return out


@dataclass(frozen=True)
class FindingBlock:
    key: str
    id: str
    module_id: str
    title: str
    priority: str
    rationale: str
    sort_key: str
    evidence_refs: tuple[str, ...] = ()
    photos: tuple[str, ...] = ()
    html: str = ""
    score: int | None = None
    evidence_coverage: str | None = None

    def with_text(self, fn: Callable[[str], str]) -> "FindingBlock":
        return replace(self, title=fn(self.title), rationale=fn(self.rationale), html=fn(self.html))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "key": self.key,
            "id": self.id,
            "moduleId": self.module_id,
            "title": self.title,
            "priority": self.priority,
            "rationale": self.rationale,
            "evidenceRefs": list(self.evidence_refs),
            "photos": list(self.photos),
            "html": self.html,
            "sortKey": self.sort_key,
        }
        if self.score is not None:
            out["score"] = self.score
        if self.evidence_coverage is not None:
            out["evidenceCoverage"] = self.evidence_coverage
        return out


@dataclass(frozen=True)
class ModuleOutput:
    executive_summary: tuple[ContentContribution, ...] = ()
    what_this_means: tuple[ContentContribution, ...] = ()
    capex_rows: tuple[ContentContribution, ...] = ()
    findings: tuple[FindingBlock, ...] = ()


@dataclass(frozen=True)
class ReportRequest:
    """Normalized input of one report plan build."""

    raw: dict[str, Any]
    findings: tuple[dict[str, Any], ...]
    profile: str
    modules: tuple[str, ...]
    explicit_modules: bool
    density: str = "standard"
    injection_mode: str | None = None
    injection: dict[str, bool] = field(default_factory=dict)
    inspection_id: str | None = None
