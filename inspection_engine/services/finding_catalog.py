from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

from inspection_engine.report.profiles import priority_rank
from inspection_engine.rules.config_store import ConfigSnapshot
from inspection_engine.rules.dimensions import merge_layers
from inspection_engine.rules.engine import FindingEngine
from inspection_engine.rules.errors import NotFoundError
from inspection_engine.rules.models import NoOverride, OverrideState, state_draft, state_published
from inspection_engine.services.dimension_store import DimensionOverrideStore

SORT_FIELDS = (
    "finding_id",
    "title",
    "priority",
    "safety",
    "urgency",
    "liability",
    "severity",
    "likelihood",
    "budget_low",
    "budget_high",
    "updated_at",
)
MAX_PAGE_SIZE = 200

_LEVEL_RANK = {"HIGH": 0, "IMMEDIATE": 0, "MODERATE": 1, "MEDIUM": 1, "SHORT_TERM": 1, "LOW": 2, "LONG_TERM": 2}


@dataclass(frozen=True)
class FindingQuery:
    query: str = ""
    system_group: str = ""
    space_group: str = ""
    tags: tuple[str, ...] = ()
    priority: str = ""
    safety: str = ""
    urgency: str = ""
    liability: str = ""
    has_overrides: bool | None = None
    missing_copy: bool | None = None
    page: int = 1
    page_size: int = 50
    sort: str = "finding_id"
    order: str = "asc"
    preview: bool = False


def split_tags(values: Iterable[str] | str | None) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    out: list[str] = []
    for v in values:
        for part in str(v or "").split(","):
            t = part.strip()
            if t and t not in out:
                out.append(t)
    return tuple(out)


def _updated_at(state: OverrideState) -> str | None:
    versions = [v for v in (state_draft(state), state_published(state)) if v is not None]
    stamps = [v.updated_at or v.created_at for v in versions if (v.updated_at or v.created_at)]
    return max(stamps) if stamps else None


def _sort_value(item: dict[str, Any], field: str) -> Any:
    dims = item["dimensions_effective"]
    if field == "priority":
        return priority_rank(item["priority"])
    if field in ("safety", "urgency", "liability"):
        return _LEVEL_RANK.get(str(dims.get(field)), 9)
    if field in dims:
        return dims[field]
    v = item.get(field)
    return "" if v is None else str(v).lower()


def _count(facet: dict[str, int], key: str | None) -> None:
    if key:
        facet[key] = facet.get(key, 0) + 1


class FindingCatalog:
    """Admin listing and detail views over one snapshot plus the override store."""

    def __init__(self, snapshot: ConfigSnapshot, overrides: DimensionOverrideStore) -> None:
        self.snapshot = snapshot
        self.engine = FindingEngine(snapshot)
        self.overrides = overrides

    def _item(self, finding_id: str, state: OverrideState, preview: bool) -> dict[str, Any]:
        definition = self.snapshot.definition(finding_id)
        resolution = self.engine.resolve_finding(finding_id, state, preview=preview)
        return {
            "finding_id": finding_id,
            "title": definition["title"],
            "groups": {
                "system_group": definition["system_group"],
                "space_group": definition["space_group"],
                "tags": definition["tags"],
            },
            "dimensions_effective": resolution.dimensions.to_dict(),
            "dimensions_source": resolution.dimensions_source,
            "override_version": resolution.override_version,
            "priority": resolution.priority.bucket,
            "has_override": not isinstance(state, NoOverride),
            "has_draft": state_draft(state) is not None,
            "copy_status": self.snapshot.copy_status(finding_id),
            "updated_at": _updated_at(state),
        }

    def _matches(self, item: dict[str, Any], q: FindingQuery) -> bool:
        groups = item["groups"]
        dims = item["dimensions_effective"]
        if q.query:
            needle = q.query.lower()
            hay = " ".join([item["finding_id"], item["title"], *groups["tags"]]).lower()
            if needle not in hay:
                return False
        if q.system_group and (groups["system_group"] or "") != q.system_group:
            return False
        if q.space_group and (groups["space_group"] or "") != q.space_group:
            return False
        if q.tags and not set(q.tags) & set(groups["tags"]):
            return False
        if q.priority and item["priority"] != q.priority.upper():
            return False
        for name in ("safety", "urgency", "liability"):
            want = getattr(q, name)
            if want and str(dims.get(name)) != want.upper():
                return False
        if q.has_overrides is not None and item["has_override"] != q.has_overrides:
            return False
        if q.missing_copy is not None:
            cs = item["copy_status"]
            missing = not (cs["has_title"] and cs["has_why"] and cs["has_action"])
            if missing != q.missing_copy:
                return False
        return True

    def list_findings(self, q: FindingQuery) -> dict[str, Any]:
        states = self.overrides.states()
        items = [
            self._item(fid, states.get(fid, NoOverride()), q.preview)
            for fid in self.snapshot.known_finding_ids()
        ]
        items = [i for i in items if self._matches(i, q)]

        facets: dict[str, dict[str, int]] = {"system_group": {}, "space_group": {}, "tags": {}, "priority": {}}
        for i in items:
            _count(facets["system_group"], i["groups"]["system_group"])
            _count(facets["space_group"], i["groups"]["space_group"])
            for t in i["groups"]["tags"]:
                _count(facets["tags"], t)
            _count(facets["priority"], i["priority"])

        sort = q.sort if q.sort in SORT_FIELDS else "finding_id"
        items.sort(key=lambda i: (_sort_value(i, sort), i["finding_id"]), reverse=q.order == "desc")

        page_size = min(max(int(q.page_size), 1), MAX_PAGE_SIZE)
        total = len(items)
        total_pages = max(math.ceil(total / page_size), 1)
        page = min(max(int(q.page), 1), total_pages)
        start = (page - 1) * page_size
        return {
            "meta": {"total": total, "page": page, "pageSize": page_size, "totalPages": total_pages},
            "facets": facets,
            "items": items[start : start + page_size],
        }

    def finding_detail(self, finding_id: str, *, preview: bool = False) -> dict[str, Any]:
        if not self.snapshot.is_known(finding_id):
            raise NotFoundError(f"finding={finding_id}")
        state = self.overrides.state(finding_id)
        resolution = self.engine.resolve_finding(finding_id, state, preview=preview)
        seed_dims, _ = merge_layers([self.snapshot.seed_layer(finding_id)])
        published = state_published(state)
        draft = state_draft(state)
        return {
            "definition": self.snapshot.definition(finding_id),
            "copy_status": self.snapshot.copy_status(finding_id),
            "seed_dimensions": seed_dims.to_dict(),
            "active_override": published.to_dict() if published else None,
            "draft_override": draft.to_dict() if draft else None,
            "override_state": state.kind,
            "dimensions_effective": resolution.dimensions.to_dict(),
            "dimensions_source": resolution.dimensions_source,
            "override_version": resolution.override_version,
            "latest_version": self.overrides.latest_version(finding_id),
            "resolved_priority": resolution.priority.to_dict(),
            "layers": list(resolution.layers),
            "history": [v.to_dict() for v in self.overrides.history(finding_id)],
        }
