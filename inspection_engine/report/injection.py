from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping

from inspection_engine.report.contracts import ContentContribution, FindingBlock
from inspection_engine.report.profiles import priority_rank

INJECTION_MODES = ("legacy", "merged_what_this_means", "merged_exec+wtm", "merged_all")
DEFAULT_INJECTION_MODE = "merged_all"

DEFAULT_LEGACY_MODE = "DEFAULT_LEGACY_MODE"
INJECTION_FLAG_DISABLED = "INJECTION_FLAG_DISABLED"
NO_EXPLICIT_MODULES = "NO_EXPLICIT_MODULES"
MERGED_WTM_APPLIED = "MERGED_WTM_APPLIED"
MERGED_WTM_EMPTY = "MERGED_WTM_EMPTY"
MERGED_EXEC_APPLIED = "MERGED_EXEC_APPLIED"
MERGED_EXEC_EMPTY = "MERGED_EXEC_EMPTY"
MERGED_CAPEX_APPLIED = "MERGED_CAPEX_APPLIED"
MERGED_CAPEX_EMPTY = "MERGED_CAPEX_EMPTY"
MERGED_CAPEX_VALIDATION_FAILED = "MERGED_CAPEX_VALIDATION_FAILED"
MERGED_FINDINGS_APPLIED = "MERGED_FINDINGS_APPLIED"
MERGED_FINDINGS_EMPTY = "MERGED_FINDINGS_EMPTY"
MERGED_FINDINGS_VALIDATION_FAILED = "MERGED_FINDINGS_VALIDATION_FAILED"

SLOTS = ("executiveSummary", "whatThisMeans", "capexRows", "capexSnapshot", "findings")

CAPEX_TBD = "TBD (site dependent)"

_MODE_FLAGS: dict[str, dict[str, bool]] = {
    "legacy": {"whatThisMeans": False, "executive": False, "capex": False, "findings": False},
    "merged_what_this_means": {"whatThisMeans": True, "executive": False, "capex": False, "findings": False},
    "merged_exec+wtm": {"whatThisMeans": True, "executive": True, "capex": False, "findings": False},
    "merged_all": {"whatThisMeans": True, "executive": True, "capex": True, "findings": True},
}

_MONEY_BAND = re.compile(r"\$\s*([0-9][0-9,]*(?:\.[0-9]+)?)\s*-\s*\$\s*([0-9][0-9,]*(?:\.[0-9]+)?)")
_BULLET_PREFIX = re.compile(r"^[-*•]\s+")
_SLUG = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class SlotSource:
    source: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"source": self.source, "reason": self.reason}


def normalize_mode(mode: str | None) -> str:
    m = str(mode or "").strip().lower()
    return m if m in INJECTION_MODES else "legacy"


def resolve_injection_flags(mode: str | None, overrides: Mapping[str, Any] | None = None) -> dict[str, bool]:
    flags = dict(_MODE_FLAGS[normalize_mode(mode)])
    for name, value in (overrides or {}).items():
        if name in flags and isinstance(value, bool):
            flags[name] = value
    return flags


def to_bullet_lines(items: Iterable[str], bullet: str = "- ") -> str:
    lines = []
    for item in items:
        s = _BULLET_PREFIX.sub("", str(item or "").strip()).strip()
        if s:
            lines.append(f"{bullet}{s}")
    return "\n".join(lines)


def row_key_fallback(row: ContentContribution) -> str:
    raw = (row.key or row.text or "capex-row").lower().replace("|", " ")
    slug = _SLUG.sub("-", raw).strip("-")[:64] or "row"
    return f"capex:{row.module_id or 'unknown'}:{slug}"


def _row_order(row: ContentContribution) -> tuple[int, str]:
    return priority_rank(row.priority), row.sort_key or row.row_key or ""


def dedupe_capex_rows(rows: Iterable[ContentContribution]) -> list[ContentContribution]:
    """One row per row key; the higher-priority (then lower sort key) row wins."""
    by_key: dict[str, ContentContribution] = {}
    for row in sorted(rows, key=lambda r: (priority_rank(r.priority), r.sort_key or row_key_fallback(r))):
        key = row.row_key if row.row_key and row.row_key.startswith("capex:") else row_key_fallback(row)
        candidate = replace(row, row_key=key)
        existing = by_key.get(key)
        if existing is None or _row_order(candidate) < _row_order(existing):
            by_key[key] = candidate
    return sorted(by_key.values(), key=_row_order)


def parse_money_band(text: str) -> tuple[float, float] | None:
    m = _MONEY_BAND.search(text or "")
    if not m:
        return None
    return float(m.group(1).replace(",", "")), float(m.group(2).replace(",", ""))


def parse_markdown_row(text: str) -> tuple[str, str, str] | None:
    s = str(text or "").strip()
    if not s.startswith("|"):
        return None
    parts = [p.strip() for p in s.split("|") if p.strip()]
    if len(parts) < 3:
        return None
    return parts[0], parts[1], parts[2]


def render_capex_rows_markdown(rows: Iterable[ContentContribution]) -> str:
    cells = [parse_markdown_row(r.text) for r in rows]
    return "\n".join(f"| {c[0]} | {c[1]} | {c[2]} |" for c in cells if c)


def format_money(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def compute_capex_snapshot(rows: Iterable[ContentContribution]) -> str:
    bands = [b for b in (parse_money_band(r.text) for r in rows) if b is not None]
    if not bands:
        return CAPEX_TBD
    low = sum(b[0] for b in bands)
    high = sum(b[1] for b in bands)
    return f"AUD ${format_money(low)} - ${format_money(high)} (indicative, planning only)"


def validate_findings(blocks: Iterable[FindingBlock]) -> list[str]:
    errors: list[str] = []
    for i, b in enumerate(blocks):
        if not b.id.strip():
            errors.append(f"finding[{i}]:missing_id")
        if not b.title.strip():
            errors.append(f"finding[{i}]:missing_title")
        if not b.rationale.strip():
            errors.append(f"finding[{i}]:empty_rationale")
        if priority_rank(b.priority) == 99:
            errors.append(f"finding[{i}]:unknown_priority")
    return errors


def validate_capex_rows(rows: Iterable[ContentContribution]) -> list[str]:
    errors: list[str] = []
    for i, row in enumerate(rows):
        cells = parse_markdown_row(row.text)
        if cells is None:
            errors.append(f"row[{i}]:malformed")
            continue
        band = parse_money_band(cells[2])
        if band is not None and band[0] > band[1]:
            errors.append(f"row[{i}]:low_gt_high")
        elif band is None and "TBD" not in cells[2].upper():
            errors.append(f"row[{i}]:unparsed_amount")
    return errors
