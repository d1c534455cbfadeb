from __future__ import annotations

import re
from typing import Any, Mapping

from inspection_engine.report.contracts import ContentContribution, FindingBlock, ModuleOutput, ReportRequest
from inspection_engine.report.injection import format_money
from inspection_engine.report.profiles import priority_rank
from inspection_engine.rules.priority import resolve_priority_final

LEGACY_MODULE = "safety"

_TIMELINE = {1: "Year 0-1", 2: "Year 1-2", 3: "Year 3-5"}
_SLUG = re.compile(r"[^a-z0-9]+")
_PRIORITY_FIELDS = ("priority", "priority_selected", "priority_calculated", "priority_final")


def _slug(s: str) -> str:
    return _SLUG.sub("-", s.lower()).strip("-")[:64] or "finding"


def _number(v: Any) -> float | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    try:
        return float(str(v).replace(",", "").replace("$", "").strip())
    except (TypeError, ValueError):
        return None


def _finding_text(f: Mapping[str, Any], responses: Mapping[str, Any]) -> dict[str, str]:
    fid = str(f.get("id") or f.get("finding_id") or "")
    copy = responses.get(fid) if isinstance(responses.get(fid), dict) else {}
    out: dict[str, str] = {}
    for name in ("title", "why_it_matters", "recommended_action", "planning_guidance"):
        v = f.get(name) if f.get(name) else copy.get(name)
        out[name] = str(v).strip() if v else ""
    if not out["title"]:
        out["title"] = fid.replace("_", " ").strip().capitalize()
    return out


def normalize_findings(findings: Any) -> list[dict[str, Any]]:
    """Findings with an id and their final priority, sorted by priority rank then id."""
    rows = []
    for f in findings or []:
        if not isinstance(f, dict):
            continue
        fid = str(f.get("id") or f.get("finding_id") or "").strip()
        if not fid:
            continue
        row = {**f, "id": fid}
        if any(f.get(k) for k in _PRIORITY_FIELDS):
            row["priority"] = resolve_priority_final(f)
        rows.append(row)
    rows.sort(key=lambda r: (priority_rank(r.get("priority")), r["id"]))
    return rows


def build_legacy_output(request: ReportRequest, responses: Mapping[str, Any] | None = None) -> ModuleOutput:
    """Per-finding response text laid out in the four report slots."""
    responses = responses or {}
    findings = normalize_findings(request.findings)
    texts = {f["id"]: _finding_text(f, responses) for f in findings}

    counts = {1: 0, 2: 0, 3: 0}
    for f in findings:
        rank = priority_rank(f.get("priority"))
        if rank in counts:
            counts[rank] += 1

    executive: list[ContentContribution] = []
    if findings:
        summary = (
            f"{counts[1]} urgent, {counts[2]} budgetary and {counts[3]} monitoring items "
            "were identified during this assessment."
        )
    else:
        summary = "No urgent items identified during this assessment."
    executive.append(ContentContribution("legacy.exec.summary", summary, LEGACY_MODULE, "legacy.exec.000"))
    urgent = [f for f in findings if priority_rank(f.get("priority")) == 1][:3]
    for i, f in enumerate(urgent, start=1):
        t = texts[f["id"]]
        line = f"{t['title']}: {t['why_it_matters']}" if t["why_it_matters"] else t["title"]
        executive.append(
            ContentContribution(f"legacy.exec.{f['id']}", line, LEGACY_MODULE, f"legacy.exec.{i:03d}")
        )

    what_this_means: list[ContentContribution] = []
    for i, f in enumerate(findings, start=1):
        t = texts[f["id"]]
        body = t["why_it_matters"] or t["planning_guidance"]
        if body:
            what_this_means.append(
                ContentContribution(
                    f"legacy.wtm.{f['id']}", f"{t['title']}: {body}", LEGACY_MODULE, f"legacy.wtm.{i:03d}"
                )
            )

    capex: list[ContentContribution] = []
    for i, f in enumerate(findings, start=1):
        rank = priority_rank(f.get("priority"))
        if rank not in _TIMELINE:
            continue
        low, high = _number(f.get("budget_low")), _number(f.get("budget_high"))
        if low is not None and high is not None:
            cost = f"AUD ${format_money(low)} - ${format_money(high)}"
        else:
            cost = "TBD"
        text = f"| {_TIMELINE[rank]} | {texts[f['id']]['title']} | {cost} |"
        capex.append(
            ContentContribution(
                key=text,
                text=text,
                module_id=LEGACY_MODULE,
                sort_key=f"legacy.capex.{i:03d}",
                row_key=f"capex:legacy:{_slug(f['id'])}",
                priority=f.get("priority"),
            )
        )

    blocks: list[FindingBlock] = []
    for i, f in enumerate(findings, start=1):
        t = texts[f["id"]]
        action = t["recommended_action"] or t["planning_guidance"]
        blocks.append(
            FindingBlock(
                key=f"legacy.finding.{f['id']}",
                id=f["id"],
                module_id=LEGACY_MODULE,
                title=t["title"],
                priority=str(f.get("priority") or ""),
                rationale=t["why_it_matters"] or f"{t['title']} was identified during the inspection.",
                sort_key=f"legacy.finding.{i:03d}",
                html=f"<p>{action}</p>" if action else "",
            )
        )

    return ModuleOutput(
        executive_summary=tuple(executive),
        what_this_means=tuple(what_this_means),
        capex_rows=tuple(capex),
        findings=tuple(blocks),
    )
