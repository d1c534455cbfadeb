from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from inspection_engine.report.injection import DEFAULT_LEGACY_MODE, INJECTION_FLAG_DISABLED

logger = logging.getLogger("report_telemetry")

TELEMETRY_TAG = "[REPORT_ENGINE_TELEMETRY]"

TRACKED_FALLBACKS = (
    "NO_EXPLICIT_MODULES",
    "MERGED_FINDINGS_VALIDATION_FAILED",
    "INJECTION_FLAG_DISABLED",
    "MERGED_CAPEX_EMPTY",
)

_TBD_RE = re.compile(r"\bTBD\b", re.IGNORECASE)


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def is_fallback_reason(reason: str | None) -> bool:
    if not reason:
        return False
    if reason in (DEFAULT_LEGACY_MODE, INJECTION_FLAG_DISABLED):
        return False
    return not reason.endswith("_APPLIED")


def build_report_telemetry(report_id: str, plan: Mapping[str, Any], *, now: str | None = None) -> dict[str, Any]:
    """Summarise one built report plan for logging and aggregation."""
    slot_map = plan.get("slotSourceMap") or {}
    merged = plan.get("merged") or {}
    flags = (plan.get("injection") or {}).get("flags") or {}
    validation = plan.get("validationFlags") or {}
    modules = list(plan.get("modules") or [])
    capex_rows = [r.get("text", "") for r in merged.get("capexRows") or []]

    reasons = [(slot, (src or {}).get("reason")) for slot, src in slot_map.items()]
    return {
        "reportId": report_id,
        "profile": plan.get("profile"),
        "modules": modules,
        "hasExplicitModules": bool(plan.get("hasExplicitModules")),
        "injectionMode": (plan.get("injection") or {}).get("mode"),
        "injectionFlags": dict(flags),
        "slotSources": {slot: (src or {}).get("source") for slot, src in slot_map.items()},
        "fallbackReasons": {slot: r for slot, r in reasons if is_fallback_reason(r)},
        "allReasons": {slot: r for slot, r in reasons if r},
        "mergedMetrics": {
            "executiveSummaryCount": len(merged.get("executiveSummary") or []),
            "whatThisMeansCount": len(merged.get("whatThisMeans") or []),
            "capexRowCount": len(capex_rows),
            "capexTbdCount": sum(1 for t in capex_rows if _TBD_RE.search(t)),
            "findingsCount": len(merged.get("findings") or []),
        },
        "validationFlags": {
            "mergedFindingsValidationPassed": bool(validation.get("mergedFindingsValidationPassed", True)),
            "mergedCapexValidationPassed": bool(validation.get("mergedCapexValidationPassed", True)),
        },
        "timestamp": now or _utc_now(),
    }


def emit_report_telemetry(telemetry: Mapping[str, Any]) -> None:
    logger.info("%s %s", TELEMETRY_TAG, json.dumps(telemetry, sort_keys=True, ensure_ascii=False))


def _ratio(n: int, total: int) -> float:
    return round(n / max(total, 1), 4)


def aggregate_report_telemetry(items: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    rows = list(items)
    total = len(rows)

    def count(pred) -> int:
        return sum(1 for r in rows if pred(r))

    def merged_slot(slot: str):
        return lambda r: (r.get("slotSources") or {}).get(slot) == "merged"

    def has_reason(prefix: str):
        return lambda r: any(str(v).startswith(prefix) for v in (r.get("allReasons") or {}).values())

    def mode_is(mode: str):
        return lambda r: r.get("injectionMode") == mode

    energy = count(lambda r: "energy" in (r.get("modules") or []))
    lifecycle = count(lambda r: "lifecycle" in (r.get("modules") or []))
    both = count(lambda r: {"energy", "lifecycle"} <= set(r.get("modules") or []))
    capex_rows = sum(int((r.get("mergedMetrics") or {}).get("capexRowCount") or 0) for r in rows)
    capex_tbd = sum(int((r.get("mergedMetrics") or {}).get("capexTbdCount") or 0) for r in rows)

    return {
        "totalReports": total,
        "injectionRatio": {
            "legacyMode": _ratio(count(mode_is("legacy")), total),
            "mergedExecWtmMode": _ratio(count(mode_is("merged_exec+wtm")), total),
            "mergedCapex": _ratio(count(merged_slot("capexRows")), total),
            "mergedFindings": _ratio(count(merged_slot("findings")), total),
        },
        "slotCoverage": {
            "whatThisMeansMerged": _ratio(count(merged_slot("whatThisMeans")), total),
            "executiveMerged": _ratio(count(merged_slot("executiveSummary")), total),
            "capexMerged": _ratio(count(merged_slot("capexRows")), total),
            "findingsMerged": _ratio(count(merged_slot("findings")), total),
        },
        "fallbackRate": {name: _ratio(count(has_reason(name)), total) for name in TRACKED_FALLBACKS},
        "moduleUsage": {
            "energyCount": energy,
            "lifecycleCount": lifecycle,
            "energyAndLifecycleTogetherRatio": _ratio(both, total),
        },
        "capexTbdRatio": _ratio(capex_tbd, capex_rows),
        "findingsValidationFailureRatio": _ratio(
            count(lambda r: not (r.get("validationFlags") or {}).get("mergedFindingsValidationPassed", True)),
            total,
        ),
    }
