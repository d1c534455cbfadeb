from __future__ import annotations

import json
import unittest

from inspection_engine.report.plan import build_report_plan
from inspection_engine.services.telemetry import (
    TELEMETRY_TAG,
    aggregate_report_telemetry,
    build_report_telemetry,
    emit_report_telemetry,
    is_fallback_reason,
)

RAW = {
    "job": {"property_age_band": "pre-1970"},
    "switchboard": {"type": "ceramic fuse", "main_switch_rating": "63A"},
}
FINDINGS = [{"id": "NO_RCD_PROTECTION", "priority": "IMMEDIATE", "budget_low": 800, "budget_high": 2500}]


def _plan(**data):
    data.setdefault("inspection", {"id": "INS-9", "raw": RAW, "findings": FINDINGS})
    return build_report_plan(data)


class TelemetryTests(unittest.TestCase):
    def test_fallback_reason_classification(self) -> None:
        self.assertTrue(is_fallback_reason("NO_EXPLICIT_MODULES"))
        self.assertTrue(is_fallback_reason("MERGED_FINDINGS_VALIDATION_FAILED:finding[0]:missing_id"))
        self.assertFalse(is_fallback_reason("MERGED_CAPEX_APPLIED"))
        self.assertFalse(is_fallback_reason("DEFAULT_LEGACY_MODE"))
        self.assertFalse(is_fallback_reason("INJECTION_FLAG_DISABLED"))
        self.assertFalse(is_fallback_reason(None))

    def test_build_from_plan(self) -> None:
        plan = _plan(profile="investor", modules=["lifecycle", "energy"])
        t = build_report_telemetry("R-1", plan, now="2026-10-18T00:00:00Z")
        self.assertEqual(t["reportId"], "R-1")
        self.assertEqual(t["injectionMode"], "merged_all")
        self.assertEqual(t["slotSources"]["capexRows"], "merged")
        self.assertEqual(t["fallbackReasons"], {})
        self.assertEqual(t["allReasons"]["findings"], "MERGED_FINDINGS_APPLIED")
        self.assertEqual(t["mergedMetrics"]["capexRowCount"], 3)
        self.assertEqual(t["mergedMetrics"]["capexTbdCount"], 2)
        self.assertEqual(t["timestamp"], "2026-10-18T00:00:00Z")

        legacy = build_report_telemetry("R-2", _plan(profile="investor"), now="t")
        self.assertEqual(legacy["fallbackReasons"]["capexRows"], "NO_EXPLICIT_MODULES")
        self.assertFalse(legacy["hasExplicitModules"])

    def test_emit_logs_tagged_json(self) -> None:
        t = build_report_telemetry("R-3", _plan(), now="t")
        with self.assertLogs("report_telemetry", level="INFO") as logs:
            emit_report_telemetry(t)
        self.assertEqual(len(logs.records), 1)
        message = logs.records[0].getMessage()
        self.assertTrue(message.startswith(TELEMETRY_TAG + " "))
        self.assertEqual(json.loads(message[len(TELEMETRY_TAG) + 1 :])["reportId"], "R-3")

    def test_aggregate(self) -> None:
        items = [
            build_report_telemetry("a", _plan(profile="investor", modules=["lifecycle", "energy"]), now="t"),
            build_report_telemetry("b", _plan(profile="investor", modules=["lifecycle"]), now="t"),
            build_report_telemetry("c", _plan(profile="investor"), now="t"),
            build_report_telemetry("d", _plan(options={"injectionMode": "legacy"}), now="t"),
        ]
        agg = aggregate_report_telemetry(items)
        self.assertEqual(agg["totalReports"], 4)
        self.assertEqual(agg["injectionRatio"]["legacyMode"], 0.25)
        self.assertEqual(agg["slotCoverage"]["capexMerged"], 0.5)
        self.assertEqual(agg["fallbackRate"]["NO_EXPLICIT_MODULES"], 0.25)
        self.assertEqual(agg["moduleUsage"]["lifecycleCount"], 2)
        self.assertEqual(agg["moduleUsage"]["energyCount"], 1)
        self.assertEqual(agg["moduleUsage"]["energyAndLifecycleTogetherRatio"], 0.25)
        self.assertEqual(agg["findingsValidationFailureRatio"], 0.0)
        self.assertEqual(agg["capexTbdRatio"], 0.8)

    def test_aggregate_empty(self) -> None:
        agg = aggregate_report_telemetry([])
        self.assertEqual(agg["totalReports"], 0)
        self.assertEqual(agg["capexTbdRatio"], 0.0)


if __name__ == "__main__":
    unittest.main()
