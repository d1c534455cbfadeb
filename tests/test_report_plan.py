from __future__ import annotations

import json
import unittest
from pathlib import Path

from inspection_engine.report.calibration import calibrate_text, find_forbidden_tokens
from inspection_engine.report.contracts import ContentContribution, FindingBlock
from inspection_engine.report.injection import (
    CAPEX_TBD,
    compute_capex_snapshot,
    dedupe_capex_rows,
    parse_money_band,
    resolve_injection_flags,
    to_bullet_lines,
    validate_capex_rows,
    validate_findings,
)
from inspection_engine.report.legacy import build_legacy_output, normalize_findings
from inspection_engine.report.mappers import map_energy_input, map_lifecycle_input
from inspection_engine.report.plan import build_report_plan, normalize_request
from inspection_engine.rules.config_store import load_snapshot

RULES_DIR = Path(__file__).resolve().parents[1] / "rules"

LIFECYCLE_RAW = {
    "job": {"property_age_band": "pre-1970"},
    "switchboard": {"type": "Ceramic fuse board"},
    "test_data": {"rcd_tests": {"coverage": {"value": "partial"}}},
    "lifecycle": {"photo_ids": [{"value": "P-101"}, "P-102"]},
}

FINDINGS = [
    {"id": "LABELING_POOR", "priority": "PLAN_MONITOR"},
    {"id": "NO_RCD_PROTECTION", "priority": "IMMEDIATE", "budget_low": 800, "budget_high": 2500},
    {"id": "CUSTOM_ITEM", "priority": "RECOMMENDED_0_3_MONTHS"},
]


def _inspection(raw=None, findings=None):
    return {"id": "INS-1", "raw": dict(raw if raw is not None else LIFECYCLE_RAW), "findings": list(findings if findings is not None else FINDINGS)}


def _slot_texts(plan):
    slots = plan["slots"]
    texts = [slots["executiveSummary"], slots["whatThisMeans"], slots["capexRows"], slots["capexSnapshot"]]
    for block in slots["findings"]:
        texts.extend([block["title"], block["rationale"], block["html"]])
    for group in ("merged", "legacy"):
        for name in ("executiveSummary", "whatThisMeans", "capexRows"):
            texts.extend(item["text"] for item in plan[group][name])
    return texts


class ReportPlanTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.responses = load_snapshot(RULES_DIR).responses

    def _plan(self, **data):
        data.setdefault("inspection", _inspection())
        return build_report_plan(data, responses=self.responses)

    def test_deterministic(self) -> None:
        a = self._plan(profile="owner", modules=["lifecycle", "energy"])
        b = self._plan(profile="owner", modules=["lifecycle", "energy"])
        self.assertEqual(json.dumps(a["merged"], sort_keys=True), json.dumps(b["merged"], sort_keys=True))
        self.assertEqual(json.dumps(a, sort_keys=True), json.dumps(b, sort_keys=True))

    def test_lifecycle_changes_what_this_means(self) -> None:
        without = self._plan(profile="investor")
        investor = self._plan(profile="investor", modules=["lifecycle"])
        owner = self._plan(profile="owner", modules=["lifecycle"])

        self.assertEqual(without["moduleStatus"]["lifecycle"], "MODULE_NOT_SELECTED")
        self.assertEqual(investor["moduleStatus"]["lifecycle"], "APPLIED")
        self.assertNotEqual(without["slots"]["whatThisMeans"], investor["slots"]["whatThisMeans"])
        self.assertNotEqual(investor["slots"]["whatThisMeans"], owner["slots"]["whatThisMeans"])
        self.assertEqual(investor["slotSourceMap"]["whatThisMeans"], {"source": "merged", "reason": "MERGED_WTM_APPLIED"})
        for line in investor["slots"]["whatThisMeans"].splitlines():
            self.assertTrue(line.startswith("- "))
            self.assertFalse(line.startswith("- - "))

    def test_no_certainty_language_in_slots(self) -> None:
        findings = FINDINGS + [
            {
                "id": "LOUD_COPY",
                "priority": "IMMEDIATE",
                "title": "Board must be replaced",
                "why_it_matters": "We guarantee 100% protection once certified; you must act.",
                "recommended_action": "You should fix the board.",
            }
        ]
        for mode in ("legacy", "merged_all"):
            for modules in (None, ["lifecycle", "energy"]):
                data = {"profile": "owner", "options": {"injectionMode": mode}}
                if modules:
                    data["modules"] = modules
                plan = self._plan(inspection=_inspection(findings=findings), **data)
                for text in _slot_texts(plan):
                    with self.subTest(mode=mode, modules=modules, text=text[:40]):
                        self.assertEqual(find_forbidden_tokens(text), [])

    def test_default_modules_fall_back_to_legacy(self) -> None:
        plan = self._plan(profile="investor")
        self.assertFalse(plan["hasExplicitModules"])
        self.assertEqual(plan["modules"], ["safety", "capacity"])
        reasons = {slot: src["reason"] for slot, src in plan["slotSourceMap"].items()}
        self.assertEqual(reasons["capexRows"], "NO_EXPLICIT_MODULES")
        self.assertEqual(reasons["findings"], "NO_EXPLICIT_MODULES")
        self.assertEqual(reasons["whatThisMeans"], "MERGED_WTM_EMPTY")
        self.assertEqual(reasons["executiveSummary"], "MERGED_EXEC_EMPTY")
        self.assertTrue(all(src["source"] == "legacy" for src in plan["slotSourceMap"].values()))
        self.assertTrue(plan["slots"]["executiveSummary"].startswith(
            "• 1 urgent, 1 budgetary and 1 monitoring items were identified during this assessment."
        ))

    def test_legacy_mode_reasons_and_flag_overrides(self) -> None:
        plan = self._plan(profile="investor", modules=["lifecycle"], options={"injectionMode": "legacy"})
        self.assertEqual(plan["injection"]["mode"], "legacy")
        for src in plan["slotSourceMap"].values():
            self.assertEqual(src, {"source": "legacy", "reason": "DEFAULT_LEGACY_MODE"})

        plan = self._plan(
            profile="investor",
            modules=["lifecycle"],
            options={"injectionMode": "legacy", "injection": {"whatThisMeans": True, "findings": False}},
        )
        self.assertEqual(plan["slotSourceMap"]["whatThisMeans"]["reason"], "MERGED_WTM_APPLIED")
        self.assertEqual(plan["slotSourceMap"]["findings"]["reason"], "INJECTION_FLAG_DISABLED")
        self.assertEqual(plan["slotSourceMap"]["capexRows"]["reason"], "DEFAULT_LEGACY_MODE")

        plan = self._plan(profile="investor", modules=["lifecycle"], options={"injection": {"capex": False}})
        self.assertEqual(plan["slotSourceMap"]["capexRows"]["reason"], "INJECTION_FLAG_DISABLED")
        self.assertEqual(plan["slotSourceMap"]["capexSnapshot"]["reason"], "INJECTION_FLAG_DISABLED")

    def test_merged_all_with_explicit_modules(self) -> None:
        raw = dict(LIFECYCLE_RAW, switchboard={"type": "ceramic fuse", "main_switch_rating": "63A"})
        plan = self._plan(inspection=_inspection(raw=raw), profile="investor", modules=["lifecycle", "energy"])
        self.assertEqual(plan["moduleStatus"]["energy"], "APPLIED")
        self.assertEqual(plan["slotSourceMap"]["capexRows"]["reason"], "MERGED_CAPEX_APPLIED")
        self.assertEqual(plan["slotSourceMap"]["findings"]["reason"], "MERGED_FINDINGS_APPLIED")
        self.assertTrue(plan["validationFlags"]["mergedFindingsValidationPassed"])
        self.assertTrue(plan["validationFlags"]["mergedCapexValidationPassed"])
        self.assertNotIn("code", plan["validationFlags"])

        self.assertEqual(plan["slots"]["capexSnapshot"], "AUD $1,000 - $4,000 (indicative, planning only)")
        rows = plan["slots"]["capexRows"].splitlines()
        self.assertIn("| Year 1-2 | Capacity headroom review and load balancing | AUD $1,000 - $4,000 |", rows)
        self.assertEqual(len(rows), len(set(rows)))

        finding_modules = [b["moduleId"] for b in plan["slots"]["findings"]]
        self.assertEqual(finding_modules, sorted(finding_modules, key=["safety", "capacity", "lifecycle", "energy"].index))
        lifecycle_block = next(b for b in plan["slots"]["findings"] if b["id"] == "LIFECYCLE_LEGACY_SWITCHBOARD")
        self.assertEqual(lifecycle_block["evidenceRefs"], ["P-101", "P-102"])

    def test_tenant_never_gets_energy(self) -> None:
        raw = dict(LIFECYCLE_RAW, switchboard={"type": "ceramic fuse", "main_switch_rating": "63A"})
        plan = self._plan(inspection=_inspection(raw=raw), profile="tenant", modules=["energy"])
        self.assertEqual(plan["moduleStatus"]["energy"], "MODULE_NOT_APPLICABLE")

    def test_density_clips_findings(self) -> None:
        many = [{"id": f"ITEM_{i:02d}", "priority": "PLAN_MONITOR"} for i in range(30)]
        compact = self._plan(inspection=_inspection(findings=many), options={"narrativeDensity": "compact"})
        detailed = self._plan(inspection=_inspection(findings=many), options={"narrativeDensity": "detailed"})
        self.assertEqual(len(compact["slots"]["findings"]), 8)
        self.assertEqual(len(detailed["slots"]["findings"]), 24)

    def test_normalize_request(self) -> None:
        req = normalize_request(
            {
                "inspection": {"id": 42, "findings": [{"id": "A"}, "junk"]},
                "profile": "OWNER",
                "modules": ["Lifecycle", "bogus", "lifecycle"],
                "options": {"narrativeDensity": "verbose", "injection": {"capex": True, "findings": "yes"}},
            },
            default_mode="merged_exec+wtm",
        )
        self.assertEqual(req.profile, "owner")
        self.assertEqual(req.modules, ("lifecycle",))
        self.assertTrue(req.explicit_modules)
        self.assertEqual(req.density, "standard")
        self.assertEqual(req.injection, {"capex": True})
        self.assertEqual(req.injection_mode, "merged_exec+wtm")
        self.assertEqual(req.inspection_id, "42")
        self.assertEqual(len(req.findings), 1)

        empty = normalize_request({"profile": "nobody", "modules": []})
        self.assertEqual(empty.profile, "investor")
        self.assertFalse(empty.explicit_modules)


class LegacyOutputTests(unittest.TestCase):
    def test_layout(self) -> None:
        responses = load_snapshot(RULES_DIR).responses
        out = build_legacy_output(normalize_request({"inspection": _inspection()}), responses)

        self.assertEqual(
            out.executive_summary[0].text,
            "1 urgent, 1 budgetary and 1 monitoring items were identified during this assessment.",
        )
        self.assertTrue(out.executive_summary[1].text.startswith(responses["NO_RCD_PROTECTION"]["title"]))
        self.assertEqual([b.id for b in out.findings], ["NO_RCD_PROTECTION", "CUSTOM_ITEM", "LABELING_POOR"])

        custom = out.findings[1]
        self.assertEqual(custom.title, "Custom item")
        self.assertEqual(custom.rationale, "Custom item was identified during the inspection.")
        self.assertEqual(custom.html, "")

        rows = [r.text for r in out.capex_rows]
        self.assertEqual(rows[0], f"| Year 0-1 | {responses['NO_RCD_PROTECTION']['title']} | AUD $800 - $2,500 |")
        self.assertEqual(rows[1], "| Year 1-2 | Custom item | TBD |")
        self.assertEqual(out.capex_rows[0].row_key, "capex:legacy:no-rcd-protection")

    def test_engineer_priority_needs_a_reason(self) -> None:
        findings = [
            {"id": "A", "priority_calculated": "IMMEDIATE", "priority_selected": "PLAN_MONITOR"},
            {"id": "B", "priority_calculated": "PLAN_MONITOR", "priority_selected": "IMMEDIATE", "override_reason": "live parts"},
            {"id": "C", "priority_final": "RECOMMENDED_0_3_MONTHS", "priority": "IMMEDIATE"},
            {"id": "D"},
        ]
        rows = normalize_findings(findings)
        self.assertEqual(
            [(r["id"], r.get("priority")) for r in rows],
            [("A", "IMMEDIATE"), ("B", "IMMEDIATE"), ("C", "RECOMMENDED_0_3_MONTHS"), ("D", None)],
        )

        out = build_legacy_output(normalize_request({"inspection": {"findings": findings}}))
        self.assertEqual(
            out.executive_summary[0].text,
            "2 urgent, 1 budgetary and 0 monitoring items were identified during this assessment.",
        )
        self.assertEqual([b.priority for b in out.findings][:3], ["IMMEDIATE", "IMMEDIATE", "RECOMMENDED_0_3_MONTHS"])

    def test_no_findings(self) -> None:
        out = build_legacy_output(normalize_request({"inspection": {"findings": []}}))
        self.assertEqual([c.text for c in out.executive_summary], ["No urgent items identified during this assessment."])
        self.assertEqual(out.findings, ())


class CapexAndValidationTests(unittest.TestCase):
    def _row(self, text, *, row_key=None, priority=None, sort_key="s", module_id="energy"):
        return ContentContribution(key=text, text=text, module_id=module_id, sort_key=sort_key, row_key=row_key, priority=priority)

    def test_dedupe_keeps_higher_priority_row(self) -> None:
        rows = [
            self._row("| Year 3-5 | Board | TBD |", row_key="capex:x:board", priority="PLAN_MONITOR", sort_key="a"),
            self._row("| Year 0-1 | Board | TBD |", row_key="capex:x:board", priority="IMMEDIATE", sort_key="z"),
            self._row("| Year 1-2 | Other | TBD |", priority="RECOMMENDED_0_3_MONTHS"),
        ]
        out = dedupe_capex_rows(rows)
        self.assertEqual([r.text for r in out], ["| Year 0-1 | Board | TBD |", "| Year 1-2 | Other | TBD |"])
        self.assertEqual(out[1].row_key, "capex:energy:year-1-2-other-tbd")

    def test_money_band_and_snapshot(self) -> None:
        self.assertEqual(parse_money_band("AUD $1,000 - $4,500.50"), (1000.0, 4500.5))
        self.assertIsNone(parse_money_band("TBD"))
        rows = [
            self._row("| Year 1-2 | A | AUD $1,000 - $4,000 |"),
            self._row("| Year 2-3 | B | AUD $500 - $1,500 |"),
            self._row("| Year 3-5 | C | TBD |"),
        ]
        self.assertEqual(compute_capex_snapshot(rows), "AUD $1,500 - $5,500 (indicative, planning only)")
        self.assertEqual(compute_capex_snapshot(rows[2:]), CAPEX_TBD)
        self.assertEqual(compute_capex_snapshot([]), CAPEX_TBD)

    def test_validate_capex_rows(self) -> None:
        rows = [
            self._row("| Year 1-2 | A | AUD $5,000 - $1,000 |"),
            self._row("not a table row"),
            self._row("| Year 1-2 | B | ask the owner |"),
            self._row("| Year 1-2 | C | TBD |"),
        ]
        self.assertEqual(validate_capex_rows(rows), ["row[0]:low_gt_high", "row[1]:malformed", "row[2]:unparsed_amount"])

    def test_validate_findings(self) -> None:
        good = FindingBlock(key="k", id="A", module_id="energy", title="T", priority="PLAN_MONITOR", rationale="r", sort_key="s")
        bad = FindingBlock(key="k2", id=" ", module_id="energy", title="T", priority="SOON", rationale="  ", sort_key="s")
        self.assertEqual(validate_findings([good]), [])
        self.assertEqual(
            validate_findings([good, bad]),
            ["finding[1]:missing_id", "finding[1]:empty_rationale", "finding[1]:unknown_priority"],
        )

    def test_injection_flags_and_bullets(self) -> None:
        self.assertEqual(
            resolve_injection_flags("bogus"),
            {"whatThisMeans": False, "executive": False, "capex": False, "findings": False},
        )
        flags = resolve_injection_flags("merged_exec+wtm", {"capex": True, "unknown": True, "findings": "yes"})
        self.assertEqual(flags, {"whatThisMeans": True, "executive": True, "capex": True, "findings": False})
        self.assertEqual(to_bullet_lines(["- a", "• b", "", "c"], "• "), "• a\n• b\n• c")


class MapperTests(unittest.TestCase):
    def test_lifecycle_signals(self) -> None:
        s = map_lifecycle_input(LIFECYCLE_RAW)
        self.assertEqual((s.property_age_band, s.switchboard_type, s.rcd_coverage), ("pre-1970", "ceramic_fuse", "partial"))
        self.assertEqual(s.evidence_refs, ("P-101", "P-102"))
        self.assertEqual(s.evidence_coverage, "observed")
        self.assertFalse(map_lifecycle_input({}).meaningful)

    def test_energy_coverage(self) -> None:
        measured = map_energy_input({"test_data": {"measured": {"voltage": 238}}, "job": {"ev": "yes"}})
        self.assertEqual(measured.evidence_coverage, "measured")
        self.assertTrue(measured.has_ev)
        declared = map_energy_input({"job": {"solar": "installed"}})
        self.assertEqual(declared.evidence_coverage, "declared")
        self.assertEqual(map_energy_input({}).evidence_coverage, "unknown")


class CalibrationTests(unittest.TestCase):
    def test_phrase_rewrites(self) -> None:
        cases = {
            "We recommend replacing the board.": "consider replacing the board.",
            "You must isolate the circuit.": "it is advisable to isolate the circuit.",
            "Works must be completed.": "Works should be completed.",
            "Results are certified.": "Results are assessed.",
            "This is guaranteed to pass.": "This is expected to pass.",
            "Coverage is 100%": "Coverage is fully",
            "Status: PLAN_MONITOR": "Status: Monitor / Acceptable",
        }
        for raw, want in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(calibrate_text(raw), want)
                self.assertEqual(find_forbidden_tokens(calibrate_text(raw)), [])

    def test_whitespace(self) -> None:
        self.assertEqual(calibrate_text("  a  \t b\n\n\n\nc  "), "a b\n\nc")
        self.assertEqual(calibrate_text(""), "")

    def test_forbidden_scan(self) -> None:
        self.assertEqual(find_forbidden_tokens("We guarantee it, 100 % certified, you must"), ["must", "guarantee", "certify", "100%"])


if __name__ == "__main__":
    unittest.main()
