from __future__ import annotations

import unittest

from inspection_engine.services.report_selection import derive_auto_selection, resolve_report_selection
from inspection_engine.services.signals import (
    SnapshotSignals,
    extract_snapshot_signals,
    normalize_goal,
    normalize_occupancy,
    normalize_string_list,
    parse_bool,
)


class SignalExtractionTests(unittest.TestCase):
    def test_vocabulary_normalization(self) -> None:
        self.assertEqual(normalize_occupancy("Owner Occupied"), "owner_occupied")
        self.assertEqual(normalize_occupancy("landlord"), "investment")
        self.assertEqual(normalize_occupancy("renting"), "tenant")
        self.assertIsNone(normalize_occupancy("commercial"))
        self.assertEqual(normalize_goal("Reduce bill"), "reduce_bill")
        self.assertEqual(normalize_goal("risk"), "risk")
        self.assertEqual(normalize_goal("plan-upgrade"), "plan_upgrade")
        self.assertIsNone(normalize_goal(""))

    def test_bool_and_list_vocabularies(self) -> None:
        self.assertIs(parse_bool("Yes"), True)
        self.assertIs(parse_bool("installed"), True)
        self.assertIs(parse_bool("off"), False)
        self.assertIsNone(parse_bool("maybe"))
        self.assertEqual(normalize_string_list("EV, solar;EV|battery"), ["EV", "solar", "battery"])
        self.assertEqual(normalize_string_list(["ev", "EV", {"value": "ev"}]), ["ev", "EV"])
        self.assertIsNone(normalize_string_list(" , "))

    def test_first_path_wins_and_is_recorded(self) -> None:
        raw = {
            "snapshot_intake": {"occupancyType": {"value": "Owner occupied"}, "primaryGoal": "reduce_bill"},
            "lead": {"occupancyType": "landlord", "tenantChangeSoon": "yes"},
            "job": {"occupancyType": "tenant"},
            "devices": "EV, solar",
        }
        s = extract_snapshot_signals(raw)
        self.assertEqual(s.occupancyType, "owner_occupied")
        self.assertEqual(s.sources["occupancyType"], "snapshot_intake.occupancyType")
        self.assertEqual(s.primaryGoal, "reduce_bill")
        self.assertIs(s.tenantChangeSoon, True)
        self.assertEqual(s.devices, ("EV", "solar"))
        self.assertIs(s.hasEv, True)
        self.assertIs(s.hasSolar, True)
        self.assertIs(s.hasBattery, False)
        self.assertEqual(s.coverage, "declared")

    def test_empty_input(self) -> None:
        s = extract_snapshot_signals({})
        self.assertEqual(s.coverage, "unknown")
        self.assertIsNone(s.occupancyType)
        self.assertEqual(extract_snapshot_signals(None), SnapshotSignals())

    def test_dict_round_trip(self) -> None:
        s = extract_snapshot_signals({"lead": {"occupancyType": "investor", "devices": ["ev"]}})
        self.assertEqual(SnapshotSignals.from_dict(s.to_dict()), s)


class SelectionTests(unittest.TestCase):
    def test_pure_function(self) -> None:
        signals = {"occupancyType": "investment", "primaryGoal": "balanced"}
        a = resolve_report_selection(signals, {"modules": ["lifecycle"]}).to_dict()
        b = resolve_report_selection(signals, {"modules": ["lifecycle"]}).to_dict()
        self.assertEqual(a, b)

    def test_overrides_take_precedence(self) -> None:
        signals = {"occupancyType": "owner_occupied", "primaryGoal": "reduce_bill"}
        r = resolve_report_selection(signals, {"profile": "tenant"})
        self.assertEqual((r.profile, r.source), ("tenant", "override"))

        r = resolve_report_selection(signals, {"modules": ["lifecycle", "unknown"]})
        self.assertEqual(r.source, "override")
        self.assertEqual(r.modules, ("lifecycle",))

    def test_owner_reduce_bill_includes_energy(self) -> None:
        r = resolve_report_selection({"occupancyType": "owner_occupied", "primaryGoal": "reduce_bill"})
        self.assertEqual(r.profile, "owner")
        self.assertIn("energy", r.modules)
        self.assertEqual(r.source, "snapshot")
        self.assertEqual(r.weights, {"energy": 80, "lifecycle": 20})

    def test_investment_includes_lifecycle(self) -> None:
        r = resolve_report_selection({"occupancyType": "investment"})
        self.assertEqual(r.profile, "investor")
        self.assertIn("lifecycle", r.modules)

    def test_tenant_risk_is_energy_only(self) -> None:
        r = resolve_report_selection({"occupancyType": "tenant", "primaryGoal": "risk"})
        self.assertEqual(r.profile, "tenant")
        self.assertEqual(list(r.modules), ["energy"])

    def test_investor_tenant_change_bias(self) -> None:
        r = resolve_report_selection({"occupancyType": "investment", "tenantChangeSoon": True, "primaryGoal": "risk"})
        self.assertEqual(r.profile, "investor")
        self.assertGreater(r.weights["lifecycle"], r.weights["energy"])
        self.assertEqual(r.weights, {"energy": 35, "lifecycle": 65})

        energy_goal = resolve_report_selection(
            {"occupancyType": "investment", "tenantChangeSoon": True, "primaryGoal": "energy"}
        )
        self.assertEqual(energy_goal.weights, {"energy": 80, "lifecycle": 20})

        overridden = resolve_report_selection(
            {"occupancyType": "investment", "tenantChangeSoon": True}, {"profile": "investor"}
        )
        self.assertEqual(overridden.weights, {"energy": 30, "lifecycle": 70})

    def test_legacy_fallback(self) -> None:
        r = resolve_report_selection({})
        self.assertEqual((r.profile, r.source), ("investor", "legacy_fallback"))
        self.assertEqual(r.modules, ())

        r = resolve_report_selection(SnapshotSignals(profile="owner"))
        self.assertEqual(r.profile, "owner")
        self.assertIn("energy", r.modules)

    def test_explicit_modules_never_augmented(self) -> None:
        r = resolve_report_selection({"occupancyType": "owner_occupied"}, {"modules": ["lifecycle"]})
        self.assertEqual(r.profile, "owner")
        self.assertEqual(r.modules, ("lifecycle",))

    def test_empty_or_unknown_module_list_is_still_an_override(self) -> None:
        signals = {"occupancyType": "owner_occupied", "primaryGoal": "reduce_bill"}
        for modules in ([], ["bogus", "  "]):
            r = resolve_report_selection(signals, {"modules": modules})
            self.assertEqual(r.source, "override")
            self.assertEqual(r.modules, ())
            self.assertEqual(r.profile, "owner")

        r = resolve_report_selection(signals, {"modules": "lifecycle"})
        self.assertEqual(r.source, "snapshot")
        self.assertIn("energy", r.modules)

    def test_goal_reweights(self) -> None:
        self.assertEqual(derive_auto_selection("owner_occupied", "risk").weights, {"energy": 50, "lifecycle": 50})
        self.assertEqual(derive_auto_selection("investment", "plan_upgrade").weights, {"energy": 60, "lifecycle": 40})
        self.assertEqual(derive_auto_selection(None, None).modules, ())


if __name__ == "__main__":
    unittest.main()
