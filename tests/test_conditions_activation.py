from __future__ import annotations

import unittest
from pathlib import Path

from inspection_engine.rules.activator import FindingActivator, default_rule_id, parse_mapping_rules
from inspection_engine.rules.conditions import evaluate, evaluate_leaf, evaluate_with_paths, parse_condition
from inspection_engine.rules.config_store import load_snapshot
from inspection_engine.rules.engine import FindingEngine
from inspection_engine.rules.errors import ConfigError
from inspection_engine.rules.facts import flatten_facts, get_value
from inspection_engine.rules.models import Leaf

RULES_DIR = Path(__file__).resolve().parents[1] / "rules"


class ConditionTests(unittest.TestCase):
    def test_leaf_operators(self) -> None:
        facts = {"a": {"n": 5, "s": "partial", "b": False}, "tags": ["ev", "solar"]}
        cases = [
            ({"field": "a.n", "operator": "eq", "value": 5}, True),
            ({"field": "a.n", "operator": "eq", "value": "5"}, True),
            ({"field": "a.n", "operator": "ne", "value": 5}, False),
            ({"field": "a.n", "operator": "gt", "value": 4}, True),
            ({"field": "a.n", "operator": "lt", "value": 5}, False),
            ({"field": "a.n", "operator": "gte", "value": 5}, True),
            ({"field": "a.n", "operator": "lte", "value": "4.5"}, False),
            ({"field": "a.s", "operator": "in", "value": ["none", "partial"]}, True),
            ({"field": "a.s", "operator": "in", "value": "none, partial"}, True),
            ({"field": "a.s", "operator": "not_in", "value": ["none"]}, True),
            ({"field": "a.b", "operator": "eq", "value": False}, True),
            ({"field": "a.b", "operator": "eq", "value": "false"}, True),
            ({"field": "a.b", "operator": "eq", "value": 0}, False),
            ({"field": "tags", "operator": "in", "value": ["solar"]}, True),
        ]
        for raw, want in cases:
            with self.subTest(raw=raw):
                self.assertEqual(evaluate(parse_condition(raw), facts), want)

    def test_missing_field_only_satisfies_ne(self) -> None:
        facts = {"a": {}}
        self.assertFalse(evaluate(parse_condition({"field": "a.x", "operator": "eq", "value": 1}), facts))
        self.assertFalse(evaluate(parse_condition({"field": "a.x", "operator": "gt", "value": 0}), facts))
        self.assertTrue(evaluate(parse_condition({"field": "a.x", "operator": "ne", "value": 1}), facts))

    def test_non_numeric_comparison_is_false(self) -> None:
        facts = {"v": "high"}
        self.assertFalse(evaluate(parse_condition({"field": "v", "operator": "gt", "value": 1}), facts))

    def test_groups(self) -> None:
        facts = {"x": 1, "y": 2}
        all_ok = {"all": [{"field": "x", "operator": "eq", "value": 1}, {"field": "y", "operator": "eq", "value": 2}]}
        all_bad = {"all": [{"field": "x", "operator": "eq", "value": 1}, {"field": "y", "operator": "eq", "value": 3}]}
        any_ok = {"any": [{"field": "x", "operator": "eq", "value": 9}, {"field": "y", "operator": "eq", "value": 2}]}
        self.assertTrue(evaluate(parse_condition(all_ok), facts))
        self.assertFalse(evaluate(parse_condition(all_bad), facts))
        ok, paths = evaluate_with_paths(parse_condition(any_ok), facts)
        self.assertTrue(ok)
        self.assertEqual(paths, ("y",))

    def test_empty_groups(self) -> None:
        self.assertFalse(evaluate(parse_condition({"any": []}), {}))
        self.assertTrue(evaluate(parse_condition({"all": []}), {}))

    def test_unknown_operator(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            parse_condition({"field": "x", "operator": "regex", "value": ".*"})
        self.assertEqual(ctx.exception.err.code, "FINDINGS_002_UNKNOWN_OPERATOR")
        with self.assertRaises(ConfigError):
            evaluate_leaf(Leaf(field="x", operator="contains", value=1), {"x": 1})

    def test_condition_needs_field(self) -> None:
        with self.assertRaises(ConfigError):
            parse_condition({"operator": "eq", "value": 1})
        with self.assertRaises(ConfigError):
            parse_condition("x == 1")


class FactsTests(unittest.TestCase):
    def test_flatten_unwraps_answer_envelopes(self) -> None:
        raw = {
            "rcd_tests": {"present": {"value": {"value": False}}, "coverage": {"value": "partial"}},
            "photos": [{"value": "P1"}, "P2"],
        }
        facts = flatten_facts(raw)
        self.assertIs(facts["rcd_tests"]["present"], False)
        self.assertEqual(facts["rcd_tests"]["coverage"], "partial")
        self.assertEqual(facts["photos"], ["P1", "P2"])

    def test_get_value_accepts_dotted_key(self) -> None:
        self.assertEqual(get_value({"a.b": 3}, "a.b"), 3)
        self.assertEqual(get_value({"a": {"b": {"value": "x"}}}, "a.b"), "x")
        self.assertIsNone(get_value({"a": {"b": {"c": 1}}}, "a.b"))


class ActivationTests(unittest.TestCase):
    def test_bad_rules_become_diagnostics(self) -> None:
        rules, diags = parse_mapping_rules(
            {
                "rules": [
                    {"id": "good", "finding": "F1", "condition": {"field": "x", "operator": "eq", "value": 1}},
                    {"id": "bad_op", "finding": "F2", "condition": {"field": "x", "operator": "like", "value": 1}},
                    {"id": "no_finding", "condition": {"field": "x", "operator": "eq", "value": 1}},
                    "not-a-rule",
                ]
            }
        )
        self.assertEqual([r.rule_id for r in rules], ["good"])
        codes = {d.rule_id: d.code for d in diags}
        self.assertEqual(codes["bad_op"], "FINDINGS_002_UNKNOWN_OPERATOR")
        self.assertEqual(codes["no_finding"], "FINDINGS_001_CONFIG_INVALID")
        self.assertEqual(codes[default_rule_id("not-a-rule")], "FINDINGS_001_CONFIG_INVALID")
        self.assertTrue(default_rule_id("not-a-rule").startswith("rule#"))

    def test_rules_without_id_keep_their_id_when_reordered(self) -> None:
        items = [
            {"finding": "F1", "condition": {"field": "x", "operator": "eq", "value": 1}},
            {"finding": "F1", "condition": {"field": "x", "operator": "eq", "value": 2}},
            {"finding": "F2", "condition": {"value": 1, "operator": "eq", "field": "x"}},
        ]
        forward, _ = parse_mapping_rules({"rules": items})
        backward, _ = parse_mapping_rules({"rules": list(reversed(items))})
        self.assertEqual(
            sorted((r.finding_id, r.rule_id) for r in forward),
            sorted((r.finding_id, r.rule_id) for r in backward),
        )
        ids = [r.rule_id for r in forward]
        self.assertEqual(len(set(ids)), 3)
        self.assertTrue(all(i.startswith(f"{r.finding_id}#") for i, r in zip(ids, forward)))

        answers = {"x": 1}
        hits = FindingActivator(forward).activate(answers).activations
        again = FindingActivator(backward).activate(answers).activations
        self.assertEqual(hits, again)

    def test_activation_collects_triggers_per_finding(self) -> None:
        rules, _ = parse_mapping_rules(
            {
                "rules": [
                    {"id": "r2", "finding": "F", "condition": {"field": "b", "operator": "eq", "value": True}},
                    {"id": "r1", "finding": "F", "condition": {"field": "a", "operator": "gt", "value": 1}},
                    {"id": "r3", "finding": "G", "condition": {"field": "a", "operator": "lt", "value": 0}},
                ]
            }
        )
        result = FindingActivator(rules).activate({"a": {"value": 3}, "b": True})
        self.assertEqual(result.finding_ids, ["F"])
        self.assertEqual([t.rule_id for t in result.activations[0].triggers], ["r1", "r2"])
        self.assertEqual(result.diagnostics, ())

    def test_shipped_mappings_activate_findings(self) -> None:
        engine = FindingEngine(load_snapshot(RULES_DIR))
        answers = {
            "rcd_tests": {"present": {"value": False}},
            "earthing": {"men_link_confirmed": False, "resistance_ohms": "1.6"},
            "switchboard": {"thermal_damage": True, "labeling": "adequate"},
            "thermal_imaging": {"hotspot_delta_c": 25},
            "smoke_alarms": {"status": "expired"},
        }
        result = engine.activate(answers)
        ids = result.finding_ids
        for fid in ("NO_RCD_PROTECTION", "MEN_NOT_VERIFIED", "EARTH_DEGRADED", "THERMAL_STRESS_ACTIVE", "SMOKE_ALARM_FAILURE"):
            self.assertIn(fid, ids)
        self.assertNotIn("PARTIAL_RCD_COVERAGE", ids)
        self.assertNotIn("LABELING_POOR", ids)
        self.assertEqual(ids, sorted(ids))

        thermal = next(a for a in result.activations if a.finding_id == "THERMAL_STRESS_ACTIVE")
        self.assertEqual(
            set(thermal.triggers[0].paths),
            {"switchboard.thermal_damage", "thermal_imaging.hotspot_delta_c"},
        )


if __name__ == "__main__":
    unittest.main()
