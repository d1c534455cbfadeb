from __future__ import annotations

import os
import shutil
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from inspection_engine.services.dimension_store import DimensionOverrideStore
from inspection_engine.web.admin_api import create_app

RULES_DIR = Path(__file__).resolve().parents[1] / "rules"

ANSWERS = {
    "rcd_tests": {"present": {"value": False}},
    "earthing": {"men_link_confirmed": False, "resistance_ohms": "1.6"},
    "switchboard": {"type": "ceramic fuse", "labeling": "adequate"},
    "smoke_alarms": {"status": "expired"},
}


class AdminApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        shutil.copytree(RULES_DIR, self.root / "rules")
        self._saved_env = {k: os.environ.get(k) for k in ("ADMIN_USER", "ADMIN_PASS", "ADMIN_TOKEN", "RULES_DIR")}
        os.environ["ADMIN_USER"] = "admin"
        os.environ["ADMIN_PASS"] = "pass123"
        os.environ.pop("ADMIN_TOKEN", None)
        os.environ.pop("RULES_DIR", None)
        os.environ.pop("PREVIEW_DRAFT_DIMENSIONS", None)
        os.environ.pop("REPORT_INJECTION_MODE", None)

        self.store = DimensionOverrideStore.from_url("sqlite://")
        self.client = TestClient(create_app(project_root=self.root, override_store=self.store))
        self.auth = ("admin", "pass123")

    def tearDown(self) -> None:
        for k, v in self._saved_env.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
        self._tmp.cleanup()

    def test_healthz_and_auth(self) -> None:
        r = self.client.get("/healthz")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()["ok"])
        self.assertEqual(r.json()["config_diagnostics"], 0)

        r = self.client.get("/findings")
        self.assertEqual(r.status_code, 401)
        self.assertEqual(r.json()["error"]["code"], "HTTP_401")

        r = self.client.get("/findings", auth=("admin", "wrong"))
        self.assertEqual(r.status_code, 401)

    def test_list_and_detail(self) -> None:
        r = self.client.get("/findings", params={"system_group": "PROTECTION"}, auth=self.auth)
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(body["meta"]["total"], 3)
        self.assertEqual(body["facets"]["system_group"], {"PROTECTION": 3})
        ids = [i["finding_id"] for i in body["items"]]
        self.assertEqual(ids, sorted(ids))
        self.assertIn("NO_RCD_PROTECTION", ids)

        r = self.client.get("/findings", params={"q": "rcd", "pageSize": 1}, auth=self.auth)
        self.assertEqual(r.json()["meta"]["pageSize"], 1)
        self.assertEqual(len(r.json()["items"]), 1)

        r = self.client.get("/findings/NO_RCD_PROTECTION", auth=self.auth)
        self.assertEqual(r.status_code, 200)
        detail = r.json()
        self.assertEqual(detail["override_state"], "no_override")
        self.assertEqual(detail["dimensions_source"], "seed")
        self.assertEqual(detail["latest_version"], 0)
        self.assertEqual(detail["history"], [])

        r = self.client.get("/findings/NOT_A_FINDING", auth=self.auth)
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.json()["error"]["code"], "FINDINGS_005_FINDING_NOT_FOUND")

    def test_override_publish_and_rollback(self) -> None:
        r = self.client.post(
            "/findings/NO_RCD_PROTECTION/override",
            json={"dimensions": {"budget_low": 900, "budget_high": 2400}, "note": "quote received"},
            auth=self.auth,
        )
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["new_version"], 1)
        self.assertEqual(r.json()["draft"]["updated_by"], "admin")

        r = self.client.post(
            "/findings/dimensions/publish",
            json={"version": "2026.10.18", "finding_ids": ["NO_RCD_PROTECTION"], "expected_versions": {"NO_RCD_PROTECTION": 1}},
            auth=self.auth,
        )
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["published"], [{"finding_id": "NO_RCD_PROTECTION", "version": 2}])

        detail = self.client.get("/findings/NO_RCD_PROTECTION", auth=self.auth).json()
        self.assertEqual(detail["override_state"], "published")
        self.assertEqual(detail["dimensions_effective"]["budget_low"], 900.0)
        self.assertEqual(detail["override_version"], 2)

        # Stale writers are rejected.
        r = self.client.post(
            "/findings/NO_RCD_PROTECTION/override",
            json={"dimensions": {"budget_low": 100}, "expected_version": 0},
            auth=self.auth,
        )
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["error"]["code"], "FINDINGS_003_VERSION_CONFLICT")

        self.client.post(
            "/findings/NO_RCD_PROTECTION/override",
            json={"dimensions": {"budget_low": 1200}, "expected_version": 2},
            auth=self.auth,
        )
        r = self.client.post(
            "/findings/dimensions/publish",
            json={"finding_ids": ["NO_RCD_PROTECTION"], "expected_versions": {"NO_RCD_PROTECTION": 1}},
            auth=self.auth,
        )
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["error"]["code"], "FINDINGS_003_VERSION_CONFLICT")

        r = self.client.post(
            "/findings/dimensions/publish",
            json={"version": "2026.10.19", "finding_ids": ["NO_RCD_PROTECTION"]},
            auth=self.auth,
        )
        self.assertEqual(r.json()["published"][0]["version"], 4)

        r = self.client.post("/findings/dimensions/rollback", json={"version": "2026.10.19"}, auth=self.auth)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(
            r.json()["restored"], [{"finding_id": "NO_RCD_PROTECTION", "version": 5, "source_version": 2}]
        )
        detail = self.client.get("/findings/NO_RCD_PROTECTION", auth=self.auth).json()
        self.assertEqual(detail["dimensions_effective"]["budget_low"], 900.0)
        self.assertEqual([h["version"] for h in detail["history"]], [5, 4, 3, 2, 1])

        r = self.client.post("/findings/dimensions/rollback", json={}, auth=self.auth)
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"]["code"], "FINDINGS_001_CONFIG_INVALID")

    def test_two_editors_publishing_same_draft(self) -> None:
        self.client.post("/findings/EARTH_DEGRADED/override", json={"dimensions": {"safety": "HIGH"}}, auth=self.auth)
        seen = self.client.get("/findings/EARTH_DEGRADED", auth=self.auth).json()["latest_version"]
        payload = {"finding_ids": ["EARTH_DEGRADED"], "expected_versions": {"EARTH_DEGRADED": seen}}

        first = self.client.post("/findings/dimensions/publish", json=payload, auth=self.auth)
        self.assertEqual(first.status_code, 200)
        second = self.client.post("/findings/dimensions/publish", json=payload, auth=self.auth)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["error"]["code"], "FINDINGS_003_VERSION_CONFLICT")

        r = self.client.post(
            "/findings/EARTH_DEGRADED/override",
            json={"dimensions": {"safety": "LOW"}, "expected_version": seen},
            auth=self.auth,
        )
        self.assertEqual(r.status_code, 409)

        r = self.client.post(
            "/findings/dimensions/rollback",
            json={"finding_ids": ["EARTH_DEGRADED"], "to_version": seen},
            auth=self.auth,
        )
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.json()["error"]["code"], "FINDINGS_005_FINDING_NOT_FOUND")

    def test_override_validation_and_discard(self) -> None:
        r = self.client.post(
            "/findings/NO_RCD_PROTECTION/override", json={"dimensions": {"safety": "EXTREME"}}, auth=self.auth
        )
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"]["code"], "FINDINGS_001_CONFIG_INVALID")

        r = self.client.post("/findings/NOT_A_FINDING/override", json={"dimensions": {"safety": "LOW"}}, auth=self.auth)
        self.assertEqual(r.status_code, 404)

        r = self.client.post("/findings/LABELING_POOR/override/reset", auth=self.auth)
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.json()["error"]["code"], "FINDINGS_007_NO_DRAFT")

        self.client.post("/findings/LABELING_POOR/override", json={"dimensions": {"safety": "LOW"}}, auth=self.auth)
        r = self.client.post("/findings/LABELING_POOR/override/reset", json={"expected_version": 1}, auth=self.auth)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["discarded_version"], 1)

        r = self.client.get("/changes", params={"finding_id": "LABELING_POOR"}, auth=self.auth)
        self.assertEqual([e["action"] for e in r.json()["items"]], ["discard", "save_draft"])

    def test_evaluate_uses_published_overrides(self) -> None:
        r = self.client.post("/findings/evaluate", json={"raw": ANSWERS}, auth=self.auth)
        self.assertEqual(r.status_code, 200)
        ids = [f["finding_id"] for f in r.json()["findings"]]
        for fid in ("NO_RCD_PROTECTION", "MEN_NOT_VERIFIED", "EARTH_DEGRADED", "SMOKE_ALARM_FAILURE"):
            self.assertIn(fid, ids)
        self.assertNotIn("LABELING_POOR", ids)

        self.client.post("/findings/EARTH_DEGRADED/override", json={"dimensions": {"budget_high": 5000}}, auth=self.auth)
        before = self.client.post("/findings/evaluate", json={"raw": ANSWERS}, auth=self.auth).json()
        earth = next(f for f in before["findings"] if f["finding_id"] == "EARTH_DEGRADED")
        self.assertEqual(earth["dimensions_source"], "seed")

        preview = self.client.post("/findings/evaluate", json={"raw": ANSWERS, "preview": True}, auth=self.auth).json()
        earth = next(f for f in preview["findings"] if f["finding_id"] == "EARTH_DEGRADED")
        self.assertEqual((earth["dimensions_source"], earth["override_version"]), ("override", 1))
        self.assertEqual(earth["dimensions"]["budget_high"], 5000.0)

    def test_report_selection(self) -> None:
        r = self.client.post(
            "/reports/selection",
            json={"raw": {"lead": {"occupancyType": "owner occupied", "primaryGoal": "reduce bill"}}},
            auth=self.auth,
        )
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual((body["profile"], body["source"]), ("owner", "snapshot"))
        self.assertIn("energy", body["modules"])

        r = self.client.post(
            "/reports/selection",
            json={"signals": {"occupancyType": "tenant"}, "overrides": {"profile": "investor"}},
            auth=self.auth,
        )
        self.assertEqual((r.json()["profile"], r.json()["source"]), ("investor", "override"))

    def test_report_plan_evaluates_and_logs_telemetry(self) -> None:
        payload = {"report_id": "R-100", "inspection": {"id": "INS-1", "raw": ANSWERS}}
        with self.assertLogs("report_telemetry", level="INFO") as logs:
            r = self.client.post("/reports/plan", json=payload, auth=self.auth)
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(body["selection"]["source"], "legacy_fallback")
        self.assertEqual(body["plan"]["profile"], "investor")
        self.assertEqual(body["plan"]["slotSourceMap"]["capexRows"]["reason"], "NO_EXPLICIT_MODULES")
        self.assertTrue(body["plan"]["slots"]["executiveSummary"].startswith("• "))
        self.assertEqual(body["telemetry"]["reportId"], "R-100")
        self.assertIn("[REPORT_ENGINE_TELEMETRY]", logs.output[0])

        payload = {
            "inspection": {"id": "INS-2", "raw": {"switchboard": {"type": "ceramic fuse"}}, "findings": []},
            "profile": "owner",
            "modules": ["lifecycle"],
        }
        with self.assertLogs("report_telemetry", level="INFO"):
            body = self.client.post("/reports/plan", json=payload, auth=self.auth).json()
        self.assertIsNone(body["selection"])
        self.assertEqual(body["plan"]["modules"], ["lifecycle"])
        self.assertEqual(body["plan"]["slotSourceMap"]["capexRows"]["source"], "merged")
        self.assertEqual(body["telemetry"]["reportId"], "INS-2")

    def test_config_reload_picks_up_rule_changes(self) -> None:
        r = self.client.post("/config/reload", auth=self.auth)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["diagnostics"], [])

        with (self.root / "rules" / "mappings.yml").open("a", encoding="utf-8") as f:
            f.write("  - id: broken\n    finding: LABELING_POOR\n    condition: { field: a, operator: like, value: 1 }\n")

        r = self.client.post("/config/reload", auth=self.auth)
        diags = r.json()["diagnostics"]
        self.assertEqual([(d["rule_id"], d["code"]) for d in diags], [("broken", "FINDINGS_002_UNKNOWN_OPERATOR")])
        self.assertEqual(self.client.get("/healthz").json()["config_diagnostics"], 1)


if __name__ == "__main__":
    unittest.main()
