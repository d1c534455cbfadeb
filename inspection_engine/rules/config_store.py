from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from .activator import parse_mapping_rules
from .dimensions import normalize_partial, profile_to_partial
from .errors import FINDINGS_004_PARSE_FAILED, ConfigError
from .models import MappingRule, RuleDiagnostic
from .priority import PriorityMatrix, parse_priority_matrix

logger = logging.getLogger("config_store")

CONFIG_FILES = {
    "rules": "rules",
    "profiles": "finding_profiles",
    "mappings": "mappings",
    "responses": "responses",
    "catalog": "findings_catalog",
}

FALLBACK_PROFILE_ID = "UNKNOWN_FINDING_FALLBACK"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_doc(base: Path, stem: str) -> dict[str, Any]:
    for suffix in (".yml", ".yaml", ".json"):
        p = base / f"{stem}{suffix}"
        if not p.exists():
            continue
        text = p.read_text(encoding="utf-8")
        try:
            obj = json.loads(text) if suffix == ".json" else yaml.safe_load(text)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"path={p} err={e}", err=FINDINGS_004_PARSE_FAILED) from e
        if obj is None:
            return {}
        if not isinstance(obj, dict):
            raise ConfigError(f"path={p} root must be a mapping", err=FINDINGS_004_PARSE_FAILED)
        return obj
    return {}


def _title_from_id(finding_id: str) -> str:
    return finding_id.replace("_", " ")


def _non_empty(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


@dataclass(frozen=True)
class ConfigSnapshot:
    """
    Immutable view of every configuration input of one resolution pass.

    Instances are never mutated after construction; a reload builds a new
    snapshot and swaps the reference held by ConfigStore.
    """

    mapping_rules: tuple[MappingRule, ...]
    priority: PriorityMatrix
    seed_profiles: dict[str, dict[str, Any]]
    category_defaults: dict[str, dict[str, Any]]
    fallback_profile: dict[str, Any] | None
    rule_findings: dict[str, dict[str, Any]]
    hard_overrides: dict[str, dict[str, Any]]
    responses: dict[str, dict[str, Any]]
    catalog: dict[str, dict[str, Any]]
    diagnostics: tuple[RuleDiagnostic, ...] = ()
    loaded_at: str = field(default_factory=_utc_now)

    def known_finding_ids(self) -> list[str]:
        ids: set[str] = set(self.catalog) | set(self.seed_profiles) | set(self.rule_findings)
        ids |= set(self.hard_overrides) | set(self.responses)
        ids |= {r.finding_id for r in self.mapping_rules}
        ids.discard(FALLBACK_PROFILE_ID)
        return sorted(ids)

    def is_known(self, finding_id: str) -> bool:
        return finding_id != FALLBACK_PROFILE_ID and finding_id in set(self.known_finding_ids())

    def definition(self, finding_id: str) -> dict[str, Any]:
        entry = self.catalog.get(finding_id, {})
        resp = self.responses.get(finding_id, {})
        tags = entry.get("tags") if isinstance(entry.get("tags"), list) else []
        title = _non_empty(entry.get("title")) or _non_empty(resp.get("title")) or _title_from_id(finding_id)
        return {
            "finding_id": finding_id,
            "title": title,
            "system_group": _non_empty(entry.get("system_group")),
            "space_group": _non_empty(entry.get("space_group")),
            "tags": [str(t) for t in tags],
            "why_it_matters": _non_empty(resp.get("why_it_matters")),
            "recommended_action": _non_empty(resp.get("recommended_action")),
            "planning_guidance": _non_empty(resp.get("planning_guidance")),
        }

    def copy_status(self, finding_id: str) -> dict[str, bool]:
        resp = self.responses.get(finding_id, {})
        return {
            "has_title": _non_empty(resp.get("title")) is not None
            or _non_empty(self.catalog.get(finding_id, {}).get("title")) is not None,
            "has_why": _non_empty(resp.get("why_it_matters")) is not None,
            "has_action": _non_empty(resp.get("recommended_action")) is not None,
            "has_planning": _non_empty(resp.get("planning_guidance")) is not None,
        }

    def seed_layer(self, finding_id: str) -> tuple[str, dict[str, Any]]:
        if finding_id in self.seed_profiles:
            return "seed", self.seed_profiles[finding_id]
        if self.fallback_profile is not None:
            logger.warning("no seed profile for finding=%s; using %s", finding_id, FALLBACK_PROFILE_ID)
            return "category_default", self.fallback_profile
        group = self.catalog.get(finding_id, {}).get("system_group")
        for key in (str(group or "").upper(), "OTHER"):
            if key and key in self.category_defaults:
                logger.warning("no seed profile for finding=%s; using category default %s", finding_id, key)
                return "category_default", self.category_defaults[key]
        logger.warning("no seed profile for finding=%s; using built-in defaults", finding_id)
        return "category_default", {}


def build_snapshot(
    *,
    rules_doc: dict[str, Any] | None = None,
    profiles_doc: dict[str, Any] | None = None,
    mappings_doc: dict[str, Any] | None = None,
    responses_doc: dict[str, Any] | None = None,
    catalog_doc: dict[str, Any] | None = None,
) -> ConfigSnapshot:
    rules_doc = rules_doc or {}
    profiles_doc = profiles_doc or {}
    diags: list[RuleDiagnostic] = []

    mapping_rules, mapping_diags = parse_mapping_rules(mappings_doc or {"rules": []})
    diags.extend(mapping_diags)

    try:
        matrix_rules = parse_priority_matrix(rules_doc.get("base_priority_matrix"))
    except ConfigError as e:
        logger.warning("priority matrix ignored err=%s", e)
        diags.append(RuleDiagnostic("base_priority_matrix", "", e.err.code, str(e)))
        matrix_rules = []

    hard = rules_doc.get("hard_overrides") if isinstance(rules_doc.get("hard_overrides"), dict) else {}
    hard_findings = hard.get("findings", [])
    hard_overrides: dict[str, dict[str, Any]] = {}
    if isinstance(hard_findings, list):
        for fid in hard_findings:
            hard_overrides[str(fid)] = {}
    elif isinstance(hard_findings, dict):
        for fid, triplet in hard_findings.items():
            hard_overrides[str(fid)] = normalize_partial(triplet, label=f"hard_override:{fid}")
    rule_findings: dict[str, dict[str, Any]] = {}
    for fid, meta in (rules_doc.get("findings") or {}).items():
        rule_findings[str(fid)] = normalize_partial(meta, label=f"rules:{fid}")
    for fid in hard_overrides:
        # A listed id without its own triplet forces the rule-file triplet.
        if not hard_overrides[fid] and fid in rule_findings:
            hard_overrides[fid] = {
                k: v for k, v in rule_findings[fid].items() if k in ("safety", "urgency", "liability")
            }

    liability = rules_doc.get("liability_adjustment") or {}
    guardrails = rules_doc.get("liability_guardrails") or {}
    priority = PriorityMatrix(
        matrix_rules,
        hard_override_ids=frozenset(hard_overrides),
        hard_bucket=hard.get("priority_bucket"),
        liability_rules=[r for r in liability.get("rules", []) if isinstance(r, dict)],
        guardrails=[r for r in guardrails.get("rules", []) if isinstance(r, dict)],
    )

    raw_profiles = profiles_doc.get("finding_profiles", profiles_doc)
    seed_profiles: dict[str, dict[str, Any]] = {}
    fallback: dict[str, Any] | None = None
    for fid, raw in (raw_profiles or {}).items():
        if fid in ("category_defaults", "version", "description"):
            continue
        partial = normalize_partial(profile_to_partial(raw), label=f"seed:{fid}")
        if fid == FALLBACK_PROFILE_ID:
            fallback = partial
        else:
            seed_profiles[str(fid)] = partial
    category_defaults = {
        str(k).upper(): normalize_partial(profile_to_partial(v), label=f"category:{k}")
        for k, v in (profiles_doc.get("category_defaults") or {}).items()
    }

    responses = {
        str(k): dict(v)
        for k, v in ((responses_doc or {}).get("findings", responses_doc or {}) or {}).items()
        if isinstance(v, dict)
    }
    catalog: dict[str, dict[str, Any]] = {}
    entries = (catalog_doc or {}).get("findings", [])
    if isinstance(entries, dict):
        entries = [{"finding_id": k, **(v if isinstance(v, dict) else {})} for k, v in entries.items()]
    for entry in entries or []:
        if isinstance(entry, dict) and str(entry.get("finding_id") or "").strip():
            catalog[str(entry["finding_id"]).strip()] = dict(entry)

    return ConfigSnapshot(
        mapping_rules=tuple(mapping_rules),
        priority=priority,
        seed_profiles=seed_profiles,
        category_defaults=category_defaults,
        fallback_profile=fallback,
        rule_findings=rule_findings,
        hard_overrides=hard_overrides,
        responses=responses,
        catalog=catalog,
        diagnostics=tuple(diags),
    )


def load_snapshot(rules_dir: Path) -> ConfigSnapshot:
    return build_snapshot(
        rules_doc=_load_doc(rules_dir, CONFIG_FILES["rules"]),
        profiles_doc=_load_doc(rules_dir, CONFIG_FILES["profiles"]),
        mappings_doc=_load_doc(rules_dir, CONFIG_FILES["mappings"]),
        responses_doc=_load_doc(rules_dir, CONFIG_FILES["responses"]),
        catalog_doc=_load_doc(rules_dir, CONFIG_FILES["catalog"]),
    )


class ConfigStore:
    """
    Process-wide cache of the current ConfigSnapshot.

    A store built without ``rules_dir`` serves a fixed snapshot and ignores
    invalidation.
    """

    def __init__(self, rules_dir: Path | None, snapshot: ConfigSnapshot | None = None) -> None:
        if rules_dir is None and snapshot is None:
            raise ConfigError("config store needs a rules directory or a snapshot")
        self.rules_dir = rules_dir
        self._lock = threading.Lock()
        self._snapshot: ConfigSnapshot | None = snapshot

    @classmethod
    def from_snapshot(cls, snapshot: ConfigSnapshot) -> "ConfigStore":
        return cls(None, snapshot)

    def current(self) -> ConfigSnapshot:
        snap = self._snapshot
        if snap is not None:
            return snap
        with self._lock:
            if self._snapshot is None:
                if self.rules_dir is None:
                    raise ConfigError("config store has neither a snapshot nor a rules directory")
                self._snapshot = load_snapshot(self.rules_dir)
                logger.info("config snapshot loaded dir=%s at=%s", self.rules_dir, self._snapshot.loaded_at)
            return self._snapshot

    def invalidate(self) -> None:
        if self.rules_dir is None:
            return
        with self._lock:
            self._snapshot = None
