from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Iterable

from .conditions import evaluate_with_paths, parse_condition
from .errors import ConfigError
from .facts import flatten_facts
from .models import Activation, ActivationResult, MappingRule, RuleDiagnostic, Trigger

logger = logging.getLogger("finding_activator")


def default_rule_id(item: Any) -> str:
    """Stable id for a rule without one: finding id plus a digest of the condition."""
    if isinstance(item, dict):
        finding_id = str(item.get("finding") or item.get("finding_id") or "").strip()
        material = item.get("condition", item.get("conditions"))
    else:
        finding_id, material = "", item
    digest = hashlib.sha1(json.dumps(material, sort_keys=True, default=str).encode("utf-8")).hexdigest()[:10]
    return f"{finding_id or 'rule'}#{digest}"


def parse_mapping_rules(doc: Any) -> tuple[list[MappingRule], list[RuleDiagnostic]]:
    """Parse ``rules: [...]`` entries; malformed entries become diagnostics."""
    items = doc.get("rules", []) if isinstance(doc, dict) else doc
    if not isinstance(items, list):
        return [], [RuleDiagnostic("", "", "FINDINGS_001_CONFIG_INVALID", "mapping rules must be a list")]
    rules: list[MappingRule] = []
    diags: list[RuleDiagnostic] = []
    for item in items:
        rule_id = default_rule_id(item)
        finding_id = ""
        try:
            if not isinstance(item, dict):
                raise ConfigError("mapping rule must be an object")
            rule_id = str(item.get("id") or rule_id)
            finding_id = str(item.get("finding") or item.get("finding_id") or "").strip()
            if not finding_id:
                raise ConfigError("mapping rule has no finding")
            if "condition" in item:
                cond = parse_condition(item["condition"])
            elif isinstance(item.get("conditions"), dict):
                cond = parse_condition(item["conditions"])
            else:
                raise ConfigError("mapping rule has no condition")
            rules.append(MappingRule(rule_id=rule_id, finding_id=finding_id, condition=cond))
        except ConfigError as e:
            logger.warning("mapping rule skipped rule=%s err=%s", rule_id, e)
            diags.append(RuleDiagnostic(rule_id, finding_id, e.err.code, str(e)))
    return rules, diags


class FindingActivator:
    def __init__(self, rules: Iterable[MappingRule]) -> None:
        self.rules = tuple(rules)

    def activate(self, answers: dict[str, Any]) -> ActivationResult:
        facts = flatten_facts(answers)
        hits: dict[str, list[Trigger]] = {}
        diags: list[RuleDiagnostic] = []
        for rule in self.rules:
            try:
                ok, paths = evaluate_with_paths(rule.condition, facts)
            except ConfigError as e:
                logger.warning("mapping rule skipped rule=%s finding=%s err=%s", rule.rule_id, rule.finding_id, e)
                diags.append(RuleDiagnostic(rule.rule_id, rule.finding_id, e.err.code, str(e)))
                continue
            if ok:
                hits.setdefault(rule.finding_id, []).append(Trigger(rule_id=rule.rule_id, paths=paths))

        activations = tuple(
            Activation(
                finding_id=fid,
                triggers=tuple(sorted(set(triggers), key=lambda t: (t.rule_id, t.paths))),
            )
            for fid, triggers in sorted(hits.items())
        )
        diags.sort(key=lambda d: (d.rule_id, d.finding_id))
        return ActivationResult(activations=activations, diagnostics=tuple(diags))
