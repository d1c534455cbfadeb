from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from .activator import FindingActivator
from .config_store import ConfigSnapshot
from .dimensions import merge_layers, normalize_partial
from .errors import FindingsError
from .models import (
    ActivationResult,
    Dimensions,
    FindingResolution,
    NoOverride,
    OverrideState,
    OverrideVersion,
    PriorityDecision,
    RuleDiagnostic,
    Trigger,
    state_draft,
    state_published,
)

logger = logging.getLogger("finding_engine")


@dataclass(frozen=True)
class EvaluationResult:
    findings: tuple[FindingResolution, ...]
    diagnostics: tuple[RuleDiagnostic, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


class FindingEngine:
    """Activation, layered dimensions and priority against one snapshot."""

    def __init__(self, snapshot: ConfigSnapshot) -> None:
        self.snapshot = snapshot
        self._activator = FindingActivator(snapshot.mapping_rules)

    def activate(self, answers: dict[str, Any]) -> ActivationResult:
        return self._activator.activate(answers)

    def dimension_layers(
        self,
        finding_id: str,
        *,
        published: OverrideVersion | None = None,
        draft: OverrideVersion | None = None,
        preview: bool = False,
    ) -> list[tuple[str, dict[str, Any]]]:
        snap = self.snapshot
        layers = [snap.seed_layer(finding_id)]
        if finding_id in snap.rule_findings:
            layers.append(("rules", snap.rule_findings[finding_id]))
        if finding_id in snap.hard_overrides:
            layers.append(("hard_override", snap.hard_overrides[finding_id]))
        if published is not None:
            layers.append(("published", normalize_partial(published.dimensions, label=f"published:{finding_id}")))
        if preview and draft is not None:
            layers.append(("draft", normalize_partial(draft.dimensions, label=f"draft:{finding_id}")))
        return layers

    def resolve_dimensions(
        self,
        finding_id: str,
        state: OverrideState | None = None,
        *,
        preview: bool = False,
    ) -> tuple[Dimensions, str, int | None, list[tuple[str, dict[str, Any]]]]:
        state = state or NoOverride()
        published = state_published(state)
        draft = state_draft(state)
        layers = self.dimension_layers(finding_id, published=published, draft=draft, preview=preview)
        dims, _ = merge_layers(layers)
        override_version: int | None = None
        source = "seed"
        if preview and draft is not None:
            source, override_version = "override", draft.version
        elif published is not None:
            source, override_version = "override", published.version
        return dims, source, override_version, layers

    def resolve_priority(
        self,
        finding_id: str,
        dims: Dimensions,
        layers: list[tuple[str, dict[str, Any]]],
    ) -> PriorityDecision:
        for name, partial in reversed(layers):
            if name in ("published", "draft") and "priority" in partial:
                return PriorityDecision(bucket=str(partial["priority"]), source="override")
        return self.snapshot.priority.resolve(finding_id, dims)

    def resolve_finding(
        self,
        finding_id: str,
        state: OverrideState | None = None,
        *,
        preview: bool = False,
        triggers: tuple[Trigger, ...] = (),
    ) -> FindingResolution:
        dims, source, version, layers = self.resolve_dimensions(finding_id, state, preview=preview)
        decision = self.resolve_priority(finding_id, dims, layers)
        return FindingResolution(
            finding_id=finding_id,
            dimensions=dims,
            dimensions_source=source,
            override_version=version,
            priority=decision,
            layers=tuple(name for name, _ in layers),
            triggers=triggers,
        )

    def evaluate(
        self,
        answers: dict[str, Any],
        overrides: Mapping[str, OverrideState] | None = None,
        *,
        preview: bool = False,
    ) -> EvaluationResult:
        activation = self.activate(answers)
        diags = list(activation.diagnostics)
        out: list[FindingResolution] = []
        for act in activation.activations:
            state = (overrides or {}).get(act.finding_id)
            try:
                out.append(self.resolve_finding(act.finding_id, state, preview=preview, triggers=act.triggers))
            except FindingsError as e:
                logger.warning("finding skipped finding=%s err=%s", act.finding_id, e)
                diags.append(RuleDiagnostic("", act.finding_id, e.err.code, str(e)))
        return EvaluationResult(findings=tuple(out), diagnostics=tuple(diags))
