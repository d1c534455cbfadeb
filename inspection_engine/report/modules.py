from __future__ import annotations

from inspection_engine.report.contracts import ContentContribution, FindingBlock, ModuleOutput, ReportRequest
from inspection_engine.report.mappers import EnergySignals, LifecycleSignals, map_energy_input, map_lifecycle_input

MODULE_APPLIED = "APPLIED"
MODULE_NOT_SELECTED = "MODULE_NOT_SELECTED"
MODULE_NOT_APPLICABLE = "MODULE_NOT_APPLICABLE"
MODULE_NO_EVIDENCE = "MODULE_NO_EVIDENCE"


class ReportModule:
    id = ""
    name = ""

    def applicability(self, request: ReportRequest) -> str:
        """``MODULE_APPLIED`` or the reason the module stays silent."""
        return MODULE_APPLIED if self.id in request.modules else MODULE_NOT_SELECTED

    def compute(self, request: ReportRequest) -> ModuleOutput:
        return ModuleOutput()


class SafetyModule(ReportModule):
    id = "safety"
    name = "Safety Module"


class CapacityModule(ReportModule):
    id = "capacity"
    name = "Capacity Module"


class EnergyModule(ReportModule):
    """Energy-use structure content; needs explicit selection and verifiable inputs."""

    id = "energy"
    name = "Energy Module"

    def applicability(self, request: ReportRequest) -> str:
        if not request.explicit_modules or self.id not in request.modules:
            return MODULE_NOT_SELECTED
        if request.profile not in ("owner", "investor"):
            return MODULE_NOT_APPLICABLE
        if not map_energy_input(request.raw).has_evidence:
            return MODULE_NO_EVIDENCE
        return MODULE_APPLIED

    def compute(self, request: ReportRequest) -> ModuleOutput:
        s = map_energy_input(request.raw)
        if not s.has_evidence:
            return ModuleOutput()
        return ModuleOutput(
            executive_summary=(
                ContentContribution(
                    key=f"energy.exec.{request.profile}",
                    text=self._executive(request.profile, s),
                    module_id=self.id,
                    sort_key="energy.exec.001",
                ),
            ),
            what_this_means=(
                ContentContribution(
                    key=f"energy.wtm.{request.profile}",
                    text=self._what_this_means(request.profile, s),
                    module_id=self.id,
                    sort_key="energy.wtm.001",
                ),
            ),
            capex_rows=self._capex(s),
            findings=self._findings(s),
        )

    @staticmethod
    def _executive(profile: str, s: EnergySignals) -> str:
        refs = ", ".join(s.evidence_refs[:3])
        if profile == "owner":
            return (
                f"Energy-use structure signals were captured from verifiable inputs ({refs}). "
                "This supports staged optimisation planning rather than reactive electrical decisions."
            )
        if profile == "tenant":
            return (
                f"Energy-related operating signals were recorded ({refs}), "
                "improving usage transparency for day-to-day electrical decisions."
            )
        return (
            f"Energy and capacity indicators were captured from verifiable inputs ({refs}), "
            "supporting forward planning for electrical upgrades and provisioning."
        )

    @staticmethod
    def _what_this_means(profile: str, s: EnergySignals) -> str:
        if s.high_load_devices:
            load_note = f"High-load devices noted: {', '.join(s.high_load_devices)}."
        else:
            load_note = "No explicit high-load device list was provided."
        if profile == "owner":
            return (
                f"{load_note} This indicates optimisation opportunities can be prioritised "
                "with evidence-first sequencing, without assuming immediate defects."
            )
        if profile == "tenant":
            return (
                f"{load_note} This supports clearer communication on normal usage patterns "
                "and when to escalate to property management."
            )
        return (
            f"{load_note} This supports capacity-aware CapEx planning, especially where "
            "future load growth (e.g. EV/air conditioning) is expected."
        )

    def _capex(self, s: EnergySignals) -> tuple[ContentContribution, ...]:
        rows: list[ContentContribution] = []
        if s.main_switch_a or s.clamp_load_a:
            text = "| Year 1-2 | Capacity headroom review and load balancing | AUD $1,000 - $4,000 |"
            rows.append(
                ContentContribution(
                    key=text,
                    text=text,
                    module_id=self.id,
                    sort_key="energy.capex.001",
                    row_key="capex:energy:capacity-headroom-review",
                    priority="RECOMMENDED_0_3_MONTHS",
                )
            )
        if s.has_future_assets:
            text = "| Year 2-3 | Future-ready supply pathway for EV/Solar/Battery integration | AUD $2,000 - $8,000 |"
            rows.append(
                ContentContribution(
                    key=text,
                    text=text,
                    module_id=self.id,
                    sort_key="energy.capex.002",
                    row_key="capex:energy:future-ready-supply-pathway",
                    priority="PLAN_MONITOR",
                )
            )
        return tuple(rows)

    def _findings(self, s: EnergySignals) -> tuple[FindingBlock, ...]:
        out: list[FindingBlock] = []
        refs = s.evidence_refs[:4]
        if s.main_switch_a or s.clamp_load_a or s.phase_supply:
            out.append(
                FindingBlock(
                    key="energy.finding.capacity-structure",
                    id="ENERGY_CAPACITY_STRUCTURE",
                    module_id=self.id,
                    title="Capacity structure and demand trend",
                    priority="RECOMMENDED_0_3_MONTHS",
                    rationale=(
                        "Measured/recorded supply and load indicators suggest a structured capacity "
                        "review is beneficial before future load increases."
                    ),
                    evidence_refs=refs,
                    html=f"<p>Supply phase: {s.phase_supply or 'not recorded'}; "
                    f"main switch: {s.main_switch_a or 'not recorded'}; "
                    f"load current: {s.clamp_load_a or 'not recorded'}.</p>",
                    score=62,
                    sort_key="energy.finding.001",
                    evidence_coverage=s.evidence_coverage,
                )
            )
        if s.has_future_assets or s.high_load_devices:
            out.append(
                FindingBlock(
                    key="energy.finding.future-load-pathway",
                    id="ENERGY_FUTURE_LOAD_PATHWAY",
                    module_id=self.id,
                    title="Future load pathway planning",
                    priority="PLAN_MONITOR",
                    rationale=(
                        "Observed load profile suggests value in planning future integration pathways "
                        "rather than handling upgrades ad hoc."
                    ),
                    evidence_refs=refs,
                    html="<p>Future load pathway indicators were recorded during assessment.</p>",
                    score=48,
                    sort_key="energy.finding.002",
                    evidence_coverage=s.evidence_coverage,
                )
            )
        return tuple(out)


_LIFECYCLE_WTM: dict[str, tuple[str, str]] = {
    "owner": (
        "- Align major appliance additions (e.g. air conditioning or EV charging) with a pre-upgrade condition review window.",
        "- If recurring trips, thermal stress, or scorch indicators appear, move from planning to near-term review.",
    ),
    "tenant": (
        "- Keep usage observations transparent; report repeated tripping, heat/smell events, or visible deterioration to property management.",
        "- Trigger a formal review if conditions shift from occasional inconvenience to repeated interruptions.",
    ),
    "investor": (
        "- Plan a lifecycle review window (typically 6-12 months for legacy indicators) to avoid reactive upgrade decisions.",
        "- Trigger earlier reassessment if trip frequency increases, thermal stress appears, or legacy switchboard indicators worsen.",
    ),
}


class LifecycleModule(ReportModule):
    """Asset-age and replacement-window content driven by observed lifecycle signals."""

    id = "lifecycle"
    name = "Lifecycle Module"

    def applicability(self, request: ReportRequest) -> str:
        if not request.explicit_modules or self.id not in request.modules:
            return MODULE_NOT_SELECTED
        if not map_lifecycle_input(request.raw).meaningful:
            return MODULE_NO_EVIDENCE
        return MODULE_APPLIED

    def compute(self, request: ReportRequest) -> ModuleOutput:
        s = map_lifecycle_input(request.raw)
        if not s.meaningful:
            return ModuleOutput()
        return ModuleOutput(
            executive_summary=self._executive(request.profile, s),
            what_this_means=self._what_this_means(request.profile),
            capex_rows=self._capex(s),
            findings=self._findings(s),
        )

    def _line(self, key: str, text: str, sort_key: str, **kw) -> ContentContribution:
        return ContentContribution(key=key, text=text, module_id=self.id, sort_key=sort_key, **kw)

    def _executive(self, profile: str, s: LifecycleSignals) -> tuple[ContentContribution, ...]:
        out: list[ContentContribution] = []
        if s.legacy_age:
            out.append(
                self._line(
                    "lifecycle.exec.age-window",
                    "Electrical assets may be approaching end-of-life; a condition review window of 6-12 months is advisable.",
                    "lifecycle.exec.001",
                )
            )
        if s.fused_board:
            out.append(
                self._line(
                    "lifecycle.exec.legacy-switchboard-window",
                    "Switchboard technology indicates legacy-era components; upgrade planning within 0-12 months "
                    "is advisable, subject to site validation.",
                    "lifecycle.exec.002",
                    allow_duplicates=True,
                )
            )
        if s.rcd_gap:
            out.append(
                self._line(
                    f"lifecycle.exec.rcd-{s.rcd_coverage}",
                    "RCD coverage profile is a lifecycle risk multiplier; staged uplift planning is advisable "
                    "with conditional trigger-based review.",
                    "lifecycle.exec.003",
                )
            )
        if not out and profile == "tenant":
            out.append(
                self._line(
                    "lifecycle.exec.tenant-transparency",
                    "Lifecycle indicators are currently limited; maintain transparent records and trigger review "
                    "when operating conditions change.",
                    "lifecycle.exec.999",
                )
            )
        return tuple(out)

    def _what_this_means(self, profile: str) -> tuple[ContentContribution, ...]:
        key = profile if profile in _LIFECYCLE_WTM else "investor"
        return tuple(
            self._line(f"lifecycle.wtm.{key}.{i}", text, f"lifecycle.wtm.{i:03d}")
            for i, text in enumerate(_LIFECYCLE_WTM[key], start=1)
        )

    def _capex(self, s: LifecycleSignals) -> tuple[ContentContribution, ...]:
        rows: list[tuple[bool, str, str]] = [
            (
                s.fused_board or s.switchboard_type == "old_cb",
                "| Year 0-1 | Switchboard modernisation planning (scope dependent) | TBD |",
                "capex:lifecycle:switchboard-modernisation-planning",
            ),
            (
                s.rcd_gap,
                "| Year 1-2 | RCD/RCBO coverage uplift planning | TBD |",
                "capex:lifecycle:rcd-rcbo-coverage-uplift",
            ),
            (
                s.legacy_age,
                "| Year 3-5 | Legacy wiring refresh pathway review (condition dependent) | TBD |",
                "capex:lifecycle:legacy-wiring-refresh-pathway",
            ),
        ]
        return tuple(
            self._line(text, text, f"lifecycle.capex.{i:03d}", row_key=row_key)
            for i, (hit, text, row_key) in enumerate(rows, start=1)
            if hit
        )

    def _block(self, s: LifecycleSignals, **kw) -> FindingBlock:
        return FindingBlock(
            module_id=self.id,
            evidence_refs=s.evidence_refs[:6],
            photos=s.evidence_refs[:3],
            evidence_coverage=s.evidence_coverage,
            **kw,
        )

    def _findings(self, s: LifecycleSignals) -> tuple[FindingBlock, ...]:
        out: list[FindingBlock] = []
        if s.switchboard_type != "unknown":
            out.append(
                self._block(
                    s,
                    key="lifecycle.finding.legacy-switchboard",
                    id="LIFECYCLE_LEGACY_SWITCHBOARD",
                    title="Legacy-era switchboard indicators",
                    priority="RECOMMENDED_0_3_MONTHS" if s.fused_board else "PLAN_MONITOR",
                    rationale=(
                        "Observed switchboard characteristics indicate legacy component age. If thermal signs, "
                        "repeated trips, or insulation deterioration appear, then priority should escalate to "
                        "near-term review."
                    ),
                    html=(
                        "<h4>Asset Component</h4><p>Main switchboard and protective devices</p>"
                        f"<h4>Observed Condition</h4><p>Switchboard type observed: {s.switchboard_type}.</p>"
                        "<h4>Risk Interpretation</h4><p>If additional stress indicators emerge, then lifecycle "
                        "risk can move from planned to near-term action.</p>"
                    ),
                    score=66,
                    sort_key="lifecycle.finding.001",
                )
            )
        if s.rcd_gap:
            out.append(
                self._block(
                    s,
                    key="lifecycle.finding.rcd-coverage-gap",
                    id="LIFECYCLE_RCD_COVERAGE_GAP",
                    title="RCD coverage gaps as lifecycle risk multiplier",
                    priority="RECOMMENDED_0_3_MONTHS",
                    rationale=(
                        "Current RCD coverage indicates staged modernisation need. If additional high-load usage "
                        "or repeated trip events occur, then earlier intervention planning is advisable."
                    ),
                    html=(
                        "<h4>Asset Component</h4><p>Residual current protection coverage</p>"
                        f"<h4>Observed Condition</h4><p>RCD coverage observed as {s.rcd_coverage}.</p>"
                        "<h4>Risk Interpretation</h4><p>If fault exposure context changes, then the lifecycle "
                        "planning window should tighten.</p>"
                    ),
                    score=64,
                    sort_key="lifecycle.finding.002",
                )
            )
        if s.visible_thermal_stress is True or s.mixed_wiring_indicators is True:
            thermal = "unknown" if s.visible_thermal_stress is None else str(s.visible_thermal_stress).lower()
            mixed = "unknown" if s.mixed_wiring_indicators is None else str(s.mixed_wiring_indicators).lower()
            out.append(
                self._block(
                    s,
                    key="lifecycle.finding.thermal-or-mixed-trigger",
                    id="LIFECYCLE_THERMAL_OR_MIXED_TRIGGER",
                    title="Thermal stress or mixed-era wiring trigger",
                    priority="RECOMMENDED_0_3_MONTHS",
                    rationale=(
                        "Observed stress/mixed-era indicators suggest reduced planning flexibility. If these "
                        "indicators recur or intensify, then the review window should move to early action."
                    ),
                    html=(
                        "<h4>Asset Component</h4><p>Wiring condition and thermal visual indicators</p>"
                        f"<h4>Observed Condition</h4><p>Visible thermal stress: {thermal}; "
                        f"mixed wiring indicators: {mixed}.</p>"
                    ),
                    score=68,
                    sort_key="lifecycle.finding.003",
                )
            )
        return tuple(out[:5])


MODULE_REGISTRY: dict[str, ReportModule] = {
    m.id: m for m in (SafetyModule(), CapacityModule(), EnergyModule(), LifecycleModule())
}
