from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from inspection_engine.report.contracts import MODULE_IDS, PROFILE_IDS
from inspection_engine.services.signals import SnapshotSignals, normalize_occupancy, normalize_profile

DEFAULT_WEIGHTS = {"energy": 30, "lifecycle": 70}
INVESTOR_TENANT_CHANGE_WEIGHTS = {"energy": 35, "lifecycle": 65}

# occupancy -> (profile, modules, weights)
OCCUPANCY_DEFAULTS: dict[str, tuple[str, tuple[str, ...], dict[str, int]]] = {
    "investment": ("investor", ("energy", "lifecycle"), {"energy": 30, "lifecycle": 70}),
    "owner_occupied": ("owner", ("energy", "lifecycle"), {"energy": 70, "lifecycle": 30}),
    "tenant": ("tenant", ("energy",), {"energy": 80, "lifecycle": 20}),
}

ENERGY_GOALS = ("energy", "reduce_bill")
RISK_GOALS = ("risk", "reduce_risk")
BALANCED_GOALS = ("balanced", "plan_upgrade")


@dataclass(frozen=True)
class AutoSelection:
    profile: str | None = None
    modules: tuple[str, ...] = ()
    weights: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))


@dataclass(frozen=True)
class ReportSelectionResult:
    profile: str
    modules: tuple[str, ...]
    weights: dict[str, int]
    source: str
    snapshot_signals: SnapshotSignals

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile,
            "modules": list(self.modules),
            "weights": dict(self.weights),
            "source": self.source,
            "snapshotSignals": self.snapshot_signals.to_dict(),
        }


def derive_auto_selection(occupancy: str | None, goal: str | None) -> AutoSelection:
    """Occupancy picks profile/modules/weights; the goal then re-weights."""
    base = OCCUPANCY_DEFAULTS.get(occupancy or "")
    if base is None:
        profile, modules, weights = None, (), dict(DEFAULT_WEIGHTS)
    else:
        profile, modules, weights = base[0], base[1], dict(base[2])

    if goal in RISK_GOALS and profile == "owner":
        weights = {"energy": 50, "lifecycle": 50}
    elif goal in ENERGY_GOALS:
        weights = {"energy": 80, "lifecycle": 20}
    elif goal in BALANCED_GOALS:
        weights = {"energy": 60, "lifecycle": 40}
    return AutoSelection(profile=profile, modules=modules, weights=weights)


def _override_profile(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    return key if key in PROFILE_IDS else normalize_profile(key)


def _override_modules(value: Any) -> tuple[str, ...] | None:
    if not isinstance(value, (list, tuple)):
        return None
    out: list[str] = []
    for m in value:
        key = str(m or "").strip().lower()
        if key in MODULE_IDS and key not in out:
            out.append(key)
    return tuple(out)


def _coerce_signals(signals: Any) -> SnapshotSignals:
    if isinstance(signals, SnapshotSignals):
        return signals
    return SnapshotSignals.from_dict(signals)


def resolve_report_selection(signals: Any, overrides: Mapping[str, Any] | None = None) -> ReportSelectionResult:
    """
    Pick the report profile, module set and section weights.

    Precedence: request overrides, then the occupancy/goal lookup, then the
    legacy ``investor`` default. An explicit module list is used as given
    and never augmented.
    """
    sig = _coerce_signals(signals)
    overrides = overrides or {}
    override_profile = _override_profile(overrides.get("profile"))
    override_modules = _override_modules(overrides.get("modules"))

    occupancy = sig.occupancyType or normalize_occupancy(sig.profile)
    goal = sig.primaryGoal
    auto = derive_auto_selection(occupancy, goal)

    if override_profile:
        profile = override_profile
    elif auto.profile:
        profile = auto.profile
    elif sig.profile in ("owner", "tenant"):
        profile = sig.profile
    else:
        profile = "investor"

    if override_modules is not None:
        modules = override_modules
    else:
        modules = auto.modules
        if "energy" not in modules and (profile == "owner" or goal in ENERGY_GOALS):
            modules = modules + ("energy",)

    weights = dict(auto.weights)
    if (
        override_profile is None
        and profile == "investor"
        and sig.tenantChangeSoon is True
        and goal not in ENERGY_GOALS
    ):
        weights = dict(INVESTOR_TENANT_CHANGE_WEIGHTS)

    if override_profile or override_modules is not None:
        source = "override"
    elif auto.profile or auto.modules:
        source = "snapshot"
    else:
        source = "legacy_fallback"

    return ReportSelectionResult(
        profile=profile,
        modules=tuple(modules),
        weights=weights,
        source=source,
        snapshot_signals=sig,
    )
