from __future__ import annotations

from dataclasses import dataclass

from inspection_engine.report.contracts import MODULE_IDS


@dataclass(frozen=True)
class ReportProfile:
    id: str
    name: str
    default_modules: tuple[str, ...]
    summary_weights: dict[str, int]


REPORT_PROFILES: dict[str, ReportProfile] = {
    "investor": ReportProfile(
        id="investor",
        name="Investor / Landlord",
        default_modules=("safety", "capacity"),
        summary_weights={"risk": 5, "capex": 5, "optimization": 2, "transparency": 2},
    ),
    "owner": ReportProfile(
        id="owner",
        name="Owner-occupier",
        default_modules=("safety", "capacity", "energy"),
        summary_weights={"risk": 3, "capex": 3, "optimization": 5, "transparency": 3},
    ),
    "tenant": ReportProfile(
        id="tenant",
        name="Tenant",
        default_modules=("safety", "capacity"),
        summary_weights={"risk": 3, "capex": 1, "optimization": 2, "transparency": 5},
    ),
}

DEFAULT_PROFILE = "investor"

# Owners read optimisation first; investors and tenants read risk first.
_MODULE_ORDER = {
    "owner": ("energy", "capacity", "safety", "lifecycle"),
    "tenant": ("safety", "capacity", "lifecycle", "energy"),
    "investor": ("safety", "capacity", "lifecycle", "energy"),
}

DENSITY_LIMITS = {"compact": 8, "standard": 16, "detailed": 24}


def resolve_profile(profile_id: str | None) -> ReportProfile:
    key = str(profile_id or "").strip().lower()
    return REPORT_PROFILES.get(key, REPORT_PROFILES[DEFAULT_PROFILE])


def module_order(profile_id: str) -> tuple[str, ...]:
    return _MODULE_ORDER.get(profile_id, _MODULE_ORDER[DEFAULT_PROFILE])


def module_rank(profile_id: str, module_id: str) -> int:
    order = module_order(profile_id)
    return order.index(module_id) if module_id in order else 99


def resolve_modules(profile_id: str, requested: list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    """Requested modules (or the profile defaults) restricted to known modules, first mention wins."""
    base = list(requested) if requested else list(resolve_profile(profile_id).default_modules)
    out: list[str] = []
    for m in base:
        key = str(m or "").strip().lower()
        if key in MODULE_IDS and key not in out:
            out.append(key)
    return tuple(out)


def priority_rank(priority: str | None) -> int:
    p = str(priority or "").upper()
    if p in ("IMMEDIATE", "URGENT"):
        return 1
    if p in ("RECOMMENDED", "RECOMMENDED_0_3_MONTHS"):
        return 2
    if p in ("PLAN", "PLAN_MONITOR"):
        return 3
    return 99


def density_limit(density: str | None) -> int:
    return DENSITY_LIMITS.get(str(density or "standard"), DENSITY_LIMITS["standard"])
