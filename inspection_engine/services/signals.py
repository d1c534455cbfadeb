from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from inspection_engine.rules.facts import extract_value, get_path

# Candidate upstream paths per canonical signal, first non-empty wins.
# Intake snapshot beats lead/client data which beats job-level fields.
SIGNAL_PATHS: dict[str, tuple[str, ...]] = {
    "profile": (
        "snapshot_intake.profile",
        "snapshot.profile",
        "lead.profile",
        "client.profile",
        "profile",
        "job.profile",
    ),
    "profileDeclared": (
        "snapshot_intake.profileDeclared",
        "snapshot_intake.profile_declared",
        "snapshot.profileDeclared",
        "lead.profileDeclared",
        "profileDeclared",
    ),
    "occupancyType": (
        "snapshot_intake.occupancyType",
        "snapshot_intake.occupancy_type",
        "snapshot.occupancyType",
        "snapshot.occupancy_type",
        "lead.occupancyType",
        "lead.occupancy_type",
        "client.occupancyType",
        "client.occupancy_type",
        "occupancyType",
        "occupancy_type",
        "job.occupancyType",
        "job.occupancy_type",
    ),
    "primaryGoal": (
        "snapshot_intake.primaryGoal",
        "snapshot_intake.focus",
        "snapshot.primaryGoal",
        "snapshot.focus",
        "lead.primaryGoal",
        "lead.focus",
        "client.primaryGoal",
        "client.focus",
        "primaryGoal",
        "focus",
        "job.primaryGoal",
        "job.primary_goal",
    ),
    "billBand": (
        "snapshot_intake.billBand",
        "snapshot_intake.bill_band",
        "snapshot.billBand",
        "lead.billBand",
        "billBand",
    ),
    "billUploadWilling": (
        "snapshot_intake.billUploadWilling",
        "snapshot.billUploadWilling",
        "lead.billUploadWilling",
        "billUploadWilling",
    ),
    "allElectricNoGas": (
        "snapshot_intake.allElectricNoGas",
        "snapshot.allElectricNoGas",
        "lead.allElectricNoGas",
        "allElectricNoGas",
    ),
    "tenantChangeSoon": (
        "snapshot_intake.tenantChangeSoon",
        "snapshot.tenantChangeSoon",
        "lead.tenantChangeSoon",
        "tenantChangeSoon",
    ),
    "managerMode": (
        "snapshot_intake.managerMode",
        "snapshot_intake.investorManagerMode",
        "snapshot.managerMode",
        "lead.managerMode",
        "managerMode",
    ),
    "portfolioSizeBand": (
        "snapshot_intake.portfolioSizeBand",
        "snapshot.portfolioSizeBand",
        "lead.portfolioSizeBand",
        "portfolioSizeBand",
    ),
    "hasEv": (
        "snapshot_intake.hasEv",
        "snapshot.hasEv",
        "lead.hasEv",
        "client.hasEv",
        "ev_charger_present",
        "job.ev",
        "loads.ev_charger",
    ),
    "hasSolar": (
        "snapshot_intake.hasSolar",
        "snapshot.hasSolar",
        "lead.hasSolar",
        "client.hasSolar",
        "solar_present",
        "job.solar",
        "loads.solar",
    ),
    "hasBattery": (
        "snapshot_intake.hasBattery",
        "snapshot.hasBattery",
        "lead.hasBattery",
        "client.hasBattery",
        "battery_present",
        "job.battery",
        "loads.battery",
    ),
}

LIST_PATHS: dict[str, tuple[str, ...]] = {
    "devices": ("snapshot_intake.devices", "snapshot.devices", "lead.devices", "devices"),
    "symptoms": ("snapshot_intake.symptoms", "snapshot.symptoms", "lead.symptoms", "symptoms"),
}

_OWNER = r"(owner_occupied|owner-occupied|owner occupied|owneroccupied|owner)"
_INVESTOR = r"(investment|investor|landlord)"
_TENANT = r"(tenant|renter|renting)"

# Ordered (pattern, canonical value) tables; first search hit wins.
OCCUPANCY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(_OWNER), "owner_occupied"),
    (re.compile(_INVESTOR), "investment"),
    (re.compile(_TENANT), "tenant"),
)
PROFILE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(_INVESTOR), "investor"),
    (re.compile(_OWNER), "owner"),
    (re.compile(_TENANT), "tenant"),
)
PROFILE_DECLARED_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(_INVESTOR), "investor"),
    (re.compile(_OWNER), "owner"),
    (re.compile(r"(unsure|both|not sure|unknown)"), "unsure"),
)
GOAL_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^risk$"), "risk"),
    (re.compile(r"^energy$"), "energy"),
    (re.compile(r"^balanced$"), "balanced"),
    (re.compile(r"(reduce_bill|reduce-bill|bill)"), "reduce_bill"),
    (re.compile(r"(reduce_risk|reduce-risk)"), "reduce_risk"),
    (re.compile(r"(plan_upgrade|plan-upgrade|upgrade)"), "plan_upgrade"),
)

_TRUE_RE = re.compile(r"^(true|yes|1|on|present|installed)$", re.IGNORECASE)
_FALSE_RE = re.compile(r"^(false|no|0|off|none)$", re.IGNORECASE)
_OBSERVED_RE = re.compile(r"(test_data|measured|inspection|observed)", re.IGNORECASE)
_LIST_SPLIT = re.compile(r"[,\n;|]")


def _match(value: str | None, table: tuple[tuple[re.Pattern[str], str], ...]) -> str | None:
    s = (value or "").strip().lower()
    if not s:
        return None
    for pattern, canonical in table:
        if pattern.search(s):
            return canonical
    return None


def normalize_occupancy(value: str | None) -> str | None:
    return _match(value, OCCUPANCY_PATTERNS)


def normalize_profile(value: str | None) -> str | None:
    return _match(value, PROFILE_PATTERNS)


def normalize_profile_declared(value: str | None) -> str | None:
    return _match(value, PROFILE_DECLARED_PATTERNS)


def normalize_goal(value: str | None) -> str | None:
    return _match(value, GOAL_PATTERNS)


def parse_bool(value: str | None) -> bool | None:
    if not value:
        return None
    if _TRUE_RE.match(value):
        return True
    if _FALSE_RE.match(value):
        return False
    return None


def _item_text(item: Any) -> str:
    v = extract_value(item)
    return "" if v is None else str(v).strip()


def normalize_string_list(value: Any) -> list[str] | None:
    if isinstance(value, list):
        items = [_item_text(x) for x in value]
    elif isinstance(value, str):
        items = [x.strip() for x in _LIST_SPLIT.split(value)]
    else:
        return None
    out: list[str] = []
    for item in items:
        if item and item not in out:
            out.append(item)
    return out or None


def classify_source(path: str) -> str:
    return "observed" if _OBSERVED_RE.search(path) else "declared"


def pick_first(raw: dict[str, Any], paths: tuple[str, ...]) -> tuple[str | None, str | None]:
    for p in paths:
        found, node = get_path(raw, p)
        if not found:
            continue
        v = extract_value(node)
        if v is None:
            continue
        s = str(v).strip()
        if isinstance(v, bool):
            s = "true" if v else "false"
        if s:
            return s, p
    return None, None


def _first_present(raw: dict[str, Any], paths: tuple[str, ...]) -> tuple[Any, str | None]:
    for p in paths:
        found, node = get_path(raw, p)
        if found and node is not None:
            return node, p
    return None, None


@dataclass(frozen=True)
class SnapshotSignals:
    occupancyType: str | None = None
    profile: str | None = None
    profileDeclared: str | None = None
    primaryGoal: str | None = None
    billBand: str | None = None
    billUploadWilling: bool | None = None
    allElectricNoGas: bool | None = None
    tenantChangeSoon: bool | None = None
    managerMode: str | None = None
    portfolioSizeBand: str | None = None
    devices: tuple[str, ...] | None = None
    symptoms: tuple[str, ...] | None = None
    hasEv: bool | None = None
    hasSolar: bool | None = None
    hasBattery: bool | None = None
    coverage: str = "unknown"
    sources: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "SnapshotSignals":
        """Build from an already-normalized mapping (API callers, tests)."""
        if not isinstance(data, dict):
            return cls()
        kwargs: dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            if name not in data or data[name] is None:
                continue
            v = data[name]
            if name in ("devices", "symptoms"):
                items = normalize_string_list(v)
                v = tuple(items) if items else None
            elif name == "sources":
                v = {str(k): str(p) for k, p in v.items()} if isinstance(v, dict) else {}
            kwargs[name] = v
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in self.__dataclass_fields__:
            v = getattr(self, name)
            if v is None:
                continue
            if isinstance(v, tuple):
                v = list(v)
            elif isinstance(v, dict):
                v = dict(v)
            out[name] = v
        return out


def _has_token(items: list[str] | None, token: str) -> bool:
    return bool(items) and any(i.lower() == token for i in items or [])


def extract_snapshot_signals(raw: Any) -> SnapshotSignals:
    """
    Normalize heterogeneous intake data into canonical report signals.

    Every populated signal records the upstream path it came from in
    ``sources``; ``coverage`` is ``observed`` when any of those paths looks
    like measured/inspection data.
    """
    if not isinstance(raw, dict):
        return SnapshotSignals()

    picked: dict[str, str | None] = {}
    sources: dict[str, str] = {}
    for name, paths in SIGNAL_PATHS.items():
        value, path = pick_first(raw, paths)
        picked[name] = value
        if path:
            sources[name] = path

    lists: dict[str, list[str] | None] = {}
    for name, paths in LIST_PATHS.items():
        node, path = _first_present(raw, paths)
        lists[name] = normalize_string_list(node)
        if path:
            sources[name] = path

    kinds = {classify_source(p) for p in sources.values()}
    coverage = "observed" if "observed" in kinds else "declared" if kinds else "unknown"

    devices = lists["devices"]
    has_ev = parse_bool(picked["hasEv"])
    has_solar = parse_bool(picked["hasSolar"])
    has_battery = parse_bool(picked["hasBattery"])
    return SnapshotSignals(
        occupancyType=normalize_occupancy(picked["occupancyType"]),
        profile=normalize_profile(picked["profile"]),
        profileDeclared=normalize_profile_declared(picked["profileDeclared"]),
        primaryGoal=normalize_goal(picked["primaryGoal"]),
        billBand=picked["billBand"],
        billUploadWilling=parse_bool(picked["billUploadWilling"]),
        allElectricNoGas=parse_bool(picked["allElectricNoGas"]),
        tenantChangeSoon=parse_bool(picked["tenantChangeSoon"]),
        managerMode=picked["managerMode"],
        portfolioSizeBand=picked["portfolioSizeBand"],
        devices=tuple(devices) if devices else None,
        symptoms=tuple(lists["symptoms"]) if lists["symptoms"] else None,
        hasEv=has_ev if has_ev is not None else _has_token(devices, "ev"),
        hasSolar=has_solar if has_solar is not None else _has_token(devices, "solar"),
        hasBattery=has_battery if has_battery is not None else _has_token(devices, "battery"),
        coverage=coverage,
        sources=sources,
    )
