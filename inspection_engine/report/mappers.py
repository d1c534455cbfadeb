from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from inspection_engine.rules.facts import extract_value, get_path, unwrap_answer

ENERGY_PATHS: dict[str, tuple[str, ...]] = {
    "phase": (
        "job.supply_phase",
        "electrical.supply.phase",
        "supply.phase",
        "test_data.measured.phase",
        "measured.phase",
    ),
    "voltage": (
        "electrical.supply.voltage",
        "supply.voltage",
        "test_data.measured.voltage",
        "measured.voltage",
    ),
    "main_switch": (
        "switchboard.main_switch_rating",
        "main_switch.rating",
        "job.main_switch_rating",
        "test_data.measured.main_switch_rating",
        "measured.main_switch_rating",
    ),
    "clamp_load": (
        "test_data.measured.load_current",
        "measured.load_current",
        "measured.clamp_current",
        "electrical.load_current",
    ),
    "high_load": (
        "high_load_devices",
        "loads.high_demand",
        "test_data.measured.high_load_devices",
        "measured.high_load_devices",
    ),
    "ev": ("ev_charger_present", "job.ev", "loads.ev_charger"),
    "solar": ("solar_present", "job.solar", "loads.solar"),
    "battery": ("battery_present", "job.battery", "loads.battery"),
}

LIFECYCLE_PATHS: dict[str, tuple[str, ...]] = {
    "age_band": (
        "job.property_age_band",
        "property.age_band",
        "property.age",
        "lifecycle.property_age_band",
    ),
    "switchboard": (
        "switchboard.type",
        "electrical.switchboard.type",
        "lifecycle.switchboard_type",
    ),
    "rcd": (
        "test_data.rcd_tests.coverage",
        "rcd_coverage",
        "lifecycle.rcd_coverage",
    ),
    "thermal": (
        "visible_thermal_stress",
        "lifecycle.visible_thermal_stress",
        "test_data.thermal.visible_stress",
    ),
    "mixed": (
        "mixed_wiring_indicators",
        "lifecycle.mixed_wiring_indicators",
        "electrical.mixed_wiring_indicators",
    ),
}

LIFECYCLE_EVIDENCE_PATHS = (
    "lifecycle.evidence_refs",
    "lifecycle.photo_ids",
    "photo_ids",
    "test_data.lifecycle.photo_ids",
)

_PRESENT_RE = re.compile(r"^(true|yes|1|present|installed)$", re.IGNORECASE)
_MEASURED_RE = re.compile(r"(measured|test_data\.measured)")
_DECLARED_RE = re.compile(r"(job\.|loads\.)")
_DEVICE_SPLIT = re.compile(r"[,;/|]")


def first_value(raw: dict[str, Any], paths: tuple[str, ...]) -> tuple[str | None, str | None]:
    """First non-blank primitive along ``paths`` as ``(text, path)``."""
    for p in paths:
        found, node = get_path(raw, p)
        if not found:
            continue
        v = extract_value(node)
        if v is None:
            continue
        s = ("true" if v else "false") if isinstance(v, bool) else str(v).strip()
        if s:
            return s, p
    return None, None


@dataclass(frozen=True)
class EnergySignals:
    phase_supply: str | None
    voltage_v: str | None
    main_switch_a: str | None
    clamp_load_a: str | None
    high_load_devices: tuple[str, ...]
    has_ev: bool
    has_solar: bool
    has_battery: bool
    evidence_refs: tuple[str, ...]
    evidence_coverage: str

    @property
    def has_evidence(self) -> bool:
        return bool(self.evidence_refs)

    @property
    def has_future_assets(self) -> bool:
        return self.has_ev or self.has_solar or self.has_battery


def _device_list(value: str | None, limit: int) -> tuple[str, ...]:
    if not value:
        return ()
    items = [x.strip() for x in _DEVICE_SPLIT.split(value)]
    return tuple(x for x in items if x)[:limit]


def map_energy_input(raw: Any, *, device_limit: int = 5) -> EnergySignals:
    raw = raw if isinstance(raw, dict) else {}
    picked = {name: first_value(raw, paths) for name, paths in ENERGY_PATHS.items()}
    refs = tuple(path for _, path in picked.values() if path)

    measured = [picked[k][1] for k in ("voltage", "clamp_load", "main_switch") if picked[k][1]]
    declared = [picked[k][1] for k in ("ev", "solar", "battery") if picked[k][1]]
    if not refs:
        coverage = "unknown"
    elif any(_MEASURED_RE.search(p) for p in measured):
        coverage = "measured"
    elif any(_DECLARED_RE.search(p) for p in declared):
        coverage = "declared"
    else:
        coverage = "observed"

    return EnergySignals(
        phase_supply=picked["phase"][0],
        voltage_v=picked["voltage"][0],
        main_switch_a=picked["main_switch"][0],
        clamp_load_a=picked["clamp_load"][0],
        high_load_devices=_device_list(picked["high_load"][0], device_limit),
        has_ev=bool(_PRESENT_RE.match(picked["ev"][0] or "")),
        has_solar=bool(_PRESENT_RE.match(picked["solar"][0] or "")),
        has_battery=bool(_PRESENT_RE.match(picked["battery"][0] or "")),
        evidence_refs=refs,
        evidence_coverage=coverage,
    )


# Ordered vocabularies; first match wins, anything else is "unknown".
AGE_BANDS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"pre[-\s]?1970|before[-\s]?1970"), "pre-1970"),
    (re.compile(r"1970.*1990|70s|80s"), "1970-1990"),
    (re.compile(r"1990.*2010|90s|2000"), "1990-2010"),
    (re.compile(r"post[-\s]?2010|after[-\s]?2010|2010\+"), "post-2010"),
)
SWITCHBOARD_TYPES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(ceramic|porcelain).*(fuse)"), "ceramic_fuse"),
    (re.compile(r"rewireable.*fuse|rewirable.*fuse|wireable.*fuse"), "rewireable_fuse"),
    (re.compile(r"old.*cb|older.*breaker|legacy.*cb"), "old_cb"),
    (re.compile(r"rcbo|modern.*board|modern.*switchboard"), "modern_rcbo"),
)
RCD_COVERAGE: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"full|all.*covered|complete"), "full"),
    (re.compile(r"partial|some.*covered"), "partial"),
    (re.compile(r"none|no.*rcd|without.*rcd"), "none"),
)
_OBSERVED_TRUE = re.compile(r"^(true|yes|1|present|observed)$", re.IGNORECASE)
_OBSERVED_FALSE = re.compile(r"^(false|no|0|none|not observed)$", re.IGNORECASE)


def _classify(value: str | None, table: tuple[tuple[re.Pattern[str], str], ...]) -> str:
    s = (value or "").strip().lower()
    for pattern, label in table:
        if pattern.search(s):
            return label
    return "unknown"


def _observed_bool(value: str | None) -> bool | None:
    if not value:
        return None
    if _OBSERVED_TRUE.match(value):
        return True
    if _OBSERVED_FALSE.match(value):
        return False
    return None


def _evidence_refs(raw: dict[str, Any], limit: int = 8) -> tuple[str, ...]:
    refs: list[str] = []
    for p in LIFECYCLE_EVIDENCE_PATHS:
        found, node = get_path(raw, p)
        if not found:
            continue
        node = unwrap_answer(node)
        items = node if isinstance(node, list) else [node]
        for item in items:
            item = unwrap_answer(item)
            if isinstance(item, str) and item.strip() and item.strip() not in refs:
                refs.append(item.strip())
    return tuple(refs[:limit])


@dataclass(frozen=True)
class LifecycleSignals:
    property_age_band: str
    switchboard_type: str
    rcd_coverage: str
    visible_thermal_stress: bool | None
    mixed_wiring_indicators: bool | None
    evidence_refs: tuple[str, ...]
    evidence_coverage: str

    @property
    def meaningful(self) -> bool:
        return (
            self.property_age_band != "unknown"
            or self.switchboard_type != "unknown"
            or bool(self.evidence_refs)
        )

    @property
    def legacy_age(self) -> bool:
        return self.property_age_band in ("pre-1970", "1970-1990")

    @property
    def fused_board(self) -> bool:
        return self.switchboard_type in ("ceramic_fuse", "rewireable_fuse")

    @property
    def rcd_gap(self) -> bool:
        return self.rcd_coverage in ("none", "partial")


def map_lifecycle_input(raw: Any) -> LifecycleSignals:
    raw = raw if isinstance(raw, dict) else {}
    picked = {name: first_value(raw, paths)[0] for name, paths in LIFECYCLE_PATHS.items()}
    age = _classify(picked["age_band"], AGE_BANDS)
    board = _classify(picked["switchboard"], SWITCHBOARD_TYPES)
    rcd = _classify(picked["rcd"], RCD_COVERAGE)
    thermal = _observed_bool(picked["thermal"])
    mixed = _observed_bool(picked["mixed"])
    refs = _evidence_refs(raw)

    # Lifecycle inputs are site observations or declarations, never instrument readings.
    observed = board != "unknown" or thermal is not None or mixed is not None or bool(refs)
    declared = age != "unknown" or rcd != "unknown"
    meaningful = age != "unknown" or board != "unknown" or bool(refs)
    if not meaningful:
        coverage = "unknown"
    elif observed:
        coverage = "observed"
    elif declared:
        coverage = "declared"
    else:
        coverage = "unknown"

    return LifecycleSignals(
        property_age_band=age,
        switchboard_type=board,
        rcd_coverage=rcd,
        visible_thermal_stress=thermal,
        mixed_wiring_indicators=mixed,
        evidence_refs=refs,
        evidence_coverage=coverage,
    )
