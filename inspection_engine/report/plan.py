from __future__ import annotations

from typing import Any, Iterable, Mapping

from inspection_engine.report.calibration import calibrate_text
from inspection_engine.report.contracts import (
    DENSITIES,
    MODULE_IDS,
    ContentContribution,
    FindingBlock,
    ModuleOutput,
    ReportRequest,
)
from inspection_engine.report.injection import (
    DEFAULT_INJECTION_MODE,
    DEFAULT_LEGACY_MODE,
    INJECTION_FLAG_DISABLED,
    MERGED_CAPEX_APPLIED,
    MERGED_CAPEX_EMPTY,
    MERGED_CAPEX_VALIDATION_FAILED,
    MERGED_EXEC_APPLIED,
    MERGED_EXEC_EMPTY,
    MERGED_FINDINGS_APPLIED,
    MERGED_FINDINGS_EMPTY,
    MERGED_FINDINGS_VALIDATION_FAILED,
    MERGED_WTM_APPLIED,
    MERGED_WTM_EMPTY,
    NO_EXPLICIT_MODULES,
    SlotSource,
    compute_capex_snapshot,
    dedupe_capex_rows,
    normalize_mode,
    render_capex_rows_markdown,
    resolve_injection_flags,
    to_bullet_lines,
    validate_capex_rows,
    validate_findings,
)
from inspection_engine.report.legacy import build_legacy_output
from inspection_engine.report.modules import MODULE_APPLIED, MODULE_REGISTRY
from inspection_engine.report.profiles import density_limit, module_rank, priority_rank, resolve_modules, resolve_profile
from inspection_engine.rules.errors import FINDINGS_006_PLAN_INVALID


def normalize_request(data: Mapping[str, Any] | None, *, default_mode: str | None = None) -> ReportRequest:
    data = data or {}
    inspection = data.get("inspection") if isinstance(data.get("inspection"), dict) else {}
    raw = inspection.get("raw") if isinstance(inspection.get("raw"), dict) else {}
    findings = inspection.get("findings") if isinstance(inspection.get("findings"), list) else []
    options = data.get("options") if isinstance(data.get("options"), dict) else {}

    profile = resolve_profile(data.get("profile")).id
    requested = data.get("modules") if isinstance(data.get("modules"), (list, tuple)) else None
    explicit = bool(requested)
    density = str(options.get("narrativeDensity") or "standard")
    injection = options.get("injection") if isinstance(options.get("injection"), dict) else {}

    return ReportRequest(
        raw=raw,
        findings=tuple(f for f in findings if isinstance(f, dict)),
        profile=profile,
        modules=resolve_modules(profile, requested),
        explicit_modules=explicit,
        density=density if density in DENSITIES else "standard",
        injection_mode=options.get("injectionMode") or default_mode,
        injection={k: v for k, v in injection.items() if isinstance(v, bool)},
        inspection_id=str(inspection["id"]) if inspection.get("id") is not None else None,
    )


def _calibrated(out: ModuleOutput) -> ModuleOutput:
    return ModuleOutput(
        executive_summary=tuple(c.with_text(calibrate_text) for c in out.executive_summary),
        what_this_means=tuple(c.with_text(calibrate_text) for c in out.what_this_means),
        capex_rows=tuple(c.with_text(calibrate_text) for c in out.capex_rows),
        findings=tuple(b.with_text(calibrate_text) for b in out.findings),
    )


def merge_lines(items: Iterable[ContentContribution], profile: str) -> list[ContentContribution]:
    """Order by module rank then sort key; drop repeated keys and repeated text."""
    ordered = sorted(items, key=lambda c: (module_rank(profile, c.module_id), c.sort_key, c.key))
    seen_keys: set[str] = set()
    seen_text: set[str] = set()
    out: list[ContentContribution] = []
    for c in ordered:
        text = c.text.strip()
        if not text:
            continue
        if c.key in seen_keys and not c.allow_duplicates:
            continue
        if text.lower() in seen_text:
            continue
        seen_keys.add(c.key)
        seen_text.add(text.lower())
        out.append(c)
    return out


def merge_findings(blocks: Iterable[FindingBlock], profile: str, limit: int) -> list[FindingBlock]:
    ordered = sorted(
        blocks,
        key=lambda b: (module_rank(profile, b.module_id), priority_rank(b.priority), b.title.lower(), b.key),
    )
    seen: set[str] = set()
    out: list[FindingBlock] = []
    for b in ordered:
        if b.key in seen:
            continue
        seen.add(b.key)
        out.append(b)
    return out[:limit]


def _disabled_reason(mode: str, request: ReportRequest, flag: str) -> str:
    if mode == "legacy" and flag not in request.injection:
        return DEFAULT_LEGACY_MODE
    return INJECTION_FLAG_DISABLED


def _slot_dicts(items: Iterable[Any]) -> list[dict[str, Any]]:
    return [i.to_dict() for i in items]


def build_report_plan(
    data: Mapping[str, Any] | None,
    *,
    responses: Mapping[str, Any] | None = None,
    default_mode: str | None = DEFAULT_INJECTION_MODE,
) -> dict[str, Any]:
    """
    Assemble the report plan for one inspection.

    Selected modules contribute merged content; every slot falls back to the
    legacy per-finding text when injection is off for it or the merged content
    is empty or fails validation. The result depends only on the arguments.
    """
    request = normalize_request(data, default_mode=default_mode)
    profile = request.profile
    limit = density_limit(request.density)

    module_status: dict[str, str] = {}
    outputs: list[ModuleOutput] = []
    for mid in MODULE_IDS:
        module = MODULE_REGISTRY[mid]
        status = module.applicability(request)
        module_status[mid] = status
        if status == MODULE_APPLIED:
            outputs.append(_calibrated(module.compute(request)))

    merged_exec = merge_lines((c for o in outputs for c in o.executive_summary), profile)
    merged_wtm = merge_lines((c for o in outputs for c in o.what_this_means), profile)
    merged_capex = dedupe_capex_rows(c for o in outputs for c in o.capex_rows)
    merged_findings = merge_findings((b for o in outputs for b in o.findings), profile, limit)

    legacy = _calibrated(build_legacy_output(request, responses))
    legacy_exec = list(legacy.executive_summary)
    legacy_wtm = list(legacy.what_this_means)[:limit]
    legacy_capex = dedupe_capex_rows(legacy.capex_rows)
    legacy_findings = list(legacy.findings)[:limit]

    findings_errors = validate_findings(merged_findings)
    capex_errors = validate_capex_rows(merged_capex)

    mode = normalize_mode(request.injection_mode)
    flags = resolve_injection_flags(mode, request.injection)

    if not flags["executive"]:
        exec_src = SlotSource("legacy", _disabled_reason(mode, request, "executive"))
    elif merged_exec:
        exec_src = SlotSource("merged", MERGED_EXEC_APPLIED)
    else:
        exec_src = SlotSource("legacy", MERGED_EXEC_EMPTY)

    if not flags["whatThisMeans"]:
        wtm_src = SlotSource("legacy", _disabled_reason(mode, request, "whatThisMeans"))
    elif merged_wtm:
        wtm_src = SlotSource("merged", MERGED_WTM_APPLIED)
    else:
        wtm_src = SlotSource("legacy", MERGED_WTM_EMPTY)

    if not flags["capex"]:
        capex_src = SlotSource("legacy", _disabled_reason(mode, request, "capex"))
    elif not request.explicit_modules:
        capex_src = SlotSource("legacy", NO_EXPLICIT_MODULES)
    elif not merged_capex:
        capex_src = SlotSource("legacy", MERGED_CAPEX_EMPTY)
    elif capex_errors:
        capex_src = SlotSource("legacy", f"{MERGED_CAPEX_VALIDATION_FAILED}:{capex_errors[0]}")
    else:
        capex_src = SlotSource("merged", MERGED_CAPEX_APPLIED)

    if not flags["findings"]:
        findings_src = SlotSource("legacy", _disabled_reason(mode, request, "findings"))
    elif not request.explicit_modules:
        findings_src = SlotSource("legacy", NO_EXPLICIT_MODULES)
    elif not merged_findings:
        findings_src = SlotSource("legacy", MERGED_FINDINGS_EMPTY)
    elif findings_errors:
        findings_src = SlotSource("legacy", f"{MERGED_FINDINGS_VALIDATION_FAILED}:{findings_errors[0]}")
    else:
        findings_src = SlotSource("merged", MERGED_FINDINGS_APPLIED)

    exec_lines = merged_exec if exec_src.source == "merged" else legacy_exec
    wtm_lines = merged_wtm if wtm_src.source == "merged" else legacy_wtm
    capex_rows = merged_capex if capex_src.source == "merged" else legacy_capex
    finding_blocks = merged_findings if findings_src.source == "merged" else legacy_findings

    validation: dict[str, Any] = {
        "mergedFindingsValidationPassed": not findings_errors,
        "mergedCapexValidationPassed": not capex_errors,
        "errors": {"findings": findings_errors, "capex": capex_errors},
    }
    if findings_errors or capex_errors:
        validation["code"] = FINDINGS_006_PLAN_INVALID.code

    return {
        "inspectionId": request.inspection_id,
        "profile": profile,
        "modules": list(request.modules),
        "hasExplicitModules": request.explicit_modules,
        "density": request.density,
        "sectionWeights": dict(resolve_profile(profile).summary_weights),
        "moduleStatus": module_status,
        "merged": {
            "executiveSummary": _slot_dicts(merged_exec),
            "whatThisMeans": _slot_dicts(merged_wtm),
            "capexRows": _slot_dicts(merged_capex),
            "findings": _slot_dicts(merged_findings),
        },
        "legacy": {
            "executiveSummary": _slot_dicts(legacy_exec),
            "whatThisMeans": _slot_dicts(legacy_wtm),
            "capexRows": _slot_dicts(legacy_capex),
            "findings": _slot_dicts(legacy_findings),
        },
        "slots": {
            "executiveSummary": to_bullet_lines((c.text for c in exec_lines), "• "),
            "whatThisMeans": to_bullet_lines((c.text for c in wtm_lines), "- "),
            "capexRows": render_capex_rows_markdown(capex_rows),
            "capexSnapshot": compute_capex_snapshot(capex_rows),
            "findings": _slot_dicts(finding_blocks),
        },
        "slotSourceMap": {
            "executiveSummary": exec_src.to_dict(),
            "whatThisMeans": wtm_src.to_dict(),
            "capexRows": capex_src.to_dict(),
            "capexSnapshot": capex_src.to_dict(),
            "findings": findings_src.to_dict(),
        },
        "validationFlags": validation,
        "injection": {"mode": mode, "flags": flags},
    }
