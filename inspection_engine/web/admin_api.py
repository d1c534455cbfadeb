from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBasic, HTTPBasicCredentials, HTTPBearer
from pydantic import BaseModel, Field

from inspection_engine.db.config import redact_database_url
from inspection_engine.report.plan import build_report_plan
from inspection_engine.rules.config_store import ConfigStore
from inspection_engine.rules.engine import FindingEngine
from inspection_engine.rules.errors import (
    FINDINGS_003_VERSION_CONFLICT,
    FINDINGS_005_FINDING_NOT_FOUND,
    FINDINGS_007_NO_DRAFT,
    ConfigError,
    ConflictError,
    FindingsError,
    NotFoundError,
    ValidationError,
)
from inspection_engine.services.dimension_store import DimensionOverrideStore
from inspection_engine.services.finding_catalog import FindingCatalog, FindingQuery, split_tags
from inspection_engine.services.report_selection import resolve_report_selection
from inspection_engine.services.settings import ensure_sqlite_parent, get_settings
from inspection_engine.services.signals import SnapshotSignals, extract_snapshot_signals
from inspection_engine.services.telemetry import build_report_telemetry, emit_report_telemetry

logger = logging.getLogger("admin_api")


class OverrideDraftPayload(BaseModel):
    dimensions: dict[str, Any]
    note: str | None = Field(default=None, max_length=2000)
    updated_by: str = Field(default="findings-admin", min_length=1, max_length=128)
    expected_version: int | None = None


class OverrideResetPayload(BaseModel):
    expected_version: int | None = None
    updated_by: str = Field(default="findings-admin", min_length=1, max_length=128)


class PublishPayload(BaseModel):
    version: str | None = Field(default=None, max_length=64)
    finding_ids: list[str] = Field(default_factory=list)
    expected_versions: dict[str, int] = Field(default_factory=dict)
    updated_by: str = Field(default="findings-admin", min_length=1, max_length=128)


class RollbackPayload(BaseModel):
    version: str | None = Field(default=None, max_length=64)
    finding_ids: list[str] = Field(default_factory=list)
    to_version: int | None = None
    expected_versions: dict[str, int] = Field(default_factory=dict)
    updated_by: str = Field(default="findings-admin", min_length=1, max_length=128)


class EvaluatePayload(BaseModel):
    raw: dict[str, Any] = Field(default_factory=dict)
    preview: bool = False


class SelectionPayload(BaseModel):
    raw: dict[str, Any] | None = None
    signals: dict[str, Any] | None = None
    overrides: dict[str, Any] = Field(default_factory=dict)


class ReportPlanPayload(BaseModel):
    report_id: str | None = None
    inspection: dict[str, Any] = Field(default_factory=dict)
    profile: str | None = None
    modules: list[str] | None = None
    options: dict[str, Any] = Field(default_factory=dict)
    preview: bool = False


basic = HTTPBasic(auto_error=False)
bearer = HTTPBearer(auto_error=False)


def _is_loopback(host: str | None) -> bool:
    return host in {"127.0.0.1", "::1", "localhost"}


def _auth_guard(
    request: Request,
    basic_cred: HTTPBasicCredentials | None = Depends(basic),
    bearer_cred: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> dict[str, str]:
    admin_token = os.environ.get("ADMIN_TOKEN", "").strip()
    admin_user = os.environ.get("ADMIN_USER", "").strip()
    admin_pass = os.environ.get("ADMIN_PASS", "").strip()

    if admin_token:
        if bearer_cred and bearer_cred.scheme.lower() == "bearer" and bearer_cred.credentials == admin_token:
            return {"auth": "bearer", "principal": "token-user"}
        raise HTTPException(
            status_code=401,
            detail="unauthorized: bearer token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if admin_user and admin_pass:
        if basic_cred and basic_cred.username == admin_user and basic_cred.password == admin_pass:
            return {"auth": "basic", "principal": basic_cred.username}
        raise HTTPException(
            status_code=401,
            detail="unauthorized: basic auth required",
            headers={"WWW-Authenticate": 'Basic realm="FindingsAdminAPI"'},
        )

    # No credentials configured: local callers only.
    host = request.client.host if request.client else None
    if _is_loopback(host):
        return {"auth": "local", "principal": "localhost"}
    raise HTTPException(
        status_code=401,
        detail="unauthorized: configure ADMIN_TOKEN or ADMIN_USER/ADMIN_PASS",
        headers={"WWW-Authenticate": 'Basic realm="FindingsAdminAPI"'},
    )


def _error_response(status: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"ok": False, "error": {"code": code, "message": message}})


def _principal(auth: dict[str, str], fallback: str) -> str:
    return fallback if auth.get("auth") == "local" else auth.get("principal", fallback)


def create_app(
    project_root: Path | None = None,
    *,
    config_store: ConfigStore | None = None,
    override_store: DimensionOverrideStore | None = None,
) -> FastAPI:
    settings = get_settings(project_root)
    configs = config_store or ConfigStore(settings.rules_dir)
    app = FastAPI(title="Findings Admin API", version="1.0.0")

    lock = threading.Lock()
    stores: dict[str, DimensionOverrideStore] = {}
    if override_store is not None:
        override_store.set_known_check(lambda fid: configs.current().is_known(fid))
        stores["overrides"] = override_store

    def _overrides() -> DimensionOverrideStore:
        store = stores.get("overrides")
        if store is not None:
            return store
        with lock:
            if "overrides" not in stores:
                ensure_sqlite_parent(settings.database_url)
                stores["overrides"] = DimensionOverrideStore.from_url(
                    settings.database_url,
                    is_known=lambda fid: configs.current().is_known(fid),
                )
            return stores["overrides"]

    def _preview(preview: str | bool | None) -> bool:
        if settings.preview_draft_dimensions:
            return True
        if isinstance(preview, bool):
            return preview
        return str(preview or "").strip().lower() in ("draft", "1", "true", "yes")

    @app.get("/healthz")
    def healthz() -> dict[str, Any]:
        # No auth: used by container healthchecks.
        snap = configs.current()
        return {
            "ok": True,
            "service": "findings-admin-api",
            "rules_dir": str(settings.rules_dir),
            "db_url": redact_database_url(settings.database_url),
            "config_loaded_at": snap.loaded_at,
            "config_diagnostics": len(snap.diagnostics),
            "ts": datetime.now(timezone.utc).isoformat(),
        }

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload = {"ok": False, "error": {"code": f"HTTP_{exc.status_code}", "message": str(exc.detail)}}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(400, "HTTP_400", str(exc.errors()))

    @app.exception_handler(FindingsError)
    async def _findings_error_handler(_: Request, exc: FindingsError) -> JSONResponse:
        if isinstance(exc, NotFoundError):
            status = 404
        elif isinstance(exc, ConflictError):
            status = 409
        elif isinstance(exc, (ConfigError, ValidationError)):
            status = 400
        else:
            status = 500
        return _error_response(status, exc.err.code, str(exc))

    @app.get("/findings")
    def findings_list(
        q: str = "",
        query: str = "",
        system_group: str = "",
        space_group: str = "",
        tag: list[str] | None = Query(default=None),
        priority: str = "",
        safety: str = "",
        urgency: str = "",
        liability: str = "",
        has_overrides: bool | None = None,
        missing_copy: bool | None = None,
        page: int = Query(default=1, ge=1),
        pageSize: int = Query(default=50, ge=1, le=200),
        sort: str = "finding_id",
        order: str = "asc",
        preview: str | None = None,
        _: dict[str, str] = Depends(_auth_guard),
    ) -> dict[str, Any]:
        catalog = FindingCatalog(configs.current(), _overrides())
        result = catalog.list_findings(
            FindingQuery(
                query=(q or query).strip(),
                system_group=system_group.strip(),
                space_group=space_group.strip(),
                tags=split_tags(tag),
                priority=priority.strip(),
                safety=safety.strip(),
                urgency=urgency.strip(),
                liability=liability.strip(),
                has_overrides=has_overrides,
                missing_copy=missing_copy,
                page=page,
                page_size=pageSize,
                sort=sort,
                order="desc" if order.strip().lower() == "desc" else "asc",
                preview=_preview(preview),
            )
        )
        return {"ok": True, **result}

    @app.post("/findings/dimensions/publish")
    def findings_publish(
        payload: PublishPayload,
        auth: dict[str, str] = Depends(_auth_guard),
    ) -> Any:
        result = _overrides().publish_many(
            version_text=payload.version,
            finding_ids=payload.finding_ids,
            expected_versions=payload.expected_versions,
            actor=_principal(auth, payload.updated_by),
        )
        return _single_target_error(payload.finding_ids, result["errors"]) or result

    @app.post("/findings/dimensions/rollback")
    def findings_rollback(
        payload: RollbackPayload,
        auth: dict[str, str] = Depends(_auth_guard),
    ) -> Any:
        result = _overrides().rollback_many(
            version_text=payload.version,
            finding_ids=payload.finding_ids,
            to_version=payload.to_version,
            expected_versions=payload.expected_versions,
            actor=_principal(auth, payload.updated_by),
        )
        return _single_target_error(payload.finding_ids, result["errors"]) or result

    @app.post("/findings/evaluate")
    def findings_evaluate(
        payload: EvaluatePayload,
        _: dict[str, str] = Depends(_auth_guard),
    ) -> dict[str, Any]:
        engine = FindingEngine(configs.current())
        result = engine.evaluate(payload.raw, _overrides().states(), preview=_preview(payload.preview))
        return {"ok": True, **result.to_dict()}

    @app.get("/findings/{finding_id}")
    def findings_detail(
        finding_id: str,
        preview: str | None = None,
        _: dict[str, str] = Depends(_auth_guard),
    ) -> dict[str, Any]:
        catalog = FindingCatalog(configs.current(), _overrides())
        return {"ok": True, **catalog.finding_detail(finding_id, preview=_preview(preview))}

    @app.post("/findings/{finding_id}/override")
    def findings_save_draft(
        finding_id: str,
        payload: OverrideDraftPayload,
        auth: dict[str, str] = Depends(_auth_guard),
    ) -> dict[str, Any]:
        draft = _overrides().save_draft(
            finding_id,
            payload.dimensions,
            note=payload.note,
            updated_by=_principal(auth, payload.updated_by),
            expected_version=payload.expected_version,
        )
        return {"ok": True, "finding_id": finding_id, "new_version": draft.version, "draft": draft.to_dict()}

    @app.post("/findings/{finding_id}/override/reset")
    def findings_discard_draft(
        finding_id: str,
        payload: OverrideResetPayload | None = None,
        auth: dict[str, str] = Depends(_auth_guard),
    ) -> dict[str, Any]:
        body = payload or OverrideResetPayload()
        discarded = _overrides().discard_draft(
            finding_id,
            expected_version=body.expected_version,
            actor=_principal(auth, body.updated_by),
        )
        return {"ok": True, "finding_id": finding_id, "discarded_version": discarded.version}

    @app.post("/reports/selection")
    def reports_selection(
        payload: SelectionPayload,
        _: dict[str, str] = Depends(_auth_guard),
    ) -> dict[str, Any]:
        signals = (
            SnapshotSignals.from_dict(payload.signals)
            if payload.signals is not None
            else extract_snapshot_signals(payload.raw or {})
        )
        return {"ok": True, **resolve_report_selection(signals, payload.overrides).to_dict()}

    @app.post("/reports/plan")
    def reports_plan(
        payload: ReportPlanPayload,
        _: dict[str, str] = Depends(_auth_guard),
    ) -> dict[str, Any]:
        snap = configs.current()
        inspection = dict(payload.inspection)
        raw = inspection.get("raw") if isinstance(inspection.get("raw"), dict) else {}
        if "findings" not in inspection:
            result = FindingEngine(snap).evaluate(raw, _overrides().states(), preview=_preview(payload.preview))
            inspection["findings"] = [
                {
                    "id": f.finding_id,
                    "priority": f.priority.bucket,
                    "budget_low": f.dimensions.budget_low,
                    "budget_high": f.dimensions.budget_high,
                }
                for f in result.findings
            ]

        profile, modules = payload.profile, payload.modules
        selection = None
        if profile is None and modules is None:
            selection = resolve_report_selection(extract_snapshot_signals(raw))
            profile = selection.profile
            modules = list(selection.modules) or None

        plan = build_report_plan(
            {"inspection": inspection, "profile": profile, "modules": modules, "options": payload.options},
            responses=snap.responses,
            default_mode=settings.report_injection_mode,
        )
        report_id = payload.report_id or str(inspection.get("id") or "adhoc")
        telemetry = build_report_telemetry(report_id, plan)
        emit_report_telemetry(telemetry)
        return {
            "ok": True,
            "plan": plan,
            "selection": selection.to_dict() if selection else None,
            "telemetry": telemetry,
        }

    @app.get("/changes")
    def changes(
        finding_id: str | None = None,
        limit: int = Query(default=100, ge=1, le=1000),
        _: dict[str, str] = Depends(_auth_guard),
    ) -> dict[str, Any]:
        return {"ok": True, "items": _overrides().change_log(finding_id, limit=limit)}

    @app.post("/config/reload")
    def config_reload(_: dict[str, str] = Depends(_auth_guard)) -> dict[str, Any]:
        configs.invalidate()
        snap = configs.current()
        logger.info("config reloaded at=%s diagnostics=%s", snap.loaded_at, len(snap.diagnostics))
        return {
            "ok": True,
            "loaded_at": snap.loaded_at,
            "diagnostics": [d.to_dict() for d in snap.diagnostics],
        }

    return app


_STATUS_FOR_CODE = {
    FINDINGS_003_VERSION_CONFLICT.code: 409,
    FINDINGS_005_FINDING_NOT_FOUND.code: 404,
    FINDINGS_007_NO_DRAFT.code: 404,
}


def _single_target_error(finding_ids: list[str], errors: list[dict[str, Any]]) -> JSONResponse | None:
    """A batch call aimed at one finding reports that finding's failure as the HTTP status."""
    if len(finding_ids) != 1 or not errors:
        return None
    err = errors[0]
    return _error_response(_STATUS_FOR_CODE.get(err["code"], 400), err["code"], err["message"])


app = create_app()


def run_server(host: str | None = None, port: int | None = None) -> None:
    host = host or os.environ.get("ADMIN_API_HOST", "127.0.0.1")
    port = port or int(os.environ.get("ADMIN_API_PORT", "8789"))
    uvicorn.run("inspection_engine.web.admin_api:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    run_server()
