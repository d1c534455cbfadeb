from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy import Engine
from sqlalchemy.orm import sessionmaker

from inspection_engine.db.base import Base
from inspection_engine.db.config import get_db_settings
from inspection_engine.db.engine import make_engine
from inspection_engine.db import models  # noqa: F401
from inspection_engine.db.repo.overrides_repo import OverridesRepo
from inspection_engine.rules.dimensions import normalize_partial
from inspection_engine.rules.errors import ConfigError, ConflictError, FindingsError, NotFoundError
from inspection_engine.rules.models import (
    DraftOnly,
    NoOverride,
    OverrideState,
    OverrideVersion,
    Published,
    PublishedWithDraft,
)

logger = logging.getLogger("dimension_store")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_version_label() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _to_version(row: Mapping[str, Any]) -> OverrideVersion:
    return OverrideVersion(
        finding_id=str(row["finding_id"]),
        version=int(row["version"]),
        status=str(row["status"]),
        active=bool(row["active"]),
        dimensions=dict(row.get("dimensions") or {}),
        note=row.get("note"),
        updated_by=row.get("updated_by"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        version_text=row.get("version_text"),
        source_version=row.get("source_version"),
    )


def derive_state(rows: Iterable[Mapping[str, Any]]) -> OverrideState:
    published: OverrideVersion | None = None
    draft: OverrideVersion | None = None
    for row in rows:
        v = _to_version(row)
        if v.status == "draft":
            draft = v
        elif v.active:
            published = v
    if published is not None and draft is not None:
        return PublishedWithDraft(published=published, draft=draft)
    if published is not None:
        return Published(published=published)
    if draft is not None:
        return DraftOnly(draft=draft)
    return NoOverride()


class DimensionOverrideStore:
    """
    Versioned admin overrides of finding dimensions.

    ``is_known`` guards every write; unknown finding ids raise NotFoundError
    before anything touches the database.
    """

    def __init__(self, engine: Engine, *, is_known: Callable[[str], bool] | None = None) -> None:
        self.engine = engine
        self._is_known = is_known
        self._repo = OverridesRepo(sessionmaker(bind=engine, future=True, expire_on_commit=False))

    @classmethod
    def from_url(cls, url: str, *, is_known: Callable[[str], bool] | None = None) -> "DimensionOverrideStore":
        store = cls(make_engine(url, extra_options={"echo": get_db_settings().echo_sql}), is_known=is_known)
        store.ensure_schema()
        return store

    def ensure_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def set_known_check(self, is_known: Callable[[str], bool] | None) -> None:
        self._is_known = is_known

    def _require_known(self, finding_id: str) -> str:
        fid = str(finding_id or "").strip()
        if not fid:
            raise NotFoundError("finding id is empty")
        if self._is_known is not None and not self._is_known(fid):
            raise NotFoundError(f"finding={fid}")
        return fid

    # -- reads -----------------------------------------------------------

    def latest_version(self, finding_id: str) -> int:
        return self._repo.latest_version(finding_id)

    def history(self, finding_id: str) -> list[OverrideVersion]:
        return [_to_version(r) for r in self._repo.list_versions(finding_id)]

    def get_version(self, finding_id: str, version: int) -> OverrideVersion:
        row = self._repo.get_version(finding_id, version)
        if row is None:
            raise NotFoundError(f"finding={finding_id} version={version}")
        return _to_version(row)

    def state(self, finding_id: str) -> OverrideState:
        return derive_state(self._repo.current_rows([finding_id]))

    def states(self, finding_ids: Iterable[str] | None = None) -> dict[str, OverrideState]:
        grouped: dict[str, list[dict[str, Any]]] = {}
        for row in self._repo.current_rows(finding_ids):
            grouped.setdefault(row["finding_id"], []).append(row)
        return {fid: derive_state(rows) for fid, rows in grouped.items()}

    def pending_drafts(self) -> list[str]:
        return self._repo.pending_draft_ids()

    def change_log(self, finding_id: str | None = None, *, limit: int = 100) -> list[dict[str, Any]]:
        return self._repo.change_log(finding_id, limit=limit)

    # -- writes ----------------------------------------------------------

    def save_draft(
        self,
        finding_id: str,
        dimensions: Any,
        *,
        note: str | None = None,
        updated_by: str | None = None,
        expected_version: int | None = None,
    ) -> OverrideVersion:
        fid = self._require_known(finding_id)
        values = normalize_partial(dimensions, strict=True, label=f"draft:{fid}")
        if not values:
            raise ConfigError("dimensions must set at least one field")
        try:
            row = self._repo.save_draft(
                fid,
                values,
                note=(note or None),
                updated_by=(updated_by or None),
                expected_version=expected_version,
                now=_utc_now(),
            )
        except ConflictError as e:
            logger.warning("draft rejected finding=%s expected=%s actual=%s", fid, e.expected, e.actual)
            raise
        logger.info("draft saved finding=%s version=%s by=%s", fid, row["version"], updated_by or "-")
        return _to_version(row)

    def discard_draft(
        self,
        finding_id: str,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> OverrideVersion:
        fid = self._require_known(finding_id)
        row = self._repo.discard_draft(fid, expected_version=expected_version, actor=actor, now=_utc_now())
        logger.info("draft discarded finding=%s version=%s", fid, row["version"])
        return _to_version(row)

    def publish(
        self,
        finding_id: str,
        *,
        expected_version: int | None = None,
        version_text: str | None = None,
        actor: str | None = None,
    ) -> OverrideVersion:
        fid = self._require_known(finding_id)
        label = (version_text or "").strip() or default_version_label()
        try:
            row = self._repo.publish(
                fid,
                expected_version=expected_version,
                version_text=label,
                actor=actor,
                now=_utc_now(),
            )
        except ConflictError as e:
            logger.warning("publish rejected finding=%s expected=%s actual=%s", fid, e.expected, e.actual)
            raise
        logger.info("override published finding=%s version=%s label=%s", fid, row["version"], label)
        return _to_version(row)

    def rollback(
        self,
        finding_id: str,
        *,
        to_version: int,
        expected_version: int | None = None,
        actor: str | None = None,
        version_text: str | None = None,
    ) -> OverrideVersion:
        fid = self._require_known(finding_id)
        try:
            row = self._repo.rollback_to(
                fid,
                to_version=int(to_version),
                expected_version=expected_version,
                version_text=version_text,
                actor=actor,
                now=_utc_now(),
            )
        except ConflictError as e:
            logger.warning("rollback rejected finding=%s expected=%s actual=%s", fid, e.expected, e.actual)
            raise
        logger.info("override rolled back finding=%s to=%s new_version=%s", fid, to_version, row["version"])
        return _to_version(row)

    def reset(
        self,
        finding_id: str,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> bool:
        fid = self._require_known(finding_id)
        changed = self._repo.reset(fid, expected_version=expected_version, actor=actor, now=_utc_now())
        if changed:
            logger.info("override reset finding=%s", fid)
        return changed

    # -- batch operations used by the admin API --------------------------

    def publish_many(
        self,
        *,
        version_text: str | None = None,
        finding_ids: Iterable[str] | None = None,
        expected_versions: Mapping[str, int] | None = None,
        actor: str | None = None,
    ) -> dict[str, Any]:
        label = (version_text or "").strip() or default_version_label()
        drafts = self.pending_drafts()
        targets = [str(f) for f in finding_ids] if finding_ids else list(drafts)
        expected = dict(expected_versions or {})
        published: list[dict[str, Any]] = []
        skipped: list[str] = []
        errors: list[dict[str, Any]] = []
        for fid in targets:
            # An explicit expected version is always checked, even with no draft left.
            if fid not in drafts and fid not in expected:
                skipped.append(fid)
                continue
            try:
                v = self.publish(fid, expected_version=expected.get(fid), version_text=label, actor=actor)
            except FindingsError as e:
                errors.append({"finding_id": fid, "code": e.err.code, "message": str(e)})
                continue
            published.append({"finding_id": fid, "version": v.version})
        return {
            "ok": not errors,
            "version": label,
            "published": published,
            "skipped": skipped,
            "total_drafts": len(drafts),
            "errors": errors,
        }

    def rollback_many(
        self,
        *,
        version_text: str | None = None,
        finding_ids: Iterable[str] | None = None,
        to_version: int | None = None,
        expected_versions: Mapping[str, int] | None = None,
        actor: str | None = None,
    ) -> dict[str, Any]:
        """
        Undo a release. With ``to_version`` every target is restored to that
        explicit version; otherwise each target returns to the published
        state recorded before the ``version_text`` publish (no override when
        the publish was the first one).
        """
        label = (version_text or "").strip()
        if not label and to_version is None:
            raise ConfigError("rollback needs version or to_version")
        expected = dict(expected_versions or {})
        if finding_ids:
            targets = [str(f) for f in finding_ids]
        elif label:
            targets = [e["finding_id"] for e in self._repo.publish_entries(label)]
        else:
            raise ConfigError("rollback by to_version needs finding_ids")
        restored: list[dict[str, Any]] = []
        skipped: list[str] = []
        errors: list[dict[str, Any]] = []
        for fid in targets:
            try:
                if to_version is not None:
                    target: int | None = int(to_version)
                else:
                    entry = self._repo.last_publish_entry(fid, label)
                    if entry is None:
                        skipped.append(fid)
                        continue
                    before = entry["diff"].get("before")
                    target = int(before["version"]) if isinstance(before, dict) else None
                if target is None:
                    self.reset(fid, expected_version=expected.get(fid), actor=actor)
                    restored.append({"finding_id": fid, "version": None})
                    continue
                v = self.rollback(
                    fid,
                    to_version=target,
                    expected_version=expected.get(fid),
                    actor=actor,
                    version_text=label or None,
                )
            except FindingsError as e:
                errors.append({"finding_id": fid, "code": e.err.code, "message": str(e)})
                continue
            restored.append({"finding_id": fid, "version": v.version, "source_version": v.source_version})
        return {
            "ok": not errors,
            "version": label or None,
            "restored": restored,
            "skipped": skipped,
            "errors": errors,
        }
