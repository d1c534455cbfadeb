from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from inspection_engine.db.models.findings import FindingChangeLog, FindingDimensionOverride
from inspection_engine.rules.errors import FINDINGS_007_NO_DRAFT, ConflictError, NotFoundError
from inspection_engine.rules.models import DIMENSION_FIELDS

# Rows that were live at some point and may be restored by a rollback.
PUBLISHED_STATUSES = ("published", "superseded")


def override_row_to_dict(row: FindingDimensionOverride) -> dict[str, Any]:
    dims = {k: getattr(row, k) for k in DIMENSION_FIELDS if getattr(row, k) is not None}
    return {
        "id": row.id,
        "finding_id": row.finding_id,
        "version": int(row.version),
        "status": row.status,
        "active": bool(row.active),
        "dimensions": dims,
        "note": row.note,
        "updated_by": row.updated_by,
        "version_text": row.version_text,
        "source_version": row.source_version,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def change_row_to_dict(row: FindingChangeLog) -> dict[str, Any]:
    return {
        "id": row.id,
        "entity_type": row.entity_type,
        "finding_id": row.finding_id,
        "action": row.action,
        "from_version": row.from_version,
        "to_version": row.to_version,
        "version_text": row.version_text,
        "actor": row.actor,
        "diff": dict(row.diff_json or {}),
        "created_at": row.created_at,
    }


def _snapshot(row: FindingDimensionOverride | None) -> dict[str, Any] | None:
    if row is None:
        return None
    d = override_row_to_dict(row)
    return {"version": d["version"], "status": d["status"], "dimensions": d["dimensions"]}


class OverridesRepo:
    """
    Versioned override rows plus their audit log.

    Every write runs in one transaction that first checks the caller's
    expected version against the latest stored version for the finding.
    Concurrent writers that pass the check at the same time collide on the
    (finding_id, version) unique key or the single-draft/single-active
    partial indexes; the loser gets ConflictError and nothing is written.
    Publish and rollback both write a new version, so any caller holding
    the version it read before one of them gets a conflict.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._Session = session_factory

    # -- reads -----------------------------------------------------------

    def latest_version(self, finding_id: str) -> int:
        with self._Session() as s:
            return self._latest(s, finding_id)

    def list_versions(self, finding_id: str) -> list[dict[str, Any]]:
        with self._Session() as s:
            rows = s.execute(
                select(FindingDimensionOverride)
                .where(FindingDimensionOverride.finding_id == finding_id)
                .order_by(FindingDimensionOverride.version.desc())
            ).scalars().all()
            return [override_row_to_dict(r) for r in rows]

    def get_version(self, finding_id: str, version: int) -> dict[str, Any] | None:
        with self._Session() as s:
            row = self._get(s, finding_id, version)
            return override_row_to_dict(row) if row is not None else None

    def current_rows(self, finding_ids: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """Active published rows and pending drafts, oldest version first."""
        with self._Session() as s:
            q = select(FindingDimensionOverride).where(
                or_(FindingDimensionOverride.active == 1, FindingDimensionOverride.status == "draft")
            )
            if finding_ids is not None:
                ids = sorted(set(finding_ids))
                if not ids:
                    return []
                q = q.where(FindingDimensionOverride.finding_id.in_(ids))
            q = q.order_by(FindingDimensionOverride.finding_id, FindingDimensionOverride.version)
            return [override_row_to_dict(r) for r in s.execute(q).scalars().all()]

    def pending_draft_ids(self) -> list[str]:
        with self._Session() as s:
            rows = s.execute(
                select(FindingDimensionOverride.finding_id)
                .where(FindingDimensionOverride.status == "draft")
                .order_by(FindingDimensionOverride.finding_id)
            ).scalars().all()
            return list(rows)

    def change_log(self, finding_id: str | None = None, *, limit: int = 100) -> list[dict[str, Any]]:
        with self._Session() as s:
            q = select(FindingChangeLog).order_by(FindingChangeLog.id.desc()).limit(max(1, int(limit)))
            if finding_id:
                q = q.where(FindingChangeLog.finding_id == finding_id)
            return [change_row_to_dict(r) for r in s.execute(q).scalars().all()]

    def last_publish_entry(self, finding_id: str, version_text: str) -> dict[str, Any] | None:
        with self._Session() as s:
            row = s.execute(
                select(FindingChangeLog)
                .where(
                    and_(
                        FindingChangeLog.finding_id == finding_id,
                        FindingChangeLog.action == "publish",
                        FindingChangeLog.version_text == version_text,
                    )
                )
                .order_by(FindingChangeLog.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return change_row_to_dict(row) if row is not None else None

    def publish_entries(self, version_text: str) -> list[dict[str, Any]]:
        """Latest publish audit entry per finding for one release label."""
        with self._Session() as s:
            rows = s.execute(
                select(FindingChangeLog)
                .where(
                    and_(
                        FindingChangeLog.action == "publish",
                        FindingChangeLog.version_text == version_text,
                    )
                )
                .order_by(FindingChangeLog.id.desc())
            ).scalars().all()
            seen: dict[str, dict[str, Any]] = {}
            for r in rows:
                seen.setdefault(r.finding_id, change_row_to_dict(r))
            return [seen[k] for k in sorted(seen)]

    # -- writes ----------------------------------------------------------

    def save_draft(
        self,
        finding_id: str,
        values: dict[str, Any],
        *,
        note: str | None,
        updated_by: str | None,
        expected_version: int | None,
        now: str,
    ) -> dict[str, Any]:
        with self._Session() as s:
            try:
                latest = self._check(s, finding_id, expected_version)
                old = self._draft(s, finding_id)
                if old is not None:
                    old.status = "discarded"
                    old.updated_at = now
                    s.flush()
                row = FindingDimensionOverride(
                    finding_id=finding_id,
                    version=latest + 1,
                    status="draft",
                    active=0,
                    note=note,
                    updated_by=updated_by,
                    created_at=now,
                    updated_at=now,
                    **{k: values.get(k) for k in DIMENSION_FIELDS},
                )
                s.add(row)
                s.flush()
                self._log(
                    s,
                    finding_id,
                    "save_draft",
                    from_version=old.version if old is not None else None,
                    to_version=row.version,
                    actor=updated_by,
                    diff={"before": _snapshot(old), "after": _snapshot(row)},
                    now=now,
                )
                out = override_row_to_dict(row)
                s.commit()
                return out
            except IntegrityError as e:
                s.rollback()
                raise ConflictError(f"finding={finding_id} concurrent write") from e
            except Exception:
                s.rollback()
                raise

    def discard_draft(
        self,
        finding_id: str,
        *,
        expected_version: int | None,
        actor: str | None,
        now: str,
    ) -> dict[str, Any]:
        with self._Session() as s:
            try:
                latest = self._check(s, finding_id, expected_version)
                draft = self._draft(s, finding_id)
                if draft is None:
                    self._raise_if_discarded(s, finding_id, expected_version, latest)
                    raise NotFoundError(f"finding={finding_id}", FINDINGS_007_NO_DRAFT)
                self._transition(s, draft, "draft", status="discarded", updated_at=now)
                self._log(
                    s,
                    finding_id,
                    "discard",
                    from_version=draft.version,
                    to_version=None,
                    actor=actor,
                    diff={"before": _snapshot(draft), "after": None},
                    now=now,
                )
                s.refresh(draft)
                out = override_row_to_dict(draft)
                s.commit()
                return out
            except Exception:
                s.rollback()
                raise

    def publish(
        self,
        finding_id: str,
        *,
        expected_version: int | None,
        version_text: str,
        actor: str | None,
        now: str,
    ) -> dict[str, Any]:
        """
        Promote the pending draft into a new published version.

        The published row is a fresh version (latest + 1) that copies the
        draft, so a publish moves the finding's version like any other write
        and a second writer still holding the old version gets ConflictError.
        The draft row itself ends as ``promoted``.
        """
        with self._Session() as s:
            try:
                latest = self._check(s, finding_id, expected_version)
                draft = self._draft(s, finding_id)
                if draft is None:
                    self._raise_if_discarded(s, finding_id, expected_version, latest)
                    raise NotFoundError(f"finding={finding_id}", FINDINGS_007_NO_DRAFT)
                before = self._active(s, finding_id)
                before_snap = _snapshot(before)
                self._supersede_active(s, finding_id, now)
                self._transition(s, draft, "draft", status="promoted", updated_at=now)
                row = FindingDimensionOverride(
                    finding_id=finding_id,
                    version=latest + 1,
                    status="published",
                    active=1,
                    note=draft.note,
                    updated_by=actor or draft.updated_by,
                    version_text=version_text,
                    source_version=draft.version,
                    created_at=now,
                    updated_at=now,
                    **{k: getattr(draft, k) for k in DIMENSION_FIELDS},
                )
                s.add(row)
                s.flush()
                self._log(
                    s,
                    finding_id,
                    "publish",
                    from_version=before.version if before is not None else None,
                    to_version=row.version,
                    version_text=version_text,
                    actor=actor,
                    diff={"before": before_snap, "after": _snapshot(row), "draft_version": draft.version},
                    now=now,
                )
                out = override_row_to_dict(row)
                s.commit()
                return out
            except IntegrityError as e:
                s.rollback()
                raise ConflictError(f"finding={finding_id} concurrent publish") from e
            except Exception:
                s.rollback()
                raise

    def rollback_to(
        self,
        finding_id: str,
        *,
        to_version: int,
        expected_version: int | None,
        version_text: str | None,
        actor: str | None,
        now: str,
    ) -> dict[str, Any]:
        with self._Session() as s:
            try:
                latest = self._check(s, finding_id, expected_version)
                source = self._get(s, finding_id, to_version)
                if source is None:
                    raise NotFoundError(f"finding={finding_id} version={to_version}")
                if source.status not in PUBLISHED_STATUSES:
                    raise NotFoundError(
                        f"finding={finding_id} version={to_version} was never published (status={source.status})"
                    )
                before = self._active(s, finding_id)
                before_snap = _snapshot(before)
                self._supersede_active(s, finding_id, now)
                row = FindingDimensionOverride(
                    finding_id=finding_id,
                    version=latest + 1,
                    status="published",
                    active=1,
                    note=source.note,
                    updated_by=actor,
                    version_text=version_text,
                    source_version=source.version,
                    created_at=now,
                    updated_at=now,
                    **{k: getattr(source, k) for k in DIMENSION_FIELDS},
                )
                s.add(row)
                s.flush()
                self._log(
                    s,
                    finding_id,
                    "rollback",
                    from_version=before.version if before is not None else None,
                    to_version=row.version,
                    version_text=version_text,
                    actor=actor,
                    diff={"before": before_snap, "after": _snapshot(row), "source_version": source.version},
                    now=now,
                )
                out = override_row_to_dict(row)
                s.commit()
                return out
            except IntegrityError as e:
                s.rollback()
                raise ConflictError(f"finding={finding_id} concurrent rollback") from e
            except Exception:
                s.rollback()
                raise

    def reset(
        self,
        finding_id: str,
        *,
        expected_version: int | None,
        actor: str | None,
        now: str,
    ) -> bool:
        with self._Session() as s:
            try:
                self._check(s, finding_id, expected_version)
                active = self._active(s, finding_id)
                draft = self._draft(s, finding_id)
                if active is None and draft is None:
                    s.rollback()
                    return False
                if active is not None:
                    self._supersede_active(s, finding_id, now)
                if draft is not None:
                    self._transition(s, draft, "draft", status="discarded", updated_at=now)
                self._log(
                    s,
                    finding_id,
                    "reset",
                    from_version=active.version if active is not None else None,
                    to_version=None,
                    actor=actor,
                    diff={"before": _snapshot(active), "after": None},
                    now=now,
                )
                s.commit()
                return True
            except Exception:
                s.rollback()
                raise

    # -- helpers ---------------------------------------------------------

    @staticmethod
    def _latest(s: Session, finding_id: str) -> int:
        v = s.execute(
            select(func.max(FindingDimensionOverride.version)).where(
                FindingDimensionOverride.finding_id == finding_id
            )
        ).scalar_one_or_none()
        return int(v or 0)

    def _check(self, s: Session, finding_id: str, expected_version: int | None) -> int:
        latest = self._latest(s, finding_id)
        if expected_version is not None and int(expected_version) != latest:
            raise ConflictError(
                f"finding={finding_id}",
                expected=int(expected_version),
                actual=latest,
            )
        return latest

    def _raise_if_discarded(
        self, s: Session, finding_id: str, expected_version: int | None, latest: int
    ) -> None:
        # The caller saw a draft at the latest version that another writer has since discarded.
        if expected_version is None or latest == 0:
            return
        row = self._get(s, finding_id, latest)
        if row is not None and row.status == "discarded":
            raise ConflictError(
                f"finding={finding_id} draft version={latest} was discarded",
                expected=int(expected_version),
                actual=latest,
            )

    @staticmethod
    def _get(s: Session, finding_id: str, version: int) -> FindingDimensionOverride | None:
        return s.execute(
            select(FindingDimensionOverride)
            .where(
                and_(
                    FindingDimensionOverride.finding_id == finding_id,
                    FindingDimensionOverride.version == int(version),
                )
            )
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def _draft(s: Session, finding_id: str) -> FindingDimensionOverride | None:
        return s.execute(
            select(FindingDimensionOverride)
            .where(
                and_(
                    FindingDimensionOverride.finding_id == finding_id,
                    FindingDimensionOverride.status == "draft",
                )
            )
            .order_by(FindingDimensionOverride.version.desc())
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def _active(s: Session, finding_id: str) -> FindingDimensionOverride | None:
        return s.execute(
            select(FindingDimensionOverride)
            .where(
                and_(
                    FindingDimensionOverride.finding_id == finding_id,
                    FindingDimensionOverride.active == 1,
                )
            )
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def _supersede_active(s: Session, finding_id: str, now: str) -> None:
        s.execute(
            update(FindingDimensionOverride)
            .where(
                and_(
                    FindingDimensionOverride.finding_id == finding_id,
                    FindingDimensionOverride.active == 1,
                )
            )
            .values(active=0, status="superseded", updated_at=now)
        )

    @staticmethod
    def _transition(s: Session, row: FindingDimensionOverride, from_status: str, **values: Any) -> None:
        res = s.execute(
            update(FindingDimensionOverride)
            .where(
                and_(
                    FindingDimensionOverride.id == row.id,
                    FindingDimensionOverride.status == from_status,
                )
            )
            .values(**values)
        )
        if res.rowcount != 1:
            raise ConflictError(f"finding={row.finding_id} version={row.version} no longer {from_status}")

    @staticmethod
    def _log(
        s: Session,
        finding_id: str,
        action: str,
        *,
        from_version: int | None,
        to_version: int | None,
        actor: str | None,
        diff: dict[str, Any],
        now: str,
        version_text: str | None = None,
    ) -> None:
        s.add(
            FindingChangeLog(
                entity_type="dimensions",
                finding_id=finding_id,
                action=action,
                from_version=from_version,
                to_version=to_version,
                version_text=version_text,
                actor=actor,
                diff_json=diff,
                created_at=now,
            )
        )
