from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import Float, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from inspection_engine.db.base import Base
from inspection_engine.db.types import JSONDocument


class FindingDimensionOverride(Base):
    """One immutable version of an admin override for a finding's dimensions."""

    __tablename__ = "finding_dimension_overrides"
    __table_args__ = (
        UniqueConstraint("finding_id", "version", name="uq_fdo_finding_version"),
        Index("idx_fdo_finding_status", "finding_id", "status", "version"),
        Index(
            "uq_fdo_one_active",
            "finding_id",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active = 1"),
        ),
        Index(
            "uq_fdo_one_draft",
            "finding_id",
            unique=True,
            sqlite_where=text("status = 'draft'"),
            postgresql_where=text("status = 'draft'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    finding_id: Mapped[str] = mapped_column(String, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    active: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    safety: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    urgency: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    liability: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    budget_low: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    budget_high: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    priority: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    severity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    likelihood: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    escalation: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    version_text: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    source_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)


class FindingChangeLog(Base):
    __tablename__ = "finding_change_log"
    __table_args__ = (
        Index("idx_fcl_finding", "finding_id", "id"),
        Index("idx_fcl_version_text", "version_text", "action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String, nullable=False, default="dimensions")
    finding_id: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    from_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    to_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    version_text: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    actor: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    diff_json: Mapped[dict[str, Any]] = mapped_column(JSONDocument(), nullable=False, default=dict)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
