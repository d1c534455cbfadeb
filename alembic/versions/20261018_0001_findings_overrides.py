"""finding dimension overrides and change log

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _json_type() -> sa.TypeEngine:
    if op.get_context().dialect.name == "postgresql":
        return postgresql.JSONB()
    return sa.Text()


def _has_table(table_name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(table_name)


def _index_names(table_name: str) -> set[str]:
    return {str(i.get("name", "")) for i in sa.inspect(op.get_bind()).get_indexes(table_name)}


def _partial_unique(name: str, table_name: str, where: str) -> None:
    if name in _index_names(table_name):
        return
    op.create_index(
        name,
        table_name,
        ["finding_id"],
        unique=True,
        sqlite_where=sa.text(where),
        postgresql_where=sa.text(where),
    )


def upgrade() -> None:
    if not _has_table("finding_dimension_overrides"):
        op.create_table(
            "finding_dimension_overrides",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("finding_id", sa.String(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(), nullable=False),
            sa.Column("active", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("safety", sa.String(), nullable=True),
            sa.Column("urgency", sa.String(), nullable=True),
            sa.Column("liability", sa.String(), nullable=True),
            sa.Column("budget_low", sa.Float(), nullable=True),
            sa.Column("budget_high", sa.Float(), nullable=True),
            sa.Column("priority", sa.String(), nullable=True),
            sa.Column("severity", sa.Integer(), nullable=True),
            sa.Column("likelihood", sa.Integer(), nullable=True),
            sa.Column("escalation", sa.String(), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("updated_by", sa.String(), nullable=True),
            sa.Column("version_text", sa.String(), nullable=True),
            sa.Column("source_version", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.String(), nullable=False),
            sa.Column("updated_at", sa.String(), nullable=False),
            sa.UniqueConstraint("finding_id", "version", name="uq_fdo_finding_version"),
        )
    if "idx_fdo_finding_status" not in _index_names("finding_dimension_overrides"):
        op.create_index(
            "idx_fdo_finding_status",
            "finding_dimension_overrides",
            ["finding_id", "status", "version"],
        )
    _partial_unique("uq_fdo_one_active", "finding_dimension_overrides", "active = 1")
    _partial_unique("uq_fdo_one_draft", "finding_dimension_overrides", "status = 'draft'")

    if not _has_table("finding_change_log"):
        op.create_table(
            "finding_change_log",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("entity_type", sa.String(), nullable=False, server_default=sa.text("'dimensions'")),
            sa.Column("finding_id", sa.String(), nullable=False),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("from_version", sa.Integer(), nullable=True),
            sa.Column("to_version", sa.Integer(), nullable=True),
            sa.Column("version_text", sa.String(), nullable=True),
            sa.Column("actor", sa.String(), nullable=True),
            sa.Column("diff_json", _json_type(), nullable=False),
            sa.Column("created_at", sa.String(), nullable=False),
        )
    existing = _index_names("finding_change_log")
    if "idx_fcl_finding" not in existing:
        op.create_index("idx_fcl_finding", "finding_change_log", ["finding_id", "id"])
    if "idx_fcl_version_text" not in existing:
        op.create_index("idx_fcl_version_text", "finding_change_log", ["version_text", "action"])


def downgrade() -> None:
    if _has_table("finding_change_log"):
        op.drop_table("finding_change_log")
    if _has_table("finding_dimension_overrides"):
        op.drop_table("finding_dimension_overrides")
