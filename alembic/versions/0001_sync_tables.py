"""create sync_metadata and raw tables

Revision ID: 0001_sync_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_sync_tables"
down_revision = None
branch_labels = None
depends_on = None

JSON_PAYLOAD = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "sync_metadata",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("job_id"),
    )

    op.create_table(
        "raw_dsc_reports",
        sa.Column("report_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("din", sa.String(length=20), nullable=True),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=40), nullable=False),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("payload", JSON_PAYLOAD, nullable=False),
        sa.Column("api_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("api_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ingested_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("report_id"),
    )
    op.create_index("ix_raw_dsc_reports_din", "raw_dsc_reports", ["din"])
    op.create_index("ix_raw_dsc_reports_status", "raw_dsc_reports", ["status"])
    op.create_index("ix_raw_dsc_reports_api_updated_at", "raw_dsc_reports", ["api_updated_at"])

    op.create_table(
        "raw_dpd_drugs",
        sa.Column("din", sa.String(length=8), nullable=False),
        sa.Column("drug_code", sa.Integer(), nullable=False),
        sa.Column("brand_name", sa.String(), nullable=True),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("last_update_date", sa.String(length=10), nullable=True),
        sa.Column("payload", JSON_PAYLOAD, nullable=False),
        sa.Column("ingested_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("din"),
    )


def downgrade() -> None:
    op.drop_table("raw_dpd_drugs")
    op.drop_index("ix_raw_dsc_reports_api_updated_at", table_name="raw_dsc_reports")
    op.drop_index("ix_raw_dsc_reports_status", table_name="raw_dsc_reports")
    op.drop_index("ix_raw_dsc_reports_din", table_name="raw_dsc_reports")
    op.drop_table("raw_dsc_reports")
    op.drop_table("sync_metadata")
