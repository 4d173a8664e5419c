"""Initial orchestration schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "analysis_runs" in existing_tables:
        return

    # Brand and user records
    op.create_table(
        "brands",
        sa.Column("brand_id", sa.Text, primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("owner_id", sa.Text, nullable=False),
        sa.Column("category", sa.Text),
        sa.Column("region", sa.Text),
        sa.Column("use_case", sa.Text),
        sa.Column("competitors", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        "users",
        sa.Column("user_id", sa.Text, primary_key=True),
        sa.Column("email", sa.Text, nullable=False),
        sa.Column("name", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    # Create analysis_runs table
    op.create_table(
        "analysis_runs",
        sa.Column("run_id", sa.Text, primary_key=True),
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("models", JSONB, nullable=False),
        sa.Column("stages", JSONB, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("total_tasks", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed_tasks", sa.Integer, nullable=False, server_default="0"),
        sa.Column("current_task", sa.Text),
        sa.Column("started_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("error_message", sa.Text),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_analysis_runs_brand_started", "analysis_runs", ["brand_id", "started_at"])
    op.create_index("idx_analysis_runs_status_started", "analysis_runs", ["status", "started_at"])
    # At most one running run per brand
    op.create_index(
        "uq_analysis_runs_brand_running",
        "analysis_runs",
        ["brand_id"],
        unique=True,
        postgresql_where=sa.text("status = 'running'"),
    )

    # Create work_units table
    op.create_table(
        "work_units",
        sa.Column("unit_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.Text, sa.ForeignKey("analysis_runs.run_id", ondelete="CASCADE"), nullable=False),
        sa.Column("model", sa.Text, nullable=False),
        sa.Column("stage", sa.Text, nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("error_message", sa.Text),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("run_id", "model", "stage", name="uq_work_units_run_pair"),
    )
    op.create_index("idx_work_units_run_status", "work_units", ["run_id", "status"])

    # Create analysis_results table
    op.create_table(
        "analysis_results",
        sa.Column("result_id", sa.Text, primary_key=True),
        sa.Column("run_id", sa.Text, sa.ForeignKey("analysis_runs.run_id", ondelete="CASCADE"), nullable=False),
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("model", sa.Text, nullable=False),
        sa.Column("stage", sa.Text, nullable=False),
        sa.Column("overall_score", sa.Float, nullable=False),
        sa.Column("weighted_score", sa.Float, nullable=False),
        sa.Column("success_rate", sa.Float, nullable=False),
        sa.Column("total_response_time", sa.Float, nullable=False),
        sa.Column("aggregated_sentiment", JSONB),
        sa.Column("prompt_results", JSONB),
        sa.Column("raw_response", JSONB),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("trigger_type", sa.Text, nullable=False, server_default="manual"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("run_id", "model", "stage", name="uq_analysis_results_run_pair"),
    )
    op.create_index("idx_analysis_results_brand_created", "analysis_results", ["brand_id", "created_at"])

    # Create maintenance_locks table
    op.create_table(
        "maintenance_locks",
        sa.Column("name", sa.Text, primary_key=True),
        sa.Column("holder_id", sa.Text, nullable=False),
        sa.Column("acquired_at", sa.DateTime, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_maintenance_locks_expires_at", "maintenance_locks", ["expires_at"])


def downgrade() -> None:
    op.drop_table("maintenance_locks")
    op.drop_table("analysis_results")
    op.drop_table("work_units")
    op.drop_table("analysis_runs")
    op.drop_table("users")
    op.drop_table("brands")
