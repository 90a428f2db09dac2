"""Create simulation_runs for persisted result bundles.

Revision ID: 001
Revises:
Create Date: 2025-03-01 00:00:00

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "simulation_runs",
        sa.Column("simulation_id", sa.String(), primary_key=True),
        sa.Column("campaign_id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False, server_default=""),
        sa.Column("user_id", sa.String(), nullable=False, server_default=""),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("engine_version", sa.String(), nullable=False, server_default=""),
        sa.Column("model_id", sa.String(), nullable=False, server_default=""),
        sa.Column("processing_time_ms", sa.Float(), nullable=False, server_default="0"),
        sa.Column("risk_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recommendation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("result_json", sa.JSON(), nullable=True),
    )
    op.create_index("ix_simulation_runs_campaign_id", "simulation_runs", ["campaign_id"])
    op.create_index("ix_simulation_runs_created_at", "simulation_runs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_simulation_runs_created_at", "simulation_runs")
    op.drop_index("ix_simulation_runs_campaign_id", "simulation_runs")
    op.drop_table("simulation_runs")
