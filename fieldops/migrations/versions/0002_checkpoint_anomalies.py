"""Add checkpoint geo radius and per-mark anomaly fields

Revision ID: 0002_checkpoint_anomalies
Revises: 0001_initial
Create Date: 2026-10-18 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_checkpoint_anomalies"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("patrol_checkpoints", sa.Column("lat", sa.Float(), nullable=True))
    op.add_column("patrol_checkpoints", sa.Column("lng", sa.Float(), nullable=True))
    op.add_column(
        "patrol_checkpoints",
        sa.Column("geo_radius_m", sa.Integer(), nullable=False, server_default=sa.text("30")),
    )

    op.add_column("checkpoint_marks", sa.Column("geo_validated", sa.Boolean(), nullable=True))
    op.add_column("checkpoint_marks", sa.Column("geo_distance_m", sa.Integer(), nullable=True))
    op.add_column("checkpoint_marks", sa.Column("speed_from_prev_kmh", sa.Float(), nullable=True))
    op.add_column("checkpoint_marks", sa.Column("time_from_prev_s", sa.Integer(), nullable=True))
    op.add_column(
        "checkpoint_marks",
        sa.Column(
            "anomalies",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
    )

    op.add_column(
        "patrol_alerts",
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_patrol_alerts_kind", "patrol_alerts", ["kind"])


def downgrade() -> None:
    op.drop_index("ix_patrol_alerts_kind", table_name="patrol_alerts")
    op.drop_column("patrol_alerts", "details")
    op.drop_column("checkpoint_marks", "anomalies")
    op.drop_column("checkpoint_marks", "time_from_prev_s")
    op.drop_column("checkpoint_marks", "speed_from_prev_kmh")
    op.drop_column("checkpoint_marks", "geo_distance_m")
    op.drop_column("checkpoint_marks", "geo_validated")
    op.drop_column("patrol_checkpoints", "geo_radius_m")
    op.drop_column("patrol_checkpoints", "lng")
    op.drop_column("patrol_checkpoints", "lat")
