"""create metric and sample tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-12 09:14:02.418311
"""
from alembic import op
import sqlalchemy as sa

revision = '3f1c2a9d7b10'
down_revision = None
branch_labels = None
depends_on = None

Id = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade():
    # === 1. Metrics ===
    op.create_table(
        "metric",
        sa.Column("id", Id, primary_key=True),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("units", sa.Text(), nullable=False),
    )

    # === 2. Heart rate ===
    op.create_table(
        "data_point_heart_rate",
        sa.Column("id", Id, primary_key=True),
        sa.Column("metric_id", Id, sa.ForeignKey("metric.id"), nullable=False),
        sa.Column("date", sa.BigInteger(), nullable=False),
        sa.Column("min", sa.Float(), nullable=False),
        sa.Column("max", sa.Float(), nullable=False),
        sa.Column("avg", sa.Float(), nullable=False),
        sa.Column("exported", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("metric_id", "date", name="uq_data_point_heart_rate_metric_date"),
    )

    # === 3. Generic quantities (weight, resting heart rate, ...) ===
    op.create_table(
        "data_point_generic",
        sa.Column("id", Id, primary_key=True),
        sa.Column("metric_id", Id, sa.ForeignKey("metric.id"), nullable=False),
        sa.Column("date", sa.BigInteger(), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("exported", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("metric_id", "date", name="uq_data_point_generic_metric_date"),
    )

    # === 4. Sleep analysis ===
    op.create_table(
        "data_point_sleep_analysis",
        sa.Column("id", Id, primary_key=True),
        sa.Column("metric_id", Id, sa.ForeignKey("metric.id"), nullable=False),
        sa.Column("date", sa.BigInteger(), nullable=False),
        sa.Column("in_bed", sa.Float(), nullable=False),
        sa.Column("asleep", sa.Float(), nullable=False),
        sa.Column("sleep_start", sa.BigInteger(), nullable=False),
        sa.Column("sleep_end", sa.BigInteger(), nullable=False),
        sa.Column("sleep_source", sa.Text(), nullable=False),
        sa.Column("in_bed_start", sa.BigInteger(), nullable=False),
        sa.Column("in_bed_end", sa.BigInteger(), nullable=False),
        sa.Column("in_bed_source", sa.Text(), nullable=False),
        sa.Column("exported", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint(
            "metric_id", "date", "sleep_source",
            name="uq_data_point_sleep_analysis_metric_date_source",
        ),
    )


def downgrade():
    op.drop_table("data_point_sleep_analysis")
    op.drop_table("data_point_generic")
    op.drop_table("data_point_heart_rate")
    op.drop_table("metric")
