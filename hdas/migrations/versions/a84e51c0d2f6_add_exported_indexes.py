"""index the exported flag of every sample table

Revision ID: a84e51c0d2f6
Revises: 3f1c2a9d7b10
Create Date: 2026-10-14 18:40:51.072946
"""
from alembic import op

revision = 'a84e51c0d2f6'
down_revision = '3f1c2a9d7b10'
branch_labels = None
depends_on = None

# Exporter and cleaner both filter on exported
SAMPLE_TABLES = (
    "data_point_heart_rate",
    "data_point_generic",
    "data_point_sleep_analysis",
)


def upgrade():
    for table in SAMPLE_TABLES:
        op.create_index(f"ix_{table}_exported", table, ["exported"])


def downgrade():
    for table in SAMPLE_TABLES:
        op.drop_index(f"ix_{table}_exported", table_name=table)
