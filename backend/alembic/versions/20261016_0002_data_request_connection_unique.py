"""one data request per dataset and connection (postgres)

Revision ID: 20261016_0002
Revises: 20261016_0001
Create Date: 2026-10-16
"""

from __future__ import annotations

from alembic import op


revision = "20261016_0002"
down_revision = "20261016_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_data_requests_dataset_connection "
        "ON data_requests(dataset_id, connection_id)"
    )


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("DROP INDEX IF EXISTS uq_data_requests_dataset_connection")
