"""add connections.sync_cursor

Revision ID: 0002_add_sync_cursor
Revises: 0001_initial
Create Date: 2026-10-20 10:15:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_add_sync_cursor"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "connections",
        sa.Column("sync_cursor", sa.DateTime(timezone=True), nullable=True, comment="newest record timestamp seen"),
    )


def downgrade() -> None:
    op.drop_column("connections", "sync_cursor")
