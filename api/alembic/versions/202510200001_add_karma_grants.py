"""add karma_grants ledger

Revision ID: 202510200001
Revises: 202510190001
Create Date: 2025-10-20 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "202510200001"
down_revision = "202510190001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "karma_grants",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("voter_id", sa.Uuid(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("target_type", sa.String(20), nullable=False),
        sa.Column("target_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("author_id", sa.Uuid(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("voter_id", "target_type", "target_id", name="uq_karma_grants_voter_target"),
    )
    op.create_index("ix_karma_grants_voter_id", "karma_grants", ["voter_id"])
    op.create_index("ix_karma_grants_author_id", "karma_grants", ["author_id"])


def downgrade() -> None:
    op.drop_index("ix_karma_grants_author_id", table_name="karma_grants")
    op.drop_index("ix_karma_grants_voter_id", table_name="karma_grants")
    op.drop_table("karma_grants")
