"""Add blacklisted_tokens table for access-token revocation on logout.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "blacklisted_tokens",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("token_jti", sa.String(255), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("blacklisted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_blacklisted_tokens_token_jti", "blacklisted_tokens", ["token_jti"], unique=True)
    op.create_index("ix_blacklisted_tokens_user_id", "blacklisted_tokens", ["user_id"])
    op.create_index("ix_blacklisted_tokens_expires_at", "blacklisted_tokens", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_blacklisted_tokens_expires_at", table_name="blacklisted_tokens")
    op.drop_index("ix_blacklisted_tokens_user_id", table_name="blacklisted_tokens")
    op.drop_index("ix_blacklisted_tokens_token_jti", table_name="blacklisted_tokens")
    op.drop_table("blacklisted_tokens")
