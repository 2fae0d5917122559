# ruff: noqa: I001
"""Member comments on transactions.

Revision ID: 0004_transaction_comments
Revises: 0003_transactions
Create Date: 2026-10-18
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0004_transaction_comments"
down_revision: str | None = "0003_transactions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "transaction_comments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.String(36),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint("length(content) > 0", name="ck_transaction_comments_content_nonempty"),
    )
    # Comments are always read per transaction, oldest first.
    op.create_index(
        "ix_transaction_comments_tx_created",
        "transaction_comments",
        ["transaction_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_transaction_comments_tx_created", table_name="transaction_comments")
    op.drop_table("transaction_comments")
