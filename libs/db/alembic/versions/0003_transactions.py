# ruff: noqa: I001
"""Transactions with category splits and ledger-scoped tags.

Revision ID: 0003_transactions
Revises: 0002_assets_categories
Create Date: 2026-09-29
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0003_transactions"
down_revision: str | None = "0002_assets_categories"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # transactions
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ledger_id",
            sa.String(36),
            sa.ForeignKey("ledgers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_by_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("asset_id", sa.String(36), sa.ForeignKey("assets.id"), nullable=False),
        sa.Column("counter_asset_id", sa.String(36), sa.ForeignKey("assets.id"), nullable=True),
        sa.Column("category_id", sa.String(36), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("memo", sa.String(200), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
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
        sa.CheckConstraint("type in ('INCOME','EXPENSE','TRANSFER')", name="ck_transactions_type"),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            (
                "(type = 'TRANSFER' AND counter_asset_id IS NOT NULL "
                "AND counter_asset_id <> asset_id AND category_id IS NULL) OR "
                "(type <> 'TRANSFER' AND counter_asset_id IS NULL)"
            ),
            name="ck_transactions_transfer_shape",
        ),
    )
    # Listing is by ledger, newest first.
    op.create_index(
        "ix_transactions_ledger_occurred", "transactions", ["ledger_id", "occurred_at"]
    )

    # transaction_splits
    op.create_table(
        "transaction_splits",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.String(36),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category_id", sa.String(36), sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("memo", sa.String(200), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.CheckConstraint("amount > 0", name="ck_transaction_splits_amount_positive"),
    )
    op.create_index("ix_transaction_splits_tx", "transaction_splits", ["transaction_id"])

    # tags + transaction_tags
    op.create_table(
        "tags",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ledger_id",
            sa.String(36),
            sa.ForeignKey("ledgers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(40), nullable=False),
        sa.UniqueConstraint("ledger_id", "name", name="uq_tags_ledger_name"),
    )
    op.create_table(
        "transaction_tags",
        sa.Column(
            "transaction_id",
            sa.String(36),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "tag_id",
            sa.String(36),
            sa.ForeignKey("tags.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )


def downgrade() -> None:
    op.drop_table("transaction_tags")
    op.drop_table("tags")
    op.drop_index("ix_transaction_splits_tx", table_name="transaction_splits")
    op.drop_table("transaction_splits")
    op.drop_index("ix_transactions_ledger_occurred", table_name="transactions")
    op.drop_table("transactions")
