# ruff: noqa: I001
"""Asset groups, assets and the per-ledger category tree.

Revision ID: 0002_assets_categories
Revises: 0001_ledger_core
Create Date: 2026-09-28
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_assets_categories"
down_revision: str | None = "0001_ledger_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # asset_groups
    op.create_table(
        "asset_groups",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ledger_id",
            sa.String(36),
            sa.ForeignKey("ledgers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.UniqueConstraint("ledger_id", "name", name="uq_asset_groups_ledger_name"),
        sa.CheckConstraint("type in ('ASSET','LIABILITY')", name="ck_asset_groups_type"),
    )

    # assets
    op.create_table(
        "assets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ledger_id",
            sa.String(36),
            sa.ForeignKey("ledgers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.String(36),
            sa.ForeignKey("asset_groups.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("initial_balance", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_balance", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "include_in_net_worth",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column("billing_day", sa.Integer(), nullable=True),
        sa.Column("upcoming_payment_amount", sa.BigInteger(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint(
            "kind in ('CASH','BANK','CHECK_CARD','CREDIT_CARD','LOAN','INVESTMENT','OTHER')",
            name="ck_assets_kind",
        ),
        sa.CheckConstraint(
            "billing_day IS NULL OR (billing_day >= 1 AND billing_day <= 31)",
            name="ck_assets_billing_day",
        ),
    )
    op.create_index("ix_assets_ledger_group", "assets", ["ledger_id", "group_id"])

    # categories
    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ledger_id",
            sa.String(36),
            sa.ForeignKey("ledgers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("parent_id", sa.String(36), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.CheckConstraint("type in ('INCOME','EXPENSE')", name="ck_categories_type"),
    )
    op.create_index("ix_categories_ledger_type_parent", "categories", ["ledger_id", "type", "parent_id"])


def downgrade() -> None:
    op.drop_index("ix_categories_ledger_type_parent", table_name="categories")
    op.drop_table("categories")
    op.drop_index("ix_assets_ledger_group", table_name="assets")
    op.drop_table("assets")
    op.drop_table("asset_groups")
