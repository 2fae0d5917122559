# ruff: noqa: I001
"""Users, ledgers, memberships and invitations.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2026-09-28
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    # users
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("nickname", sa.String(), nullable=True),
        # Not an FK: ledgers already point back at their owner.
        sa.Column("main_ledger_id", sa.String(36), nullable=True),
        _created_at(),
    )

    # ledgers
    op.create_table(
        "ledgers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'KRW'")),
        sa.Column("month_start_day", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint("month_start_day BETWEEN 1 AND 28", name="ck_ledgers_month_start_day"),
    )

    # ledger_members
    op.create_table(
        "ledger_members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ledger_id",
            sa.String(36),
            sa.ForeignKey("ledgers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("ledger_id", "user_id", name="uq_ledger_members_ledger_user"),
        sa.CheckConstraint("role in ('OWNER','EDITOR','VIEWER')", name="ck_ledger_members_role"),
    )
    op.create_index("ix_ledger_members_user", "ledger_members", ["user_id"])

    # ledger_invitations
    op.create_table(
        "ledger_invitations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ledger_id",
            sa.String(36),
            sa.ForeignKey("ledgers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("token", sa.CHAR(64), nullable=False, unique=True),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("invited_by_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status in ('PENDING','ACCEPTED','DECLINED','EXPIRED')",
            name="ck_ledger_invitations_status",
        ),
        sa.CheckConstraint(
            "role in ('OWNER','EDITOR','VIEWER')", name="ck_ledger_invitations_role"
        ),
    )
    # Pending-invitation lookups filter by email and status.
    op.create_index(
        "ix_ledger_invitations_email_status", "ledger_invitations", ["email", "status"]
    )


def downgrade() -> None:
    op.drop_index("ix_ledger_invitations_email_status", table_name="ledger_invitations")
    op.drop_table("ledger_invitations")
    op.drop_index("ix_ledger_members_user", table_name="ledger_members")
    op.drop_table("ledger_members")
    op.drop_table("ledgers")
    op.drop_table("users")
