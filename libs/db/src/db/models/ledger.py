from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CHAR,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------
# Identity and ledgers
# ---------------------------


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    nickname: Mapped[str | None] = mapped_column(String, nullable=True)
    # Plain column rather than an FK: ledgers reference their owner, and the
    # cycle would force deferred constraints on every insert.
    main_ledger_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )


class Ledger(Base):
    __tablename__ = "ledgers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False, server_default=text("'KRW'"))
    # First day of the "financial month"; capped at 28 so every month has it.
    month_start_day: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("1")
    )
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    members: Mapped[list[LedgerMember]] = relationship(
        back_populates="ledger", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("month_start_day BETWEEN 1 AND 28", name="ck_ledgers_month_start_day"),
    )


class LedgerMember(Base):
    __tablename__ = "ledger_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ledger_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    ledger: Mapped[Ledger] = relationship(back_populates="members")
    user: Mapped[User] = relationship()

    __table_args__ = (
        UniqueConstraint("ledger_id", "user_id", name="uq_ledger_members_ledger_user"),
        CheckConstraint("role in ('OWNER','EDITOR','VIEWER')", name="ck_ledger_members_role"),
    )


class LedgerInvitation(Base):
    __tablename__ = "ledger_invitations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ledger_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
    # Bearer capability; never expose through listings meant for other users.
    token: Mapped[str] = mapped_column(CHAR(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'PENDING'"))
    invited_by_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    ledger: Mapped[Ledger] = relationship()
    invited_by: Mapped[User] = relationship()

    __table_args__ = (
        CheckConstraint(
            "status in ('PENDING','ACCEPTED','DECLINED','EXPIRED')",
            name="ck_ledger_invitations_status",
        ),
        CheckConstraint(
            "role in ('OWNER','EDITOR','VIEWER')", name="ck_ledger_invitations_role"
        ),
    )


# ---------------------------
# Assets
# ---------------------------


class AssetGroup(Base):
    __tablename__ = "asset_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ledger_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))

    __table_args__ = (
        UniqueConstraint("ledger_id", "name", name="uq_asset_groups_ledger_name"),
        CheckConstraint("type in ('ASSET','LIABILITY')", name="ck_asset_groups_type"),
    )


class Asset(Base):
    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ledger_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    group_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("asset_groups.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    # Snapshot at creation; never rewritten.
    initial_balance: Mapped[int] = mapped_column(
        BigInteger, nullable=False, server_default=text("0")
    )
    # Only ever changed through relative increments issued by posting.
    current_balance: Mapped[int] = mapped_column(
        BigInteger, nullable=False, server_default=text("0")
    )
    include_in_net_worth: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )
    billing_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    upcoming_payment_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        CheckConstraint(
            "kind in ('CASH','BANK','CHECK_CARD','CREDIT_CARD','LOAN','INVESTMENT','OTHER')",
            name="ck_assets_kind",
        ),
        CheckConstraint(
            "billing_day IS NULL OR (billing_day >= 1 AND billing_day <= 31)",
            name="ck_assets_billing_day",
        ),
    )


# ---------------------------
# Categories
# ---------------------------


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ledger_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    # Same ledger and type as the child; acyclicity is enforced in the service
    # layer rather than with recursive DB constraints.
    parent_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))

    __table_args__ = (
        CheckConstraint("type in ('INCOME','EXPENSE')", name="ck_categories_type"),
    )


# ---------------------------
# Transactions
# ---------------------------


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ledger_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    created_by_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    asset_id: Mapped[str] = mapped_column(String(36), ForeignKey("assets.id"), nullable=False)
    counter_asset_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("assets.id"), nullable=True
    )
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True
    )
    memo: Mapped[str | None] = mapped_column(String(200), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    splits: Mapped[list[TransactionSplit]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionSplit.position",
    )
    tags: Mapped[list[TransactionTag]] = relationship(cascade="all, delete-orphan")
    comments: Mapped[list[TransactionComment]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionComment.created_at",
    )

    __table_args__ = (
        CheckConstraint("type in ('INCOME','EXPENSE','TRANSFER')", name="ck_transactions_type"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            (
                "(type = 'TRANSFER' AND counter_asset_id IS NOT NULL "
                "AND counter_asset_id <> asset_id AND category_id IS NULL) OR "
                "(type <> 'TRANSFER' AND counter_asset_id IS NULL)"
            ),
            name="ck_transactions_transfer_shape",
        ),
    )


class TransactionSplit(Base):
    __tablename__ = "transaction_splits"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    transaction_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    memo: Mapped[str | None] = mapped_column(String(200), nullable=True)
    # Preserves caller order when splits are read back.
    position: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))

    transaction: Mapped[Transaction] = relationship(back_populates="splits")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_splits_amount_positive"),
    )


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ledger_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(40), nullable=False)

    __table_args__ = (UniqueConstraint("ledger_id", "name", name="uq_tags_ledger_name"),)


class TransactionTag(Base):
    __tablename__ = "transaction_tags"

    transaction_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )

    tag: Mapped[Tag] = relationship()


class TransactionComment(Base):
    __tablename__ = "transaction_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    transaction_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    transaction: Mapped[Transaction] = relationship(back_populates="comments")
    user: Mapped[User] = relationship()

    __table_args__ = (
        CheckConstraint("length(content) > 0", name="ck_transaction_comments_content_nonempty"),
    )


__all__ = [
    "Base",
    "User",
    "Ledger",
    "LedgerMember",
    "LedgerInvitation",
    "AssetGroup",
    "Asset",
    "Category",
    "Transaction",
    "TransactionSplit",
    "Tag",
    "TransactionTag",
    "TransactionComment",
]
