"""Enums, input shapes, and read-only views for ``ledger_engine``.

Service functions accept plain values plus the small pydantic input models
below, and return frozen dataclass views built while the session is still
open. Views never hold live ORM rows, so they are safe to pass across the
unit-of-work boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from db.models.ledger import (
    Asset,
    AssetGroup,
    Category,
    LedgerInvitation,
    LedgerMember,
    Transaction,
    TransactionComment,
)

# ---------------------------------------------------------------------------
# Enumerations (stored as their string values)
# ---------------------------------------------------------------------------


class TransactionType(StrEnum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class CategoryType(StrEnum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class AssetGroupType(StrEnum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"


class AssetKind(StrEnum):
    CASH = "CASH"
    BANK = "BANK"
    CHECK_CARD = "CHECK_CARD"
    CREDIT_CARD = "CREDIT_CARD"
    LOAN = "LOAN"
    INVESTMENT = "INVESTMENT"
    OTHER = "OTHER"


class MemberRole(StrEnum):
    OWNER = "OWNER"
    EDITOR = "EDITOR"
    VIEWER = "VIEWER"


class InvitationStatus(StrEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


class ReorderKind(StrEnum):
    ASSET_GROUP = "asset_group"
    ASSET = "asset"
    CATEGORY = "category"


EDITOR_ROLES: frozenset[str] = frozenset({MemberRole.OWNER, MemberRole.EDITOR})


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Input shapes
# ---------------------------------------------------------------------------


class SplitInput(BaseModel):
    """One category allocation of an INCOME/EXPENSE transaction."""

    model_config = ConfigDict(strict=True, extra="forbid", str_strip_whitespace=True)

    category_id: str
    amount: int
    memo: str | None = None


class ReorderItem(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    id: str
    sort_order: int


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LedgerView:
    id: str
    name: str
    description: str | None
    currency: str
    month_start_day: int
    role: str
    member_count: int
    is_main: bool


@dataclass(frozen=True, slots=True)
class MemberView:
    ledger_id: str
    user_id: str
    role: str

    @classmethod
    def from_row(cls, row: LedgerMember) -> MemberView:
        return cls(ledger_id=row.ledger_id, user_id=row.user_id, role=row.role)


@dataclass(frozen=True, slots=True)
class AssetGroupView:
    id: str
    ledger_id: str
    name: str
    type: str
    sort_order: int

    @classmethod
    def from_row(cls, row: AssetGroup) -> AssetGroupView:
        return cls(
            id=row.id,
            ledger_id=row.ledger_id,
            name=row.name,
            type=row.type,
            sort_order=row.sort_order,
        )


@dataclass(frozen=True, slots=True)
class AssetView:
    id: str
    ledger_id: str
    group_id: str | None
    name: str
    kind: str
    initial_balance: int
    current_balance: int
    include_in_net_worth: bool
    billing_day: int | None
    upcoming_payment_amount: int | None
    sort_order: int

    @classmethod
    def from_row(cls, row: Asset) -> AssetView:
        return cls(
            id=row.id,
            ledger_id=row.ledger_id,
            group_id=row.group_id,
            name=row.name,
            kind=row.kind,
            initial_balance=row.initial_balance,
            current_balance=row.current_balance,
            include_in_net_worth=bool(row.include_in_net_worth),
            billing_day=row.billing_day,
            upcoming_payment_amount=row.upcoming_payment_amount,
            sort_order=row.sort_order,
        )


@dataclass(frozen=True, slots=True)
class CategoryView:
    id: str
    ledger_id: str
    name: str
    type: str
    parent_id: str | None
    sort_order: int
    children: tuple[CategoryView, ...] = ()

    @classmethod
    def from_row(cls, row: Category, children: tuple[CategoryView, ...] = ()) -> CategoryView:
        return cls(
            id=row.id,
            ledger_id=row.ledger_id,
            name=row.name,
            type=row.type,
            parent_id=row.parent_id,
            sort_order=row.sort_order,
            children=children,
        )


@dataclass(frozen=True, slots=True)
class SplitView:
    category_id: str
    amount: int
    memo: str | None


@dataclass(frozen=True, slots=True)
class CommentView:
    id: str
    transaction_id: str
    user_id: str
    author_name: str
    content: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: TransactionComment) -> CommentView:
        return cls(
            id=row.id,
            transaction_id=row.transaction_id,
            user_id=row.user_id,
            author_name=row.user.nickname or row.user.email,
            content=row.content,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )


@dataclass(frozen=True, slots=True)
class TransactionView:
    id: str
    ledger_id: str
    type: str
    amount: int
    occurred_at: datetime
    asset_id: str
    counter_asset_id: str | None
    category_id: str | None
    memo: str | None
    note: str | None
    splits: tuple[SplitView, ...]
    tags: tuple[str, ...]
    comments: tuple[CommentView, ...] = ()

    @classmethod
    def from_row(cls, row: Transaction) -> TransactionView:
        return cls(
            id=row.id,
            ledger_id=row.ledger_id,
            type=row.type,
            amount=row.amount,
            occurred_at=as_utc(row.occurred_at),
            asset_id=row.asset_id,
            counter_asset_id=row.counter_asset_id,
            category_id=row.category_id,
            memo=row.memo,
            note=row.note,
            splits=tuple(
                SplitView(category_id=s.category_id, amount=s.amount, memo=s.memo)
                for s in row.splits
            ),
            tags=tuple(sorted(t.tag.name for t in row.tags)),
            comments=tuple(CommentView.from_row(c) for c in row.comments),
        )


@dataclass(frozen=True, slots=True)
class TransactionPage:
    items: tuple[TransactionView, ...]
    page: int
    page_size: int
    total: int
    total_pages: int


@dataclass(frozen=True, slots=True)
class InvitationView:
    id: str
    ledger_id: str
    ledger_name: str
    invited_by_id: str
    invited_by_name: str
    email: str
    role: str
    status: str
    token: str
    expires_at: datetime
    responded_at: datetime | None

    @classmethod
    def from_row(cls, row: LedgerInvitation) -> InvitationView:
        inviter = row.invited_by
        return cls(
            id=row.id,
            ledger_id=row.ledger_id,
            ledger_name=row.ledger.name,
            invited_by_id=row.invited_by_id,
            invited_by_name=inviter.nickname or inviter.email,
            email=row.email,
            role=row.role,
            status=row.status,
            token=row.token,
            expires_at=as_utc(row.expires_at),
            responded_at=as_utc(row.responded_at) if row.responded_at is not None else None,
        )


def coerce_model(model: type[BaseModel], raw: Any) -> Any:
    """Return ``raw`` as an instance of ``model`` (accepting mappings)."""

    if isinstance(raw, model):
        return raw
    return model.model_validate(raw)


__all__ = [
    "TransactionType",
    "CategoryType",
    "AssetGroupType",
    "AssetKind",
    "MemberRole",
    "InvitationStatus",
    "ReorderKind",
    "EDITOR_ROLES",
    "utcnow",
    "as_utc",
    "SplitInput",
    "ReorderItem",
    "LedgerView",
    "MemberView",
    "AssetGroupView",
    "AssetView",
    "CategoryView",
    "SplitView",
    "CommentView",
    "TransactionView",
    "TransactionPage",
    "InvitationView",
    "coerce_model",
]
