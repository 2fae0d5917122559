"""Users, ledger lifecycle, and the financial month.

A new ledger is created with its owner's OWNER membership and a default set
of asset groups and categories. The first ledger a user creates or joins
becomes their main ledger.
"""

from __future__ import annotations

from calendar import monthrange
from datetime import date

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from db.models.ledger import (
    Asset,
    AssetGroup,
    Category,
    Ledger,
    LedgerInvitation,
    LedgerMember,
    Tag,
    Transaction,
    User,
)

from .errors import ConflictError, NotFoundError, ValidationError
from .logging_setup import audit, get_logger
from .membership import get_user, require_member, require_owner
from .models import AssetGroupType, CategoryType, LedgerView, MemberRole
from .validation import normalize_email, normalize_name

_logger = get_logger("ledger_engine.ledgers")

DEFAULT_LEDGER_NAME = "My Ledger"
DEFAULT_CURRENCY = "KRW"

DEFAULT_ASSET_GROUPS: tuple[tuple[str, str], ...] = (
    ("Cash", AssetGroupType.ASSET),
    ("Bank", AssetGroupType.ASSET),
    ("Credit Cards", AssetGroupType.LIABILITY),
)

DEFAULT_CATEGORIES: tuple[tuple[str, str], ...] = (
    ("Salary", CategoryType.INCOME),
    ("Other Income", CategoryType.INCOME),
    ("Food", CategoryType.EXPENSE),
    ("Living", CategoryType.EXPENSE),
    ("Transport", CategoryType.EXPENSE),
    ("Leisure", CategoryType.EXPENSE),
)


def _get_ledger(session: Session, ledger_id: str) -> Ledger:
    ledger = session.get(Ledger, ledger_id)
    if ledger is None:
        raise NotFoundError(f"Ledger not found: {ledger_id}")
    return ledger


def _check_month_start_day(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 28:
        raise ValidationError("month_start_day must be an integer between 1 and 28")
    return value


def _check_currency(value: str) -> str:
    c = (value or "").strip().upper()
    if len(c) != 3 or not c.isalpha():
        raise ValidationError(f"Invalid currency code: {value!r}")
    return c


def register_user(
    session: Session, *, email: str, nickname: str | None = None, seed_ledger: bool = True
) -> User:
    """Create a user record, auto-seeding a default ledger for them."""

    email_n = normalize_email(email)
    clash = session.execute(select(User.id).where(func.lower(User.email) == email_n)).first()
    if clash is not None:
        raise ConflictError(f"A user with email {email_n} already exists")
    user = User(email=email_n, nickname=nickname.strip() if nickname else None)
    session.add(user)
    session.flush()
    if seed_ledger:
        create_ledger(session, owner_id=user.id, name=DEFAULT_LEDGER_NAME)
    return user


def create_ledger(
    session: Session,
    *,
    owner_id: str,
    name: str,
    currency: str = DEFAULT_CURRENCY,
    month_start_day: int = 1,
    description: str | None = None,
) -> Ledger:
    owner = get_user(session, owner_id)
    ledger = Ledger(
        name=normalize_name(name, what="Ledger name"),
        description=description,
        currency=_check_currency(currency),
        month_start_day=_check_month_start_day(month_start_day),
        owner_id=owner.id,
    )
    session.add(ledger)
    session.flush()

    session.add(LedgerMember(ledger_id=ledger.id, user_id=owner.id, role=MemberRole.OWNER.value))
    for order, (group_name, group_type) in enumerate(DEFAULT_ASSET_GROUPS):
        session.add(
            AssetGroup(ledger_id=ledger.id, name=group_name, type=group_type, sort_order=order)
        )
    # sort_order restarts per category type.
    per_type: dict[str, int] = {}
    for cat_name, cat_type in DEFAULT_CATEGORIES:
        order = per_type.get(cat_type, 0)
        per_type[cat_type] = order + 1
        session.add(Category(ledger_id=ledger.id, name=cat_name, type=cat_type, sort_order=order))

    if owner.main_ledger_id is None:
        owner.main_ledger_id = ledger.id
    session.flush()
    _logger.info("created ledger %s for user=%s", ledger.id, owner.id)
    return ledger


def update_ledger(
    session: Session,
    *,
    ledger_id: str,
    acting_user_id: str,
    name: str | None = None,
    description: str | None = None,
    currency: str | None = None,
    month_start_day: int | None = None,
) -> Ledger:
    require_owner(session, ledger_id=ledger_id, user_id=acting_user_id)
    ledger = _get_ledger(session, ledger_id)
    if name is not None:
        ledger.name = normalize_name(name, what="Ledger name")
    if description is not None:
        ledger.description = description
    if currency is not None:
        ledger.currency = _check_currency(currency)
    if month_start_day is not None:
        ledger.month_start_day = _check_month_start_day(month_start_day)
    session.flush()
    return ledger


def delete_ledger(
    session: Session, *, ledger_id: str, acting_user_id: str, confirmation_name: str
) -> None:
    """Delete a ledger and everything in it; the owner must retype its name."""

    require_owner(session, ledger_id=ledger_id, user_id=acting_user_id)
    ledger = _get_ledger(session, ledger_id)
    if ledger.name != confirmation_name:
        raise ValidationError("The confirmation name does not match the ledger name")

    # Children first; transactions cascade to their splits and tag links.
    for tx in session.execute(select(Transaction).where(Transaction.ledger_id == ledger_id)).scalars():
        session.delete(tx)
    session.flush()
    session.execute(delete(Tag).where(Tag.ledger_id == ledger_id))
    session.execute(delete(Asset).where(Asset.ledger_id == ledger_id))
    session.execute(delete(AssetGroup).where(AssetGroup.ledger_id == ledger_id))
    session.execute(update(Category).where(Category.ledger_id == ledger_id).values(parent_id=None))
    session.execute(delete(Category).where(Category.ledger_id == ledger_id))
    session.execute(delete(LedgerInvitation).where(LedgerInvitation.ledger_id == ledger_id))
    session.execute(
        update(User).where(User.main_ledger_id == ledger_id).values(main_ledger_id=None)
    )
    session.delete(ledger)
    session.flush()
    audit("ledger.deleted", ledger=ledger_id, name=confirmation_name, by=acting_user_id)


def set_main_ledger(session: Session, *, ledger_id: str, acting_user_id: str) -> None:
    require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
    get_user(session, acting_user_id).main_ledger_id = ledger_id
    session.flush()


def list_ledgers_for_user(session: Session, *, user_id: str) -> list[LedgerView]:
    user = get_user(session, user_id)
    member_counts = (
        select(LedgerMember.ledger_id, func.count().label("n"))
        .group_by(LedgerMember.ledger_id)
        .subquery()
    )
    rows = session.execute(
        select(Ledger, LedgerMember.role, member_counts.c.n)
        .join(LedgerMember, LedgerMember.ledger_id == Ledger.id)
        .join(member_counts, member_counts.c.ledger_id == Ledger.id)
        .where(LedgerMember.user_id == user_id)
        .order_by(LedgerMember.created_at, Ledger.id)
    ).all()
    return [
        ledger_view(ledger, role=role, member_count=n, main_ledger_id=user.main_ledger_id)
        for ledger, role, n in rows
    ]


def ledger_view(
    ledger: Ledger, *, role: str, member_count: int, main_ledger_id: str | None
) -> LedgerView:
    return LedgerView(
        id=ledger.id,
        name=ledger.name,
        description=ledger.description,
        currency=ledger.currency,
        month_start_day=ledger.month_start_day,
        role=role,
        member_count=member_count,
        is_main=main_ledger_id == ledger.id,
    )


def financial_month_range(month_start_day: int, on: date) -> tuple[date, date]:
    """Return the inclusive ``(first, last)`` days of the financial month containing ``on``.

    With ``month_start_day=25``, 2024-03-10 falls in 2024-02-25..2024-03-24.
    """

    _check_month_start_day(month_start_day)
    if on.day >= month_start_day:
        start = on.replace(day=month_start_day)
    else:
        year, month = (on.year - 1, 12) if on.month == 1 else (on.year, on.month - 1)
        start = date(year, month, month_start_day)
    next_year, next_month = (start.year + 1, 1) if start.month == 12 else (start.year, start.month + 1)
    next_start = date(next_year, next_month, min(month_start_day, monthrange(next_year, next_month)[1]))
    return start, date.fromordinal(next_start.toordinal() - 1)


__all__ = [
    "DEFAULT_ASSET_GROUPS",
    "DEFAULT_CATEGORIES",
    "register_user",
    "create_ledger",
    "update_ledger",
    "delete_ledger",
    "set_main_ledger",
    "list_ledgers_for_user",
    "ledger_view",
    "financial_month_range",
]
