"""Transaction posting: validate, then apply atomically.

A transaction's balance effect is fully determined by its type:

- INCOME   ``asset += amount``
- EXPENSE  ``asset -= amount``
- TRANSFER ``asset -= amount`` and ``counter_asset += amount``

Posting validates everything first (no writes happen on a rejected call),
then locks the touched assets, inserts the row with its splits and tags, and
applies the effect as relative increments. The caller's ``session_scope``
makes the whole thing one commit: a failure anywhere, including between the
two legs of a transfer, rolls every write back.

Updating or deleting a transaction reverses its stored effect before the new
one (if any) is applied, so ``current_balance == initial_balance + sum of
effects`` holds for every asset after every commit.

Categorised INCOME/EXPENSE transactions always own a non-empty split list: a
lone ``category_id`` becomes a single split carrying the full amount.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import pydantic
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from db.models.ledger import (
    Tag,
    Transaction,
    TransactionComment,
    TransactionSplit,
    TransactionTag,
)

from . import accounts
from .accounts import apply_balance_delta
from .categories import resolve_split_category
from .errors import (
    MissingFieldError,
    NotFoundError,
    SameAssetTransferError,
    SplitSumMismatchError,
    ValidationError,
)
from .logging_setup import get_logger
from .membership import require_editor, require_member
from .models import SplitInput, TransactionPage, TransactionType, coerce_model, utcnow
from .validation import check_enum, check_positive_amount, parse_instant

_logger = get_logger("ledger_engine.posting")

_UNSET: Any = object()
_TX_TYPES = tuple(t.value for t in TransactionType)

MAX_SPLITS = 20
MAX_TAGS = 20
MAX_TAG_LEN = 40
MAX_MEMO_LEN = 200
MAX_PAGE_SIZE = 100

# Eager loads needed to build a TransactionView after the session closes.
_VIEW_LOADS = (
    selectinload(Transaction.splits),
    selectinload(Transaction.tags).selectinload(TransactionTag.tag),
    selectinload(Transaction.comments).selectinload(TransactionComment.user),
)


@dataclass(frozen=True, slots=True)
class _Posting:
    """A fully validated transaction ready to be written."""

    type: str
    amount: int
    occurred_at: datetime
    asset_id: str
    counter_asset_id: str | None
    category_id: str | None
    splits: tuple[SplitInput, ...]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _coerce_splits(raw: Iterable[Any] | None) -> tuple[SplitInput, ...]:
    if raw is None:
        return ()
    items = list(raw)
    if len(items) > MAX_SPLITS:
        raise ValidationError(f"At most {MAX_SPLITS} splits are allowed")
    out: list[SplitInput] = []
    for i, item in enumerate(items):
        try:
            out.append(coerce_model(SplitInput, item))
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid split #{i + 1}: {e.errors()[0]['msg']}") from None
    return tuple(out)


def _validate(
    session: Session,
    *,
    ledger_id: str,
    type: Any,
    amount: Any,
    date: Any,
    asset_id: str | None,
    counter_asset_id: str | None,
    category_id: str | None,
    splits: Iterable[Any] | None,
) -> _Posting:
    """Run every posting check in order; raise the first failure."""

    # 1. enum and amount
    tx_type = check_enum("type", type, _TX_TYPES)
    tx_amount = check_positive_amount(amount)

    # 2. date
    occurred_at = parse_instant(date)

    split_inputs = _coerce_splits(splits)

    # 3./4. shape per type
    if tx_type == TransactionType.TRANSFER:
        if not asset_id:
            raise MissingFieldError("asset_id")
        if not counter_asset_id:
            raise MissingFieldError("counter_asset_id")
        if asset_id == counter_asset_id:
            raise SameAssetTransferError("A transfer needs two different assets")
        if category_id is not None or split_inputs:
            raise ValidationError("Transfers cannot carry a category or splits")
    else:
        if not asset_id:
            raise MissingFieldError("asset_id")
        if counter_asset_id is not None:
            raise ValidationError(f"{tx_type} transactions cannot have a counter asset")

    # 5. asset existence and ledger scope
    accounts.resolve_asset(session, ledger_id=ledger_id, asset_id=asset_id)
    if counter_asset_id is not None:
        accounts.resolve_asset(session, ledger_id=ledger_id, asset_id=counter_asset_id)

    # 6. split allocation
    if tx_type != TransactionType.TRANSFER:
        if not split_inputs and category_id is not None:
            split_inputs = (SplitInput(category_id=category_id, amount=tx_amount),)
        if split_inputs:
            for s in split_inputs:
                check_positive_amount(s.amount, field="split amount")
            total = sum(s.amount for s in split_inputs)
            if total != tx_amount:
                raise SplitSumMismatchError(tx_amount, total)
            if category_id is not None:
                resolve_split_category(
                    session, ledger_id=ledger_id, category_id=category_id, expected_type=tx_type
                )
            for s in split_inputs:
                resolve_split_category(
                    session, ledger_id=ledger_id, category_id=s.category_id, expected_type=tx_type
                )

    return _Posting(
        type=tx_type,
        amount=tx_amount,
        occurred_at=occurred_at,
        asset_id=asset_id,
        counter_asset_id=counter_asset_id,
        category_id=category_id,
        splits=split_inputs,
    )


def _check_memo(memo: str | None) -> None:
    if memo is not None and len(memo) > MAX_MEMO_LEN:
        raise ValidationError(f"memo must be at most {MAX_MEMO_LEN} characters")


def _normalize_tags(tags: Iterable[str] | None) -> list[str]:
    if tags is None:
        return []
    names: list[str] = []
    for t in tags:
        n = str(t).strip()
        if not n:
            continue
        if len(n) > MAX_TAG_LEN:
            raise ValidationError(f"Tags must be at most {MAX_TAG_LEN} characters")
        if n not in names:
            names.append(n)
    if len(names) > MAX_TAGS:
        raise ValidationError(f"At most {MAX_TAGS} tags are allowed")
    return names


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


def balance_effect(
    type: str, amount: int, asset_id: str, counter_asset_id: str | None
) -> list[tuple[str, int]]:
    """Return the signed ``(asset_id, delta)`` legs of a transaction."""

    if type == TransactionType.INCOME:
        return [(asset_id, amount)]
    if type == TransactionType.EXPENSE:
        return [(asset_id, -amount)]
    if counter_asset_id is None:
        raise MissingFieldError("counter_asset_id")
    return [(asset_id, -amount), (counter_asset_id, amount)]


def _apply_legs(session: Session, legs: Sequence[tuple[str, int]], *, sign: int = 1) -> None:
    for asset_id, delta in legs:
        apply_balance_delta(session, asset_id=asset_id, delta=sign * delta)


def _effect_of(tx: Transaction) -> list[tuple[str, int]]:
    return balance_effect(tx.type, tx.amount, tx.asset_id, tx.counter_asset_id)


def _build_splits(splits: Sequence[SplitInput]) -> list[TransactionSplit]:
    return [
        TransactionSplit(category_id=s.category_id, amount=s.amount, memo=s.memo, position=i)
        for i, s in enumerate(splits)
    ]


def _sync_tags(session: Session, tx: Transaction, names: Sequence[str]) -> None:
    """Point ``tx`` at exactly ``names``, creating ledger tags as needed.

    Links for names that stay are kept as-is so no (transaction, tag) key is
    deleted and re-inserted within one flush.
    """

    current = {link.tag.name: link for link in tx.tags}
    existing = {
        t.name: t
        for t in session.execute(
            select(Tag).where(Tag.ledger_id == tx.ledger_id, Tag.name.in_(list(names)))
        ).scalars()
    } if names else {}
    links: list[TransactionTag] = []
    for name in names:
        if name in current:
            links.append(current[name])
            continue
        tag = existing.get(name)
        if tag is None:
            tag = Tag(ledger_id=tx.ledger_id, name=name)
            session.add(tag)
            existing[name] = tag
        links.append(TransactionTag(tag=tag))
    tx.tags = links


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def post_transaction(
    session: Session,
    *,
    ledger_id: str,
    acting_user_id: str,
    type: Any,
    amount: Any,
    date: Any,
    asset_id: str | None = None,
    counter_asset_id: str | None = None,
    category_id: str | None = None,
    splits: Iterable[SplitInput | Mapping[str, Any]] | None = None,
    memo: str | None = None,
    note: str | None = None,
    tags: Iterable[str] | None = None,
) -> Transaction:
    """Validate and record a transaction together with its balance effect."""

    require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
    posting = _validate(
        session,
        ledger_id=ledger_id,
        type=type,
        amount=amount,
        date=date,
        asset_id=asset_id,
        counter_asset_id=counter_asset_id,
        category_id=category_id,
        splits=splits,
    )
    _check_memo(memo)
    tag_names = _normalize_tags(tags)

    legs = balance_effect(
        posting.type, posting.amount, posting.asset_id, posting.counter_asset_id
    )
    locked = accounts.lock_assets(session, (a for a, _ in legs))

    tx = Transaction(
        ledger_id=ledger_id,
        created_by_id=acting_user_id,
        type=posting.type,
        amount=posting.amount,
        occurred_at=posting.occurred_at,
        asset_id=posting.asset_id,
        counter_asset_id=posting.counter_asset_id,
        category_id=posting.category_id,
        memo=memo,
        note=note,
    )
    tx.splits = _build_splits(posting.splits)
    _sync_tags(session, tx, tag_names)
    session.add(tx)
    session.flush()

    _apply_legs(session, legs)
    accounts.refresh_balances(session, locked)

    _logger.info(
        "posted %s %s amount=%d ledger=%s legs=%s",
        posting.type,
        tx.id,
        posting.amount,
        ledger_id,
        legs,
    )
    return tx


def _load_for_update(session: Session, *, ledger_id: str, transaction_id: str) -> Transaction:
    tx = session.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id, Transaction.ledger_id == ledger_id)
        .with_for_update()
    ).scalar_one_or_none()
    if tx is None:
        raise NotFoundError(f"Transaction not found: {transaction_id}")
    return tx


def update_transaction(
    session: Session,
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    type: Any = _UNSET,
    amount: Any = _UNSET,
    date: Any = _UNSET,
    asset_id: Any = _UNSET,
    counter_asset_id: Any = _UNSET,
    category_id: Any = _UNSET,
    splits: Any = _UNSET,
    memo: Any = _UNSET,
    note: Any = _UNSET,
    tags: Any = _UNSET,
) -> Transaction:
    """Change a transaction, reversing its old effect before applying the new one.

    Omitted arguments keep their stored values. When ``splits`` is omitted and
    the stored allocation is the implicit single-category split, it follows
    the new ``amount``/``category_id``; explicit multi-splits are kept and
    re-checked against the new amount.
    """

    require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
    tx = _load_for_update(session, ledger_id=ledger_id, transaction_id=transaction_id)

    def pick(value: Any, current: Any) -> Any:
        return current if value is _UNSET else value

    merged_category = pick(category_id, tx.category_id)
    if splits is _UNSET:
        implicit = len(tx.splits) <= 1 and all(s.category_id == tx.category_id for s in tx.splits)
        merged_splits = (
            None
            if implicit
            else [SplitInput(category_id=s.category_id, amount=s.amount, memo=s.memo) for s in tx.splits]
        )
    else:
        merged_splits = splits

    posting = _validate(
        session,
        ledger_id=ledger_id,
        type=pick(type, tx.type),
        amount=pick(amount, tx.amount),
        date=pick(date, tx.occurred_at),
        asset_id=pick(asset_id, tx.asset_id),
        counter_asset_id=pick(counter_asset_id, tx.counter_asset_id),
        category_id=merged_category,
        splits=merged_splits,
    )
    new_memo = pick(memo, tx.memo)
    new_note = pick(note, tx.note)
    _check_memo(new_memo)
    tag_names = None if tags is _UNSET else _normalize_tags(tags)

    old_legs = _effect_of(tx)
    new_legs = balance_effect(
        posting.type, posting.amount, posting.asset_id, posting.counter_asset_id
    )
    locked = accounts.lock_assets(session, [a for a, _ in old_legs] + [a for a, _ in new_legs])

    _apply_legs(session, old_legs, sign=-1)

    tx.type = posting.type
    tx.amount = posting.amount
    tx.occurred_at = posting.occurred_at
    tx.asset_id = posting.asset_id
    tx.counter_asset_id = posting.counter_asset_id
    tx.category_id = posting.category_id
    tx.memo = new_memo
    tx.note = new_note
    tx.updated_at = utcnow()
    tx.splits = _build_splits(posting.splits)
    if tag_names is not None:
        _sync_tags(session, tx, tag_names)
    session.flush()

    _apply_legs(session, new_legs)
    accounts.refresh_balances(session, locked)

    _logger.info("updated transaction %s: reversed %s, applied %s", tx.id, old_legs, new_legs)
    return tx


def delete_transaction(
    session: Session, *, ledger_id: str, acting_user_id: str, transaction_id: str
) -> None:
    """Reverse the transaction's balance effect and remove it."""

    require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
    tx = _load_for_update(session, ledger_id=ledger_id, transaction_id=transaction_id)
    legs = _effect_of(tx)
    accounts.lock_assets(session, (a for a, _ in legs))
    _apply_legs(session, legs, sign=-1)
    session.delete(tx)
    session.flush()
    _logger.info("deleted transaction %s: reversed %s", transaction_id, legs)


def get_transaction(
    session: Session, *, ledger_id: str, acting_user_id: str, transaction_id: str
) -> Transaction:
    require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
    tx = session.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id, Transaction.ledger_id == ledger_id)
        .options(*_VIEW_LOADS)
    ).scalar_one_or_none()
    if tx is None:
        raise NotFoundError(f"Transaction not found: {transaction_id}")
    return tx


def list_transactions(
    session: Session,
    *,
    ledger_id: str,
    acting_user_id: str,
    start: Any = None,
    end: Any = None,
    asset_id: str | None = None,
    category_id: str | None = None,
    types: Iterable[str] | None = None,
    search: str | None = None,
    newest_first: bool = True,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Transaction], int]:
    """Return one page of transactions and the total match count.

    ``search`` matches memo, note, or any comment, case-insensitively.
    """

    require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    conds = [Transaction.ledger_id == ledger_id]
    if start is not None:
        conds.append(Transaction.occurred_at >= parse_instant(start, field="start"))
    if end is not None:
        conds.append(Transaction.occurred_at <= parse_instant(end, field="end"))
    if asset_id is not None:
        conds.append(
            or_(Transaction.asset_id == asset_id, Transaction.counter_asset_id == asset_id)
        )
    if category_id is not None:
        conds.append(
            or_(
                Transaction.category_id == category_id,
                Transaction.splits.any(TransactionSplit.category_id == category_id),
            )
        )
    if types:
        conds.append(Transaction.type.in_([check_enum("type", t, _TX_TYPES) for t in types]))
    if search is not None and search.strip():
        pattern = f"%{search.strip()}%"
        conds.append(
            or_(
                Transaction.memo.ilike(pattern),
                Transaction.note.ilike(pattern),
                Transaction.comments.any(TransactionComment.content.ilike(pattern)),
            )
        )

    total = session.execute(
        select(func.count()).select_from(Transaction).where(*conds)
    ).scalar_one()
    order = Transaction.occurred_at.desc() if newest_first else Transaction.occurred_at.asc()
    rows = (
        session.execute(
            select(Transaction)
            .where(*conds)
            .order_by(order, Transaction.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
            .options(*_VIEW_LOADS)
        )
        .scalars()
        .all()
    )
    return list(rows), total


def page_of(rows: Sequence[Any], *, total: int, page: int, page_size: int) -> TransactionPage:
    return TransactionPage(
        items=tuple(rows),
        page=page,
        page_size=page_size,
        total=total,
        total_pages=max(1, -(-total // page_size)),
    )


__all__ = [
    "balance_effect",
    "post_transaction",
    "update_transaction",
    "delete_transaction",
    "get_transaction",
    "list_transactions",
    "page_of",
]
