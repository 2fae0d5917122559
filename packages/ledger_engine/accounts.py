"""Asset groups, assets, and their balances.

Balances follow one rule: ``current_balance`` only changes through
:func:`apply_balance_delta`, which issues a relative SQL increment
(``current_balance = current_balance + :delta``). Posting takes a row lock on
every touched asset first (:func:`lock_assets`), so concurrent postings
against the same asset serialize instead of clobbering each other. Editing an
asset never touches either balance column.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from db.models.ledger import Asset, AssetGroup, Transaction

from .errors import (
    AssetNotFoundError,
    AssetNotInLedgerError,
    BalanceOutOfRangeError,
    ConflictError,
    InvalidEnumError,
    NotFoundError,
    ScopeMismatchError,
    ValidationError,
)
from .logging_setup import get_logger
from .models import AssetGroupType, AssetKind
from .validation import MAX_AMOUNT, MIN_AMOUNT, check_balance, normalize_name

_logger = get_logger("ledger_engine.accounts")

_UNSET = object()


# ---------------------------
# Asset groups
# ---------------------------


def _check_group_type(value: str) -> str:
    allowed = tuple(t.value for t in AssetGroupType)
    if value not in allowed:
        raise InvalidEnumError("asset group type", value, allowed)
    return value


def get_group(session: Session, *, ledger_id: str, group_id: str) -> AssetGroup:
    group = session.get(AssetGroup, group_id)
    if group is None:
        raise NotFoundError(f"Asset group not found: {group_id}")
    if group.ledger_id != ledger_id:
        raise ScopeMismatchError(f"Asset group {group_id} does not belong to ledger {ledger_id}")
    return group


def create_group(session: Session, *, ledger_id: str, name: str, type: str) -> AssetGroup:
    """Create a group at the end of the ledger's group ordering."""

    name_n = normalize_name(name, what="Asset group name")
    _check_group_type(type)

    clash = session.execute(
        select(AssetGroup.id).where(AssetGroup.ledger_id == ledger_id, AssetGroup.name == name_n)
    ).first()
    if clash is not None:
        raise ConflictError(f"An asset group named '{name_n}' already exists")

    max_order = session.execute(
        select(func.max(AssetGroup.sort_order)).where(AssetGroup.ledger_id == ledger_id)
    ).scalar_one()
    group = AssetGroup(
        ledger_id=ledger_id,
        name=name_n,
        type=type,
        sort_order=(max_order if max_order is not None else -1) + 1,
    )
    session.add(group)
    session.flush()
    return group


def update_group(
    session: Session,
    *,
    ledger_id: str,
    group_id: str,
    name: str | None = None,
    type: str | None = None,
) -> AssetGroup:
    group = get_group(session, ledger_id=ledger_id, group_id=group_id)
    if name is not None:
        name_n = normalize_name(name, what="Asset group name")
        clash = session.execute(
            select(AssetGroup.id).where(
                AssetGroup.ledger_id == ledger_id,
                AssetGroup.name == name_n,
                AssetGroup.id != group_id,
            )
        ).first()
        if clash is not None:
            raise ConflictError(f"An asset group named '{name_n}' already exists")
        group.name = name_n
    if type is not None:
        group.type = _check_group_type(type)
    session.flush()
    return group


def delete_group(session: Session, *, ledger_id: str, group_id: str) -> None:
    """Delete a group; its assets are detached (``group_id`` cleared), not deleted."""

    group = get_group(session, ledger_id=ledger_id, group_id=group_id)
    detached = session.execute(
        update(Asset).where(Asset.group_id == group_id).values(group_id=None)
    ).rowcount
    session.delete(group)
    session.flush()
    _logger.info("deleted asset group %s (detached %d assets)", group_id, detached or 0)


def list_groups(session: Session, *, ledger_id: str) -> list[AssetGroup]:
    return list(
        session.execute(
            select(AssetGroup)
            .where(AssetGroup.ledger_id == ledger_id)
            .order_by(AssetGroup.sort_order, AssetGroup.name)
        )
        .scalars()
        .all()
    )


# ---------------------------
# Assets
# ---------------------------


def _check_kind(value: str) -> str:
    allowed = tuple(k.value for k in AssetKind)
    if value not in allowed:
        raise InvalidEnumError("asset kind", value, allowed)
    return value


def _check_billing_day(kind: str, billing_day: int | None) -> None:
    if billing_day is not None and not 1 <= billing_day <= 31:
        raise ValidationError("Billing day must be between 1 and 31")
    if kind == AssetKind.CREDIT_CARD and billing_day is None:
        raise ValidationError("Credit cards require a billing day")


def create_asset(
    session: Session,
    *,
    ledger_id: str,
    name: str,
    kind: str,
    initial_balance: int = 0,
    group_id: str | None = None,
    include_in_net_worth: bool = True,
    billing_day: int | None = None,
    upcoming_payment_amount: int | None = None,
) -> Asset:
    name_n = normalize_name(name, what="Asset name")
    _check_kind(kind)
    _check_billing_day(kind, billing_day)
    check_balance(initial_balance, field="initial_balance")
    if upcoming_payment_amount is not None:
        check_balance(upcoming_payment_amount, field="upcoming_payment_amount")
    if group_id is not None:
        get_group(session, ledger_id=ledger_id, group_id=group_id)

    group_filter = Asset.group_id == group_id if group_id is not None else Asset.group_id.is_(None)
    max_order = session.execute(
        select(func.max(Asset.sort_order)).where(Asset.ledger_id == ledger_id, group_filter)
    ).scalar_one()

    asset = Asset(
        ledger_id=ledger_id,
        group_id=group_id,
        name=name_n,
        kind=kind,
        initial_balance=initial_balance,
        current_balance=initial_balance,
        include_in_net_worth=include_in_net_worth,
        billing_day=billing_day,
        upcoming_payment_amount=upcoming_payment_amount,
        sort_order=(max_order if max_order is not None else -1) + 1,
    )
    session.add(asset)
    session.flush()
    return asset


def update_asset(
    session: Session,
    *,
    ledger_id: str,
    asset_id: str,
    name: str | None = None,
    kind: str | None = None,
    group_id: object = _UNSET,
    include_in_net_worth: bool | None = None,
    billing_day: object = _UNSET,
    upcoming_payment_amount: object = _UNSET,
) -> Asset:
    """Edit descriptive fields. Balances are deliberately not parameters here."""

    asset = resolve_asset(session, ledger_id=ledger_id, asset_id=asset_id)
    if name is not None:
        asset.name = normalize_name(name, what="Asset name")
    if kind is not None:
        asset.kind = _check_kind(kind)
    if group_id is not _UNSET:
        if group_id is not None:
            get_group(session, ledger_id=ledger_id, group_id=str(group_id))
        asset.group_id = group_id  # type: ignore[assignment]
    if include_in_net_worth is not None:
        asset.include_in_net_worth = include_in_net_worth
    if billing_day is not _UNSET:
        asset.billing_day = billing_day  # type: ignore[assignment]
    if upcoming_payment_amount is not _UNSET:
        if upcoming_payment_amount is not None:
            check_balance(upcoming_payment_amount, field="upcoming_payment_amount")
        asset.upcoming_payment_amount = upcoming_payment_amount  # type: ignore[assignment]
    _check_billing_day(asset.kind, asset.billing_day)
    session.flush()
    return asset


def delete_asset(session: Session, *, ledger_id: str, asset_id: str) -> None:
    asset = resolve_asset(session, ledger_id=ledger_id, asset_id=asset_id)
    referenced = session.execute(
        select(func.count())
        .select_from(Transaction)
        .where((Transaction.asset_id == asset_id) | (Transaction.counter_asset_id == asset_id))
    ).scalar_one()
    if referenced:
        raise ConflictError(
            f"Asset {asset_id} is referenced by {referenced} transaction(s); delete those first"
        )
    session.delete(asset)
    session.flush()


def list_assets(session: Session, *, ledger_id: str) -> list[Asset]:
    return list(
        session.execute(
            select(Asset)
            .where(Asset.ledger_id == ledger_id)
            .order_by(Asset.group_id, Asset.sort_order, Asset.name)
        )
        .scalars()
        .all()
    )


def resolve_asset(session: Session, *, ledger_id: str, asset_id: str) -> Asset:
    """Return the asset, distinguishing "no such row" from "other ledger"."""

    asset = session.get(Asset, asset_id)
    if asset is None:
        raise AssetNotFoundError(asset_id)
    if asset.ledger_id != ledger_id:
        raise AssetNotInLedgerError(asset_id, ledger_id)
    return asset


def lock_assets(session: Session, asset_ids: Iterable[str]) -> list[Asset]:
    """Take row locks on the given assets in id order.

    A fixed lock order keeps two transfers in opposite directions between
    the same pair of assets from deadlocking each other.
    """

    ids = sorted(set(asset_ids))
    if not ids:
        return []
    return list(
        session.execute(
            select(Asset)
            .where(Asset.id.in_(ids))
            .order_by(Asset.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )


def apply_balance_delta(session: Session, *, asset_id: str, delta: int) -> None:
    """Add ``delta`` to the asset's balance as a single relative UPDATE.

    The caller holds the row lock from :func:`lock_assets`, so the balance read
    here for the range check is the one the UPDATE will increment.
    """

    if delta == 0:
        return
    current = session.execute(
        select(Asset.current_balance).where(Asset.id == asset_id)
    ).scalar_one_or_none()
    if current is None:
        raise AssetNotFoundError(asset_id)
    if not MIN_AMOUNT <= current + delta <= MAX_AMOUNT:
        raise BalanceOutOfRangeError(asset_id, current, delta)
    result = session.execute(
        update(Asset)
        .where(Asset.id == asset_id)
        .values(current_balance=Asset.current_balance + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AssetNotFoundError(asset_id)


def refresh_balances(session: Session, assets: Sequence[Asset]) -> None:
    """Reload balance columns after relative UPDATEs bypassed the identity map."""

    for asset in assets:
        session.refresh(asset, attribute_names=["current_balance"])


__all__ = [
    "get_group",
    "create_group",
    "update_group",
    "delete_group",
    "list_groups",
    "create_asset",
    "update_asset",
    "delete_asset",
    "list_assets",
    "resolve_asset",
    "lock_assets",
    "apply_balance_delta",
    "refresh_balances",
]
