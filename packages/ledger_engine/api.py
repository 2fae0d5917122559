"""Public API for the ``ledger_engine`` package.

Each function here is one unit of work: it opens a single
:func:`db.client.session_scope`, calls into the service modules with that
session, builds frozen view objects while the session is still open, and
commits on the way out. Nothing returned from this module is a live ORM row.

Database failures raised while running or committing the unit of work
(lock timeouts, deadlocks, constraint races, dropped connections) surface as
:class:`~ledger_engine.errors.PersistenceError`, which is marked retryable.
Values the database refuses to store (``DataError``) surface as a non-retryable
:class:`~ledger_engine.errors.ValidationError`. Domain errors pass through
unchanged.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy.exc import DataError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from db.client import session_scope

from . import accounts, categories, comments, invitations, ledgers, membership, posting
from . import reorder as _reorder
from .errors import LedgerError, PersistenceError, ValidationError
from .logging_setup import get_logger
from .models import (
    AssetGroupView,
    AssetView,
    CategoryView,
    CommentView,
    InvitationView,
    LedgerView,
    MemberView,
    ReorderItem,
    ReorderKind,
    SplitInput,
    TransactionPage,
    TransactionView,
)
from .notifier import EmailNotifier, LoggingEmailNotifier

_logger = get_logger("ledger_engine.api")


@contextmanager
def _unit_of_work(database_url: str | None) -> Iterator[Session]:
    try:
        with session_scope(database_url=database_url) as session:
            yield session
    except LedgerError:
        raise
    except DataError as e:
        _logger.warning("unit of work rejected by the database: %s", e.orig)
        raise ValidationError(f"Value rejected by the database: {e.orig}") from e
    except (OperationalError, IntegrityError) as e:
        _logger.warning("unit of work failed in the database: %s", e.orig)
        raise PersistenceError(f"Database operation failed: {e.orig}") from e


def _ledger_view(session: Session, ledger_id: str, user_id: str) -> LedgerView:
    for view in ledgers.list_ledgers_for_user(session, user_id=user_id):
        if view.id == ledger_id:
            return view
    raise RuntimeError(f"user {user_id} lost access to ledger {ledger_id} mid-operation")


# ---- Users and ledgers -------------------------------------------------------


def register_user(
    *, email: str, nickname: str | None = None, database_url: str | None = None
) -> str:
    """Create a user (with a default ledger) and return the new user id."""

    with _unit_of_work(database_url) as session:
        return ledgers.register_user(session, email=email, nickname=nickname).id


def create_ledger(
    *,
    acting_user_id: str,
    name: str,
    currency: str = ledgers.DEFAULT_CURRENCY,
    month_start_day: int = 1,
    description: str | None = None,
    database_url: str | None = None,
) -> LedgerView:
    with _unit_of_work(database_url) as session:
        ledger = ledgers.create_ledger(
            session,
            owner_id=acting_user_id,
            name=name,
            currency=currency,
            month_start_day=month_start_day,
            description=description,
        )
        return _ledger_view(session, ledger.id, acting_user_id)


def update_ledger(
    *,
    ledger_id: str,
    acting_user_id: str,
    name: str | None = None,
    description: str | None = None,
    currency: str | None = None,
    month_start_day: int | None = None,
    database_url: str | None = None,
) -> LedgerView:
    with _unit_of_work(database_url) as session:
        ledgers.update_ledger(
            session,
            ledger_id=ledger_id,
            acting_user_id=acting_user_id,
            name=name,
            description=description,
            currency=currency,
            month_start_day=month_start_day,
        )
        return _ledger_view(session, ledger_id, acting_user_id)


def delete_ledger(
    *,
    ledger_id: str,
    acting_user_id: str,
    confirmation_name: str,
    database_url: str | None = None,
) -> None:
    with _unit_of_work(database_url) as session:
        ledgers.delete_ledger(
            session,
            ledger_id=ledger_id,
            acting_user_id=acting_user_id,
            confirmation_name=confirmation_name,
        )


def set_main_ledger(
    *, ledger_id: str, acting_user_id: str, database_url: str | None = None
) -> None:
    with _unit_of_work(database_url) as session:
        ledgers.set_main_ledger(session, ledger_id=ledger_id, acting_user_id=acting_user_id)


def list_ledgers(*, acting_user_id: str, database_url: str | None = None) -> list[LedgerView]:
    with _unit_of_work(database_url) as session:
        return ledgers.list_ledgers_for_user(session, user_id=acting_user_id)


def list_members(
    *, ledger_id: str, acting_user_id: str, database_url: str | None = None
) -> list[MemberView]:
    with _unit_of_work(database_url) as session:
        membership.require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
        return [MemberView.from_row(m) for m in membership.list_members(session, ledger_id=ledger_id)]


# ---- Transactions ------------------------------------------------------------


def post_transaction(
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
    database_url: str | None = None,
) -> TransactionView:
    """Record a transaction and its balance effect as one commit."""

    with _unit_of_work(database_url) as session:
        tx = posting.post_transaction(
            session,
            ledger_id=ledger_id,
            acting_user_id=acting_user_id,
            type=type,
            amount=amount,
            date=date,
            asset_id=asset_id,
            counter_asset_id=counter_asset_id,
            category_id=category_id,
            splits=splits,
            memo=memo,
            note=note,
            tags=tags,
        )
        return TransactionView.from_row(tx)


def update_transaction(
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    database_url: str | None = None,
    **changes: Any,
) -> TransactionView:
    """Apply ``changes`` (any of the posting fields) to a stored transaction.

    Only the keys present in ``changes`` are updated; passing ``None`` clears
    an optional field.
    """

    with _unit_of_work(database_url) as session:
        tx = posting.update_transaction(
            session,
            ledger_id=ledger_id,
            acting_user_id=acting_user_id,
            transaction_id=transaction_id,
            **changes,
        )
        return TransactionView.from_row(tx)


def delete_transaction(
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    database_url: str | None = None,
) -> None:
    with _unit_of_work(database_url) as session:
        posting.delete_transaction(
            session,
            ledger_id=ledger_id,
            acting_user_id=acting_user_id,
            transaction_id=transaction_id,
        )


def get_transaction(
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    database_url: str | None = None,
) -> TransactionView:
    with _unit_of_work(database_url) as session:
        return TransactionView.from_row(
            posting.get_transaction(
                session,
                ledger_id=ledger_id,
                acting_user_id=acting_user_id,
                transaction_id=transaction_id,
            )
        )


def list_transactions(
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
    database_url: str | None = None,
) -> TransactionPage:
    with _unit_of_work(database_url) as session:
        rows, total = posting.list_transactions(
            session,
            ledger_id=ledger_id,
            acting_user_id=acting_user_id,
            start=start,
            end=end,
            asset_id=asset_id,
            category_id=category_id,
            types=types,
            search=search,
            newest_first=newest_first,
            page=page,
            page_size=page_size,
        )
        return posting.page_of(
            [TransactionView.from_row(r) for r in rows],
            total=total,
            page=page,
            page_size=page_size,
        )



# ---- Comments ----------------------------------------------------------------


def add_comment(
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    content: str,
    now: datetime | None = None,
    database_url: str | None = None,
) -> CommentView:
    with _unit_of_work(database_url) as session:
        return CommentView.from_row(
            comments.create_comment(
                session,
                ledger_id=ledger_id,
                acting_user_id=acting_user_id,
                transaction_id=transaction_id,
                content=content,
                now=now,
            )
        )


def edit_comment(
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    comment_id: str,
    content: str,
    now: datetime | None = None,
    database_url: str | None = None,
) -> CommentView:
    """Replace the text of a comment; only its author may do this."""

    with _unit_of_work(database_url) as session:
        return CommentView.from_row(
            comments.update_comment(
                session,
                ledger_id=ledger_id,
                acting_user_id=acting_user_id,
                transaction_id=transaction_id,
                comment_id=comment_id,
                content=content,
                now=now,
            )
        )


def delete_comment(
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    comment_id: str,
    database_url: str | None = None,
) -> None:
    with _unit_of_work(database_url) as session:
        comments.delete_comment(
            session,
            ledger_id=ledger_id,
            acting_user_id=acting_user_id,
            transaction_id=transaction_id,
            comment_id=comment_id,
        )


def list_comments(
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    database_url: str | None = None,
) -> list[CommentView]:
    with _unit_of_work(database_url) as session:
        return [
            CommentView.from_row(c)
            for c in comments.list_comments(
                session,
                ledger_id=ledger_id,
                acting_user_id=acting_user_id,
                transaction_id=transaction_id,
            )
        ]

# ---- Invitations -------------------------------------------------------------


def create_invitation(
    *,
    ledger_id: str,
    acting_user_id: str,
    email: str,
    role: str,
    notifier: EmailNotifier | None = None,
    now: datetime | None = None,
    database_url: str | None = None,
) -> InvitationView:
    """Persist a PENDING invitation, then hand it to ``notifier`` after commit.

    A notifier failure is logged and does not undo the invitation.
    """

    with _unit_of_work(database_url) as session:
        view = InvitationView.from_row(
            invitations.create_invitation(
                session,
                ledger_id=ledger_id,
                acting_user_id=acting_user_id,
                email=email,
                role=role,
                now=now,
            )
        )

    sender = notifier if notifier is not None else LoggingEmailNotifier()
    try:
        sender.send_ledger_invitation_email(
            view.email, view.invited_by_name, view.ledger_name, view.token
        )
    except Exception:
        _logger.exception("failed to deliver invitation %s", view.id)
    return view


def respond_to_invitation(
    *,
    token: str,
    acting_user_id: str,
    acting_user_email: str,
    accept: bool,
    now: datetime | None = None,
    database_url: str | None = None,
) -> InvitationView:
    with _unit_of_work(database_url) as session:
        row = invitations.respond_to_invitation(
            session,
            token=token,
            acting_user_id=acting_user_id,
            acting_user_email=acting_user_email,
            accept=accept,
            now=now,
        )
        return InvitationView.from_row(row)


def revoke_invitation(
    *, invitation_id: str, acting_user_id: str, database_url: str | None = None
) -> None:
    with _unit_of_work(database_url) as session:
        invitations.revoke_invitation(
            session, invitation_id=invitation_id, acting_user_id=acting_user_id
        )


def list_pending_invitations_for_email(
    *, email: str, now: datetime | None = None, database_url: str | None = None
) -> list[InvitationView]:
    with _unit_of_work(database_url) as session:
        return invitations.views(
            invitations.list_pending_invitations_for_email(session, email=email, now=now)
        )


def list_ledger_invitations(
    *, ledger_id: str, acting_user_id: str, database_url: str | None = None
) -> list[InvitationView]:
    with _unit_of_work(database_url) as session:
        return invitations.views(
            invitations.list_ledger_invitations(
                session, ledger_id=ledger_id, acting_user_id=acting_user_id
            )
        )


# ---- Ordering ----------------------------------------------------------------

_REORDER_VIEWS = {
    ReorderKind.ASSET_GROUP: AssetGroupView.from_row,
    ReorderKind.ASSET: AssetView.from_row,
    ReorderKind.CATEGORY: CategoryView.from_row,
}


def reorder(
    *,
    kind: str,
    scope_id: str,
    acting_user_id: str,
    items: Iterable[ReorderItem | Mapping[str, Any]],
    database_url: str | None = None,
) -> list[Any]:
    """Apply a batch of ``sort_order`` values; all of them or none."""

    with _unit_of_work(database_url) as session:
        rows = _reorder.reorder(
            session, kind=kind, scope_id=scope_id, acting_user_id=acting_user_id, items=items
        )
        return [_REORDER_VIEWS[kind](r) for r in rows]


# ---- Asset groups and assets -------------------------------------------------


def create_asset_group(
    *,
    ledger_id: str,
    acting_user_id: str,
    name: str,
    type: str,
    database_url: str | None = None,
) -> AssetGroupView:
    with _unit_of_work(database_url) as session:
        membership.require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
        return AssetGroupView.from_row(
            accounts.create_group(session, ledger_id=ledger_id, name=name, type=type)
        )


def update_asset_group(
    *,
    ledger_id: str,
    acting_user_id: str,
    group_id: str,
    name: str | None = None,
    type: str | None = None,
    database_url: str | None = None,
) -> AssetGroupView:
    with _unit_of_work(database_url) as session:
        membership.require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
        return AssetGroupView.from_row(
            accounts.update_group(
                session, ledger_id=ledger_id, group_id=group_id, name=name, type=type
            )
        )


def delete_asset_group(
    *, ledger_id: str, acting_user_id: str, group_id: str, database_url: str | None = None
) -> None:
    with _unit_of_work(database_url) as session:
        membership.require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
        accounts.delete_group(session, ledger_id=ledger_id, group_id=group_id)


def list_asset_groups(
    *, ledger_id: str, acting_user_id: str, database_url: str | None = None
) -> list[AssetGroupView]:
    with _unit_of_work(database_url) as session:
        membership.require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
        return [AssetGroupView.from_row(g) for g in accounts.list_groups(session, ledger_id=ledger_id)]


def create_asset(
    *,
    ledger_id: str,
    acting_user_id: str,
    name: str,
    kind: str,
    initial_balance: int = 0,
    group_id: str | None = None,
    include_in_net_worth: bool = True,
    billing_day: int | None = None,
    upcoming_payment_amount: int | None = None,
    database_url: str | None = None,
) -> AssetView:
    with _unit_of_work(database_url) as session:
        membership.require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
        return AssetView.from_row(
            accounts.create_asset(
                session,
                ledger_id=ledger_id,
                name=name,
                kind=kind,
                initial_balance=initial_balance,
                group_id=group_id,
                include_in_net_worth=include_in_net_worth,
                billing_day=billing_day,
                upcoming_payment_amount=upcoming_payment_amount,
            )
        )


def update_asset(
    *,
    ledger_id: str,
    acting_user_id: str,
    asset_id: str,
    database_url: str | None = None,
    **changes: Any,
) -> AssetView:
    """Edit asset metadata; balances are never touched here."""

    with _unit_of_work(database_url) as session:
        membership.require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
        return AssetView.from_row(
            accounts.update_asset(session, ledger_id=ledger_id, asset_id=asset_id, **changes)
        )


def delete_asset(
    *, ledger_id: str, acting_user_id: str, asset_id: str, database_url: str | None = None
) -> None:
    with _unit_of_work(database_url) as session:
        membership.require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
        accounts.delete_asset(session, ledger_id=ledger_id, asset_id=asset_id)


def list_assets(
    *, ledger_id: str, acting_user_id: str, database_url: str | None = None
) -> list[AssetView]:
    with _unit_of_work(database_url) as session:
        membership.require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
        return [AssetView.from_row(a) for a in accounts.list_assets(session, ledger_id=ledger_id)]


# ---- Categories --------------------------------------------------------------


def create_category(
    *,
    ledger_id: str,
    acting_user_id: str,
    name: str,
    type: str,
    parent_id: str | None = None,
    database_url: str | None = None,
) -> CategoryView:
    with _unit_of_work(database_url) as session:
        membership.require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
        return CategoryView.from_row(
            categories.create_category(
                session, ledger_id=ledger_id, name=name, type=type, parent_id=parent_id
            )
        )


def update_category(
    *,
    ledger_id: str,
    acting_user_id: str,
    category_id: str,
    database_url: str | None = None,
    **changes: Any,
) -> CategoryView:
    """Rename and/or reparent a category (``name=``, ``parent_id=``)."""

    with _unit_of_work(database_url) as session:
        membership.require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
        return CategoryView.from_row(
            categories.update_category(
                session, ledger_id=ledger_id, category_id=category_id, **changes
            )
        )


def delete_category(
    *, ledger_id: str, acting_user_id: str, category_id: str, database_url: str | None = None
) -> None:
    with _unit_of_work(database_url) as session:
        membership.require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
        categories.delete_category(session, ledger_id=ledger_id, category_id=category_id)


def list_categories(
    *, ledger_id: str, acting_user_id: str, database_url: str | None = None
) -> dict[str, tuple[CategoryView, ...]]:
    with _unit_of_work(database_url) as session:
        membership.require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
        return categories.list_tree(session, ledger_id=ledger_id)


__all__ = [
    "register_user",
    "create_ledger",
    "update_ledger",
    "delete_ledger",
    "set_main_ledger",
    "list_ledgers",
    "list_members",
    "post_transaction",
    "update_transaction",
    "delete_transaction",
    "get_transaction",
    "list_transactions",
    "add_comment",
    "edit_comment",
    "delete_comment",
    "list_comments",
    "create_invitation",
    "respond_to_invitation",
    "revoke_invitation",
    "list_pending_invitations_for_email",
    "list_ledger_invitations",
    "reorder",
    "create_asset_group",
    "update_asset_group",
    "delete_asset_group",
    "list_asset_groups",
    "create_asset",
    "update_asset",
    "delete_asset",
    "list_assets",
    "create_category",
    "update_category",
    "delete_category",
    "list_categories",
]
