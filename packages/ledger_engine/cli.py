# ruff: noqa: I001
"""CLI for the ``ledger_engine`` package.

A Typer console over :mod:`ledger_engine.api`. Environment variables (notably
``DATABASE_URL``) are loaded from a local ``.env`` using ``python-dotenv``
before any command runs. The acting user is passed explicitly with
``--user-id`` (and ``--user-email`` where the operation needs it).

Results are printed as tab-separated lines. A :class:`LedgerError` is
reported on stderr as ``Error [<kind>]: <message>`` and exits with status 1.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .errors import LedgerError
from .logging_setup import configure_logging

T = TypeVar("T")

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Household ledger engine: post transactions, manage invitations and "
        "ordering. Loads DATABASE_URL from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
USER_ID_OPTION: OptionInfo = typer.Option(..., "--user-id", help="Acting user id.")
LEDGER_ID_OPTION: OptionInfo = typer.Option(..., "--ledger-id", help="Target ledger id.")
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
SPLIT_OPTION: OptionInfo = typer.Option(
    None, "--split", help="Split as CATEGORY_ID:AMOUNT; repeat for several."
)
TAG_OPTION: OptionInfo = typer.Option(None, "--tag", help="Tag name; repeat for several.")


def _run(fn: Callable[[], T]) -> T:
    """Call ``fn`` and turn a ``LedgerError`` into a one-line error and exit 1."""

    try:
        return fn()
    except LedgerError as e:
        retry = " (retryable)" if e.retryable else ""
        print(f"Error [{e.kind}]: {e.message}{retry}", file=sys.stderr)
        raise typer.Exit(1) from e


def _parse_split(raw: str) -> dict[str, Any]:
    category_id, sep, amount = raw.rpartition(":")
    if not sep or not category_id:
        raise typer.BadParameter(f"expected CATEGORY_ID:AMOUNT, got {raw!r}")
    try:
        return {"category_id": category_id, "amount": int(amount)}
    except ValueError as e:
        raise typer.BadParameter(f"split amount must be an integer: {amount!r}") from e


def _parse_order(raw: str) -> dict[str, Any]:
    item_id, sep, order = raw.rpartition("=")
    if not sep or not item_id:
        raise typer.BadParameter(f"expected ID=SORT_ORDER, got {raw!r}")
    try:
        return {"id": item_id, "sort_order": int(order)}
    except ValueError as e:
        raise typer.BadParameter(f"sort order must be an integer: {order!r}") from e


@app.command("register-user")
def register_user_cmd(
    email: str = typer.Argument(..., help="Email address of the new user."),
    *,
    nickname: str | None = typer.Option(None, help="Display name."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Create a user together with a default ledger and print both ids."""

    from .api import list_ledgers, register_user

    user_id = _run(lambda: register_user(email=email, nickname=nickname, database_url=database_url))
    for view in _run(lambda: list_ledgers(acting_user_id=user_id, database_url=database_url)):
        print(f"{user_id}\t{view.id}\t{view.name}")


@app.command("create-ledger")
def create_ledger_cmd(
    name: str = typer.Argument(..., help="Ledger name."),
    *,
    user_id: str = USER_ID_OPTION,
    currency: str = typer.Option("KRW", help="ISO 4217 currency code."),
    month_start_day: int = typer.Option(1, help="First day (1-28) of the financial month."),
    description: str | None = typer.Option(None, help="Optional description."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Create a ledger owned by ``--user-id``, seeded with default groups and categories."""

    from .api import create_ledger

    view = _run(
        lambda: create_ledger(
            acting_user_id=user_id,
            name=name,
            currency=currency,
            month_start_day=month_start_day,
            description=description,
            database_url=database_url,
        )
    )
    print(f"{view.id}\t{view.name}\t{view.currency}\t{view.role}")


@app.command("post")
def post_cmd(
    type: str = typer.Argument(..., help="INCOME, EXPENSE or TRANSFER."),
    amount: int = typer.Argument(..., help="Positive amount in minor units."),
    *,
    user_id: str = USER_ID_OPTION,
    ledger_id: str = LEDGER_ID_OPTION,
    date: str = typer.Option(..., help="ISO-8601 date or timestamp."),
    asset_id: str | None = typer.Option(None, help="Source asset."),
    counter_asset_id: str | None = typer.Option(None, help="Destination asset (transfers)."),
    category_id: str | None = typer.Option(None, help="Single category for the full amount."),
    split: list[str] | None = SPLIT_OPTION,
    memo: str | None = typer.Option(None, help="Short memo."),
    tag: list[str] | None = TAG_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Post one transaction and print it with the resulting balances."""

    from .api import list_assets, post_transaction

    splits = [_parse_split(s) for s in split] if split else None
    view = _run(
        lambda: post_transaction(
            ledger_id=ledger_id,
            acting_user_id=user_id,
            type=type.upper(),
            amount=amount,
            date=date,
            asset_id=asset_id,
            counter_asset_id=counter_asset_id,
            category_id=category_id,
            splits=splits,
            memo=memo,
            tags=tag,
            database_url=database_url,
        )
    )
    print(f"{view.id}\t{view.type}\t{view.amount}\t{view.occurred_at.isoformat()}")
    touched = {view.asset_id, view.counter_asset_id}
    for asset in _run(
        lambda: list_assets(ledger_id=ledger_id, acting_user_id=user_id, database_url=database_url)
    ):
        if asset.id in touched:
            print(f"{asset.id}\t{asset.name}\t{asset.current_balance}")


@app.command("invite")
def invite_cmd(
    email: str = typer.Argument(..., help="Invitee email address."),
    *,
    user_id: str = USER_ID_OPTION,
    ledger_id: str = LEDGER_ID_OPTION,
    role: str = typer.Option("EDITOR", help="OWNER, EDITOR or VIEWER."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Invite ``email`` to a ledger; the link is written to the log."""

    from .api import create_invitation

    view = _run(
        lambda: create_invitation(
            ledger_id=ledger_id,
            acting_user_id=user_id,
            email=email,
            role=role.upper(),
            database_url=database_url,
        )
    )
    print(f"{view.id}\t{view.email}\t{view.role}\t{view.expires_at.isoformat()}\t{view.token}")


@app.command("respond")
def respond_cmd(
    token: str = typer.Argument(..., help="Invitation token."),
    *,
    user_id: str = USER_ID_OPTION,
    user_email: str = typer.Option(..., "--user-email", help="Verified email of the acting user."),
    decline: bool = typer.Option(False, "--decline", help="Decline instead of accepting."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Accept (default) or decline an invitation."""

    from .api import respond_to_invitation

    view = _run(
        lambda: respond_to_invitation(
            token=token,
            acting_user_id=user_id,
            acting_user_email=user_email,
            accept=not decline,
            database_url=database_url,
        )
    )
    print(f"{view.id}\t{view.ledger_id}\t{view.status}")


@app.command("pending-invitations")
def pending_invitations_cmd(
    email: str = typer.Argument(..., help="Email address to look up."),
    *,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """List unexpired PENDING invitations for an email address."""

    from .api import list_pending_invitations_for_email

    for view in _run(
        lambda: list_pending_invitations_for_email(email=email, database_url=database_url)
    ):
        print(
            f"{view.id}\t{view.ledger_id}\t{view.ledger_name}\t{view.role}\t"
            f"{view.invited_by_name}\t{view.expires_at.isoformat()}"
        )


@app.command("reorder")
def reorder_cmd(
    kind: str = typer.Argument(..., help="asset_group, asset or category."),
    items: list[str] = typer.Argument(..., help="ID=SORT_ORDER pairs."),
    *,
    user_id: str = USER_ID_OPTION,
    ledger_id: str = LEDGER_ID_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Apply a batch of sort orders atomically."""

    from .api import reorder

    parsed = [_parse_order(i) for i in items]
    for view in _run(
        lambda: reorder(
            kind=kind,
            scope_id=ledger_id,
            acting_user_id=user_id,
            items=parsed,
            database_url=database_url,
        )
    ):
        print(f"{view.id}\t{view.name}\t{view.sort_order}")


@app.callback()
def _root() -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    # Central logging setup so child loggers inherit configuration
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m ledger_engine.cli`
    app()
