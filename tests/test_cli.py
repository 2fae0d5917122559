from __future__ import annotations

from typer.testing import CliRunner

from ledger_engine import api
from ledger_engine.cli import app
from tests.helpers.db import SeededLedger, balances

runner = CliRunner()


def _invoke(*args: str):
    return runner.invoke(app, list(args))


def test_register_user_prints_user_and_default_ledger(db_url: str) -> None:
    result = _invoke("register-user", "cli@example.com", "--nickname", "Cli", "--database-url", db_url)

    assert result.exit_code == 0, result.output
    user_id, ledger_id, name = result.output.strip().split("\t")
    assert name == "My Ledger"
    assert [v.id for v in api.list_ledgers(acting_user_id=user_id, database_url=db_url)] == [ledger_id]


def test_post_prints_transaction_and_touched_balances(seeded: SeededLedger) -> None:
    result = _invoke(
        "post",
        "expense",
        "3000",
        "--user-id", seeded.owner_id,
        "--ledger-id", seeded.ledger_id,
        "--date", "2024-03-10",
        "--asset-id", seeded.cash_id,
        "--split", f"{seeded.food_id}:1000",
        "--split", f"{seeded.living_id}:2000",
        "--tag", "weekly",
        "--database-url", seeded.url,
    )

    assert result.exit_code == 0, result.output
    lines = [line.split("\t") for line in result.output.strip().splitlines()]
    assert lines[0][1:3] == ["EXPENSE", "3000"]
    assert lines[1] == [seeded.cash_id, "Wallet", "7000"]
    assert balances(seeded.url, seeded.cash_id) == (7000,)


def test_ledger_error_exits_with_status_one(seeded: SeededLedger) -> None:
    result = _invoke(
        "post",
        "EXPENSE",
        "0",
        "--user-id", seeded.owner_id,
        "--ledger-id", seeded.ledger_id,
        "--date", "2024-03-10",
        "--asset-id", seeded.cash_id,
        "--database-url", seeded.url,
    )

    assert result.exit_code == 1
    assert "Error [validation]" in result.output


def test_invite_respond_and_pending_round(seeded: SeededLedger) -> None:
    friend = api.register_user(email="friend@example.com", database_url=seeded.url)

    invited = _invoke(
        "invite",
        "friend@example.com",
        "--user-id", seeded.owner_id,
        "--ledger-id", seeded.ledger_id,
        "--role", "viewer",
        "--database-url", seeded.url,
    )
    assert invited.exit_code == 0, invited.output
    invitation_id, email, role, _expires, token = invited.output.strip().split("\t")
    assert (email, role) == ("friend@example.com", "VIEWER")

    pending = _invoke("pending-invitations", "friend@example.com", "--database-url", seeded.url)
    assert pending.output.strip().split("\t")[:5] == [
        invitation_id,
        seeded.ledger_id,
        "My Ledger",
        "VIEWER",
        "Owner",
    ]

    accepted = _invoke(
        "respond",
        token,
        "--user-id", friend,
        "--user-email", "friend@example.com",
        "--database-url", seeded.url,
    )
    assert accepted.exit_code == 0, accepted.output
    assert accepted.output.strip().split("\t") == [invitation_id, seeded.ledger_id, "ACCEPTED"]

    again = _invoke(
        "respond",
        token,
        "--user-id", friend,
        "--user-email", "friend@example.com",
        "--decline",
        "--database-url", seeded.url,
    )
    assert again.exit_code == 1
    assert "Error [conflict]" in again.output


def test_reorder_command(seeded: SeededLedger) -> None:
    result = _invoke(
        "reorder",
        "asset",
        f"{seeded.bank_id}=0",
        f"{seeded.cash_id}=7",
        "--user-id", seeded.owner_id,
        "--ledger-id", seeded.ledger_id,
        "--database-url", seeded.url,
    )

    assert result.exit_code == 0, result.output
    assert [line.split("\t") for line in result.output.strip().splitlines()] == [
        [seeded.bank_id, "Checking", "0"],
        [seeded.cash_id, "Wallet", "7"],
    ]


def test_reorder_rejects_malformed_pairs(seeded: SeededLedger) -> None:
    result = _invoke(
        "reorder",
        "asset",
        "no-equals-sign",
        "--user-id", seeded.owner_id,
        "--ledger-id", seeded.ledger_id,
        "--database-url", seeded.url,
    )
    assert result.exit_code == 2
