from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from db.client import session_scope
from sqlalchemy import func, select

from db.models.ledger import TransactionComment

from ledger_engine import api
from ledger_engine.comments import MAX_COMMENT_LEN
from ledger_engine.errors import ForbiddenError, NotFoundError, ValidationError
from ledger_engine.membership import add_member
from tests.helpers.db import SeededLedger

T0 = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)


def _expense(s: SeededLedger, memo: str | None = None) -> str:
    return api.post_transaction(
        ledger_id=s.ledger_id,
        acting_user_id=s.owner_id,
        type="EXPENSE",
        amount=1200,
        date="2024-03-10",
        asset_id=s.cash_id,
        category_id=s.food_id,
        memo=memo,
        database_url=s.url,
    ).id


def _member(s: SeededLedger, email: str, role: str, nickname: str | None = None) -> str:
    user_id = api.register_user(email=email, nickname=nickname, database_url=s.url)
    with session_scope(database_url=s.url) as session:
        add_member(session, ledger_id=s.ledger_id, user_id=user_id, role=role)
    return user_id


def _add(s: SeededLedger, tx_id: str, user_id: str, content: str, **kw):
    return api.add_comment(
        ledger_id=s.ledger_id,
        acting_user_id=user_id,
        transaction_id=tx_id,
        content=content,
        database_url=s.url,
        **kw,
    )


def _comment_count(url: str) -> int:
    with session_scope(database_url=url) as session:
        return session.execute(select(func.count()).select_from(TransactionComment)).scalar_one()


def test_members_comment_and_transaction_view_carries_the_thread(seeded: SeededLedger) -> None:
    tx_id = _expense(seeded)
    viewer = _member(seeded, "viewer@example.com", "VIEWER", nickname="Vee")

    first = _add(seeded, tx_id, seeded.owner_id, "  split this with me?  ", now=T0)
    second = _add(seeded, tx_id, viewer, "sure", now=T0 + timedelta(minutes=1))

    assert (first.content, first.author_name) == ("split this with me?", "Owner")
    assert (second.user_id, second.author_name) == (viewer, "Vee")

    view = api.get_transaction(
        ledger_id=seeded.ledger_id,
        acting_user_id=viewer,
        transaction_id=tx_id,
        database_url=seeded.url,
    )
    assert [c.id for c in view.comments] == [first.id, second.id]
    listed = api.list_comments(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        transaction_id=tx_id,
        database_url=seeded.url,
    )
    assert [c.content for c in listed] == ["split this with me?", "sure"]


def test_author_name_falls_back_to_email(seeded: SeededLedger) -> None:
    tx_id = _expense(seeded)
    editor = _member(seeded, "editor@example.com", "EDITOR")

    assert _add(seeded, tx_id, editor, "noted").author_name == "editor@example.com"


@pytest.mark.parametrize("content", ["", "   ", "x" * (MAX_COMMENT_LEN + 1), None])
def test_comment_content_is_validated(seeded: SeededLedger, content) -> None:
    tx_id = _expense(seeded)
    with pytest.raises(ValidationError):
        _add(seeded, tx_id, seeded.owner_id, content)
    assert _comment_count(seeded.url) == 0


def test_non_members_cannot_read_or_comment(seeded: SeededLedger) -> None:
    tx_id = _expense(seeded)
    stranger = api.register_user(email="stranger@example.com", database_url=seeded.url)

    with pytest.raises(ForbiddenError):
        _add(seeded, tx_id, stranger, "hello")
    with pytest.raises(ForbiddenError):
        api.list_comments(
            ledger_id=seeded.ledger_id,
            acting_user_id=stranger,
            transaction_id=tx_id,
            database_url=seeded.url,
        )


def test_comment_on_a_transaction_from_another_ledger_is_not_found(seeded: SeededLedger) -> None:
    trip = api.create_ledger(acting_user_id=seeded.owner_id, name="Trip", database_url=seeded.url)
    tx_id = _expense(seeded)

    with pytest.raises(NotFoundError):
        api.add_comment(
            ledger_id=trip.id,
            acting_user_id=seeded.owner_id,
            transaction_id=tx_id,
            content="wrong ledger",
            database_url=seeded.url,
        )
    with pytest.raises(NotFoundError):
        _add(seeded, "no-such-transaction", seeded.owner_id, "hello")


def test_only_the_author_edits_or_deletes(seeded: SeededLedger) -> None:
    tx_id = _expense(seeded)
    editor = _member(seeded, "editor@example.com", "EDITOR")
    comment = _add(seeded, tx_id, editor, "first draft", now=T0)

    # Even the ledger owner cannot rewrite someone else's comment.
    with pytest.raises(ForbiddenError):
        api.edit_comment(
            ledger_id=seeded.ledger_id,
            acting_user_id=seeded.owner_id,
            transaction_id=tx_id,
            comment_id=comment.id,
            content="hijacked",
            database_url=seeded.url,
        )
    with pytest.raises(ForbiddenError):
        api.delete_comment(
            ledger_id=seeded.ledger_id,
            acting_user_id=seeded.owner_id,
            transaction_id=tx_id,
            comment_id=comment.id,
            database_url=seeded.url,
        )

    edited = api.edit_comment(
        ledger_id=seeded.ledger_id,
        acting_user_id=editor,
        transaction_id=tx_id,
        comment_id=comment.id,
        content="final",
        now=T0 + timedelta(hours=1),
        database_url=seeded.url,
    )
    assert (edited.content, edited.created_at, edited.updated_at) == (
        "final",
        T0,
        T0 + timedelta(hours=1),
    )

    api.delete_comment(
        ledger_id=seeded.ledger_id,
        acting_user_id=editor,
        transaction_id=tx_id,
        comment_id=comment.id,
        database_url=seeded.url,
    )
    assert _comment_count(seeded.url) == 0


def test_comment_addressed_through_the_wrong_transaction_is_not_found(
    seeded: SeededLedger,
) -> None:
    tx_id = _expense(seeded)
    other_tx = _expense(seeded)
    comment = _add(seeded, tx_id, seeded.owner_id, "on the first one")

    with pytest.raises(NotFoundError):
        api.edit_comment(
            ledger_id=seeded.ledger_id,
            acting_user_id=seeded.owner_id,
            transaction_id=other_tx,
            comment_id=comment.id,
            content="moved",
            database_url=seeded.url,
        )
    with pytest.raises(NotFoundError):
        api.delete_comment(
            ledger_id=seeded.ledger_id,
            acting_user_id=seeded.owner_id,
            transaction_id=tx_id,
            comment_id="no-such-comment",
            database_url=seeded.url,
        )


def test_deleting_a_transaction_removes_its_comments(seeded: SeededLedger) -> None:
    tx_id = _expense(seeded)
    _add(seeded, tx_id, seeded.owner_id, "gone soon")

    api.delete_transaction(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        transaction_id=tx_id,
        database_url=seeded.url,
    )
    assert _comment_count(seeded.url) == 0


def test_search_matches_memo_and_comments(seeded: SeededLedger) -> None:
    lunch = _expense(seeded, memo="Team lunch")
    taxi = _expense(seeded, memo="Taxi")
    _expense(seeded, memo="Groceries")
    _add(seeded, taxi, seeded.owner_id, "after the LUNCH meeting")

    page = api.list_transactions(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        search="  lunch ",
        database_url=seeded.url,
    )
    assert page.total == 2
    assert {t.id for t in page.items} == {lunch, taxi}
