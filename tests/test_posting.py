from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

import pytest
from db.client import session_scope
from sqlalchemy import func, select
from sqlalchemy.exc import DataError

from db.models.ledger import Transaction, TransactionSplit

import ledger_engine.posting as posting_mod
from ledger_engine import api
from ledger_engine.errors import (
    AssetNotFoundError,
    AssetNotInLedgerError,
    BalanceOutOfRangeError,
    ForbiddenError,
    InvalidDateError,
    InvalidEnumError,
    InvalidSplitCategoryError,
    MissingFieldError,
    NonPositiveAmountError,
    SameAssetTransferError,
    SplitSumMismatchError,
    ValidationError,
)
from ledger_engine.categories import create_category
from ledger_engine.membership import add_member
from ledger_engine.models import SplitView
from tests.helpers.db import SeededLedger, balances

WHEN = "2024-03-10T09:30:00Z"


def _post(s: SeededLedger, **kw: Any):
    kw.setdefault("date", WHEN)
    return api.post_transaction(
        ledger_id=s.ledger_id, acting_user_id=s.owner_id, database_url=s.url, **kw
    )


def _tx_count(url: str) -> int:
    with session_scope(database_url=url) as session:
        return session.execute(select(func.count()).select_from(Transaction)).scalar_one()


# ---- Happy paths -------------------------------------------------------------


def test_simple_expense_reduces_balance_and_records_single_split(seeded: SeededLedger) -> None:
    view = _post(seeded, type="EXPENSE", amount=3000, asset_id=seeded.cash_id, category_id=seeded.food_id)

    assert balances(seeded.url, seeded.cash_id) == (7000,)
    assert view.type == "EXPENSE"
    assert view.amount == 3000
    assert view.splits == (SplitView(category_id=seeded.food_id, amount=3000, memo=None),)
    assert view.occurred_at == datetime(2024, 3, 10, 9, 30, tzinfo=UTC)


def test_transfer_moves_amount_between_assets(seeded: SeededLedger) -> None:
    view = _post(
        seeded,
        type="TRANSFER",
        amount=2000,
        asset_id=seeded.cash_id,
        counter_asset_id=seeded.bank_id,
    )

    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (8000, 7000)
    assert view.splits == ()
    assert view.category_id is None


def test_income_with_explicit_splits_and_tags(seeded: SeededLedger) -> None:
    with session_scope(database_url=seeded.url) as session:
        bonus = create_category(
            session, ledger_id=seeded.ledger_id, name="Bonus", type="INCOME"
        ).id

    view = _post(
        seeded,
        type="INCOME",
        amount=5000,
        asset_id=seeded.bank_id,
        splits=[
            {"category_id": seeded.salary_id, "amount": 4000},
            {"category_id": bonus, "amount": 1000, "memo": "q1"},
        ],
        tags=["payday", "payday", "  work  ", ""],
    )

    assert balances(seeded.url, seeded.bank_id) == (10000,)
    assert [(s.category_id, s.amount, s.memo) for s in view.splits] == [
        (seeded.salary_id, 4000, None),
        (bonus, 1000, "q1"),
    ]
    assert view.tags == ("payday", "work")


def test_uncategorized_expense_has_no_splits(seeded: SeededLedger) -> None:
    view = _post(seeded, type="EXPENSE", amount=100, asset_id=seeded.cash_id)
    assert view.splits == ()
    assert balances(seeded.url, seeded.cash_id) == (9900,)


# ---- Validation taxonomy -----------------------------------------------------


@pytest.mark.parametrize(
    ("overrides", "expected"),
    [
        ({"type": "GIFT"}, InvalidEnumError),
        ({"type": None}, MissingFieldError),
        ({"amount": 0}, NonPositiveAmountError),
        ({"amount": -5}, NonPositiveAmountError),
        ({"amount": 10.5}, ValidationError),
        ({"amount": True}, ValidationError),
        ({"amount": 2**63}, ValidationError),
        ({"date": "yesterday-ish"}, InvalidDateError),
        ({"date": None}, MissingFieldError),
        ({"asset_id": None}, MissingFieldError),
        ({"asset_id": "no-such-asset"}, AssetNotFoundError),
        ({"counter_asset_id": "whatever"}, ValidationError),
    ],
)
def test_expense_validation_failures(
    seeded: SeededLedger, overrides: dict[str, Any], expected: type[Exception]
) -> None:
    kw: dict[str, Any] = {
        "type": "EXPENSE",
        "amount": 3000,
        "asset_id": seeded.cash_id,
        "category_id": seeded.food_id,
    }
    kw.update(overrides)

    with pytest.raises(expected):
        _post(seeded, **kw)

    assert _tx_count(seeded.url) == 0
    assert balances(seeded.url, seeded.cash_id) == (10000,)


def test_transfer_shape_failures(seeded: SeededLedger) -> None:
    with pytest.raises(SameAssetTransferError):
        _post(seeded, type="TRANSFER", amount=10, asset_id=seeded.cash_id, counter_asset_id=seeded.cash_id)
    with pytest.raises(MissingFieldError) as missing:
        _post(seeded, type="TRANSFER", amount=10, asset_id=seeded.cash_id)
    assert missing.value.field == "counter_asset_id"
    with pytest.raises(ValidationError):
        _post(
            seeded,
            type="TRANSFER",
            amount=10,
            asset_id=seeded.cash_id,
            counter_asset_id=seeded.bank_id,
            category_id=seeded.food_id,
        )
    assert _tx_count(seeded.url) == 0


def test_asset_from_another_ledger_is_a_scope_mismatch(seeded: SeededLedger) -> None:
    other = api.create_ledger(acting_user_id=seeded.owner_id, name="Trip", database_url=seeded.url)
    foreign = api.create_asset(
        ledger_id=other.id,
        acting_user_id=seeded.owner_id,
        name="Travel card",
        kind="CHECK_CARD",
        database_url=seeded.url,
    )

    with pytest.raises(AssetNotInLedgerError) as err:
        _post(seeded, type="EXPENSE", amount=10, asset_id=foreign.id)
    assert err.value.kind == "scope_mismatch"


def test_split_category_must_match_direction(seeded: SeededLedger) -> None:
    with pytest.raises(InvalidSplitCategoryError):
        _post(seeded, type="EXPENSE", amount=10, asset_id=seeded.cash_id, category_id=seeded.salary_id)


def test_split_sum_mismatch_writes_nothing(seeded: SeededLedger) -> None:
    with pytest.raises(SplitSumMismatchError) as err:
        _post(
            seeded,
            type="EXPENSE",
            amount=3000,
            asset_id=seeded.cash_id,
            splits=[
                {"category_id": seeded.food_id, "amount": 1000},
                {"category_id": seeded.living_id, "amount": 1500},
            ],
        )

    assert err.value.kind == "conflict"
    assert _tx_count(seeded.url) == 0
    with session_scope(database_url=seeded.url) as session:
        assert session.execute(select(func.count()).select_from(TransactionSplit)).scalar_one() == 0
    assert balances(seeded.url, seeded.cash_id) == (10000,)


def test_split_amount_beyond_bigint_is_rejected(seeded: SeededLedger) -> None:
    with pytest.raises(ValidationError):
        _post(
            seeded,
            type="EXPENSE",
            amount=3000,
            asset_id=seeded.cash_id,
            splits=[
                {"category_id": seeded.food_id, "amount": 2**63},
                {"category_id": seeded.living_id, "amount": 3000 - 2**63},
            ],
        )
    assert _tx_count(seeded.url) == 0


def test_income_that_would_overflow_the_balance_writes_nothing(seeded: SeededLedger) -> None:
    with pytest.raises(BalanceOutOfRangeError) as err:
        _post(seeded, type="INCOME", amount=2**63 - 5000, asset_id=seeded.cash_id)

    assert err.value.kind == "validation"
    assert _tx_count(seeded.url) == 0
    assert balances(seeded.url, seeded.cash_id) == (10000,)

    # Filling the balance exactly to the top of the range is allowed.
    _post(seeded, type="INCOME", amount=2**63 - 1 - 10000, asset_id=seeded.cash_id)
    (balance,) = balances(seeded.url, seeded.cash_id)
    assert isinstance(balance, int)
    assert balance == 2**63 - 1


def test_transfer_that_would_overflow_the_destination_rolls_back(seeded: SeededLedger) -> None:
    _post(seeded, type="INCOME", amount=2**63 - 1 - 5000, asset_id=seeded.bank_id)

    with pytest.raises(BalanceOutOfRangeError):
        _post(
            seeded,
            type="TRANSFER",
            amount=1,
            asset_id=seeded.cash_id,
            counter_asset_id=seeded.bank_id,
        )
    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (10000, 2**63 - 1)


def test_database_data_errors_surface_as_validation(
    seeded: SeededLedger, monkeypatch: pytest.MonkeyPatch
) -> None:
    def rejected(*args: Any, **kwargs: Any) -> None:
        raise DataError("INSERT INTO transactions ...", {}, Exception("value out of range"))

    monkeypatch.setattr(posting_mod, "post_transaction", rejected)

    with pytest.raises(ValidationError) as err:
        _post(seeded, type="EXPENSE", amount=10, asset_id=seeded.cash_id)
    assert err.value.retryable is False


def test_transfer_effect_requires_a_counter_asset() -> None:
    with pytest.raises(MissingFieldError):
        posting_mod.balance_effect("TRANSFER", 10, "asset-a", None)


def test_malformed_split_is_a_validation_error(seeded: SeededLedger) -> None:
    with pytest.raises(ValidationError):
        _post(
            seeded,
            type="EXPENSE",
            amount=3000,
            asset_id=seeded.cash_id,
            splits=[{"category_id": seeded.food_id, "amount": "3000"}],
        )


def test_viewer_cannot_post(seeded: SeededLedger) -> None:
    viewer_id = api.register_user(email="viewer@example.com", database_url=seeded.url)
    with session_scope(database_url=seeded.url) as session:
        add_member(session, ledger_id=seeded.ledger_id, user_id=viewer_id, role="VIEWER")

    with pytest.raises(ForbiddenError):
        api.post_transaction(
            ledger_id=seeded.ledger_id,
            acting_user_id=viewer_id,
            type="EXPENSE",
            amount=10,
            date=WHEN,
            asset_id=seeded.cash_id,
            database_url=seeded.url,
        )


# ---- Atomicity and concurrency -----------------------------------------------


def test_failure_between_transfer_legs_rolls_back_everything(
    seeded: SeededLedger, monkeypatch: pytest.MonkeyPatch
) -> None:
    real = posting_mod.apply_balance_delta
    calls: list[int] = []

    def flaky(session, *, asset_id: str, delta: int) -> None:
        calls.append(delta)
        if len(calls) == 2:
            raise RuntimeError("simulated crash between legs")
        real(session, asset_id=asset_id, delta=delta)

    monkeypatch.setattr(posting_mod, "apply_balance_delta", flaky)
    with pytest.raises(RuntimeError):
        _post(seeded, type="TRANSFER", amount=2000, asset_id=seeded.cash_id, counter_asset_id=seeded.bank_id)

    assert calls == [-2000, 2000]
    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (10000, 5000)
    assert _tx_count(seeded.url) == 0

    monkeypatch.setattr(posting_mod, "apply_balance_delta", real)
    _post(seeded, type="TRANSFER", amount=2000, asset_id=seeded.cash_id, counter_asset_id=seeded.bank_id)

    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (8000, 7000)
    assert _tx_count(seeded.url) == 1


def test_concurrent_transfers_from_one_asset_do_not_lose_updates(seeded: SeededLedger) -> None:
    barrier = threading.Barrier(2)
    errors: list[BaseException] = []

    def transfer(amount: int) -> None:
        try:
            barrier.wait()
            _post(
                seeded,
                type="TRANSFER",
                amount=amount,
                asset_id=seeded.cash_id,
                counter_asset_id=seeded.bank_id,
            )
        except BaseException as e:  # surfaced in the main thread below
            errors.append(e)

    threads = [threading.Thread(target=transfer, args=(a,)) for a in (1000, 2500)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (6500, 8500)


# ---- Update / delete ---------------------------------------------------------


def test_update_reverses_old_effect_and_applies_new(seeded: SeededLedger) -> None:
    tx = _post(seeded, type="EXPENSE", amount=3000, asset_id=seeded.cash_id, category_id=seeded.food_id)

    updated = api.update_transaction(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        transaction_id=tx.id,
        amount=1200,
        asset_id=seeded.bank_id,
        database_url=seeded.url,
    )

    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (10000, 3800)
    # The implicit single split follows the new amount.
    assert updated.splits == (SplitView(category_id=seeded.food_id, amount=1200, memo=None),)


def test_update_expense_into_transfer(seeded: SeededLedger) -> None:
    tx = _post(seeded, type="EXPENSE", amount=500, asset_id=seeded.cash_id, category_id=seeded.food_id)

    updated = api.update_transaction(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        transaction_id=tx.id,
        type="TRANSFER",
        counter_asset_id=seeded.bank_id,
        category_id=None,
        database_url=seeded.url,
    )

    assert updated.type == "TRANSFER"
    assert updated.splits == ()
    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (9500, 5500)


def test_update_keeps_explicit_splits_and_rechecks_their_sum(seeded: SeededLedger) -> None:
    tx = _post(
        seeded,
        type="EXPENSE",
        amount=3000,
        asset_id=seeded.cash_id,
        splits=[
            {"category_id": seeded.food_id, "amount": 1000},
            {"category_id": seeded.living_id, "amount": 2000},
        ],
    )

    with pytest.raises(SplitSumMismatchError):
        api.update_transaction(
            ledger_id=seeded.ledger_id,
            acting_user_id=seeded.owner_id,
            transaction_id=tx.id,
            amount=4000,
            database_url=seeded.url,
        )
    assert balances(seeded.url, seeded.cash_id) == (7000,)

    updated = api.update_transaction(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        transaction_id=tx.id,
        memo="groceries and rent",
        tags=["home"],
        database_url=seeded.url,
    )
    assert [s.amount for s in updated.splits] == [1000, 2000]
    assert updated.memo == "groceries and rent"
    assert updated.tags == ("home",)


def test_delete_reverses_effect(seeded: SeededLedger) -> None:
    tx = _post(seeded, type="TRANSFER", amount=700, asset_id=seeded.bank_id, counter_asset_id=seeded.cash_id)
    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (10700, 4300)

    api.delete_transaction(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        transaction_id=tx.id,
        database_url=seeded.url,
    )

    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (10000, 5000)
    assert _tx_count(seeded.url) == 0


def test_balance_equals_initial_plus_effects_after_mixed_history(seeded: SeededLedger) -> None:
    a = _post(seeded, type="INCOME", amount=4000, asset_id=seeded.cash_id, category_id=seeded.salary_id)
    b = _post(seeded, type="EXPENSE", amount=1500, asset_id=seeded.cash_id, category_id=seeded.food_id)
    _post(seeded, type="TRANSFER", amount=2500, asset_id=seeded.cash_id, counter_asset_id=seeded.bank_id)
    _post(seeded, type="EXPENSE", amount=900, asset_id=seeded.bank_id, category_id=seeded.living_id)
    api.update_transaction(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        transaction_id=b.id,
        amount=1700,
        database_url=seeded.url,
    )
    api.delete_transaction(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        transaction_id=a.id,
        database_url=seeded.url,
    )

    page = api.list_transactions(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        page_size=100,
        database_url=seeded.url,
    )
    expected = {seeded.cash_id: 10000, seeded.bank_id: 5000}
    for tx in page.items:
        for asset_id, delta in posting_mod.balance_effect(
            tx.type, tx.amount, tx.asset_id, tx.counter_asset_id
        ):
            expected[asset_id] += delta

    assert balances(seeded.url, seeded.cash_id, seeded.bank_id) == (
        expected[seeded.cash_id],
        expected[seeded.bank_id],
    )
    assert expected == {seeded.cash_id: 10000 - 1700 - 2500, seeded.bank_id: 5000 + 2500 - 900}


# ---- Reads -------------------------------------------------------------------


def test_list_transactions_filters_and_pages(seeded: SeededLedger) -> None:
    _post(seeded, type="EXPENSE", amount=100, asset_id=seeded.cash_id, category_id=seeded.food_id, date="2024-03-01")
    _post(seeded, type="EXPENSE", amount=200, asset_id=seeded.cash_id, category_id=seeded.living_id, date="2024-03-02")
    _post(seeded, type="TRANSFER", amount=300, asset_id=seeded.cash_id, counter_asset_id=seeded.bank_id, date="2024-03-03")
    _post(seeded, type="EXPENSE", amount=400, asset_id=seeded.bank_id, category_id=seeded.food_id, date="2024-04-01")

    def listing(**kw: Any):
        return api.list_transactions(
            ledger_id=seeded.ledger_id, acting_user_id=seeded.owner_id, database_url=seeded.url, **kw
        )

    march = listing(start="2024-03-01", end="2024-03-31T23:59:59Z")
    assert [t.amount for t in march.items] == [300, 200, 100]

    food = listing(category_id=seeded.food_id, newest_first=False)
    assert [t.amount for t in food.items] == [100, 400]

    bank = listing(asset_id=seeded.bank_id)
    assert [t.amount for t in bank.items] == [400, 300]

    transfers = listing(types=["TRANSFER"])
    assert [t.amount for t in transfers.items] == [300]

    second = listing(page=2, page_size=3)
    assert (second.total, second.total_pages, len(second.items)) == (4, 2, 1)
    assert second.items[0].amount == 100

    with pytest.raises(ValidationError):
        listing(page_size=0)


def test_get_transaction_requires_membership(seeded: SeededLedger) -> None:
    tx = _post(seeded, type="EXPENSE", amount=100, asset_id=seeded.cash_id)
    stranger = api.register_user(email="stranger@example.com", database_url=seeded.url)

    got = api.get_transaction(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        transaction_id=tx.id,
        database_url=seeded.url,
    )
    assert got == tx

    with pytest.raises(ForbiddenError):
        api.get_transaction(
            ledger_id=seeded.ledger_id,
            acting_user_id=stranger,
            transaction_id=tx.id,
            database_url=seeded.url,
        )
