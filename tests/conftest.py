"""Pytest configuration for test isolation.

``db.client`` keeps one process-wide engine bound to the first URL it sees.
Each test bootstraps its own SQLite file, so the shared engine is dropped
before and after every test via an autouse fixture.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from db.client import dispose_engine

from tests.helpers.db import SeededLedger, bootstrap_sqlite_db, seed_ledger


@pytest.fixture(autouse=True)
def _isolate_engine(monkeypatch: pytest.MonkeyPatch):
    """Start every test without a bound engine or an ambient DATABASE_URL."""

    monkeypatch.delenv("DATABASE_URL", raising=False)
    dispose_engine()
    yield
    dispose_engine()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")


@pytest.fixture
def seeded(db_url: str) -> SeededLedger:
    """Owner with a default ledger, Wallet (10000) and Checking (5000)."""

    return seed_ledger(db_url)
