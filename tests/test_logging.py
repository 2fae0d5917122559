from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from ledger_engine import api
from ledger_engine.logging_setup import AUDIT_LOGGER_NAME, format_audit
from tests.helpers.db import SeededLedger


class _Collect(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.INFO)
        self.lines: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(record.getMessage())


class _SilentNotifier:
    def send_ledger_invitation_email(self, *args: object) -> None:
        return None


@pytest.fixture()
def audit_lines() -> Iterator[list[str]]:
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    handler = _Collect()
    previous = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    try:
        yield handler.lines
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous)


def test_format_audit_sorts_keys_and_quotes_spaces() -> None:
    line = format_audit("ledger.deleted", {"name": 'Our "home"', "by": "u1", "ledger": None})
    assert line == 'ledger.deleted by=u1 ledger=- name="Our \\"home\\""'


def test_invitation_lifecycle_is_audited(seeded: SeededLedger, audit_lines: list[str]) -> None:
    friend = api.register_user(email="friend@example.com", database_url=seeded.url)
    inv = api.create_invitation(
        ledger_id=seeded.ledger_id,
        acting_user_id=seeded.owner_id,
        email="friend@example.com",
        role="OWNER",
        notifier=_SilentNotifier(),
        database_url=seeded.url,
    )
    api.respond_to_invitation(
        token=inv.token,
        acting_user_id=friend,
        acting_user_email="friend@example.com",
        accept=True,
        database_url=seeded.url,
    )

    events = [line.split(" ", 1)[0] for line in audit_lines]
    assert events[-3:] == ["invitation.created", "member.added", "invitation.accepted"]
    assert f"invitation={inv.id}" in audit_lines[-1]
    assert "role=EDITOR" in audit_lines[-1]
    # Tokens are bearer credentials and never reach the audit trail.
    assert all(inv.token not in line for line in audit_lines)