"""Outbound invitation notification collaborator.

Delivery itself is out of scope for the engine; hosts plug in their own
implementation of :class:`EmailNotifier`. :class:`LoggingEmailNotifier` is
the default and simply records the accept link.
"""

from __future__ import annotations

import os
from typing import Protocol, runtime_checkable

from .logging_setup import get_logger

_logger = get_logger("ledger_engine.notifier")

_DEFAULT_APP_URL = "http://localhost:5173"


@runtime_checkable
class EmailNotifier(Protocol):
    def send_ledger_invitation_email(
        self,
        to_email: str,
        inviter_display_name: str,
        ledger_name: str,
        token: str,
    ) -> None: ...


def invitation_link(token: str, *, app_url: str | None = None) -> str:
    base = (app_url or os.getenv("LEDGER_APP_URL") or _DEFAULT_APP_URL).rstrip("/")
    return f"{base}/invitations/accept?token={token}"


class LoggingEmailNotifier:
    """Write the invitation to the package log instead of sending mail."""

    def __init__(self, *, app_url: str | None = None) -> None:
        self._app_url = app_url

    def send_ledger_invitation_email(
        self,
        to_email: str,
        inviter_display_name: str,
        ledger_name: str,
        token: str,
    ) -> None:
        # The token is a bearer credential; only the link target is logged at
        # DEBUG, never at INFO.
        _logger.info(
            "invitation for %s to ledger %r from %s queued",
            to_email,
            ledger_name,
            inviter_display_name,
        )
        _logger.debug("invitation link: %s", invitation_link(token, app_url=self._app_url))


__all__ = ["EmailNotifier", "LoggingEmailNotifier", "invitation_link"]
