"""Ledger invitation state machine.

States: ``PENDING -> ACCEPTED | DECLINED | EXPIRED``. All three outcomes are
terminal; nothing leaves them.

:func:`respond_to_invitation` checks, in this order: token exists, status is
still PENDING, not past expiry, caller's email matches. The status check runs
before the expiry check, so only the first response after expiry reports
:class:`~ledger_engine.errors.ExpiredError`; later responses to the now
EXPIRED row get the generic "already processed" conflict.

The expiry branch is the one failure that writes: it commits the EXPIRED
transition on the caller's session before raising.
"""

from __future__ import annotations

import secrets
from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from db.models.ledger import Ledger, LedgerInvitation, User

from .errors import ConflictError, ExpiredError, ForbiddenError, NotFoundError
from .logging_setup import audit
from .membership import (
    add_member,
    find_invitation_by_token,
    get_invitation,
    get_user,
    is_member_email,
    require_editor,
)
from .models import (
    InvitationStatus,
    InvitationView,
    MemberRole,
    as_utc,
    utcnow,
)
from .validation import check_enum, normalize_email

INVITATION_TTL = timedelta(days=7)
TOKEN_BYTES = 32  # 256 bits

# Views render the ledger name and inviter alongside each row.
_VIEW_LOADS = (selectinload(LedgerInvitation.ledger), selectinload(LedgerInvitation.invited_by))

_ROLES = tuple(r.value for r in MemberRole)


def new_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def create_invitation(
    session: Session,
    *,
    ledger_id: str,
    acting_user_id: str,
    email: str,
    role: str,
    now: datetime | None = None,
) -> LedgerInvitation:
    """Persist a PENDING invitation.

    The caller commits and only then hands the invitation to the notifier, so
    no database transaction is held open across network I/O.
    """

    require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
    email_n = normalize_email(email)
    role_v = check_enum("role", role, _ROLES)
    if is_member_email(session, ledger_id=ledger_id, email=email_n):
        raise ConflictError(f"{email_n} is already a member of this ledger")

    if session.get(Ledger, ledger_id) is None:
        raise NotFoundError(f"Ledger not found: {ledger_id}")
    get_user(session, acting_user_id)

    issued = now or utcnow()
    invitation = LedgerInvitation(
        ledger_id=ledger_id,
        email=email_n,
        role=role_v,
        token=new_token(),
        status=InvitationStatus.PENDING.value,
        invited_by_id=acting_user_id,
        created_at=issued,
        expires_at=issued + INVITATION_TTL,
    )
    session.add(invitation)
    session.flush()
    audit(
        "invitation.created",
        invitation=invitation.id,
        ledger=ledger_id,
        role=role_v,
        by=acting_user_id,
        expires=invitation.expires_at.isoformat(),
    )
    return invitation


def respond_to_invitation(
    session: Session,
    *,
    token: str,
    acting_user_id: str,
    acting_user_email: str,
    accept: bool,
    now: datetime | None = None,
) -> LedgerInvitation:
    """Accept or decline an invitation on behalf of the acting user."""

    current = now or utcnow()
    invitation = find_invitation_by_token(session, token, for_update=True)
    if invitation is None:
        raise NotFoundError("Invalid invitation")

    if invitation.status != InvitationStatus.PENDING:
        raise ConflictError("This invitation has already been processed")

    if as_utc(invitation.expires_at) < current:
        invitation.status = InvitationStatus.EXPIRED.value
        invitation.responded_at = current
        # Persist the transition even though the caller receives an error.
        session.commit()
        audit("invitation.expired", invitation=invitation.id, ledger=invitation.ledger_id)
        raise ExpiredError("This invitation has expired")

    if normalize_email(acting_user_email) != invitation.email.lower():
        raise ForbiddenError("This invitation was sent to a different email address")

    invitation.responded_at = current
    if not accept:
        invitation.status = InvitationStatus.DECLINED.value
        session.flush()
        audit("invitation.declined", invitation=invitation.id, by=acting_user_id)
        return invitation

    invitation.status = InvitationStatus.ACCEPTED.value
    # A ledger never gains a second owner through an invitation.
    role = MemberRole.EDITOR.value if invitation.role == MemberRole.OWNER else invitation.role
    add_member(session, ledger_id=invitation.ledger_id, user_id=acting_user_id, role=role)

    user = session.get(User, acting_user_id)
    if user is not None and user.main_ledger_id is None:
        user.main_ledger_id = invitation.ledger_id
    session.flush()
    audit(
        "invitation.accepted",
        invitation=invitation.id,
        ledger=invitation.ledger_id,
        by=acting_user_id,
        role=role,
    )
    return invitation


def revoke_invitation(session: Session, *, invitation_id: str, acting_user_id: str) -> None:
    """Delete an invitation in any state."""

    invitation = get_invitation(session, invitation_id)
    require_editor(session, ledger_id=invitation.ledger_id, user_id=acting_user_id)
    session.delete(invitation)
    session.flush()
    audit("invitation.revoked", invitation=invitation_id, by=acting_user_id)


def list_pending_invitations_for_email(
    session: Session, *, email: str, now: datetime | None = None
) -> list[LedgerInvitation]:
    """PENDING invitations for ``email`` that have not yet passed expiry.

    Rows still marked PENDING but already past ``expires_at`` are filtered
    out here without being rewritten.
    """

    current = now or utcnow()
    return list(
        session.execute(
            select(LedgerInvitation)
            .where(
                LedgerInvitation.email == normalize_email(email),
                LedgerInvitation.status == InvitationStatus.PENDING.value,
                LedgerInvitation.expires_at > current,
            )
            .order_by(LedgerInvitation.created_at.desc(), LedgerInvitation.id)
            .options(*_VIEW_LOADS)
        )
        .scalars()
        .all()
    )


def list_ledger_invitations(
    session: Session, *, ledger_id: str, acting_user_id: str
) -> list[LedgerInvitation]:
    require_editor(session, ledger_id=ledger_id, user_id=acting_user_id)
    return list(
        session.execute(
            select(LedgerInvitation)
            .where(LedgerInvitation.ledger_id == ledger_id)
            .order_by(LedgerInvitation.created_at.desc(), LedgerInvitation.id)
            .options(*_VIEW_LOADS)
        )
        .scalars()
        .all()
    )


def views(rows: Iterable[LedgerInvitation]) -> list[InvitationView]:
    return [InvitationView.from_row(r) for r in rows]


__all__ = [
    "INVITATION_TTL",
    "new_token",
    "create_invitation",
    "respond_to_invitation",
    "revoke_invitation",
    "list_pending_invitations_for_email",
    "list_ledger_invitations",
    "views",
]
