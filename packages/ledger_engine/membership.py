"""Ledger membership records, role checks, and invitation row lookups.

All functions take the caller's ``Session``; none of them commit.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models.ledger import LedgerInvitation, LedgerMember, User

from .errors import ForbiddenError, NotFoundError
from .logging_setup import audit, get_logger
from .models import EDITOR_ROLES, MemberRole

_logger = get_logger("ledger_engine.membership")


def get_membership(session: Session, *, ledger_id: str, user_id: str) -> LedgerMember | None:
    return session.execute(
        select(LedgerMember).where(
            LedgerMember.ledger_id == ledger_id, LedgerMember.user_id == user_id
        )
    ).scalar_one_or_none()


def require_member(session: Session, *, ledger_id: str, user_id: str) -> LedgerMember:
    membership = get_membership(session, ledger_id=ledger_id, user_id=user_id)
    if membership is None:
        raise ForbiddenError("You do not have access to this ledger")
    return membership


def require_editor(session: Session, *, ledger_id: str, user_id: str) -> LedgerMember:
    """Return the membership when the user is OWNER or EDITOR."""

    membership = require_member(session, ledger_id=ledger_id, user_id=user_id)
    if membership.role not in EDITOR_ROLES:
        raise ForbiddenError("Editing this ledger requires the OWNER or EDITOR role")
    return membership


def require_owner(session: Session, *, ledger_id: str, user_id: str) -> LedgerMember:
    membership = require_member(session, ledger_id=ledger_id, user_id=user_id)
    if membership.role != MemberRole.OWNER:
        raise ForbiddenError("Only the ledger owner can perform this action")
    return membership


def add_member(session: Session, *, ledger_id: str, user_id: str, role: str) -> LedgerMember:
    """Create a membership unless one exists; never duplicates, never errors.

    The insert runs inside a savepoint so that a concurrent insert of the same
    (ledger, user) pair, surfacing as a unique-constraint violation, is
    absorbed without aborting the caller's transaction.
    """

    existing = get_membership(session, ledger_id=ledger_id, user_id=user_id)
    if existing is not None:
        return existing

    row = LedgerMember(ledger_id=ledger_id, user_id=user_id, role=role)
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError:
        _logger.info(
            "membership for user=%s ledger=%s created concurrently; keeping existing",
            user_id,
            ledger_id,
        )
        existing = get_membership(session, ledger_id=ledger_id, user_id=user_id)
        if existing is None:
            raise
        return existing
    audit("member.added", ledger=ledger_id, user=user_id, role=role)
    return row


def is_member_email(session: Session, *, ledger_id: str, email: str) -> bool:
    """True when a user with ``email`` (case-insensitive) belongs to the ledger."""

    count = session.execute(
        select(func.count())
        .select_from(LedgerMember)
        .join(User, User.id == LedgerMember.user_id)
        .where(
            LedgerMember.ledger_id == ledger_id,
            func.lower(User.email) == email.strip().lower(),
        )
    ).scalar_one()
    return count > 0


def list_members(session: Session, *, ledger_id: str) -> list[LedgerMember]:
    return list(
        session.execute(
            select(LedgerMember)
            .where(LedgerMember.ledger_id == ledger_id)
            .order_by(LedgerMember.created_at, LedgerMember.id)
        )
        .scalars()
        .all()
    )


def get_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User not found: {user_id}")
    return user


def find_invitation_by_token(
    session: Session, token: str, *, for_update: bool = False
) -> LedgerInvitation | None:
    stmt = select(LedgerInvitation).where(LedgerInvitation.token == token)
    if for_update:
        stmt = stmt.with_for_update()
    return session.execute(stmt).scalar_one_or_none()


def get_invitation(session: Session, invitation_id: str) -> LedgerInvitation:
    invitation = session.get(LedgerInvitation, invitation_id)
    if invitation is None:
        raise NotFoundError(f"Invitation not found: {invitation_id}")
    return invitation


__all__ = [
    "get_membership",
    "require_member",
    "require_editor",
    "require_owner",
    "add_member",
    "is_member_email",
    "list_members",
    "get_user",
    "find_invitation_by_token",
    "get_invitation",
]
