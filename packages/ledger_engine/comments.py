"""Member comments on transactions.

Any member of the ledger, VIEWER included, may read and add comments. Only
the author may edit or delete a comment. A comment is addressed by
``(ledger_id, transaction_id, comment_id)``; one that does not sit on that
transaction in that ledger is reported as not found.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from db.models.ledger import Transaction, TransactionComment

from .errors import ForbiddenError, MissingFieldError, NotFoundError, ValidationError
from .logging_setup import get_logger
from .membership import require_member
from .models import utcnow

_logger = get_logger("ledger_engine.comments")

MAX_COMMENT_LEN = 1000


def _check_content(content: str | None) -> str:
    if content is None:
        raise MissingFieldError("content")
    text = str(content).strip()
    if not text:
        raise ValidationError("Comment cannot be empty")
    if len(text) > MAX_COMMENT_LEN:
        raise ValidationError(f"Comment must be at most {MAX_COMMENT_LEN} characters")
    return text


def _require_transaction(session: Session, *, ledger_id: str, transaction_id: str) -> None:
    found = session.execute(
        select(Transaction.id).where(
            Transaction.id == transaction_id, Transaction.ledger_id == ledger_id
        )
    ).scalar_one_or_none()
    if found is None:
        raise NotFoundError(f"Transaction not found: {transaction_id}")


def _own_comment(
    session: Session, *, ledger_id: str, transaction_id: str, comment_id: str, user_id: str
) -> TransactionComment:
    comment = session.execute(
        select(TransactionComment)
        .join(Transaction, Transaction.id == TransactionComment.transaction_id)
        .where(
            TransactionComment.id == comment_id,
            TransactionComment.transaction_id == transaction_id,
            Transaction.ledger_id == ledger_id,
        )
    ).scalar_one_or_none()
    if comment is None:
        raise NotFoundError(f"Comment not found: {comment_id}")
    if comment.user_id != user_id:
        raise ForbiddenError("Only the author can change this comment")
    return comment


def create_comment(
    session: Session,
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    content: str,
    now: datetime | None = None,
) -> TransactionComment:
    require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
    text = _check_content(content)
    _require_transaction(session, ledger_id=ledger_id, transaction_id=transaction_id)

    written = now or utcnow()
    comment = TransactionComment(
        transaction_id=transaction_id,
        user_id=acting_user_id,
        content=text,
        created_at=written,
        updated_at=written,
    )
    session.add(comment)
    session.flush()
    _logger.info(
        "comment %s added to transaction %s by user=%s", comment.id, transaction_id, acting_user_id
    )
    return comment


def update_comment(
    session: Session,
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    comment_id: str,
    content: str,
    now: datetime | None = None,
) -> TransactionComment:
    require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
    text = _check_content(content)
    comment = _own_comment(
        session,
        ledger_id=ledger_id,
        transaction_id=transaction_id,
        comment_id=comment_id,
        user_id=acting_user_id,
    )
    comment.content = text
    comment.updated_at = now or utcnow()
    session.flush()
    return comment


def delete_comment(
    session: Session,
    *,
    ledger_id: str,
    acting_user_id: str,
    transaction_id: str,
    comment_id: str,
) -> None:
    require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
    comment = _own_comment(
        session,
        ledger_id=ledger_id,
        transaction_id=transaction_id,
        comment_id=comment_id,
        user_id=acting_user_id,
    )
    session.delete(comment)
    session.flush()
    _logger.info("comment %s deleted by user=%s", comment_id, acting_user_id)


def list_comments(
    session: Session, *, ledger_id: str, acting_user_id: str, transaction_id: str
) -> list[TransactionComment]:
    """Comments on one transaction, oldest first."""

    require_member(session, ledger_id=ledger_id, user_id=acting_user_id)
    _require_transaction(session, ledger_id=ledger_id, transaction_id=transaction_id)
    return list(
        session.execute(
            select(TransactionComment)
            .where(TransactionComment.transaction_id == transaction_id)
            .order_by(TransactionComment.created_at, TransactionComment.id)
            .options(selectinload(TransactionComment.user))
        )
        .scalars()
        .all()
    )


__all__ = [
    "MAX_COMMENT_LEN",
    "create_comment",
    "update_comment",
    "delete_comment",
    "list_comments",
]
