"""db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``db.models.ledger`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.ledger import (
    Asset,
    AssetGroup,
    Base,
    Category,
    Ledger,
    LedgerInvitation,
    LedgerMember,
    Tag,
    Transaction,
    TransactionComment,
    TransactionSplit,
    TransactionTag,
    User,
)

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "User",
    "Ledger",
    "LedgerMember",
    "LedgerInvitation",
    "AssetGroup",
    "Asset",
    "Category",
    "Transaction",
    "TransactionSplit",
    "Tag",
    "TransactionTag",
    "TransactionComment",
]
