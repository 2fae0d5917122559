"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger domain models used by ``ledger_engine``.
"""

from .ledger import (
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

__all__ = [
    "Base",
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
