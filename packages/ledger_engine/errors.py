"""Typed failures raised by ledger operations.

Every error carries a ``kind`` (one of the constants below), a human-readable
``message`` and a ``retryable`` flag. Callers map kinds to transport concerns
(HTTP status codes, CLI exit codes); nothing here formats a response.

Only :class:`PersistenceError` is retryable: it wraps commit-time failures
(lock timeouts, deadlocks, constraint races, dropped connections). The engine
never retries on its own.
"""

from __future__ import annotations

VALIDATION = "validation"
NOT_FOUND = "not_found"
SCOPE_MISMATCH = "scope_mismatch"
CONFLICT = "conflict"
FORBIDDEN = "forbidden"
EXPIRED = "expired"
PERSISTENCE = "persistence"


class LedgerError(Exception):
    kind: str = "error"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"{type(self).__name__}(kind={self.kind!r}, message={self.message!r})"


class ValidationError(LedgerError):
    """Malformed input shape, enum, or range."""

    kind = VALIDATION


class NotFoundError(LedgerError):
    kind = NOT_FOUND


class ScopeMismatchError(LedgerError):
    """The entity exists but belongs to a different ledger."""

    kind = SCOPE_MISMATCH


class ConflictError(LedgerError):
    kind = CONFLICT


class ForbiddenError(LedgerError):
    kind = FORBIDDEN


class ExpiredError(LedgerError):
    kind = EXPIRED


class PersistenceError(LedgerError):
    kind = PERSISTENCE
    retryable = True


# ---- Posting failures ---------------------------------------------------------


class MissingFieldError(ValidationError):
    def __init__(self, field: str) -> None:
        super().__init__(f"Missing required field: {field}")
        self.field = field


class InvalidEnumError(ValidationError):
    def __init__(self, field: str, value: object, allowed: tuple[str, ...]) -> None:
        super().__init__(f"Invalid {field} {value!r}; expected one of {', '.join(allowed)}")
        self.field = field
        self.value = value


class InvalidDateError(ValidationError):
    pass


class NonPositiveAmountError(ValidationError):
    pass


class SameAssetTransferError(ValidationError):
    pass


class InvalidSplitCategoryError(ValidationError):
    pass


class AssetNotFoundError(NotFoundError):
    def __init__(self, asset_id: str) -> None:
        super().__init__(f"Asset not found: {asset_id}")
        self.asset_id = asset_id


class AssetNotInLedgerError(ScopeMismatchError):
    def __init__(self, asset_id: str, ledger_id: str) -> None:
        super().__init__(f"Asset {asset_id} does not belong to ledger {ledger_id}")
        self.asset_id = asset_id
        self.ledger_id = ledger_id


class BalanceOutOfRangeError(ValidationError):
    """Applying the delta would move the balance outside the BIGINT range."""

    def __init__(self, asset_id: str, balance: int, delta: int) -> None:
        super().__init__(
            f"Asset {asset_id} balance {balance} cannot absorb {delta:+d} without overflowing"
        )
        self.asset_id = asset_id
        self.delta = delta


class SplitSumMismatchError(ConflictError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Split amounts sum to {actual} but the transaction amount is {expected}"
        )
        self.expected = expected
        self.actual = actual


__all__ = [
    "VALIDATION",
    "NOT_FOUND",
    "SCOPE_MISMATCH",
    "CONFLICT",
    "FORBIDDEN",
    "EXPIRED",
    "PERSISTENCE",
    "LedgerError",
    "ValidationError",
    "NotFoundError",
    "ScopeMismatchError",
    "ConflictError",
    "ForbiddenError",
    "ExpiredError",
    "PersistenceError",
    "MissingFieldError",
    "InvalidEnumError",
    "InvalidDateError",
    "NonPositiveAmountError",
    "SameAssetTransferError",
    "InvalidSplitCategoryError",
    "AssetNotFoundError",
    "AssetNotInLedgerError",
    "BalanceOutOfRangeError",
    "SplitSumMismatchError",
]
