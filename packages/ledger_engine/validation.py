"""Small input checks shared by the service modules.

Each helper raises a typed :mod:`ledger_engine.errors` failure instead of
returning a flag, so callers can chain them in the order their operation
requires.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import Any

from .errors import (
    InvalidDateError,
    InvalidEnumError,
    MissingFieldError,
    NonPositiveAmountError,
    ValidationError,
)

# Amounts and balances are stored as signed 64-bit integers.
MAX_AMOUNT = 2**63 - 1
MIN_AMOUNT = -(2**63)


def normalize_name(name: str | None, *, what: str = "Name", max_len: int = 64) -> str:
    """Trim and collapse internal whitespace; reject empty or overlong names."""

    if name is None:
        raise MissingFieldError(what.lower().replace(" ", "_"))
    n = " ".join(str(name).strip().split())
    if not n:
        raise ValidationError(f"{what} cannot be empty")
    if len(n) > max_len:
        raise ValidationError(f"{what} must be at most {max_len} characters")
    return n


def check_enum(field: str, value: Any, allowed: tuple[str, ...]) -> str:
    if value is None:
        raise MissingFieldError(field)
    s = str(value)
    if s not in allowed:
        raise InvalidEnumError(field, value, allowed)
    return s


def check_positive_amount(value: Any, *, field: str = "amount") -> int:
    if value is None:
        raise MissingFieldError(field)
    # bool is an int subclass; True is not an amount.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount in minor currency units")
    if value <= 0:
        raise NonPositiveAmountError(f"{field} must be positive, got {value}")
    if value > MAX_AMOUNT:
        raise ValidationError(f"{field} must be at most {MAX_AMOUNT}")
    return value


def check_balance(value: Any, *, field: str = "balance") -> int:
    """Signed amounts (opening balances, liabilities) within the BIGINT range."""

    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount in minor currency units")
    if not MIN_AMOUNT <= value <= MAX_AMOUNT:
        raise ValidationError(f"{field} must be between {MIN_AMOUNT} and {MAX_AMOUNT}")
    return value


def parse_instant(value: Any, *, field: str = "date") -> datetime:
    """Return a timezone-aware UTC datetime for ``value``.

    Accepts ``datetime`` (naive values are taken as UTC), ``date`` (midnight
    UTC), or an ISO-8601 string (a trailing ``Z`` is accepted).
    """

    if value is None:
        raise MissingFieldError(field)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            raise InvalidDateError(f"Invalid {field}: {value!r}") from None
    else:
        raise InvalidDateError(f"Invalid {field}: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def normalize_email(email: str | None) -> str:
    if email is None:
        raise MissingFieldError("email")
    e = email.strip().lower()
    if "@" not in e or e.startswith("@") or e.endswith("@"):
        raise ValidationError(f"Invalid email address: {email!r}")
    return e


__all__ = [
    "normalize_name",
    "check_enum",
    "MAX_AMOUNT",
    "MIN_AMOUNT",
    "check_positive_amount",
    "check_balance",
    "parse_instant",
    "normalize_email",
]
