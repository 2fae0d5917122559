"""Centralized logging configuration for the ``ledger_engine`` package.

- ``configure_logging(...)``: attach a single ``StreamHandler`` to the package
  root logger (``"ledger_engine"``). Called once by entrypoints (the CLI or a
  host web application) at process startup.
- ``get_logger(name)``: acquire a logger by name, ensuring that the package
  root logger has at least a ``NullHandler`` attached when not configured.
- ``audit(event, **fields)``: emit one ``key=value`` line on the
  ``"ledger_engine.audit"`` channel for changes to who can see a ledger
  (invitations, memberships, ledger deletion).

The audit channel has its own level (``$LEDGER_ENGINE_AUDIT_LEVEL``, default
``INFO``), so a host can run the package at ``WARNING`` and still keep a
record of access changes.

Service modules never attach their own handlers; they call
``get_logger("ledger_engine.<module>")`` and rely on the host's configuration.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO, Any

_PKG_LOGGER_NAME = "ledger_engine"
AUDIT_LOGGER_NAME = "ledger_engine.audit"
_LEVEL_ENV = "LEDGER_ENGINE_LOG_LEVEL"
_AUDIT_LEVEL_ENV = "LEDGER_ENGINE_AUDIT_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _parse_level(level: int | str | None, *, env: str = _LEVEL_ENV) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level = level.strip().upper()
        if level.isdigit():
            return int(level)
        numeric = getattr(logging, level, None)
        if isinstance(numeric, int):
            return numeric
        return logging.INFO
    env_val = os.getenv(env)
    if env_val:
        return _parse_level(env_val, env=env)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    audit_level: int | str | None = None,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Configure the package root logger exactly once.

    ``level`` falls back to ``$LEDGER_ENGINE_LOG_LEVEL`` and then ``INFO``;
    ``audit_level`` to ``$LEDGER_ENGINE_AUDIT_LEVEL`` and then ``INFO``.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    resolved_audit = _parse_level(audit_level, env=_AUDIT_LEVEL_ENV)
    handler = logging.StreamHandler(stream)
    # The handler serves both channels; each logger does its own filtering.
    handler.setLevel(min(resolved, resolved_audit))
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    # Avoid double emission via the root logger.
    logger.propagate = False
    logging.getLogger(AUDIT_LOGGER_NAME).setLevel(resolved_audit)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name, attaching a ``NullHandler`` until configured."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


def format_audit(event: str, fields: dict[str, Any]) -> str:
    """``event key=value ...`` with keys sorted; values with spaces are quoted."""

    parts = [event]
    for key in sorted(fields):
        value = fields[key]
        text = "-" if value is None else str(value)
        if not text or any(c.isspace() for c in text) or '"' in text:
            text = '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
        parts.append(f"{key}={text}")
    return " ".join(parts)


def audit(event: str, **fields: Any) -> None:
    logger = get_logger(AUDIT_LOGGER_NAME)
    if logger.isEnabledFor(logging.INFO):
        logger.info(format_audit(event, fields))


__all__ = ["AUDIT_LOGGER_NAME", "configure_logging", "get_logger", "format_audit", "audit"]
