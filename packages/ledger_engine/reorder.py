"""Batch ``sort_order`` updates for asset groups, assets, and categories.

Callers send a full replacement ordering and it is applied as given: sparse
or duplicate order values are accepted. Each update is scoped to the ledger,
so an id that does not name a row of that kind in the ledger aborts the whole
batch (the caller's scope rolls back the updates already issued).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import pydantic
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from db.models.ledger import Asset, AssetGroup, Category

from .errors import InvalidEnumError, NotFoundError, ValidationError
from .logging_setup import get_logger
from .membership import require_editor
from .models import ReorderItem, ReorderKind, coerce_model

_logger = get_logger("ledger_engine.reorder")

_MODELS: dict[str, type[AssetGroup] | type[Asset] | type[Category]] = {
    ReorderKind.ASSET_GROUP: AssetGroup,
    ReorderKind.ASSET: Asset,
    ReorderKind.CATEGORY: Category,
}


def _coerce_items(items: Iterable[ReorderItem | Mapping[str, Any]]) -> list[ReorderItem]:
    out: list[ReorderItem] = []
    for i, raw in enumerate(items):
        try:
            out.append(coerce_model(ReorderItem, raw))
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid reorder item #{i + 1}: {e.errors()[0]['msg']}") from None
    if not out:
        raise ValidationError("Reorder needs at least one item")
    return out


def reorder(
    session: Session,
    *,
    kind: str,
    scope_id: str,
    acting_user_id: str,
    items: Iterable[ReorderItem | Mapping[str, Any]],
) -> list[Any]:
    """Apply every ``{id, sort_order}`` pair and return the updated rows in input order."""

    model = _MODELS.get(kind)
    if model is None:
        raise InvalidEnumError("kind", kind, tuple(k.value for k in ReorderKind))
    parsed = _coerce_items(items)
    require_editor(session, ledger_id=scope_id, user_id=acting_user_id)

    for item in parsed:
        result = session.execute(
            update(model)
            .where(model.id == item.id, model.ledger_id == scope_id)
            .values(sort_order=item.sort_order)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"No {kind} {item.id} in ledger {scope_id}")

    ids = [item.id for item in parsed]
    rows = {
        r.id: r
        for r in session.execute(
            select(model)
            .where(model.id.in_(ids))
            .execution_options(populate_existing=True)
        ).scalars()
    }
    _logger.info("reordered %d %s rows in ledger=%s", len(parsed), kind, scope_id)
    return [rows[i] for i in dict.fromkeys(ids)]


__all__ = ["reorder"]
