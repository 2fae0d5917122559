"""Category tree operations for a ledger.

Categories form two forests per ledger (INCOME and EXPENSE). A child always
shares its parent's ledger and type, and the parent chain never loops back
on itself. ``sort_order`` is scoped to (ledger, type, parent).

Exports
-------
- ``create_category`` / ``update_category`` / ``delete_category``
- ``list_tree``: nested :class:`~ledger_engine.models.CategoryView` forests
- ``resolve_split_category``: validation used by transaction posting
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.ledger import Category, TransactionSplit

from .errors import (
    ConflictError,
    InvalidSplitCategoryError,
    NotFoundError,
    ScopeMismatchError,
    ValidationError,
)
from .models import CategoryType, CategoryView
from .validation import check_enum, normalize_name

_UNSET = object()
_CATEGORY_TYPES = tuple(t.value for t in CategoryType)


def get_category(session: Session, *, ledger_id: str, category_id: str) -> Category:
    category = session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category not found: {category_id}")
    if category.ledger_id != ledger_id:
        raise ScopeMismatchError(f"Category {category_id} does not belong to ledger {ledger_id}")
    return category


def _parent_filter(parent_id: str | None):
    return Category.parent_id == parent_id if parent_id is not None else Category.parent_id.is_(None)


def _ensure_unique_name(
    session: Session,
    *,
    ledger_id: str,
    type: str,
    parent_id: str | None,
    name: str,
    exclude_id: str | None = None,
) -> None:
    stmt = select(Category.id).where(
        Category.ledger_id == ledger_id,
        Category.type == type,
        _parent_filter(parent_id),
        func.lower(Category.name) == name.lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(Category.id != exclude_id)
    if session.execute(stmt).first() is not None:
        raise ConflictError(f"Category '{name}' already exists under the selected parent")


def _resolve_parent(session: Session, *, ledger_id: str, parent_id: str, type: str) -> Category:
    parent = session.get(Category, parent_id)
    if parent is None or parent.ledger_id != ledger_id or parent.type != type:
        raise ValidationError("Invalid parent category")
    return parent


def create_category(
    session: Session,
    *,
    ledger_id: str,
    name: str,
    type: str,
    parent_id: str | None = None,
) -> Category:
    """Create a category at the end of its sibling ordering."""

    name_n = normalize_name(name, what="Category name")
    check_enum("category type", type, _CATEGORY_TYPES)
    if parent_id is not None:
        _resolve_parent(session, ledger_id=ledger_id, parent_id=parent_id, type=type)
    _ensure_unique_name(
        session, ledger_id=ledger_id, type=type, parent_id=parent_id, name=name_n
    )

    max_order = session.execute(
        select(func.max(Category.sort_order)).where(
            Category.ledger_id == ledger_id, Category.type == type, _parent_filter(parent_id)
        )
    ).scalar_one()
    row = Category(
        ledger_id=ledger_id,
        name=name_n,
        type=type,
        parent_id=parent_id,
        sort_order=(max_order if max_order is not None else -1) + 1,
    )
    session.add(row)
    session.flush()
    return row


def _would_cycle(session: Session, *, category_id: str, new_parent_id: str) -> bool:
    """True when ``category_id`` is ``new_parent_id`` or one of its ancestors."""

    seen: set[str] = set()
    cursor: str | None = new_parent_id
    while cursor is not None:
        if cursor == category_id:
            return True
        if cursor in seen:
            # Pre-existing loop in stored data; treat as a cycle.
            return True
        seen.add(cursor)
        cursor = session.execute(
            select(Category.parent_id).where(Category.id == cursor)
        ).scalar_one_or_none()
    return False


def update_category(
    session: Session,
    *,
    ledger_id: str,
    category_id: str,
    name: str | None = None,
    parent_id: object = _UNSET,
) -> Category:
    """Rename and/or reparent a category. The type never changes."""

    category = get_category(session, ledger_id=ledger_id, category_id=category_id)
    target_parent = category.parent_id
    if parent_id is not _UNSET:
        target_parent = parent_id  # type: ignore[assignment]
        if target_parent is not None:
            _resolve_parent(
                session, ledger_id=ledger_id, parent_id=str(target_parent), type=category.type
            )
            if _would_cycle(session, category_id=category_id, new_parent_id=str(target_parent)):
                raise ValidationError("A category cannot be its own ancestor")

    target_name = normalize_name(name, what="Category name") if name is not None else category.name
    if target_name != category.name or target_parent != category.parent_id:
        _ensure_unique_name(
            session,
            ledger_id=ledger_id,
            type=category.type,
            parent_id=target_parent,
            name=target_name,
            exclude_id=category_id,
        )
    category.name = target_name
    category.parent_id = target_parent
    session.flush()
    return category


def delete_category(session: Session, *, ledger_id: str, category_id: str) -> None:
    category = get_category(session, ledger_id=ledger_id, category_id=category_id)
    has_children = session.execute(
        select(Category.id).where(Category.parent_id == category_id).limit(1)
    ).first()
    if has_children is not None:
        raise ConflictError("Delete the sub-categories first")
    in_use = session.execute(
        select(TransactionSplit.id).where(TransactionSplit.category_id == category_id).limit(1)
    ).first()
    if in_use is not None:
        raise ConflictError("Category is used by existing transactions")
    session.delete(category)
    session.flush()


def list_tree(session: Session, *, ledger_id: str) -> dict[str, tuple[CategoryView, ...]]:
    """Return ``{"INCOME": roots, "EXPENSE": roots}`` with nested children.

    Orphans (parent missing from the ledger) are surfaced as roots.
    """

    rows = (
        session.execute(
            select(Category)
            .where(Category.ledger_id == ledger_id)
            .order_by(Category.type, Category.sort_order, Category.name)
        )
        .scalars()
        .all()
    )
    by_parent: dict[str | None, list[Category]] = {}
    ids = {r.id for r in rows}
    for r in rows:
        key = r.parent_id if r.parent_id in ids else None
        by_parent.setdefault(key, []).append(r)

    def build(row: Category) -> CategoryView:
        kids = tuple(build(c) for c in by_parent.get(row.id, []))
        return CategoryView.from_row(row, kids)

    forest: dict[str, tuple[CategoryView, ...]] = {t: () for t in _CATEGORY_TYPES}
    for t in _CATEGORY_TYPES:
        forest[t] = tuple(build(r) for r in by_parent.get(None, []) if r.type == t)
    return forest


def resolve_split_category(
    session: Session, *, ledger_id: str, category_id: str, expected_type: str
) -> Category:
    """Return the category a split may allocate to, or raise.

    The category must exist, belong to ``ledger_id``, and have the same
    direction as the transaction (EXPENSE splits use EXPENSE categories).
    """

    category = session.get(Category, category_id)
    if category is None or category.ledger_id != ledger_id:
        raise InvalidSplitCategoryError(f"Category {category_id} is not available in this ledger")
    if category.type != expected_type:
        raise InvalidSplitCategoryError(
            f"Category {category_id} is an {category.type} category; "
            f"{expected_type} transactions need {expected_type} categories"
        )
    return category


__all__ = [
    "get_category",
    "create_category",
    "update_category",
    "delete_category",
    "list_tree",
    "resolve_split_category",
]
