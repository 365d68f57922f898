"""
Pool index.

Read-optimized view joining published items to their taxonomy tags. Section
filters are ANDed across dimensions and ORed within a dimension's tag set.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from qselect.models.item import Item, ItemStatus, ItemTag

logger = logging.getLogger(__name__)

TagKey = tuple[str, str]


@dataclass(frozen=True)
class PoolCandidate:
    """Published item with the taxonomy metadata needed for diversity weighting."""

    item_id: UUID
    version: int
    status: ItemStatus
    difficulty: str | None = None
    tags: frozenset[TagKey] = field(default_factory=frozenset)


def _filtered_ids_query(
    constraints: Mapping[str, Iterable[str]],
    difficulties: Iterable[str] | None = None,
):
    query = select(Item.id).where(Item.status == ItemStatus.PUBLISHED)
    for dimension, tags in constraints.items():
        tag_ids = list(tags)
        query = query.where(
            Item.id.in_(
                select(ItemTag.item_id).where(
                    ItemTag.dimension == dimension,
                    ItemTag.tag_id.in_(tag_ids),
                )
            )
        )
    difficulty_list = list(difficulties or [])
    if difficulty_list:
        query = query.where(Item.difficulty.in_(difficulty_list))
    return query


def query(
    db: Session,
    constraints: Mapping[str, Iterable[str]],
    difficulties: Iterable[str] | None = None,
) -> list[PoolCandidate]:
    """
    Find published items satisfying a section filter.

    Args:
        db: Database session
        constraints: dimension -> allowed tag ids
        difficulties: Allowed difficulties (None/empty = any)

    Returns:
        Candidates ordered by item ID; empty when nothing matches
    """
    id_query = _filtered_ids_query(constraints, difficulties)

    rows = db.execute(
        select(Item.id, Item.version, Item.status, Item.difficulty)
        .where(Item.id.in_(id_query))
        .order_by(Item.id)
    ).all()
    if not rows:
        return []

    item_ids = [row.id for row in rows]
    tags_by_item: dict[UUID, set[TagKey]] = defaultdict(set)
    tag_rows = db.execute(
        select(ItemTag.item_id, ItemTag.dimension, ItemTag.tag_id).where(ItemTag.item_id.in_(item_ids))
    ).all()
    for tag_row in tag_rows:
        tags_by_item[tag_row.item_id].add((tag_row.dimension, tag_row.tag_id))

    return [
        PoolCandidate(
            item_id=row.id,
            version=row.version,
            status=row.status,
            difficulty=row.difficulty,
            tags=frozenset(tags_by_item.get(row.id, ())),
        )
        for row in rows
    ]


def count(
    db: Session,
    constraints: Mapping[str, Iterable[str]],
    difficulties: Iterable[str] | None = None,
) -> int:
    """Count published items satisfying a filter."""
    subquery = _filtered_ids_query(constraints, difficulties).subquery()
    return db.execute(select(func.count()).select_from(subquery)).scalar() or 0


def difficulties_for(db: Session, constraints: Mapping[str, Iterable[str]]) -> list[str | None]:
    """Distinct difficulties present among published items matching a filter."""
    id_query = _filtered_ids_query(constraints)
    rows = db.execute(
        select(Item.difficulty).where(Item.id.in_(id_query)).distinct().order_by(Item.difficulty)
    ).all()
    return [row[0] for row in rows]
