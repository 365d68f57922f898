"""Pool health endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from qselect.core.app_exceptions import raise_app_error
from qselect.db.session import get_db
from qselect.schemas.selection import PoolHealthOut
from qselect.selection.pool_health import pool_health

router = APIRouter()


def parse_filters(raw: list[str]) -> dict[str, list[str]]:
    """Parse ``dimension:tag`` pairs; repeated dimensions OR their tags."""
    constraints: dict[str, list[str]] = {}
    for value in raw:
        dimension, sep, tag = value.partition(":")
        if not sep or not dimension or not tag:
            raise_app_error(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                code="VALIDATION_ERROR",
                message="Filters must be given as dimension:tag",
                details={"filter": value},
            )
        constraints.setdefault(dimension, []).append(tag)
    return constraints


@router.get(
    "",
    response_model=PoolHealthOut,
    summary="Pool health",
    description="Count published items matching a taxonomy filter and flag buckets below threshold.",
)
def get_pool_health(
    db: Annotated[Session, Depends(get_db)],
    filter: Annotated[list[str], Query(description="dimension:tag, repeatable")] = [],
    difficulty: str | None = None,
    threshold: Annotated[int | None, Query(ge=0)] = None,
) -> PoolHealthOut:
    """Advisory pool size for a filter."""
    health = pool_health(db, parse_filters(filter), threshold=threshold, difficulty=difficulty)
    return PoolHealthOut(
        eligible_count=health.eligible_count,
        threshold=health.threshold,
        alert=health.alert,
    )
