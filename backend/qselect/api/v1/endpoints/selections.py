"""Selection endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from qselect.core.app_exceptions import AppError
from qselect.core.logging import get_logger
from qselect.db.session import get_db
from qselect.schemas.selection import SelectionRequest, ShortageReport, TestInstance
from qselect.selection.engine import select_questions
from qselect.selection.errors import (
    PoolShortage,
    ReservationTimeout,
    StalePolicySnapshot,
)
from qselect.selection.reservations import ReservationCoordinator, get_coordinator
from qselect.services.instances import save_instance

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=TestInstance,
    status_code=status.HTTP_201_CREATED,
    summary="Select questions",
    description="Assemble a test instance for a candidate from a template snapshot.",
)
def create_selection(
    payload: SelectionRequest,
    db: Annotated[Session, Depends(get_db)],
    coordinator: Annotated[ReservationCoordinator, Depends(get_coordinator)],
) -> TestInstance:
    """
    Select questions for a new test instance.

    Runs in the threadpool: selection is synchronous and commits exposures
    before returning.
    """
    try:
        result = select_questions(
            db,
            payload.template,
            payload.candidate_id,
            payload.organization_id,
            coordinator=coordinator,
            seed=payload.seed,
        )
    except (ReservationTimeout, StalePolicySnapshot) as e:
        raise AppError.from_selection_error(e) from e

    if isinstance(result, ShortageReport):
        raise AppError.from_selection_error(PoolShortage(result), details=result.model_dump(mode="json"))

    save_instance(db, result)
    logger.info(
        f"Created test instance {result.id}",
        extra={
            "instance_id": str(result.id),
            "template_id": result.template_snapshot.id,
            "items": len(result.item_ids),
            "under_filled": result.under_filled,
        },
    )
    return result
