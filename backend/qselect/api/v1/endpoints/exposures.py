"""Exposure ledger endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from qselect.core.app_exceptions import AppError
from qselect.db.session import get_db
from qselect.schemas.selection import AnsweredExposureIn, ExposureOut
from qselect.selection import ledger
from qselect.selection.errors import DuplicateExposureWrite, ExposureNotFound

router = APIRouter()


@router.post(
    "/answered",
    response_model=ExposureOut,
    summary="Mark exposure answered",
    description="Apply the single viewed -> answered mutation to an exposure.",
)
def mark_exposure_answered(
    payload: AnsweredExposureIn,
    db: Annotated[Session, Depends(get_db)],
) -> ExposureOut:
    try:
        exposure = ledger.mark_answered(db, payload.item_id, payload.instance_id, payload.result)
    except (ExposureNotFound, DuplicateExposureWrite) as e:
        raise AppError.from_selection_error(e) from e
    return ExposureOut.model_validate(exposure)
