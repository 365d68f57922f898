"""Liveness and readiness endpoints."""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qselect.core.config import settings
from qselect.core.errors import get_request_id
from qselect.core.redis_client import is_redis_available
from qselect.db.session import get_db
from qselect.selection.reservations import RedisClaimStore, ReservationCoordinator, get_coordinator

router = APIRouter()

CheckStatus = Literal["ok", "degraded", "down"]


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"


class ReadinessCheck(BaseModel):
    status: CheckStatus
    message: str | None = None


class ReadinessResponse(BaseModel):
    status: CheckStatus
    checks: dict[str, ReadinessCheck]
    request_id: str


def _worst(current: CheckStatus, new: CheckStatus) -> CheckStatus:
    order = ("ok", "degraded", "down")
    return max(current, new, key=order.index)


@router.get("/health", response_model=HealthResponse, summary="Liveness check")
def health_check() -> HealthResponse:
    """Process is up."""
    return HealthResponse()


@router.get("/ready", response_model=ReadinessResponse, summary="Readiness check")
def readiness_check(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    coordinator: Annotated[ReservationCoordinator, Depends(get_coordinator)],
) -> ReadinessResponse:
    """
    Readiness: exposure ledger database and claim store.

    A missing Redis only degrades readiness unless REDIS_REQUIRED is set, since
    the coordinator falls back to process-local claims.
    """
    checks: dict[str, ReadinessCheck] = {}
    overall: CheckStatus = "ok"

    try:
        db.execute(text("SELECT 1"))
        checks["db"] = ReadinessCheck(status="ok")
    except SQLAlchemyError as e:
        checks["db"] = ReadinessCheck(status="down", message=str(e))
        overall = "down"

    if not settings.REDIS_ENABLED:
        checks["redis"] = ReadinessCheck(status="ok", message="Not enabled")
    elif is_redis_available():
        checks["redis"] = ReadinessCheck(status="ok")
    else:
        redis_status: CheckStatus = "down" if settings.REDIS_REQUIRED else "degraded"
        checks["redis"] = ReadinessCheck(status=redis_status, message="Redis unavailable")
        overall = _worst(overall, redis_status)

    shared = isinstance(coordinator.store, RedisClaimStore)
    checks["reservations"] = ReadinessCheck(
        status="ok",
        message="redis" if shared else "process-local",
    )

    return ReadinessResponse(status=overall, checks=checks, request_id=get_request_id(request))
