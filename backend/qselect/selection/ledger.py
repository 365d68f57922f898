"""
Exposure ledger.

Durable, append-only record of every item shown to every candidate. Reads run on
the caller's session, so they observe every write that session has flushed or
committed (read-your-writes); the rotation-depth check must never under-count.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from qselect.models.exposure import ExposureOutcome, ExposureRecord, ExposureResult
from qselect.selection.errors import DuplicateExposureWrite, ExposureNotFound

logger = logging.getLogger(__name__)

COUNTED_OUTCOMES = (ExposureOutcome.VIEWED, ExposureOutcome.ANSWERED)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class ExposureSlice:
    """Exposure facts about one item, as needed by the policy evaluator."""

    item_id: UUID
    candidate_exposure_count: int = 0
    candidate_last_exposed_at: datetime | None = None
    org_distinct_candidates: int = 0
    last_exposed_at_any: datetime | None = None
    total_exposures: int = 0


def record(
    db: Session,
    item_id: UUID,
    candidate_id: UUID,
    instance_id: UUID,
    organization_id: UUID,
    outcome: ExposureOutcome = ExposureOutcome.VIEWED,
    result: ExposureResult | None = None,
    item_version: int | None = None,
    used_at: datetime | None = None,
    commit: bool = True,
) -> ExposureRecord:
    """
    Append an exposure, or apply the single VIEWED -> ANSWERED mutation.

    Args:
        db: Database session
        item_id: Exposed item
        candidate_id: Candidate who saw the item
        instance_id: Test instance the item belongs to
        organization_id: Organization the instance was created for
        outcome: VIEWED or ANSWERED
        result: Scored result (ANSWERED only)
        item_version: Item version pinned at selection time
        used_at: Exposure time (defaults to now)
        commit: Commit immediately (False lets the caller batch writes)

    Returns:
        The stored exposure record

    Raises:
        DuplicateExposureWrite: (item, instance) already reached ``outcome``
    """
    now = used_at or datetime.now(UTC)
    existing = db.execute(
        select(ExposureRecord).where(
            ExposureRecord.item_id == item_id,
            ExposureRecord.instance_id == instance_id,
        )
    ).scalar_one_or_none()

    if existing is not None:
        if outcome == ExposureOutcome.VIEWED or existing.outcome == ExposureOutcome.ANSWERED:
            raise DuplicateExposureWrite(
                f"Exposure for item {item_id} in instance {instance_id} is already {existing.outcome.value}"
            )
        existing.outcome = ExposureOutcome.ANSWERED
        existing.result = result or ExposureResult.NONE
        existing.answered_at = now
        _flush(db, commit, item_id, instance_id)
        return existing

    exposure = ExposureRecord(
        item_id=item_id,
        item_version=item_version,
        candidate_id=candidate_id,
        instance_id=instance_id,
        organization_id=organization_id,
        used_at=now,
        outcome=outcome,
        result=(result or ExposureResult.NONE) if outcome == ExposureOutcome.ANSWERED else ExposureResult.NONE,
        answered_at=now if outcome == ExposureOutcome.ANSWERED else None,
    )
    db.add(exposure)
    _flush(db, commit, item_id, instance_id)
    return exposure


def _flush(db: Session, commit: bool, item_id: UUID, instance_id: UUID) -> None:
    try:
        if commit:
            db.commit()
        else:
            db.flush()
    except IntegrityError:
        # Concurrent writer inserted (item, instance) first
        db.rollback()
        raise DuplicateExposureWrite(
            f"Exposure for item {item_id} in instance {instance_id} was written concurrently"
        ) from None


def mark_answered(
    db: Session,
    item_id: UUID,
    instance_id: UUID,
    result: ExposureResult = ExposureResult.NONE,
) -> ExposureRecord:
    """
    Apply the answered mutation to an existing VIEWED exposure.

    Raises:
        ExposureNotFound: No exposure for (item, instance)
        DuplicateExposureWrite: Exposure already ANSWERED
    """
    existing = db.execute(
        select(ExposureRecord).where(
            ExposureRecord.item_id == item_id,
            ExposureRecord.instance_id == instance_id,
        )
    ).scalar_one_or_none()
    if existing is None:
        raise ExposureNotFound(f"No exposure for item {item_id} in instance {instance_id}")

    return record(
        db,
        item_id=item_id,
        candidate_id=existing.candidate_id,
        instance_id=instance_id,
        organization_id=existing.organization_id,
        outcome=ExposureOutcome.ANSWERED,
        result=result,
    )


def history(
    db: Session,
    candidate_id: UUID,
    item_id: UUID | None = None,
    item_ids: Iterable[UUID] | None = None,
) -> list[ExposureRecord]:
    """Candidate exposure history ordered by time (oldest first)."""
    query = select(ExposureRecord).where(ExposureRecord.candidate_id == candidate_id)
    if item_id is not None:
        query = query.where(ExposureRecord.item_id == item_id)
    if item_ids is not None:
        query = query.where(ExposureRecord.item_id.in_(list(item_ids)))
    query = query.order_by(ExposureRecord.used_at, ExposureRecord.id)
    return list(db.execute(query).scalars().all())


def org_exposure_counts(
    db: Session,
    organization_id: UUID,
    item_ids: Iterable[UUID],
    since: datetime | None = None,
) -> dict[UUID, int]:
    """
    Distinct-candidate exposure counts per item for one organization.

    Args:
        db: Database session
        organization_id: Organization ID
        item_ids: Items to count
        since: Start of the rotation window (None = all history)

    Returns:
        Mapping item_id -> distinct candidate count (items with no exposure omitted)
    """
    ids = list(item_ids)
    if not ids:
        return {}
    query = (
        select(ExposureRecord.item_id, func.count(func.distinct(ExposureRecord.candidate_id)))
        .where(
            ExposureRecord.organization_id == organization_id,
            ExposureRecord.item_id.in_(ids),
            ExposureRecord.outcome.in_(COUNTED_OUTCOMES),
        )
        .group_by(ExposureRecord.item_id)
    )
    if since is not None:
        query = query.where(ExposureRecord.used_at >= since)
    return {row[0]: int(row[1]) for row in db.execute(query).all()}


def latest_exposures(db: Session, item_ids: Iterable[UUID]) -> dict[UUID, datetime]:
    """Most recent exposure time per item, across all candidates."""
    ids = list(item_ids)
    if not ids:
        return {}
    query = (
        select(ExposureRecord.item_id, func.max(ExposureRecord.used_at))
        .where(ExposureRecord.item_id.in_(ids))
        .group_by(ExposureRecord.item_id)
    )
    return {row[0]: as_utc(row[1]) for row in db.execute(query).all()}


def total_exposure_counts(db: Session, item_ids: Iterable[UUID]) -> dict[UUID, int]:
    """Total exposure rows per item, across all candidates and organizations."""
    ids = list(item_ids)
    if not ids:
        return {}
    query = (
        select(ExposureRecord.item_id, func.count(ExposureRecord.id))
        .where(ExposureRecord.item_id.in_(ids))
        .group_by(ExposureRecord.item_id)
    )
    return {row[0]: int(row[1]) for row in db.execute(query).all()}


def build_slices(
    db: Session,
    candidate_id: UUID,
    organization_id: UUID,
    item_ids: Iterable[UUID],
    rotation_since: datetime | None = None,
) -> dict[UUID, ExposureSlice]:
    """Assemble per-item exposure slices with a fixed number of bulk queries."""
    ids = list(item_ids)
    if not ids:
        return {}

    candidate_counts: dict[UUID, int] = {}
    candidate_last: dict[UUID, datetime] = {}
    for exposure in history(db, candidate_id, item_ids=ids):
        candidate_counts[exposure.item_id] = candidate_counts.get(exposure.item_id, 0) + 1
        candidate_last[exposure.item_id] = as_utc(exposure.used_at)  # ordered, last wins

    org_counts = org_exposure_counts(db, organization_id, ids, since=rotation_since)
    latest = latest_exposures(db, ids)
    totals = total_exposure_counts(db, ids)

    return {
        item_id: ExposureSlice(
            item_id=item_id,
            candidate_exposure_count=candidate_counts.get(item_id, 0),
            candidate_last_exposed_at=candidate_last.get(item_id),
            org_distinct_candidates=org_counts.get(item_id, 0),
            last_exposed_at_any=latest.get(item_id),
            total_exposures=totals.get(item_id, 0),
        )
        for item_id in ids
    }
