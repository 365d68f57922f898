"""Exposure ledger model: every item shown to every candidate."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    UniqueConstraint,
    Uuid,
)

from qselect.db.base import Base


class ExposureOutcome(str, PyEnum):
    """How far the candidate got with an exposed item."""

    VIEWED = "VIEWED"
    ANSWERED = "ANSWERED"


class ExposureResult(str, PyEnum):
    """Scored result, set once together with the ANSWERED transition."""

    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"
    SKIPPED = "SKIPPED"
    NONE = "NONE"


class ExposureRecord(Base):
    """Append-only exposure row.

    The only permitted mutation is outcome VIEWED -> ANSWERED plus ``result``,
    exactly once, keyed by (item_id, instance_id).
    """

    __tablename__ = "exposure_records"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    item_id = Column(Uuid(as_uuid=True), nullable=False)
    item_version = Column(Integer, nullable=True)
    candidate_id = Column(Uuid(as_uuid=True), nullable=False)
    instance_id = Column(Uuid(as_uuid=True), nullable=False)
    organization_id = Column(Uuid(as_uuid=True), nullable=False)

    used_at = Column(DateTime(timezone=True), nullable=False)
    outcome = Column(
        Enum(ExposureOutcome, name="exposure_outcome"),
        nullable=False,
        default=ExposureOutcome.VIEWED,
    )
    result = Column(
        Enum(ExposureResult, name="exposure_result"),
        nullable=False,
        default=ExposureResult.NONE,
    )
    answered_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("item_id", "instance_id", name="uq_exposure_records_item_instance"),
        Index("ix_exposure_records_candidate_item_used", "candidate_id", "item_id", "used_at"),
        Index("ix_exposure_records_item_org_used", "item_id", "organization_id", "used_at"),
    )
