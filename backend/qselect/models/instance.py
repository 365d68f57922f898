"""Finalized test instances (immutable after creation)."""

import uuid

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Index, String, Uuid

from qselect.db.base import Base


class TestInstanceRecord(Base):
    """Persisted TestInstance: template snapshot, ordered assignments and seed."""

    __test__ = False

    __tablename__ = "test_instances"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_id = Column(String(100), nullable=False)
    candidate_id = Column(Uuid(as_uuid=True), nullable=False)
    organization_id = Column(Uuid(as_uuid=True), nullable=False)
    stakes = Column(String(20), nullable=False)

    template_snapshot = Column(JSON, nullable=False)
    sections_json = Column(JSON, nullable=False)  # [{section_id, item_ids, item_versions, shortfall}]
    seed = Column(BigInteger, nullable=False)
    under_filled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_test_instances_candidate_created", "candidate_id", "created_at"),
    )
