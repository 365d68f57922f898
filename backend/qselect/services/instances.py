"""Service for persisting finalized test instances."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from qselect.models.instance import TestInstanceRecord
from qselect.schemas.selection import SectionAssignment, TestInstance
from qselect.schemas.template import TemplateSnapshot


def save_instance(db: Session, instance: TestInstance) -> TestInstanceRecord:
    """
    Store a finalized instance.

    Instances are immutable: saving an ID that already exists is an error
    surfaced by the primary key.

    Args:
        db: Database session
        instance: Instance returned by the selection engine

    Returns:
        The stored record
    """
    record = TestInstanceRecord(
        id=instance.id,
        template_id=instance.template_snapshot.id,
        candidate_id=instance.candidate_id,
        organization_id=instance.organization_id,
        stakes=instance.stakes.value,
        template_snapshot=instance.template_snapshot.snapshot_json(),
        sections_json=[section.model_dump(mode="json") for section in instance.sections],
        seed=instance.seed,
        under_filled=instance.under_filled,
        created_at=instance.created_at,
    )
    db.add(record)
    db.commit()
    return record


def get_instance(db: Session, instance_id: UUID) -> TestInstance | None:
    """Load an instance back into its contract form."""
    record = db.execute(
        select(TestInstanceRecord).where(TestInstanceRecord.id == instance_id)
    ).scalar_one_or_none()
    if record is None:
        return None

    return TestInstance(
        id=record.id,
        template_snapshot=TemplateSnapshot.model_validate(record.template_snapshot),
        candidate_id=record.candidate_id,
        organization_id=record.organization_id,
        stakes=record.stakes,
        sections=[SectionAssignment.model_validate(section) for section in record.sections_json],
        seed=record.seed,
        created_at=record.created_at,
    )
