"""Pydantic schemas for selection requests, instances and shortage reports."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from qselect.models.exposure import ExposureOutcome, ExposureResult
from qselect.schemas.template import Stakes, TemplateSnapshot

# ============================================================================
# Selection Schemas
# ============================================================================


class SelectionRequest(BaseModel):
    """Request to select questions for a new test instance."""

    template: TemplateSnapshot
    candidate_id: UUID
    organization_id: UUID
    seed: int | None = Field(None, ge=0, lt=2**63, description="Replay seed (optional)")


class SectionAssignment(BaseModel):
    """Ordered items assigned to one section."""

    model_config = ConfigDict(frozen=True)

    section_id: str
    item_ids: list[UUID]
    item_versions: dict[UUID, int] = Field(default_factory=dict)
    required: int
    shortfall: int = 0

    @property
    def under_filled(self) -> bool:
        return self.shortfall > 0


class TestInstance(BaseModel):
    """Finalized test instance. Immutable after creation."""

    __test__ = False

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    template_snapshot: TemplateSnapshot
    candidate_id: UUID
    organization_id: UUID
    stakes: Stakes
    sections: list[SectionAssignment]
    seed: int
    created_at: datetime

    @property
    def item_ids(self) -> list[UUID]:
        return [item_id for section in self.sections for item_id in section.item_ids]

    @property
    def under_filled(self) -> bool:
        return any(section.under_filled for section in self.sections)


class SectionShortage(BaseModel):
    """Shortage details for one under-filled section."""

    section: str
    available: int
    required: int
    reason_histogram: dict[str, int] = Field(default_factory=dict)


class ShortageReport(BaseModel):
    """Structured shortage failure, one entry per under-filled section."""

    template_id: str
    stakes: Stakes
    sections: list[SectionShortage]

    def section(self, section_id: str) -> SectionShortage | None:
        for shortage in self.sections:
            if shortage.section == section_id:
                return shortage
        return None


# ============================================================================
# Pool Health Schemas
# ============================================================================


class PoolHealthOut(BaseModel):
    """Pool health for one taxonomy filter."""

    eligible_count: int
    threshold: int
    alert: bool


# ============================================================================
# Exposure Schemas
# ============================================================================


class AnsweredExposureIn(BaseModel):
    """Answered mutation submitted by the scoring collaborator."""

    item_id: UUID
    instance_id: UUID
    result: ExposureResult = ExposureResult.NONE


class ExposureOut(BaseModel):
    """Exposure ledger row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    item_id: UUID
    item_version: int | None
    candidate_id: UUID
    instance_id: UUID
    organization_id: UUID
    used_at: datetime
    outcome: ExposureOutcome
    result: ExposureResult
    answered_at: datetime | None
