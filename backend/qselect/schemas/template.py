"""Template snapshot contracts: sections, repetition policy and stakes."""

import hashlib
import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Stakes(str, Enum):
    """How a shortage is handled for the caller."""

    ASSESSMENT = "ASSESSMENT"  # high stakes: shortage fails the whole request
    PRACTICE = "PRACTICE"  # low stakes: shortage returns an under-filled instance


class RepetitionPolicy(BaseModel):
    """Anti-repetition policy embedded in a template.

    Copied verbatim into every instance snapshot and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cooldown_days_per_candidate: int = Field(default=0, ge=0, description="Per-candidate cooldown in days")
    max_exposures_per_candidate: int | None = Field(
        default=None, ge=1, description="Max exposures of one item to one candidate (None = unlimited)"
    )
    org_rotation_depth: int | None = Field(
        default=None, ge=0, description="Distinct candidates per organization before an item rotates out"
    )
    org_rotation_window_days: int | None = Field(
        default=None, ge=1, description="Rotation window in days (None = all history)"
    )
    global_cooldown_days: int | None = Field(
        default=None, ge=0, description="Cooldown after the item was shown to anyone"
    )
    freeze_after_exposures: int | None = Field(
        default=None, ge=1, description="Total exposures after which an item is frozen"
    )
    allow_reserve_within_cooldown: bool = Field(
        default=False,
        description="Allow re-serving inside cooldown while under max_exposures_per_candidate",
    )
    enforce_taxonomy_diversity: bool = Field(default=True, description="Order by taxonomy diversity")

    def fingerprint(self) -> str:
        """Stable hash of the policy, used to detect drift mid-selection."""
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()


class SectionRequirement(BaseModel):
    """One section of a template: taxonomy filter plus required item count."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, max_length=100, description="Section ID")
    topic: str | None = Field(
        default=None, max_length=100, description="Collision-scope topic (defaults to section ID)"
    )
    count: int = Field(..., ge=1, le=500, description="Required number of items")
    filters: dict[str, tuple[str, ...]] = Field(
        default_factory=dict,
        description="dimension -> allowed tag ids (AND across dimensions, OR within)",
    )
    difficulties: tuple[str, ...] = Field(default=(), description="Allowed difficulties (empty = any)")

    @field_validator("filters")
    @classmethod
    def validate_filters(cls, v: dict[str, tuple[str, ...]]) -> dict[str, tuple[str, ...]]:
        """Reject empty dimension names and empty tag lists."""
        for dimension, tags in v.items():
            if not dimension:
                raise ValueError("filter dimension cannot be empty")
            if not tags:
                raise ValueError(f"filter for dimension '{dimension}' must list at least one tag")
        return v

    @property
    def scope_topic(self) -> str:
        return self.topic or self.id


class TemplateSnapshot(BaseModel):
    """Immutable copy of a test template, fixed at request start."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, max_length=100, description="Template ID")
    version: int = Field(default=1, ge=1, description="Template version")
    stakes: Stakes = Field(default=Stakes.ASSESSMENT, description="Shortage handling mode")
    sections: tuple[SectionRequirement, ...] = Field(..., min_length=1, description="Ordered sections")
    repetition_policy: RepetitionPolicy = Field(default_factory=RepetitionPolicy)

    @model_validator(mode="after")
    def validate_unique_sections(self) -> "TemplateSnapshot":
        """Section IDs must be unique within a template."""
        ids = [section.id for section in self.sections]
        if len(ids) != len(set(ids)):
            raise ValueError("section ids must be unique within a template")
        return self

    def snapshot_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
