"""Item pool models: published questions and their taxonomy tags."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from qselect.db.base import Base


class ItemStatus(str, PyEnum):
    """Item workflow status (owned by the authoring subsystem)."""

    DRAFT = "DRAFT"
    REVIEW = "REVIEW"
    PUBLISHED = "PUBLISHED"
    RETIRED = "RETIRED"


class TaxonomyDimension(str, PyEnum):
    """Known taxonomy dimensions.

    ``ItemTag.dimension`` is a plain string so that new dimensions can be tagged
    without a schema or code change; these are the ones shipped today.
    """

    TYPE = "type"
    PROFILE = "profile"
    EXAM = "exam"
    SKILL = "skill"
    COMPETENCY = "competency"
    TRAIT = "trait"


class Item(Base):
    """A question in the content pool. Read-only from the engine's point of view."""

    __tablename__ = "items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    status = Column(
        Enum(ItemStatus, name="item_status"),
        nullable=False,
        default=ItemStatus.DRAFT,
    )
    version = Column(Integer, nullable=False, default=1)
    difficulty = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    tags = relationship("ItemTag", back_populates="item", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("version >= 1", name="ck_items_version_positive"),
        Index("ix_items_status", "status"),
        Index("ix_items_status_difficulty", "status", "difficulty"),
    )


class ItemTag(Base):
    """Many-to-many link between an item and a (dimension, tag) pair."""

    __tablename__ = "item_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("items.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    dimension = Column(String(50), nullable=False)
    tag_id = Column(String(100), nullable=False)

    item = relationship("Item", back_populates="tags")

    __table_args__ = (
        UniqueConstraint("item_id", "dimension", "tag_id", name="uq_item_tags_item_dimension_tag"),
        Index("ix_item_tags_dimension_tag", "dimension", "tag_id"),
        Index("ix_item_tags_item_id", "item_id"),
    )
