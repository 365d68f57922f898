"""Database models."""

# Import all models here so metadata.create_all detects them
from qselect.models.exposure import ExposureOutcome, ExposureRecord, ExposureResult
from qselect.models.instance import TestInstanceRecord
from qselect.models.item import Item, ItemStatus, ItemTag, TaxonomyDimension

__all__ = [
    "ExposureOutcome",
    "ExposureRecord",
    "ExposureResult",
    "Item",
    "ItemStatus",
    "ItemTag",
    "TaxonomyDimension",
    "TestInstanceRecord",
]
