"""Selection error taxonomy.

Only ``PoolShortage`` is a content-availability fact for content operations;
everything else is an operational or retry concern.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from qselect.schemas.selection import ShortageReport


class SelectionError(Exception):
    """Base class for selection engine errors."""

    code = "SELECTION_ERROR"
    retryable = False

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class PoolShortage(SelectionError):
    """Insufficient eligible items for one or more sections. Never retried."""

    code = "POOL_SHORTAGE"

    def __init__(self, report: "ShortageReport"):
        self.report = report
        sections = ", ".join(
            f"{s.section} ({s.available}/{s.required})" for s in report.sections
        )
        super().__init__(f"Insufficient eligible items for sections: {sections}")


class DuplicateExposureWrite(SelectionError):
    """An exposure for (item, instance) already reached the requested state."""

    code = "DUPLICATE_EXPOSURE_WRITE"


class ExposureNotFound(SelectionError):
    """No exposure exists for (item, instance)."""

    code = "EXPOSURE_NOT_FOUND"


class ReservationConflict(SelectionError):
    """Items were claimed by a concurrent holder. Resolved by backfill."""

    code = "RESERVATION_CONFLICT"
    retryable = True

    def __init__(self, detail: str, claimed: list | None = None, conflicted: list | None = None):
        self.claimed = claimed or []
        self.conflicted = conflicted or []
        super().__init__(detail)


class ReservationTimeout(SelectionError):
    """Reservation store unavailable or overloaded."""

    code = "RESERVATION_TIMEOUT"
    retryable = True


class StalePolicySnapshot(SelectionError):
    """The repetition policy changed while a selection was in flight."""

    code = "STALE_POLICY_SNAPSHOT"


class SelectionCancelled(SelectionError):
    """The caller abandoned the selection before commit."""

    code = "SELECTION_CANCELLED"
