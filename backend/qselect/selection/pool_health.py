"""
Pool health monitor.

Counts published items per taxonomy bucket so content operations can see a pool
running dry before candidates hit a shortage. Counts are an upper bound on
eligibility (no candidate context); results are advisory and never block a
selection.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from qselect.core.config import settings
from qselect.schemas.template import TemplateSnapshot
from qselect.selection import metrics, pool_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolBucket:
    """Taxonomy filter (plus optional difficulty) whose pool size is tracked."""

    constraints: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    difficulty: str | None = None

    @property
    def label(self) -> str:
        parts = [
            f"{dimension}:{','.join(sorted(tags))}"
            for dimension, tags in sorted(self.constraints.items())
        ]
        if self.difficulty:
            parts.append(f"difficulty:{self.difficulty}")
        return "|".join(parts) or "*"


@dataclass(frozen=True)
class PoolHealth:
    eligible_count: int
    threshold: int
    alert: bool
    bucket: PoolBucket | None = None


def check_bucket(db: Session, bucket: PoolBucket, threshold: int | None = None) -> PoolHealth:
    """
    Count one bucket and raise the shortage signal when it is below threshold.

    Args:
        db: Database session
        bucket: Bucket to count
        threshold: Alert threshold (defaults to settings.POOL_HEALTH_THRESHOLD)

    Returns:
        PoolHealth for the bucket
    """
    threshold = threshold if threshold is not None else settings.POOL_HEALTH_THRESHOLD
    difficulties = [bucket.difficulty] if bucket.difficulty else None
    eligible = pool_index.count(db, bucket.constraints, difficulties)
    alert = eligible < threshold

    metrics.pool_bucket_eligible_items.labels(bucket=bucket.label).set(eligible)
    if alert:
        metrics.pool_shortage_alerts_total.labels(bucket=bucket.label).inc()
        logger.warning(
            f"Pool bucket {bucket.label} below threshold: {eligible} < {threshold}",
            extra={"bucket": bucket.label, "eligible_count": eligible, "threshold": threshold},
        )
    return PoolHealth(eligible_count=eligible, threshold=threshold, alert=alert, bucket=bucket)


def pool_health(
    db: Session,
    constraints: Mapping[str, Iterable[str]],
    threshold: int | None = None,
    difficulty: str | None = None,
) -> PoolHealth:
    """Pool health for a single taxonomy filter."""
    bucket = PoolBucket(
        constraints={dimension: tuple(tags) for dimension, tags in constraints.items()},
        difficulty=difficulty,
    )
    return check_bucket(db, bucket, threshold)


def buckets_for_template(db: Session, template: TemplateSnapshot) -> list[PoolBucket]:
    """
    One bucket per (section filter, difficulty).

    Sections that pin difficulties produce one bucket per pinned difficulty;
    otherwise every difficulty present in the matching pool gets its own bucket.
    Identical buckets from different sections are reported once.
    """
    buckets: list[PoolBucket] = []
    seen: set[str] = set()
    for section in template.sections:
        difficulties: list[str | None] = list(section.difficulties) or pool_index.difficulties_for(
            db, section.filters
        )
        for difficulty in difficulties or [None]:
            bucket = PoolBucket(constraints=dict(section.filters), difficulty=difficulty)
            if bucket.label not in seen:
                seen.add(bucket.label)
                buckets.append(bucket)
    return buckets


def scan_pool_health(
    db: Session,
    buckets: Iterable[PoolBucket],
    threshold: int | None = None,
) -> list[PoolHealth]:
    """Check every bucket; returns results in bucket order."""
    results = [check_bucket(db, bucket, threshold) for bucket in buckets]
    alerts = sum(1 for result in results if result.alert)
    logger.info(
        f"Pool health scan finished: {len(results)} buckets, {alerts} below threshold",
        extra={"buckets": len(results), "alerts": alerts},
    )
    return results
