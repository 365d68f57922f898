"""Prometheus metrics for selection, reservations and pool health."""

from prometheus_client import Counter, Gauge, Histogram

# selection_requests_total{stakes, outcome}
selection_requests_total = Counter(
    "qselect_selection_requests_total",
    "Selection requests by stakes and terminal outcome",
    ["stakes", "outcome"],
)

selection_duration_seconds = Histogram(
    "qselect_selection_duration_seconds",
    "Wall time of a selection request",
    ["stakes"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

backfill_rounds = Histogram(
    "qselect_backfill_rounds",
    "Claim rounds needed per section beyond the first",
    buckets=(0, 1, 2, 3, 5, 8, 13),
)

reservation_conflicts_total = Counter(
    "qselect_reservation_conflicts_total",
    "Items lost to a concurrent holder during claim",
)

reservation_timeouts_total = Counter(
    "qselect_reservation_timeouts_total",
    "Claim store calls that failed or timed out",
)

cooldown_overrides_total = Counter(
    "qselect_cooldown_overrides_total",
    "Items served inside cooldown through the explicit override flag",
)

pool_bucket_eligible_items = Gauge(
    "qselect_pool_bucket_eligible_items",
    "Published items per taxonomy bucket (upper bound on eligibility)",
    ["bucket"],
)

pool_shortage_alerts_total = Counter(
    "qselect_pool_shortage_alerts_total",
    "Pool health buckets found below threshold",
    ["bucket"],
)
