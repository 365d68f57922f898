"""
Policy evaluator.

Pure eligibility predicate over one item and its exposure slice. Predicates run
in a fixed precedence and short-circuit on the first failure, so the reason
attached to an ineligible item (and therefore every shortage histogram) is
reproducible:

1. NOT_PUBLISHED
2. GLOBAL_COOLDOWN
3. FROZEN
4. MAX_EXPOSURES_REACHED / CANDIDATE_COOLDOWN
5. ORG_ROTATION_EXHAUSTED
"""

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID

from qselect.models.item import ItemStatus
from qselect.schemas.template import RepetitionPolicy
from qselect.selection.ledger import ExposureSlice
from qselect.selection.pool_index import PoolCandidate


class IneligibleReason(str, Enum):
    """Machine-readable reason codes used in shortage explanations."""

    NOT_PUBLISHED = "NOT_PUBLISHED"
    GLOBAL_COOLDOWN = "GLOBAL_COOLDOWN"
    FROZEN = "FROZEN"
    MAX_EXPOSURES_REACHED = "MAX_EXPOSURES_REACHED"
    CANDIDATE_COOLDOWN = "CANDIDATE_COOLDOWN"
    ORG_ROTATION_EXHAUSTED = "ORG_ROTATION_EXHAUSTED"
    # Assigned by the engine, not the evaluator
    ALREADY_SELECTED = "ALREADY_SELECTED"
    RESERVED_ELSEWHERE = "RESERVED_ELSEWHERE"


@dataclass(frozen=True)
class EligibilityDecision:
    """Outcome of evaluating one item."""

    item_id: UUID
    eligible: bool
    reason: IneligibleReason | None = None
    override_applied: bool = False


def rotation_window_start(policy: RepetitionPolicy, now: datetime) -> datetime | None:
    """Start of the org rotation window, or None when the window covers all history."""
    if policy.org_rotation_window_days is None:
        return None
    return now - timedelta(days=policy.org_rotation_window_days)


def _younger_than(exposed_at: datetime | None, days: int, now: datetime) -> bool:
    if exposed_at is None or days <= 0:
        return False
    return now - exposed_at < timedelta(days=days)


def evaluate(
    policy: RepetitionPolicy,
    exposure: ExposureSlice,
    candidate_id: UUID,
    organization_id: UUID,
    item: PoolCandidate,
    now: datetime,
) -> EligibilityDecision:
    """
    Decide whether an item may be served to a candidate in an organization.

    The exposure slice must already be scoped to ``candidate_id`` and
    ``organization_id`` (see ``ledger.build_slices``); both IDs are accepted so
    decisions can be logged and audited with their full context.

    Args:
        policy: Repetition policy from the template snapshot
        exposure: Exposure facts for this item
        candidate_id: Requesting candidate
        organization_id: Requesting organization
        item: Pool candidate
        now: Evaluation time

    Returns:
        EligibilityDecision with a reason code when ineligible
    """

    def ineligible(reason: IneligibleReason) -> EligibilityDecision:
        return EligibilityDecision(item_id=item.item_id, eligible=False, reason=reason)

    # 1. Status (pre-filtered by the pool index, re-checked here)
    if item.status != ItemStatus.PUBLISHED:
        return ineligible(IneligibleReason.NOT_PUBLISHED)

    # 2. Global cooldown: last exposure to anyone
    if policy.global_cooldown_days is not None and _younger_than(
        exposure.last_exposed_at_any, policy.global_cooldown_days, now
    ):
        return ineligible(IneligibleReason.GLOBAL_COOLDOWN)

    # 3. Frozen: total usage across all candidates
    if (
        policy.freeze_after_exposures is not None
        and exposure.total_exposures >= policy.freeze_after_exposures
    ):
        return ineligible(IneligibleReason.FROZEN)

    # 4. Per-candidate cooldown vs. max exposures
    override_applied = False
    under_max = (
        policy.max_exposures_per_candidate is None
        or exposure.candidate_exposure_count < policy.max_exposures_per_candidate
    )
    if not under_max:
        return ineligible(IneligibleReason.MAX_EXPOSURES_REACHED)
    if _younger_than(exposure.candidate_last_exposed_at, policy.cooldown_days_per_candidate, now):
        # Cooldown is strictly binding unless the template opts into the override
        if not policy.allow_reserve_within_cooldown:
            return ineligible(IneligibleReason.CANDIDATE_COOLDOWN)
        override_applied = True

    # 5. Org rotation depth: distinct candidates inside the rotation window (0 = disabled)
    if (
        policy.org_rotation_depth
        and exposure.org_distinct_candidates >= policy.org_rotation_depth
    ):
        return ineligible(IneligibleReason.ORG_ROTATION_EXHAUSTED)

    return EligibilityDecision(item_id=item.item_id, eligible=True, override_applied=override_applied)


def evaluate_pool(
    policy: RepetitionPolicy,
    candidates: Iterable[PoolCandidate],
    slices: Mapping[UUID, ExposureSlice],
    candidate_id: UUID,
    organization_id: UUID,
    now: datetime,
) -> tuple[list[PoolCandidate], Counter, list[EligibilityDecision]]:
    """
    Evaluate every candidate item.

    Returns:
        Tuple of (eligible items in input order, reason histogram, all decisions)
    """
    eligible: list[PoolCandidate] = []
    reasons: Counter = Counter()
    decisions: list[EligibilityDecision] = []
    for item in candidates:
        exposure = slices.get(item.item_id) or ExposureSlice(item_id=item.item_id)
        decision = evaluate(policy, exposure, candidate_id, organization_id, item, now)
        decisions.append(decision)
        if decision.eligible:
            eligible.append(item)
        else:
            reasons[decision.reason.value] += 1
    return eligible, reasons, decisions
