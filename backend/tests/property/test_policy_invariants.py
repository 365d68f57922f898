"""Property-based tests for eligibility invariants."""

import uuid
from datetime import UTC, datetime, timedelta

from hypothesis import given, settings, strategies as st

from qselect.models.item import ItemStatus
from qselect.schemas.template import RepetitionPolicy
from qselect.selection.ledger import ExposureSlice
from qselect.selection.policy import IneligibleReason, evaluate
from qselect.selection.pool_index import PoolCandidate

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

policies = st.builds(
    RepetitionPolicy,
    cooldown_days_per_candidate=st.integers(min_value=0, max_value=365),
    max_exposures_per_candidate=st.one_of(st.none(), st.integers(min_value=1, max_value=10)),
    org_rotation_depth=st.one_of(st.none(), st.integers(min_value=0, max_value=50)),
    global_cooldown_days=st.one_of(st.none(), st.integers(min_value=0, max_value=30)),
    freeze_after_exposures=st.one_of(st.none(), st.integers(min_value=1, max_value=500)),
    allow_reserve_within_cooldown=st.booleans(),
)


@st.composite
def exposure_slices(draw) -> ExposureSlice:
    count = draw(st.integers(min_value=0, max_value=12))
    last = None
    if count:
        last = NOW - timedelta(hours=draw(st.integers(min_value=0, max_value=24 * 400)))
    any_last = NOW - timedelta(hours=draw(st.integers(min_value=0, max_value=24 * 60)))
    return ExposureSlice(
        item_id=uuid.uuid4(),
        candidate_exposure_count=count,
        candidate_last_exposed_at=last,
        org_distinct_candidates=draw(st.integers(min_value=0, max_value=60)),
        last_exposed_at_any=any_last if count or draw(st.booleans()) else None,
        total_exposures=max(count, draw(st.integers(min_value=0, max_value=600))),
    )


@settings(max_examples=300, deadline=None, print_blob=True)
@given(policy=policies, exposure=exposure_slices(), status=st.sampled_from(list(ItemStatus)))
def test_eligible_items_satisfy_every_predicate(policy, exposure, status):
    """
    Property: an eligible decision implies every predicate holds.

    Invariants:
    - only PUBLISHED items are eligible
    - candidate cooldown binds unless the override applied under the max
    - org rotation depth is never exceeded
    - the global cooldown has elapsed since anyone last saw the item
    """
    item = PoolCandidate(item_id=exposure.item_id, version=1, status=status)

    decision = evaluate(policy, exposure, uuid.uuid4(), uuid.uuid4(), item, NOW)

    if not decision.eligible:
        assert isinstance(decision.reason, IneligibleReason)
        return

    assert status == ItemStatus.PUBLISHED
    if policy.max_exposures_per_candidate is not None:
        assert exposure.candidate_exposure_count < policy.max_exposures_per_candidate
    in_cooldown = (
        exposure.candidate_last_exposed_at is not None
        and NOW - exposure.candidate_last_exposed_at < timedelta(days=policy.cooldown_days_per_candidate)
    )
    if in_cooldown:
        assert policy.allow_reserve_within_cooldown
        assert decision.override_applied
    else:
        assert not decision.override_applied
    if policy.org_rotation_depth:
        assert exposure.org_distinct_candidates < policy.org_rotation_depth
    if policy.freeze_after_exposures is not None:
        assert exposure.total_exposures < policy.freeze_after_exposures
    if policy.global_cooldown_days and exposure.last_exposed_at_any is not None:
        assert NOW - exposure.last_exposed_at_any >= timedelta(days=policy.global_cooldown_days)


@settings(max_examples=100, deadline=None)
@given(policy=policies, exposure=exposure_slices())
def test_evaluation_is_deterministic(policy, exposure):
    item = PoolCandidate(item_id=exposure.item_id, version=1, status=ItemStatus.PUBLISHED)
    candidate, org = uuid.uuid4(), uuid.uuid4()

    assert evaluate(policy, exposure, candidate, org, item, NOW) == evaluate(
        policy, exposure, candidate, org, item, NOW
    )
