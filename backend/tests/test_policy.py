"""Tests for the policy evaluator."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from qselect.models.item import ItemStatus
from qselect.schemas.template import RepetitionPolicy
from qselect.selection.ledger import ExposureSlice
from qselect.selection.policy import (
    IneligibleReason,
    evaluate,
    evaluate_pool,
    rotation_window_start,
)
from qselect.selection.pool_index import PoolCandidate

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
CANDIDATE = uuid.uuid4()
ORG = uuid.uuid4()


def make_item(status: ItemStatus = ItemStatus.PUBLISHED) -> PoolCandidate:
    return PoolCandidate(item_id=uuid.uuid4(), version=1, status=status)


def decide(policy: RepetitionPolicy, item: PoolCandidate | None = None, **exposure):
    item = item or make_item()
    return evaluate(policy, ExposureSlice(item_id=item.item_id, **exposure), CANDIDATE, ORG, item, NOW)


def test_fresh_item_is_eligible():
    decision = decide(RepetitionPolicy(cooldown_days_per_candidate=30, org_rotation_depth=5))

    assert decision.eligible
    assert decision.reason is None
    assert not decision.override_applied


@pytest.mark.parametrize("status", [ItemStatus.DRAFT, ItemStatus.REVIEW, ItemStatus.RETIRED])
def test_unpublished_item(status):
    decision = decide(RepetitionPolicy(), item=make_item(status))

    assert not decision.eligible
    assert decision.reason == IneligibleReason.NOT_PUBLISHED


def test_candidate_cooldown_boundary():
    policy = RepetitionPolicy(cooldown_days_per_candidate=30)

    inside = decide(policy, candidate_exposure_count=1, candidate_last_exposed_at=NOW - timedelta(days=29))
    at_boundary = decide(policy, candidate_exposure_count=1, candidate_last_exposed_at=NOW - timedelta(days=30))

    assert inside.reason == IneligibleReason.CANDIDATE_COOLDOWN
    assert at_boundary.eligible


def test_scenario_b_cooldown_holds_regardless_of_other_eligibility():
    policy = RepetitionPolicy(cooldown_days_per_candidate=30, max_exposures_per_candidate=5)

    decision = decide(policy, candidate_exposure_count=1, candidate_last_exposed_at=NOW - timedelta(days=10))

    assert not decision.eligible
    assert decision.reason == IneligibleReason.CANDIDATE_COOLDOWN


def test_override_flag_allows_reserve_below_max():
    policy = RepetitionPolicy(
        cooldown_days_per_candidate=30,
        max_exposures_per_candidate=3,
        allow_reserve_within_cooldown=True,
    )

    decision = decide(policy, candidate_exposure_count=2, candidate_last_exposed_at=NOW - timedelta(days=1))

    assert decision.eligible
    assert decision.override_applied


def test_max_exposures_binds_even_with_override():
    policy = RepetitionPolicy(
        cooldown_days_per_candidate=30,
        max_exposures_per_candidate=2,
        allow_reserve_within_cooldown=True,
    )

    decision = decide(policy, candidate_exposure_count=2, candidate_last_exposed_at=NOW - timedelta(days=90))

    assert decision.reason == IneligibleReason.MAX_EXPOSURES_REACHED


def test_org_rotation_depth():
    policy = RepetitionPolicy(org_rotation_depth=3)

    assert decide(policy, org_distinct_candidates=2).eligible
    assert decide(policy, org_distinct_candidates=3).reason == IneligibleReason.ORG_ROTATION_EXHAUSTED


def test_rotation_depth_zero_disables_check():
    assert decide(RepetitionPolicy(org_rotation_depth=0), org_distinct_candidates=100).eligible
    assert decide(RepetitionPolicy(org_rotation_depth=None), org_distinct_candidates=100).eligible


def test_global_cooldown_and_frozen():
    cooled = decide(RepetitionPolicy(global_cooldown_days=7), last_exposed_at_any=NOW - timedelta(days=2))
    frozen = decide(RepetitionPolicy(freeze_after_exposures=10), total_exposures=10)

    assert cooled.reason == IneligibleReason.GLOBAL_COOLDOWN
    assert frozen.reason == IneligibleReason.FROZEN


def test_precedence_is_fixed():
    policy = RepetitionPolicy(
        cooldown_days_per_candidate=30,
        max_exposures_per_candidate=1,
        org_rotation_depth=1,
        global_cooldown_days=7,
        freeze_after_exposures=1,
    )
    exposure = dict(
        candidate_exposure_count=5,
        candidate_last_exposed_at=NOW - timedelta(days=1),
        org_distinct_candidates=9,
        last_exposed_at_any=NOW - timedelta(days=1),
        total_exposures=50,
    )

    assert decide(policy, item=make_item(ItemStatus.RETIRED), **exposure).reason == IneligibleReason.NOT_PUBLISHED
    assert decide(policy, **exposure).reason == IneligibleReason.GLOBAL_COOLDOWN
    exposure["last_exposed_at_any"] = NOW - timedelta(days=8)
    assert decide(policy, **exposure).reason == IneligibleReason.FROZEN
    exposure["total_exposures"] = 0
    assert decide(policy, **exposure).reason == IneligibleReason.MAX_EXPOSURES_REACHED
    exposure["candidate_exposure_count"] = 0
    assert decide(policy, **exposure).reason == IneligibleReason.CANDIDATE_COOLDOWN
    exposure["candidate_last_exposed_at"] = None
    assert decide(policy, **exposure).reason == IneligibleReason.ORG_ROTATION_EXHAUSTED


def test_evaluate_pool_histogram():
    policy = RepetitionPolicy(cooldown_days_per_candidate=30, org_rotation_depth=2)
    items = [make_item() for _ in range(5)]
    slices = {
        items[0].item_id: ExposureSlice(item_id=items[0].item_id, org_distinct_candidates=2),
        items[1].item_id: ExposureSlice(
            item_id=items[1].item_id,
            candidate_exposure_count=1,
            candidate_last_exposed_at=NOW - timedelta(days=3),
        ),
        items[2].item_id: ExposureSlice(item_id=items[2].item_id, org_distinct_candidates=5),
    }

    eligible, reasons, decisions = evaluate_pool(policy, items, slices, CANDIDATE, ORG, NOW)

    assert eligible == items[3:]
    assert reasons == {"ORG_ROTATION_EXHAUSTED": 2, "CANDIDATE_COOLDOWN": 1}
    assert len(decisions) == 5


def test_rotation_window_start():
    assert rotation_window_start(RepetitionPolicy(), NOW) is None
    assert rotation_window_start(RepetitionPolicy(org_rotation_window_days=90), NOW) == NOW - timedelta(days=90)


def test_fingerprint_is_stable_and_sensitive():
    a = RepetitionPolicy(cooldown_days_per_candidate=30)
    b = RepetitionPolicy(cooldown_days_per_candidate=30)
    c = RepetitionPolicy(cooldown_days_per_candidate=31)

    assert a.fingerprint() == b.fingerprint()
    assert a.fingerprint() != c.fingerprint()
