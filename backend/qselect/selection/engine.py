"""
Selection engine.

Orchestrates one selection request:

    RESOLVING -> PREFLIGHT_CHECKED -> RESERVING
        -> COMMITTED
        -> PARTIALLY_RESERVED -> BACKFILLING -> COMMITTED
        -> SHORTAGE_FAILED

Every section is resolved against the pool index and filtered through the policy
evaluator before anything is reserved. Claims are released on every path that
does not end in COMMITTED; committed claims run out their TTL so overlapping
in-flight selections keep seeing them.
"""

import logging
import random
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from qselect.core.config import settings
from qselect.models.exposure import ExposureOutcome
from qselect.schemas.selection import (
    SectionAssignment,
    SectionShortage,
    ShortageReport,
    TestInstance,
)
from qselect.schemas.template import RepetitionPolicy, SectionRequirement, Stakes, TemplateSnapshot
from qselect.selection import ledger, metrics, ordering, pool_index
from qselect.selection.errors import (
    ReservationConflict,
    SelectionCancelled,
    StalePolicySnapshot,
)
from qselect.selection.policy import EligibilityDecision, IneligibleReason, evaluate_pool, rotation_window_start
from qselect.selection.pool_index import PoolCandidate
from qselect.selection.reservations import ReservationCoordinator, get_coordinator

logger = logging.getLogger(__name__)


class SelectionState(str, Enum):
    """States of a single selection request."""

    RESOLVING = "RESOLVING"
    PREFLIGHT_CHECKED = "PREFLIGHT_CHECKED"
    RESERVING = "RESERVING"
    PARTIALLY_RESERVED = "PARTIALLY_RESERVED"
    BACKFILLING = "BACKFILLING"
    COMMITTED = "COMMITTED"
    SHORTAGE_FAILED = "SHORTAGE_FAILED"


@dataclass
class SectionWork:
    """Per-section working state."""

    section: SectionRequirement
    eligible: list[PoolCandidate] = field(default_factory=list)
    reasons: Counter = field(default_factory=Counter)
    overrides: set[UUID] = field(default_factory=set)
    claimed: list[PoolCandidate] = field(default_factory=list)
    available: int = 0
    preflight_short: bool = False

    @property
    def required(self) -> int:
        return self.section.count

    @property
    def shortfall(self) -> int:
        return max(0, self.required - len(self.claimed))

    def shortage(self) -> SectionShortage:
        return SectionShortage(
            section=self.section.id,
            available=self.available,
            required=self.required,
            reason_histogram=dict(sorted(self.reasons.items())),
        )


@dataclass
class SelectionRun:
    """Bookkeeping for one request; the instance ID doubles as reservation holder."""

    template_id: str
    candidate_id: UUID
    organization_id: UUID
    seed: int
    instance_id: UUID = field(default_factory=uuid.uuid4)
    state: SelectionState = SelectionState.RESOLVING

    def transition(self, state: SelectionState) -> None:
        if state == self.state:
            return
        logger.info(
            f"Selection {self.instance_id}: {self.state.value} -> {state.value}",
            extra={
                "instance_id": str(self.instance_id),
                "template_id": self.template_id,
                "from_state": self.state.value,
                "to_state": state.value,
            },
        )
        self.state = state


def new_seed() -> int:
    return random.SystemRandom().randrange(2**63)


def _check_cancelled(run: SelectionRun, cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SelectionCancelled(f"Selection {run.instance_id} abandoned in {run.state.value}")


def _resolve_section(
    db: Session,
    section: SectionRequirement,
    policy: RepetitionPolicy,
    candidate_id: UUID,
    organization_id: UUID,
    now: datetime,
) -> SectionWork:
    work = SectionWork(section=section)
    candidates = pool_index.query(db, section.filters, section.difficulties)
    if not candidates:
        return work

    slices = ledger.build_slices(
        db,
        candidate_id,
        organization_id,
        [c.item_id for c in candidates],
        rotation_since=rotation_window_start(policy, now),
    )
    eligible, reasons, decisions = evaluate_pool(policy, candidates, slices, candidate_id, organization_id, now)
    work.eligible = eligible
    work.reasons = reasons
    work.available = len(eligible)
    work.overrides = {d.item_id for d in decisions if _is_override(d)}
    return work


def _is_override(decision: EligibilityDecision) -> bool:
    return decision.eligible and decision.override_applied


def _reserve_section(
    work: SectionWork,
    run: SelectionRun,
    coordinator: ReservationCoordinator,
    taken: set[UUID],
    selected_tags: Counter,
    policy: RepetitionPolicy,
    now: datetime,
    cancel_event: threading.Event | None,
) -> None:
    section = work.section
    pool = [c for c in work.eligible if c.item_id not in taken]
    already_selected = len(work.eligible) - len(pool)
    if already_selected:
        work.reasons[IneligibleReason.ALREADY_SELECTED.value] += already_selected
        work.available = len(pool)

    queue = ordering.DiversityQueue(
        pool,
        ordering.section_rng(run.seed, section.id),
        selected_tags,
        policy.enforce_taxonomy_diversity,
    )
    scope = coordinator.scope_for(run.organization_id, section.scope_topic, now)
    rounds = 0
    while len(work.claimed) < section.count:
        _check_cancelled(run, cancel_event)
        batch = queue.take(section.count - len(work.claimed))
        if not batch:
            break  # eligible list exhausted
        if rounds:
            run.transition(SelectionState.BACKFILLING)
        rounds += 1
        by_id = {c.item_id: c for c in batch}
        try:
            claimed_ids = coordinator.claim_all(scope, list(by_id), run.instance_id)
        except ReservationConflict as conflict:
            claimed_ids = conflict.claimed
            work.reasons[IneligibleReason.RESERVED_ELSEWHERE.value] += len(conflict.conflicted)
            run.transition(SelectionState.PARTIALLY_RESERVED)
            logger.info(
                f"Section {section.id}: {len(conflict.conflicted)} items held elsewhere, backfilling",
                extra={"instance_id": str(run.instance_id), "section_id": section.id, "scope": scope},
            )
        claimed = [by_id[item_id] for item_id in claimed_ids]
        queue.accept(claimed)
        work.claimed.extend(claimed)

    metrics.backfill_rounds.observe(max(0, rounds - 1))
    for candidate in work.claimed:
        taken.add(candidate.item_id)
        selected_tags.update(candidate.tags)


def _commit(
    db: Session,
    run: SelectionRun,
    works: list[SectionWork],
    now: datetime,
) -> None:
    """Write the VIEWED exposures for every claimed item in one transaction."""
    try:
        for work in works:
            for candidate in work.claimed:
                ledger.record(
                    db,
                    item_id=candidate.item_id,
                    candidate_id=run.candidate_id,
                    instance_id=run.instance_id,
                    organization_id=run.organization_id,
                    outcome=ExposureOutcome.VIEWED,
                    item_version=candidate.version,
                    used_at=now,
                    commit=False,
                )
        db.commit()
    except Exception:
        db.rollback()
        raise

    for work in works:
        for candidate in work.claimed:
            if candidate.item_id in work.overrides:
                metrics.cooldown_overrides_total.inc()
                logger.warning(
                    f"Cooldown override applied for item {candidate.item_id}",
                    extra={
                        "instance_id": str(run.instance_id),
                        "candidate_id": str(run.candidate_id),
                        "item_id": str(candidate.item_id),
                        "section_id": work.section.id,
                    },
                )


def select_questions(
    db: Session,
    template: TemplateSnapshot,
    candidate_id: UUID,
    organization_id: UUID,
    *,
    coordinator: ReservationCoordinator | None = None,
    seed: int | None = None,
    now: datetime | None = None,
    cancel_event: threading.Event | None = None,
    preflight_margin: float | None = None,
    policy_source: Callable[[], RepetitionPolicy] | None = None,
) -> TestInstance | ShortageReport:
    """
    Select items for every section of a template and commit their exposures.

    Args:
        db: Database session
        template: Template snapshot fixed at request start
        candidate_id: Requesting candidate
        organization_id: Requesting organization
        coordinator: Reservation coordinator (defaults to the process-wide one)
        seed: Replay seed (drawn when absent, stored on the instance)
        now: Selection time (defaults to now)
        cancel_event: Set by the caller to abandon the request before commit
        preflight_margin: Required eligible/required ratio (defaults to settings)
        policy_source: Returns the template's current policy; checked against
            the snapshot before commit

    Returns:
        TestInstance on success (possibly under-filled for PRACTICE), or a
        ShortageReport for an ASSESSMENT that cannot be filled

    Raises:
        ReservationTimeout: Claim store unavailable (retryable)
        StalePolicySnapshot: ``policy_source`` no longer matches the snapshot
        SelectionCancelled: ``cancel_event`` was set before commit
    """
    coordinator = coordinator or get_coordinator()
    now = now or datetime.now(UTC)
    margin = preflight_margin if preflight_margin is not None else settings.PREFLIGHT_MARGIN
    policy = template.repetition_policy
    run = SelectionRun(
        template_id=template.id,
        candidate_id=candidate_id,
        organization_id=organization_id,
        seed=seed if seed is not None else new_seed(),
    )
    stakes = template.stakes.value
    started = time.perf_counter()
    committed = False
    outcome = "error"

    try:
        # Resolve every section before reserving anything
        works: list[SectionWork] = []
        for section in template.sections:
            _check_cancelled(run, cancel_event)
            works.append(_resolve_section(db, section, policy, candidate_id, organization_id, now))

        for work in works:
            work.preflight_short = work.available < work.required * margin
        run.transition(SelectionState.PREFLIGHT_CHECKED)

        preflight_failures = [w for w in works if w.preflight_short]
        if preflight_failures and template.stakes == Stakes.ASSESSMENT:
            run.transition(SelectionState.SHORTAGE_FAILED)
            outcome = "shortage"
            return _shortage_report(template, preflight_failures)

        run.transition(SelectionState.RESERVING)
        taken: set[UUID] = set()
        selected_tags: Counter = Counter()
        for work in works:
            _reserve_section(work, run, coordinator, taken, selected_tags, policy, now, cancel_event)

        short = [w for w in works if w.shortfall]
        if short and template.stakes == Stakes.ASSESSMENT:
            run.transition(SelectionState.SHORTAGE_FAILED)
            outcome = "shortage"
            return _shortage_report(template, short)

        _check_cancelled(run, cancel_event)
        _check_policy(template, policy_source, run)

        _commit(db, run, works, now)
        committed = True
        run.transition(SelectionState.COMMITTED)
        outcome = "under_filled" if short else "committed"
        for work in short:
            logger.warning(
                f"Section {work.section.id} under-filled: {len(work.claimed)}/{work.required}",
                extra={
                    "instance_id": str(run.instance_id),
                    "section_id": work.section.id,
                    "reason_histogram": dict(work.reasons),
                },
            )

        return TestInstance(
            id=run.instance_id,
            template_snapshot=template,
            candidate_id=candidate_id,
            organization_id=organization_id,
            stakes=template.stakes,
            sections=[
                SectionAssignment(
                    section_id=work.section.id,
                    item_ids=[c.item_id for c in work.claimed],
                    item_versions={c.item_id: c.version for c in work.claimed},
                    required=work.required,
                    shortfall=work.shortfall,
                )
                for work in works
            ],
            seed=run.seed,
            created_at=now,
        )
    except SelectionCancelled:
        outcome = "cancelled"
        raise
    finally:
        if committed:
            coordinator.forget(run.instance_id)
        else:
            released = coordinator.release_all(run.instance_id)
            if released:
                logger.info(
                    f"Released {released} claims for selection {run.instance_id}",
                    extra={"instance_id": str(run.instance_id), "state": run.state.value},
                )
        metrics.selection_requests_total.labels(stakes=stakes, outcome=outcome).inc()
        metrics.selection_duration_seconds.labels(stakes=stakes).observe(time.perf_counter() - started)


def _check_policy(
    template: TemplateSnapshot,
    policy_source: Callable[[], RepetitionPolicy] | None,
    run: SelectionRun,
) -> None:
    if policy_source is None:
        return
    if policy_source().fingerprint() != template.repetition_policy.fingerprint():
        raise StalePolicySnapshot(
            f"Repetition policy of template {template.id} changed during selection {run.instance_id}"
        )


def _shortage_report(template: TemplateSnapshot, works: list[SectionWork]) -> ShortageReport:
    report = ShortageReport(
        template_id=template.id,
        stakes=template.stakes,
        sections=[work.shortage() for work in works],
    )
    logger.warning(
        f"Pool shortage for template {template.id}",
        extra={"template_id": template.id, "sections": [s.model_dump() for s in report.sections]},
    )
    return report
