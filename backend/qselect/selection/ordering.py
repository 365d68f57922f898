"""
Diversity ordering with seeded tie-break.

An item's diversity weight is ``1 / (1 + shared)`` where ``shared`` is the number
of (already-selected item, tag) pairs it has in common with the instance built so
far, across all sections. Items are emitted greedily by weight, highest first;
ties are broken by a uniform draw from the section's seeded RNG so the same seed
always reproduces the same order.
"""

import hashlib
import heapq
import random
from collections import Counter
from collections.abc import Iterable, Sequence

from qselect.selection.pool_index import PoolCandidate, TagKey


def section_rng(seed: int, section_id: str) -> random.Random:
    """Deterministic RNG for one section of one instance."""
    digest = hashlib.sha256(f"{seed}:{section_id}".encode()).hexdigest()
    return random.Random(int(digest[:16], 16))


def diversity_weight(shared: int) -> float:
    return 1.0 / (1 + shared)


def shared_count(tags: Iterable[TagKey], selected_tags: Counter) -> int:
    return sum(selected_tags.get(tag, 0) for tag in tags)


def _tie_breaks(candidates: Sequence[PoolCandidate], rng: random.Random) -> list[float]:
    # Draw in item-id order so the draw sequence does not depend on query order
    order = sorted(range(len(candidates)), key=lambda i: candidates[i].item_id)
    draws = [0.0] * len(candidates)
    for index in order:
        draws[index] = rng.random()
    return draws


class DiversityQueue:
    """
    Eligible items of one section, served best-first in batches.

    ``take`` treats earlier picks of the same batch as selected when ranking the
    rest of that batch; only ``accept`` makes a pick count for later batches, so
    items lost to another holder do not penalize the backfill.
    """

    def __init__(
        self,
        candidates: Sequence[PoolCandidate],
        rng: random.Random,
        selected_tags: Counter | None = None,
        enforce_diversity: bool = True,
    ):
        self._candidates = list(candidates)
        self._draws = _tie_breaks(self._candidates, rng)
        self._enforce = enforce_diversity
        self._counts = Counter(selected_tags or {})
        # Tags every candidate carries shift all weights equally and cannot change the order
        self._common = (
            frozenset.intersection(*(c.tags for c in self._candidates)) if self._candidates else frozenset()
        )
        self._tag_sets = [c.tags - self._common for c in self._candidates]
        self._remaining = set(range(len(self._candidates)))

    def __len__(self) -> int:
        return len(self._remaining)

    def take(self, size: int) -> list[PoolCandidate]:
        """Remove and return up to ``size`` items, best-first."""
        counts = Counter(self._counts)
        heap = [
            (shared_count(self._tag_sets[i], counts) if self._enforce else 0, self._draws[i], i)
            for i in self._remaining
        ]
        heapq.heapify(heap)
        batch: list[int] = []
        while heap and len(batch) < size:
            shared, draw, index = heapq.heappop(heap)
            if self._enforce:
                current = shared_count(self._tag_sets[index], counts)
                if current != shared:
                    # Stale key: weights only drop within a batch, so re-queue with the fresh one
                    heapq.heappush(heap, (current, draw, index))
                    continue
                counts.update(self._tag_sets[index])
            self._remaining.discard(index)
            batch.append(index)
        return [self._candidates[index] for index in batch]

    def accept(self, selected: Iterable[PoolCandidate]) -> None:
        """Count claimed items as selected for the batches that follow."""
        if not self._enforce:
            return
        for candidate in selected:
            self._counts.update(candidate.tags - self._common)
