"""
Reservation coordinator.

Short-lived claims that stop two in-flight selections from assigning the same
item within one collision scope (organization + topic + time bucket). Claims are
compare-and-set per item and expire on their own, so a crashed worker never
strands items. Nothing here is durable: the exposure ledger stays the source of
truth for cooldown and rotation.
"""

import heapq
import logging
import math
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Protocol
from uuid import UUID

from redis import Redis
from redis.exceptions import RedisError

from qselect.core.config import settings
from qselect.selection import metrics
from qselect.selection.errors import ReservationConflict, ReservationTimeout

logger = logging.getLogger(__name__)


class ClaimStore(Protocol):
    """Atomic claim store: compare-and-set with TTL, per (scope, item)."""

    def claim(self, scope: str, item_ids: list[str], holder: str, ttl_ms: int) -> list[str]:
        """Claim items not held by another live holder; return the ones now held by ``holder``."""
        ...

    def release(self, scope: str, holder: str) -> int:
        """Drop every claim ``holder`` has in ``scope``; return how many were released."""
        ...


class InMemoryClaimStore:
    """Process-local claim store for single-worker deployments and tests.

    Expired claims are evicted on every ``claim`` call, so the map only ever
    holds claims younger than one TTL.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._claims: dict[tuple[str, str], tuple[str, float]] = {}
        self._by_holder: dict[tuple[str, str], set[str]] = {}
        self._expiries: list[tuple[float, str, str]] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._claims)

    def _drop(self, key: tuple[str, str]) -> None:
        holder, _ = self._claims.pop(key)
        held = self._by_holder.get((key[0], holder))
        if held is not None:
            held.discard(key[1])
            if not held:
                del self._by_holder[(key[0], holder)]

    def _evict(self, now: float) -> int:
        # Caller holds the lock. Heap entries left behind by refreshes or releases are skipped.
        evicted = 0
        while self._expiries and self._expiries[0][0] <= now:
            expires_at, scope, item_id = heapq.heappop(self._expiries)
            current = self._claims.get((scope, item_id))
            if current is not None and current[1] == expires_at:
                self._drop((scope, item_id))
                evicted += 1
        return evicted

    def claim(self, scope: str, item_ids: list[str], holder: str, ttl_ms: int) -> list[str]:
        now = self._clock()
        expires_at = now + ttl_ms / 1000.0
        claimed: list[str] = []
        with self._lock:
            self._evict(now)
            for item_id in item_ids:
                key = (scope, item_id)
                current = self._claims.get(key)
                if current is not None and current[0] != holder:
                    continue
                if current is None:
                    self._by_holder.setdefault((scope, holder), set()).add(item_id)
                self._claims[key] = (holder, expires_at)
                heapq.heappush(self._expiries, (expires_at, scope, item_id))
                claimed.append(item_id)
        return claimed

    def release(self, scope: str, holder: str) -> int:
        with self._lock:
            held = self._by_holder.pop((scope, holder), set())
            for item_id in held:
                del self._claims[(scope, item_id)]
        return len(held)

    def holder_of(self, scope: str, item_id: str) -> str | None:
        """Live holder of an item in a scope, if any."""
        with self._lock:
            current = self._claims.get((scope, item_id))
        if current is None or current[1] <= self._clock():
            return None
        return current[0]

    def purge_expired(self) -> int:
        with self._lock:
            return self._evict(self._clock())


# KEYS[1] = holder index set, KEYS[2..n] = item claim keys
# ARGV[1] = holder, ARGV[2] = ttl in ms
_CLAIM_SCRIPT = """
local claimed = {}
for i = 2, #KEYS do
  local current = redis.call('GET', KEYS[i])
  if (not current) or current == ARGV[1] then
    redis.call('SET', KEYS[i], ARGV[1], 'PX', ARGV[2])
    redis.call('SADD', KEYS[1], KEYS[i])
    claimed[#claimed + 1] = i - 1
  end
end
if #claimed > 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return claimed
"""

# KEYS[1] = holder index set, ARGV[1] = holder
_RELEASE_SCRIPT = """
local released = 0
for _, key in ipairs(redis.call('SMEMBERS', KEYS[1])) do
  if redis.call('GET', key) == ARGV[1] then
    redis.call('DEL', key)
    released = released + 1
  end
end
redis.call('DEL', KEYS[1])
return released
"""


class RedisClaimStore:
    """Claim store shared by every worker through Redis."""

    def __init__(self, client: Redis):
        self._client = client
        self._claim_script = client.register_script(_CLAIM_SCRIPT)
        self._release_script = client.register_script(_RELEASE_SCRIPT)

    @staticmethod
    def _item_key(scope: str, item_id: str) -> str:
        return f"{scope}:item:{item_id}"

    @staticmethod
    def _holder_key(scope: str, holder: str) -> str:
        return f"{scope}:holder:{holder}"

    def claim(self, scope: str, item_ids: list[str], holder: str, ttl_ms: int) -> list[str]:
        if not item_ids:
            return []
        keys = [self._holder_key(scope, holder)] + [self._item_key(scope, i) for i in item_ids]
        try:
            positions = self._claim_script(keys=keys, args=[holder, ttl_ms])
        except RedisError as e:
            raise ReservationTimeout(f"Claim store unavailable: {e}") from e
        return [item_ids[int(position) - 1] for position in positions]

    def release(self, scope: str, holder: str) -> int:
        try:
            return int(self._release_script(keys=[self._holder_key(scope, holder)], args=[holder]))
        except RedisError as e:
            raise ReservationTimeout(f"Claim store unavailable: {e}") from e


class ReservationCoordinator:
    """Claims and releases items for selection runs over a ClaimStore."""

    def __init__(
        self,
        store: ClaimStore,
        ttl_seconds: float | None = None,
        bucket_seconds: int | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.RESERVATION_TTL_SECONDS
        self.bucket_seconds = bucket_seconds or settings.RESERVATION_BUCKET_SECONDS
        self.max_attempts = max_attempts or settings.RESERVATION_MAX_ATTEMPTS
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.RESERVATION_BACKOFF_SECONDS
        )
        self._sleep = sleep
        self._scopes_lock = threading.Lock()
        self._scopes_by_holder: dict[str, set[str]] = {}

    @property
    def ttl_ms(self) -> int:
        return max(1, math.ceil(self.ttl_seconds * 1000))

    def scope_for(self, organization_id: UUID, topic: str, now: datetime) -> str:
        """Collision scope: organization + topic + short time bucket."""
        bucket = int(now.timestamp()) // self.bucket_seconds
        return f"resv:{organization_id}:{topic}:{bucket}"

    def _with_retry(self, operation: str, call: Callable[[], object]):
        attempt = 0
        while True:
            attempt += 1
            try:
                return call()
            except ReservationTimeout:
                metrics.reservation_timeouts_total.inc()
                if attempt >= self.max_attempts:
                    logger.error(
                        f"Reservation {operation} failed after {attempt} attempts",
                        extra={"operation": operation, "attempts": attempt},
                    )
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Reservation {operation} timed out, retrying in {delay:.3f}s",
                    extra={"operation": operation, "attempt": attempt},
                )
                self._sleep(delay)

    def claim(self, scope: str, item_ids: Iterable[UUID], holder: UUID) -> list[UUID]:
        """
        Claim a batch of items for ``holder``.

        Returns:
            The claimed item IDs, in request order

        Raises:
            ReservationTimeout: Store unavailable after bounded retries
        """
        ids = list(item_ids)
        if not ids:
            return []
        holder_key = str(holder)
        with self._scopes_lock:
            self._scopes_by_holder.setdefault(holder_key, set()).add(scope)

        raw_ids = [str(item_id) for item_id in ids]
        claimed_raw = set(
            self._with_retry(
                "claim",
                lambda: self.store.claim(scope, raw_ids, holder_key, self.ttl_ms),
            )
        )
        claimed = [item_id for item_id in ids if str(item_id) in claimed_raw]
        if len(claimed) < len(ids):
            metrics.reservation_conflicts_total.inc(len(ids) - len(claimed))
        return claimed

    def claim_all(self, scope: str, item_ids: Iterable[UUID], holder: UUID) -> list[UUID]:
        """
        Claim a batch and insist on every item.

        Raises:
            ReservationConflict: Some items are held elsewhere (claimed ones stay held)
            ReservationTimeout: Store unavailable after bounded retries
        """
        ids = list(item_ids)
        claimed = self.claim(scope, ids, holder)
        if len(claimed) < len(ids):
            claimed_set = set(claimed)
            raise ReservationConflict(
                f"{len(ids) - len(claimed)} of {len(ids)} items held by another selection",
                claimed=claimed,
                conflicted=[item_id for item_id in ids if item_id not in claimed_set],
            )
        return claimed

    def release(self, scope: str, holder: UUID) -> int:
        """Release a holder's claims in one scope. Failures are logged; TTL covers them."""
        try:
            released = self._with_retry("release", lambda: self.store.release(scope, str(holder)))
        except ReservationTimeout as e:
            logger.error(f"Could not release claims for {holder} in {scope}: {e}")
            return 0
        logger.debug(f"Released {released} claims for {holder} in {scope}")
        return int(released)

    def release_all(self, holder: UUID) -> int:
        """Release every claim this coordinator took for ``holder``."""
        with self._scopes_lock:
            scopes = self._scopes_by_holder.pop(str(holder), set())
        return sum(self.release(scope, holder) for scope in sorted(scopes))

    def forget(self, holder: UUID) -> None:
        """Drop bookkeeping for a committed holder; its claims run out their TTL."""
        with self._scopes_lock:
            self._scopes_by_holder.pop(str(holder), None)


_coordinator: ReservationCoordinator | None = None
_coordinator_lock = threading.Lock()


def get_coordinator() -> ReservationCoordinator:
    """Process-wide coordinator: Redis-backed when Redis is reachable, else in-memory."""
    global _coordinator

    with _coordinator_lock:
        if _coordinator is None:
            from qselect.core.redis_client import get_redis_client

            client = get_redis_client()
            if client is not None:
                _coordinator = ReservationCoordinator(RedisClaimStore(client))
                logger.info("Reservation coordinator using Redis claim store")
            else:
                _coordinator = ReservationCoordinator(InMemoryClaimStore())
                logger.warning("Reservation coordinator using process-local claim store")
    return _coordinator
