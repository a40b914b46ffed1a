# ============================================================================
# Exchange Core v1.0.0
# Sliding Window Rate Limiter - Per-Credential Weighted Quotas
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Gates outbound requests against exchange weight limits
#
# SOVEREIGN MANDATE:
#   - check+record is atomic per key (one mutex per bucket)
#   - Different keys never contend on a shared lock while checking
#   - wait() sleeps for the computed delay, never busy-loops
#   - Idle buckets are evicted so memory stays bounded
#
# Keys:
#   (exchange_id, api_key)  - authenticated traffic, isolated per user
#   (exchange_id, PUBLIC)   - public traffic, one shared pool per exchange
#
# Error Codes:
#   - EXC-RATE-001: Request delayed by rate limit
#   - EXC-RATE-002: Request cost exceeds window capacity
#   - EXC-RATE-003: Background cleanup failed
#   - EXC-RATE-004: Request cost is not a positive weight
#
# ============================================================================

import asyncio
import logging
import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Hashable, List, Mapping, NamedTuple, Optional, Tuple, Union

from exchange_core.config import (
    DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_MS,
    DEFAULT_RATE_LIMIT_MAX_AGE_MS,
)

logger = logging.getLogger(__name__)


# Buckets untouched for this long are evicted entirely
IDLE_EVICTION_MS = 24 * 60 * 60 * 1000
DEFAULT_PERIOD_MS = 1000


class _PublicKey:
    """Sentinel discriminator for unauthenticated traffic."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "PUBLIC"

    def __reduce__(self):
        return (_PublicKey, ())


PUBLIC = _PublicKey()

RateLimitKey = Tuple[str, Union[str, _PublicKey]]


def build_rate_key(exchange_id: str, credentials: Any = None) -> RateLimitKey:
    """(exchange, api_key) for authenticated calls, (exchange, PUBLIC) otherwise."""
    if credentials is None:
        return (exchange_id, PUBLIC)
    return (exchange_id, credentials.api_key)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def _require_positive_cost(cost: int) -> None:
    # A cost below 1 would shrink the window sum and admit past capacity
    if cost < 1:
        raise ValueError(f"[EXC-RATE-004] Request cost must be >= 1, got: {cost}")


@dataclass(frozen=True)
class RateLimitConfig:
    """Window capacity: `requests` weight units per `period` milliseconds."""
    requests: int
    period: int = DEFAULT_PERIOD_MS

    @classmethod
    def coerce(cls, value: Any) -> Optional["RateLimitConfig"]:
        """Accept None, a RateLimitConfig, a mapping, or a pydantic model."""
        if value is None or isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(
                requests=int(value["requests"]),
                period=int(value.get("period") or DEFAULT_PERIOD_MS),
            )
        return cls(
            requests=int(value.requests),
            period=int(getattr(value, "period", None) or DEFAULT_PERIOD_MS),
        )


class RateLimitDecision(NamedTuple):
    """Result of check(): allowed, or the delay until enough weight frees up."""
    allowed: bool
    delay_ms: int = 0

    @classmethod
    def ok(cls) -> "RateLimitDecision":
        return cls(True, 0)

    @classmethod
    def delay(cls, ms: int) -> "RateLimitDecision":
        return cls(False, ms)


class _Bucket:
    """Per-key window state. All fields guarded by `lock`."""

    __slots__ = ("entries", "lock", "last_ts", "max_period", "evicted")

    def __init__(self) -> None:
        self.entries: Deque[Tuple[int, int]] = deque()
        self.lock = threading.Lock()
        self.last_ts = 0
        self.max_period = 0
        self.evicted = False

    def prune_unlocked(self, cutoff: int) -> None:
        entries = self.entries
        while entries and entries[0][0] <= cutoff:
            entries.popleft()

    def total_unlocked(self) -> int:
        return sum(cost for _, cost in self.entries)


class SlidingWindowRateLimiter:
    """
    Thread-Safe Sliding Window Rate Limiter.

    Weighted: each request records (timestamp, cost); admission compares the
    cost-sum inside the trailing window against the configured capacity.

    Reliability Level: SOVEREIGN TIER
    Thread Safety: Mutex per bucket; registry mutex only for create/evict
    Side Effects: Logs EXC-RATE-001 when a request must wait

    Example Usage:
        limiter = SlidingWindowRateLimiter()
        key = build_rate_key("binance", credentials)
        limiter.wait(key, {"requests": 1200, "period": 60000}, cost=5)
    """

    def __init__(
        self,
        cleanup_interval_ms: int = DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_MS,
        max_age_ms: int = DEFAULT_RATE_LIMIT_MAX_AGE_MS,
        clock: Callable[[], int] = monotonic_ms,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.cleanup_interval_ms = cleanup_interval_ms
        self.max_age_ms = max_age_ms
        self._clock = clock
        self._sleep = sleep

        self._buckets: Dict[Hashable, _Bucket] = {}
        self._registry_lock = threading.Lock()

        self._cleanup_timer: Optional[threading.Timer] = None
        self._cleanup_lock = threading.Lock()
        self._eviction_listeners: List[Callable[[List[Hashable]], Any]] = []

        logger.info(
            f"[EXC-RATE] SlidingWindowRateLimiter initialized | "
            f"cleanup_interval_ms={cleanup_interval_ms} | max_age_ms={max_age_ms}"
        )

    # ========================================================================
    # Bucket Registry
    # ========================================================================

    def _bucket(self, key: Hashable) -> _Bucket:
        bucket = self._buckets.get(key)
        if bucket is not None and not bucket.evicted:
            return bucket
        with self._registry_lock:
            bucket = self._buckets.get(key)
            if bucket is None or bucket.evicted:
                bucket = _Bucket()
                self._buckets[key] = bucket
            return bucket

    def _locked_bucket(self, key: Hashable) -> _Bucket:
        """Return the live bucket for key with its lock held."""
        while True:
            bucket = self._bucket(key)
            bucket.lock.acquire()
            if not bucket.evicted:
                return bucket
            # Lost a race with cleanup; retry on the replacement bucket
            bucket.lock.release()

    # ========================================================================
    # Admission
    # ========================================================================

    def check(
        self,
        key: Hashable,
        limit_config: Any = None,
        cost: int = 1
    ) -> RateLimitDecision:
        """
        Check capacity and record the request if admitted (atomic per key).

        Args:
            key: RateLimitKey
            limit_config: RateLimitConfig / mapping {requests, period}; None disables
            cost: Weight of this request, >= 1

        Returns:
            RateLimitDecision.ok() or RateLimitDecision.delay(ms) with ms >= 1.
            A cost above the window capacity can never be admitted: it is
            logged (EXC-RATE-002) and always delayed by one full period.

        Raises:
            ValueError: cost < 1 (EXC-RATE-004)
        """
        _require_positive_cost(cost)
        config = RateLimitConfig.coerce(limit_config)
        if config is None:
            return RateLimitDecision.ok()
        if self._cost_exceeds_capacity(key, config, cost):
            return RateLimitDecision.delay(config.period)

        bucket = self._locked_bucket(key)
        try:
            now = self._clock()
            period = config.period
            bucket.max_period = max(bucket.max_period, period)
            bucket.prune_unlocked(now - period)
            current = bucket.total_unlocked()

            if current + cost <= config.requests:
                bucket.entries.append((now, cost))
                bucket.last_ts = now
                return RateLimitDecision.ok()

            delay = self._delay_unlocked(bucket, now, period, current + cost - config.requests)
        finally:
            bucket.lock.release()

        logger.debug(
            f"[EXC-RATE-001] Rate limit - request delayed | "
            f"key={key!r} | cost={cost} | used={current}/{config.requests} | "
            f"delay_ms={delay}"
        )
        return RateLimitDecision.delay(delay)

    @staticmethod
    def _delay_unlocked(bucket: _Bucket, now: int, period: int, overage: int) -> int:
        """
        Minimum wait until `overage` weight has aged out of the window.

        Must be called within the bucket lock.
        """
        freed = 0
        for ts, entry_cost in bucket.entries:
            freed += entry_cost
            if freed >= overage:
                return max(ts + period - now, 1)
        return period

    def wait(
        self,
        key: Hashable,
        limit_config: Any = None,
        cost: int = 1
    ) -> bool:
        """
        Block until the request is admitted (and recorded).

        Returns:
            True once admitted. False without waiting when `cost` is not a
            positive weight (EXC-RATE-004) or can never fit in the window
            (EXC-RATE-002).
        """
        config = RateLimitConfig.coerce(limit_config)
        if self._cost_invalid(key, cost) or self._cost_exceeds_capacity(key, config, cost):
            return False

        while True:
            decision = self.check(key, config, cost)
            if decision.allowed:
                return True
            self._sleep(decision.delay_ms / 1000.0)

    async def async_wait(
        self,
        key: Hashable,
        limit_config: Any = None,
        cost: int = 1
    ) -> bool:
        """Same as wait(), suspending with asyncio.sleep instead of blocking."""
        config = RateLimitConfig.coerce(limit_config)
        if self._cost_invalid(key, cost) or self._cost_exceeds_capacity(key, config, cost):
            return False

        while True:
            decision = self.check(key, config, cost)
            if decision.allowed:
                return True
            await asyncio.sleep(decision.delay_ms / 1000.0)

    @staticmethod
    def _cost_exceeds_capacity(key: Hashable, config: Optional[RateLimitConfig], cost: int) -> bool:
        if config is not None and cost > config.requests:
            logger.warning(
                f"[EXC-RATE-002] Request cost exceeds window capacity | "
                f"key={key!r} | cost={cost} | capacity={config.requests}"
            )
            return True
        return False

    @staticmethod
    def _cost_invalid(key: Hashable, cost: int) -> bool:
        if cost < 1:
            logger.warning(
                f"[EXC-RATE-004] Invalid request cost | key={key!r} | cost={cost}"
            )
            return True
        return False

    # ========================================================================
    # Bookkeeping
    # ========================================================================

    def record_request(self, key: Hashable, cost: int = 1) -> None:
        """Record a request that bypassed check() (e.g. sent out-of-band)."""
        _require_positive_cost(cost)
        bucket = self._locked_bucket(key)
        try:
            now = self._clock()
            bucket.entries.append((now, cost))
            bucket.last_ts = now
        finally:
            bucket.lock.release()

    def get_cost(self, key: Hashable, period_ms: int = DEFAULT_PERIOD_MS) -> int:
        """Weight consumed by key in the trailing period_ms."""
        bucket = self._buckets.get(key)
        if bucket is None:
            return 0
        with bucket.lock:
            cutoff = self._clock() - period_ms
            return sum(cost for ts, cost in bucket.entries if ts > cutoff)

    def reset(self, key: Hashable) -> None:
        """Forget all recorded requests for key."""
        with self._registry_lock:
            bucket = self._buckets.pop(key, None)
        if bucket is not None:
            with bucket.lock:
                bucket.evicted = True
            logger.info(f"[EXC-RATE] Bucket reset | key={key!r}")

    def keys(self) -> list:
        with self._registry_lock:
            return list(self._buckets.keys())

    # ========================================================================
    # Background Maintenance
    # ========================================================================

    def cleanup(self) -> int:
        """
        Prune aged entries and evict idle buckets.

        Entries older than max(max_age_ms, the bucket's largest period) are
        dropped; buckets idle longer than 24h are evicted.

        Eviction listeners receive the evicted keys once per sweep.

        Returns:
            Number of evicted buckets
        """
        now = self._clock()
        evicted: List[Hashable] = []

        with self._registry_lock:
            items = list(self._buckets.items())

        for key, bucket in items:
            with bucket.lock:
                if bucket.evicted:
                    continue
                horizon = max(self.max_age_ms, bucket.max_period)
                bucket.prune_unlocked(now - horizon)
                if bucket.entries or now - bucket.last_ts <= IDLE_EVICTION_MS:
                    continue
                bucket.evicted = True
            with self._registry_lock:
                if self._buckets.get(key) is bucket:
                    del self._buckets[key]
                    evicted.append(key)

        if evicted:
            logger.info(f"[EXC-RATE] Cleanup evicted idle buckets | evicted={len(evicted)}")
            for listener in list(self._eviction_listeners):
                listener(evicted)
        return len(evicted)

    def add_eviction_listener(self, listener: Callable[[List[Hashable]], Any]) -> None:
        """Call listener(keys) whenever cleanup() evicts idle buckets."""
        with self._cleanup_lock:
            if listener not in self._eviction_listeners:
                self._eviction_listeners.append(listener)

    def start_cleanup(self) -> None:
        """Start the periodic cleanup timer (daemon thread)."""
        with self._cleanup_lock:
            if self._cleanup_timer is None:
                self._schedule_cleanup_unlocked()

    def stop_cleanup(self) -> None:
        with self._cleanup_lock:
            if self._cleanup_timer is not None:
                self._cleanup_timer.cancel()
                self._cleanup_timer = None

    def _schedule_cleanup_unlocked(self) -> None:
        timer = threading.Timer(self.cleanup_interval_ms / 1000.0, self._run_cleanup)
        timer.daemon = True
        self._cleanup_timer = timer
        timer.start()

    def _run_cleanup(self) -> None:
        try:
            self.cleanup()
        except Exception as e:
            logger.error(f"[EXC-RATE-003] Cleanup failed | error={e}")
        with self._cleanup_lock:
            if self._cleanup_timer is not None:
                self._schedule_cleanup_unlocked()


# ============================================================================
# Exponential Backoff Helper
# ============================================================================

class ExponentialBackoff:
    """
    Exponential Backoff Calculator.

    Calculates delays between transport retries (429 / 5xx / timeouts).
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 60.0,
        jitter: float = 0.25
    ):
        """
        Initialize backoff calculator.

        Args:
            base_delay: Initial delay in seconds
            multiplier: Delay multiplier per attempt
            max_delay: Maximum delay cap in seconds
            jitter: Random jitter factor (0-1)
        """
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter = jitter

    def delay_for(self, attempt: int) -> float:
        """
        Delay in seconds before retry number `attempt` (0-based).

        Stateless so one instance can be shared by concurrent requests.
        """
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)

        # Add jitter to prevent thundering herd
        if self.jitter > 0:
            delay += delay * self.jitter * random.random()

        return delay
