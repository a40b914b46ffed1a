"""
============================================================================
Exchange Core - Per-Exchange Circuit Breaker
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Exchange ids and transport results only
Side Effects: Mutates in-memory breaker state, emits telemetry events

PURPOSE
-------
Fast-fails requests to an exchange that is failing at the transport
level. Each exchange has isolated state: binance being down never
affects bybit.

TRIP RULES
----------
1. max_failures failures within window_ms: circuit OPENS
2. reset_ms after opening: circuit CLOSES automatically
3. max_failures == 0 or enabled == False: breaker disabled

WHAT TRIPS
----------
| Result                | Trips? | Reason                          |
|-----------------------|--------|---------------------------------|
| HTTP 500+             | Yes    | Server error                    |
| Timeout / refused     | Yes    | Server unreachable              |
| Any other exception   | Yes    | Conservative                    |
| HTTP 429              | No     | Handled by the rate limiter     |
| HTTP 4xx              | No     | Client error                    |
| HTTP 2xx (body error) | No     | Exchange reachable              |

Error Codes:
  - EXC-CB-001: Circuit opened
  - EXC-CB-002: Request rejected by open circuit

============================================================================
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from exchange_core.config import (
    DEFAULT_CIRCUIT_BREAKER_ENABLED,
    DEFAULT_CIRCUIT_MAX_FAILURES,
    DEFAULT_CIRCUIT_RESET_MS,
    DEFAULT_CIRCUIT_WINDOW_MS,
    PipelineConfig,
)
from exchange_core.observability import telemetry
from exchange_core.rate_limiter import monotonic_ms

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# DATA MODELS
# ============================================================================

class CircuitStatus(str, Enum):
    """External status view of one exchange's breaker."""
    OK = "ok"
    BLOWN = "blown"
    NOT_INSTALLED = "not_installed"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """
    Breaker thresholds.

    Reliability Level: SOVEREIGN TIER
    Input Constraints: Non-negative integers
    Side Effects: None
    """
    enabled: bool = DEFAULT_CIRCUIT_BREAKER_ENABLED
    max_failures: int = DEFAULT_CIRCUIT_MAX_FAILURES
    window_ms: int = DEFAULT_CIRCUIT_WINDOW_MS
    reset_ms: int = DEFAULT_CIRCUIT_RESET_MS

    @property
    def active(self) -> bool:
        return self.enabled and self.max_failures > 0

    @classmethod
    def from_pipeline_config(cls, config: PipelineConfig) -> "CircuitBreakerConfig":
        return cls(
            enabled=config.circuit_breaker_enabled,
            max_failures=config.circuit_max_failures,
            window_ms=config.circuit_window_ms,
            reset_ms=config.circuit_reset_ms,
        )


class _CircuitState:
    """Per-exchange state. All fields guarded by `lock`."""

    __slots__ = ("failures", "opened_at", "lock")

    def __init__(self) -> None:
        self.failures: Deque[int] = deque()
        self.opened_at: Optional[int] = None
        self.lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None


def should_melt(result: Any) -> bool:
    """
    Decide whether a transport result counts as a failure.

    Args:
        result: A response object (with `status` or `status_code`),
                an exception instance, or None

    Returns:
        True for exceptions and HTTP 500+, False otherwise
    """
    if isinstance(result, BaseException):
        return True
    status = getattr(result, "status", None)
    if status is None:
        status = getattr(result, "status_code", None)
    if isinstance(status, int):
        return status >= 500
    return False


# ============================================================================
# CIRCUIT BREAKER CLASS
# ============================================================================

class CircuitBreaker:
    """
    Per-exchange circuit breaker registry.

    Reliability Level: SOVEREIGN TIER (Mission-Critical)
    Input Constraints: Exchange ids
    Side Effects: Emits circuit_breaker.open/closed/rejected telemetry

    Each exchange's state has its own lock; the registry lock is held only
    while installing a new exchange.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], int] = monotonic_ms
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._states: Dict[str, _CircuitState] = {}
        self._registry_lock = threading.Lock()

        logger.info(
            f"CircuitBreaker initialized | enabled={self.config.active} | "
            f"max_failures={self.config.max_failures} | "
            f"window_ms={self.config.window_ms} | reset_ms={self.config.reset_ms}"
        )

    def _state(self, exchange: str) -> _CircuitState:
        state = self._states.get(exchange)
        if state is None:
            with self._registry_lock:
                state = self._states.setdefault(exchange, _CircuitState())
        return state

    def _heal_unlocked(self, state: _CircuitState, now: int) -> bool:
        """Close an open circuit whose cool-down elapsed. True if it closed."""
        if state.opened_at is not None and now - state.opened_at >= self.config.reset_ms:
            state.opened_at = None
            state.failures.clear()
            return True
        return False

    def _closed(self, exchange: str) -> None:
        telemetry.emit_circuit_event(telemetry.CIRCUIT_BREAKER_CLOSED, exchange)
        logger.info(f"Circuit CLOSED | exchange={exchange} | requests allowed")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def check(self, exchange: str) -> CircuitStatus:
        """
        Gate a request. Installs state lazily.

        Returns:
            CircuitStatus.OK, or CircuitStatus.BLOWN (emits rejected)
        """
        if not self.config.active:
            return CircuitStatus.OK

        state = self._state(exchange)
        with state.lock:
            healed = self._heal_unlocked(state, self._clock())
            blown = state.is_open

        if healed:
            self._closed(exchange)
        if blown:
            telemetry.emit_circuit_event(telemetry.CIRCUIT_BREAKER_REJECTED, exchange)
            logger.debug(f"[EXC-CB-002] Request rejected by open circuit | exchange={exchange}")
            return CircuitStatus.BLOWN
        return CircuitStatus.OK

    def status(self, exchange: str) -> CircuitStatus:
        state = self._states.get(exchange)
        if state is None:
            return CircuitStatus.NOT_INSTALLED
        with state.lock:
            healed = self._heal_unlocked(state, self._clock())
            blown = state.is_open
        if healed:
            self._closed(exchange)
        return CircuitStatus.BLOWN if blown else CircuitStatus.OK

    def all_statuses(self) -> Dict[str, CircuitStatus]:
        """Status of every installed exchange."""
        return {exchange: self.status(exchange) for exchange in list(self._states)}

    def record_success(self, exchange: str) -> None:
        """Success does not heal an open circuit; it only avoids a melt."""
        return None

    def record_failure(self, exchange: str) -> None:
        """Count one failure; opens the circuit at max_failures within window_ms."""
        if not self.config.active:
            return

        state = self._state(exchange)
        opened = False
        with state.lock:
            now = self._clock()
            healed = self._heal_unlocked(state, now)
            if not state.is_open:
                failures = state.failures
                failures.append(now)
                cutoff = now - self.config.window_ms
                while failures and failures[0] <= cutoff:
                    failures.popleft()
                if len(failures) >= self.config.max_failures:
                    state.opened_at = now
                    failures.clear()
                    opened = True

        if healed:
            self._closed(exchange)
        if opened:
            telemetry.emit_circuit_event(telemetry.CIRCUIT_BREAKER_OPEN, exchange)
            logger.warning(
                f"[EXC-CB-001] Circuit OPEN | exchange={exchange} | "
                f"reset_ms={self.config.reset_ms} | requests will be rejected"
            )

    def record_result(self, exchange: str, result: Any) -> None:
        if should_melt(result):
            self.record_failure(exchange)
        else:
            self.record_success(exchange)

    should_melt = staticmethod(should_melt)

    def reset(self, exchange: str) -> bool:
        """
        Close an exchange's circuit manually.

        Returns:
            False if no state is installed for the exchange
        """
        state = self._states.get(exchange)
        if state is None:
            return False
        with state.lock:
            state.opened_at = None
            state.failures.clear()
        self._closed(exchange)
        return True
