"""
============================================================================
Exchange Core - Prometheus Metrics
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Telemetry events from exchange_core.observability.telemetry
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- exchange_requests_total: Counter of completed requests by status
- exchange_request_duration_seconds: Request latency distribution
- exchange_request_exceptions_total: Transport failures and exceptions
- exchange_circuit_breaker_transitions_total: open/closed/rejected events
- exchange_rate_limit_remaining: Remaining quota from response headers

install_metrics() attaches a telemetry handler that feeds these metrics.

============================================================================
"""

import logging
from typing import Any, Dict, Optional

from prometheus_client import Counter, Gauge, Histogram

from exchange_core.observability import telemetry

# Configure module logger
logger = logging.getLogger(__name__)

HANDLER_ID = "exchange_core.prometheus"


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

REQUESTS_TOTAL = Counter(
    "exchange_requests_total",
    "Total number of exchange HTTP requests that received a response",
    ["exchange", "method", "status"]
)

# Buckets: 50ms .. 30s
REQUEST_DURATION = Histogram(
    "exchange_request_duration_seconds",
    "Exchange HTTP request latency in seconds",
    ["exchange", "method"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

REQUEST_EXCEPTIONS = Counter(
    "exchange_request_exceptions_total",
    "Total number of exchange requests that failed in transport",
    ["exchange", "kind"]
)

CIRCUIT_TRANSITIONS = Counter(
    "exchange_circuit_breaker_transitions_total",
    "Circuit breaker events per exchange",
    ["exchange", "state"]
)

RATE_LIMIT_REMAINING = Gauge(
    "exchange_rate_limit_remaining",
    "Remaining request quota reported by the exchange",
    ["exchange"]
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_request(exchange: str, method: str, status: int, duration_ns: int) -> None:
    """
    Record a completed request.

    Reliability Level: SOVEREIGN TIER
    Input Constraints: duration in nanoseconds
    Side Effects: Increments counter, observes histogram
    """
    try:
        REQUESTS_TOTAL.labels(exchange=exchange, method=method.upper(), status=str(status)).inc()
        REQUEST_DURATION.labels(exchange=exchange, method=method.upper()).observe(duration_ns / 1e9)
    except Exception as e:
        logger.error(f"[EXC-OBS-002] Failed to record request metric | error={e}")


def record_exception(exchange: str, kind: str) -> None:
    try:
        REQUEST_EXCEPTIONS.labels(exchange=exchange, kind=kind).inc()
    except Exception as e:
        logger.error(f"[EXC-OBS-002] Failed to record exception metric | error={e}")


def record_circuit_transition(exchange: str, state: str) -> None:
    try:
        CIRCUIT_TRANSITIONS.labels(exchange=exchange, state=state).inc()
    except Exception as e:
        logger.error(f"[EXC-OBS-002] Failed to record circuit metric | error={e}")


def update_rate_limit_remaining(exchange: str, remaining: Optional[int]) -> None:
    """Set the quota gauge; None leaves the last value in place."""
    if remaining is None:
        return
    try:
        RATE_LIMIT_REMAINING.labels(exchange=exchange).set(remaining)
    except Exception as e:
        logger.error(f"[EXC-OBS-002] Failed to update rate limit gauge | error={e}")


# ============================================================================
# TELEMETRY BRIDGE
# ============================================================================

def handle_event(
    event: telemetry.Event,
    measurements: Dict[str, Any],
    metadata: Dict[str, Any],
    config: Any
) -> None:
    """Telemetry handler translating events into metric updates."""
    exchange = str(metadata.get("exchange", "unknown"))

    if event == telemetry.REQUEST_STOP:
        record_request(exchange, str(metadata.get("method", "")), metadata.get("status", 0),
                       measurements.get("duration", 0))
        rate_limit = metadata.get("rate_limit")
        if rate_limit is not None:
            update_rate_limit_remaining(exchange, getattr(rate_limit, "remaining", None))
    elif event == telemetry.REQUEST_EXCEPTION:
        record_exception(exchange, str(metadata.get("kind", "exception")))
    elif event[1] == "circuit_breaker":
        record_circuit_transition(exchange, event[2])


def install_metrics() -> bool:
    """Attach the Prometheus handler. Returns False if already installed."""
    installed = telemetry.attach(HANDLER_ID, handle_event)
    if installed:
        logger.info(f"Prometheus telemetry handler attached | handler_id={HANDLER_ID}")
    return installed


def uninstall_metrics() -> bool:
    return telemetry.detach(HANDLER_ID)
