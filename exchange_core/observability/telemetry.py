"""
============================================================================
Exchange Core - Telemetry Event Contract
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Handlers are callables (event, measurements, metadata, config)
Side Effects: Invokes attached handlers synchronously

EVENTS (contract version 1)
---------------------------
request.start              measurements: system_time
                           metadata: exchange, method, path
request.stop               measurements: duration (ns)
                           metadata: exchange, method, path, status, rate_limit?
request.exception          measurements: duration (ns)
                           metadata: exchange, method, path, kind, reason
circuit_breaker.open       measurements: system_time   metadata: exchange
circuit_breaker.closed     measurements: system_time   metadata: exchange
circuit_breaker.rejected   measurements: system_time   metadata: exchange

Event names, measurement keys and metadata keys are stable within a
contract version. A handler that raises is logged and detached; the
failure never reaches the request path.

============================================================================
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

# Configure module logger
logger = logging.getLogger(__name__)


CONTRACT_VERSION = 1

REQUEST_START = ("exchange_core", "request", "start")
REQUEST_STOP = ("exchange_core", "request", "stop")
REQUEST_EXCEPTION = ("exchange_core", "request", "exception")
CIRCUIT_BREAKER_OPEN = ("exchange_core", "circuit_breaker", "open")
CIRCUIT_BREAKER_CLOSED = ("exchange_core", "circuit_breaker", "closed")
CIRCUIT_BREAKER_REJECTED = ("exchange_core", "circuit_breaker", "rejected")

ALL_EVENTS = (
    REQUEST_START,
    REQUEST_STOP,
    REQUEST_EXCEPTION,
    CIRCUIT_BREAKER_OPEN,
    CIRCUIT_BREAKER_CLOSED,
    CIRCUIT_BREAKER_REJECTED,
)

Event = Tuple[str, ...]
Handler = Callable[[Event, Dict[str, Any], Dict[str, Any], Any], None]


class _Attachment:
    __slots__ = ("handler_id", "events", "handler", "config")

    def __init__(self, handler_id: str, events: Tuple[Event, ...], handler: Handler, config: Any):
        self.handler_id = handler_id
        self.events = events
        self.handler = handler
        self.config = config


_attachments: Dict[str, _Attachment] = {}
_lock = threading.Lock()


def system_time() -> int:
    """Wall clock in nanoseconds."""
    return time.time_ns()


def monotonic_time() -> int:
    return time.monotonic_ns()


def attach(
    handler_id: str,
    handler: Handler,
    config: Any = None,
    events: Optional[List[Event]] = None
) -> bool:
    """
    Attach a handler to telemetry events.

    Args:
        handler_id: Unique id, used by detach()
        handler: fn(event, measurements, metadata, config)
        config: Passed through to every invocation
        events: Subset of events, default every event

    Returns:
        False if handler_id is already attached
    """
    if not callable(handler):
        raise TypeError("telemetry handler must be callable")

    selected = tuple(events) if events else ALL_EVENTS
    with _lock:
        if handler_id in _attachments:
            return False
        _attachments[handler_id] = _Attachment(handler_id, selected, handler, config)
    return True


def detach(handler_id: str) -> bool:
    with _lock:
        return _attachments.pop(handler_id, None) is not None


def attached() -> List[str]:
    return sorted(_attachments)


def emit(event: Event, measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
    """Dispatch an event to every handler subscribed to it."""
    with _lock:
        targets = [a for a in _attachments.values() if event in a.events]

    for attachment in targets:
        try:
            attachment.handler(event, dict(measurements), dict(metadata), attachment.config)
        except Exception as e:
            logger.error(
                f"[EXC-OBS-001] Telemetry handler failed, detaching | "
                f"handler_id={attachment.handler_id} | event={'.'.join(event[1:])} | "
                f"error={type(e).__name__}: {e}"
            )
            detach(attachment.handler_id)


# ============================================================================
# EMIT HELPERS
# ============================================================================

def emit_request_start(exchange: str, method: str, path: str) -> int:
    """Emit request.start and return the monotonic start time for durations."""
    emit(
        REQUEST_START,
        {"system_time": system_time()},
        {"exchange": exchange, "method": method, "path": path},
    )
    return monotonic_time()


def emit_request_stop(
    exchange: str,
    method: str,
    path: str,
    started_at: int,
    status: int,
    rate_limit: Any = None
) -> None:
    metadata: Dict[str, Any] = {
        "exchange": exchange,
        "method": method,
        "path": path,
        "status": status,
    }
    if rate_limit is not None:
        metadata["rate_limit"] = rate_limit
    emit(REQUEST_STOP, {"duration": monotonic_time() - started_at}, metadata)


def emit_request_exception(
    exchange: str,
    method: str,
    path: str,
    started_at: int,
    kind: str,
    reason: Any
) -> None:
    emit(
        REQUEST_EXCEPTION,
        {"duration": monotonic_time() - started_at},
        {"exchange": exchange, "method": method, "path": path, "kind": kind, "reason": reason},
    )


def emit_circuit_event(event: Event, exchange: str) -> None:
    emit(event, {"system_time": system_time()}, {"exchange": exchange})
