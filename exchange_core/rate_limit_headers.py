"""
============================================================================
Exchange Core - Rate Limit Header Parser & State Store
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Response headers (any case-insensitive mapping or pairs)
Side Effects: RateLimitState.update() replaces the stored snapshot

HEADER FAMILIES (priority order)
--------------------------------
1. Binance weight : x-mbx-used-weight-1m, x-sapi-used-ip-weight-1m
                    (limit comes from the exchange spec rate_limits.requests)
2. Bybit          : x-bapi-limit, x-bapi-limit-status,
                    x-bapi-limit-reset-timestamp (ms)
3. Standard       : x-ratelimit-limit, x-ratelimit-remaining,
                    x-ratelimit-reset (seconds)

The parser is pure. The state store keeps the latest snapshot per
(exchange, credential) key; readers never take a lock.

============================================================================
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Tuple

from exchange_core.rate_limiter import PUBLIC

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

BINANCE_HEADERS = ("x-mbx-used-weight-1m", "x-sapi-used-ip-weight-1m")

BYBIT_LIMIT_HEADER = "x-bapi-limit"
BYBIT_REMAINING_HEADER = "x-bapi-limit-status"
BYBIT_RESET_HEADER = "x-bapi-limit-reset-timestamp"
BYBIT_HEADERS = (BYBIT_LIMIT_HEADER, BYBIT_REMAINING_HEADER, BYBIT_RESET_HEADER)

STANDARD_LIMIT_HEADER = "x-ratelimit-limit"
STANDARD_REMAINING_HEADER = "x-ratelimit-remaining"
STANDARD_RESET_HEADER = "x-ratelimit-reset"
STANDARD_HEADERS = (STANDARD_LIMIT_HEADER, STANDARD_REMAINING_HEADER, STANDARD_RESET_HEADER)

DEFAULT_WAIT_THRESHOLD = 0.1

_LEADING_INT = re.compile(r"^[+-]?\d+")


# ============================================================================
# DATA MODELS
# ============================================================================

class RateLimitSource(str, Enum):
    """Which header family produced a snapshot."""
    BINANCE_WEIGHT = "binance_weight"
    BYBIT_BAPI = "bybit_bapi"
    STANDARD = "standard"


@dataclass(frozen=True)
class RateLimitInfo:
    """
    Normalized quota snapshot from response headers.

    Reliability Level: SOVEREIGN TIER
    Input Constraints: None (every numeric field optional)
    Side Effects: None
    """
    exchange: str
    source: RateLimitSource
    limit: Optional[int] = None
    used: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[int] = None
    raw_headers: Dict[str, str] = field(default_factory=dict)

    def should_wait(self, threshold: float = DEFAULT_WAIT_THRESHOLD) -> bool:
        """True when remaining/limit is below threshold (False without data)."""
        if isinstance(self.limit, int) and self.limit > 0 and isinstance(self.remaining, int):
            return self.remaining / self.limit < threshold
        return False

    def wait_time_ms(self, now_ms: Optional[int] = None) -> int:
        """Milliseconds until reset_at (wall clock), 0 if unknown or past."""
        if self.reset_at is None:
            return 0
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return max(self.reset_at - now_ms, 0)

    def usage_percent(self) -> Optional[float]:
        """Percentage of capacity used (0-100), None without enough data."""
        if not isinstance(self.limit, int) or self.limit <= 0:
            return None
        if isinstance(self.used, int):
            return self.used / self.limit * 100.0
        if isinstance(self.remaining, int):
            return (self.limit - self.remaining) / self.limit * 100.0
        return None


# ============================================================================
# PARSER
# ============================================================================

def parse_int(value: Optional[str]) -> Optional[int]:
    """Leading-integer parse: "12abc" -> 12, "abc" -> None."""
    if value is None:
        return None
    match = _LEADING_INT.match(str(value))
    return int(match.group(0)) if match else None


def _normalize_headers(headers: Any) -> Dict[str, str]:
    """Lower-case header names; first value wins for repeated names."""
    if headers is None:
        return {}
    items: Iterable[Tuple[Any, Any]]
    if isinstance(headers, Mapping) or hasattr(headers, "items"):
        items = headers.items()
    else:
        items = headers

    normalized: Dict[str, str] = {}
    for name, value in items:
        if isinstance(value, (list, tuple)):
            if not value:
                continue
            value = value[0]
        normalized.setdefault(str(name).lower(), str(value))
    return normalized


def _collect(headers: Dict[str, str], names: Iterable[str]) -> Dict[str, str]:
    return {name: headers[name] for name in names if name in headers}


def _spec_limit(spec_rate_limits: Any) -> Optional[int]:
    if spec_rate_limits is None:
        return None
    if isinstance(spec_rate_limits, Mapping):
        requests = spec_rate_limits.get("requests")
    else:
        requests = getattr(spec_rate_limits, "requests", None)
    return requests if isinstance(requests, int) and not isinstance(requests, bool) else None


def _used_from(limit: Optional[int], remaining: Optional[int]) -> Optional[int]:
    if limit is None or remaining is None:
        return None
    return max(limit - remaining, 0)


def parse_rate_limit_headers(
    exchange: str,
    headers: Any,
    spec_rate_limits: Any = None
) -> Optional[RateLimitInfo]:
    """
    Extract a RateLimitInfo from response headers.

    Args:
        exchange: Exchange id
        headers: Response headers
        spec_rate_limits: Exchange rate_limits ({requests, period}) for Binance

    Returns:
        RateLimitInfo from the first matching family, or None
    """
    normalized = _normalize_headers(headers)

    for name in BINANCE_HEADERS:
        if name in normalized:
            used = parse_int(normalized[name])
            limit = _spec_limit(spec_rate_limits)
            remaining = max(limit - used, 0) if used is not None and limit is not None else None
            raw = _collect(normalized, BINANCE_HEADERS)
            raw["matched"] = name
            return RateLimitInfo(
                exchange=exchange,
                source=RateLimitSource.BINANCE_WEIGHT,
                limit=limit,
                used=used,
                remaining=remaining,
                raw_headers=raw,
            )

    if BYBIT_LIMIT_HEADER in normalized:
        limit = parse_int(normalized[BYBIT_LIMIT_HEADER])
        remaining = parse_int(normalized.get(BYBIT_REMAINING_HEADER))
        return RateLimitInfo(
            exchange=exchange,
            source=RateLimitSource.BYBIT_BAPI,
            limit=limit,
            used=_used_from(limit, remaining),
            remaining=remaining,
            reset_at=parse_int(normalized.get(BYBIT_RESET_HEADER)),
            raw_headers=_collect(normalized, BYBIT_HEADERS),
        )

    if STANDARD_LIMIT_HEADER in normalized:
        limit = parse_int(normalized[STANDARD_LIMIT_HEADER])
        remaining = parse_int(normalized.get(STANDARD_REMAINING_HEADER))
        reset_seconds = parse_int(normalized.get(STANDARD_RESET_HEADER))
        return RateLimitInfo(
            exchange=exchange,
            source=RateLimitSource.STANDARD,
            limit=limit,
            used=_used_from(limit, remaining),
            remaining=remaining,
            reset_at=reset_seconds * 1000 if reset_seconds is not None else None,
            raw_headers=_collect(normalized, STANDARD_HEADERS),
        )

    return None


# ============================================================================
# STATE STORE
# ============================================================================

class RateLimitState:
    """
    Latest RateLimitInfo per (exchange, credential) key.

    Writers swap in a new read-only mapping under a lock (copy-on-write);
    readers dereference the current mapping without locking.
    """

    def __init__(self) -> None:
        self._snapshots: Mapping[Hashable, RateLimitInfo] = MappingProxyType({})
        self._write_lock = threading.Lock()

    def update(self, key: Hashable, info: RateLimitInfo) -> None:
        with self._write_lock:
            snapshots = dict(self._snapshots)
            snapshots[key] = info
            self._snapshots = MappingProxyType(snapshots)

    def status(self, exchange: str, credential: Any = PUBLIC) -> Optional[RateLimitInfo]:
        """Latest snapshot for (exchange, credential), credential = api key or PUBLIC."""
        return self._snapshots.get((exchange, credential))

    def all(self, exchange: str) -> List[Tuple[Hashable, RateLimitInfo]]:
        """Every (credential, snapshot) pair recorded for an exchange."""
        return [
            (key[1], info)
            for key, info in self._snapshots.items()
            if isinstance(key, tuple) and key and key[0] == exchange
        ]

    def remove(self, key: Hashable) -> bool:
        """Drop the snapshot for key. Returns True if one was stored."""
        return self.evict([key]) == 1

    def evict(self, keys: Iterable[Hashable]) -> int:
        """
        Drop snapshots for every key in keys (one copy for the batch).

        Used as the limiter's eviction listener so snapshots of idle
        credentials go away together with their rate-limit buckets.

        Returns:
            Number of snapshots removed
        """
        with self._write_lock:
            snapshots = dict(self._snapshots)
            removed = sum(1 for key in set(keys) if snapshots.pop(key, None) is not None)
            if removed:
                self._snapshots = MappingProxyType(snapshots)
        return removed

    def clear(self) -> None:
        with self._write_lock:
            self._snapshots = MappingProxyType({})
