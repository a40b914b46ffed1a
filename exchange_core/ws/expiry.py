"""
WebSocket session expiry scheduling.

Re-auth is scheduled at 80% of the session TTL, capped at 24 hours.
"""

from typing import Any, Mapping, Optional

DEFAULT_SAFETY_MARGIN = 0.80
MAX_AUTH_TTL_MS = 86_400_000


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return None


def compute_ttl_ms(response_ttl_ms: Optional[int], auth_config: Optional[Mapping[str, Any]]) -> Optional[int]:
    """TTL reported by the auth response, else `auth_ttl_ms` from config, else None."""
    config_ttl = _positive_int((auth_config or {}).get("auth_ttl_ms"))
    return _positive_int(response_ttl_ms) or config_ttl


def schedule_delay_ms(ttl_ms: Optional[int]) -> Optional[int]:
    """Delay before re-authenticating; None means no timer."""
    ttl = _positive_int(ttl_ms)
    if ttl is None:
        return None
    return min(int(ttl * DEFAULT_SAFETY_MARGIN), MAX_AUTH_TTL_MS)
