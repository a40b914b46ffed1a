# ============================================================================
# Exchange Core v1.0.0
# Signing Helpers - Time, Digest, Encoding Primitives
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Shared primitives used by every signing pattern
#
# Wire contract notes:
#   - urlencode() sorts by key and form-encodes (space -> "+")
#   - urlencode_raw() sorts by key and does NOT encode
#   - Booleans are rendered lower-case ("true"/"false")
#
# ============================================================================

import base64
import binascii
import hashlib
import hmac
import json
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode as _urlencode


# ============================================================================
# Timestamps / Nonces
# ============================================================================

def timestamp_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def timestamp_seconds() -> int:
    """Current Unix time in whole seconds."""
    return int(time.time())


def timestamp_iso8601(now: Optional[datetime] = None) -> str:
    """
    Current UTC time as ISO 8601 with millisecond precision.

    Example: "2024-01-15T10:30:00.123Z"
    """
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class NonceSource:
    """
    Strictly increasing microsecond nonce.

    Two calls in the same microsecond (or after a clock step backwards)
    still yield increasing values.

    Thread Safety: Mutex lock on next()
    """

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            candidate = time.time_ns() // 1000
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return candidate


# Process-wide source shared by nonce-based patterns
microsecond_nonce = NonceSource()


# ============================================================================
# Digests
# ============================================================================

def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def hmac_sha256(data: Any, secret: Any) -> bytes:
    return hmac.new(_to_bytes(secret), _to_bytes(data), hashlib.sha256).digest()


def hmac_sha384(data: Any, secret: Any) -> bytes:
    return hmac.new(_to_bytes(secret), _to_bytes(data), hashlib.sha384).digest()


def hmac_sha512(data: Any, secret: Any) -> bytes:
    return hmac.new(_to_bytes(secret), _to_bytes(data), hashlib.sha512).digest()


def sha256(data: Any) -> bytes:
    return hashlib.sha256(_to_bytes(data)).digest()


def sha512(data: Any) -> bytes:
    return hashlib.sha512(_to_bytes(data)).digest()


# ============================================================================
# Encodings
# ============================================================================

def encode_hex(digest: bytes) -> str:
    """Lowercase hex."""
    return digest.hex()


def encode_base64(data: Any) -> str:
    return base64.b64encode(_to_bytes(data)).decode("ascii")


def encode_signature(digest: bytes, encoding: Any) -> str:
    """Encode a raw digest as 'hex' or 'base64'."""
    if str(getattr(encoding, "value", encoding)) == "base64":
        return encode_base64(digest)
    return encode_hex(digest)


def lenient_b64decode(value: Optional[str]) -> bytes:
    """
    Decode a base64 secret without ever raising.

    Empty or malformed secrets decode to whatever bytes can be recovered
    (possibly b""), producing a signature the exchange will reject.
    """
    if not value:
        return b""
    raw = value.strip().encode("utf-8")
    padded = raw + b"=" * (-len(raw) % 4)
    try:
        return base64.b64decode(padded)
    except (binascii.Error, ValueError):
        return _salvage_b64(raw)


def _salvage_b64(raw: bytes) -> bytes:
    allowed = b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
    cleaned = bytes(ch for ch in raw if ch in allowed)
    cleaned = cleaned[: len(cleaned) - (len(cleaned) % 4)]
    try:
        return base64.b64decode(cleaned)
    except (binascii.Error, ValueError):
        return b""


# ============================================================================
# Query Strings / JSON
# ============================================================================

def stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _sorted_items(params: Optional[Dict[str, Any]]) -> List[Tuple[str, str]]:
    if not params:
        return []
    return [(str(k), stringify(v)) for k, v in sorted(params.items(), key=lambda kv: str(kv[0]))]


def urlencode(params: Optional[Dict[str, Any]]) -> str:
    """Sorted, form-encoded query string ("" for empty params)."""
    return _urlencode(_sorted_items(params))


def urlencode_raw(params: Optional[Dict[str, Any]]) -> str:
    """Sorted `k=v` pairs joined by `&`, without encoding."""
    return "&".join(f"{k}={v}" for k, v in _sorted_items(params))


def json_dumps(payload: Any) -> str:
    """Compact JSON used for request bodies and signed payloads."""
    return json.dumps(payload, separators=(",", ":"))
