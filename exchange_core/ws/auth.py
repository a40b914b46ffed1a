"""
============================================================================
Exchange Core - WebSocket Authentication Patterns
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Credentials + the exchange's ws auth config mapping
Side Effects: None (reads the clock and a request-id counter only)

PATTERNS
--------
| Pattern            | Exchanges       | Shape                                 |
|--------------------|-----------------|---------------------------------------|
| direct_hmac_expiry | Bybit, BitMEX   | op=auth, args=[key, expires, sig]     |
| iso_passphrase     | OKX, Bitget     | op=login, passphrase required         |
| jsonrpc_linebreak  | Deribit         | JSON-RPC public/auth                  |
| sha384_nonce       | Bitfinex        | event=auth, AUTH{nonce}               |
| sha512_newline     | Gate            | api\\nchannel\\n{}\\ntime               |
| inline_subscribe   | Coinbase        | auth fields merged into subscribes    |
| listen_key         | Binance         | two-phase: REST listen key first      |
| rest_token         | Kraken          | two-phase: REST token first           |

TWO-PHASE PATTERNS
------------------
listen_key and rest_token never perform the REST call. pre_auth() returns a
NeedsExternalCall descriptor; the caller performs the call, extracts the
key/token, and feeds it back (URL or build_subscribe_auth state).

============================================================================
"""

import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from exchange_core.credentials import Credentials
from exchange_core.signing import helpers
from exchange_core.signing.base import SigningError

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_EXPIRES_OFFSET_MS = 10_000
MS_PER_SECOND = 1_000

_MARKET_TYPE_ALIASES = {
    "future": "linear",
    "delivery": "inverse",
    "contract": "linear",
}

_request_ids = itertools.count(1)


# ============================================================================
# DATA MODELS
# ============================================================================

class WSAuthPattern(str, Enum):
    """Closed set of WebSocket auth patterns."""
    DIRECT_HMAC_EXPIRY = "direct_hmac_expiry"
    ISO_PASSPHRASE = "iso_passphrase"
    JSONRPC_LINEBREAK = "jsonrpc_linebreak"
    SHA384_NONCE = "sha384_nonce"
    SHA512_NEWLINE = "sha512_newline"
    INLINE_SUBSCRIBE = "inline_subscribe"
    LISTEN_KEY = "listen_key"
    REST_TOKEN = "rest_token"


@dataclass(frozen=True)
class AuthMessage:
    """JSON-encodable auth message to send on the socket."""
    payload: Dict[str, Any]


@dataclass(frozen=True)
class NoAuthMessage:
    """Pattern sends no standalone auth message."""


@dataclass(frozen=True)
class NeedsExternalCall:
    """
    Two-phase auth: the caller must perform this REST call first.

    Carries no credentials.
    """
    endpoint: Any
    method: str = "POST"
    path: Optional[str] = None
    market_type: Optional[str] = None
    api_section: Optional[str] = None


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an auth response: ok, optional session ttl, or error."""
    ok: bool
    ttl_ms: Optional[int] = None
    error: Optional[str] = None
    detail: Any = None


BuildResult = Union[AuthMessage, NoAuthMessage, SigningError]
PreAuthResult = Union[NeedsExternalCall, NoAuthMessage, SigningError]


def _next_request_id() -> int:
    return next(_request_ids)


def _auth_failed(detail: Any) -> AuthResult:
    return AuthResult(ok=False, error="auth_failed", detail=detail)


# ============================================================================
# PATTERN IMPLEMENTATIONS
# ============================================================================

class WSAuthenticator:
    """
    Base class: no pre-auth, no message, no inline fields, always ok.

    Subclasses override only the hooks their exchange uses.
    """

    pattern: WSAuthPattern

    def pre_auth(self, credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> PreAuthResult:
        return NoAuthMessage()

    def build_auth_message(self, credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> BuildResult:
        return NoAuthMessage()

    def handle_auth_response(self, response: Mapping[str, Any]) -> AuthResult:
        return AuthResult(ok=True)

    def build_subscribe_auth(
        self,
        credentials: Credentials,
        config: Mapping[str, Any],
        channel: str,
        symbols: List[str]
    ) -> Optional[Dict[str, Any]]:
        return None


class DirectHmacExpiryAuth(WSAuthenticator):
    """Bybit/BitMEX: HMAC-SHA256 of `GET/realtime{expires}`."""

    pattern = WSAuthPattern.DIRECT_HMAC_EXPIRY

    def build_auth_message(self, credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> BuildResult:
        offset = config.get("expires_offset_ms") or DEFAULT_EXPIRES_OFFSET_MS
        expires = helpers.timestamp_ms() + offset
        digest = helpers.hmac_sha256(f"GET/realtime{expires}", credentials.secret)
        signature = helpers.encode_signature(digest, config.get("encoding", "hex"))

        op_field = config.get("op_field") or "op"
        op_value = config.get("op_value") or "auth"
        return AuthMessage({op_field: op_value, "args": [credentials.api_key, expires, signature]})

    def handle_auth_response(self, response: Mapping[str, Any]) -> AuthResult:
        if response.get("success") is True:
            return AuthResult(ok=True)
        ret_msg = response.get("ret_msg")
        if isinstance(ret_msg, str) and "error" in ret_msg:
            return _auth_failed(ret_msg)
        return _auth_failed(dict(response))


class IsoPassphraseAuth(WSAuthenticator):
    """
    OKX/Bitget login.

    Unlike the REST ISO pattern, a missing passphrase fails fast here with
    reason `passphrase_required` rather than sending a blank one.
    """

    pattern = WSAuthPattern.ISO_PASSPHRASE

    def build_auth_message(self, credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> BuildResult:
        if credentials.password is None:
            logger.warning(
                f"[EXC-WS-001] Passphrase required for WS login | "
                f"pattern={self.pattern.value} | api_key={credentials.redacted_key}"
            )
            return SigningError(
                reason="passphrase_required",
                message="WebSocket login requires a passphrase (credentials.password)",
                pattern=self.pattern.value,
            )

        if config.get("timestamp_unit") == "milliseconds":
            timestamp = str(helpers.timestamp_ms())
        else:
            timestamp = str(helpers.timestamp_seconds())

        payload = timestamp + "GET" + "/users/self/verify"
        signature = helpers.encode_base64(helpers.hmac_sha256(payload, credentials.secret))

        op_field = config.get("op_field") or "op"
        op_value = config.get("op_value") or "login"
        return AuthMessage({
            op_field: op_value,
            "args": [{
                "apiKey": credentials.api_key,
                "passphrase": credentials.password,
                "timestamp": timestamp,
                "sign": signature,
            }],
        })

    def handle_auth_response(self, response: Mapping[str, Any]) -> AuthResult:
        if response.get("event") == "login" and response.get("code") == "0":
            return AuthResult(ok=True)
        if response.get("event") == "error":
            return _auth_failed(response.get("msg"))
        return _auth_failed(dict(response))


class JsonrpcLinebreakAuth(WSAuthenticator):
    """Deribit: JSON-RPC `public/auth` with client_signature grant."""

    pattern = WSAuthPattern.JSONRPC_LINEBREAK

    def build_auth_message(self, credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> BuildResult:
        timestamp = helpers.timestamp_ms()
        nonce = opts.get("nonce") or str(timestamp)
        signature = helpers.encode_hex(
            helpers.hmac_sha256(f"{timestamp}\n{nonce}\n", credentials.secret)
        )
        return AuthMessage({
            "jsonrpc": "2.0",
            "id": opts.get("request_id") or _next_request_id(),
            "method": config.get("method_value") or "public/auth",
            "params": {
                "grant_type": "client_signature",
                "client_id": credentials.api_key,
                "timestamp": timestamp,
                "signature": signature,
                "nonce": nonce,
                "data": "",
            },
        })

    def handle_auth_response(self, response: Mapping[str, Any]) -> AuthResult:
        result = response.get("result")
        if isinstance(result, Mapping) and result.get("access_token"):
            return AuthResult(ok=True, ttl_ms=_parse_expires_in(result.get("expires_in")))
        if response.get("error"):
            return _auth_failed(response.get("error"))
        return _auth_failed(dict(response))


def _parse_expires_in(seconds: Any) -> Optional[int]:
    if isinstance(seconds, bool):
        return None
    if isinstance(seconds, int):
        ttl = seconds * MS_PER_SECOND
    elif isinstance(seconds, str) and seconds.strip().isdigit():
        ttl = int(seconds.strip()) * MS_PER_SECOND
    else:
        return None
    return ttl if ttl > 0 else None


class Sha384NonceAuth(WSAuthenticator):
    """Bitfinex: hex HMAC-SHA384 of `AUTH{nonce}`."""

    pattern = WSAuthPattern.SHA384_NONCE

    def build_auth_message(self, credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> BuildResult:
        nonce = helpers.timestamp_ms()
        payload = f"AUTH{nonce}"
        signature = helpers.encode_hex(helpers.hmac_sha384(payload, credentials.secret))
        return AuthMessage({
            "event": config.get("event_value") or "auth",
            "apiKey": credentials.api_key,
            "authSig": signature,
            "authNonce": nonce,
            "authPayload": payload,
        })

    def handle_auth_response(self, response: Mapping[str, Any]) -> AuthResult:
        if response.get("event") == "auth" and response.get("status") == "OK":
            return AuthResult(ok=True)
        if response.get("event") == "auth" and response.get("status") == "FAILED":
            return _auth_failed(response.get("msg"))
        return _auth_failed(dict(response))


class Sha512NewlineAuth(WSAuthenticator):
    """Gate: hex HMAC-SHA512 of `api\\n{channel}\\n{}\\n{time}`."""

    pattern = WSAuthPattern.SHA512_NEWLINE

    def build_auth_message(self, credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> BuildResult:
        time_s = helpers.timestamp_seconds()
        request_id = str(opts.get("request_id") or _next_request_id())
        channel = config.get("channel") or "spot.login"
        event = "api"
        req_params: Dict[str, Any] = {}

        payload = f"{event}\n{channel}\n{helpers.json_dumps(req_params)}\n{time_s}"
        signature = helpers.encode_hex(helpers.hmac_sha512(payload, credentials.secret))

        return AuthMessage({
            "id": request_id,
            "time": time_s,
            "channel": channel,
            "event": event,
            "payload": {
                "req_id": request_id,
                "timestamp": str(time_s),
                "api_key": credentials.api_key,
                "signature": signature,
                "req_param": req_params,
            },
        })

    def handle_auth_response(self, response: Mapping[str, Any]) -> AuthResult:
        result = response.get("result")
        if (
            response.get("event") == "api"
            and isinstance(result, Mapping)
            and result.get("status") == "success"
        ):
            return AuthResult(ok=True)
        if response.get("error"):
            return _auth_failed(response.get("error"))
        if result:
            return AuthResult(ok=True)
        return _auth_failed(dict(response))


class InlineSubscribeAuth(WSAuthenticator):
    """Coinbase: signed fields merged into every private subscribe message."""

    pattern = WSAuthPattern.INLINE_SUBSCRIBE

    def build_subscribe_auth(
        self,
        credentials: Credentials,
        config: Mapping[str, Any],
        channel: str,
        symbols: List[str]
    ) -> Optional[Dict[str, Any]]:
        timestamp = str(helpers.timestamp_seconds())
        payload = timestamp + channel + ",".join(symbols)
        return {
            "api_key": credentials.api_key,
            "timestamp": timestamp,
            "signature": helpers.encode_hex(helpers.hmac_sha256(payload, credentials.secret)),
        }


class ListenKeyAuth(WSAuthenticator):
    """Binance: listen key obtained by the caller via REST, embedded in the URL."""

    pattern = WSAuthPattern.LISTEN_KEY

    def pre_auth(self, credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> PreAuthResult:
        raw_type = str(opts.get("market_type") or "spot")
        market_type = _MARKET_TYPE_ALIASES.get(raw_type, raw_type)
        endpoints = (config.get("pre_auth") or {}).get("endpoints") or []

        for endpoint in endpoints:
            if str(endpoint.get("type")) == market_type:
                return NeedsExternalCall(
                    endpoint=endpoint.get("endpoint"),
                    method=endpoint.get("method") or "POST",
                    path=endpoint.get("path"),
                    market_type=market_type,
                    api_section=endpoint.get("api_section"),
                )

        available = [str(ep.get("type")) for ep in endpoints]
        logger.warning(
            f"[EXC-WS-002] No listen key endpoint | "
            f"requested={raw_type} | normalized={market_type} | available={available}"
        )
        return SigningError(
            reason="no_endpoint_for_market_type",
            message=(
                f"No listen key endpoint for market type {raw_type!r} "
                f"(normalized {market_type!r}); available: {available}"
            ),
            pattern=self.pattern.value,
        )


class RestTokenAuth(WSAuthenticator):
    """Kraken: token obtained by the caller via REST, sent in subscribe messages."""

    pattern = WSAuthPattern.REST_TOKEN

    def pre_auth(self, credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> PreAuthResult:
        endpoint = (config.get("pre_auth") or {}).get("endpoint")
        if not endpoint:
            return SigningError(
                reason="no_token_endpoint",
                message="ws auth config has no pre_auth.endpoint for the REST token",
                pattern=self.pattern.value,
            )
        return NeedsExternalCall(endpoint=endpoint, method="POST")

    def build_subscribe_auth(
        self,
        credentials: Credentials,
        config: Mapping[str, Any],
        channel: str,
        symbols: List[str]
    ) -> Optional[Dict[str, Any]]:
        token = config.get("token")
        return {"token": token} if token else None


# ============================================================================
# DISPATCH
# ============================================================================

WS_AUTHENTICATORS: Dict[WSAuthPattern, WSAuthenticator] = {
    auth.pattern: auth
    for auth in (
        DirectHmacExpiryAuth(),
        IsoPassphraseAuth(),
        JsonrpcLinebreakAuth(),
        Sha384NonceAuth(),
        Sha512NewlineAuth(),
        InlineSubscribeAuth(),
        ListenKeyAuth(),
        RestTokenAuth(),
    )
}


def get_authenticator(pattern: Union[str, WSAuthPattern]) -> WSAuthenticator:
    """
    Resolve a pattern name.

    Raises:
        ValueError: Unknown pattern (configuration fault)
    """
    return WS_AUTHENTICATORS[WSAuthPattern(pattern)]


def pre_auth(pattern: Union[str, WSAuthPattern], credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> PreAuthResult:
    return get_authenticator(pattern).pre_auth(credentials, config, **opts)


def build_auth_message(pattern: Union[str, WSAuthPattern], credentials: Credentials, config: Mapping[str, Any], **opts: Any) -> BuildResult:
    return get_authenticator(pattern).build_auth_message(credentials, config, **opts)


def handle_auth_response(pattern: Union[str, WSAuthPattern], response: Mapping[str, Any]) -> AuthResult:
    return get_authenticator(pattern).handle_auth_response(response)


def build_subscribe_auth(
    pattern: Union[str, WSAuthPattern],
    credentials: Credentials,
    config: Mapping[str, Any],
    channel: str,
    symbols: List[str]
) -> Optional[Dict[str, Any]]:
    return get_authenticator(pattern).build_subscribe_auth(credentials, config, channel, symbols)
