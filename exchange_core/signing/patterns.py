# ============================================================================
# Exchange Core v1.0.0
# REST Signing Patterns - HMAC Family
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: One Signer per wire contract shared by many exchanges
#
# SOVEREIGN MANDATE:
#   - Payload order and separators are part of the wire contract
#   - Empty-string credentials never crash; they produce a signature the
#     exchange rejects
#   - Credentials NEVER appear in logs ([REDACTED] / redacted key only)
#
# Patterns:
#   hmac_sha256_headers            Bybit
#   hmac_sha256_query              Binance
#   hmac_sha256_iso_passphrase     OKX
#   hmac_sha256_passphrase_signed  KuCoin
#   hmac_sha512_nonce              Kraken
#   hmac_sha512_gate               Gate.io
#   hmac_sha384_payload            Bitfinex / Gemini
#   deribit                        Deribit
#
# ============================================================================

import logging
from typing import List, Optional, Tuple

from exchange_core.credentials import Credentials
from exchange_core.signing import helpers
from exchange_core.signing.base import (
    Request,
    SignatureEncoding,
    SignedRequest,
    Signer,
    SigningConfig,
    SigningPattern,
    SigningResult,
)

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = ("Content-Type", "application/json")
FORM_CONTENT_TYPE = ("Content-Type", "application/x-www-form-urlencoded")

_QUERY_METHODS = ("get", "delete")


def _log_signed(pattern: SigningPattern, request: Request, credentials: Credentials) -> None:
    logger.debug(
        f"[EXC-SIGN] Request signed | "
        f"pattern={pattern.value} | method={request.method.upper()} | "
        f"path={request.path} | api_key={credentials.redacted_key} | "
        f"signature=[REDACTED]"
    )


def _with_query(path: str, query: str) -> str:
    return f"{path}?{query}" if query else path


def _json_body_or_none(request: Request) -> Optional[str]:
    """POST/PUT body: the caller's body, else JSON of params, else None."""
    if request.body is not None:
        return request.body
    if request.params:
        return helpers.json_dumps(request.params)
    return None


# ============================================================================
# Bybit
# ============================================================================

class HmacSha256HeadersSigner(Signer):
    """
    HMAC-SHA256 with credentials in headers.

    payload = timestamp + api_key + recv_window + (raw query | body)
    """

    pattern = SigningPattern.HMAC_SHA256_HEADERS

    def sign(self, request: Request, credentials: Credentials, config: SigningConfig) -> SigningResult:
        timestamp = str(helpers.timestamp_ms())
        recv_window = str(config.recv_window)

        if request.method in _QUERY_METHODS:
            query_string = helpers.urlencode_raw(request.params)
            body = None
            payload = timestamp + credentials.api_key + recv_window + query_string
            url = _with_query(request.path, query_string)
        else:
            body = _json_body_or_none(request)
            payload = timestamp + credentials.api_key + recv_window + (body or "")
            url = request.path

        digest = helpers.hmac_sha256(payload, credentials.secret)
        signature = helpers.encode_signature(
            digest, config.get("signature_encoding", SignatureEncoding.HEX)
        )

        headers: List[Tuple[str, str]] = [
            (config.get("api_key_header", "X-BAPI-API-KEY"), credentials.api_key),
            (config.get("timestamp_header", "X-BAPI-TIMESTAMP"), timestamp),
            (config.get("signature_header", "X-BAPI-SIGN"), signature),
            JSON_CONTENT_TYPE,
        ]
        if config.recv_window_header:
            headers.append((config.recv_window_header, recv_window))

        _log_signed(self.pattern, request, credentials)
        return SignedRequest(url=url, method=request.method, headers=headers, body=body)


# ============================================================================
# Binance
# ============================================================================

class HmacSha256QuerySigner(Signer):
    """
    HMAC-SHA256 over the sorted query string, signature appended as a param.

    recvWindow is only added when a recv_window_key is configured and the
    caller already sent it or auto_recv_window is enabled.
    """

    pattern = SigningPattern.HMAC_SHA256_QUERY

    def sign(self, request: Request, credentials: Credentials, config: SigningConfig) -> SigningResult:
        params = dict(request.params)
        params[config.timestamp_key] = helpers.timestamp_ms()

        recv_window_key = config.recv_window_key
        if recv_window_key and recv_window_key not in params and config.auto_recv_window:
            params[recv_window_key] = config.recv_window

        query_string = helpers.urlencode(params)
        digest = helpers.hmac_sha256(query_string, credentials.secret)
        signature = helpers.encode_signature(
            digest, config.get("signature_encoding", SignatureEncoding.HEX)
        )
        signature_key = config.signature_key
        final_query = f"{query_string}&{signature_key}={signature}"

        if request.method in _QUERY_METHODS:
            url, body = f"{request.path}?{final_query}", None
        elif config.post_as_json:
            params[signature_key] = signature
            url, body = request.path, helpers.json_dumps(params)
        else:
            url, body = f"{request.path}?{final_query}", request.body

        headers = [
            (config.get("api_key_header", "X-MBX-APIKEY"), credentials.api_key),
            FORM_CONTENT_TYPE,
        ]

        _log_signed(self.pattern, request, credentials)
        return SignedRequest(url=url, method=request.method, headers=headers, body=body)


# ============================================================================
# OKX
# ============================================================================

class HmacSha256IsoPassphraseSigner(Signer):
    """
    HMAC-SHA256 over ISO 8601 timestamp + METHOD + path + body.

    A missing passphrase is sent as "" (the exchange rejects it); this
    pattern deliberately does not fail locally.
    """

    pattern = SigningPattern.HMAC_SHA256_ISO_PASSPHRASE

    def sign(self, request: Request, credentials: Credentials, config: SigningConfig) -> SigningResult:
        timestamp = helpers.timestamp_iso8601()
        method = request.method.upper()

        if request.method in _QUERY_METHODS:
            path = _with_query(request.path, helpers.urlencode(request.params))
            body = None
        else:
            path = request.path
            body = _json_body_or_none(request)

        payload = timestamp + method + path + (body or "")
        digest = helpers.hmac_sha256(payload, credentials.secret)
        signature = helpers.encode_signature(
            digest, config.get("signature_encoding", SignatureEncoding.BASE64)
        )

        headers = [
            (config.get("api_key_header", "OK-ACCESS-KEY"), credentials.api_key),
            (config.get("timestamp_header", "OK-ACCESS-TIMESTAMP"), timestamp),
            (config.get("signature_header", "OK-ACCESS-SIGN"), signature),
            (config.get("passphrase_header", "OK-ACCESS-PASSPHRASE"), credentials.password or ""),
            JSON_CONTENT_TYPE,
        ]

        _log_signed(self.pattern, request, credentials)
        return SignedRequest(url=path, method=request.method, headers=headers, body=body)


# ============================================================================
# KuCoin
# ============================================================================

class HmacSha256PassphraseSignedSigner(Signer):
    """
    KuCoin: base64 HMAC-SHA256 of ts + METHOD + endpoint + body.

    For api_key_version "2" the passphrase itself is HMAC-signed with the
    secret; version "1" sends it raw. Absent passphrase is treated as "".
    """

    pattern = SigningPattern.HMAC_SHA256_PASSPHRASE_SIGNED

    def sign(self, request: Request, credentials: Credentials, config: SigningConfig) -> SigningResult:
        timestamp = str(helpers.timestamp_ms())
        method = request.method.upper()

        if request.method in _QUERY_METHODS:
            endpoint = _with_query(request.path, helpers.urlencode_raw(request.params))
            body = None
        else:
            endpoint = request.path
            body = _json_body_or_none(request)

        payload = timestamp + method + endpoint + (body or "")
        signature = helpers.encode_base64(helpers.hmac_sha256(payload, credentials.secret))

        api_key_version = str(config.get("api_key_version", "2"))
        passphrase = credentials.password or ""
        if api_key_version == "2":
            passphrase = helpers.encode_base64(helpers.hmac_sha256(passphrase, credentials.secret))

        headers = [
            (config.get("api_key_header", "KC-API-KEY"), credentials.api_key),
            (config.get("timestamp_header", "KC-API-TIMESTAMP"), timestamp),
            (config.get("signature_header", "KC-API-SIGN"), signature),
            (config.get("passphrase_header", "KC-API-PASSPHRASE"), passphrase),
            (config.get("api_key_version_header", "KC-API-KEY-VERSION"), api_key_version),
            JSON_CONTENT_TYPE,
        ]

        _log_signed(self.pattern, request, credentials)
        return SignedRequest(url=endpoint, method=request.method, headers=headers, body=body)


# ============================================================================
# Kraken
# ============================================================================

class HmacSha512NonceSigner(Signer):
    """
    Kraken: base64(HMAC-SHA512(path + sha256(nonce + body), b64decode(secret))).

    The nonce is a strictly increasing microsecond counter.
    """

    pattern = SigningPattern.HMAC_SHA512_NONCE

    def __init__(self, nonce_source: Optional[helpers.NonceSource] = None) -> None:
        self._nonces = nonce_source or helpers.microsecond_nonce

    def sign(self, request: Request, credentials: Credentials, config: SigningConfig) -> SigningResult:
        nonce = self._nonces.next()
        body_params = dict(request.params)
        body_params[config.nonce_key] = nonce

        if config.body_encoding == "json":
            body = helpers.json_dumps(body_params)
            content_type = JSON_CONTENT_TYPE
        else:
            body = helpers.urlencode(body_params)
            content_type = FORM_CONTENT_TYPE

        message = request.path.encode("utf-8") + helpers.sha256(str(nonce) + body)
        secret = helpers.lenient_b64decode(credentials.secret)
        signature = helpers.encode_base64(helpers.hmac_sha512(message, secret))

        headers = [
            (config.get("api_key_header", "API-Key"), credentials.api_key),
            (config.get("signature_header", "API-Sign"), signature),
            content_type,
        ]

        _log_signed(self.pattern, request, credentials)
        return SignedRequest(url=request.path, method=request.method, headers=headers, body=body)


# ============================================================================
# Gate.io
# ============================================================================

class HmacSha512GateSigner(Signer):
    """
    Gate.io v4: hex HMAC-SHA512 of
    METHOD \\n prefix+path \\n query \\n sha512hex(body) \\n ts.
    """

    pattern = SigningPattern.HMAC_SHA512_GATE

    def sign(self, request: Request, credentials: Credentials, config: SigningConfig) -> SigningResult:
        timestamp = str(helpers.timestamp_seconds())
        query_string = helpers.urlencode(request.params)
        body = request.body or ""
        body_hash = helpers.encode_hex(helpers.sha512(body))
        signing_path = config.signing_path_prefix + request.path

        payload = "\n".join([
            request.method.upper(),
            signing_path,
            query_string,
            body_hash,
            timestamp,
        ])
        signature = helpers.encode_hex(helpers.hmac_sha512(payload, credentials.secret))

        headers = [
            (config.get("api_key_header", "KEY"), credentials.api_key),
            (config.get("signature_header", "SIGN"), signature),
            (config.get("timestamp_header", "Timestamp"), timestamp),
            JSON_CONTENT_TYPE,
        ]

        _log_signed(self.pattern, request, credentials)
        return SignedRequest(
            url=_with_query(request.path, query_string),
            method=request.method,
            headers=headers,
            body=body or None,
        )


# ============================================================================
# Bitfinex / Gemini
# ============================================================================

class HmacSha384PayloadSigner(Signer):
    """
    Hex HMAC-SHA384 over a JSON payload carrying a nonce.

    bitfinex: signs "/api" + path + nonce + body, JSON body sent as-is
    gemini:   signs base64(JSON(params + request + nonce)), sent in a header
    """

    pattern = SigningPattern.HMAC_SHA384_PAYLOAD

    def __init__(self, nonce_source: Optional[helpers.NonceSource] = None) -> None:
        self._nonces = nonce_source or helpers.microsecond_nonce

    def sign(self, request: Request, credentials: Credentials, config: SigningConfig) -> SigningResult:
        nonce = str(self._nonces.next())
        if config.variant == "gemini":
            signed = self._sign_gemini(request, credentials, config, nonce)
        else:
            signed = self._sign_bitfinex(request, credentials, config, nonce)
        _log_signed(self.pattern, request, credentials)
        return signed

    def _sign_bitfinex(self, request: Request, credentials: Credentials, config: SigningConfig, nonce: str) -> SignedRequest:
        body = helpers.json_dumps(request.params) if request.params else "{}"
        auth = "/api" + request.path + nonce + body
        signature = helpers.encode_hex(helpers.hmac_sha384(auth, credentials.secret))
        headers = [
            (config.get("api_key_header", "bfx-apikey"), credentials.api_key),
            (config.get("nonce_header", "bfx-nonce"), nonce),
            (config.get("signature_header", "bfx-signature"), signature),
            JSON_CONTENT_TYPE,
        ]
        return SignedRequest(url=request.path, method=request.method, headers=headers, body=body)

    def _sign_gemini(self, request: Request, credentials: Credentials, config: SigningConfig, nonce: str) -> SignedRequest:
        payload = dict(request.params)
        payload["request"] = request.path
        payload["nonce"] = nonce
        payload_b64 = helpers.encode_base64(helpers.json_dumps(payload))
        signature = helpers.encode_hex(helpers.hmac_sha384(payload_b64, credentials.secret))
        headers = [
            (config.get("api_key_header", "X-GEMINI-APIKEY"), credentials.api_key),
            (config.get("payload_header", "X-GEMINI-PAYLOAD"), payload_b64),
            (config.get("signature_header", "X-GEMINI-SIGNATURE"), signature),
            ("Content-Type", "text/plain"),
        ]
        return SignedRequest(url=request.path, method=request.method, headers=headers, body=None)


# ============================================================================
# Deribit
# ============================================================================

class DeribitSigner(Signer):
    """Deribit: `Authorization: deri-hmac-sha256 id=..,ts=..,sig=..,nonce=..`."""

    pattern = SigningPattern.DERIBIT

    def sign(self, request: Request, credentials: Credentials, config: SigningConfig) -> SigningResult:
        timestamp = str(helpers.timestamp_ms())
        nonce = timestamp
        path_with_query = _with_query(request.path, helpers.urlencode(request.params))
        body = request.body or ""

        auth = f"{timestamp}\n{nonce}\n{request.method.upper()}\n{path_with_query}\n{body}\n"
        signature = helpers.encode_hex(helpers.hmac_sha256(auth, credentials.secret))
        header = (
            f"deri-hmac-sha256 id={credentials.api_key},ts={timestamp},"
            f"sig={signature},nonce={nonce}"
        )

        _log_signed(self.pattern, request, credentials)
        return SignedRequest(
            url=path_with_query,
            method=request.method,
            headers=[("Authorization", header)],
            body=request.body,
        )
