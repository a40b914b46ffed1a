"""
============================================================================
Unit Tests - REST Signing Patterns
============================================================================

Reliability Level: SOVEREIGN TIER
Test Coverage: All HMAC signing patterns, custom signers, dispatch

Tests verify:
1. Binance query signing: sorted params, trailing hex signature
2. OKX ISO passphrase signing with a missing passphrase
3. Payload layout for every pattern against an independent HMAC
4. Empty credentials never crash a signer
5. Unknown patterns fail at configuration time
6. Custom signers resolve from live objects or import paths
============================================================================
"""

import base64
import hashlib
import hmac
import json
import re

import pytest
from pydantic import ValidationError

from exchange_core.credentials import Credentials
from exchange_core.errors import SigningConfigurationError
from exchange_core.signing import (
    PATTERN_SIGNERS,
    CustomSigner,
    Request,
    SignedRequest,
    SigningConfig,
    SigningError,
    SigningPattern,
    load_custom_module,
    resolve_signer,
    sign,
)
from exchange_core.signing import helpers
from exchange_core.signing.patterns import (
    HmacSha256HeadersSigner,
    HmacSha384PayloadSigner,
    HmacSha512NonceSigner,
)

FIXED_TS_MS = 1700000000000
FIXED_ISO = "2023-11-14T22:13:20.000Z"


def _hex(secret, payload, digest=hashlib.sha256):
    return hmac.new(secret.encode(), payload.encode(), digest).hexdigest()


def _b64(secret, payload, digest=hashlib.sha256):
    return base64.b64encode(hmac.new(secret.encode(), payload.encode(), digest).digest()).decode()


class FixedNonce:
    def __init__(self, value):
        self.value = value

    def next(self):
        return self.value


# =============================================================================
# Binance: hmac_sha256_query
# =============================================================================

class TestQuerySigning:
    """Binance-style signing appends the signature to a sorted query."""

    def test_signed_url_has_sorted_params_and_trailing_signature(self, fixed_time):
        creds = Credentials(api_key="binance-key", secret="binance-secret")
        config = SigningConfig(pattern="hmac_sha256_query")

        signed = sign(Request("get", "/api/v3/order", {"symbol": "BTCUSDT"}), creds, config)

        assert isinstance(signed, SignedRequest)
        path, query = signed.url.split("?", 1)
        assert path == "/api/v3/order"

        pairs = query.split("&")
        assert "symbol=BTCUSDT" in pairs
        assert any(p.startswith("timestamp=") for p in pairs)
        assert pairs[-1].startswith("signature=")

        signature = pairs[-1][len("signature="):]
        assert re.fullmatch(r"[0-9a-f]{64}", signature)

        keys = [p.split("=", 1)[0] for p in pairs[:-1]]
        assert keys == sorted(keys)

    def test_signature_covers_the_exact_query(self, fixed_time):
        creds = Credentials(api_key="k", secret="binance-secret")
        config = SigningConfig(pattern="hmac_sha256_query")

        signed = sign(Request("get", "/api/v3/order", {"symbol": "BTCUSDT", "limit": 5}), creds, config)

        query = f"limit=5&symbol=BTCUSDT&timestamp={FIXED_TS_MS}"
        assert signed.url == f"/api/v3/order?{query}&signature={_hex('binance-secret', query)}"
        assert signed.header("X-MBX-APIKEY") == "k"
        assert signed.body is None

    def test_recv_window_only_when_enabled(self, fixed_time):
        creds = Credentials(api_key="k", secret="s")
        plain = sign(Request("get", "/x"), creds, SigningConfig(pattern="hmac_sha256_query"))
        assert "recvWindow" not in plain.url

        config = SigningConfig(
            pattern="hmac_sha256_query",
            recv_window_key="recvWindow",
            auto_recv_window=True,
            recv_window=7000,
        )
        signed = sign(Request("get", "/x"), creds, config)
        assert "recvWindow=7000" in signed.url

    def test_post_as_json_moves_signature_into_body(self, fixed_time):
        creds = Credentials(api_key="k", secret="s")
        config = SigningConfig(pattern="hmac_sha256_query", post_as_json=True)

        signed = sign(Request("post", "/order", {"qty": 1}), creds, config)

        assert signed.url == "/order"
        body = json.loads(signed.body)
        assert body["qty"] == 1
        assert body["timestamp"] == FIXED_TS_MS
        assert re.fullmatch(r"[0-9a-f]{64}", body["signature"])


# =============================================================================
# OKX: hmac_sha256_iso_passphrase
# =============================================================================

class TestIsoPassphraseSigning:
    """OKX-style signing over an ISO 8601 timestamp."""

    def test_missing_passphrase_signs_with_empty_header(self, fixed_time):
        creds = Credentials(api_key="okx-key", secret="okx-secret", password=None)
        config = SigningConfig(pattern="hmac_sha256_iso_passphrase")

        signed = sign(Request("get", "/api/v5/account/balance", {"ccy": "BTC"}), creds, config)

        assert isinstance(signed, SignedRequest)
        assert signed.header("OK-ACCESS-PASSPHRASE") == ""
        assert signed.header("OK-ACCESS-KEY") == "okx-key"
        assert signed.header("OK-ACCESS-TIMESTAMP") == FIXED_ISO

    def test_signature_is_base64_over_timestamp_method_path_body(self, fixed_time):
        creds = Credentials(api_key="okx-key", secret="okx-secret", password="pass")
        config = SigningConfig(pattern="hmac_sha256_iso_passphrase")

        signed = sign(Request("post", "/api/v5/trade/order", {"instId": "BTC-USDT"}), creds, config)

        body = '{"instId":"BTC-USDT"}'
        assert signed.body == body
        assert signed.header("OK-ACCESS-SIGN") == _b64(
            "okx-secret", FIXED_ISO + "POST" + "/api/v5/trade/order" + body
        )
        assert signed.header("OK-ACCESS-PASSPHRASE") == "pass"


# =============================================================================
# Bybit: hmac_sha256_headers
# =============================================================================

class TestHeaderSigning:
    """Bybit-style signing with credentials in headers."""

    def test_get_signs_raw_query(self, fixed_time):
        creds = Credentials(api_key="bybit-key", secret="bybit-secret")
        config = SigningConfig(pattern="hmac_sha256_headers")

        signed = sign(Request("GET", "/v5/order/realtime", {"symbol": "BTCUSDT", "category": "spot"}), creds, config)

        query = "category=spot&symbol=BTCUSDT"
        assert signed.url == f"/v5/order/realtime?{query}"
        assert signed.header("X-BAPI-SIGN") == _hex(
            "bybit-secret", f"{FIXED_TS_MS}bybit-key5000{query}"
        )
        assert signed.header("X-BAPI-TIMESTAMP") == str(FIXED_TS_MS)
        assert not signed.has_header("X-BAPI-RECV-WINDOW")

    def test_post_signs_json_body_and_sends_recv_window_header(self, fixed_time):
        creds = Credentials(api_key="bybit-key", secret="bybit-secret")
        config = SigningConfig(pattern="hmac_sha256_headers", recv_window_header="X-BAPI-RECV-WINDOW")

        signed = sign(Request("post", "/v5/order/create", {"qty": "1"}), creds, config)

        assert signed.body == '{"qty":"1"}'
        assert signed.header("X-BAPI-RECV-WINDOW") == "5000"
        assert signed.header("X-BAPI-SIGN") == _hex(
            "bybit-secret", f"{FIXED_TS_MS}bybit-key5000" + '{"qty":"1"}'
        )

    def test_custom_header_names_and_base64_encoding(self, fixed_time):
        creds = Credentials(api_key="k", secret="s")
        config = SigningConfig(
            pattern="hmac_sha256_headers",
            api_key_header="X-KEY",
            signature_header="X-SIG",
            signature_encoding="base64",
        )

        signed = sign(Request("get", "/p"), creds, config)

        assert signed.header("X-KEY") == "k"
        assert signed.header("X-SIG") == _b64("s", f"{FIXED_TS_MS}k5000")


# =============================================================================
# KuCoin: hmac_sha256_passphrase_signed
# =============================================================================

class TestPassphraseSignedSigning:
    """KuCoin signs the passphrase itself for v2 keys."""

    def test_v2_passphrase_is_hmac_signed(self, fixed_time):
        creds = Credentials(api_key="kc-key", secret="kc-secret", password="kc-pass")
        signed = sign(Request("get", "/api/v1/accounts"), creds, SigningConfig(pattern="hmac_sha256_passphrase_signed"))

        assert signed.header("KC-API-PASSPHRASE") == _b64("kc-secret", "kc-pass")
        assert signed.header("KC-API-KEY-VERSION") == "2"
        assert signed.header("KC-API-SIGN") == _b64("kc-secret", f"{FIXED_TS_MS}GET/api/v1/accounts")

    def test_v1_passphrase_is_sent_raw(self, fixed_time):
        creds = Credentials(api_key="kc-key", secret="kc-secret", password="kc-pass")
        config = SigningConfig(pattern="hmac_sha256_passphrase_signed", api_key_version="1")

        signed = sign(Request("get", "/api/v1/accounts"), creds, config)

        assert signed.header("KC-API-PASSPHRASE") == "kc-pass"
        assert signed.header("KC-API-KEY-VERSION") == "1"

    def test_absent_passphrase_is_signed_as_empty_string(self, fixed_time):
        creds = Credentials(api_key="kc-key", secret="kc-secret")
        signed = sign(Request("get", "/api/v1/accounts"), creds, SigningConfig(pattern="hmac_sha256_passphrase_signed"))

        assert signed.header("KC-API-PASSPHRASE") == _b64("kc-secret", "")


# =============================================================================
# Kraken: hmac_sha512_nonce
# =============================================================================

class TestNonceSigning:
    """Kraken-style path + sha256(nonce + body) signing."""

    def test_signature_matches_independent_computation(self):
        secret_bytes = b"kraken-secret-material"
        secret = base64.b64encode(secret_bytes).decode()
        creds = Credentials(api_key="kr-key", secret=secret)
        signer = HmacSha512NonceSigner(nonce_source=FixedNonce(1616492376594000))

        signed = signer.sign(
            Request("post", "/0/private/AddOrder", {"pair": "XBTUSD", "volume": "1.25"}),
            creds,
            SigningConfig(pattern="hmac_sha512_nonce"),
        )

        body = "nonce=1616492376594000&pair=XBTUSD&volume=1.25"
        assert signed.body == body
        message = b"/0/private/AddOrder" + hashlib.sha256(("1616492376594000" + body).encode()).digest()
        expected = base64.b64encode(hmac.new(secret_bytes, message, hashlib.sha512).digest()).decode()
        assert signed.header("API-Sign") == expected
        assert signed.header("API-Key") == "kr-key"

    def test_json_body_encoding(self):
        creds = Credentials(api_key="k", secret=base64.b64encode(b"s").decode())
        signer = HmacSha512NonceSigner(nonce_source=FixedNonce(42))

        signed = signer.sign(Request("post", "/p", {"a": 1}), creds, SigningConfig(pattern="hmac_sha512_nonce", body_encoding="json"))

        assert json.loads(signed.body) == {"a": 1, "nonce": 42}
        assert signed.header("Content-Type") == "application/json"

    def test_nonces_strictly_increase(self):
        source = helpers.NonceSource()
        values = [source.next() for _ in range(1000)]
        assert all(b > a for a, b in zip(values, values[1:]))


# =============================================================================
# Gate: hmac_sha512_gate
# =============================================================================

class TestGateSigning:
    """Gate.io newline payload with a configurable signing path prefix."""

    def test_payload_layout(self, fixed_time):
        creds = Credentials(api_key="gate-key", secret="gate-secret")
        signed = sign(Request("get", "/spot/orders", {"currency_pair": "BTC_USDT"}), creds, SigningConfig(pattern="hmac_sha512_gate"))

        body_hash = hashlib.sha512(b"").hexdigest()
        payload = "\n".join(["GET", "/api/v4/spot/orders", "currency_pair=BTC_USDT", body_hash, "1700000000"])
        assert signed.header("SIGN") == _hex("gate-secret", payload, hashlib.sha512)
        assert signed.header("Timestamp") == "1700000000"
        assert signed.url == "/spot/orders?currency_pair=BTC_USDT"
        assert signed.body is None

    def test_signing_path_prefix_changes_signature(self, fixed_time):
        creds = Credentials(api_key="gate-key", secret="gate-secret")
        request = Request("get", "/spot/accounts")

        v4 = sign(request, creds, SigningConfig(pattern="hmac_sha512_gate"))
        other = sign(request, creds, SigningConfig(pattern="hmac_sha512_gate", signing_path_prefix="/api/v3"))

        assert v4.header("SIGN") != other.header("SIGN")


# =============================================================================
# Bitfinex / Gemini: hmac_sha384_payload
# =============================================================================

class TestPayloadSigning:
    """Shared SHA-384 digest, two placements."""

    def test_bitfinex_variant_signs_api_path_nonce_body(self):
        creds = Credentials(api_key="bfx-key", secret="bfx-secret")
        signer = HmacSha384PayloadSigner(nonce_source=FixedNonce(1700000000000000))

        signed = signer.sign(Request("post", "/v2/auth/r/wallets"), creds, SigningConfig(pattern="hmac_sha384_payload"))

        assert signed.body == "{}"
        assert signed.header("bfx-nonce") == "1700000000000000"
        assert signed.header("bfx-signature") == _hex(
            "bfx-secret", "/api/v2/auth/r/wallets1700000000000000{}", hashlib.sha384
        )

    def test_gemini_variant_sends_payload_header_and_no_body(self):
        creds = Credentials(api_key="gem-key", secret="gem-secret")
        signer = HmacSha384PayloadSigner(nonce_source=FixedNonce(99))
        config = SigningConfig(pattern="hmac_sha384_payload", variant="gemini")

        signed = signer.sign(Request("post", "/v1/balances", {"account": "primary"}), creds, config)

        assert signed.body is None
        payload_b64 = signed.header("X-GEMINI-PAYLOAD")
        assert json.loads(base64.b64decode(payload_b64)) == {
            "account": "primary",
            "request": "/v1/balances",
            "nonce": "99",
        }
        assert signed.header("X-GEMINI-SIGNATURE") == _hex("gem-secret", payload_b64, hashlib.sha384)

    def test_unknown_variant_rejected(self):
        with pytest.raises(ValidationError):
            SigningConfig(pattern="hmac_sha384_payload", variant="kraken")


# =============================================================================
# Deribit
# =============================================================================

class TestDeribitSigning:

    def test_authorization_header_grammar(self, fixed_time):
        creds = Credentials(api_key="deri-id", secret="deri-secret")
        signed = sign(Request("get", "/api/v2/private/get_account_summary", {"currency": "BTC"}), creds, SigningConfig(pattern="deribit"))

        header = signed.header("Authorization")
        match = re.fullmatch(
            r"deri-hmac-sha256 id=deri-id,ts=(\d+),sig=([0-9a-f]{64}),nonce=(\d+)", header
        )
        assert match is not None
        ts, sig, nonce = match.groups()
        path = "/api/v2/private/get_account_summary?currency=BTC"
        assert sig == _hex("deri-secret", f"{ts}\n{nonce}\nGET\n{path}\n\n")


# =============================================================================
# Cross-cutting behaviour
# =============================================================================

class TestEmptyCredentials:
    """Signing is a pure transform, never a validator."""

    @pytest.mark.parametrize("pattern", [p for p in PATTERN_SIGNERS])
    def test_empty_credentials_still_sign(self, pattern, fixed_time):
        creds = Credentials(api_key="", secret="", password="")
        signed = sign(Request("post", "/private/endpoint", {"a": "b"}), creds, SigningConfig(pattern=pattern))
        assert isinstance(signed, SignedRequest)
        assert signed.headers


class TestSignerResolution:
    """Dispatch happens once, at configuration time."""

    def test_none_resolves_to_default_pattern(self):
        assert isinstance(resolve_signer(None), HmacSha256HeadersSigner)

    def test_every_pattern_has_a_signer(self):
        for pattern in SigningPattern:
            if pattern is SigningPattern.CUSTOM:
                continue
            assert resolve_signer({"pattern": pattern.value}).pattern is pattern

    def test_unknown_pattern_in_mapping_raises(self):
        with pytest.raises(SigningConfigurationError, match="Unknown signing pattern"):
            resolve_signer({"pattern": "hmac_md5_magic"})

    def test_unknown_pattern_in_model_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            SigningConfig(pattern="hmac_md5_magic")

    def test_custom_without_module_raises(self):
        with pytest.raises(SigningConfigurationError, match="custom_module"):
            resolve_signer(SigningConfig(pattern="custom"))

    def test_custom_module_without_sign_raises(self):
        with pytest.raises(SigningConfigurationError, match="callable"):
            resolve_signer(SigningConfig(pattern="custom", custom_module=object()))


class TestCustomSigner:
    """User-supplied signers are adapted and sandboxed."""

    def test_mapping_result_is_converted(self):
        class Delegate:
            def sign(self, request, credentials, config):
                return {"url": request.path + "?signed=1", "headers": [("X-Custom", config.get("tag"))]}

        config = SigningConfig(pattern="custom", custom_module=Delegate(), tag="abc")
        signed = resolve_signer(config).sign(Request("get", "/p"), Credentials("k", "s"), config)

        assert isinstance(signed, SignedRequest)
        assert signed.url == "/p?signed=1"
        assert signed.method == "get"
        assert signed.header("X-Custom") == "abc"

    def test_raising_delegate_returns_signing_error(self):
        class Broken:
            def sign(self, request, credentials, config):
                raise RuntimeError(credentials.secret)

        signer = CustomSigner(Broken())
        result = signer.sign(Request("get", "/p"), Credentials("k", "top-secret"), SigningConfig(pattern="custom", custom_module=Broken()))

        assert isinstance(result, SigningError)
        assert result.reason == "custom_signer_failed"
        assert "top-secret" not in result.message

    def test_unsupported_result_type(self):
        class Odd:
            def sign(self, request, credentials, config):
                return 42

        result = CustomSigner(Odd()).sign(Request("get", "/p"), Credentials("k", "s"), SigningConfig(pattern="custom", custom_module=Odd()))
        assert isinstance(result, SigningError)
        assert result.reason == "custom_signer_invalid_result"


class TestCustomModuleImportPath:
    """custom_module given as an import path is imported at resolve time."""

    def test_module_level_sign(self, tmp_path, monkeypatch):
        (tmp_path / "acme_signing.py").write_text(
            "def sign(request, credentials, config):\n"
            "    return {'url': request.path + '?sig=acme', 'headers': [('X-Acme-Key', credentials.api_key)]}\n"
        )
        monkeypatch.syspath_prepend(str(tmp_path))

        config = SigningConfig(pattern="custom", custom_module="acme_signing")
        signer = resolve_signer(config)
        signed = signer.sign(Request("get", "/p"), Credentials("acme-key", "s"), config)

        assert isinstance(signer, CustomSigner)
        assert signed.url == "/p?sig=acme"
        assert signed.header("X-Acme-Key") == "acme-key"

    def test_attribute_form(self, tmp_path, monkeypatch):
        (tmp_path / "globex_signing.py").write_text(
            "class GlobexSigner:\n"
            "    def sign(self, request, credentials, config):\n"
            "        return {'url': '/globex'}\n"
            "\n"
            "SIGNER = GlobexSigner()\n"
        )
        monkeypatch.syspath_prepend(str(tmp_path))

        config = SigningConfig(pattern="custom", custom_module="globex_signing:SIGNER")
        signed = resolve_signer(config).sign(Request("get", "/p"), Credentials("k", "s"), config)

        assert signed.url == "/globex"

    def test_module_without_sign_raises(self):
        with pytest.raises(SigningConfigurationError, match="callable"):
            resolve_signer({"pattern": "custom", "custom_module": "json"})

    def test_missing_module_raises(self):
        with pytest.raises(SigningConfigurationError, match="could not be imported"):
            resolve_signer({"pattern": "custom", "custom_module": "no_such_signing_module_xyz"})

    def test_missing_attribute_raises(self):
        with pytest.raises(SigningConfigurationError, match="no attribute"):
            load_custom_module("json:not_there")
