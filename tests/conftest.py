"""
Shared fixtures for the exchange_core test suite.

Fixed clocks, telemetry capture and a few reference exchange specs.
"""

import pytest

from exchange_core.config import reset_pipeline_config
from exchange_core.credentials import Credentials
from exchange_core.exchange_spec import ExchangeSpec
from exchange_core.observability import telemetry
from exchange_core.signing import helpers

FIXED_TS_MS = 1700000000000
FIXED_TS_S = 1700000000
FIXED_ISO = "2023-11-14T22:13:20.000Z"

CAPTURE_HANDLER_ID = "tests.capture"


@pytest.fixture(autouse=True)
def clean_pipeline_config():
    """Every test starts and ends without a cached global config."""
    reset_pipeline_config()
    yield
    reset_pipeline_config()


@pytest.fixture
def fixed_time(monkeypatch):
    """Freeze the signing clock."""
    monkeypatch.setattr(helpers, "timestamp_ms", lambda: FIXED_TS_MS)
    monkeypatch.setattr(helpers, "timestamp_seconds", lambda: FIXED_TS_S)
    monkeypatch.setattr(helpers, "timestamp_iso8601", lambda now=None: FIXED_ISO)
    return FIXED_TS_MS


@pytest.fixture
def telemetry_events():
    """Capture every telemetry event emitted during the test."""
    events = []

    def handler(event, measurements, metadata, config):
        events.append((event, measurements, metadata))

    telemetry.attach(CAPTURE_HANDLER_ID, handler)
    yield events
    telemetry.detach(CAPTURE_HANDLER_ID)


@pytest.fixture
def credentials():
    creds, error = Credentials.new(api_key="test-api-key-0001", secret="test-secret")
    assert error is None
    return creds


@pytest.fixture
def bybit_spec():
    return ExchangeSpec(
        id="bybit",
        name="Bybit",
        urls={"api": "https://api.bybit.test", "sandbox": "https://api-testnet.bybit.test"},
        signing={"pattern": "hmac_sha256_headers", "recv_window_header": "X-BAPI-RECV-WINDOW"},
        rate_limits={"requests": 50, "period": 1000},
        error_codes={10003: "invalid_credentials", "110007": "insufficient_balance"},
        error_code_details={10003: "API key is invalid"},
        response_error={
            "type": "success_code",
            "field": "retCode",
            "success_values": [0],
            "code_field": "retCode",
            "message_field": "retMsg",
        },
    )


@pytest.fixture
def binance_spec():
    return ExchangeSpec(
        id="binance",
        name="Binance",
        urls={"api": "https://api.binance.test"},
        signing={"pattern": "hmac_sha256_query"},
        rate_limits={"requests": 1200, "period": 60000},
        error_codes={-2015: "invalid_credentials", -1121: "invalid_parameters"},
        response_error={
            "type": "error_field_present",
            "field": "code",
            "code_field": "code",
            "message_field": "msg",
        },
    )
