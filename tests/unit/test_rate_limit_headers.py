"""
============================================================================
Unit Tests - Rate Limit Header Parser & State
============================================================================

Reliability Level: SOVEREIGN TIER
Test Coverage: parse_rate_limit_headers, RateLimitInfo, RateLimitState
============================================================================
"""

import threading

from requests.structures import CaseInsensitiveDict

from exchange_core.rate_limit_headers import (
    RateLimitInfo,
    RateLimitSource,
    RateLimitState,
    parse_int,
    parse_rate_limit_headers,
)
from exchange_core.rate_limiter import IDLE_EVICTION_MS, PUBLIC, SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


class TestHeaderFamilies:

    def test_binance_weight_uses_spec_limit(self):
        info = parse_rate_limit_headers(
            "binance", {"X-MBX-USED-WEIGHT-1M": "120"}, {"requests": 1200, "period": 60000}
        )

        assert info.source is RateLimitSource.BINANCE_WEIGHT
        assert (info.limit, info.used, info.remaining) == (1200, 120, 1080)
        assert info.raw_headers["matched"] == "x-mbx-used-weight-1m"

    def test_binance_without_spec_limit(self):
        info = parse_rate_limit_headers("binance", {"x-sapi-used-ip-weight-1m": "7"})
        assert info.used == 7
        assert info.limit is None
        assert info.remaining is None

    def test_bybit(self):
        info = parse_rate_limit_headers("bybit", CaseInsensitiveDict({
            "X-Bapi-Limit": "120",
            "X-Bapi-Limit-Status": "100",
            "X-Bapi-Limit-Reset-Timestamp": "1700000000123",
        }))

        assert info.source is RateLimitSource.BYBIT_BAPI
        assert (info.limit, info.remaining, info.used) == (120, 100, 20)
        assert info.reset_at == 1700000000123

    def test_standard_reset_is_seconds(self):
        info = parse_rate_limit_headers("kraken", [
            ("X-RateLimit-Limit", "60"),
            ("X-RateLimit-Remaining", "59"),
            ("X-RateLimit-Reset", "1700000030"),
        ])

        assert info.source is RateLimitSource.STANDARD
        assert info.reset_at == 1700000030000
        assert info.used == 1

    def test_priority_order(self):
        headers = {
            "x-ratelimit-limit": "10",
            "x-bapi-limit": "20",
        }
        assert parse_rate_limit_headers("x", headers).source is RateLimitSource.BYBIT_BAPI

        headers["x-mbx-used-weight-1m"] = "1"
        assert parse_rate_limit_headers("x", headers).source is RateLimitSource.BINANCE_WEIGHT

    def test_no_match(self):
        assert parse_rate_limit_headers("x", {"content-type": "application/json"}) is None
        assert parse_rate_limit_headers("x", None) is None

    def test_repeated_header_first_value_wins(self):
        info = parse_rate_limit_headers("x", {"x-ratelimit-limit": ["100", "200"]})
        assert info.limit == 100

    def test_garbage_values_are_none(self):
        info = parse_rate_limit_headers("x", {"x-ratelimit-limit": "n/a", "x-ratelimit-remaining": "5"})
        assert info.limit is None
        assert info.remaining == 5
        assert info.used is None


class TestParseInt:

    def test_leading_integer(self):
        assert parse_int("12abc") == 12
        assert parse_int("-5") == -5
        assert parse_int("abc") is None
        assert parse_int(None) is None
        assert parse_int(30) == 30


class TestRateLimitInfo:

    def test_should_wait(self):
        low = RateLimitInfo("x", RateLimitSource.STANDARD, limit=100, remaining=5)
        high = RateLimitInfo("x", RateLimitSource.STANDARD, limit=100, remaining=50)
        unknown = RateLimitInfo("x", RateLimitSource.STANDARD)

        assert low.should_wait()
        assert not high.should_wait()
        assert high.should_wait(threshold=0.6)
        assert not unknown.should_wait()

    def test_wait_time(self):
        info = RateLimitInfo("x", RateLimitSource.BYBIT_BAPI, reset_at=10_500)
        assert info.wait_time_ms(now_ms=10_000) == 500
        assert info.wait_time_ms(now_ms=11_000) == 0
        assert RateLimitInfo("x", RateLimitSource.STANDARD).wait_time_ms() == 0

    def test_usage_percent(self):
        assert RateLimitInfo("x", RateLimitSource.STANDARD, limit=200, used=50).usage_percent() == 25.0
        assert RateLimitInfo("x", RateLimitSource.STANDARD, limit=200, remaining=150).usage_percent() == 25.0
        assert RateLimitInfo("x", RateLimitSource.STANDARD, used=5).usage_percent() is None


class TestRateLimitState:

    def test_latest_write_wins(self):
        state = RateLimitState()
        first = RateLimitInfo("bybit", RateLimitSource.BYBIT_BAPI, remaining=10)
        second = RateLimitInfo("bybit", RateLimitSource.BYBIT_BAPI, remaining=9)

        state.update(("bybit", PUBLIC), first)
        state.update(("bybit", PUBLIC), second)

        assert state.status("bybit") is second
        assert state.status("bybit", "some-key") is None

    def test_all_for_exchange(self):
        state = RateLimitState()
        info = RateLimitInfo("bybit", RateLimitSource.BYBIT_BAPI)
        state.update(("bybit", "k1"), info)
        state.update(("bybit", PUBLIC), info)
        state.update(("okx", "k1"), info)

        credentials = {credential for credential, _ in state.all("bybit")}
        assert credentials == {"k1", PUBLIC}

        state.clear()
        assert state.all("bybit") == []

    def test_remove_and_evict(self):
        state = RateLimitState()
        info = RateLimitInfo("bybit", RateLimitSource.BYBIT_BAPI)
        state.update(("bybit", "k1"), info)
        state.update(("bybit", "k2"), info)
        state.update(("bybit", PUBLIC), info)

        assert state.remove(("bybit", "k1")) is True
        assert state.remove(("bybit", "k1")) is False
        assert state.status("bybit", "k1") is None

        assert state.evict([("bybit", "k2"), ("okx", "missing"), ("bybit", "k2")]) == 1
        assert state.all("bybit") == [(PUBLIC, info)]

    def test_follows_limiter_bucket_eviction(self):
        clock = FakeClock(1_000_000)
        limiter = SlidingWindowRateLimiter(clock=clock)
        state = RateLimitState()
        limiter.add_eviction_listener(state.evict)
        info = RateLimitInfo("binance", RateLimitSource.BINANCE_WEIGHT, used=5)

        limiter.check(("binance", "idle"), {"requests": 10})
        state.update(("binance", "idle"), info)
        clock.now += IDLE_EVICTION_MS + 1
        limiter.check(("binance", "busy"), {"requests": 10})
        state.update(("binance", "busy"), info)

        assert limiter.cleanup() == 1
        assert state.status("binance", "idle") is None
        assert state.status("binance", "busy") is info

    def test_concurrent_writers(self):
        state = RateLimitState()

        def writer(n):
            for i in range(200):
                state.update(("x", f"k{n}-{i % 5}"), RateLimitInfo("x", RateLimitSource.STANDARD, remaining=i))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(state.all("x")) == 20
