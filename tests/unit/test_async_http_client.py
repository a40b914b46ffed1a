"""
Unit Tests - Asynchronous HTTP Orchestrator

AsyncExchangeHTTPClient over httpx.MockTransport: same contract as the
synchronous client, with rate-limit waits and retries suspended.
"""

import json

import httpx
import pytest

from exchange_core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitStatus
from exchange_core.config import PipelineConfig
from exchange_core.credentials import Credentials
from exchange_core.errors import ErrorType
from exchange_core.http.client import AsyncExchangeHTTPClient
from exchange_core.rate_limiter import ExponentialBackoff


def build_client(handler, sleeps, breaker=None):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return AsyncExchangeHTTPClient(
        config=PipelineConfig(),
        breaker=breaker or CircuitBreaker(CircuitBreakerConfig(max_failures=2)),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        backoff=ExponentialBackoff(jitter=0),
        sleep=fake_sleep,
    )


class TestAsyncRequests:

    @pytest.mark.asyncio
    async def test_public_get(self, bybit_spec):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"retCode": 0, "result": {"time": 1}})

        sleeps = []
        async with build_client(handler, sleeps) as client:
            result = await client.request(bybit_spec, "get", "/v5/market/time", params={"b": 2, "a": 1})

        assert result.ok
        assert result.response.body["result"] == {"time": 1}
        assert str(seen[0].url) == "https://api.bybit.test/v5/market/time?a=1&b=2"

    @pytest.mark.asyncio
    async def test_signed_post_body(self, bybit_spec, credentials):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"retCode": 0, "result": {}})

        async with build_client(handler, []) as client:
            await client.request(bybit_spec, "post", "/v5/order/create", params={"qty": "1"}, credentials=credentials)

        request = seen[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"qty": "1"}
        assert request.headers["X-BAPI-API-KEY"] == credentials.api_key
        assert "X-BAPI-SIGN" in request.headers

    @pytest.mark.asyncio
    async def test_body_level_error(self, bybit_spec):
        def handler(request):
            return httpx.Response(200, json={"retCode": 10003, "retMsg": "Invalid api key"})

        async with build_client(handler, []) as client:
            result = await client.request(bybit_spec, "get", "/v5/account/info")

        assert result.error.type is ErrorType.INVALID_CREDENTIALS


class TestAsyncRetries:

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, bybit_spec):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={"retCode": 0})

        sleeps = []
        async with build_client(handler, sleeps) as client:
            result = await client.request(bybit_spec, "get", "/p")

        assert result.ok
        assert len(calls) == 2
        assert sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_429_retry_after_then_success(self, bybit_spec):
        responses = [
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(200, json={"retCode": 0}),
        ]

        def handler(request):
            return responses.pop(0)

        sleeps = []
        async with build_client(handler, sleeps) as client:
            result = await client.request(bybit_spec, "get", "/p")

        assert result.ok
        assert sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_connect_errors_open_circuit(self, bybit_spec):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        breaker = CircuitBreaker(CircuitBreakerConfig(max_failures=2))
        async with build_client(handler, [], breaker) as client:
            first = await client.request(bybit_spec, "post", "/p")
            await client.request(bybit_spec, "post", "/p")
            third = await client.request(bybit_spec, "post", "/p")

        assert first.error.type is ErrorType.NETWORK_ERROR
        assert first.error.message.startswith("Transport error: ConnectError")
        assert breaker.status("bybit") is CircuitStatus.BLOWN
        assert third.error.type is ErrorType.CIRCUIT_OPEN

    @pytest.mark.asyncio
    async def test_cost_above_capacity(self, bybit_spec):
        async with build_client(lambda request: httpx.Response(200), []) as client:
            result = await client.request(bybit_spec, "get", "/p", cost=500)

        assert result.error.type is ErrorType.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_negative_cost_is_invalid(self, bybit_spec):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        async with build_client(handler, []) as client:
            result = await client.request(bybit_spec, "get", "/p", cost=-1)

        assert result.error.type is ErrorType.INVALID_PARAMETERS
        assert seen == []

    @pytest.mark.asyncio
    async def test_retries_exhausted_after_max_retries(self, bybit_spec):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, text="Service Unavailable")

        sleeps = []
        async with build_client(handler, sleeps) as client:
            result = await client.request(bybit_spec, "get", "/p")

        assert len(calls) == 4
        assert sleeps == [1.0, 2.0, 4.0]
        assert result.error.code == 503


class TestAsyncSideChannels:

    @pytest.mark.asyncio
    async def test_raw_request(self):
        def handler(request):
            assert request.headers["X-Test"] == "1"
            return httpx.Response(418, text="teapot", headers={"X-Id": "9"})

        async with build_client(handler, []) as client:
            response = await client.raw_request("get", "https://x.test/p", headers=[("X-Test", "1")])

        assert response.status == 418
        assert response.body == "teapot"
        assert response.headers["x-id"] == "9"

    @pytest.mark.asyncio
    async def test_public_request_updates_public_quota(self, bybit_spec):
        def handler(request):
            return httpx.Response(200, json={"retCode": 0}, headers={"X-RateLimit-Limit": "10", "X-RateLimit-Remaining": "4"})

        async with build_client(handler, []) as client:
            await client.request(bybit_spec, "get", "/p")
            assert client.rate_limit_status("bybit").remaining == 4
            assert client.rate_limit_status("bybit", Credentials("k", "s").api_key) is None
