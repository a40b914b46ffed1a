"""
============================================================================
Exchange Core - HTTP Request Orchestrator
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: ExchangeSpec, HTTP method, path, params, credentials
Side Effects: Network I/O, rate-limit bookkeeping, breaker updates,
              telemetry events

PIPELINE (per request)
----------------------
1. Circuit breaker check      -> circuit_open (no quota consumed)
2. Rate limiter admission     -> blocks until (exchange, api_key|PUBLIC) fits
3. Base URL                   -> override, else spec URL (sandbox-aware)
4. Build request              -> public: query string + static headers
                                 private: sign, static headers, broker header
5. Transport call             -> timeout + safe retry policy
6. Rate-limit headers         -> RateLimitState (side channel)
7. Response handling          -> RequestResult (errors returned, never raised)

SECURITY
--------
Secrets are never logged. Request details and transport exception
details are logged only in debug mode, with signatures and keys
redacted.

Error Codes:
  - EXC-HTTP-001: Request raised an exception
  - EXC-HTTP-003: Transport error
  - EXC-HTTP-004: Request could not be signed

============================================================================
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import httpx
import requests
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout
from requests.structures import CaseInsensitiveDict

from exchange_core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitStatus
from exchange_core.config import PipelineConfig, get_pipeline_config
from exchange_core.credentials import Credentials, redact_key
from exchange_core.errors import (
    ErrorType,
    ExchangeError,
    circuit_open,
    exchange_error,
    network_error,
    rate_limited,
)
from exchange_core.exchange_spec import ExchangeSpec
from exchange_core.http.response import HTTPResponse, RequestResult, handle_response
from exchange_core.observability import telemetry
from exchange_core.rate_limit_headers import RateLimitInfo, RateLimitState, parse_int, parse_rate_limit_headers
from exchange_core.rate_limiter import (
    PUBLIC,
    ExponentialBackoff,
    RateLimitKey,
    SlidingWindowRateLimiter,
    build_rate_key,
)
from exchange_core.signing.base import Request, SigningConfig, SigningError
from exchange_core.signing.helpers import json_dumps, urlencode

# Configure module logger
logger = logging.getLogger(__name__)


JSON_CONTENT_TYPE = ("Content-Type", "application/json")

RETRYABLE_METHODS = frozenset(["GET", "HEAD"])
RETRYABLE_STATUSES = frozenset([408, 429, 500, 502, 503, 504])

DEBUG_BODY_LIMIT = 500

_BODY_METHODS = ("post", "put")
_SENSITIVE_HEADER_MARKERS = ("key", "sign", "pass", "auth", "token", "secret")
_SENSITIVE_PARAM = re.compile(
    r"(?i)((?:signature|sign|api_?key|token|passphrase)=)[^&\s\"']*"
)
_SENSITIVE_JSON = re.compile(r'(?i)("(?:signature|sign|api_?key|passphrase)"\s*:\s*")[^"]*')


class _SpecDefault:
    def __repr__(self) -> str:
        return "SPEC_DEFAULT"


# Marker for "use spec.rate_limits"; None disables rate limiting
SPEC_DEFAULT: Any = _SpecDefault()


# ============================================================================
# REDACTION
# ============================================================================

def redact_text(text: Optional[str]) -> Optional[str]:
    """Mask signature / key values in a URL, body or error message."""
    if not text:
        return text
    text = _SENSITIVE_PARAM.sub(r"\1[REDACTED]", text)
    return _SENSITIVE_JSON.sub(r"\1[REDACTED]", text)


def redact_headers(headers: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
    redacted = []
    for name, value in headers:
        lowered = name.lower()
        if any(marker in lowered for marker in _SENSITIVE_HEADER_MARKERS):
            if "key" in lowered and "sign" not in lowered:
                value = redact_key(value)
            else:
                value = "[REDACTED]"
        redacted.append((name, value))
    return redacted


# ============================================================================
# INTERNAL TYPES
# ============================================================================

@dataclass
class PreparedRequest:
    """Wire-ready request after signing and header injection."""
    method: str
    url: str
    headers: List[Tuple[str, str]]
    body: Optional[str] = None

    def header_dict(self) -> Dict[str, str]:
        """Headers for the transport; the first occurrence of a name wins."""
        merged: CaseInsensitiveDict = CaseInsensitiveDict()
        for name, value in self.headers:
            if name not in merged:
                merged[name] = value
        return dict(merged.items())


@dataclass
class RawResponse:
    """Transport-level response before normalization."""
    status: int
    headers: CaseInsensitiveDict
    text: str


@dataclass
class _Outcome:
    response: Optional[RawResponse] = None
    error: Optional[Exception] = None


# ============================================================================
# SHARED PIPELINE
# ============================================================================

class _PipelineCore:
    """
    Transport-independent pipeline stages shared by the sync and async clients.

    The limiter, breaker and rate-limit state are injected so one process
    can share them across clients (and tests can isolate them).
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        breaker: Optional[CircuitBreaker] = None,
        state: Optional[RateLimitState] = None,
        backoff: Optional[ExponentialBackoff] = None
    ) -> None:
        self.config = config or get_pipeline_config()
        self.limiter = limiter or SlidingWindowRateLimiter(
            cleanup_interval_ms=self.config.rate_limit_cleanup_interval_ms,
            max_age_ms=self.config.rate_limit_max_age_ms,
        )
        self.breaker = breaker or CircuitBreaker(
            CircuitBreakerConfig.from_pipeline_config(self.config)
        )
        self.state = state or RateLimitState()
        self.backoff = backoff or ExponentialBackoff()
        # Header snapshots follow the limiter's idle-bucket eviction
        self.limiter.add_eviction_listener(self.state.evict)

    # ------------------------------------------------------------------
    # Option resolution
    # ------------------------------------------------------------------

    def _max_attempts(self, retry: Any) -> int:
        if retry is None:
            retry = self.config.retry_policy
        if retry is False or retry == "none":
            return 1
        return self.config.max_retries + 1

    def _timeout_seconds(self, timeout: Optional[int]) -> float:
        return (timeout if timeout is not None else self.config.request_timeout_ms) / 1000.0

    def _debug_enabled(self, debug_request: bool) -> bool:
        return bool(debug_request or self.config.debug)

    @staticmethod
    def _retry_delay(backoff: ExponentialBackoff, attempt: int, headers: Optional[Mapping[str, str]] = None) -> float:
        if headers is not None:
            seconds = parse_int(CaseInsensitiveDict(headers).get("retry-after"))
            if seconds is not None and seconds >= 0:
                return float(seconds)
        return backoff.delay_for(attempt)

    # ------------------------------------------------------------------
    # Pre-transport stages
    # ------------------------------------------------------------------

    def _gate(self, spec: ExchangeSpec) -> Optional[RequestResult]:
        if self.breaker.check(spec.id) is CircuitStatus.BLOWN:
            return RequestResult.failure(circuit_open(exchange=spec.id))
        return None

    @staticmethod
    def _limit_for(spec: ExchangeSpec, rate_limit: Any) -> Any:
        return spec.rate_limits if rate_limit is SPEC_DEFAULT else rate_limit

    @staticmethod
    def _cost_rejected(spec: ExchangeSpec, cost: int) -> RequestResult:
        if cost < 1:
            return RequestResult.failure(ExchangeError.build(
                ErrorType.INVALID_PARAMETERS,
                message=f"Request cost {cost} must be a positive integer",
                exchange=spec.id,
            ))
        return RequestResult.failure(rate_limited(
            message=f"Request cost {cost} exceeds rate limit capacity",
            exchange=spec.id,
        ))

    def _signing_config(self, spec: ExchangeSpec) -> SigningConfig:
        signing_config = spec.signing_config
        if (
            "recv_window" not in signing_config.model_fields_set
            and signing_config.recv_window != self.config.recv_window_ms
        ):
            signing_config = signing_config.model_copy(update={"recv_window": self.config.recv_window_ms})
        return signing_config

    @staticmethod
    def _apply_http_config(headers: List[Tuple[str, str]], spec: ExchangeSpec) -> List[Tuple[str, str]]:
        http_config = spec.http_config
        if http_config is None:
            return headers
        headers = headers + [(str(k), str(v)) for k, v in http_config.headers.items()]
        if http_config.user_agent and not any(k.lower() == "user-agent" for k, _ in headers):
            headers.append(("User-Agent", http_config.user_agent))
        return headers

    def _apply_broker_header(
        self,
        headers: List[Tuple[str, str]],
        spec: ExchangeSpec,
        signing_config: SigningConfig
    ) -> List[Tuple[str, str]]:
        broker_config = signing_config.broker_config
        if not broker_config:
            return headers
        header_name = broker_config.get("header")
        option_key = broker_config.get("option_key")

        broker_id = self.config.broker_id
        if broker_id is None and option_key:
            broker_id = spec.options.get(option_key)

        if broker_id and header_name:
            return headers + [(header_name, str(broker_id))]
        return headers

    def _prepare(
        self,
        spec: ExchangeSpec,
        method: str,
        path: str,
        params: Dict[str, Any],
        credentials: Optional[Credentials],
        base_url: str
    ) -> Union[PreparedRequest, SigningError]:
        if credentials is None:
            query = urlencode(params)
            url = base_url + path + (f"?{query}" if query else "")
            headers = self._apply_http_config([JSON_CONTENT_TYPE], spec)
            return PreparedRequest(method=method.upper(), url=url, headers=headers)

        body = json_dumps(params) if method in _BODY_METHODS and params else None
        signing_config = self._signing_config(spec)
        signed = spec.signer.sign(
            Request(method=method, path=path, params=params, body=body),
            credentials,
            signing_config,
        )
        if isinstance(signed, SigningError):
            return signed

        headers = self._apply_http_config(list(signed.headers), spec)
        headers = self._apply_broker_header(headers, spec, signing_config)
        return PreparedRequest(
            method=signed.method.upper(),
            url=base_url + signed.url,
            headers=headers,
            body=signed.body,
        )

    def _log_debug_request(self, exchange: str, prepared: PreparedRequest, timeout_s: float, attempts: int) -> None:
        body = redact_text(prepared.body)
        if body and len(body) > DEBUG_BODY_LIMIT:
            body = body[:DEBUG_BODY_LIMIT] + "..."
        logger.info(
            f"[EXC-HTTP] Request debug | exchange={exchange} | method={prepared.method} | "
            f"url={redact_text(prepared.url)} | headers={redact_headers(prepared.headers)} | "
            f"body={body} | timeout_s={timeout_s} | attempts={attempts}"
        )

    # ------------------------------------------------------------------
    # Post-transport stages
    # ------------------------------------------------------------------

    def _signing_failed(
        self,
        spec: ExchangeSpec,
        method: str,
        path: str,
        started: int,
        error: SigningError
    ) -> RequestResult:
        logger.warning(
            f"[EXC-HTTP-004] Request could not be signed | exchange={spec.id} | "
            f"path={path} | reason={error.reason}"
        )
        telemetry.emit_request_exception(spec.id, method, path, started, "signing", error.reason)
        return RequestResult.failure(ExchangeError.build(
            ErrorType.INVALID_CREDENTIALS,
            message=f"Signing failed: {error.message}",
            code=error.reason,
            exchange=spec.id,
            raw={"reason": error.reason, "pattern": error.pattern},
        ))

    def _complete(
        self,
        spec: ExchangeSpec,
        method: str,
        path: str,
        started: int,
        rate_key: RateLimitKey,
        outcome: _Outcome,
        debug: bool
    ) -> RequestResult:
        exchange = spec.id
        self.breaker.record_result(exchange, outcome.error if outcome.error is not None else outcome.response)

        if outcome.error is not None:
            reason = redact_text(f"{type(outcome.error).__name__}: {outcome.error}")
            if debug:
                logger.warning(
                    f"[EXC-HTTP-003] Transport error | exchange={exchange} | "
                    f"method={method} | path={path} | error={reason}"
                )
            telemetry.emit_request_exception(exchange, method, path, started, "transport", reason)
            return RequestResult.failure(network_error(
                message=f"Transport error: {reason}",
                exchange=exchange,
            ))

        raw = outcome.response
        info = parse_rate_limit_headers(exchange, raw.headers, spec.rate_limits)
        if info is not None:
            self.state.update(rate_key, info)
        telemetry.emit_request_stop(exchange, method, path, started, raw.status, info)
        return handle_response(raw.status, raw.headers, raw.text, spec)

    def _exception(
        self,
        spec: ExchangeSpec,
        method: str,
        path: str,
        started: int,
        exc: Exception,
        debug: bool
    ) -> RequestResult:
        exchange = spec.id
        if debug:
            logger.error(
                f"[EXC-HTTP-001] Request exception | exchange={exchange} | "
                f"method={method} | path={path}",
                exc_info=exc,
            )
        telemetry.emit_request_exception(exchange, method, path, started, "exception", type(exc).__name__)
        self.breaker.record_failure(exchange)
        return RequestResult.failure(network_error(
            message=f"Exception: {redact_text(str(exc))}",
            exchange=exchange,
        ))

    def rate_limit_status(self, exchange: str, credential: Any = PUBLIC) -> Optional[RateLimitInfo]:
        """Latest quota snapshot for (exchange, api_key | PUBLIC)."""
        return self.state.status(exchange, credential)


# ============================================================================
# SYNC CLIENT (requests)
# ============================================================================

class ExchangeHTTPClient(_PipelineCore):
    """
    Synchronous request orchestrator over a shared requests.Session.

    Reliability Level: SOVEREIGN TIER
    Rate Limiting: Sliding window per (exchange, api_key | PUBLIC)
    Retry Policy: GET/HEAD only, on 408/429/5xx and timeouts

    Example Usage:
        with ExchangeHTTPClient() as client:
            result = client.request(spec, "get", "/api/v3/time")
            if result.ok:
                print(result.response.body)
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        breaker: Optional[CircuitBreaker] = None,
        state: Optional[RateLimitState] = None,
        session: Optional[requests.Session] = None,
        backoff: Optional[ExponentialBackoff] = None,
        sleep: Callable[[float], None] = time.sleep
    ) -> None:
        super().__init__(config, limiter, breaker, state, backoff)
        self._session = session or requests.Session()
        self._sleep = sleep

        logger.info(
            f"[EXC-HTTP] ExchangeHTTPClient initialized | "
            f"retry_policy={self.config.retry_policy} | "
            f"timeout_ms={self.config.request_timeout_ms}"
        )

    def request(
        self,
        spec: ExchangeSpec,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        credentials: Optional[Credentials] = None,
        timeout: Optional[int] = None,
        retry: Any = None,
        cost: int = 1,
        rate_limit: Any = SPEC_DEFAULT,
        base_url: Optional[str] = None,
        debug_request: bool = False
    ) -> RequestResult:
        """
        Run one request through the pipeline.

        Args:
            spec: Exchange spec
            method: HTTP method (any case)
            path: Endpoint path, appended to the base URL
            params: Query params (GET/DELETE) or JSON body (POST/PUT)
            credentials: Sign the request when present
            timeout: Transport timeout in ms (default from config)
            retry: None (config policy), False / "none", True / "safe_transient"
            cost: Rate-limit weight of the endpoint
            rate_limit: {requests, period} override; None disables
            base_url: Override the spec URL (other API sections)
            debug_request: Log the outgoing request (redacted)

        Returns:
            RequestResult with either response or error set
        """
        method = method.lower()
        params = dict(params or {})

        rejected = self._gate(spec)
        if rejected is not None:
            return rejected

        rate_key = build_rate_key(spec.id, credentials)
        if not self.limiter.wait(rate_key, self._limit_for(spec, rate_limit), cost):
            return self._cost_rejected(spec, cost)

        url = base_url or spec.api_url(bool(credentials and credentials.sandbox))
        if not url:
            return RequestResult.failure(exchange_error("No API URL configured", exchange=spec.id))

        debug = self._debug_enabled(debug_request)
        started = telemetry.emit_request_start(spec.id, method, path)

        try:
            prepared = self._prepare(spec, method, path, params, credentials, url)
            if isinstance(prepared, SigningError):
                return self._signing_failed(spec, method, path, started, prepared)

            timeout_s = self._timeout_seconds(timeout)
            attempts = self._max_attempts(retry)
            if debug:
                self._log_debug_request(spec.id, prepared, timeout_s, attempts)

            outcome = self._send(prepared, timeout_s, attempts)
        except Exception as e:
            return self._exception(spec, method, path, started, e, debug)

        return self._complete(spec, method, path, started, rate_key, outcome, debug)

    def _send(self, prepared: PreparedRequest, timeout_s: float, attempts: int) -> _Outcome:
        """
        Execute the transport call with the safe retry policy.

        Only requests.RequestException is captured; anything else propagates
        to the exception stage.
        """
        retryable = prepared.method in RETRYABLE_METHODS
        headers = prepared.header_dict()

        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                response = self._session.request(
                    prepared.method,
                    prepared.url,
                    headers=headers,
                    data=prepared.body,
                    timeout=timeout_s,
                )
            except (Timeout, RequestsConnectionError) as e:
                if retryable and not last:
                    delay = self._retry_delay(self.backoff, attempt)
                    logger.warning(
                        f"[EXC-HTTP] {type(e).__name__} - retrying | "
                        f"attempt={attempt + 1}/{attempts} | backoff={delay:.1f}s"
                    )
                    self._sleep(delay)
                    continue
                return _Outcome(error=e)
            except requests.RequestException as e:
                return _Outcome(error=e)

            if retryable and not last and response.status_code in RETRYABLE_STATUSES:
                delay = self._retry_delay(self.backoff, attempt, response.headers)
                logger.warning(
                    f"[EXC-HTTP] HTTP {response.status_code} - retrying | "
                    f"attempt={attempt + 1}/{attempts} | backoff={delay:.1f}s"
                )
                response.close()
                self._sleep(delay)
                continue

            return _Outcome(response=RawResponse(
                status=response.status_code,
                headers=CaseInsensitiveDict(response.headers),
                text=response.text,
            ))

        # attempts >= 1, so the loop always returns
        raise RuntimeError("retry loop exited without a result")

    def raw_request(
        self,
        method: str,
        url: str,
        headers: Optional[List[Tuple[str, str]]] = None,
        body: Optional[str] = None,
        timeout: Optional[int] = None
    ) -> HTTPResponse:
        """
        Unsigned, un-normalized request for debugging. No retries.

        Raises:
            requests.RequestException: On transport failure
        """
        prepared = PreparedRequest(method=method.upper(), url=url, headers=list(headers or []), body=body)
        response = self._session.request(
            prepared.method,
            url,
            headers=prepared.header_dict(),
            data=body,
            timeout=self._timeout_seconds(timeout),
        )
        return HTTPResponse(
            status=response.status_code,
            headers=CaseInsensitiveDict(response.headers),
            body=response.text,
        )

    def close(self) -> None:
        """Close HTTP session."""
        self._session.close()
        logger.debug("[EXC-HTTP] ExchangeHTTPClient closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


# ============================================================================
# ASYNC CLIENT (httpx)
# ============================================================================

class AsyncExchangeHTTPClient(_PipelineCore):
    """
    Asynchronous request orchestrator over a shared httpx.AsyncClient.

    Same contract as ExchangeHTTPClient.request(); rate-limit waits and
    retries suspend with asyncio.sleep.

    Example Usage:
        async with AsyncExchangeHTTPClient() as client:
            result = await client.request(spec, "get", "/v5/market/time")
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        breaker: Optional[CircuitBreaker] = None,
        state: Optional[RateLimitState] = None,
        client: Optional[httpx.AsyncClient] = None,
        backoff: Optional[ExponentialBackoff] = None,
        sleep: Callable[[float], Any] = asyncio.sleep
    ) -> None:
        super().__init__(config, limiter, breaker, state, backoff)
        self._client = client or httpx.AsyncClient()
        self._sleep = sleep

    async def request(
        self,
        spec: ExchangeSpec,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        credentials: Optional[Credentials] = None,
        timeout: Optional[int] = None,
        retry: Any = None,
        cost: int = 1,
        rate_limit: Any = SPEC_DEFAULT,
        base_url: Optional[str] = None,
        debug_request: bool = False
    ) -> RequestResult:
        """See ExchangeHTTPClient.request()."""
        method = method.lower()
        params = dict(params or {})

        rejected = self._gate(spec)
        if rejected is not None:
            return rejected

        rate_key = build_rate_key(spec.id, credentials)
        if not await self.limiter.async_wait(rate_key, self._limit_for(spec, rate_limit), cost):
            return self._cost_rejected(spec, cost)

        url = base_url or spec.api_url(bool(credentials and credentials.sandbox))
        if not url:
            return RequestResult.failure(exchange_error("No API URL configured", exchange=spec.id))

        debug = self._debug_enabled(debug_request)
        started = telemetry.emit_request_start(spec.id, method, path)

        try:
            prepared = self._prepare(spec, method, path, params, credentials, url)
            if isinstance(prepared, SigningError):
                return self._signing_failed(spec, method, path, started, prepared)

            timeout_s = self._timeout_seconds(timeout)
            attempts = self._max_attempts(retry)
            if debug:
                self._log_debug_request(spec.id, prepared, timeout_s, attempts)

            outcome = await self._send(prepared, timeout_s, attempts)
        except Exception as e:
            return self._exception(spec, method, path, started, e, debug)

        return self._complete(spec, method, path, started, rate_key, outcome, debug)

    async def _send(self, prepared: PreparedRequest, timeout_s: float, attempts: int) -> _Outcome:
        retryable = prepared.method in RETRYABLE_METHODS
        headers = prepared.header_dict()

        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                response = await self._client.request(
                    prepared.method,
                    prepared.url,
                    headers=headers,
                    content=prepared.body,
                    timeout=timeout_s,
                )
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if retryable and not last:
                    delay = self._retry_delay(self.backoff, attempt)
                    logger.warning(
                        f"[EXC-HTTP] {type(e).__name__} - retrying | "
                        f"attempt={attempt + 1}/{attempts} | backoff={delay:.1f}s"
                    )
                    await self._sleep(delay)
                    continue
                return _Outcome(error=e)
            except httpx.TransportError as e:
                return _Outcome(error=e)

            if retryable and not last and response.status_code in RETRYABLE_STATUSES:
                delay = self._retry_delay(self.backoff, attempt, response.headers)
                logger.warning(
                    f"[EXC-HTTP] HTTP {response.status_code} - retrying | "
                    f"attempt={attempt + 1}/{attempts} | backoff={delay:.1f}s"
                )
                await response.aclose()
                await self._sleep(delay)
                continue

            return _Outcome(response=RawResponse(
                status=response.status_code,
                headers=CaseInsensitiveDict(response.headers.items()),
                text=response.text,
            ))

        raise RuntimeError("retry loop exited without a result")

    async def raw_request(
        self,
        method: str,
        url: str,
        headers: Optional[List[Tuple[str, str]]] = None,
        body: Optional[str] = None,
        timeout: Optional[int] = None
    ) -> HTTPResponse:
        """
        Unsigned, un-normalized request for debugging. No retries.

        Raises:
            httpx.HTTPError: On transport failure
        """
        prepared = PreparedRequest(method=method.upper(), url=url, headers=list(headers or []), body=body)
        response = await self._client.request(
            prepared.method,
            url,
            headers=prepared.header_dict(),
            content=body,
            timeout=self._timeout_seconds(timeout),
        )
        return HTTPResponse(
            status=response.status_code,
            headers=CaseInsensitiveDict(response.headers.items()),
            body=response.text,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
