# ============================================================================
# Exchange Core v1.0.0
# Exchange Request Pipeline - Signing, Rate Limiting, Circuit Breaking
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Turns "call endpoint E with params P" into an authenticated,
#          rate-limited, retried and normalized HTTP exchange
#
# Components:
#   - Credentials: Immutable API key material (secrets never logged)
#   - ExchangeSpec: Per-exchange URLs, signing, limits and error tables
#   - Signing Engine: 8 HMAC patterns plus validated custom signers
#   - WebSocket auth: Auth message builders, two-phase patterns
#   - SlidingWindowRateLimiter: Weighted per-(exchange, key) windows
#   - RateLimitState: Quota snapshots parsed from response headers
#   - CircuitBreaker: Per-exchange fast-fail on transport failures
#   - ExchangeHTTPClient / AsyncExchangeHTTPClient: The orchestrator
#
# SOVEREIGN MANDATE:
#   - Pipeline errors are returned as ExchangeError, never raised
#   - Configuration errors are raised at load time with an error code
#   - No global lock across exchanges
#
# ============================================================================

from exchange_core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitStatus
from exchange_core.config import (
    PipelineConfig,
    PipelineConfigurationError,
    get_pipeline_config,
    reset_pipeline_config,
)
from exchange_core.credentials import Credentials
from exchange_core.errors import (
    ErrorType,
    ExchangeCoreError,
    ExchangeError,
    SigningConfigurationError,
)
from exchange_core.exchange_spec import ExchangeSpec, ResponseErrorRule, ResponseErrorType
from exchange_core.http import (
    AsyncExchangeHTTPClient,
    ExchangeHTTPClient,
    HTTPResponse,
    RequestResult,
)
from exchange_core.rate_limit_headers import RateLimitInfo, RateLimitState, parse_rate_limit_headers
from exchange_core.rate_limiter import (
    PUBLIC,
    ExponentialBackoff,
    RateLimitConfig,
    RateLimitDecision,
    SlidingWindowRateLimiter,
    build_rate_key,
)
from exchange_core.signing import (
    Request,
    SignedRequest,
    SigningConfig,
    SigningError,
    SigningPattern,
    resolve_signer,
    sign,
)

__version__ = "1.0.0"

__all__ = [
    'CircuitBreaker',
    'CircuitBreakerConfig',
    'CircuitStatus',
    'PipelineConfig',
    'PipelineConfigurationError',
    'get_pipeline_config',
    'reset_pipeline_config',
    'Credentials',
    'ErrorType',
    'ExchangeCoreError',
    'ExchangeError',
    'SigningConfigurationError',
    'ExchangeSpec',
    'ResponseErrorRule',
    'ResponseErrorType',
    'AsyncExchangeHTTPClient',
    'ExchangeHTTPClient',
    'HTTPResponse',
    'RequestResult',
    'RateLimitInfo',
    'RateLimitState',
    'parse_rate_limit_headers',
    'PUBLIC',
    'ExponentialBackoff',
    'RateLimitConfig',
    'RateLimitDecision',
    'SlidingWindowRateLimiter',
    'build_rate_key',
    'Request',
    'SignedRequest',
    'SigningConfig',
    'SigningError',
    'SigningPattern',
    'resolve_signer',
    'sign',
]
