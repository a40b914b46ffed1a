"""
============================================================================
Exchange Core - Normalized Error Taxonomy
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: None
Side Effects: None

Every failure that crosses the request pipeline boundary (circuit open,
transport failure, HTTP status error, body-level exchange error, HTML
access restriction) is returned as an ExchangeError value. Callers branch
on ExchangeError.type, never on exception classes.

Raised exceptions are reserved for configuration faults detected at load
time (ExchangeCoreError subclasses, each carrying an error_code).

ERROR CODES:
    - EXC-CFG-001: Pipeline configuration invalid
    - EXC-SIGN-001: Signing configuration invalid

============================================================================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================================
# Raised Exceptions (configuration faults only)
# ============================================================================

class ExchangeCoreError(Exception):
    """Base exception for exchange_core configuration faults."""

    error_code = "EXC-000"

    def __init__(self, message: str, error_code: Optional[str] = None):
        if error_code is not None:
            self.error_code = error_code
        self.message = message
        super().__init__(f"[{self.error_code}] {message}")


class SigningConfigurationError(ExchangeCoreError):
    """Raised when a signing config names an unknown pattern or bad custom module (EXC-SIGN-001)."""

    error_code = "EXC-SIGN-001"


# ============================================================================
# Error Types
# ============================================================================

class ErrorType(str, Enum):
    """Normalized error kinds."""
    RATE_LIMITED = "rate_limited"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_PARAMETERS = "invalid_parameters"
    ORDER_NOT_FOUND = "order_not_found"
    INVALID_ORDER = "invalid_order"
    MARKET_CLOSED = "market_closed"
    NETWORK_ERROR = "network_error"
    ACCESS_RESTRICTED = "access_restricted"
    NOT_SUPPORTED = "not_supported"
    CIRCUIT_OPEN = "circuit_open"
    EXCHANGE_ERROR = "exchange_error"


DEFAULT_MESSAGES: Dict[ErrorType, str] = {
    ErrorType.RATE_LIMITED: "Rate limit exceeded",
    ErrorType.INSUFFICIENT_BALANCE: "Insufficient balance",
    ErrorType.INVALID_CREDENTIALS: "Invalid API credentials",
    ErrorType.ORDER_NOT_FOUND: "Order not found",
    ErrorType.INVALID_ORDER: "Invalid order parameters",
    ErrorType.INVALID_PARAMETERS: "Invalid request parameters",
    ErrorType.MARKET_CLOSED: "Market is closed",
    ErrorType.NETWORK_ERROR: "Network error",
    ErrorType.ACCESS_RESTRICTED: "Access restricted - exchange returned HTML instead of JSON",
    ErrorType.NOT_SUPPORTED: "Method not supported by this exchange",
    ErrorType.CIRCUIT_OPEN: "Circuit breaker is open",
    ErrorType.EXCHANGE_ERROR: "Exchange error",
}

# True = retrying later may succeed, None = unknown
_RECOVERABLE: Dict[ErrorType, Optional[bool]] = {
    ErrorType.RATE_LIMITED: True,
    ErrorType.NETWORK_ERROR: True,
    ErrorType.MARKET_CLOSED: True,
    ErrorType.CIRCUIT_OPEN: True,
    ErrorType.EXCHANGE_ERROR: None,
}

_STATIC_HINTS: Dict[ErrorType, List[str]] = {
    ErrorType.INSUFFICIENT_BALANCE: [
        "Check account balance",
        "Verify you're using the correct account type (spot, margin, futures)",
    ],
    ErrorType.INVALID_CREDENTIALS: [
        "Verify API key and secret are correct",
        "Check if API key has required permissions",
        "Ensure API key is not expired or revoked",
    ],
    ErrorType.INVALID_PARAMETERS: [
        "Check parameter names and types match API documentation",
        "Verify required parameters are provided",
        "Check symbol format matches exchange requirements",
    ],
    ErrorType.ORDER_NOT_FOUND: [
        "Verify order ID is correct",
        "Order may have been canceled or filled",
        "Check if using correct account/subaccount",
    ],
    ErrorType.INVALID_ORDER: [
        "Check order parameters (price, amount, type)",
        "Verify price is within acceptable range",
        "Check minimum order size requirements",
    ],
    ErrorType.MARKET_CLOSED: [
        "Market is currently closed for trading",
        "Check exchange maintenance schedule",
        "Retry when market reopens",
    ],
    ErrorType.NETWORK_ERROR: [
        "Check network connectivity",
        "Retry with exponential backoff",
        "Verify exchange API is accessible",
    ],
    ErrorType.ACCESS_RESTRICTED: [
        "Exchange may be geo-blocked in your region",
        "Check if VPN or proxy is required",
        "Verify IP is not rate-limited or banned",
    ],
    ErrorType.NOT_SUPPORTED: [
        "This method is not available for this exchange",
        "Check exchange documentation for alternatives",
        "Consider using a different exchange for this feature",
    ],
    ErrorType.EXCHANGE_ERROR: [
        "Check exchange error code and message for details",
        "Consult exchange API documentation",
        "Contact exchange support if issue persists",
    ],
}


def is_recoverable(error_type: ErrorType) -> Optional[bool]:
    """Whether an error of this type may succeed on a later retry."""
    return _RECOVERABLE.get(ErrorType(error_type), False)


def hints_for_type(
    error_type: ErrorType,
    retry_after: Optional[int] = None,
    exchange: Optional[str] = None
) -> List[str]:
    """
    Generic guidance for an error type.

    Args:
        error_type: Normalized error kind
        retry_after: Milliseconds to wait (rate_limited only)
        exchange: Exchange id (circuit_open only)

    Returns:
        List of hint strings (may be empty)
    """
    error_type = ErrorType(error_type)

    if error_type is ErrorType.RATE_LIMITED:
        hints = ["Too many requests - implement exponential backoff"]
        if retry_after is not None:
            hints.insert(0, f"Wait {retry_after}ms before retrying")
        return hints

    if error_type is ErrorType.CIRCUIT_OPEN:
        hints = [
            "Circuit will auto-reset after configured timeout",
            "Check exchange status page for outages",
            "Use CircuitBreaker.reset() to manually reset if needed",
        ]
        if exchange:
            hints.insert(
                0, f"Exchange {exchange} has experienced multiple consecutive failures"
            )
        return hints

    return list(_STATIC_HINTS.get(error_type, []))


# ============================================================================
# Normalized Error
# ============================================================================

@dataclass
class ExchangeError:
    """
    Normalized pipeline error.

    Reliability Level: SOVEREIGN TIER
    Input Constraints: type must be an ErrorType
    Side Effects: None

    Attributes:
        type: Normalized error kind
        message: Human-readable message
        code: Exchange error code or HTTP status (if any)
        exchange: Exchange id
        retry_after: Milliseconds to wait before retrying (rate_limited)
        raw: Original payload for debugging
        hints: User hints followed by generated hints
        recoverable: True/False, or None when unknown
    """

    type: ErrorType
    message: str
    code: Any = None
    exchange: Optional[str] = None
    retry_after: Optional[int] = None
    raw: Any = None
    hints: List[str] = field(default_factory=list)
    recoverable: Optional[bool] = None

    @classmethod
    def build(
        cls,
        error_type: ErrorType,
        message: Optional[str] = None,
        code: Any = None,
        exchange: Optional[str] = None,
        retry_after: Optional[int] = None,
        raw: Any = None,
        hints: Optional[List[str]] = None
    ) -> "ExchangeError":
        """
        Build an error with default message, merged hints, and recoverability.

        User-supplied hints come first, generated hints follow.
        """
        error_type = ErrorType(error_type)
        return cls(
            type=error_type,
            message=message if message is not None else DEFAULT_MESSAGES[error_type],
            code=code,
            exchange=exchange,
            retry_after=retry_after,
            raw=raw,
            hints=list(hints or []) + hints_for_type(error_type, retry_after, exchange),
            recoverable=is_recoverable(error_type),
        )

    def __str__(self) -> str:
        prefix = f"[{self.exchange}] " if self.exchange else ""
        code = f" (code={self.code})" if self.code is not None else ""
        return f"{prefix}{self.type.value}: {self.message}{code}"


# ============================================================================
# Convenience Constructors
# ============================================================================

def rate_limited(**kwargs: Any) -> ExchangeError:
    return ExchangeError.build(ErrorType.RATE_LIMITED, **kwargs)


def invalid_credentials(**kwargs: Any) -> ExchangeError:
    return ExchangeError.build(ErrorType.INVALID_CREDENTIALS, **kwargs)


def network_error(**kwargs: Any) -> ExchangeError:
    return ExchangeError.build(ErrorType.NETWORK_ERROR, **kwargs)


def access_restricted(**kwargs: Any) -> ExchangeError:
    return ExchangeError.build(ErrorType.ACCESS_RESTRICTED, **kwargs)


def circuit_open(**kwargs: Any) -> ExchangeError:
    return ExchangeError.build(ErrorType.CIRCUIT_OPEN, **kwargs)


def not_supported(**kwargs: Any) -> ExchangeError:
    return ExchangeError.build(ErrorType.NOT_SUPPORTED, **kwargs)


def exchange_error(message: str, **kwargs: Any) -> ExchangeError:
    return ExchangeError.build(ErrorType.EXCHANGE_ERROR, message=message, **kwargs)
