"""
============================================================================
Exchange Core - Pipeline Configuration
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Traceability: Configuration is logged on load (never secrets)

This module provides configuration management for the request pipeline:
- Environment variable parsing with type safety (.env supported)
- Default values for optional configuration
- Validation of configuration ranges
- Fail-closed behavior on invalid config (EXC-CFG-001)

ENVIRONMENT VARIABLES:
    - EXCHANGE_RECV_WINDOW_MS: Signed request validity window (default: 5000)
    - EXCHANGE_REQUEST_TIMEOUT_MS: Per-request transport timeout (default: 30000)
    - EXCHANGE_RATE_LIMIT_CLEANUP_INTERVAL_MS: Limiter sweep interval (default: 60000)
    - EXCHANGE_RATE_LIMIT_MAX_AGE_MS: Limiter entry max age (default: 60000)
    - EXCHANGE_RETRY_POLICY: "safe_transient" or "none" (default: safe_transient)
    - EXCHANGE_MAX_RETRIES: Retries after the first attempt (default: 3)
    - EXCHANGE_CIRCUIT_BREAKER_ENABLED: Enable circuit breaker (default: true)
    - EXCHANGE_CIRCUIT_MAX_FAILURES: Failures before opening (default: 5)
    - EXCHANGE_CIRCUIT_WINDOW_MS: Failure counting window (default: 10000)
    - EXCHANGE_CIRCUIT_RESET_MS: Open-to-closed cool-down (default: 15000)
    - EXCHANGE_BROKER_ID: Global broker attribution override (default: unset)
    - EXCHANGE_DEBUG: Log request/exception details (default: false)

ERROR CODES:
    - EXC-CFG-001: Configuration invalid

============================================================================
"""

from typing import Optional, List
from dataclasses import dataclass
import logging
import os

from dotenv import load_dotenv

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class PipelineConfigErrorCode:
    """Configuration-specific error codes for audit logging."""
    CONFIG_INVALID = "EXC-CFG-001"


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_RECV_WINDOW_MS = 5000
DEFAULT_REQUEST_TIMEOUT_MS = 30000
DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_MS = 60000
DEFAULT_RATE_LIMIT_MAX_AGE_MS = 60000
DEFAULT_RETRY_POLICY = "safe_transient"
DEFAULT_MAX_RETRIES = 3
DEFAULT_CIRCUIT_BREAKER_ENABLED = True
DEFAULT_CIRCUIT_MAX_FAILURES = 5
DEFAULT_CIRCUIT_WINDOW_MS = 10000
DEFAULT_CIRCUIT_RESET_MS = 15000

VALID_RETRY_POLICIES = frozenset(["safe_transient", "none"])


# =============================================================================
# Configuration Validation Exception
# =============================================================================

class PipelineConfigurationError(Exception):
    """
    Exception raised when pipeline configuration is invalid.

    Raised during startup, enforcing fail-closed behavior per EXC-CFG-001.
    """

    def __init__(
        self,
        message: str,
        error_code: str = PipelineConfigErrorCode.CONFIG_INVALID
    ):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower().strip() in ("true", "1", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(
            f"[PIPELINE-CONFIG] Invalid {name} value: {raw}, "
            f"using default: {default}"
        )
        return default


# =============================================================================
# PipelineConfig Class
# =============================================================================

@dataclass
class PipelineConfig:
    """
    Request pipeline configuration.

    ============================================================================
    CONFIGURATION PARAMETERS:
    ============================================================================
    - recv_window_ms: Signed request validity window (default: 5000)
    - request_timeout_ms: Transport timeout (default: 30000)
    - rate_limit_cleanup_interval_ms: Limiter sweep interval (default: 60000)
    - rate_limit_max_age_ms: Limiter entry max age (default: 60000)
    - retry_policy: "safe_transient" or "none"
    - max_retries: Retries after the first attempt (default: 3)
    - circuit_breaker_enabled / circuit_max_failures /
      circuit_window_ms / circuit_reset_ms: Circuit breaker tuning
    - broker_id: Optional global broker attribution override
    - debug: Log request and exception details
    ============================================================================

    Reliability Level: L6 Critical (Sovereign Tier)
    Input Constraints: All durations positive
    Side Effects: Logs configuration on load
    """

    recv_window_ms: int = DEFAULT_RECV_WINDOW_MS
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    rate_limit_cleanup_interval_ms: int = DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_MS
    rate_limit_max_age_ms: int = DEFAULT_RATE_LIMIT_MAX_AGE_MS
    retry_policy: str = DEFAULT_RETRY_POLICY
    max_retries: int = DEFAULT_MAX_RETRIES
    circuit_breaker_enabled: bool = DEFAULT_CIRCUIT_BREAKER_ENABLED
    circuit_max_failures: int = DEFAULT_CIRCUIT_MAX_FAILURES
    circuit_window_ms: int = DEFAULT_CIRCUIT_WINDOW_MS
    circuit_reset_ms: int = DEFAULT_CIRCUIT_RESET_MS
    broker_id: Optional[str] = None
    debug: bool = False

    def validate(self) -> None:
        """
        Validate configuration ranges.

        Raises:
            PipelineConfigurationError: If any value is out of range
        """
        errors: List[str] = []

        for name in (
            "recv_window_ms",
            "request_timeout_ms",
            "rate_limit_cleanup_interval_ms",
            "rate_limit_max_age_ms",
            "circuit_window_ms",
            "circuit_reset_ms",
        ):
            value = getattr(self, name)
            if value <= 0:
                errors.append(f"{name} must be positive, got: {value}")

        if self.max_retries < 0:
            errors.append(f"max_retries must be non-negative, got: {self.max_retries}")

        # 0 disables the breaker
        if self.circuit_max_failures < 0:
            errors.append(
                f"circuit_max_failures must be non-negative, got: {self.circuit_max_failures}"
            )

        if self.retry_policy not in VALID_RETRY_POLICIES:
            errors.append(
                f"retry_policy must be one of {sorted(VALID_RETRY_POLICIES)}, "
                f"got: {self.retry_policy}"
            )

        if errors:
            error_msg = "Pipeline configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{PipelineConfigErrorCode.CONFIG_INVALID}] {error_msg}")
            raise PipelineConfigurationError(error_msg)

        logger.info(
            f"[PIPELINE-CONFIG] Configuration validated | "
            f"request_timeout_ms={self.request_timeout_ms} | "
            f"retry_policy={self.retry_policy} | "
            f"circuit_breaker_enabled={self.circuit_breaker_enabled} | "
            f"debug={self.debug}"
        )

    @classmethod
    def from_environment(cls, validate: bool = True) -> "PipelineConfig":
        """
        Load configuration from environment variables (and a .env file).

        Args:
            validate: Whether to validate configuration after loading

        Returns:
            PipelineConfig instance with values from environment

        Raises:
            PipelineConfigurationError: If configuration is invalid (EXC-CFG-001)
        """
        load_dotenv()

        broker_id = os.environ.get("EXCHANGE_BROKER_ID", "").strip() or None

        config = cls(
            recv_window_ms=_env_int("EXCHANGE_RECV_WINDOW_MS", DEFAULT_RECV_WINDOW_MS),
            request_timeout_ms=_env_int(
                "EXCHANGE_REQUEST_TIMEOUT_MS", DEFAULT_REQUEST_TIMEOUT_MS
            ),
            rate_limit_cleanup_interval_ms=_env_int(
                "EXCHANGE_RATE_LIMIT_CLEANUP_INTERVAL_MS",
                DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_MS
            ),
            rate_limit_max_age_ms=_env_int(
                "EXCHANGE_RATE_LIMIT_MAX_AGE_MS", DEFAULT_RATE_LIMIT_MAX_AGE_MS
            ),
            retry_policy=os.environ.get(
                "EXCHANGE_RETRY_POLICY", DEFAULT_RETRY_POLICY
            ).strip().lower(),
            max_retries=_env_int("EXCHANGE_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            circuit_breaker_enabled=_env_bool(
                "EXCHANGE_CIRCUIT_BREAKER_ENABLED", DEFAULT_CIRCUIT_BREAKER_ENABLED
            ),
            circuit_max_failures=_env_int(
                "EXCHANGE_CIRCUIT_MAX_FAILURES", DEFAULT_CIRCUIT_MAX_FAILURES
            ),
            circuit_window_ms=_env_int(
                "EXCHANGE_CIRCUIT_WINDOW_MS", DEFAULT_CIRCUIT_WINDOW_MS
            ),
            circuit_reset_ms=_env_int(
                "EXCHANGE_CIRCUIT_RESET_MS", DEFAULT_CIRCUIT_RESET_MS
            ),
            broker_id=broker_id,
            debug=_env_bool("EXCHANGE_DEBUG", False),
        )

        logger.info(
            f"[PIPELINE-CONFIG] Loading configuration from environment | "
            f"EXCHANGE_REQUEST_TIMEOUT_MS={config.request_timeout_ms} | "
            f"EXCHANGE_RETRY_POLICY={config.retry_policy} | "
            f"EXCHANGE_CIRCUIT_MAX_FAILURES={config.circuit_max_failures} | "
            f"EXCHANGE_BROKER_ID_SET={broker_id is not None}"
        )

        if validate:
            config.validate()

        return config

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for logging/serialization."""
        return {
            "recv_window_ms": self.recv_window_ms,
            "request_timeout_ms": self.request_timeout_ms,
            "rate_limit_cleanup_interval_ms": self.rate_limit_cleanup_interval_ms,
            "rate_limit_max_age_ms": self.rate_limit_max_age_ms,
            "retry_policy": self.retry_policy,
            "max_retries": self.max_retries,
            "circuit_breaker_enabled": self.circuit_breaker_enabled,
            "circuit_max_failures": self.circuit_max_failures,
            "circuit_window_ms": self.circuit_window_ms,
            "circuit_reset_ms": self.circuit_reset_ms,
            "broker_id": self.broker_id,
            "debug": self.debug,
        }


# =============================================================================
# Global Configuration Instance
# =============================================================================

_pipeline_config: Optional[PipelineConfig] = None


def get_pipeline_config(validate: bool = True) -> PipelineConfig:
    """
    Get the process-wide pipeline configuration (lazily loaded).

    Raises:
        PipelineConfigurationError: If configuration is invalid
    """
    global _pipeline_config

    if _pipeline_config is None:
        _pipeline_config = PipelineConfig.from_environment(validate=validate)

    return _pipeline_config


def reset_pipeline_config() -> None:
    """Reset the global configuration instance (for tests)."""
    global _pipeline_config
    _pipeline_config = None
