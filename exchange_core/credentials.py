# ============================================================================
# Exchange Core v1.0.0
# Credentials - Immutable API Key Material
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Holds api_key / secret / passphrase for authenticated requests
#
# SOVEREIGN MANDATE:
#   - Credentials are immutable once constructed
#   - Secret and password NEVER appear in logs or repr()
#   - Missing required fields are returned as errors, not raised
#
# ============================================================================

import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


def redact_key(api_key: Optional[str]) -> str:
    """
    Redact an API key for logging purposes.

    Returns first 4 and last 4 characters only.

    Returns:
        Redacted API key string (e.g., "abc1...xyz9")
    """
    if api_key and len(api_key) > 8:
        return f"{api_key[:4]}...{api_key[-4:]}"
    return "[REDACTED]"


@dataclass(frozen=True)
class Credentials:
    """
    Exchange API credentials.

    Reliability Level: SOVEREIGN TIER
    Input Constraints: api_key and secret are strings (may be empty)
    Side Effects: None

    The passphrase (password) is only required by some signing patterns.
    Whether its absence is an error is decided by the pattern, not here.

    Example Usage:
        creds, error = Credentials.new(api_key="key", secret="secret")
        if error:
            raise SystemExit(error)
    """

    api_key: str
    secret: str = field(repr=False)
    password: Optional[str] = field(default=None, repr=False)
    sandbox: bool = False

    @classmethod
    def new(
        cls,
        api_key: Optional[str] = None,
        secret: Optional[str] = None,
        password: Optional[str] = None,
        sandbox: bool = False
    ) -> Tuple[Optional["Credentials"], Optional[str]]:
        """
        Build credentials, returning an error string instead of raising.

        Args:
            api_key: Exchange API key (required)
            secret: Exchange API secret (required)
            password: Optional passphrase (OKX, KuCoin, ...)
            sandbox: Route requests to the exchange testnet

        Returns:
            (Credentials, None) on success, (None, error message) otherwise
        """
        if api_key is None:
            return None, "api_key is required"
        if secret is None:
            return None, "secret is required"

        creds = cls(
            api_key=api_key,
            secret=secret,
            password=password,
            sandbox=bool(sandbox)
        )
        logger.debug(
            f"[EXC-CRED] Credentials constructed | "
            f"api_key={redact_key(api_key)} | "
            f"has_password={password is not None} | sandbox={sandbox}"
        )
        return creds, None

    @property
    def redacted_key(self) -> str:
        """Redacted api key suitable for log lines."""
        return redact_key(self.api_key)
