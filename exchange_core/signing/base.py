# ============================================================================
# Exchange Core v1.0.0
# Signing Types - Request / SignedRequest / SigningConfig
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Shared value types for the signing engine
#
# SOVEREIGN MANDATE:
#   - SigningConfig is validated once at load time and frozen thereafter
#   - Signers never raise on bad credentials; they return SigningError
#
# ============================================================================

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from exchange_core.credentials import Credentials


class SigningPattern(str, Enum):
    """Closed set of REST signing patterns."""
    HMAC_SHA256_HEADERS = "hmac_sha256_headers"
    HMAC_SHA256_QUERY = "hmac_sha256_query"
    HMAC_SHA256_ISO_PASSPHRASE = "hmac_sha256_iso_passphrase"
    HMAC_SHA256_PASSPHRASE_SIGNED = "hmac_sha256_passphrase_signed"
    HMAC_SHA512_NONCE = "hmac_sha512_nonce"
    HMAC_SHA512_GATE = "hmac_sha512_gate"
    HMAC_SHA384_PAYLOAD = "hmac_sha384_payload"
    DERIBIT = "deribit"
    CUSTOM = "custom"


class SignatureEncoding(str, Enum):
    HEX = "hex"
    BASE64 = "base64"


class SigningConfig(BaseModel):
    """
    Per-exchange signing configuration.

    Only `pattern` is required; every other field is a variant parameter
    with the default used by the reference exchange of that pattern.
    Unknown extra keys are kept so custom signers can read them.
    """

    model_config = ConfigDict(extra="allow", frozen=True, arbitrary_types_allowed=True)

    pattern: SigningPattern

    # Header placement
    api_key_header: Optional[str] = None
    timestamp_header: Optional[str] = None
    signature_header: Optional[str] = None
    passphrase_header: Optional[str] = None
    recv_window_header: Optional[str] = None
    nonce_header: Optional[str] = None
    payload_header: Optional[str] = None
    api_key_version_header: Optional[str] = None

    # Payload / encoding
    signature_encoding: Optional[SignatureEncoding] = None
    recv_window: int = Field(default=5000, gt=0)
    timestamp_key: str = "timestamp"
    signature_key: str = "signature"
    nonce_key: str = "nonce"
    recv_window_key: Optional[str] = None
    auto_recv_window: bool = False
    post_as_json: bool = False
    body_encoding: str = "form"
    signing_path_prefix: str = "/api/v4"
    variant: str = "bitfinex"
    api_key_version: Optional[str] = None

    # Broker attribution header: {"header": ..., "option_key": ...}
    broker_config: Optional[Dict[str, str]] = None

    # Custom pattern only
    custom_module: Optional[Any] = None

    def get(self, name: str, default: Any = None) -> Any:
        """Return a configured value, falling back to the pattern default."""
        value = getattr(self, name, None)
        if value is None and self.model_extra:
            value = self.model_extra.get(name)
        return default if value is None else value

    @field_validator("body_encoding")
    @classmethod
    def validate_body_encoding(cls, v: str) -> str:
        if v not in ("form", "json"):
            raise ValueError(f"body_encoding must be 'form' or 'json', got: {v}")
        return v

    @field_validator("variant")
    @classmethod
    def validate_variant(cls, v: str) -> str:
        if v not in ("bitfinex", "gemini"):
            raise ValueError(f"variant must be 'bitfinex' or 'gemini', got: {v}")
        return v


@dataclass
class Request:
    """Logical, unsigned request."""
    method: str
    path: str
    params: Dict[str, Any] = field(default_factory=dict)
    body: Optional[str] = None

    def __post_init__(self) -> None:
        self.method = self.method.lower()
        if self.params is None:
            self.params = {}


@dataclass
class SignedRequest:
    """Wire-ready request produced by a signer."""
    url: str
    method: str
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    def has_header(self, name: str) -> bool:
        return self.header(name) is not None


@dataclass(frozen=True)
class SigningError:
    """Returned (never raised) when a request cannot be signed."""
    reason: str
    message: str
    pattern: Optional[str] = None


SigningResult = Union[SignedRequest, SigningError]


class Signer(ABC):
    """
    Signing strategy for one pattern.

    Implementations are stateless apart from the nonce source and are
    resolved once per SigningConfig.
    """

    pattern: SigningPattern

    @abstractmethod
    def sign(
        self,
        request: Request,
        credentials: Credentials,
        config: SigningConfig
    ) -> SigningResult:
        """Transform a logical request into a signed wire request."""
