# ============================================================================
# Exchange Core v1.0.0
# Signing Engine
# ============================================================================
#
# Components:
#   - SigningConfig: Validated per-exchange signing parameters
#   - Request / SignedRequest: Logical and wire-ready requests
#   - resolve_signer(): Pattern name -> Signer (fails at load time)
#   - load_custom_module(): Import path -> custom signer object
#   - sign(): One-shot sign helper
#
# ============================================================================

from exchange_core.signing.base import (
    Request,
    SignatureEncoding,
    SignedRequest,
    Signer,
    SigningConfig,
    SigningError,
    SigningPattern,
    SigningResult,
)
from exchange_core.signing.registry import (
    CustomSigner,
    PATTERN_SIGNERS,
    load_custom_module,
    resolve_signer,
    sign,
)

__all__ = [
    'Request',
    'SignatureEncoding',
    'SignedRequest',
    'Signer',
    'SigningConfig',
    'SigningError',
    'SigningPattern',
    'SigningResult',
    'CustomSigner',
    'PATTERN_SIGNERS',
    'load_custom_module',
    'resolve_signer',
    'sign',
]
