"""
Signing dispatch.

A SigningConfig is resolved to a concrete Signer exactly once, when the
exchange spec is loaded. Unknown patterns and malformed custom modules fail
there with SigningConfigurationError (EXC-SIGN-001), never per request.
"""

import importlib
import logging
from typing import Any, Dict, Mapping, Type, Union

from exchange_core.credentials import Credentials
from exchange_core.errors import SigningConfigurationError
from exchange_core.signing.base import (
    Request,
    SignedRequest,
    Signer,
    SigningConfig,
    SigningError,
    SigningPattern,
    SigningResult,
)
from exchange_core.signing.patterns import (
    DeribitSigner,
    HmacSha256HeadersSigner,
    HmacSha256IsoPassphraseSigner,
    HmacSha256PassphraseSignedSigner,
    HmacSha256QuerySigner,
    HmacSha384PayloadSigner,
    HmacSha512GateSigner,
    HmacSha512NonceSigner,
)

logger = logging.getLogger(__name__)


PATTERN_SIGNERS: Dict[SigningPattern, Type[Signer]] = {
    SigningPattern.HMAC_SHA256_HEADERS: HmacSha256HeadersSigner,
    SigningPattern.HMAC_SHA256_QUERY: HmacSha256QuerySigner,
    SigningPattern.HMAC_SHA256_ISO_PASSPHRASE: HmacSha256IsoPassphraseSigner,
    SigningPattern.HMAC_SHA256_PASSPHRASE_SIGNED: HmacSha256PassphraseSignedSigner,
    SigningPattern.HMAC_SHA512_NONCE: HmacSha512NonceSigner,
    SigningPattern.HMAC_SHA512_GATE: HmacSha512GateSigner,
    SigningPattern.HMAC_SHA384_PAYLOAD: HmacSha384PayloadSigner,
    SigningPattern.DERIBIT: DeribitSigner,
}

DEFAULT_PATTERN = SigningPattern.HMAC_SHA256_HEADERS


class CustomSigner(Signer):
    """
    Adapter around a user-supplied object exposing
    `sign(request, credentials, config)`.

    The delegate may return a SignedRequest, a SigningError, or a mapping
    with url/method/headers/body keys.
    """

    pattern = SigningPattern.CUSTOM

    def __init__(self, delegate: Any) -> None:
        sign_fn = getattr(delegate, "sign", None)
        if not callable(sign_fn):
            raise SigningConfigurationError(
                f"Custom signing module {delegate!r} must define a callable "
                f"sign(request, credentials, config)"
            )
        self._delegate = delegate

    def sign(self, request: Request, credentials: Credentials, config: SigningConfig) -> SigningResult:
        try:
            result = self._delegate.sign(request, credentials, config)
        except Exception as e:
            logger.error(
                f"[EXC-SIGN-002] Custom signer raised | "
                f"delegate={type(self._delegate).__name__} | error_type={type(e).__name__}"
            )
            return SigningError(
                reason="custom_signer_failed",
                message=f"Custom signer raised {type(e).__name__}",
                pattern=self.pattern.value,
            )

        if isinstance(result, (SignedRequest, SigningError)):
            return result
        if isinstance(result, Mapping):
            return SignedRequest(
                url=result["url"],
                method=result.get("method", request.method),
                headers=list(result.get("headers", [])),
                body=result.get("body"),
            )
        return SigningError(
            reason="custom_signer_invalid_result",
            message=f"Custom signer returned unsupported type {type(result).__name__}",
            pattern=self.pattern.value,
        )


def load_custom_module(path: str) -> Any:
    """
    Import a custom signer named by "package.module" or "package.module:attr".

    The module form signs with the module-level sign(); the attr form picks
    a signer object defined inside the module.

    Raises:
        SigningConfigurationError: Module or attribute cannot be imported
    """
    module_name, _, attr = path.strip().partition(":")
    try:
        target = importlib.import_module(module_name)
    except ImportError as e:
        raise SigningConfigurationError(
            f"Custom signing module {path!r} could not be imported: {e}"
        ) from e

    if attr:
        try:
            target = getattr(target, attr)
        except AttributeError:
            raise SigningConfigurationError(
                f"Custom signing module {module_name!r} has no attribute {attr!r}"
            )
    logger.info(f"[EXC-SIGN] Custom signing module loaded | path={path}")
    return target


def resolve_signer(config: Union[SigningConfig, Mapping[str, Any], None]) -> Signer:
    """
    Resolve a signing config into its Signer.

    custom_module may be a live object or an import path (see
    load_custom_module); either way it must expose a callable sign().

    Raises:
        SigningConfigurationError: Unknown pattern or invalid custom module
    """
    if config is None:
        return PATTERN_SIGNERS[DEFAULT_PATTERN]()

    if isinstance(config, Mapping):
        pattern_name = config.get("pattern", DEFAULT_PATTERN.value)
        try:
            pattern = SigningPattern(getattr(pattern_name, "value", pattern_name))
        except ValueError:
            raise SigningConfigurationError(f"Unknown signing pattern: {pattern_name!r}")
        custom_module = config.get("custom_module")
    else:
        pattern = config.pattern
        custom_module = config.custom_module

    if pattern is SigningPattern.CUSTOM:
        if custom_module is None:
            raise SigningConfigurationError(
                "Signing pattern 'custom' requires a custom_module"
            )
        if isinstance(custom_module, str):
            custom_module = load_custom_module(custom_module)
        if isinstance(custom_module, Signer):
            return custom_module
        return CustomSigner(custom_module)

    return PATTERN_SIGNERS[pattern]()


def sign(
    request: Request,
    credentials: Credentials,
    config: SigningConfig
) -> SigningResult:
    """One-shot convenience: resolve the config's signer and sign."""
    return resolve_signer(config).sign(request, credentials, config)
