"""
============================================================================
Exchange Core - Response Handling & Error Normalization
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: HTTP status, headers, body text and the ExchangeSpec
Side Effects: None (pure)

ORDER OF CHECKS
---------------
1. HTML body (any status)   -> access_restricted (geo/IP block, wrong URL)
2. Lenient JSON decode      (text/plain JSON is common)
3. 2xx + response_error rule -> typed error from the body, else success
4. Non-2xx                  -> 429 rate_limited, 401/403 invalid_credentials,
                               else error-code table lookup, else exchange_error

Body-level and status-level errors go through the same
code -> type -> message pipeline.

============================================================================
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from requests.structures import CaseInsensitiveDict

from exchange_core.errors import (
    ErrorType,
    ExchangeError,
    access_restricted,
    exchange_error,
    invalid_credentials,
    rate_limited,
)
from exchange_core.exchange_spec import ExchangeSpec, ResponseErrorRule, ResponseErrorType
from exchange_core.rate_limit_headers import parse_int

# Configure module logger
logger = logging.getLogger(__name__)


HTML_PREVIEW_LENGTH = 200
UNKNOWN_ERROR = "Unknown error"

_HTML_PREFIXES = ("<!DOCTYPE", "<html", "<HTML", "<!doctype")
_TITLE_PATTERN = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)

_HTML_HINTS = [
    "Verify the API URL is correct (check path_prefix in spec)",
    "Test with curl: curl \"<base_url><path>\" to confirm",
    "Could also be geographic/IP blocking - try VPN if curl works",
]

_CODE_KEYS = ("code", "ret_code", "retCode", "error_code")
_MESSAGE_KEYS = ("message", "msg", "retMsg", "error")


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass
class HTTPResponse:
    """Successful exchange response: decoded body plus status and headers."""
    status: int
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: Any = None


@dataclass(frozen=True)
class RequestResult:
    """
    Outcome of one pipeline request: exactly one of response / error is set.

    Example Usage:
        result = client.request(spec, "get", "/v5/market/time")
        if result.ok:
            print(result.response.body)
        else:
            print(result.error.type, result.error.message)
    """
    response: Optional[HTTPResponse] = None
    error: Optional[ExchangeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, response: HTTPResponse) -> "RequestResult":
        return cls(response=response)

    @classmethod
    def failure(cls, error: ExchangeError) -> "RequestResult":
        return cls(error=error)


# ============================================================================
# HTML DETECTION
# ============================================================================

def is_html_response(body: Any, headers: Mapping[str, str]) -> bool:
    if not isinstance(body, str):
        return False
    content_type = str(headers.get("content-type", "")).lower()
    if "text/html" in content_type:
        return True
    return body.lstrip().startswith(_HTML_PREFIXES)


def extract_html_title(html: str) -> Optional[str]:
    match = _TITLE_PATTERN.search(html)
    return match.group(1).strip() if match else None


def build_access_restricted_error(status: int, body: str, exchange: Optional[str]) -> ExchangeError:
    title = extract_html_title(body)
    if title:
        message = f"Received HTML page '{title}' instead of JSON API response"
    else:
        message = "Received HTML instead of JSON API response"

    return access_restricted(
        message=message,
        code=status,
        exchange=exchange,
        raw={"status": status, "page_title": title, "body_preview": body[:HTML_PREVIEW_LENGTH]},
        hints=list(_HTML_HINTS),
    )


# ============================================================================
# BODY DECODING & FIELD ACCESS
# ============================================================================

def decode_body(body: Any, headers: Optional[Mapping[str, str]] = None) -> Any:
    """
    Decode JSON leniently.

    Bodies labelled as JSON are always attempted; other bodies only when
    they look like a JSON object or array. Undecodable text is returned
    unchanged.
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not isinstance(body, str):
        return body

    content_type = str((headers or {}).get("content-type", "")).lower()
    stripped = body.lstrip()
    if "json" in content_type or stripped.startswith(("{", "[")):
        try:
            return json.loads(body)
        except ValueError:
            return body
    return body


def _present(value: Any) -> bool:
    return value is not None and value is not False


def get_body_value(body: Mapping[str, Any], fields: Any) -> Any:
    """Value of a field, or of the first present field in a list."""
    if isinstance(fields, (list, tuple)):
        for name in fields:
            value = body.get(name)
            if _present(value):
                return value
        return None
    return body.get(fields)


def extract_message(body: Any) -> str:
    if isinstance(body, Mapping):
        for key in _MESSAGE_KEYS:
            value = body.get(key)
            if _present(value):
                return value if isinstance(value, str) else repr(value)
        return UNKNOWN_ERROR
    if isinstance(body, str):
        return body
    return UNKNOWN_ERROR


def extract_error_code(body: Mapping[str, Any]) -> Any:
    for key in _CODE_KEYS:
        value = body.get(key)
        if _present(value):
            return value
    return None


def augment_message(message: str, description: Optional[str]) -> str:
    """Merge an error-code description into the exchange's own message."""
    if description is None or message == description:
        return message
    if message == UNKNOWN_ERROR or not message:
        return description
    return f"{message} ({description})"


def parse_retry_after(headers: Mapping[str, str]) -> Optional[int]:
    """Retry-After seconds -> milliseconds."""
    seconds = parse_int(headers.get("retry-after"))
    return seconds * 1000 if seconds is not None else None


# ============================================================================
# BODY-LEVEL ERRORS (HTTP 2xx)
# ============================================================================

def body_indicates_error(body: Mapping[str, Any], rule: ResponseErrorRule) -> bool:
    value = get_body_value(body, rule.field)

    if rule.type is ResponseErrorType.SUCCESS_CODE:
        return value is not None and str(value) not in rule.success_strings
    if rule.type in (ResponseErrorType.ERROR_PRESENT, ResponseErrorType.ERROR_FIELD_PRESENT):
        return value is not None
    if rule.type is ResponseErrorType.ERROR_ARRAY:
        return isinstance(value, list) and len(value) > 0
    if rule.type is ResponseErrorType.SUCCESS_BOOL:
        return value is False
    return False


def _body_error_message(body: Mapping[str, Any], rule: ResponseErrorRule) -> str:
    if rule.message_field is None:
        return extract_message(body)
    value = get_body_value(body, rule.message_field)
    if value is None:
        return extract_message(body)
    if isinstance(value, list):
        return ", ".join(str(item) for item in value)
    return str(value)


def check_body_error(body: Any, spec: ExchangeSpec) -> Optional[ExchangeError]:
    """Typed error for a 2xx body matching the spec's rule, else None."""
    rule = spec.response_error
    if rule is None or not isinstance(body, Mapping):
        return None
    if not body_indicates_error(body, rule):
        return None

    code_field = rule.code_field if rule.code_field is not None else rule.field
    code = get_body_value(body, code_field)
    if isinstance(code, list):
        # Error arrays (Kraken) are keyed by their first entry
        code = code[0] if code else None
    message = augment_message(_body_error_message(body, rule), spec.error_description(code))
    error_type = spec.lookup_error_type(code) or ErrorType.EXCHANGE_ERROR

    logger.debug(
        f"Body-level error detected | exchange={spec.id} | rule={rule.type.value} | "
        f"code={code} | type={error_type.value}"
    )
    return ExchangeError.build(error_type, message=message, code=code, exchange=spec.id, raw=body)


# ============================================================================
# STATUS-LEVEL ERRORS (non-2xx)
# ============================================================================

def _message_or_default(body: Any) -> Optional[str]:
    message = extract_message(body)
    return None if message in (UNKNOWN_ERROR, "") else message


def normalize_error(status: int, headers: Mapping[str, str], body: Any, spec: ExchangeSpec) -> ExchangeError:
    exchange = spec.id

    if status == 429:
        return rate_limited(
            message=_message_or_default(body),
            retry_after=parse_retry_after(headers),
            exchange=exchange,
            raw=body,
        )

    if status in (401, 403):
        return invalid_credentials(message=_message_or_default(body), exchange=exchange, raw=body)

    if isinstance(body, Mapping):
        code = extract_error_code(body)
        error_type = spec.lookup_error_type(code) or ErrorType.EXCHANGE_ERROR
        message = augment_message(extract_message(body), spec.error_description(code))
        return ExchangeError.build(error_type, message=message, code=code, exchange=exchange, raw=body)

    return exchange_error(extract_message(body), code=status, exchange=exchange, raw=body)


# ============================================================================
# ENTRY POINT
# ============================================================================

def handle_response(status: int, headers: Any, body: Any, spec: ExchangeSpec) -> RequestResult:
    """
    Turn a raw HTTP response into a RequestResult.

    Args:
        status: HTTP status code
        headers: Response headers (any mapping; matched case-insensitively)
        body: Response body text (or already-decoded JSON)
        spec: Exchange spec with error tables and body rule

    Returns:
        RequestResult.success for clean 2xx, RequestResult.failure otherwise
    """
    headers = headers if isinstance(headers, CaseInsensitiveDict) else CaseInsensitiveDict(headers or {})

    if is_html_response(body, headers):
        logger.warning(
            f"[EXC-HTTP-002] HTML response instead of JSON | exchange={spec.id} | status={status}"
        )
        return RequestResult.failure(build_access_restricted_error(status, body, spec.id))

    decoded = decode_body(body, headers)

    if 200 <= status < 300:
        error = check_body_error(decoded, spec)
        if error is not None:
            return RequestResult.failure(error)
        return RequestResult.success(HTTPResponse(status=status, headers=headers, body=decoded))

    return RequestResult.failure(normalize_error(status, headers, decoded, spec))
