from exchange_core.http.client import (
    SPEC_DEFAULT,
    AsyncExchangeHTTPClient,
    ExchangeHTTPClient,
    PreparedRequest,
    redact_headers,
    redact_text,
)
from exchange_core.http.response import HTTPResponse, RequestResult, handle_response

__all__ = [
    'SPEC_DEFAULT',
    'AsyncExchangeHTTPClient',
    'ExchangeHTTPClient',
    'PreparedRequest',
    'redact_headers',
    'redact_text',
    'HTTPResponse',
    'RequestResult',
    'handle_response',
]
