from exchange_core.ws.auth import (
    AuthMessage,
    AuthResult,
    NeedsExternalCall,
    NoAuthMessage,
    WSAuthPattern,
    WSAuthenticator,
    build_auth_message,
    build_subscribe_auth,
    get_authenticator,
    handle_auth_response,
    pre_auth,
)
from exchange_core.ws.expiry import compute_ttl_ms, schedule_delay_ms

__all__ = [
    'AuthMessage',
    'AuthResult',
    'NeedsExternalCall',
    'NoAuthMessage',
    'WSAuthPattern',
    'WSAuthenticator',
    'build_auth_message',
    'build_subscribe_auth',
    'get_authenticator',
    'handle_auth_response',
    'pre_auth',
    'compute_ttl_ms',
    'schedule_delay_ms',
]
