"""
Request authentication middleware.
"""
from .shop_auth import (
    decode_session_token,
    ensure_customer_matches,
    get_shop_from_request,
    require_shop_auth,
    require_customer_session,
)

__all__ = [
    'decode_session_token',
    'ensure_customer_matches',
    'get_shop_from_request',
    'require_shop_auth',
    'require_customer_session',
]
