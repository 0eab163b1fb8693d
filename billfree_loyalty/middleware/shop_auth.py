"""
Shop Authentication Middleware.

Works out which shop (and, for customer account extensions, which customer)
a request is for.

Session tokens are issued by Shopify to embedded apps and UI extensions and
are signed with the app's API secret:
- dest: Shop domain (https://shop.myshopify.com)
- aud: API key
- sub: Customer GID for customer account extensions, staff GID in the admin
- exp: Expiration time
"""
import logging
from functools import wraps
from typing import Optional

import jwt
from flask import current_app, g, request

from ..models import Shop, normalize_shop_domain
from ..utils.errors import ErrorCode, error_response, forbidden, unauthorized

logger = logging.getLogger(__name__)


def decode_session_token(token: str) -> Optional[dict]:
    """
    Decode and verify a Shopify session token.

    Args:
        token: JWT from the Authorization header

    Returns:
        Decoded payload or None if invalid
    """
    if not token:
        return None

    api_key = current_app.config.get('SHOPIFY_API_KEY')
    api_secret = current_app.config.get('SHOPIFY_API_SECRET')
    if not api_secret:
        logger.error("SHOPIFY_API_SECRET is not set; cannot verify session tokens")
        return None

    try:
        return jwt.decode(
            token,
            api_secret,
            algorithms=['HS256'],
            audience=api_key or None,
            options={
                'verify_aud': bool(api_key),
                'verify_exp': True,
            }
        )
    except jwt.ExpiredSignatureError:
        logger.info("Session token expired")
    except jwt.InvalidAudienceError:
        logger.warning("Session token has invalid audience")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid session token: {e}")
    return None


def get_shop_from_token(payload: dict) -> Optional[str]:
    """Shop domain from the token's dest claim, falling back to iss."""
    for claim in ('dest', 'iss'):
        value = payload.get(claim, '')
        if value:
            return normalize_shop_domain(value).split('/')[0]
    return None


def get_customer_from_token(payload: dict) -> Optional[str]:
    """Customer GID when the token was issued to a logged-in customer."""
    sub = payload.get('sub') or ''
    return sub if '/Customer/' in sub else None


def _bearer_payload() -> Optional[dict]:
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None
    return decode_session_token(auth_header.split(' ', 1)[1])


def get_shop_from_request() -> Optional[str]:
    """
    Get shop domain from the request.

    Priority:
    1. Session token in Authorization header
    2. shop query parameter
    3. X-Shop-Domain header

    Returns:
        Normalized shop domain or None
    """
    payload = _bearer_payload()
    if payload:
        shop = get_shop_from_token(payload)
        if shop:
            return shop

    shop = request.args.get('shop') or request.headers.get('X-Shop-Domain')
    return normalize_shop_domain(shop) if shop else None


def require_customer_session(f):
    """
    Decorator for customer account endpoints.

    Requires a verified Bearer session token issued to a logged-in customer
    (sub is a Customer GID). Sets g.shop from the token's dest claim and
    g.session_customer_id from its sub. Shop and customer are never taken
    from query parameters or headers here.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not request.headers.get('Authorization', '').startswith('Bearer '):
            return unauthorized("Customer session token required")

        payload = _bearer_payload()
        if not payload:
            return unauthorized("Invalid or expired session token", ErrorCode.INVALID_TOKEN)

        shop = get_shop_from_token(payload)
        customer_id = get_customer_from_token(payload)
        if not shop or not customer_id:
            logger.warning("Session token without shop or customer on a customer endpoint")
            return unauthorized("Customer session token required")

        g.shop = shop
        g.session_customer_id = customer_id
        return f(*args, **kwargs)

    return decorated_function


def ensure_customer_matches(customer_id: Optional[str]):
    """
    Reject a request whose customer_id differs from the session token's customer.

    Returns:
        An error response tuple, or None when the request may proceed
    """
    session_customer = getattr(g, 'session_customer_id', None)
    if not session_customer or not customer_id:
        return None

    def _numeric(value: str) -> str:
        return str(value).rstrip('/').split('/')[-1]

    if _numeric(session_customer) != _numeric(customer_id):
        logger.warning(f"Customer mismatch on {g.shop}: token={_numeric(session_customer)} "
                       f"request={_numeric(customer_id)}")
        return forbidden("You can only redeem points for your own account")
    return None


def require_shop_auth(f):
    """
    Decorator for merchant (admin) endpoints.

    Requires an installed, active shop. Sets g.shop, g.shop_id and
    g.shop_record.

    Usage:
        @require_shop_auth
        def my_endpoint():
            shop = g.shop_record
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        shop_domain = get_shop_from_request()

        if not shop_domain:
            return unauthorized("Missing shop domain")

        shop = Shop.find_by_domain(shop_domain)

        if not shop:
            return error_response(
                "This shop has not installed the app",
                ErrorCode.SHOP_NOT_FOUND,
                404,
                log_error=False
            )

        if not shop.is_active:
            return forbidden("This shop's access has been disabled")

        g.shop = shop.shopify_domain
        g.shop_id = shop.id
        g.shop_record = shop

        return f(*args, **kwargs)

    return decorated_function
