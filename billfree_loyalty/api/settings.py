"""
Merchant Settings API endpoints.

Manages the shop's BillFree integration: auth token, enabled flag, default
dial code and invoice field mappings.
"""
import logging
import re

from flask import Blueprint, g, jsonify, request

from ..extensions import db
from ..middleware.shop_auth import require_shop_auth
from ..utils.errors import ErrorCode, bad_request

logger = logging.getLogger(__name__)

settings_bp = Blueprint('settings', __name__)


def get_billfree_settings(shop) -> dict:
    """Settings as shown to the merchant. The token itself is never returned."""
    return {
        'enabled': bool(shop.is_billfree_configured),
        'has_auth_token': bool(shop.billfree_auth_token),
        'default_dial_code': shop.default_dial_code,
        'field_mappings': shop.field_mappings or {}
    }


@settings_bp.route('/billfree', methods=['GET'])
@require_shop_auth
def get_settings():
    """Get BillFree settings for the shop."""
    return jsonify({
        'shop': g.shop,
        'settings': get_billfree_settings(g.shop_record)
    })


@settings_bp.route('/billfree', methods=['PUT'])
@require_shop_auth
def update_settings():
    """
    Update BillFree settings (only the fields present are changed).

    Request body:
        auth_token: BillFree auth token; an empty string is rejected
        enabled: Turn the integration on/off
        default_dial_code: Digits only, e.g. "91"
        field_mappings: {billfree_field: shopify_field} string pairs
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return bad_request("JSON body required")

    shop = g.shop_record
    updates = {}

    if 'auth_token' in data:
        token = data.get('auth_token')
        if not isinstance(token, str) or not token.strip():
            return bad_request("auth_token cannot be empty", ErrorCode.INVALID_FIELD)
        updates['billfree_auth_token'] = token.strip()

    if 'default_dial_code' in data:
        dial_code = str(data.get('default_dial_code') or '').lstrip('+')
        if not re.fullmatch(r'\d{1,4}', dial_code):
            return bad_request("default_dial_code must be 1-4 digits", ErrorCode.INVALID_FIELD)
        updates['default_dial_code'] = dial_code

    if 'field_mappings' in data:
        mappings = data.get('field_mappings')
        if not isinstance(mappings, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in mappings.items()
        ):
            return bad_request("field_mappings must map field names to field names", ErrorCode.INVALID_FIELD)
        updates['field_mappings'] = mappings

    if 'enabled' in data:
        enabled = bool(data.get('enabled'))
        if enabled and not updates.get('billfree_auth_token', shop.billfree_auth_token):
            return bad_request("Set an auth_token before enabling BillFree", ErrorCode.MISSING_FIELD)
        updates['is_billfree_configured'] = enabled

    # Nothing is written unless every field validated
    for column, value in updates.items():
        setattr(shop, column, value)
    db.session.commit()
    logger.info(f"BillFree settings updated for {shop.shopify_domain}")

    return jsonify({
        'success': True,
        'settings': get_billfree_settings(shop)
    })
