"""
Loyalty API endpoints.

Customer-facing endpoints used by the customer account extension, plus the
checkout discount function endpoint:
- Points balance lookup
- OTP dispatch for OTP-protected BillFree accounts
- Redeem points for a single-use discount code
- Checkout discount evaluation (never errors)

The customer endpoints act only for the customer named in the session token.
"""
import logging
import re
from decimal import Decimal, InvalidOperation

from flask import Blueprint, current_app, g, jsonify, request

from ..middleware.shop_auth import ensure_customer_matches, require_customer_session
from ..services.checkout_function import evaluate_checkout
from ..services.discount_emitter import DiscountCodeAdapter
from ..services.merchant_config import MerchantConfigResolver
from ..services.redemption_orchestrator import RedemptionChannel, build_orchestrator
from ..utils.errors import ErrorCode, bad_request, billfree_error_response, internal_error
from ..utils.exceptions import BillFreeError, IdentityUnresolvableError, ProviderRejectedError
from ..utils.logging_config import mask_phone

logger = logging.getLogger(__name__)

loyalty_bp = Blueprint('loyalty', __name__)

CURRENCY_PATTERN = re.compile(r'^[A-Za-z]{3}$')

NO_PHONE_MESSAGE = "Please add a phone number to your profile to check loyalty points."


def _session_customer(data: dict = None):
    """
    The session token's customer, or a 403 response when the request names
    someone else.

    Returns:
        (customer_id, error_response)
    """
    requested = (data or {}).get('customer_id') or request.args.get('customer_id')
    mismatch = ensure_customer_matches(requested)
    if mismatch:
        return None, mismatch
    return g.session_customer_id, None


def _zero_balance(scheme_message: str, phone_number: str = None):
    return jsonify({
        'success': False,
        'balance': 0,
        'otpFlag': 'n',
        'scheme_message': scheme_message,
        'customerMobileNumber': mask_phone(phone_number) if phone_number else None
    })


# ==================== Points ====================

@loyalty_bp.route('/points', methods=['GET'])
@require_customer_session
def get_points():
    """
    Get the customer's BillFree points balance.

    No phone on file and a BillFree refusal are not errors for the widget:
    both answer with a zero balance and a message to show the customer.

    Returns:
        balance, otpFlag, scheme_message and the masked phone number
    """
    customer_id, error = _session_customer()
    if error:
        return error

    identity = None
    try:
        merchant = MerchantConfigResolver().resolve(g.shop)
        orchestrator = build_orchestrator(merchant, RedemptionChannel.INTERACTIVE)
        identity = orchestrator.resolve_identity(customer_id)
        quote = orchestrator.check_balance(identity)
    except IdentityUnresolvableError:
        return _zero_balance(NO_PHONE_MESSAGE)
    except ProviderRejectedError as e:
        return _zero_balance(e.scheme_message or e.message, identity.phone_number if identity else None)
    except BillFreeError as e:
        return billfree_error_response(e)
    except Exception as e:
        logger.exception(f"Points lookup failed for {g.shop}: {e}")
        return internal_error("Failed to fetch loyalty points")

    return jsonify({
        'success': True,
        'balance': float(quote.available_points),
        'otpFlag': quote.otp_flag,
        'scheme_message': quote.scheme_message,
        'customerMobileNumber': mask_phone(identity.phone_number)
    })


# ==================== OTP ====================

@loyalty_bp.route('/send-otp', methods=['POST'])
@require_customer_session
def send_otp():
    """
    Send an OTP to the customer's phone.

    Request body:
        user_phone: Phone number (optional; defaults to the phone on the
                    customer's Shopify profile)
    """
    data = request.get_json(silent=True) or {}
    user_phone = data.get('user_phone')
    customer_id, error = _session_customer(data)
    if error:
        return error

    try:
        merchant = MerchantConfigResolver().resolve(g.shop)
        orchestrator = build_orchestrator(merchant, RedemptionChannel.INTERACTIVE)
        challenge = orchestrator.request_otp(customer_id=customer_id, phone=user_phone)
    except BillFreeError as e:
        return billfree_error_response(e)
    except Exception as e:
        logger.exception(f"Send OTP failed for {g.shop}: {e}")
        return internal_error("Failed to send OTP")

    if not challenge.dispatch.success:
        logger.info(f"BillFree refused OTP for {challenge.phone_number} at {g.shop}")

    return jsonify({
        'success': challenge.dispatch.success,
        'message': challenge.dispatch.message,
        'customerMobileNumber': challenge.phone_number
    }), 200 if challenge.dispatch.success else 400


# ==================== Redemption ====================

@loyalty_bp.route('/redeem-points', methods=['POST'])
@require_customer_session
def redeem_points():
    """
    Redeem BillFree points for a single-use Shopify discount code.

    Request body:
        bill_amt: Cart/bill amount to discount against (required, > 0)
        currency: ISO 4217 currency code (optional)
        otp_code: OTP for OTP-protected accounts
        idempotency_key: Makes retries of the same request safe
                         (also accepted as the Idempotency-Key header)

    Returns:
        discountCode, discountAmount, pointsRedeemed, remainingPoints, expiresAt
    """
    data = request.get_json(silent=True) or {}
    customer_id, error = _session_customer(data)
    if error:
        return error

    currency = data.get('currency')
    if currency not in (None, ''):
        if not isinstance(currency, str) or not CURRENCY_PATTERN.match(currency.strip()):
            return bad_request("currency must be a 3-letter ISO code", ErrorCode.INVALID_FIELD)
        currency = currency.strip().upper()
    else:
        currency = None

    if data.get('bill_amt') in (None, ''):
        return bad_request("bill_amt is required", ErrorCode.MISSING_FIELD)
    try:
        bill_amount = Decimal(str(data['bill_amt']))
    except (InvalidOperation, ValueError):
        return bad_request("bill_amt must be a number", ErrorCode.INVALID_FIELD)
    if not bill_amount.is_finite() or bill_amount <= 0:
        return bad_request("bill_amt must be greater than zero", ErrorCode.INVALID_FIELD)

    otp_code = data.get('otp_code')
    otp_code = str(otp_code).strip() if otp_code not in (None, '') else None
    idempotency_key = data.get('idempotency_key') or request.headers.get('Idempotency-Key')

    try:
        merchant = MerchantConfigResolver().resolve(g.shop)
        orchestrator = build_orchestrator(merchant, RedemptionChannel.INTERACTIVE)
        outcome = orchestrator.redeem_interactive(
            customer_id,
            bill_amount,
            currency=currency,
            otp_code=otp_code,
            idempotency_key=idempotency_key
        )

        adapter = DiscountCodeAdapter(
            orchestrator.shopify,
            validity_days=current_app.config.get('DISCOUNT_CODE_VALIDITY_DAYS', 7),
            code_prefix=current_app.config.get('DISCOUNT_CODE_PREFIX', 'BILLFREE'),
            ledger=orchestrator.ledger
        )
        issued = adapter.emit(outcome)
    except BillFreeError as e:
        return billfree_error_response(e)
    except Exception as e:
        logger.exception(f"Redemption failed for {g.shop}: {e}")
        return internal_error("Failed to redeem points")

    return jsonify(issued.to_dict())


# ==================== Checkout ====================

@loyalty_bp.route('/checkout/discounts', methods=['POST'])
def checkout_discounts():
    """
    Evaluate the checkout discount function for a cart.

    Query params:
        shop: Shop domain (or X-Shop-Domain header)

    Always answers 200 with {"operations": [...]}; an empty list means no
    discount.
    """
    shop = request.args.get('shop') or request.headers.get('X-Shop-Domain')
    payload = request.get_json(silent=True) or {}

    if not shop:
        logger.warning("Checkout discount request without shop domain")
        return jsonify({'operations': []})

    return jsonify(evaluate_checkout(shop, payload))
