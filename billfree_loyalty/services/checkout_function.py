"""
Checkout discount function evaluation.

Takes the discount function's cart input and returns its result:

    {"operations": [ {"orderDiscountsAdd": {...}} ]}   # or an empty list

Checkout must never break because of BillFree, Shopify or this app, so
every failure here ends in an empty operations list.
"""
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from .discount_emitter import CheckoutDiscountAdapter
from .merchant_config import MerchantConfig, MerchantConfigResolver
from .redemption_orchestrator import RedemptionChannel, RedemptionOrchestrator, build_orchestrator
from ..utils.exceptions import NotConfiguredError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartSnapshot:
    """The parts of the discount function input the redemption needs."""
    customer_id: Optional[str]
    subtotal: Decimal
    currency: str
    cart_key: Optional[str] = None
    excluded_cart_line_ids: List[str] = field(default_factory=list)


def parse_cart_input(payload: Dict[str, Any]) -> CartSnapshot:
    """
    Extract customer, subtotal and currency from the function input.

    Expected shape (extra fields ignored):
        {"cart": {"id": "...", "buyerIdentity": {"customer": {"id": "gid://shopify/Customer/1"}},
                  "cost": {"subtotalAmount": {"amount": "100.0", "currencyCode": "INR"}}}}
    """
    cart = (payload or {}).get('cart') or {}
    customer = ((cart.get('buyerIdentity') or {}).get('customer')) or {}
    subtotal_amount = ((cart.get('cost') or {}).get('subtotalAmount')) or {}

    try:
        subtotal = Decimal(str(subtotal_amount.get('amount', '0')))
    except (InvalidOperation, ValueError):
        subtotal = Decimal('0')

    currency = str(subtotal_amount.get('currencyCode') or '').upper()
    if not re.fullmatch(r'[A-Z]{3}', currency):
        currency = ''

    cart_key = cart.get('id') or cart.get('token')
    if cart_key:
        # 'gid://shopify/Cart/abc?key=..' -> 'abc'
        cart_key = str(cart_key).split('?')[0].rstrip('/').split('/')[-1]

    return CartSnapshot(
        customer_id=customer.get('id'),
        subtotal=subtotal,
        currency=currency,
        cart_key=cart_key or None,
        excluded_cart_line_ids=list((payload or {}).get('excludedCartLineIds') or [])
    )


def evaluate_checkout(
    shop_domain: str,
    payload: Dict[str, Any],
    resolver: MerchantConfigResolver = None,
    orchestrator_factory: Callable[[MerchantConfig, RedemptionChannel], RedemptionOrchestrator] = None,
    adapter: CheckoutDiscountAdapter = None
) -> Dict[str, Any]:
    """
    Run the checkout path for one discount function evaluation.

    Args:
        shop_domain: Shop the function runs for
        payload: Discount function input
        resolver: Config resolver (defaults to the database-backed one)
        orchestrator_factory: Builds the orchestrator (defaults to build_orchestrator)
        adapter: Checkout emission adapter

    Returns:
        Discount function result; empty operations on any failure
    """
    resolver = resolver or MerchantConfigResolver()
    orchestrator_factory = orchestrator_factory or build_orchestrator
    adapter = adapter or CheckoutDiscountAdapter()

    try:
        cart = parse_cart_input(payload)
        if not cart.customer_id:
            return {'operations': []}

        merchant = resolver.resolve(shop_domain)
        orchestrator = orchestrator_factory(merchant, RedemptionChannel.CHECKOUT)

        outcome = orchestrator.redeem_at_checkout(
            cart.customer_id,
            cart.subtotal,
            cart.currency,
            idempotency_key=cart.cart_key
        )
        return adapter.emit(outcome, {'excluded_cart_line_ids': cart.excluded_cart_line_ids})

    except NotConfiguredError as e:
        logger.info(f"Checkout discount skipped for {shop_domain}: {e.message}")
        return {'operations': []}
    except Exception:
        logger.exception(f"Unexpected error evaluating checkout discount for {shop_domain}")
        return {'operations': []}
