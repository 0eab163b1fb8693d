"""
Discount emission adapters.

Turn a RedemptionOutcome into a discount the customer actually gets:
- CheckoutDiscountAdapter: operations list for the checkout discount function
- DiscountCodeAdapter: single-use, customer-scoped Shopify discount code
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from .redemption_ledger import RedemptionLedger
from .redemption_orchestrator import RedemptionOutcome, RedemptionState
from .shopify_client import ShopifyClient
from ..models import RedemptionAttempt
from ..extensions import db
from ..utils.exceptions import ShopifyError, ZeroDiscountError

logger = logging.getLogger(__name__)


def _load_attempt(attempt_id: Optional[int]) -> Optional[RedemptionAttempt]:
    if not attempt_id:
        return None
    return db.session.get(RedemptionAttempt, attempt_id)


@dataclass(frozen=True)
class IssuedDiscountCode:
    """Discount code handed back to the account page."""
    code: str
    amount: Decimal
    currency: Optional[str]
    points_redeemed: Decimal
    remaining_points: Optional[Decimal]
    expires_at: datetime

    @property
    def message(self) -> str:
        currency = f'{self.currency} ' if self.currency else ''
        return f'{currency}{self.amount} discount code created successfully!'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'discountCode': self.code,
            'discountAmount': float(self.amount),
            'currency': self.currency,
            'pointsRedeemed': float(self.points_redeemed),
            'remainingPoints': float(self.remaining_points) if self.remaining_points is not None else None,
            'expiresAt': self.expires_at.isoformat() + 'Z',
            'message': self.message
        }


class CheckoutDiscountAdapter:
    """Builds the checkout discount function result."""

    def __init__(self, ledger: RedemptionLedger = None):
        self.ledger = ledger or RedemptionLedger()

    def emit(self, outcome: RedemptionOutcome, scope: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Args:
            outcome: Checkout outcome from the orchestrator
            scope: Optional {'excluded_cart_line_ids': [...]}

        Returns:
            {'operations': [...]} with at most one order-level operation
        """
        if not outcome.has_discount:
            return {'operations': []}

        operation = ShopifyClient.create_automatic_discount(outcome.capped_amount, outcome.currency, scope)

        if outcome.state != RedemptionState.EMITTED:
            outcome.transition(RedemptionState.EMITTED)
        attempt = _load_attempt(outcome.attempt_id)
        if attempt is not None and not outcome.replayed:
            self.ledger.mark_emitted(attempt)

        return {'operations': [operation]}


class DiscountCodeAdapter:
    """Creates the single-use discount code for an interactive redemption."""

    def __init__(
        self,
        shopify: ShopifyClient,
        validity_days: int = 7,
        code_prefix: str = 'BILLFREE',
        ledger: RedemptionLedger = None,
        clock: Callable[[], datetime] = None
    ):
        self.shopify = shopify
        self.validity_days = validity_days
        self.code_prefix = code_prefix
        self.ledger = ledger or RedemptionLedger()
        self.clock = clock or datetime.utcnow

    def emit(self, outcome: RedemptionOutcome) -> IssuedDiscountCode:
        """
        Create the code. Points are already debited at this point, so a
        Shopify failure is recorded on the ledger attempt for reconciliation
        and re-raised; the redeem call is never repeated.

        Raises:
            ZeroDiscountError: outcome carries no discount
            PlatformRejectedError / ShopifyError: code creation failed
        """
        if not outcome.has_discount:
            raise ZeroDiscountError()

        attempt = _load_attempt(outcome.attempt_id)
        starts_at = self.clock()
        ends_at = starts_at + timedelta(days=self.validity_days)

        try:
            code = self.shopify.create_discount_code(
                amount=outcome.capped_amount,
                currency=outcome.currency or '',
                customer_id=outcome.customer_id,
                starts_at=starts_at,
                ends_at=ends_at,
                code_prefix=self.code_prefix
            )
        except ShopifyError as e:
            logger.error(
                f"Points redeemed but discount code creation failed for invoice={outcome.invoice_ref}: "
                f"{e.message}. Needs manual reconciliation."
            )
            if attempt is not None:
                self.ledger.mark_failed(attempt, e.code, e.message)
            outcome.abort(RedemptionState.FAILED, e.code)
            raise

        outcome.transition(RedemptionState.EMITTED)
        if attempt is not None:
            self.ledger.mark_emitted(attempt, discount_code=code)

        return IssuedDiscountCode(
            code=code,
            amount=outcome.capped_amount,
            currency=outcome.currency,
            points_redeemed=outcome.points_redeemed,
            remaining_points=outcome.remaining_points,
            expires_at=ends_at
        )
