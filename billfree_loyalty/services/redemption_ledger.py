"""
Redemption ledger service.

Records every redeem attempt under its invoice reference. ``claim`` is the
guard in front of BillFree's point-debiting call: the unique constraint on
invoice_ref means a second claim for the same reference fails, so the same
invoice is never sent to BillFree twice.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import RedemptionAttempt, RedemptionStatus, Shop, normalize_shop_domain
from ..utils.exceptions import DuplicateRedemptionError

logger = logging.getLogger(__name__)


class RedemptionLedger:
    """Persistence for RedemptionAttempt rows."""

    def get(self, invoice_ref: str) -> Optional[RedemptionAttempt]:
        return RedemptionAttempt.query.filter_by(invoice_ref=invoice_ref).first()

    def claim(
        self,
        shop_id: int,
        invoice_ref: str,
        channel: str,
        customer_id: str,
        bill_amount: Decimal,
        currency: str = None
    ) -> RedemptionAttempt:
        """
        Reserve an invoice reference before calling BillFree's redeem.

        Raises:
            DuplicateRedemptionError: the reference was already claimed
        """
        attempt = RedemptionAttempt(
            shop_id=shop_id,
            invoice_ref=invoice_ref,
            channel=channel,
            shopify_customer_id=str(customer_id),
            bill_amount=bill_amount,
            currency=currency,
            status=RedemptionStatus.PENDING.value
        )
        db.session.add(attempt)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self.get(invoice_ref)
            logger.warning(f"Duplicate redemption claim for invoice={invoice_ref}")
            raise DuplicateRedemptionError(
                invoice_ref,
                status=existing.status if existing else None,
                discount_code=existing.discount_code if existing else None
            )

        return attempt

    def mark_redeemed(
        self,
        attempt: RedemptionAttempt,
        discount_value: Decimal,
        capped_amount: Decimal,
        points_redeemed: Decimal = None,
        provider_message: str = None
    ) -> RedemptionAttempt:
        attempt.status = RedemptionStatus.REDEEMED.value
        attempt.discount_value = discount_value
        attempt.capped_amount = capped_amount
        attempt.points_redeemed = points_redeemed
        attempt.provider_message = (provider_message or '')[:500] or None
        db.session.commit()
        return attempt

    def mark_emitted(self, attempt: RedemptionAttempt, discount_code: str = None) -> RedemptionAttempt:
        attempt.status = RedemptionStatus.EMITTED.value
        if discount_code:
            attempt.discount_code = discount_code
        db.session.commit()
        return attempt

    def mark_failed(self, attempt: RedemptionAttempt, error_code: str, message: str = None) -> RedemptionAttempt:
        attempt.status = RedemptionStatus.FAILED.value
        attempt.error_code = error_code
        if message:
            attempt.provider_message = message[:500]
        db.session.commit()
        return attempt

    def list_for_shop(self, shop_domain: str, status: str = None, limit: int = 50) -> List[RedemptionAttempt]:
        """Most recent attempts for a shop, optionally filtered by status."""
        shop = Shop.find_by_domain(normalize_shop_domain(shop_domain))
        if not shop:
            return []

        query = RedemptionAttempt.query.filter_by(shop_id=shop.id)
        if status:
            query = query.filter_by(status=status)

        return query.order_by(RedemptionAttempt.created_at.desc(), RedemptionAttempt.id.desc()).limit(limit).all()
