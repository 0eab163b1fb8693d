"""
Redemption attempt ledger.

BillFree owns the points ledger, but nothing on its side stops the same
invoice from being redeemed twice. Every attempt is recorded here under a
unique invoice reference before the point-debiting call goes out, so a
replayed request collides on the unique constraint instead of debiting again.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class RedemptionStatus(str, Enum):
    """Lifecycle of a redemption attempt."""
    PENDING = 'pending'     # Invoice reference claimed, redeem call in flight
    REDEEMED = 'redeemed'   # BillFree debited points
    EMITTED = 'emitted'     # Discount delivered (checkout operation or code)
    FAILED = 'failed'       # Redeem or emission failed; needs reconciliation if points were debited


class RedemptionAttempt(db.Model):
    """One call (or attempted call) to BillFree's redeem endpoint."""
    __tablename__ = 'redemption_attempts'

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False)

    invoice_ref = db.Column(db.String(150), unique=True, nullable=False)
    channel = db.Column(db.String(20), nullable=False)  # checkout, interactive
    shopify_customer_id = db.Column(db.String(50), nullable=False)

    bill_amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3))

    status = db.Column(db.String(20), default=RedemptionStatus.PENDING.value, nullable=False)
    discount_value = db.Column(db.Numeric(12, 2))
    capped_amount = db.Column(db.Numeric(12, 2))
    points_redeemed = db.Column(db.Numeric(12, 2))
    discount_code = db.Column(db.String(64))
    provider_message = db.Column(db.String(500))
    error_code = db.Column(db.String(50))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_redemption_attempts_shop_status', 'shop_id', 'status'),
        db.Index('ix_redemption_attempts_shop_customer', 'shop_id', 'shopify_customer_id'),
    )

    def __repr__(self):
        return f'<RedemptionAttempt {self.invoice_ref} {self.status}>'

    def to_dict(self):
        return {
            'id': self.id,
            'invoice_ref': self.invoice_ref,
            'channel': self.channel,
            'shopify_customer_id': self.shopify_customer_id,
            'bill_amount': float(self.bill_amount) if self.bill_amount is not None else None,
            'currency': self.currency,
            'status': self.status,
            'discount_value': float(self.discount_value) if self.discount_value is not None else None,
            'capped_amount': float(self.capped_amount) if self.capped_amount is not None else None,
            'points_redeemed': float(self.points_redeemed) if self.points_redeemed is not None else None,
            'discount_code': self.discount_code,
            'provider_message': self.provider_message,
            'error_code': self.error_code,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
