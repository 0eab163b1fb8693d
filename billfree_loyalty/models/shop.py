"""
Shop model: one row per installed Shopify store.
"""
from datetime import datetime
from ..extensions import db


def normalize_shop_domain(shop_domain: str) -> str:
    """Strip scheme and trailing slash, lower-case ('https://X.myshopify.com/' -> 'x.myshopify.com')."""
    if not shop_domain:
        return ''
    return shop_domain.replace('https://', '').replace('http://', '').strip().rstrip('/').lower()


class Shop(db.Model):
    """
    Shopify store using the BillFree loyalty integration.

    Holds the offline Shopify access token and the merchant's BillFree
    settings. Read on every redemption attempt.
    """
    __tablename__ = 'shops'

    id = db.Column(db.Integer, primary_key=True)
    shop_name = db.Column(db.String(255))
    shopify_domain = db.Column(db.String(255), unique=True, nullable=False, index=True)
    shopify_access_token = db.Column(db.Text)  # Offline token from app install

    # BillFree integration
    billfree_auth_token = db.Column(db.Text)
    is_billfree_configured = db.Column(db.Boolean, default=False, nullable=False)
    default_dial_code = db.Column(db.String(5), default='91', nullable=False)
    field_mappings = db.Column(db.JSON, default=dict)  # BillFree invoice field -> Shopify order path

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    redemption_attempts = db.relationship('RedemptionAttempt', backref='shop', lazy='dynamic')

    def __repr__(self):
        return f'<Shop {self.shopify_domain}>'

    @classmethod
    def find_by_domain(cls, shop_domain: str):
        return cls.query.filter_by(shopify_domain=normalize_shop_domain(shop_domain)).first()

    def to_dict(self):
        return {
            'id': self.id,
            'shop_name': self.shop_name,
            'shopify_domain': self.shopify_domain,
            'is_billfree_configured': bool(self.is_billfree_configured),
            'has_billfree_auth_token': bool(self.billfree_auth_token),
            'default_dial_code': self.default_dial_code,
            'field_mappings': self.field_mappings or {},
            'is_active': self.is_active,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
