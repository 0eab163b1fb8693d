"""
Database models for the BillFree loyalty app.
"""
from .shop import Shop, normalize_shop_domain
from .redemption import RedemptionAttempt, RedemptionStatus

__all__ = [
    'Shop',
    'normalize_shop_domain',
    'RedemptionAttempt',
    'RedemptionStatus',
]
