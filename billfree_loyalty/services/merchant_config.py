"""
Per-shop BillFree configuration.

Resolves the MerchantConfig for a shop from the shops table. Fails closed:
anything missing raises NotConfiguredError. The checkout path turns that
into "no discount", the account page into a visible error.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict

from ..models import Shop, normalize_shop_domain
from ..utils.exceptions import NotConfiguredError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MerchantConfig:
    """Read-only view of a shop's integration settings for one attempt."""
    shop_domain: str
    is_enabled: bool
    provider_auth_token: str
    shopify_access_token: str
    default_dial_code: str = '91'
    field_mappings: Dict[str, str] = field(default_factory=dict)
    shop_id: int = None


class MerchantConfigResolver:
    """Loads MerchantConfig from the database."""

    def resolve(self, shop_domain: str) -> MerchantConfig:
        """
        Resolve the integration config for a shop.

        Args:
            shop_domain: e.g. 'mystore.myshopify.com'

        Returns:
            MerchantConfig

        Raises:
            NotConfiguredError: unknown or inactive shop, integration disabled,
                or a BillFree/Shopify token is missing
        """
        domain = normalize_shop_domain(shop_domain)
        if not domain:
            raise NotConfiguredError(None, 'missing shop domain')

        shop = Shop.find_by_domain(domain)

        if not shop:
            logger.info(f"No shop record for {domain}")
            raise NotConfiguredError(domain, 'shop not installed')
        if not shop.is_active:
            raise NotConfiguredError(domain, 'shop inactive')
        if not shop.is_billfree_configured or not shop.billfree_auth_token:
            logger.info(f"BillFree not configured for {domain}")
            raise NotConfiguredError(domain)
        if not shop.shopify_access_token:
            logger.error(f"Shopify access token missing for {domain}; app needs re-installation")
            raise NotConfiguredError(domain, 'app needs re-installation')

        return MerchantConfig(
            shop_domain=shop.shopify_domain,
            is_enabled=True,
            provider_auth_token=shop.billfree_auth_token,
            shopify_access_token=shop.shopify_access_token,
            default_dial_code=shop.default_dial_code or '91',
            field_mappings=dict(shop.field_mappings or {}),
            shop_id=shop.id
        )


def resolve_merchant_config(shop_domain: str) -> MerchantConfig:
    """Shortcut for MerchantConfigResolver().resolve()."""
    return MerchantConfigResolver().resolve(shop_domain)
