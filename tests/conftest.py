"""
Shared pytest fixtures.

The app fixture keeps one application context pushed for the whole test, so
model instances created by fixtures stay usable inside test-client requests.
"""
import time
from decimal import Decimal
from unittest.mock import MagicMock

import jwt
import pytest

from billfree_loyalty import create_app
from billfree_loyalty.extensions import db as _db


SHOP_DOMAIN = 'test-store.myshopify.com'
CUSTOMER_GID = 'gid://shopify/Customer/7001'


@pytest.fixture
def app():
    """Application with a fresh in-memory database."""
    app = create_app('testing')

    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def configured_shop(app):
    """Installed shop with BillFree enabled."""
    from billfree_loyalty.models import Shop

    shop = Shop(
        shop_name='Test Store',
        shopify_domain=SHOP_DOMAIN,
        shopify_access_token='shpat_test_token',
        billfree_auth_token='bf-test-token',
        is_billfree_configured=True,
        default_dial_code='91',
        field_mappings={'inv_no': 'order.name'},
        is_active=True
    )
    _db.session.add(shop)
    _db.session.commit()
    return shop


@pytest.fixture
def unconfigured_shop(app):
    """Installed shop that has not set up BillFree yet."""
    from billfree_loyalty.models import Shop

    shop = Shop(
        shop_name='Other Store',
        shopify_domain='other-store.myshopify.com',
        shopify_access_token='shpat_other_token',
        is_billfree_configured=False,
        is_active=True
    )
    _db.session.add(shop)
    _db.session.commit()
    return shop


@pytest.fixture
def merchant_config(configured_shop):
    from billfree_loyalty.services.merchant_config import MerchantConfigResolver
    return MerchantConfigResolver().resolve(configured_shop.shopify_domain)


@pytest.fixture
def make_session_token():
    """Build a Shopify-style session token signed with the test app secret."""
    def _make(shop=SHOP_DOMAIN, sub=CUSTOMER_GID, secret='test-api-secret', aud='test-api-key', expires_in=60):
        now = int(time.time())
        payload = {
            'iss': f'https://{shop}/admin',
            'dest': f'https://{shop}',
            'aud': aud,
            'sub': sub,
            'iat': now,
            'nbf': now - 5,
            'exp': now + expires_in,
        }
        return jwt.encode(payload, secret, algorithm='HS256')
    return _make


@pytest.fixture
def customer_headers(make_session_token):
    return {
        'Authorization': f'Bearer {make_session_token()}',
        'Content-Type': 'application/json'
    }


@pytest.fixture
def shop_headers(configured_shop):
    return {
        'X-Shop-Domain': configured_shop.shopify_domain,
        'Content-Type': 'application/json'
    }


@pytest.fixture
def billfree_mock():
    """BillFreeClient stand-in with a redeemable 500-point balance and no OTP."""
    from billfree_loyalty.services.billfree_client import BalanceQuote, OtpDispatchResult, RedemptionResult

    client = MagicMock()
    client.get_balance.return_value = BalanceQuote(
        available_points=Decimal('500'),
        otp_required=False,
        scheme_message='1 point = 1 INR'
    )
    client.send_otp.return_value = OtpDispatchResult(success=True, message='OTP sent successfully')
    client.verify_otp.return_value = None
    client.redeem.return_value = RedemptionResult(
        discount_value=Decimal('150.00'),
        points_redeemed=Decimal('150'),
        provider_message='Points redeemed successfully'
    )
    return client


@pytest.fixture
def shopify_mock():
    """ShopifyClient stand-in for a customer with an Indian mobile number."""
    client = MagicMock()
    client.get_customer_phone.return_value = '+91 98765 43210'
    client.create_discount_code.return_value = 'BILLFREE-ABCD1234'
    return client
