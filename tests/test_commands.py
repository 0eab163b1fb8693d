"""
Tests for the Flask CLI commands.
"""
from decimal import Decimal

from billfree_loyalty.models import Shop
from billfree_loyalty.services.redemption_ledger import RedemptionLedger


class TestShopCommands:

    def test_register_then_configure(self, runner):
        result = runner.invoke(args=['shops', 'register', 'https://New-Shop.myshopify.com', '--access-token', 'shpat_1'])
        assert result.exit_code == 0
        assert 'Registered shop new-shop.myshopify.com' in result.output

        result = runner.invoke(args=[
            'shops', 'configure-billfree', 'new-shop.myshopify.com',
            '--auth-token', 'bf-1', '--dial-code', '+91', '--enable'
        ])
        assert result.exit_code == 0
        assert 'BillFree enabled' in result.output

        shop = Shop.find_by_domain('new-shop.myshopify.com')
        assert shop.shopify_access_token == 'shpat_1'
        assert shop.billfree_auth_token == 'bf-1'
        assert shop.is_billfree_configured is True

    def test_register_uses_configured_dial_code(self, app, runner):
        app.config['BILLFREE_DEFAULT_DIAL_CODE'] = '971'

        result = runner.invoke(args=['shops', 'register', 'gulf-shop.myshopify.com', '--access-token', 'shpat_1'])

        assert result.exit_code == 0
        assert Shop.find_by_domain('gulf-shop.myshopify.com').default_dial_code == '971'

    def test_register_existing_updates_token(self, runner, configured_shop):
        result = runner.invoke(args=['shops', 'register', configured_shop.shopify_domain, '--access-token', 'shpat_2'])

        assert result.exit_code == 0
        assert 'Updated shop' in result.output
        assert Shop.query.count() == 1

    def test_enable_without_token_fails(self, runner, unconfigured_shop):
        result = runner.invoke(args=['shops', 'configure-billfree', unconfigured_shop.shopify_domain, '--enable'])

        assert result.exit_code != 0
        assert 'auth-token' in result.output

    def test_unknown_shop(self, runner, app):
        result = runner.invoke(args=['shops', 'show', 'nobody.myshopify.com'])
        assert result.exit_code != 0

    def test_show_never_prints_tokens(self, runner, configured_shop):
        result = runner.invoke(args=['shops', 'show', configured_shop.shopify_domain])

        assert result.exit_code == 0
        assert 'BillFree configured: True' in result.output
        assert 'bf-test-token' not in result.output
        assert 'shpat_test_token' not in result.output


class TestRedemptionCommands:

    def test_list_failed(self, runner, configured_shop):
        ledger = RedemptionLedger()
        attempt = ledger.claim(configured_shop.id, 'LOYALTY_7001_x', 'interactive', '7001', Decimal('100'), 'INR')
        ledger.mark_failed(attempt, 'SHOPIFY_ERROR', 'timeout')

        result = runner.invoke(args=['redemptions', 'list', '--domain', configured_shop.shopify_domain,
                                     '--status', 'failed'])

        assert result.exit_code == 0
        assert 'LOYALTY_7001_x' in result.output
        assert 'error=SHOPIFY_ERROR' in result.output
        assert '1 attempt(s)' in result.output

    def test_list_empty(self, runner, configured_shop):
        result = runner.invoke(args=['redemptions', 'list', '--domain', configured_shop.shopify_domain])

        assert result.exit_code == 0
        assert 'No redemption attempts found' in result.output
