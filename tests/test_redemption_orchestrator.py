"""
Tests for the Redemption Orchestrator.

Tests cover:
- Identity resolution from Shopify phone numbers
- Checkout path: never raises, OTP accounts and failures give no discount
- Interactive path: typed errors, OTP verification before redeem
- Discount capped to min(granted, subtotal)
- Invoice references, ledger claims and replays
- Channel-specific client wiring
"""
import pytest
from datetime import datetime
from decimal import Decimal

from billfree_loyalty.models import RedemptionAttempt, RedemptionStatus
from billfree_loyalty.services.billfree_client import BalanceQuote, RedemptionResult
from billfree_loyalty.services.redemption_orchestrator import (
    LoyaltyIdentity,
    RedemptionChannel,
    RedemptionOrchestrator,
    RedemptionOutcome,
    RedemptionState,
    build_orchestrator,
)
from billfree_loyalty.utils.exceptions import (
    DuplicateRedemptionError,
    IdentityUnresolvableError,
    InvalidStatusTransitionError,
    NoBalanceError,
    OtpInvalidError,
    OtpRequiredError,
    ProviderRejectedError,
    ProviderUnavailableError,
    ShopifyError,
    ZeroDiscountError,
)

CUSTOMER = 'gid://shopify/Customer/7001'
FIXED_NOW = datetime(2026, 10, 18, 9, 30, 0)


@pytest.fixture
def orchestrator(merchant_config, billfree_mock, shopify_mock):
    return RedemptionOrchestrator(
        merchant_config,
        billfree_mock,
        shopify_mock,
        clock=lambda: FIXED_NOW
    )


class TestLoyaltyIdentity:
    """Tests for phone normalization."""

    def test_strips_country_code(self):
        identity = LoyaltyIdentity.from_phone('+91 98765-43210', '91')
        assert identity == LoyaltyIdentity(phone_number='9876543210', dial_code='91')

    def test_keeps_national_number(self):
        identity = LoyaltyIdentity.from_phone('9176543210', '91')
        assert identity.phone_number == '9176543210'

    def test_no_digits(self):
        assert LoyaltyIdentity.from_phone('', '91') is None
        assert LoyaltyIdentity.from_phone(None, '91') is None

    def test_dial_code_plus_is_ignored(self):
        identity = LoyaltyIdentity.from_phone('+971501234567', '+971')
        assert identity.dial_code == '971'
        # fewer than 10 digits would remain, so the number is kept whole
        assert identity.phone_number == '971501234567'


class TestOutcomeStateMachine:
    """Tests for RedemptionOutcome transitions."""

    def test_illegal_transition_rejected(self):
        outcome = RedemptionOutcome(channel=RedemptionChannel.CHECKOUT, customer_id=CUSTOMER, subtotal=Decimal('10'))
        with pytest.raises(InvalidStatusTransitionError):
            outcome.transition(RedemptionState.EMITTED)

    def test_abort_is_final(self):
        outcome = RedemptionOutcome(channel=RedemptionChannel.CHECKOUT, customer_id=CUSTOMER, subtotal=Decimal('10'))
        outcome.abort(RedemptionState.NO_DISCOUNT, 'NO_BALANCE')
        outcome.abort(RedemptionState.FAILED, 'OTHER')

        assert outcome.state == RedemptionState.NO_DISCOUNT
        assert outcome.reason == 'NO_BALANCE'
        assert outcome.is_terminal is True


class TestCheckoutRedemption:
    """Tests for redeem_at_checkout."""

    def test_happy_path(self, orchestrator, billfree_mock):
        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR')

        assert outcome.state == RedemptionState.REDEEMED
        assert outcome.capped_amount == Decimal('150.00')
        assert outcome.has_discount is True
        assert outcome.history == [
            RedemptionState.START,
            RedemptionState.IDENTITY_RESOLVED,
            RedemptionState.BALANCE_CHECKED,
            RedemptionState.REDEEMED,
        ]
        billfree_mock.get_balance.assert_called_once_with('9876543210', '91')
        args, kwargs = billfree_mock.redeem.call_args
        assert args[0] == '9876543210'
        assert args[2].startswith('CHECKOUT_AUTO_7001_')
        assert args[3] == '2026-10-18'
        assert kwargs['otp_code'] is None

        attempt = RedemptionAttempt.query.get(outcome.attempt_id)
        assert attempt.status == RedemptionStatus.REDEEMED.value
        assert attempt.capped_amount == Decimal('150.00')

    def test_discount_capped_to_subtotal(self, orchestrator, billfree_mock):
        billfree_mock.redeem.return_value = RedemptionResult(discount_value=Decimal('500'))

        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('120.50'), 'INR')

        assert outcome.capped_amount == Decimal('120.50')
        assert outcome.redemption.discount_value == Decimal('500')

    def test_zero_balance_gives_no_discount(self, orchestrator, billfree_mock):
        billfree_mock.get_balance.return_value = BalanceQuote(Decimal('0'), False, 'Earn points on your next bill')

        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR')

        assert outcome.state == RedemptionState.NO_DISCOUNT
        assert outcome.reason == 'NO_BALANCE'
        billfree_mock.redeem.assert_not_called()

    def test_otp_account_never_redeems_at_checkout(self, orchestrator, billfree_mock):
        billfree_mock.get_balance.return_value = BalanceQuote(Decimal('800'), True)

        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR')

        assert outcome.state == RedemptionState.NO_DISCOUNT
        assert outcome.reason == 'OTP_REQUIRED'
        assert RedemptionState.OTP_PENDING in outcome.history
        billfree_mock.verify_otp.assert_not_called()
        billfree_mock.redeem.assert_not_called()

    def test_provider_timeout_gives_no_discount(self, orchestrator, billfree_mock):
        billfree_mock.get_balance.side_effect = ProviderUnavailableError('points', 'timeout')

        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR')

        assert outcome.state == RedemptionState.NO_DISCOUNT
        assert outcome.reason == 'PROVIDER_UNAVAILABLE'
        assert outcome.has_discount is False

    def test_redeem_failure_marks_ledger_failed(self, orchestrator, billfree_mock):
        billfree_mock.redeem.side_effect = ProviderRejectedError('redeem', 'Minimum bill not met')

        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR')

        assert outcome.state == RedemptionState.NO_DISCOUNT
        attempt = RedemptionAttempt.query.one()
        assert attempt.status == RedemptionStatus.FAILED.value
        assert attempt.error_code == 'PROVIDER_REJECTED'

    def test_no_phone_gives_no_discount(self, orchestrator, shopify_mock, billfree_mock):
        shopify_mock.get_customer_phone.return_value = None

        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR')

        assert outcome.reason == 'IDENTITY_UNRESOLVABLE'
        billfree_mock.get_balance.assert_not_called()

    def test_shopify_failure_gives_no_discount(self, orchestrator, shopify_mock):
        shopify_mock.get_customer_phone.side_effect = ShopifyError('boom')

        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR')

        assert outcome.state == RedemptionState.NO_DISCOUNT

    def test_empty_cart_never_calls_provider(self, orchestrator, billfree_mock, shopify_mock):
        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('0'), 'INR')

        assert outcome.reason == 'ZERO_DISCOUNT'
        shopify_mock.get_customer_phone.assert_not_called()
        billfree_mock.get_balance.assert_not_called()

    def test_zero_granted_value(self, orchestrator, billfree_mock):
        billfree_mock.redeem.return_value = RedemptionResult(discount_value=Decimal('0'))

        outcome = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR')

        assert outcome.state == RedemptionState.NO_DISCOUNT
        assert outcome.reason == 'ZERO_DISCOUNT'
        assert RedemptionAttempt.query.one().status == RedemptionStatus.FAILED.value

    def test_anonymous_buyer(self, orchestrator, shopify_mock):
        outcome = orchestrator.redeem_at_checkout(None, Decimal('1000'), 'INR')

        assert outcome.reason == 'IDENTITY_UNRESOLVABLE'
        shopify_mock.get_customer_phone.assert_not_called()


class TestCheckoutReplay:
    """Re-evaluation of the same cart must not redeem twice."""

    def test_emitted_attempt_is_replayed(self, orchestrator, billfree_mock):
        first = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR', idempotency_key='cart-abc')
        attempt = RedemptionAttempt.query.get(first.attempt_id)
        orchestrator.ledger.mark_emitted(attempt)

        second = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR', idempotency_key='cart-abc')

        assert second.replayed is True
        assert second.capped_amount == Decimal('150.00')
        assert second.invoice_ref == first.invoice_ref == 'CHECKOUT_AUTO_7001_cart-abc'
        assert billfree_mock.redeem.call_count == 1
        billfree_mock.get_balance.assert_called_once()

    def test_replay_capped_to_new_subtotal(self, orchestrator, billfree_mock):
        first = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR', idempotency_key='cart-abc')
        orchestrator.ledger.mark_emitted(RedemptionAttempt.query.get(first.attempt_id))

        second = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('100'), 'INR', idempotency_key='cart-abc')

        assert second.capped_amount == Decimal('100.00')

    def test_failed_attempt_is_not_replayed(self, orchestrator, billfree_mock):
        billfree_mock.redeem.side_effect = ProviderUnavailableError('redeem', 'timeout')
        orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR', idempotency_key='cart-abc')

        billfree_mock.redeem.side_effect = None
        second = orchestrator.redeem_at_checkout(CUSTOMER, Decimal('1000'), 'INR', idempotency_key='cart-abc')

        assert second.state == RedemptionState.NO_DISCOUNT
        assert second.reason == 'DUPLICATE_REDEMPTION'
        assert billfree_mock.redeem.call_count == 1


class TestInteractiveRedemption:
    """Tests for redeem_interactive."""

    def test_happy_path(self, orchestrator, billfree_mock):
        outcome = orchestrator.redeem_interactive(CUSTOMER, Decimal('1000'), 'INR')

        assert outcome.state == RedemptionState.REDEEMED
        assert outcome.capped_amount == Decimal('150.00')
        assert outcome.remaining_points == Decimal('350')
        assert outcome.invoice_ref.startswith('LOYALTY_7001_')

    def test_otp_required_without_code(self, orchestrator, billfree_mock):
        billfree_mock.get_balance.return_value = BalanceQuote(Decimal('800'), True)

        with pytest.raises(OtpRequiredError) as exc_info:
            orchestrator.redeem_interactive(CUSTOMER, Decimal('1000'), 'INR')

        assert exc_info.value.outcome.state == RedemptionState.OTP_PENDING
        billfree_mock.redeem.assert_not_called()

    def test_wrong_otp_never_redeems(self, orchestrator, billfree_mock):
        billfree_mock.get_balance.return_value = BalanceQuote(Decimal('800'), True)
        billfree_mock.verify_otp.side_effect = OtpInvalidError()

        with pytest.raises(OtpInvalidError) as exc_info:
            orchestrator.redeem_interactive(CUSTOMER, Decimal('1000'), 'INR', otp_code='0000')

        assert exc_info.value.outcome.state == RedemptionState.OTP_PENDING
        billfree_mock.verify_otp.assert_called_once_with('9876543210', '91', '0000')
        billfree_mock.redeem.assert_not_called()
        assert RedemptionAttempt.query.count() == 0

    def test_correct_otp_redeems_with_code(self, orchestrator, billfree_mock):
        billfree_mock.get_balance.return_value = BalanceQuote(Decimal('800'), True)

        outcome = orchestrator.redeem_interactive(CUSTOMER, Decimal('1000'), 'INR', otp_code='1234')

        assert RedemptionState.OTP_VERIFIED in outcome.history
        assert billfree_mock.redeem.call_args[1]['otp_code'] == '1234'

    def test_no_balance_raises(self, orchestrator, billfree_mock):
        billfree_mock.get_balance.return_value = BalanceQuote(Decimal('0'), False, 'No points yet')

        with pytest.raises(NoBalanceError) as exc_info:
            orchestrator.redeem_interactive(CUSTOMER, Decimal('1000'))

        assert exc_info.value.outcome.state == RedemptionState.FAILED

    def test_unavailable_is_retryable(self, orchestrator, billfree_mock):
        billfree_mock.get_balance.side_effect = ProviderUnavailableError('points', 'timeout')

        with pytest.raises(ProviderUnavailableError) as exc_info:
            orchestrator.redeem_interactive(CUSTOMER, Decimal('1000'))

        assert exc_info.value.retryable is True

    def test_missing_phone(self, orchestrator, shopify_mock):
        shopify_mock.get_customer_phone.return_value = ''

        with pytest.raises(IdentityUnresolvableError):
            orchestrator.redeem_interactive(CUSTOMER, Decimal('1000'))

    def test_zero_bill_amount(self, orchestrator, billfree_mock):
        with pytest.raises(ZeroDiscountError):
            orchestrator.redeem_interactive(CUSTOMER, Decimal('0'))
        billfree_mock.get_balance.assert_not_called()

    def test_replayed_request_is_duplicate(self, orchestrator, billfree_mock):
        orchestrator.redeem_interactive(CUSTOMER, Decimal('1000'), idempotency_key='req-1')

        with pytest.raises(DuplicateRedemptionError):
            orchestrator.redeem_interactive(CUSTOMER, Decimal('1000'), idempotency_key='req-1')

        assert billfree_mock.redeem.call_count == 1


class TestInvoiceRef:
    """Tests for make_invoice_ref."""

    def test_key_is_sanitized_and_bounded(self, orchestrator):
        ref = orchestrator.make_invoice_ref(RedemptionChannel.INTERACTIVE, CUSTOMER, 'a b/c?' + 'x' * 100)
        assert ref.startswith('LOYALTY_7001_abc')
        assert len(ref) == len('LOYALTY_7001_') + 64

    def test_without_key_is_unique(self, orchestrator):
        first = orchestrator.make_invoice_ref(RedemptionChannel.CHECKOUT, CUSTOMER)
        second = orchestrator.make_invoice_ref(RedemptionChannel.CHECKOUT, CUSTOMER)
        assert first != second
        assert first.startswith('CHECKOUT_AUTO_7001_20261018093000000_')


class TestLookupAndOtp:
    """Tests for the read-only helpers."""

    def test_identity_then_balance(self, orchestrator):
        identity = orchestrator.resolve_identity(CUSTOMER)
        quote = orchestrator.check_balance(identity)
        assert identity.phone_number == '9876543210'
        assert quote.available_points == Decimal('500')

    def test_request_otp_by_customer(self, orchestrator, billfree_mock):
        challenge = orchestrator.request_otp(customer_id=CUSTOMER)

        billfree_mock.send_otp.assert_called_once_with('9876543210', '91')
        assert challenge.phone_number == '******3210'
        assert challenge.issued_at == FIXED_NOW
        assert challenge.dispatch.success is True

    def test_request_otp_by_phone(self, orchestrator, billfree_mock, shopify_mock):
        orchestrator.request_otp(phone='98765 11111')

        billfree_mock.send_otp.assert_called_once_with('9876511111', '91')
        shopify_mock.get_customer_phone.assert_not_called()


class TestBuildOrchestrator:
    """Channel-specific client settings."""

    def test_checkout_uses_short_timeout_without_retries(self, app, merchant_config):
        app.config['BILLFREE_READ_RETRIES'] = 2
        orchestrator = build_orchestrator(merchant_config, RedemptionChannel.CHECKOUT)

        assert orchestrator.billfree.timeout == app.config['BILLFREE_CHECKOUT_TIMEOUT']
        assert orchestrator.billfree.read_retries == 0
        assert orchestrator.shopify.read_retries == 0
        assert orchestrator.billfree.auth_token == 'bf-test-token'

    def test_interactive_uses_read_retries(self, app, merchant_config):
        app.config['BILLFREE_READ_RETRIES'] = 2
        orchestrator = build_orchestrator(merchant_config, RedemptionChannel.INTERACTIVE)

        assert orchestrator.billfree.timeout == app.config['BILLFREE_TIMEOUT']
        assert orchestrator.billfree.read_retries == 2
        assert orchestrator.shopify.shop_domain == 'test-store.myshopify.com'
