"""
Redemption Orchestrator.

Drives one redemption attempt end to end:

    start -> identity_resolved -> balance_checked -> [otp_pending -> otp_verified]
          -> redeemed -> emitted

Terminal states are no_discount, emitted and failed. The orchestrator only
decides; it produces a RedemptionOutcome that one of the emission adapters
(checkout operation or discount code) turns into an actual discount.

Two channels share the same state machine:
- CHECKOUT: unattended discount-function evaluation. Every error collapses to
  no_discount, and OTP-gated accounts never redeem.
- INTERACTIVE: customer clicked "redeem" on the account page. Errors are
  raised as typed exceptions for the API layer to show.

The redeem call is made at most once per invoice reference and never retried.
"""
import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Optional

from flask import current_app

from .billfree_client import BillFreeClient, BalanceQuote, OtpDispatchResult, RedemptionResult, TWO_PLACES
from .merchant_config import MerchantConfig
from .redemption_ledger import RedemptionLedger
from .shopify_client import ShopifyClient, customer_numeric_id
from ..models import RedemptionAttempt, RedemptionStatus
from ..utils.exceptions import (
    BillFreeError,
    DuplicateRedemptionError,
    IdentityUnresolvableError,
    InvalidStatusTransitionError,
    NoBalanceError,
    OtpInvalidError,
    OtpRequiredError,
    ValidationError,
    ZeroDiscountError,
)
from ..utils.logging_config import mask_phone

logger = logging.getLogger(__name__)


# ==================== States ====================

class RedemptionChannel(str, Enum):
    """Where a redemption attempt was triggered from."""
    CHECKOUT = 'checkout'
    INTERACTIVE = 'interactive'


class RedemptionState(str, Enum):
    """Redemption state machine states."""
    START = 'start'
    IDENTITY_RESOLVED = 'identity_resolved'
    BALANCE_CHECKED = 'balance_checked'
    OTP_PENDING = 'otp_pending'
    OTP_VERIFIED = 'otp_verified'
    REDEEMED = 'redeemed'
    EMITTED = 'emitted'
    NO_DISCOUNT = 'no_discount'
    FAILED = 'failed'


TERMINAL_STATES = frozenset({
    RedemptionState.NO_DISCOUNT,
    RedemptionState.EMITTED,
    RedemptionState.FAILED,
})

ALLOWED_TRANSITIONS = {
    # start -> redeemed only when replaying an already-emitted checkout attempt
    RedemptionState.START: {RedemptionState.IDENTITY_RESOLVED, RedemptionState.REDEEMED},
    RedemptionState.IDENTITY_RESOLVED: {RedemptionState.BALANCE_CHECKED},
    RedemptionState.BALANCE_CHECKED: {RedemptionState.OTP_PENDING, RedemptionState.REDEEMED},
    RedemptionState.OTP_PENDING: {RedemptionState.OTP_VERIFIED},
    RedemptionState.OTP_VERIFIED: {RedemptionState.REDEEMED},
    RedemptionState.REDEEMED: {RedemptionState.EMITTED},
}


# ==================== Values ====================

@dataclass(frozen=True)
class LoyaltyIdentity:
    """Phone identity BillFree knows the customer by. Never persisted."""
    phone_number: str
    dial_code: str

    @classmethod
    def from_phone(cls, raw_phone: Optional[str], default_dial_code: str = '91') -> Optional['LoyaltyIdentity']:
        """
        Derive the identity from a Shopify phone ('+91 98765 43210').

        A leading dial code is dropped when at least 10 national digits
        remain. Returns None when there are no digits at all.
        """
        digits = re.sub(r'\D', '', raw_phone or '')
        if not digits:
            return None

        dial_code = re.sub(r'\D', '', default_dial_code or '') or '91'
        if digits.startswith(dial_code) and len(digits) - len(dial_code) >= 10:
            digits = digits[len(dial_code):]

        return cls(phone_number=digits, dial_code=dial_code)


@dataclass(frozen=True)
class OtpChallenge:
    """Exists between send-otp and the redeem call that verifies it."""
    phone_number: str  # masked
    issued_at: datetime
    dispatch: OtpDispatchResult


@dataclass
class RedemptionOutcome:
    """Result of running the state machine for one attempt."""
    channel: RedemptionChannel
    customer_id: Optional[str]
    subtotal: Decimal
    currency: Optional[str] = None
    state: RedemptionState = RedemptionState.START
    history: List[RedemptionState] = field(default_factory=lambda: [RedemptionState.START])
    identity: Optional[LoyaltyIdentity] = None
    quote: Optional[BalanceQuote] = None
    redemption: Optional[RedemptionResult] = None
    capped_amount: Decimal = Decimal('0.00')
    invoice_ref: Optional[str] = None
    attempt_id: Optional[int] = None
    reason: Optional[str] = None
    replayed: bool = False

    def transition(self, new_state: RedemptionState) -> None:
        """Move to new_state, rejecting transitions the machine doesn't allow."""
        if new_state not in ALLOWED_TRANSITIONS.get(self.state, set()):
            raise InvalidStatusTransitionError('redemption', self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def abort(self, terminal_state: RedemptionState, reason: str = None) -> None:
        """End the attempt in no_discount or failed from any non-terminal state."""
        if self.state in TERMINAL_STATES:
            return
        self.state = terminal_state
        self.history.append(terminal_state)
        self.reason = reason

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def has_discount(self) -> bool:
        return (
            self.state in (RedemptionState.REDEEMED, RedemptionState.EMITTED)
            and self.capped_amount > 0
        )

    @property
    def points_redeemed(self) -> Decimal:
        return self.redemption.points_redeemed if self.redemption else Decimal('0')

    @property
    def remaining_points(self) -> Optional[Decimal]:
        if self.quote is None:
            return None
        return max(self.quote.available_points - self.points_redeemed, Decimal('0'))


# ==================== Orchestrator ====================

class RedemptionOrchestrator:
    """
    Runs redemption attempts for one shop.

    All collaborators are passed in; nothing is read from request globals.

    Usage:
        orchestrator = build_orchestrator(merchant, RedemptionChannel.INTERACTIVE)
        outcome = orchestrator.redeem_interactive(customer_id, Decimal('1250.00'), 'INR', otp_code='1234')
    """

    def __init__(
        self,
        merchant: MerchantConfig,
        billfree: BillFreeClient,
        shopify: ShopifyClient,
        ledger: RedemptionLedger = None,
        clock: Callable[[], datetime] = None
    ):
        self.merchant = merchant
        self.billfree = billfree
        self.shopify = shopify
        self.ledger = ledger or RedemptionLedger()
        self.clock = clock or datetime.utcnow

    # ---------- Read-only steps (safe for callers to retry) ----------

    def resolve_identity(self, customer_id: Optional[str]) -> LoyaltyIdentity:
        """
        Resolve the customer's BillFree identity from their Shopify phone.

        Raises:
            IdentityUnresolvableError: no customer id or no phone on file
            ShopifyError: customer lookup failed
        """
        if not customer_id:
            raise IdentityUnresolvableError("Please sign in to use loyalty points.")

        phone = self.shopify.get_customer_phone(customer_id)
        identity = LoyaltyIdentity.from_phone(phone, self.merchant.default_dial_code)
        if identity is None:
            logger.info(f"No phone on file for customer {customer_numeric_id(customer_id)} "
                        f"at {self.merchant.shop_domain}")
            raise IdentityUnresolvableError()

        return identity

    def check_balance(self, identity: LoyaltyIdentity) -> BalanceQuote:
        return self.billfree.get_balance(identity.phone_number, identity.dial_code)

    def request_otp(self, customer_id: str = None, phone: str = None) -> OtpChallenge:
        """
        Send an OTP to the customer's phone.

        Either the customer id (phone looked up in Shopify) or an explicit
        phone number must be given.
        """
        if phone:
            identity = LoyaltyIdentity.from_phone(phone, self.merchant.default_dial_code)
            if identity is None:
                raise ValidationError("A valid phone number is required to send an OTP.", 'user_phone')
        else:
            identity = self.resolve_identity(customer_id)

        dispatch = self.billfree.send_otp(identity.phone_number, identity.dial_code)
        return OtpChallenge(
            phone_number=mask_phone(identity.phone_number),
            issued_at=self.clock(),
            dispatch=dispatch
        )

    # ---------- Redemption ----------

    def make_invoice_ref(
        self,
        channel: RedemptionChannel,
        customer_id: str,
        idempotency_key: str = None
    ) -> str:
        """
        Invoice reference sent to BillFree as inv_no.

        With an idempotency key the reference is deterministic, so a replayed
        request maps to the same ledger row. Without one it is unique per call.
        """
        prefix = 'CHECKOUT_AUTO' if channel == RedemptionChannel.CHECKOUT else 'LOYALTY'
        customer = customer_numeric_id(customer_id)

        if idempotency_key:
            key = re.sub(r'[^A-Za-z0-9_-]', '', str(idempotency_key))[:64]
            if key:
                return f'{prefix}_{customer}_{key}'

        stamp = self.clock().strftime('%Y%m%d%H%M%S%f')[:-3]
        return f'{prefix}_{customer}_{stamp}_{secrets.token_hex(3)}'

    def redeem_at_checkout(
        self,
        customer_id: Optional[str],
        subtotal: Decimal,
        currency: str,
        idempotency_key: str = None
    ) -> RedemptionOutcome:
        """
        Run the unattended checkout path. Never raises BillFreeError:
        every failure ends in no_discount with the error code as reason.
        """
        outcome = RedemptionOutcome(
            channel=RedemptionChannel.CHECKOUT,
            customer_id=customer_id,
            subtotal=Decimal(subtotal),
            currency=currency
        )

        try:
            self._run(outcome, otp_code=None, idempotency_key=idempotency_key)
        except BillFreeError as e:
            outcome.abort(RedemptionState.NO_DISCOUNT, e.code)
            log = logger.warning if e.retryable else logger.info
            log(f"Checkout redemption skipped for {self.merchant.shop_domain}: {e.code} ({e.message})")

        return outcome

    def redeem_interactive(
        self,
        customer_id: str,
        bill_amount: Decimal,
        currency: str = None,
        otp_code: str = None,
        idempotency_key: str = None
    ) -> RedemptionOutcome:
        """
        Run the customer-initiated path.

        Raises:
            BillFreeError subclasses, with ``outcome`` attached. A wrong or
            missing OTP leaves the outcome in otp_pending; anything else
            marks it failed.
        """
        outcome = RedemptionOutcome(
            channel=RedemptionChannel.INTERACTIVE,
            customer_id=customer_id,
            subtotal=Decimal(bill_amount),
            currency=currency
        )

        try:
            self._run(outcome, otp_code=otp_code, idempotency_key=idempotency_key)
        except BillFreeError as e:
            otp_error = isinstance(e, (OtpInvalidError, OtpRequiredError))
            if otp_error and outcome.state == RedemptionState.OTP_PENDING:
                outcome.reason = e.code
            else:
                outcome.abort(RedemptionState.FAILED, e.code)
            e.outcome = outcome
            raise

        return outcome

    def _run(self, outcome: RedemptionOutcome, otp_code: Optional[str], idempotency_key: Optional[str]) -> None:
        channel = outcome.channel

        if not outcome.customer_id:
            raise IdentityUnresolvableError("Please sign in to use loyalty points.")
        if outcome.subtotal <= 0:
            # Nothing to discount; don't spend the customer's points on it
            raise ZeroDiscountError()

        outcome.invoice_ref = self.make_invoice_ref(channel, outcome.customer_id, idempotency_key)

        if idempotency_key:
            existing = self.ledger.get(outcome.invoice_ref)
            if existing is not None:
                self._replay(outcome, existing)
                return

        outcome.identity = self.resolve_identity(outcome.customer_id)
        outcome.transition(RedemptionState.IDENTITY_RESOLVED)

        outcome.quote = self.check_balance(outcome.identity)
        outcome.transition(RedemptionState.BALANCE_CHECKED)

        if outcome.quote.available_points <= 0:
            raise NoBalanceError(outcome.quote.scheme_message)

        verified_otp = None
        if outcome.quote.otp_required:
            outcome.transition(RedemptionState.OTP_PENDING)
            if channel == RedemptionChannel.CHECKOUT:
                raise OtpRequiredError("OTP-protected accounts can only redeem from the account page.")
            if not otp_code:
                raise OtpRequiredError()
            # Wrong code raises OtpInvalidError here, before any points are touched
            self.billfree.verify_otp(outcome.identity.phone_number, outcome.identity.dial_code, otp_code)
            outcome.transition(RedemptionState.OTP_VERIFIED)
            verified_otp = otp_code

        self._redeem(outcome, verified_otp)

    def _redeem(self, outcome: RedemptionOutcome, otp_code: Optional[str]) -> None:
        attempt = self.ledger.claim(
            shop_id=self.merchant.shop_id,
            invoice_ref=outcome.invoice_ref,
            channel=outcome.channel.value,
            customer_id=customer_numeric_id(outcome.customer_id),
            bill_amount=outcome.subtotal.quantize(TWO_PLACES),
            currency=outcome.currency
        )
        outcome.attempt_id = attempt.id

        try:
            result = self.billfree.redeem(
                outcome.identity.phone_number,
                outcome.identity.dial_code,
                outcome.invoice_ref,
                self.clock().date().isoformat(),
                outcome.subtotal,
                otp_code=otp_code
            )
        except BillFreeError as e:
            self.ledger.mark_failed(attempt, e.code, e.message)
            raise

        outcome.redemption = result
        outcome.capped_amount = result.capped_to(outcome.subtotal)
        self.ledger.mark_redeemed(
            attempt,
            discount_value=result.discount_value,
            capped_amount=outcome.capped_amount,
            points_redeemed=result.points_redeemed,
            provider_message=result.provider_message
        )
        outcome.transition(RedemptionState.REDEEMED)

        logger.info(
            f"Redeemed {result.points_redeemed} points for {outcome.capped_amount} "
            f"(granted {result.discount_value}) invoice={outcome.invoice_ref}"
        )

        if outcome.capped_amount <= 0:
            self.ledger.mark_failed(attempt, ZeroDiscountError().code)
            raise ZeroDiscountError(result.provider_message)

    def _replay(self, outcome: RedemptionOutcome, attempt: RedemptionAttempt) -> None:
        """
        Handle a request whose invoice reference was already used.

        Checkout re-evaluations of an emitted attempt get the same discount
        again (capped to the current subtotal) without calling BillFree.
        Everything else is a duplicate.
        """
        replayable = (
            outcome.channel == RedemptionChannel.CHECKOUT
            and attempt.status == RedemptionStatus.EMITTED.value
            and attempt.capped_amount
        )
        if not replayable:
            raise DuplicateRedemptionError(attempt.invoice_ref, attempt.status, attempt.discount_code)

        stored_amount = Decimal(attempt.capped_amount)
        outcome.redemption = RedemptionResult(
            discount_value=Decimal(attempt.discount_value if attempt.discount_value is not None else stored_amount),
            points_redeemed=Decimal(attempt.points_redeemed or 0),
            provider_message=attempt.provider_message or ''
        )
        outcome.capped_amount = min(stored_amount, outcome.subtotal).quantize(TWO_PLACES)
        outcome.attempt_id = attempt.id
        outcome.replayed = True
        outcome.transition(RedemptionState.REDEEMED)

        if outcome.capped_amount <= 0:
            raise ZeroDiscountError()


def build_orchestrator(merchant: MerchantConfig, channel: RedemptionChannel, config=None) -> RedemptionOrchestrator:
    """
    Wire an orchestrator with clients tuned for the channel.

    Checkout gets the short timeout and no read retries; the account page
    gets the normal timeout and retries on idempotent reads.
    """
    config = config if config is not None else current_app.config

    if channel == RedemptionChannel.CHECKOUT:
        timeout = config.get('BILLFREE_CHECKOUT_TIMEOUT', 3.0)
        shopify_timeout = min(timeout, config.get('SHOPIFY_TIMEOUT', 10.0))
        read_retries = 0
    else:
        timeout = config.get('BILLFREE_TIMEOUT', 10.0)
        shopify_timeout = config.get('SHOPIFY_TIMEOUT', 10.0)
        read_retries = config.get('BILLFREE_READ_RETRIES', 0)

    billfree = BillFreeClient.from_app_config(
        merchant.provider_auth_token,
        config,
        timeout=timeout,
        read_retries=read_retries
    )
    shopify = ShopifyClient(
        merchant.shop_domain,
        merchant.shopify_access_token,
        api_version=config.get('SHOPIFY_API_VERSION', '2025-07'),
        timeout=shopify_timeout,
        read_retries=read_retries
    )

    return RedemptionOrchestrator(merchant, billfree, shopify)
