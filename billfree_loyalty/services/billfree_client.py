"""
BillFree loyalty API client.

Wraps the four BillFree endpoints used by the redemption workflow:
- points: balance lookup and OTP requirement
- send_otp: trigger an SMS OTP to the customer
- verify_otp: check a customer-submitted OTP
- redeem: convert points into a discount (debits points at BillFree)

BillFree signals business errors with an ``error`` flag and a free-text
``response``. Those are mapped to typed exceptions here so callers never
match on provider strings.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests

from ..utils.exceptions import (
    ProviderUnavailableError,
    ProviderRejectedError,
    OtpRequiredError,
    OtpInvalidError,
)
from ..utils.logging_config import mask_phone

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')


# ==================== Response types ====================

@dataclass(frozen=True)
class BalanceQuote:
    """Points balance for one redemption attempt. Never cached."""
    available_points: Decimal
    otp_required: bool
    scheme_message: str = ''

    @property
    def otp_flag(self) -> str:
        return 'y' if self.otp_required else 'n'


@dataclass(frozen=True)
class OtpDispatchResult:
    """Opaque pass/fail of an OTP send. The OTP itself is never returned."""
    success: bool
    message: str = ''


@dataclass(frozen=True)
class RedemptionResult:
    """What BillFree granted for one redeem call."""
    discount_value: Decimal
    points_redeemed: Decimal = Decimal('0')
    net_payable: Optional[Decimal] = None
    provider_message: str = ''
    scheme_message: str = ''

    def capped_to(self, subtotal: Decimal) -> Decimal:
        """Discount bounded by the order subtotal, never negative."""
        capped = min(self.discount_value, Decimal(subtotal))
        if capped < 0:
            capped = Decimal('0')
        return capped.quantize(TWO_PLACES, rounding=ROUND_DOWN)


# ==================== Helpers ====================

def _is_error(value: Any) -> bool:
    """BillFree sends the error flag as a bool, but strings show up too."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'y')
    return False


def _to_decimal(value: Any, default: Optional[Decimal] = Decimal('0')) -> Optional[Decimal]:
    if value is None or value == '':
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def _mentions_otp(message: Optional[str]) -> bool:
    return 'otp' in (message or '').lower()


# ==================== Client ====================

class BillFreeClient:
    """
    Client for the BillFree loyalty API.

    Usage:
        client = BillFreeClient(auth_token, base_url='https://api.billfree.in/shopify')
        quote = client.get_balance('9876543210', '91')
        if quote.available_points > 0 and not quote.otp_required:
            result = client.redeem('9876543210', '91', 'LOYALTY_1_1700000000000', '2026-10-18', Decimal('100.00'))

    ``read_retries`` applies only to the balance lookup. ``redeem`` is never
    retried: BillFree debits points on every accepted call.
    """

    ENDPOINT_PATHS = {
        'points': '/points',
        'send_otp': '/send_otp',
        'verify_otp': '/verify_otp',
        'redeem': '/redeem',
    }

    def __init__(
        self,
        auth_token: str,
        base_url: str,
        timeout: float = 10.0,
        read_retries: int = 0,
        endpoint_urls: Optional[Dict[str, str]] = None
    ):
        self.auth_token = auth_token
        self.base_url = (base_url or '').rstrip('/')
        self.timeout = timeout
        self.read_retries = max(int(read_retries or 0), 0)
        self.endpoint_urls = {k: v for k, v in (endpoint_urls or {}).items() if v}

    @classmethod
    def from_app_config(cls, auth_token: str, config, timeout: float = None, read_retries: int = None):
        """Build a client from Flask config values."""
        return cls(
            auth_token=auth_token,
            base_url=config.get('BILLFREE_API_BASE_URL'),
            timeout=timeout if timeout is not None else config.get('BILLFREE_TIMEOUT', 10.0),
            read_retries=read_retries if read_retries is not None else config.get('BILLFREE_READ_RETRIES', 0),
            endpoint_urls={
                'points': config.get('BILLFREE_API_POINTS_URL'),
                'send_otp': config.get('BILLFREE_API_SEND_OTP_URL'),
                'verify_otp': config.get('BILLFREE_API_VOTP_URL'),
                'redeem': config.get('BILLFREE_API_REDEEM_URL'),
            }
        )

    def url_for(self, operation: str) -> str:
        return self.endpoint_urls.get(operation) or f'{self.base_url}{self.ENDPOINT_PATHS[operation]}'

    def _post(self, operation: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST to BillFree and return the decoded JSON body."""
        body = {'auth_token': self.auth_token}
        body.update(payload)

        try:
            response = requests.post(
                self.url_for(operation),
                json=body,
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            logger.warning(f"BillFree {operation} timed out after {self.timeout}s")
            raise ProviderUnavailableError(operation, 'timeout', e)
        except requests.exceptions.RequestException as e:
            logger.warning(f"BillFree {operation} request failed: {e}")
            raise ProviderUnavailableError(operation, str(e), e)

        if not response.ok:
            logger.error(f"BillFree {operation} error: {response.status_code} - {response.text[:500]}")
            raise ProviderUnavailableError(operation, f'HTTP {response.status_code}')

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"BillFree {operation} returned invalid JSON")
            raise ProviderUnavailableError(operation, 'invalid JSON', e)

        if not isinstance(data, dict):
            raise ProviderUnavailableError(operation, 'unexpected response shape')

        return data

    def get_balance(self, phone: str, dial_code: str) -> BalanceQuote:
        """
        Look up the customer's points balance and OTP requirement.

        Args:
            phone: National phone number (digits only)
            dial_code: Country dial code without '+', e.g. '91'

        Returns:
            BalanceQuote. A phone BillFree has no record of comes back with
            balance 0 and the provider's scheme message.

        Raises:
            ProviderUnavailableError: transport failure or non-2xx (after read retries)
            ProviderRejectedError: BillFree set its error flag
        """
        payload = {'user_phone': phone, 'dial_code': dial_code}

        attempt = 0
        while True:
            try:
                data = self._post('points', payload)
                break
            except ProviderUnavailableError:
                if attempt >= self.read_retries:
                    raise
                attempt += 1
                logger.info(f"Retrying BillFree points lookup ({attempt}/{self.read_retries})")

        if _is_error(data.get('error')):
            logger.warning(f"BillFree points rejected for {mask_phone(phone)}: {data.get('response')}")
            raise ProviderRejectedError('points', data.get('response'), data.get('scheme_message'))

        return BalanceQuote(
            available_points=_to_decimal(data.get('balance')),
            otp_required=str(data.get('otpFlag', 'n')).strip().lower() == 'y',
            scheme_message=data.get('scheme_message') or ''
        )

    def send_otp(self, phone: str, dial_code: str) -> OtpDispatchResult:
        """
        Ask BillFree to SMS an OTP to the customer.

        Raises:
            ProviderUnavailableError: transport failure or non-2xx
        """
        data = self._post('send_otp', {'user_phone': phone, 'dial_code': dial_code})

        if _is_error(data.get('error')):
            logger.warning(f"BillFree send_otp failed for {mask_phone(phone)}: {data.get('response')}")
            return OtpDispatchResult(success=False, message=data.get('response') or 'Failed to send OTP.')

        logger.info(f"OTP dispatched to {mask_phone(phone)}")
        return OtpDispatchResult(success=True, message=data.get('response') or 'OTP sent.')

    def verify_otp(self, phone: str, dial_code: str, otp_code: str) -> None:
        """
        Check a customer-submitted OTP. Does not debit points.

        Raises:
            OtpInvalidError: BillFree rejected the code (wrong or expired)
            ProviderUnavailableError: transport failure or non-2xx
        """
        data = self._post('verify_otp', {
            'user_phone': phone,
            'dial_code': dial_code,
            'otp_code': otp_code,
        })

        if _is_error(data.get('error')):
            logger.info(f"OTP rejected for {mask_phone(phone)}: {data.get('response')}")
            raise OtpInvalidError()

    def redeem(
        self,
        phone: str,
        dial_code: str,
        invoice_ref: str,
        bill_date: str,
        bill_amount: Decimal,
        otp_code: Optional[str] = None
    ) -> RedemptionResult:
        """
        Redeem points against a bill. Debits points at BillFree.

        Must be called at most once per invoice_ref and is never retried here.

        Args:
            phone: National phone number
            dial_code: Country dial code
            invoice_ref: Unique invoice reference for this attempt
            bill_date: ISO date (YYYY-MM-DD)
            bill_amount: Order/cart subtotal
            otp_code: Verified OTP, when the account requires one

        Raises:
            OtpRequiredError: account needs an OTP and none was supplied
            OtpInvalidError: the supplied OTP was rejected
            ProviderRejectedError: any other BillFree business error
            ProviderUnavailableError: transport failure or non-2xx
        """
        payload = {
            'user_phone': phone,
            'dial_code': dial_code,
            'inv_no': invoice_ref,
            'bill_date': bill_date,
            'bill_amt': f'{Decimal(bill_amount).quantize(TWO_PLACES)}',
        }
        if otp_code:
            payload['otp_code'] = otp_code

        logger.info(f"Redeeming BillFree points for {mask_phone(phone)} invoice={invoice_ref}")
        data = self._post('redeem', payload)

        if _is_error(data.get('error')):
            message = data.get('response')
            logger.warning(f"BillFree redeem rejected for invoice={invoice_ref}: {message}")
            if _mentions_otp(message):
                if otp_code:
                    raise OtpInvalidError()
                raise OtpRequiredError()
            raise ProviderRejectedError('redeem', message)

        discount_value = _to_decimal(data.get('maxRedeemableAmt'), default=None)
        if discount_value is None:
            discount_value = _to_decimal(data.get('discount_value_rupees'))

        return RedemptionResult(
            discount_value=discount_value,
            points_redeemed=_to_decimal(data.get('maxRedeemablePts')),
            net_payable=_to_decimal(data.get('net_payable'), default=None),
            provider_message=data.get('response') or '',
            scheme_message=data.get('scheme_message') or ''
        )
