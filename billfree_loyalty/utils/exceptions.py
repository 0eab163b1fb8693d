"""
Custom exceptions for BillFree redemption logic.

Every failure in the redemption chain is one of these types so callers can
branch on the class (checkout collapses all of them to "no discount", the
account page turns them into distinguishable messages) instead of matching
provider strings.
"""
from typing import Any, Dict, List, Optional


class BillFreeError(Exception):
    """Base exception for all redemption workflow errors."""

    status_code = 400
    retryable = False

    def __init__(self, message: str, code: str = "BILLFREE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotConfiguredError(BillFreeError):
    """Integration disabled or credentials missing for the shop."""

    def __init__(self, shop_domain: str = None, reason: str = None):
        self.shop_domain = shop_domain
        message = "BillFree integration is not configured for this shop."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, "NOT_CONFIGURED")


class IdentityUnresolvableError(BillFreeError):
    """No customer id, or no phone number on the customer's profile."""

    status_code = 422

    def __init__(self, message: str = "Please add a phone number to your profile to use loyalty points."):
        super().__init__(message, "IDENTITY_UNRESOLVABLE")


class ProviderUnavailableError(BillFreeError):
    """BillFree could not be reached or answered with a non-2xx status."""

    status_code = 503
    retryable = True

    def __init__(self, operation: str, detail: str = None, original_error: Exception = None):
        self.operation = operation
        self.detail = detail
        self.original_error = original_error
        super().__init__(
            "The loyalty service is temporarily unavailable. Please try again.",
            "PROVIDER_UNAVAILABLE"
        )


class ProviderRejectedError(BillFreeError):
    """BillFree answered with its error flag set."""

    def __init__(self, operation: str, provider_message: str = None, scheme_message: str = None):
        self.operation = operation
        self.provider_message = provider_message
        self.scheme_message = scheme_message
        super().__init__(provider_message or "The loyalty service rejected the request.", "PROVIDER_REJECTED")


class OtpRequiredError(BillFreeError):
    """The account requires OTP verification and no code was supplied."""

    def __init__(self, message: str = "OTP verification is required to redeem points."):
        super().__init__(message, "OTP_REQUIRED")


class OtpInvalidError(BillFreeError):
    """The submitted OTP was wrong or has expired."""

    def __init__(self, message: str = "Invalid or expired OTP. Please try again."):
        super().__init__(message, "OTP_INVALID")


class NoBalanceError(BillFreeError):
    """The customer has no redeemable points."""

    status_code = 422

    def __init__(self, scheme_message: str = None):
        self.scheme_message = scheme_message
        super().__init__("You have no loyalty points available to redeem.", "NO_BALANCE")


class ZeroDiscountError(BillFreeError):
    """Redemption produced no usable discount after capping."""

    status_code = 422

    def __init__(self, provider_message: str = None):
        self.provider_message = provider_message
        super().__init__("No discount is available for this order.", "ZERO_DISCOUNT")


class ShopifyError(BillFreeError):
    """Error communicating with the Shopify Admin API."""

    status_code = 502
    retryable = True

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "SHOPIFY_ERROR")


class PlatformRejectedError(ShopifyError):
    """Shopify rejected a mutation with field-level user errors."""

    retryable = False

    def __init__(self, user_errors: List[Dict[str, Any]]):
        self.user_errors = user_errors or []
        super().__init__("Failed to create discount code.")
        self.code = "PLATFORM_REJECTED"


class DuplicateRedemptionError(BillFreeError):
    """A redemption with this invoice reference was already attempted."""

    status_code = 409

    def __init__(self, invoice_ref: str, status: str = None, discount_code: Optional[str] = None):
        self.invoice_ref = invoice_ref
        self.status = status
        self.discount_code = discount_code
        super().__init__("This redemption has already been processed.", "DUPLICATE_REDEMPTION")


class ValidationError(BillFreeError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class InvalidStatusTransitionError(BillFreeError):
    """Invalid state transition for a redemption."""

    status_code = 500

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")
