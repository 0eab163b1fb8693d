"""
Utility modules for the BillFree loyalty app.
"""
from .logging_config import setup_logging, mask_phone
from .errors import (
    ErrorCode,
    error_response,
    billfree_error_response,
    bad_request,
    unauthorized,
    forbidden,
    not_found,
    internal_error
)
from .exceptions import (
    BillFreeError,
    NotConfiguredError,
    IdentityUnresolvableError,
    ProviderUnavailableError,
    ProviderRejectedError,
    OtpRequiredError,
    OtpInvalidError,
    NoBalanceError,
    ZeroDiscountError,
    ShopifyError,
    PlatformRejectedError,
    DuplicateRedemptionError,
    ValidationError,
    InvalidStatusTransitionError
)
