"""
Shopify Admin API client.
Handles customer phone lookup and loyalty discount creation.
"""
import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

import httpx

from ..utils.exceptions import ShopifyError, PlatformRejectedError

logger = logging.getLogger(__name__)


def to_customer_gid(customer_id: str) -> str:
    """'123' -> 'gid://shopify/Customer/123'. GIDs pass through unchanged."""
    customer_id = str(customer_id)
    if customer_id.startswith('gid://'):
        return customer_id
    return f'gid://shopify/Customer/{customer_id}'


def customer_numeric_id(customer_id: str) -> str:
    """'gid://shopify/Customer/123' -> '123'."""
    return str(customer_id).rstrip('/').split('/')[-1]


def _format_amount(amount) -> str:
    return f'{Decimal(str(amount)).quantize(Decimal("0.01"))}'


class ShopifyClient:
    """
    Client for Shopify Admin GraphQL API.

    Supports:
    - Customer phone lookup (loyalty identity)
    - Single-use, customer-scoped discount codes
    - Checkout discount-function operations (built locally, no API call)
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = '2025-07',
        timeout: float = 30.0,
        read_retries: int = 0,
        transport: httpx.BaseTransport = None
    ):
        self.shop_domain = shop_domain.replace('https://', '').replace('http://', '').rstrip('/')
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.read_retries = max(int(read_retries or 0), 0)
        self.transport = transport
        self.graphql_url = f'https://{self.shop_domain}/admin/api/{api_version}/graphql.json'

    def _execute_query(self, query: str, variables: Optional[Dict] = None, retries: int = 0) -> Dict[str, Any]:
        """
        Execute a GraphQL query.

        Args:
            query: GraphQL document
            variables: Query variables
            retries: Extra attempts on transport failure. Only for reads.

        Raises:
            ShopifyError: transport failure, non-2xx, or top-level GraphQL errors
        """
        headers = {
            'X-Shopify-Access-Token': self.access_token,
            'Content-Type': 'application/json'
        }

        payload = {'query': query}
        if variables:
            payload['variables'] = variables

        attempt = 0
        while True:
            try:
                with httpx.Client(transport=self.transport) as client:
                    response = client.post(
                        self.graphql_url,
                        headers=headers,
                        json=payload,
                        timeout=self.timeout
                    )
                    response.raise_for_status()
                    result = response.json()
                break
            except ValueError as e:
                logger.error(f"Shopify returned invalid JSON for {self.shop_domain}: {e}")
                raise ShopifyError("Shopify returned an invalid response", e)
            except httpx.HTTPError as e:
                if attempt >= retries:
                    logger.error(f"Shopify request to {self.shop_domain} failed: {e}")
                    raise ShopifyError(f"Shopify request failed: {e}", e)
                attempt += 1
                logger.info(f"Retrying Shopify query ({attempt}/{retries}) after: {e}")

        if 'errors' in result:
            logger.error(f"Shopify GraphQL errors for {self.shop_domain}: {result['errors']}")
            raise ShopifyError(f"GraphQL errors: {result['errors']}")

        return result.get('data') or {}

    def get_customer_phone(self, customer_id: str) -> Optional[str]:
        """
        Get the phone number on a customer's profile.

        Args:
            customer_id: Shopify customer ID (numeric or GID)

        Returns:
            Phone string as stored by Shopify, or None if the customer
            doesn't exist or has no phone on file
        """
        query = """
        query getCustomerPhone($id: ID!) {
            customer(id: $id) {
                id
                phone
                defaultPhoneNumber {
                    phoneNumber
                }
            }
        }
        """

        result = self._execute_query(query, {'id': to_customer_gid(customer_id)}, retries=self.read_retries)
        customer = result.get('customer')
        if not customer:
            return None

        phone = customer.get('phone')
        if not phone:
            phone = (customer.get('defaultPhoneNumber') or {}).get('phoneNumber')

        return phone or None

    @staticmethod
    def create_automatic_discount(
        amount: Decimal,
        currency: str,
        scope: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Build one order-level fixed-amount operation for the checkout
        discount function output.

        Pure data construction: the operation is returned as part of the
        function's own result, Shopify applies it. No API call is made.

        Args:
            amount: Discount amount (already capped to the subtotal)
            currency: ISO currency code of the cart
            scope: Optional {'excluded_cart_line_ids': [...]}

        Returns:
            {'orderDiscountsAdd': {...}} operation
        """
        excluded = list((scope or {}).get('excluded_cart_line_ids') or [])
        formatted = _format_amount(amount)

        return {
            'orderDiscountsAdd': {
                'candidates': [{
                    'message': f'Loyalty Points Discount: {currency} {formatted}',
                    'targets': [{
                        'orderSubtotal': {
                            'excludedCartLineIds': excluded
                        }
                    }],
                    'value': {
                        'fixedAmount': {
                            'amount': formatted,
                            'appliesToEachLineItem': False
                        }
                    }
                }],
                # Only one candidate is ever produced, so FIRST is a formality
                'selectionStrategy': 'FIRST'
            }
        }

    def create_discount_code(
        self,
        amount: Decimal,
        currency: str,
        customer_id: str,
        starts_at: datetime,
        ends_at: datetime,
        code: str = None,
        code_prefix: str = 'BILLFREE'
    ) -> str:
        """
        Create a single-use fixed-amount discount code for one customer.

        The code can be used once, only by this customer, within
        [starts_at, ends_at].

        Args:
            amount: Discount amount in shop currency
            currency: Currency code (used in the title)
            customer_id: Shopify customer ID (numeric or GID)
            starts_at: Start of validity window (UTC)
            ends_at: End of validity window (UTC)
            code: Explicit code, otherwise one is generated
            code_prefix: Prefix for generated codes

        Returns:
            The created discount code

        Raises:
            PlatformRejectedError: Shopify returned userErrors
            ShopifyError: transport or GraphQL failure
        """
        code = code or f'{code_prefix}-{secrets.token_hex(4).upper()}'
        formatted = _format_amount(amount)

        mutation = """
        mutation discountCodeBasicCreate($basicCodeDiscount: DiscountCodeBasicInput!) {
            discountCodeBasicCreate(basicCodeDiscount: $basicCodeDiscount) {
                codeDiscountNode {
                    id
                    codeDiscount {
                        ... on DiscountCodeBasic {
                            title
                            codes(first: 1) {
                                nodes {
                                    code
                                }
                            }
                        }
                    }
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """

        variables = {
            'basicCodeDiscount': {
                'title': f'Loyalty Points Discount - {code} ({currency} {formatted})',
                'code': code,
                'startsAt': starts_at.isoformat() + 'Z',
                'endsAt': ends_at.isoformat() + 'Z',
                'usageLimit': 1,
                'appliesOncePerCustomer': True,
                'customerSelection': {
                    'customers': {
                        'add': [to_customer_gid(customer_id)]
                    }
                },
                'customerGets': {
                    'value': {
                        'discountAmount': {
                            'amount': formatted,
                            'appliesOnEachItem': False
                        }
                    },
                    'items': {
                        'all': True
                    }
                },
                'combinesWith': {
                    'productDiscounts': False,
                    'orderDiscounts': False,
                    'shippingDiscounts': True
                }
            }
        }

        result = self._execute_query(mutation, variables)
        data = result.get('discountCodeBasicCreate') or {}

        user_errors: List[Dict[str, Any]] = data.get('userErrors') or []
        if user_errors:
            logger.error(f"Discount code creation rejected for {self.shop_domain}: {user_errors}")
            raise PlatformRejectedError(user_errors)

        node = data.get('codeDiscountNode') or {}
        codes = ((node.get('codeDiscount') or {}).get('codes') or {}).get('nodes') or []

        return codes[0].get('code') if codes else code
