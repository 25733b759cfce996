# providers/paypal.py
"""
PayPal adapter.

Auth: OAuth2 client-credentials exchange (Basic client_id:client_secret)
for a short-lived bearer token, fetched per operation and never cached.
Checkout is an Orders v2 order with intent CAPTURE; the buyer follows the
"approve" link. custom_id carries our link id into every webhook.
"""
from decimal import Decimal
from typing import Optional

import requests
import structlog

from config import ProviderEndpoint
from exceptions import ProviderError, ValidationError
from models.enums import PaymentProvider
from providers.base import (
     AllowAllRateLimiter,
     PaymentLinkResult,
     RateLimiter,
     check_rate_limit,
     ensure_secure_url,
     require,
     send,
)
from providers.validation import is_zero_decimal, validate_checkout_request
from schemas.credentials import PayPalCredentials
from schemas.payment_checkout import CheckoutRequest

logger = structlog.get_logger(__name__)

APPROVAL_RELS = ("approve", "payer-action")


def format_paypal_amount(amount, currency: str) -> str:
     """PayPal wants a string with no decimals for JPY-like currencies, two otherwise."""
     amount = Decimal(amount)
     if is_zero_decimal(currency):
          return str(amount.quantize(Decimal("1")))
     return str(amount.quantize(Decimal("0.01")))


class PayPalAdapter:
     provider = PaymentProvider.PAYPAL

     def __init__(
          self,
          endpoint: ProviderEndpoint,
          session: Optional[requests.Session] = None,
          timeout: float = 15.0,
          rate_limiter: Optional[RateLimiter] = None,
          allow_insecure_links: bool = False,
     ):
          self.endpoint = endpoint
          self.session = session or requests.Session()
          self.timeout = timeout
          self.rate_limiter = rate_limiter or AllowAllRateLimiter()
          self.allow_insecure_links = allow_insecure_links

     def _access_token(self, creds: PayPalCredentials) -> str:
          body = send(
               self.session,
               "POST",
               f"{self.endpoint.base_url(creds.is_test_mode)}/v1/oauth2/token",
               provider=self.provider,
               operation="oauth_token",
               timeout=self.timeout,
               auth=(creds.client_id, creds.client_secret),
               headers={"Accept": "application/json"},
               data={"grant_type": "client_credentials"},
          )
          return require(body, "access_token", provider=self.provider, operation="oauth_token")

     def validate_credentials(self, creds: PayPalCredentials) -> bool:
          """A successful token exchange proves the client id/secret pair."""
          try:
               check_rate_limit(self.rate_limiter, self.provider, "validate_credentials")
               self._access_token(creds)
          except ProviderError as e:
               logger.info("paypal_credentials_rejected", error=str(e.underlying))
               return False
          return True

     def create_payment_link(self, creds: PayPalCredentials, request: CheckoutRequest) -> PaymentLinkResult:
          operation = "create_payment_link"
          try:
               validate_checkout_request(request)
               check_rate_limit(self.rate_limiter, self.provider, operation)
               token = self._access_token(creds)

               currency = request.currency.upper()
               purchase_unit = {
                    "reference_id": request.reference,
                    "custom_id": request.reference,
                    "description": (request.description or request.product_name)[:127],
                    "amount": {
                         "currency_code": currency,
                         "value": format_paypal_amount(Decimal(request.amount) * request.quantity, currency),
                    },
               }
               order = {
                    "intent": "CAPTURE",
                    "purchase_units": [purchase_unit],
                    "application_context": {"user_action": "PAY_NOW", "shipping_preference": "NO_SHIPPING"},
               }
               if request.success_url:
                    order["application_context"]["return_url"] = request.success_url
               if request.cancel_url:
                    order["application_context"]["cancel_url"] = request.cancel_url
               if request.customer_email:
                    order["payer"] = {"email_address": request.customer_email}

               body = send(
                    self.session,
                    "POST",
                    f"{self.endpoint.base_url(creds.is_test_mode)}/v2/checkout/orders",
                    provider=self.provider,
                    operation=operation,
                    timeout=self.timeout,
                    headers={
                         "Authorization": f"Bearer {token}",
                         "Content-Type": "application/json",
                         "PayPal-Request-Id": request.reference,
                    },
                    json=order,
               )

               approve = next(
                    (link.get("href") for link in body.get("links", []) if link.get("rel") in APPROVAL_RELS),
                    None,
               )
               url = ensure_secure_url(approve, self.provider, self.allow_insecure_links)
               external_id = require(body, "id", provider=self.provider, operation=operation)
          except (ValidationError, ProviderError) as e:
               logger.warning("payment_link_creation_failed", provider=self.provider.value, error=e.message)
               return PaymentLinkResult.failed(self.provider, operation, e)

          logger.info("provider_link_created", provider=self.provider.value, external_id=external_id)
          return PaymentLinkResult.succeeded(url, external_id, body)
