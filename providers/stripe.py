# providers/stripe.py
"""
Stripe adapter.

Auth: static secret key as Bearer token. Stripe's REST API takes
form-encoded bodies with bracketed keys. A payment link needs three calls:
product -> price -> payment_link. The link id goes into both the link
metadata and payment_intent_data metadata so that every webhook can be
traced back to our PaymentLink.
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
from providers.validation import to_minor_units, validate_checkout_request
from schemas.credentials import StripeCredentials
from schemas.payment_checkout import CheckoutRequest

logger = structlog.get_logger(__name__)

# Stripe-side limits in major units: (minimum, maximum)
STRIPE_AMOUNT_LIMITS = {
     "JPY": (Decimal("50"), Decimal("9999999")),
     "USD": (Decimal("0.50"), Decimal("99999.99")),
     "EUR": (Decimal("0.50"), Decimal("99999.99")),
     "GBP": (Decimal("0.30"), Decimal("99999.99")),
}


class StripeAdapter:
     provider = PaymentProvider.STRIPE

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

     def _headers(self, creds: StripeCredentials, idempotency_key: Optional[str] = None) -> dict:
          headers = {"Authorization": f"Bearer {creds.secret_key}"}
          if idempotency_key:
               headers["Idempotency-Key"] = idempotency_key
          return headers

     def _post(self, creds: StripeCredentials, path: str, data: dict, operation: str, idempotency_key: str) -> dict:
          return send(
               self.session,
               "POST",
               f"{self.endpoint.base_url(creds.is_test_mode)}{path}",
               provider=self.provider,
               operation=operation,
               timeout=self.timeout,
               headers=self._headers(creds, idempotency_key),
               data=data,
          )

     def validate_credentials(self, creds: StripeCredentials) -> bool:
          """Key prefixes must match the configured mode, then GET /v1/account must succeed."""
          mode = "test" if creds.is_test_mode else "live"
          if not (creds.publishable_key.startswith(f"pk_{mode}_") and creds.secret_key.startswith(f"sk_{mode}_")):
               logger.info("stripe_key_mode_mismatch", expected_mode=mode)
               return False
          try:
               check_rate_limit(self.rate_limiter, self.provider, "validate_credentials")
               send(
                    self.session,
                    "GET",
                    f"{self.endpoint.base_url(creds.is_test_mode)}/v1/account",
                    provider=self.provider,
                    operation="validate_credentials",
                    timeout=self.timeout,
                    headers=self._headers(creds),
               )
          except ProviderError as e:
               logger.info("stripe_credentials_rejected", error=str(e.underlying))
               return False
          return True

     def _check_limits(self, request: CheckoutRequest) -> None:
          limits = STRIPE_AMOUNT_LIMITS.get(request.currency.upper())
          if limits is None:
               return
          minimum, maximum = limits
          if not minimum <= Decimal(request.amount) <= maximum:
               raise ValidationError(
                    f"Stripe accepts {request.currency.upper()} amounts between {minimum} and {maximum}",
                    field="amount",
               )

     def create_payment_link(self, creds: StripeCredentials, request: CheckoutRequest) -> PaymentLinkResult:
          operation = "create_payment_link"
          try:
               validate_checkout_request(request)
               self._check_limits(request)
               check_rate_limit(self.rate_limiter, self.provider, operation)

               product_data = {"name": request.product_name, "metadata[link_id]": request.reference}
               if request.description:
                    product_data["description"] = request.description
               product = self._post(creds, "/v1/products", product_data, "create_product", f"{request.reference}-product")

               price = self._post(
                    creds,
                    "/v1/prices",
                    {
                         "product": require(product, "id", provider=self.provider, operation="create_product"),
                         "unit_amount": to_minor_units(request.amount, request.currency),
                         "currency": request.currency.lower(),
                    },
                    "create_price",
                    f"{request.reference}-price",
               )

               link_data = {
                    "line_items[0][price]": require(price, "id", provider=self.provider, operation="create_price"),
                    "line_items[0][quantity]": request.quantity,
                    "metadata[link_id]": request.reference,
                    "payment_intent_data[metadata][link_id]": request.reference,
               }
               for key, value in request.metadata.items():
                    link_data[f"metadata[{key}]"] = value
               if request.success_url:
                    link_data["after_completion[type]"] = "redirect"
                    link_data["after_completion[redirect][url]"] = request.success_url
               body = self._post(creds, "/v1/payment_links", link_data, operation, f"{request.reference}-link")

               url = ensure_secure_url(body.get("url"), self.provider, self.allow_insecure_links)
               external_id = require(body, "id", provider=self.provider, operation=operation)
          except (ValidationError, ProviderError) as e:
               logger.warning("payment_link_creation_failed", provider=self.provider.value, error=e.message)
               return PaymentLinkResult.failed(self.provider, operation, e)

          logger.info("provider_link_created", provider=self.provider.value, external_id=external_id)
          return PaymentLinkResult.succeeded(url, external_id, body)
