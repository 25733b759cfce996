# providers/square.py
"""
Square adapter.

Auth: static access token as Bearer, pinned API version header.
Checkout uses the Payment Links API (quick_pay). Square creates an order
behind every link; its order_id is what payment webhooks reference, so it
is returned as the external id.
"""
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
from schemas.credentials import SquareCredentials
from schemas.payment_checkout import CheckoutRequest

logger = structlog.get_logger(__name__)

SQUARE_API_VERSION = "2024-01-18"


class SquareAdapter:
     provider = PaymentProvider.SQUARE

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

     def _headers(self, creds: SquareCredentials) -> dict:
          return {
               "Authorization": f"Bearer {creds.access_token}",
               "Square-Version": SQUARE_API_VERSION,
               "Content-Type": "application/json",
          }

     def _active_locations(self, creds: SquareCredentials) -> list:
          body = send(
               self.session,
               "GET",
               f"{self.endpoint.base_url(creds.is_test_mode)}/v2/locations",
               provider=self.provider,
               operation="list_locations",
               timeout=self.timeout,
               headers=self._headers(creds),
          )
          return [loc for loc in body.get("locations", []) if loc.get("status") == "ACTIVE"]

     def validate_credentials(self, creds: SquareCredentials) -> bool:
          """The token must see at least one ACTIVE location."""
          try:
               check_rate_limit(self.rate_limiter, self.provider, "validate_credentials")
               locations = self._active_locations(creds)
          except ProviderError as e:
               logger.info("square_credentials_rejected", error=str(e.underlying))
               return False
          if not locations:
               logger.info("square_no_active_location")
               return False
          if creds.location_id and creds.location_id not in {loc.get("id") for loc in locations}:
               logger.info("square_location_not_active", location_id=creds.location_id)
               return False
          return True

     def _location_id(self, creds: SquareCredentials) -> str:
          if creds.location_id:
               return creds.location_id
          locations = self._active_locations(creds)
          if not locations:
               raise ProviderError(self.provider.value, "list_locations", "No active Square location")
          return locations[0]["id"]

     def create_payment_link(self, creds: SquareCredentials, request: CheckoutRequest) -> PaymentLinkResult:
          operation = "create_payment_link"
          try:
               validate_checkout_request(request)
               check_rate_limit(self.rate_limiter, self.provider, operation)

               payload = {
                    "idempotency_key": request.reference,
                    "description": request.description or request.product_name,
                    "payment_note": request.reference,
                    "quick_pay": {
                         "name": request.product_name,
                         "price_money": {
                              "amount": to_minor_units(request.amount, request.currency) * request.quantity,
                              "currency": request.currency.upper(),
                         },
                         "location_id": self._location_id(creds),
                    },
               }
               if request.success_url:
                    payload["checkout_options"] = {"redirect_url": request.success_url}
               if request.customer_email:
                    payload["pre_populated_data"] = {"buyer_email": request.customer_email}

               body = send(
                    self.session,
                    "POST",
                    f"{self.endpoint.base_url(creds.is_test_mode)}/v2/online-checkout/payment-links",
                    provider=self.provider,
                    operation=operation,
                    timeout=self.timeout,
                    headers=self._headers(creds),
                    json=payload,
               )
               link = require(body, "payment_link", provider=self.provider, operation=operation)
               url = ensure_secure_url(link.get("url"), self.provider, self.allow_insecure_links)
               external_id = require(link, "order_id", provider=self.provider, operation=operation)
          except (ValidationError, ProviderError) as e:
               logger.warning("payment_link_creation_failed", provider=self.provider.value, error=e.message)
               return PaymentLinkResult.failed(self.provider, operation, e)

          logger.info("provider_link_created", provider=self.provider.value, external_id=external_id)
          return PaymentLinkResult.succeeded(url, external_id, body)
