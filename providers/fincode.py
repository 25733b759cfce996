# providers/fincode.py
"""
fincode adapter.

Auth: static secret key as Bearer. Checkout is a redirect payment session
(POST /v1/sessions) whose link_url is the hosted payment page.
client_field_1 carries our link id into webhooks.
"""
from datetime import timedelta
from typing import Optional

import requests
import structlog

from config import ProviderEndpoint
from exceptions import ProviderError, ValidationError
from models.base import utcnow
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
from providers.validation import as_utc_naive, to_minor_units, validate_checkout_request
from schemas.credentials import FincodeCredentials
from schemas.payment_checkout import CheckoutRequest

logger = structlog.get_logger(__name__)

# fincode sessions default to this lifetime when the link has no expiry
DEFAULT_SESSION_TTL = timedelta(hours=24)
FINCODE_TIME_FORMAT = "%Y/%m/%d %H:%M"


class FincodeAdapter:
     provider = PaymentProvider.FINCODE

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

     def _headers(self, creds: FincodeCredentials) -> dict:
          return {
               "Authorization": f"Bearer {creds.secret_key}",
               "Content-Type": "application/json",
          }

     def validate_credentials(self, creds: FincodeCredentials) -> bool:
          """The secret key must be able to read its own shop."""
          try:
               check_rate_limit(self.rate_limiter, self.provider, "validate_credentials")
               send(
                    self.session,
                    "GET",
                    f"{self.endpoint.base_url(creds.is_test_mode)}/v1/shops/{creds.shop_id}",
                    provider=self.provider,
                    operation="validate_credentials",
                    timeout=self.timeout,
                    headers=self._headers(creds),
               )
          except ProviderError as e:
               logger.info("fincode_credentials_rejected", error=str(e.underlying))
               return False
          return True

     def create_payment_link(self, creds: FincodeCredentials, request: CheckoutRequest) -> PaymentLinkResult:
          operation = "create_payment_link"
          try:
               validate_checkout_request(request)
               check_rate_limit(self.rate_limiter, self.provider, operation)

               expires_at = as_utc_naive(request.expires_at) if request.expires_at else utcnow() + DEFAULT_SESSION_TTL
               payload = {
                    "expire": expires_at.strftime(FINCODE_TIME_FORMAT),
                    "transaction": {
                         "pay_type": ["Card"],
                         "amount": str(to_minor_units(request.amount, request.currency) * request.quantity),
                         "order_description": request.description or request.product_name,
                         "client_field_1": request.reference,
                    },
                    "card": {"job_code": "CAPTURE"},
               }
               if request.success_url:
                    payload["success_url"] = request.success_url
               if request.cancel_url:
                    payload["cancel_url"] = request.cancel_url
               if request.customer_email:
                    payload["receiver_mail"] = request.customer_email

               body = send(
                    self.session,
                    "POST",
                    f"{self.endpoint.base_url(creds.is_test_mode)}/v1/sessions",
                    provider=self.provider,
                    operation=operation,
                    timeout=self.timeout,
                    headers=self._headers(creds),
                    json=payload,
               )
               url = ensure_secure_url(body.get("link_url"), self.provider, self.allow_insecure_links)
               external_id = require(body, "id", provider=self.provider, operation=operation)
          except (ValidationError, ProviderError) as e:
               logger.warning("payment_link_creation_failed", provider=self.provider.value, error=e.message)
               return PaymentLinkResult.failed(self.provider, operation, e)

          logger.info("provider_link_created", provider=self.provider.value, external_id=external_id)
          return PaymentLinkResult.succeeded(url, external_id, body)
