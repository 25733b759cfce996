# providers/paypay.py
"""
PayPay adapter.

Auth: every request carries an HMAC-SHA256 signature in the
"hmac OPA-Auth" scheme, computed over the path, method, a nonce, the epoch
and a hash of the body, plus X-ASSUME-MERCHANT. A dynamic ORDER_QR code
with redirectType WEB_LINK gives a checkout URL; merchantPaymentId is our
link id and comes back in every webhook.
"""
import base64
import hashlib
import hmac
import json
import secrets
import time
from datetime import timezone
from typing import Optional, Tuple
from urllib.parse import urlparse

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
from providers.validation import as_utc_naive, to_minor_units, validate_checkout_request
from schemas.credentials import PayPayCredentials
from schemas.payment_checkout import CheckoutRequest

logger = structlog.get_logger(__name__)

JSON_CONTENT_TYPE = "application/json;charset=UTF-8"


def sign_request(
     creds: PayPayCredentials,
     method: str,
     path: str,
     body: Optional[str],
     nonce: Optional[str] = None,
     epoch: Optional[int] = None,
) -> dict:
     """Build the OPA-Auth headers for one request."""
     nonce = nonce or secrets.token_hex(8)
     epoch = str(epoch if epoch is not None else int(time.time()))
     if body:
          content_type = JSON_CONTENT_TYPE
          digest = hashlib.md5((content_type + body).encode("utf-8")).digest()
          body_hash = base64.b64encode(digest).decode("ascii")
     else:
          content_type = "empty"
          body_hash = "empty"

     message = "\n".join([path, method.upper(), nonce, epoch, content_type, body_hash])
     signature = base64.b64encode(
          hmac.new(creds.api_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
     ).decode("ascii")

     headers = {
          "Authorization": f"hmac OPA-Auth:{creds.api_key}:{signature}:{nonce}:{epoch}:{body_hash}",
          "X-ASSUME-MERCHANT": creds.merchant_id,
     }
     if body:
          headers["Content-Type"] = content_type
     return headers


class PayPayAdapter:
     provider = PaymentProvider.PAYPAY

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

     def _signed(self, creds: PayPayCredentials, method: str, path: str, payload: Optional[dict]) -> Tuple[str, dict, Optional[str]]:
          url = f"{self.endpoint.base_url(creds.is_test_mode)}{path}"
          body = json.dumps(payload, separators=(",", ":")) if payload is not None else None
          return url, sign_request(creds, method, urlparse(url).path, body), body

     def validate_credentials(self, creds: PayPayCredentials) -> bool:
          """
          Look up payment details for a random id: a 404 means the signature was
          accepted, 401/403 mean the key pair or merchant is wrong.
          """
          lookup_id = f"credential-check-{secrets.token_hex(6)}"
          url, headers, _ = self._signed(creds, "GET", f"/v2/codes/payments/{lookup_id}", None)
          try:
               check_rate_limit(self.rate_limiter, self.provider, "validate_credentials")
               send(
                    self.session,
                    "GET",
                    url,
                    provider=self.provider,
                    operation="validate_credentials",
                    timeout=self.timeout,
                    headers=headers,
               )
          except ProviderError as e:
               if e.status_code == 404:
                    return True
               logger.info("paypay_credentials_rejected", error=str(e.underlying))
               return False
          return True

     def create_payment_link(self, creds: PayPayCredentials, request: CheckoutRequest) -> PaymentLinkResult:
          operation = "create_payment_link"
          try:
               validate_checkout_request(request)
               check_rate_limit(self.rate_limiter, self.provider, operation)

               payload = {
                    "merchantPaymentId": request.reference,
                    "amount": {
                         "amount": to_minor_units(request.amount, request.currency) * request.quantity,
                         "currency": request.currency.upper(),
                    },
                    "codeType": "ORDER_QR",
                    "orderDescription": request.description or request.product_name,
                    "isAuthorization": False,
                    "redirectType": "WEB_LINK",
                    "requestedAt": int(time.time()),
               }
               if request.success_url:
                    payload["redirectUrl"] = request.success_url
               if request.expires_at:
                    payload["expiryDate"] = int(as_utc_naive(request.expires_at).replace(tzinfo=timezone.utc).timestamp())

               url, headers, body = self._signed(creds, "POST", "/v2/codes", payload)
               response = send(
                    self.session,
                    "POST",
                    url,
                    provider=self.provider,
                    operation=operation,
                    timeout=self.timeout,
                    headers=headers,
                    data=body,
               )
               result_code = (response.get("resultInfo") or {}).get("code")
               if result_code != "SUCCESS":
                    raise ProviderError(self.provider.value, operation, f"PayPay resultInfo.code={result_code}")

               data = require(response, "data", provider=self.provider, operation=operation)
               link_url = ensure_secure_url(data.get("url"), self.provider, self.allow_insecure_links)
               external_id = require(data, "codeId", provider=self.provider, operation=operation)
          except (ValidationError, ProviderError) as e:
               logger.warning("payment_link_creation_failed", provider=self.provider.value, error=e.message)
               return PaymentLinkResult.failed(self.provider, operation, e)

          logger.info("provider_link_created", provider=self.provider.value, external_id=external_id)
          return PaymentLinkResult.succeeded(link_url, external_id, response)
