# providers/base.py
"""
Provider adapter interface and the pieces every adapter shares.

Adapters are five independent classes satisfying the ProviderAdapter
protocol; providers.get_adapter() picks one by PaymentProvider. Shared
behaviour is composed from the helpers below, not inherited.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import requests
import structlog

from exceptions import PaymentLinkError, ProviderError
from models.enums import PaymentProvider
from providers.validation import is_valid_url
from schemas.credentials import ProviderCredentials
from schemas.payment_checkout import CheckoutRequest

logger = structlog.get_logger(__name__)


@dataclass
class PaymentLinkResult:
     """Normalized outcome of create_payment_link, successful or not."""
     success: bool
     url: Optional[str] = None
     external_id: Optional[str] = None
     error: Optional[str] = None
     error_details: Optional[Dict[str, Any]] = None
     raw_response: Dict[str, Any] = field(default_factory=dict, repr=False)

     @classmethod
     def succeeded(cls, url: str, external_id: str, raw_response: Optional[Dict[str, Any]] = None) -> "PaymentLinkResult":
          return cls(success=True, url=url, external_id=external_id, raw_response=raw_response or {})

     @classmethod
     def failed(cls, provider: PaymentProvider, operation: str, error: Exception) -> "PaymentLinkResult":
          """Capture {provider, operation, timestamp, error} for any failure."""
          if isinstance(error, ProviderError):
               details = error.to_details()
          else:
               details = {
                    "provider": provider.value,
                    "operation": operation,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "error": str(error),
               }
          message = error.message if isinstance(error, PaymentLinkError) else str(error)
          return cls(success=False, error=message, error_details=details)


@runtime_checkable
class ProviderAdapter(Protocol):
     provider: PaymentProvider

     def validate_credentials(self, creds: ProviderCredentials) -> bool:
          ...

     def create_payment_link(self, creds: ProviderCredentials, request: CheckoutRequest) -> PaymentLinkResult:
          ...


class RateLimiter(Protocol):
     """Extension point consulted before every outbound provider call."""

     def allow(self, provider: PaymentProvider, operation: str) -> bool:
          ...


class AllowAllRateLimiter:
     """Default limiter: no limiting is performed."""

     def allow(self, provider: PaymentProvider, operation: str) -> bool:
          return True


def check_rate_limit(limiter: RateLimiter, provider: PaymentProvider, operation: str) -> None:
     if not limiter.allow(provider, operation):
          raise ProviderError(provider.value, operation, "Rate limit exceeded")


def send(
     session: requests.Session,
     method: str,
     url: str,
     *,
     provider: PaymentProvider,
     operation: str,
     timeout: float,
     **kwargs,
) -> Dict[str, Any]:
     """
     Perform one HTTP call and return the decoded JSON body.

     Never retries. Network errors, non-2xx statuses and non-JSON bodies are
     raised as ProviderError.
     """
     try:
          response = session.request(method, url, timeout=timeout, **kwargs)
     except requests.RequestException as e:
          logger.warning("provider_request_failed", provider=provider.value, operation=operation, error=str(e))
          raise ProviderError(provider.value, operation, e) from e

     if not 200 <= response.status_code < 300:
          logger.warning(
               "provider_request_rejected",
               provider=provider.value,
               operation=operation,
               status_code=response.status_code,
          )
          raise ProviderError(
               provider.value,
               operation,
               f"HTTP {response.status_code}: {_error_summary(response)}",
               status_code=response.status_code,
          )

     if not response.content:
          return {}
     try:
          body = response.json()
     except ValueError as e:
          raise ProviderError(provider.value, operation, "Malformed JSON response") from e
     if not isinstance(body, dict):
          raise ProviderError(provider.value, operation, "Unexpected response shape")
     return body


def _error_summary(response: requests.Response) -> str:
     try:
          body = response.json()
     except ValueError:
          return (response.text or "")[:200]
     if isinstance(body, dict):
          error = body.get("error") or body.get("errors") or body.get("message") or body.get("resultInfo")
          if isinstance(error, dict):
               return str(error.get("message") or error.get("code") or error)
          if error:
               return str(error)[:200]
     return str(body)[:200]


def ensure_secure_url(url: Optional[str], provider: PaymentProvider, allow_insecure: bool = False) -> str:
     """The checkout URL handed back to callers must be well-formed https."""
     schemes = ("https", "http") if allow_insecure else ("https",)
     if not url or not is_valid_url(url, allowed_schemes=schemes):
          raise ProviderError(provider.value, "create_payment_link", f"Provider returned an invalid link URL: {url!r}")
     return url


def require(body: Dict[str, Any], *path: str, provider: PaymentProvider, operation: str) -> Any:
     """Dig a required value out of a provider response."""
     value: Any = body
     for key in path:
          if not isinstance(value, dict) or value.get(key) in (None, ""):
               raise ProviderError(provider.value, operation, f"Missing '{'.'.join(path)}' in response")
          value = value[key]
     return value
