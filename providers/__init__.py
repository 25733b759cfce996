# providers/__init__.py
from typing import Optional

import requests

from config import Settings, get_settings
from models.enums import PaymentProvider

from .base import AllowAllRateLimiter, PaymentLinkResult, ProviderAdapter, RateLimiter
from .fincode import FincodeAdapter
from .paypal import PayPalAdapter
from .paypay import PayPayAdapter
from .square import SquareAdapter
from .stripe import StripeAdapter


def get_adapter(
     provider: PaymentProvider,
     settings: Optional[Settings] = None,
     session: Optional[requests.Session] = None,
     rate_limiter: Optional[RateLimiter] = None,
) -> ProviderAdapter:
     """Single dispatch point from the provider enum to its adapter."""
     settings = settings or get_settings()
     provider = PaymentProvider(provider)
     options = dict(
          endpoint=settings.endpoint_for(provider),
          session=session,
          timeout=settings.http_timeout_seconds,
          rate_limiter=rate_limiter,
          allow_insecure_links=settings.allow_insecure_links,
     )
     if provider == PaymentProvider.STRIPE:
          return StripeAdapter(**options)
     if provider == PaymentProvider.PAYPAL:
          return PayPalAdapter(**options)
     if provider == PaymentProvider.SQUARE:
          return SquareAdapter(**options)
     if provider == PaymentProvider.PAYPAY:
          return PayPayAdapter(**options)
     if provider == PaymentProvider.FINCODE:
          return FincodeAdapter(**options)
     raise ValueError(f"Unsupported provider: {provider}")


__all__ = [
     "get_adapter",
     "ProviderAdapter",
     "PaymentLinkResult",
     "RateLimiter",
     "AllowAllRateLimiter",
     "StripeAdapter",
     "PayPalAdapter",
     "SquareAdapter",
     "PayPayAdapter",
     "FincodeAdapter",
]
