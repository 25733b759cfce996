# providers/validation.py
"""
Shared checkout pre-validation and currency helpers.

Every adapter (and PaymentLinkService, before touching the database) runs
validate_checkout_request() so a malformed request is rejected before any
side effect. Helpers are plain functions to be composed, not inherited.
"""
import re
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional
from urllib.parse import urlparse

from exceptions import ValidationError
from schemas.payment_checkout import CheckoutRequest

SUPPORTED_CURRENCIES = frozenset({
     "JPY", "USD", "EUR", "GBP", "CAD", "AUD", "SGD", "CHF", "NOK", "SEK", "DKK",
})

MINIMUM_AMOUNTS = {
     "JPY": Decimal("50"),
     "USD": Decimal("0.50"),
     "EUR": Decimal("0.50"),
     "GBP": Decimal("0.30"),
}
DEFAULT_MINIMUM_AMOUNT = Decimal("0.50")

# Currencies whose smallest unit is the major unit
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP"})

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_EXPIRY = timedelta(days=365)


def as_utc_naive(value: datetime) -> datetime:
     """Normalize to naive UTC, the format stored in the database."""
     if value.tzinfo is not None:
          value = value.astimezone(timezone.utc).replace(tzinfo=None)
     return value


def minimum_amount(currency: str) -> Decimal:
     return MINIMUM_AMOUNTS.get(currency.upper(), DEFAULT_MINIMUM_AMOUNT)


def is_zero_decimal(currency: str) -> bool:
     return currency.upper() in ZERO_DECIMAL_CURRENCIES


def to_minor_units(amount: Decimal, currency: str) -> int:
     """1000 JPY -> 1000, 10.50 USD -> 1050."""
     amount = Decimal(amount)
     if is_zero_decimal(currency):
          return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
     return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value, currency: str) -> Decimal:
     """Inverse of to_minor_units for amounts reported by providers."""
     amount = Decimal(str(value))
     if is_zero_decimal(currency):
          return amount
     return (amount / 100).quantize(Decimal("0.01"))


def is_valid_email(value: str) -> bool:
     return bool(EMAIL_PATTERN.match(value))


def is_valid_url(value: str, allowed_schemes=("http", "https")) -> bool:
     try:
          parsed = urlparse(value)
     except ValueError:
          return False
     return parsed.scheme in allowed_schemes and bool(parsed.netloc)


def validate_amount(amount, currency: str) -> Decimal:
     try:
          amount = Decimal(str(amount))
     except (InvalidOperation, ValueError):
          raise ValidationError("Amount must be a number", field="amount")
     if not amount.is_finite() or amount <= 0:
          raise ValidationError("Amount must be greater than zero", field="amount")
     minimum = minimum_amount(currency)
     if amount < minimum:
          raise ValidationError(
               f"Minimum amount for {currency.upper()} is {minimum}", field="amount"
          )
     return amount


def validate_currency(currency: Optional[str]) -> str:
     code = (currency or "").strip().upper()
     if code not in SUPPORTED_CURRENCIES:
          raise ValidationError(f"Unsupported currency: {currency}", field="currency")
     return code


def validate_expiry(expires_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[datetime]:
     if expires_at is None:
          return None
     now = as_utc_naive(now or datetime.now(timezone.utc))
     expires_at = as_utc_naive(expires_at)
     if expires_at <= now:
          raise ValidationError("Expiry must be in the future", field="expires_at")
     if expires_at > now + MAX_EXPIRY:
          raise ValidationError("Expiry cannot be more than one year out", field="expires_at")
     return expires_at


def validate_checkout_request(request: CheckoutRequest, now: Optional[datetime] = None) -> None:
     """
     Run every shared check against a checkout request.

     Raises:
          ValidationError: on the first failing field
     """
     # Currency first: an unknown code is rejected whatever the amount
     currency = validate_currency(request.currency)
     validate_amount(request.amount, currency)

     if not request.product_name or not request.product_name.strip():
          raise ValidationError("Product name is required", field="product_name")
     if request.description is not None and not request.description.strip():
          raise ValidationError("Description cannot be blank", field="description")
     if request.quantity < 1:
          raise ValidationError("Quantity must be at least 1", field="quantity")

     if request.customer_email and not is_valid_email(request.customer_email):
          raise ValidationError("Invalid customer email", field="customer_email")
     if request.success_url and not is_valid_url(request.success_url):
          raise ValidationError("Invalid success URL", field="success_url")
     if request.cancel_url and not is_valid_url(request.cancel_url):
          raise ValidationError("Invalid cancel URL", field="cancel_url")

     validate_expiry(request.expires_at, now=now)
