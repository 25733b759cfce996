# tests/test_validation.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from exceptions import ValidationError
from providers.validation import (
     from_minor_units,
     to_minor_units,
     validate_checkout_request,
)
from schemas.payment_checkout import CheckoutRequest


def make_request(**overrides):
     values = dict(reference="link-1", amount=Decimal("1000"), currency="JPY", product_name="Plan")
     values.update(overrides)
     return CheckoutRequest(**values)


def test_valid_request_passes():
     validate_checkout_request(make_request(
          customer_email="buyer@example.com",
          success_url="https://shop.example.com/thanks",
          expires_at=datetime.now(timezone.utc) + timedelta(days=1),
     ))


@pytest.mark.parametrize("amount, ok", [(Decimal("49"), False), (Decimal("50"), True)])
def test_jpy_minimum_is_fifty(amount, ok):
     request = make_request(amount=amount)
     if ok:
          validate_checkout_request(request)
     else:
          with pytest.raises(ValidationError) as exc_info:
               validate_checkout_request(request)
          assert exc_info.value.field == "amount"


def test_unsupported_currency_is_rejected_whatever_the_amount():
     with pytest.raises(ValidationError) as exc_info:
          validate_checkout_request(make_request(currency="XYZ", amount=Decimal("0")))
     assert exc_info.value.field == "currency"


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
def test_non_positive_amount_is_rejected(amount):
     with pytest.raises(ValidationError):
          validate_checkout_request(make_request(amount=amount))


@pytest.mark.parametrize(
     "field, value",
     [
          ("customer_email", "not-an-email"),
          ("success_url", "ftp://shop.example.com"),
          ("cancel_url", "nohost"),
          ("product_name", "   "),
          ("quantity", 0),
     ],
)
def test_malformed_fields_are_rejected(field, value):
     with pytest.raises(ValidationError) as exc_info:
          validate_checkout_request(make_request(**{field: value}))
     assert exc_info.value.field == field


def test_past_expiry_is_rejected():
     with pytest.raises(ValidationError) as exc_info:
          validate_checkout_request(make_request(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)))
     assert exc_info.value.field == "expires_at"


def test_expiry_more_than_a_year_out_is_rejected():
     with pytest.raises(ValidationError):
          validate_checkout_request(make_request(expires_at=datetime.now(timezone.utc) + timedelta(days=400)))


def test_minor_unit_conversion():
     assert to_minor_units(Decimal("1000"), "JPY") == 1000
     assert to_minor_units(Decimal("10.50"), "USD") == 1050
     assert from_minor_units(1050, "USD") == Decimal("10.50")
     assert from_minor_units(1000, "JPY") == Decimal("1000")
