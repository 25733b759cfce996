# schemas/credentials.py
"""
Per-provider credential payloads.

These are what the vault encrypts. Keys are stored snake_case; camelCase
input (publishableKey, clientId...) is accepted as well.
"""
from typing import Any, Dict, Optional, Type

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator
from pydantic.alias_generators import to_camel

from exceptions import CredentialError
from models.enums import PaymentProvider

logger = structlog.get_logger(__name__)


def _mask(value: Optional[str]) -> Optional[str]:
     if not value:
          return value
     if len(value) <= 8:
          return "****"
     return f"{value[:4]}****{value[-4:]}"


class ProviderCredentials(BaseModel):
     """Common behaviour of every credential payload."""

     # Comes from PaymentLinkConfig.is_test_mode, never encrypted
     is_test_mode: bool = Field(default=True, exclude=True)

     model_config = ConfigDict(
          alias_generator=to_camel,
          populate_by_name=True,
          extra="ignore",
          str_strip_whitespace=True,
     )

     def to_plain(self) -> Dict[str, Any]:
          """Payload handed to the vault."""
          return self.model_dump(exclude_none=True)

     def masked(self) -> Dict[str, Any]:
          """Safe representation for API responses."""
          return {key: _mask(str(value)) for key, value in self.to_plain().items()}


class StripeCredentials(ProviderCredentials):
     publishable_key: str = Field(..., min_length=1)
     secret_key: str = Field(..., min_length=1)
     webhook_secret: Optional[str] = None

     @field_validator("publishable_key")
     @classmethod
     def _publishable_prefix(cls, value: str) -> str:
          if not value.startswith("pk_"):
               raise ValueError("Stripe publishable key must start with pk_")
          return value

     @field_validator("secret_key")
     @classmethod
     def _secret_prefix(cls, value: str) -> str:
          if not value.startswith("sk_"):
               raise ValueError("Stripe secret key must start with sk_")
          return value

     @field_validator("webhook_secret")
     @classmethod
     def _webhook_prefix(cls, value: Optional[str]) -> Optional[str]:
          if value and not value.startswith("whsec_"):
               # Accepted: older dashboards issued secrets without the prefix
               logger.warning("stripe_webhook_secret_unexpected_format")
          return value


class PayPalCredentials(ProviderCredentials):
     client_id: str = Field(..., min_length=1)
     client_secret: str = Field(..., min_length=1)


class SquareCredentials(ProviderCredentials):
     application_id: str = Field(..., min_length=1)
     access_token: str = Field(..., min_length=1)
     location_id: Optional[str] = None


class PayPayCredentials(ProviderCredentials):
     merchant_id: str = Field(..., min_length=1)
     api_key: str = Field(..., min_length=1)
     api_secret: str = Field(..., min_length=1)


class FincodeCredentials(ProviderCredentials):
     shop_id: str = Field(..., min_length=1)
     secret_key: str = Field(..., min_length=1)
     public_key: str = Field(..., min_length=1)


CREDENTIAL_MODELS: Dict[PaymentProvider, Type[ProviderCredentials]] = {
     PaymentProvider.STRIPE: StripeCredentials,
     PaymentProvider.PAYPAL: PayPalCredentials,
     PaymentProvider.SQUARE: SquareCredentials,
     PaymentProvider.PAYPAY: PayPayCredentials,
     PaymentProvider.FINCODE: FincodeCredentials,
}


def parse_credentials(
     provider: PaymentProvider,
     data: Dict[str, Any],
     is_test_mode: bool = True,
) -> ProviderCredentials:
     """
     Validate a raw credential dict for the given provider.

     Raises:
          CredentialError: missing fields or wrong key formats
     """
     model = CREDENTIAL_MODELS[PaymentProvider(provider)]
     try:
          return model.model_validate({**(data or {}), "is_test_mode": is_test_mode})
     except PydanticValidationError as e:
          problems = "; ".join(
               f"{'.'.join(str(part) for part in err['loc']) or 'credentials'}: {err['msg']}"
               for err in e.errors()
          )
          raise CredentialError(f"Invalid {provider.value} credentials: {problems}") from e
