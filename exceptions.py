# exceptions.py
"""
Error taxonomy shared by services, adapters and routers.

Routers never build error responses by hand: main.py maps every
PaymentLinkError subclass to an HTTP status and a JSON body.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class PaymentLinkError(Exception):
     """Base class for all domain errors."""
     code = "payment_link_error"

     def __init__(self, message: str = ""):
          super().__init__(message)
          self.message = message


class ValidationError(PaymentLinkError):
     """Malformed request (amount, currency, url, email, expiry...)."""
     code = "validation_error"

     def __init__(self, message: str, field: Optional[str] = None):
          super().__init__(message)
          self.field = field


class CredentialError(PaymentLinkError):
     """Provider credentials are malformed, expired or unreadable."""
     code = "credential_error"


class DecryptionError(CredentialError):
     """Ciphertext was tampered, truncated or encrypted under another key."""
     code = "decryption_error"


class ProviderError(PaymentLinkError):
     """
     Network failure or non-success response from an external provider.

     Carries enough context to be logged and returned inside a failed
     PaymentLinkResult without leaking credentials.
     """
     code = "provider_error"

     def __init__(
          self,
          provider: str,
          operation: str,
          underlying: Any,
          status_code: Optional[int] = None,
     ):
          self.provider = provider
          self.operation = operation
          self.underlying = underlying
          self.status_code = status_code
          self.timestamp = datetime.now(timezone.utc)
          super().__init__(f"{provider} {operation} failed: {underlying}")

     def to_details(self) -> Dict[str, Any]:
          return {
               "provider": self.provider,
               "operation": self.operation,
               "timestamp": self.timestamp.isoformat(),
               "error": str(self.underlying),
               "status_code": self.status_code,
          }


class SignatureVerificationError(PaymentLinkError):
     """Webhook signature missing or not matching the raw body."""
     code = "signature_verification_failed"


class TenantIsolationViolation(PaymentLinkError):
     """Attempt to touch data outside the active tenant. Reported as not found."""
     code = "not_found"


class TenantContextMissing(TenantIsolationViolation):
     """A tenant-scoped data access ran with no tenant context and no bypass."""
     code = "tenant_context_missing"


class NotFoundError(PaymentLinkError):
     code = "not_found"


class ConflictError(PaymentLinkError):
     code = "conflict"


class ReconciliationDeferred(PaymentLinkError):
     """
     A webhook refers to a payment that is not recorded yet (a refund that
     overtook its capture). Answered with a non-2xx status so the provider
     redelivers it later.
     """
     code = "reconciliation_deferred"


class VaultConfigurationError(RuntimeError):
     """The credential vault cannot be built (missing or malformed key)."""
