# schemas/__init__.py
from .credentials import ProviderCredentials, parse_credentials
from .payment_checkout import CheckoutRequest
from .payment_config import (
     ConnectionTestResponse,
     PaymentConfigCreate,
     PaymentConfigListResponse,
     PaymentConfigResponse,
     PaymentConfigUpdate,
)
from .payment_link import (
     PaymentLinkBulkAction,
     PaymentLinkBulkResult,
     PaymentLinkCreate,
     PaymentLinkCreateResponse,
     PaymentLinkListResponse,
     PaymentLinkResponse,
     PaymentLinkUpdate,
)
from .transaction import TransactionListResponse, TransactionResponse, TransactionUpdate
from .webhook_event import CanonicalEvent, EventKind, WebhookAck

__all__ = [
     "ProviderCredentials",
     "parse_credentials",
     "CheckoutRequest",
     "PaymentConfigCreate",
     "PaymentConfigUpdate",
     "PaymentConfigResponse",
     "PaymentConfigListResponse",
     "ConnectionTestResponse",
     "PaymentLinkCreate",
     "PaymentLinkCreateResponse",
     "PaymentLinkResponse",
     "PaymentLinkListResponse",
     "PaymentLinkUpdate",
     "PaymentLinkBulkAction",
     "PaymentLinkBulkResult",
     "TransactionResponse",
     "TransactionListResponse",
     "TransactionUpdate",
     "CanonicalEvent",
     "EventKind",
     "WebhookAck",
]
