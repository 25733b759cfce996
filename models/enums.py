# models/enums.py
import enum


class PaymentProvider(str, enum.Enum):
     """Closed set of supported payment providers."""
     STRIPE = "stripe"
     PAYPAL = "paypal"
     SQUARE = "square"
     PAYPAY = "paypay"
     FINCODE = "fincode"


class PaymentLinkStatus(str, enum.Enum):
     """Enumeration for payment link status."""
     PENDING = "pending"
     COMPLETED = "completed"
     EXPIRED = "expired"
     CANCELLED = "cancelled"


class TransactionStatus(str, enum.Enum):
     """Enumeration for transaction status."""
     PENDING = "pending"
     SUCCEEDED = "succeeded"
     FAILED = "failed"
     REFUNDED = "refunded"
     CANCELLED = "cancelled"
     EXPIRED = "expired"


TERMINAL_LINK_STATUSES = frozenset({
     PaymentLinkStatus.COMPLETED,
     PaymentLinkStatus.EXPIRED,
     PaymentLinkStatus.CANCELLED,
})

# Statuses whose amounts count towards recognized revenue
REVENUE_STATUSES = frozenset({TransactionStatus.SUCCEEDED, TransactionStatus.REFUNDED})
