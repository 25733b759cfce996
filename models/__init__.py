# models/__init__.py
from .base import Base, TenantOwned
from .enums import PaymentLinkStatus, PaymentProvider, TransactionStatus
from .payment_link_config import PaymentLinkConfig
from .payment_link import PaymentLink
from .transaction import Transaction

__all__ = [
     "Base",
     "TenantOwned",
     "PaymentProvider",
     "PaymentLinkStatus",
     "TransactionStatus",
     "PaymentLinkConfig",
     "PaymentLink",
     "Transaction",
]
