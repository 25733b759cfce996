# schemas/webhook_event.py
"""
Canonical webhook event.

Every provider payload is parsed into this one shape, so reconciliation is
written (and tested) once for all providers.
"""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.enums import PaymentProvider, TransactionStatus


class EventKind(str, enum.Enum):
     PENDING = "pending"
     SUCCEEDED = "succeeded"
     FAILED = "failed"
     CANCELLED = "cancelled"
     EXPIRED = "expired"
     REFUNDED = "refunded"


# Transaction status implied by each kind of event
STATUS_FOR_KIND = {
     EventKind.PENDING: TransactionStatus.PENDING,
     EventKind.SUCCEEDED: TransactionStatus.SUCCEEDED,
     EventKind.FAILED: TransactionStatus.FAILED,
     EventKind.CANCELLED: TransactionStatus.CANCELLED,
     EventKind.EXPIRED: TransactionStatus.EXPIRED,
     EventKind.REFUNDED: TransactionStatus.REFUNDED,
}


class CanonicalEvent(BaseModel):
     provider: PaymentProvider
     event_id: Optional[str] = None
     event_type: str
     kind: EventKind
     external_ids: List[str] = Field(
          ...,
          min_length=1,
          description="Most specific id first; the last one is the idempotency key",
     )
     refunded_external_ids: List[str] = Field(
          default_factory=list,
          description="Ids of the original capture, for refund events",
     )
     link_reference: Optional[str] = Field(None, description="Our PaymentLink id when the provider echoes it")
     provider_link_id: Optional[str] = Field(None, description="Id the adapter got back when creating the link")
     amount: Optional[Decimal] = Field(None, description="Major units")
     currency: Optional[str] = None
     payer_email: Optional[str] = None
     payer_name: Optional[str] = None
     occurred_at: Optional[datetime] = None
     metadata: Dict[str, Any] = Field(default_factory=dict)

     @property
     def idempotency_key(self) -> str:
          return self.external_ids[-1]

     @property
     def specific_id(self) -> str:
          return self.external_ids[0]

     @property
     def status(self) -> TransactionStatus:
          return STATUS_FOR_KIND[self.kind]


class WebhookAck(BaseModel):
     """Response body of the webhook endpoints."""
     received: bool = True
     action: str
     transaction_id: Optional[str] = None
