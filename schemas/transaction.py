# schemas/transaction.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.enums import PaymentProvider, TransactionStatus


class TransactionResponse(BaseModel):
     id: str
     payment_link_id: str
     provider: PaymentProvider
     external_id: str
     external_reference: Optional[str] = None
     amount: Decimal
     currency: str
     status: TransactionStatus
     paid_at: Optional[datetime] = None
     customer_email: Optional[str] = None
     customer_name: Optional[str] = None
     is_refund: bool
     refund_of_id: Optional[str] = None
     metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="event_metadata")
     created_at: Optional[datetime] = None

     model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
     items: List[TransactionResponse]
     total: int
     recognized_revenue: Optional[Decimal] = Field(
          None, description="Succeeded minus refunded, only when filtered by link"
     )


class TransactionUpdate(BaseModel):
     """Payer details and notes. Amounts and statuses only change through webhooks."""
     customer_email: Optional[str] = None
     customer_name: Optional[str] = None
     metadata: Optional[Dict[str, Any]] = Field(None, description="Merged into the stored metadata")
