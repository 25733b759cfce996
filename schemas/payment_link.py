# schemas/payment_link.py
"""
Pydantic schemas for the payment link API.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.enums import PaymentLinkStatus, PaymentProvider


class PaymentLinkCreate(BaseModel):
     """Schema for creating a payment link against a stored config."""
     config_id: str = Field(..., description="PaymentLinkConfig to charge through")
     amount: Decimal = Field(..., description="Amount in major units")
     currency: str = Field(..., description="ISO 4217 code, e.g. JPY")
     product_name: str = Field(..., description="Shown on the checkout page")
     description: Optional[str] = None
     quantity: int = 1
     customer_email: Optional[str] = None
     success_url: Optional[str] = None
     cancel_url: Optional[str] = None
     expires_at: Optional[datetime] = Field(None, description="Defaults to 24 hours from now")
     metadata: Dict[str, Any] = Field(default_factory=dict)

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "config_id": "8f0c3a52-0c7e-4a0e-9a55-2e7d6d1b2c11",
                    "amount": 1000,
                    "currency": "JPY",
                    "product_name": "Plan",
                    "success_url": "https://shop.example.com/thanks",
               }
          }
     )


class PaymentLinkResponse(BaseModel):
     id: str
     config_id: str
     provider: PaymentProvider
     amount: Decimal
     currency: str
     product_name: str
     description: Optional[str] = None
     status: PaymentLinkStatus
     url: Optional[str] = None
     provider_link_id: Optional[str] = None
     expires_at: Optional[datetime] = None
     completed_at: Optional[datetime] = None
     created_at: Optional[datetime] = None

     model_config = ConfigDict(from_attributes=True)


class PaymentLinkCreateResponse(BaseModel):
     """Result of a creation attempt; a failed provider call is not an HTTP error."""
     success: bool
     url: Optional[str] = None
     external_id: Optional[str] = None
     link: Optional[PaymentLinkResponse] = None
     error: Optional[str] = None
     error_details: Optional[Dict[str, Any]] = None


class PaymentLinkListResponse(BaseModel):
     items: List[PaymentLinkResponse]
     total: int


class PaymentLinkUpdate(BaseModel):
     """Editable fields. The only status a client may set is cancelled."""
     description: Optional[str] = None
     status: Optional[PaymentLinkStatus] = None


class PaymentLinkBulkAction(BaseModel):
     action: Literal["cancel", "delete"]
     ids: List[str] = Field(..., min_length=1, max_length=500)


class PaymentLinkBulkResult(BaseModel):
     action: str
     updated: int
     failed: int
