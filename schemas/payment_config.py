# schemas/payment_config.py
"""
Pydantic schemas for the payment config API.

Responses never include decrypted secrets; credentials are shown masked.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.enums import PaymentProvider


class PaymentConfigCreate(BaseModel):
     """Schema for storing a provider credential profile."""
     provider: PaymentProvider
     display_name: str = Field(..., min_length=1, max_length=100)
     is_test_mode: bool = Field(default=True, description="Use the provider sandbox")
     is_active: bool = True
     credentials: Dict[str, Any] = Field(..., description="Provider-specific keys, encrypted at rest")

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "provider": "stripe",
                    "display_name": "Main Stripe account",
                    "is_test_mode": True,
                    "credentials": {
                         "publishable_key": "pk_test_51H...",
                         "secret_key": "sk_test_51H...",
                    },
               }
          }
     )


class PaymentConfigUpdate(BaseModel):
     """Schema for updating a credential profile. Omitted fields are kept."""
     display_name: Optional[str] = Field(None, min_length=1, max_length=100)
     is_test_mode: Optional[bool] = None
     is_active: Optional[bool] = None
     credentials: Optional[Dict[str, Any]] = None

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "display_name": "Stripe (live)",
                    "is_test_mode": False,
               }
          }
     )


class PaymentConfigResponse(BaseModel):
     id: str
     provider: PaymentProvider
     display_name: str
     is_test_mode: bool
     is_active: bool
     last_tested_at: Optional[datetime] = None
     verified_at: Optional[datetime] = None
     created_at: Optional[datetime] = None
     updated_at: Optional[datetime] = None
     credentials: Optional[Dict[str, Any]] = Field(None, description="Masked credential values")

     model_config = ConfigDict(from_attributes=True)


class PaymentConfigListResponse(BaseModel):
     items: List[PaymentConfigResponse]
     total: int


class ConnectionTestResponse(BaseModel):
     success: bool
     message: str
     tested_at: datetime
     verified_at: Optional[datetime] = None
