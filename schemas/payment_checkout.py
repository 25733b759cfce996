# schemas/payment_checkout.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
     """
     What an adapter needs to open a checkout at a provider.

     Values are validated by providers.validation.validate_checkout_request,
     not here, so that bad input surfaces as our ValidationError.
     """
     reference: str = Field(..., description="Our PaymentLink id, echoed back by provider webhooks")
     amount: Decimal = Field(..., description="Amount in major units (1000 JPY, 10.50 USD)")
     currency: str = Field(..., description="ISO 4217 code")
     product_name: str
     description: Optional[str] = None
     quantity: int = 1
     customer_email: Optional[str] = None
     success_url: Optional[str] = None
     cancel_url: Optional[str] = None
     expires_at: Optional[datetime] = None
     metadata: Dict[str, Any] = Field(default_factory=dict)
