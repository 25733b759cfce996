# models/payment_link.py
from sqlalchemy import Column, DateTime, Enum, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import relationship

from .base import Base, TenantOwned, new_uuid
from .enums import PaymentLinkStatus, PaymentProvider, TERMINAL_LINK_STATUSES


class PaymentLink(TenantOwned, Base):
     """
     PaymentLink model - one purchasable checkout link.

     The owner is inherited from the config at creation. Once payment begins
     only the reconciliation engine changes the status, and a terminal link
     (completed / expired / cancelled) is never modified again.
     """

     id = Column(String(36), primary_key=True, default=new_uuid)
     config_id = Column(
          String(36),
          ForeignKey("payment_link_configs.id", ondelete="RESTRICT"),
          nullable=False,
          index=True
     )
     provider = Column(
          Enum(PaymentProvider, name="payment_link_provider", create_constraint=True),
          nullable=False
     )

     # Checkout details
     amount = Column(Numeric(12, 2), nullable=False)
     currency = Column(String(3), nullable=False)
     product_name = Column(String(255), nullable=False)
     description = Column(Text, nullable=True)
     status = Column(
          Enum(PaymentLinkStatus, name="payment_link_status", create_constraint=True),
          default=PaymentLinkStatus.PENDING,
          nullable=False,
          index=True
     )

     # Provider side
     url = Column(String(2048), nullable=True)
     provider_link_id = Column(String(255), nullable=True, index=True)

     expires_at = Column(DateTime, nullable=True, index=True)
     completed_at = Column(DateTime, nullable=True)

     # Timestamps
     created_at = Column(DateTime, server_default=func.now(), nullable=False)
     updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

     # Relationships
     config = relationship("PaymentLinkConfig", back_populates="payment_links")
     transactions = relationship("Transaction", back_populates="payment_link")

     def __repr__(self):
          return f"<PaymentLink(id={self.id}, amount={self.amount} {self.currency}, status='{self.status.value}')>"

     @property
     def is_terminal(self) -> bool:
          return self.status in TERMINAL_LINK_STATUSES
