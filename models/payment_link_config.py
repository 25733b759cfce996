# models/payment_link_config.py
from sqlalchemy import Boolean, Column, DateTime, Enum, String, Text, UniqueConstraint, func
from sqlalchemy.orm import relationship

from .base import Base, TenantOwned, new_uuid
from .enums import PaymentProvider


class PaymentLinkConfig(TenantOwned, Base):
     """
     PaymentLinkConfig model - one tenant's credential profile for one provider.

     Provider secrets only ever live in encrypted_config (Fernet ciphertext);
     every other column is non-secret metadata.
     """
     __table_args__ = (
          UniqueConstraint(
               "tenant_id", "provider", "display_name",
               name="uq_payment_link_configs_tenant_provider_name",
          ),
     )

     id = Column(String(36), primary_key=True, default=new_uuid)
     provider = Column(
          Enum(PaymentProvider, name="payment_link_config_provider", create_constraint=True),
          nullable=False,
          index=True
     )
     display_name = Column(String(100), nullable=False)
     encrypted_config = Column(Text, nullable=False)
     is_test_mode = Column(Boolean, nullable=False, default=True)
     is_active = Column(Boolean, nullable=False, default=True)

     last_tested_at = Column(DateTime, nullable=True)
     verified_at = Column(DateTime, nullable=True)  # Set only by a successful connection test

     # Timestamps
     created_at = Column(DateTime, server_default=func.now(), nullable=False)
     updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

     # Relationships
     payment_links = relationship("PaymentLink", back_populates="config")

     def __repr__(self):
          return f"<PaymentLinkConfig(id={self.id}, provider='{self.provider.value}', name='{self.display_name}')>"

     @property
     def is_verified(self) -> bool:
          return self.verified_at is not None
