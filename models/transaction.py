# models/transaction.py
from sqlalchemy import (
     JSON, Boolean, Column, DateTime, Enum, ForeignKey, Index, Numeric, String, UniqueConstraint, func, text,
)
from sqlalchemy.orm import relationship

from .base import Base, new_uuid
from .enums import PaymentProvider, TransactionStatus


class Transaction(Base):
     """
     Transaction model - one payment attempt or refund tied to a PaymentLink.

     (provider, external_id) is the idempotency key enforced by the database.
     external_id holds the loosest stable id of the payment (an order id when
     the provider has one) so that every lifecycle event of the same payment
     lands on the same row; external_reference keeps the most specific id seen
     (a capture id, a payment id).

     There is no tenant column: ownership always comes from the parent link.
     Refunds are separate rows with a negative amount, never edits of the
     original capture.
     """
     __table_args__ = (
          UniqueConstraint("provider", "external_id", name="uq_transactions_provider_external_id"),
          # A capture is refunded at most once
          Index(
               "uq_transactions_refund_of_id",
               "refund_of_id",
               unique=True,
               mssql_where=text("refund_of_id IS NOT NULL"),
               sqlite_where=text("refund_of_id IS NOT NULL"),
          ),
     )

     id = Column(String(36), primary_key=True, default=new_uuid)
     payment_link_id = Column(
          String(36),
          ForeignKey("payment_links.id", ondelete="CASCADE"),
          nullable=False,
          index=True
     )
     provider = Column(
          Enum(PaymentProvider, name="transaction_provider", create_constraint=True),
          nullable=False
     )
     external_id = Column(String(255), nullable=False)
     external_reference = Column(String(255), nullable=True, index=True)

     amount = Column(Numeric(12, 2), nullable=False)  # Negative for refunds
     currency = Column(String(3), nullable=False)
     status = Column(
          Enum(TransactionStatus, name="transaction_status", create_constraint=True),
          default=TransactionStatus.PENDING,
          nullable=False,
          index=True
     )
     paid_at = Column(DateTime, nullable=True)

     # Payer
     customer_email = Column(String(255), nullable=True)
     customer_name = Column(String(255), nullable=True)

     # Refunds
     is_refund = Column(Boolean, nullable=False, default=False)
     refund_of_id = Column(String(36), ForeignKey("transactions.id"), nullable=True)

     # "metadata" is reserved on declarative classes
     event_metadata = Column("metadata", JSON, nullable=True)

     # Timestamps
     created_at = Column(DateTime, server_default=func.now(), nullable=False)
     updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

     # Relationships
     payment_link = relationship("PaymentLink", back_populates="transactions")
     refund_of = relationship("Transaction", remote_side=[id])

     def __repr__(self):
          return (
               f"<Transaction(id={self.id}, provider='{self.provider.value}', "
               f"external_id='{self.external_id}', status='{self.status.value}')>"
          )
