# services/transaction_service.py
"""
Transaction Service - tenant side of the ledger.

Rows are created only by the reconciliation engine. Tenants list them, see
recognized revenue per link and may annotate payer details.
"""
from decimal import Decimal
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from exceptions import NotFoundError, ValidationError
from models import Transaction, TransactionStatus
from models.enums import REVENUE_STATUSES
from providers.validation import is_valid_email
from schemas.transaction import TransactionUpdate
from services.payment_link_service import PaymentLinkService

logger = structlog.get_logger(__name__)


class TransactionService:
     """Service class for transaction queries."""

     @staticmethod
     def list_transactions(
          db: Session,
          payment_link_id: Optional[str] = None,
          status: Optional[TransactionStatus] = None,
          limit: int = 100,
          offset: int = 0,
     ) -> Tuple[List[Transaction], int]:
          query = db.query(Transaction)
          if payment_link_id is not None:
               query = query.filter(Transaction.payment_link_id == payment_link_id)
          if status is not None:
               query = query.filter(Transaction.status == status)
          total = query.with_entities(func.count(Transaction.id)).scalar()
          items = query.order_by(Transaction.created_at.desc()).offset(offset).limit(limit).all()
          return items, total

     @staticmethod
     def recognized_revenue(db: Session, payment_link_id: str) -> Decimal:
          """
          Captured amount net of refunds for one link.

          Raises:
               NotFoundError: link missing in this tenant
          """
          PaymentLinkService.get_link(db, payment_link_id)
          total = (
               db.query(func.coalesce(func.sum(Transaction.amount), 0))
               .filter(
                    Transaction.payment_link_id == payment_link_id,
                    Transaction.status.in_(list(REVENUE_STATUSES)),
               )
               .scalar()
          )
          return Decimal(str(total))

     @staticmethod
     def get_transaction(db: Session, transaction_id: str) -> Transaction:
          transaction = db.query(Transaction).filter(Transaction.id == transaction_id).first()
          if transaction is None:
               raise NotFoundError("Transaction not found")
          return transaction

     @staticmethod
     def update_transaction(db: Session, transaction_id: str, data: TransactionUpdate) -> Transaction:
          """
          Correct payer details or attach notes.

          Amount, status and external ids belong to the provider and are only
          written by reconciliation.

          Raises:
               NotFoundError: transaction missing in this tenant
               ValidationError: invalid email, or nothing to update
          """
          if data.customer_email is None and data.customer_name is None and data.metadata is None:
               raise ValidationError("Nothing to update")
          if data.customer_email is not None and not is_valid_email(data.customer_email):
               raise ValidationError("Invalid customer email", field="customer_email")

          transaction = TransactionService.get_transaction(db, transaction_id)
          if data.customer_email is not None:
               transaction.customer_email = data.customer_email
          if data.customer_name is not None:
               transaction.customer_name = data.customer_name
          if data.metadata is not None:
               transaction.event_metadata = {**(transaction.event_metadata or {}), **data.metadata}
          db.flush()
          logger.info("transaction_updated", transaction_id=transaction.id)
          return transaction
