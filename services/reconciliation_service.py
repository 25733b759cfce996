# services/reconciliation_service.py
"""
Webhook Reconciliation Engine.

One routine for every provider, driven by CanonicalEvent:

1. Resolve the owning PaymentLink (system lookup, webhooks carry no tenant).
2. Switch into that tenant's scope for every write.
3. Insert-if-absent keyed on (provider, external_id). The insert runs in a
   SAVEPOINT; losing a race to a concurrent delivery raises IntegrityError
   and the winner's row is used untouched. No read-then-write locking.
4. Existing rows only move forward: pending -> any terminal status, applied
   with a conditional UPDATE ... WHERE status = 'pending' so two deliveries
   cannot both win. Stale or regressive events only merge metadata.
5. The first succeeded transaction completes its link (at most once).
6. Refunds are new rows with a negative amount; the original capture only
   gets a metadata annotation. A capture is refunded at most once.
7. A refund whose capture is not recorded yet raises ReconciliationDeferred
   so the provider redelivers it after the capture.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exceptions import ReconciliationDeferred, TenantIsolationViolation
from models import PaymentLink, PaymentLinkStatus, Transaction, TransactionStatus
from models.base import utcnow
from schemas.webhook_event import CanonicalEvent, EventKind
from services.tenant_context import tenant_scope, without_tenant_isolation

logger = structlog.get_logger(__name__)


@dataclass
class ReconciliationOutcome:
     action: str
     transaction_id: Optional[str] = None
     payment_link_id: Optional[str] = None
     status: Optional[TransactionStatus] = None
     link_completed: bool = False


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
     """Forward-only: only a pending transaction may change status."""
     return current == TransactionStatus.PENDING and target != TransactionStatus.PENDING


class ReconciliationService:
     def __init__(self, db: Session):
          self.db = db

     # ------------------------------------------------------------------
     # Entry point
     # ------------------------------------------------------------------

     def reconcile(self, event: CanonicalEvent) -> ReconciliationOutcome:
          log = logger.bind(
               provider=event.provider.value,
               event_type=event.event_type,
               event_id=event.event_id,
               external_id=event.idempotency_key,
          )

          with without_tenant_isolation("webhook reconciliation resolves the owning tenant"):
               link = self._resolve_link(event)
               tenant_id = link.tenant_id if link is not None else None

          if link is None:
               if event.kind == EventKind.REFUNDED:
                    log.warning("refund_before_payment", refunded_ids=event.refunded_external_ids)
                    raise ReconciliationDeferred("The refunded payment is not recorded yet")
               log.warning("webhook_link_unmatched", link_reference=event.link_reference)
               return ReconciliationOutcome(action="unmatched")

          with tenant_scope(tenant_id):
               try:
                    if event.kind == EventKind.REFUNDED:
                         outcome = self._apply_refund(link, event, log)
                    else:
                         outcome = self._apply_payment(link, event, log)
               except TenantIsolationViolation:
                    log.error("webhook_cross_tenant_conflict", payment_link_id=link.id)
                    return ReconciliationOutcome(action="rejected", payment_link_id=link.id)
               self.db.flush()
          return outcome

     # ------------------------------------------------------------------
     # Resolution (runs without tenant isolation)
     # ------------------------------------------------------------------

     def _find_transaction(self, event: CanonicalEvent, ids) -> Optional[Transaction]:
          """Try each id, most specific first, against both stored ids."""
          for external_id in ids:
               found = self.db.scalars(
                    select(Transaction)
                    .where(
                         Transaction.provider == event.provider,
                         Transaction.is_refund == False,  # noqa: E712
                         or_(
                              Transaction.external_id == external_id,
                              Transaction.external_reference == external_id,
                         ),
                    )
                    .limit(1)
               ).first()
               if found is not None:
                    return found
          return None

     def _resolve_link(self, event: CanonicalEvent) -> Optional[PaymentLink]:
          ids = event.refunded_external_ids if event.kind == EventKind.REFUNDED else event.external_ids
          existing = self._find_transaction(event, ids)
          if existing is not None:
               return existing.payment_link

          if event.link_reference:
               link = self.db.scalars(
                    select(PaymentLink).where(
                         PaymentLink.id == event.link_reference,
                         PaymentLink.provider == event.provider,
                    )
               ).first()
               if link is not None:
                    return link

          if event.provider_link_id:
               return self.db.scalars(
                    select(PaymentLink).where(
                         PaymentLink.provider_link_id == event.provider_link_id,
                         PaymentLink.provider == event.provider,
                    )
               ).first()
          return None

     # ------------------------------------------------------------------
     # Writes (run inside the owner's tenant scope)
     # ------------------------------------------------------------------

     def _insert_if_absent(self, values: Dict[str, Any]) -> Tuple[Transaction, bool]:
          """
          Idempotent insert keyed on (provider, external_id), and on refund_of_id
          for refund rows.

          Returns (row, created). A duplicate leaves the existing row as is.
          """
          transaction = Transaction(**values)
          try:
               with self.db.begin_nested():
                    self.db.add(transaction)
          except IntegrityError:
               existing = self.db.scalars(
                    select(Transaction).where(
                         Transaction.provider == values["provider"],
                         Transaction.external_id == values["external_id"],
                    )
               ).first()
               if existing is None and values.get("refund_of_id"):
                    existing = self.db.scalars(
                         select(Transaction).where(Transaction.refund_of_id == values["refund_of_id"])
                    ).first()
               if existing is None:
                    # The key exists but is not visible from this tenant
                    raise TenantIsolationViolation("Transaction not found")
               return existing, False
          return transaction, True

     def _apply_payment(self, link: PaymentLink, event: CanonicalEvent, log) -> ReconciliationOutcome:
          target = event.status
          transaction = self._find_transaction(event, event.external_ids)
          created = False

          if transaction is None:
               transaction, created = self._insert_if_absent({
                    "payment_link_id": link.id,
                    "provider": event.provider,
                    "external_id": event.idempotency_key,
                    "external_reference": event.specific_id if event.specific_id != event.idempotency_key else None,
                    "amount": event.amount if event.amount is not None else link.amount,
                    "currency": (event.currency or link.currency).upper(),
                    "status": target,
                    "paid_at": (event.occurred_at or utcnow()) if target == TransactionStatus.SUCCEEDED else None,
                    "customer_email": event.payer_email,
                    "customer_name": event.payer_name,
                    "event_metadata": self._event_metadata(event),
               })

          if created:
               log.info("transaction_created", transaction_id=transaction.id, status=target.value)
               action = "created"
          else:
               action = self._update_existing(transaction, event, log)

          link_completed = False
          if transaction.status == TransactionStatus.SUCCEEDED:
               link_completed = self._complete_link(link, log)
          elif transaction.status == TransactionStatus.EXPIRED:
               self._expire_link(link, log)

          return ReconciliationOutcome(
               action=action,
               transaction_id=transaction.id,
               payment_link_id=link.id,
               status=transaction.status,
               link_completed=link_completed,
          )

     def _update_existing(self, transaction: Transaction, event: CanonicalEvent, log) -> str:
          target = event.status
          changes: Dict[Any, Any] = {}

          merged = {**(transaction.event_metadata or {}), **self._event_metadata(event)}
          if merged != (transaction.event_metadata or {}):
               changes[Transaction.event_metadata] = merged
          if (
               event.specific_id != transaction.external_id
               and transaction.external_reference != event.specific_id
          ):
               changes[Transaction.external_reference] = event.specific_id
          if event.payer_email and event.payer_email != transaction.customer_email:
               changes[Transaction.customer_email] = event.payer_email
          if event.payer_name and event.payer_name != transaction.customer_name:
               changes[Transaction.customer_name] = event.payer_name
          # Amounts settle while the payment is still open
          if (
               event.amount is not None
               and transaction.status == TransactionStatus.PENDING
               and Decimal(event.amount) != Decimal(transaction.amount)
          ):
               changes[Transaction.amount] = event.amount

          transitioned = False
          if can_transition(transaction.status, target):
               values = dict(changes)
               values[Transaction.status] = target
               if target == TransactionStatus.SUCCEEDED:
                    values[Transaction.paid_at] = event.occurred_at or utcnow()
               result = self.db.execute(
                    update(Transaction)
                    .where(Transaction.id == transaction.id, Transaction.status == transaction.status)
                    .values(values)
                    .execution_options(synchronize_session=False)
               )
               transitioned = result.rowcount == 1
               if transitioned:
                    changes = {}
               else:
                    # A concurrent delivery moved it first
                    changes.pop(Transaction.amount, None)
          elif target != transaction.status:
               log.info(
                    "transaction_transition_ignored",
                    transaction_id=transaction.id,
                    current=transaction.status.value,
                    requested=target.value,
               )

          if changes:
               self.db.execute(
                    update(Transaction)
                    .where(Transaction.id == transaction.id)
                    .values(changes)
                    .execution_options(synchronize_session=False)
               )
          self.db.refresh(transaction)

          if transitioned:
               log.info("transaction_transitioned", transaction_id=transaction.id, status=target.value)
               return "updated"
          if changes:
               log.info("transaction_metadata_merged", transaction_id=transaction.id)
               return "updated" if target == transaction.status else "stale"
          log.info("webhook_duplicate_ignored", transaction_id=transaction.id)
          return "duplicate" if target == transaction.status else "stale"

     def _complete_link(self, link: PaymentLink, log) -> bool:
          result = self.db.execute(
               update(PaymentLink)
               .where(PaymentLink.id == link.id, PaymentLink.status == PaymentLinkStatus.PENDING)
               .values(status=PaymentLinkStatus.COMPLETED, completed_at=utcnow())
               .execution_options(synchronize_session=False)
          )
          self.db.refresh(link)
          if result.rowcount == 1:
               log.info("payment_link_completed", payment_link_id=link.id)
               return True
          if link.status != PaymentLinkStatus.COMPLETED:
               log.warning("payment_received_for_closed_link", payment_link_id=link.id, link_status=link.status.value)
          return False

     def _expire_link(self, link: PaymentLink, log) -> None:
          result = self.db.execute(
               update(PaymentLink)
               .where(PaymentLink.id == link.id, PaymentLink.status == PaymentLinkStatus.PENDING)
               .values(status=PaymentLinkStatus.EXPIRED)
               .execution_options(synchronize_session=False)
          )
          self.db.refresh(link)
          if result.rowcount == 1:
               log.info("payment_link_expired", payment_link_id=link.id)

     def _apply_refund(self, link: PaymentLink, event: CanonicalEvent, log) -> ReconciliationOutcome:
          original = self._find_transaction(event, event.refunded_external_ids)
          if original is None:
               log.warning("refund_before_payment", refunded_ids=event.refunded_external_ids)
               raise ReconciliationDeferred("The refunded payment is not recorded yet")
          if original.payment_link_id != link.id:
               log.warning("refund_original_unmatched", refunded_ids=event.refunded_external_ids)
               return ReconciliationOutcome(action="unmatched", payment_link_id=link.id)

          previous = self.db.scalars(
               select(Transaction).where(Transaction.refund_of_id == original.id)
          ).first()
          if previous is not None:
               log.info(
                    "refund_duplicate_ignored",
                    transaction_id=previous.id,
                    refund_external_id=event.idempotency_key,
               )
               return ReconciliationOutcome(
                    action="refund_duplicate",
                    transaction_id=previous.id,
                    payment_link_id=link.id,
                    status=previous.status,
               )

          refunded_at = event.occurred_at or utcnow()
          metadata = self._event_metadata(event)
          metadata.update({
               "original_transaction_id": original.id,
               "refunded_amount": str(event.amount) if event.amount is not None else None,
          })
          refund, created = self._insert_if_absent({
               "payment_link_id": original.payment_link_id,
               "provider": event.provider,
               "external_id": event.idempotency_key,
               "amount": -abs(Decimal(original.amount)),
               "currency": original.currency,
               "status": TransactionStatus.REFUNDED,
               "paid_at": refunded_at,
               "is_refund": True,
               "refund_of_id": original.id,
               "customer_email": original.customer_email,
               "customer_name": original.customer_name,
               "event_metadata": metadata,
          })
          if not created:
               log.info("refund_duplicate_ignored", transaction_id=refund.id)
               return ReconciliationOutcome(
                    action="refund_duplicate",
                    transaction_id=refund.id,
                    payment_link_id=link.id,
                    status=refund.status,
               )

          annotated = {
               **(original.event_metadata or {}),
               "refunded": True,
               "refund_external_id": event.idempotency_key,
               "refunded_at": refunded_at.isoformat(),
          }
          self.db.execute(
               update(Transaction)
               .where(Transaction.id == original.id)
               .values({Transaction.event_metadata: annotated})
               .execution_options(synchronize_session=False)
          )
          self.db.refresh(original)
          log.info("refund_recorded", transaction_id=refund.id, original_transaction_id=original.id)
          return ReconciliationOutcome(
               action="refund_recorded",
               transaction_id=refund.id,
               payment_link_id=link.id,
               status=refund.status,
          )

     @staticmethod
     def _event_metadata(event: CanonicalEvent) -> Dict[str, Any]:
          metadata = {key: value for key, value in event.metadata.items() if value is not None}
          if event.event_id:
               metadata["last_event_id"] = event.event_id
          metadata["last_event_type"] = event.event_type
          return metadata
