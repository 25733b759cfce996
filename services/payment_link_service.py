# services/payment_link_service.py
"""
Payment Link Service - creating and managing checkout links.

Creation order matters:
1. validate the request (nothing is written for a bad request);
2. insert a pending link so its id can travel to the provider as reference;
3. call the adapter with the decrypted credentials;
4. on failure delete the row again, on success store url + provider id.
"""
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from config import Settings, get_settings
from exceptions import ConflictError, NotFoundError, ValidationError
from models import PaymentLink, PaymentLinkStatus, PaymentProvider, Transaction
from models.base import utcnow
from providers import PaymentLinkResult
from providers.validation import as_utc_naive, validate_checkout_request
from schemas.payment_checkout import CheckoutRequest
from schemas.payment_link import PaymentLinkCreate, PaymentLinkUpdate
from services.credential_vault import CredentialVault
from services.payment_config_service import AdapterResolver, PaymentConfigService
from services.tenant_context import without_tenant_isolation

logger = structlog.get_logger(__name__)


class PaymentLinkService:
     """Service class for payment link business logic."""

     @staticmethod
     def create_payment_link(
          db: Session,
          vault: CredentialVault,
          data: PaymentLinkCreate,
          adapter_for: AdapterResolver,
          settings: Optional[Settings] = None,
     ) -> Tuple[Optional[PaymentLink], PaymentLinkResult]:
          """
          Create a link at the provider behind config_id.

          Args:
               db: SQLAlchemy database session (tenant scope active)
               vault: credential vault
               data: request body
               adapter_for: provider -> adapter resolver

          Returns:
               (link, result). link is None when the provider call failed.

          Raises:
               ValidationError: bad amount/currency/url/email/expiry, inactive config
               NotFoundError: config missing or owned by another tenant
               CredentialError: stored credentials unreadable
          """
          settings = settings or get_settings()
          checkout = CheckoutRequest(
               reference="pending",
               amount=data.amount,
               currency=(data.currency or "").upper(),
               product_name=data.product_name,
               description=data.description,
               quantity=data.quantity,
               customer_email=data.customer_email,
               success_url=data.success_url,
               cancel_url=data.cancel_url,
               expires_at=as_utc_naive(data.expires_at) if data.expires_at else None,
               metadata=data.metadata,
          )
          validate_checkout_request(checkout)

          config = PaymentConfigService.get_config(db, data.config_id)
          if not config.is_active:
               raise ValidationError("Payment configuration is inactive", field="config_id")
          credentials = PaymentConfigService.get_credentials(vault, config)

          expires_at = checkout.expires_at or utcnow() + timedelta(hours=settings.default_link_ttl_hours)
          link = PaymentLink(
               tenant_id=config.tenant_id,
               config_id=config.id,
               provider=config.provider,
               amount=checkout.amount,
               currency=checkout.currency,
               product_name=checkout.product_name,
               description=checkout.description,
               status=PaymentLinkStatus.PENDING,
               expires_at=expires_at,
          )
          db.add(link)
          db.flush()

          checkout.reference = link.id
          result = adapter_for(config.provider).create_payment_link(credentials, checkout)
          if not result.success:
               db.delete(link)
               db.flush()
               logger.warning(
                    "payment_link_creation_failed",
                    provider=config.provider.value,
                    config_id=config.id,
                    error=result.error,
               )
               return None, result

          link.url = result.url
          link.provider_link_id = result.external_id
          db.flush()
          logger.info(
               "payment_link_created",
               link_id=link.id,
               provider=config.provider.value,
               amount=str(link.amount),
               currency=link.currency,
          )
          return link, result

     @staticmethod
     def get_link(db: Session, link_id: str) -> PaymentLink:
          link = db.query(PaymentLink).filter(PaymentLink.id == link_id).first()
          if link is None:
               raise NotFoundError("Payment link not found")
          return link

     @staticmethod
     def list_links(
          db: Session,
          status: Optional[PaymentLinkStatus] = None,
          provider: Optional[PaymentProvider] = None,
          limit: int = 100,
          offset: int = 0,
     ) -> Tuple[List[PaymentLink], int]:
          query = db.query(PaymentLink)
          if status is not None:
               query = query.filter(PaymentLink.status == status)
          if provider is not None:
               query = query.filter(PaymentLink.provider == provider)
          total = query.with_entities(func.count(PaymentLink.id)).scalar()
          items = query.order_by(PaymentLink.created_at.desc()).offset(offset).limit(limit).all()
          return items, total

     @staticmethod
     def cancel_link(db: Session, link_id: str) -> PaymentLink:
          """
          Cancel a pending link. Terminal links are left untouched.

          Raises:
               NotFoundError: link missing in this tenant
               ValidationError: link already completed, expired or cancelled
          """
          link = PaymentLinkService.get_link(db, link_id)
          result = db.execute(
               update(PaymentLink)
               .where(PaymentLink.id == link.id, PaymentLink.status == PaymentLinkStatus.PENDING)
               .values(status=PaymentLinkStatus.CANCELLED)
               .execution_options(synchronize_session=False)
          )
          db.refresh(link)
          if result.rowcount != 1:
               raise ValidationError(f"Payment link is already {link.status.value}", field="status")
          logger.info("payment_link_cancelled", link_id=link.id)
          return link

     @staticmethod
     def update_link(db: Session, link_id: str, data: PaymentLinkUpdate) -> PaymentLink:
          """
          Edit the description, or cancel through status=cancelled.

          Raises:
               NotFoundError: link missing in this tenant
               ValidationError: nothing to update, or a status other than cancelled
          """
          if data.description is None and data.status is None:
               raise ValidationError("Nothing to update")
          if data.status is not None and data.status != PaymentLinkStatus.CANCELLED:
               raise ValidationError("Only cancelled can be set on a payment link", field="status")

          link = PaymentLinkService.get_link(db, link_id)
          if data.description is not None:
               link.description = data.description
               db.flush()
          if data.status == PaymentLinkStatus.CANCELLED:
               link = PaymentLinkService.cancel_link(db, link.id)
          logger.info("payment_link_updated", link_id=link.id)
          return link

     @staticmethod
     def _deletable():
          # Links with ledger rows stay for the books
          return (
               PaymentLink.status != PaymentLinkStatus.COMPLETED,
               PaymentLink.id.not_in(select(Transaction.payment_link_id)),
          )

     @staticmethod
     def delete_link(db: Session, link_id: str) -> None:
          """
          Raises:
               NotFoundError: link missing in this tenant
               ConflictError: link is completed or has transactions
          """
          link = PaymentLinkService.get_link(db, link_id)
          deleted = (
               db.query(PaymentLink)
               .filter(PaymentLink.id == link.id, *PaymentLinkService._deletable())
               .delete(synchronize_session=False)
          )
          if deleted == 0:
               raise ConflictError("Completed payment links and links with transactions cannot be deleted")
          db.expunge(link)
          logger.info("payment_link_deleted", link_id=link_id)

     @staticmethod
     def bulk_action(db: Session, action: str, link_ids: List[str]) -> Tuple[int, int]:
          """
          Cancel or delete many links of the current tenant at once.

          Ids of other tenants, unknown ids and links the action does not
          apply to are counted as failed.

          Returns:
               (updated, failed)
          """
          ids = list(dict.fromkeys(link_ids))
          if action == "cancel":
               result = db.execute(
                    update(PaymentLink)
                    .where(PaymentLink.id.in_(ids), PaymentLink.status == PaymentLinkStatus.PENDING)
                    .values(status=PaymentLinkStatus.CANCELLED)
                    .execution_options(synchronize_session=False)
               )
               updated = result.rowcount
          elif action == "delete":
               updated = (
                    db.query(PaymentLink)
                    .filter(PaymentLink.id.in_(ids), *PaymentLinkService._deletable())
                    .delete(synchronize_session=False)
               )
          else:
               raise ValidationError(f"Unknown bulk action: {action}", field="action")
          logger.info("payment_links_bulk_action", action=action, requested=len(ids), updated=updated)
          return updated, len(ids) - updated

     @staticmethod
     def expire_overdue_links(db: Session, now: Optional[datetime] = None) -> int:
          """
          System sweep: mark every pending link past its expiry as expired.

          Runs across all tenants; meant for a scheduled job, not a request.

          Returns:
               Number of links expired
          """
          now = as_utc_naive(now) if now else utcnow()
          with without_tenant_isolation("scheduled expiry sweep over all tenants"):
               result = db.execute(
                    update(PaymentLink)
                    .where(
                         PaymentLink.status == PaymentLinkStatus.PENDING,
                         PaymentLink.expires_at.is_not(None),
                         PaymentLink.expires_at < now,
                    )
                    .values(status=PaymentLinkStatus.EXPIRED)
                    .execution_options(synchronize_session=False)
               )
          logger.info("payment_links_expired", count=result.rowcount)
          return result.rowcount
