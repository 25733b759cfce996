# routers/payment_links.py
"""
Payment Link API.

POST /api/payment-links: create a checkout link through a stored config.
A provider-side failure is reported in the body (success=false) rather
than as an HTTP error, so clients can show the provider's message.

POST /api/payment-links/bulk cancels or deletes many links at once; ids
that are unknown, foreign or not applicable count as failed.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from config import Settings
from database import get_session
from dependencies import (
     get_adapter_resolver,
     get_app_settings,
     get_current_tenant_id,
     get_vault_dependency,
)
from models import PaymentLinkStatus, PaymentProvider
from schemas.payment_link import (
     PaymentLinkBulkAction,
     PaymentLinkBulkResult,
     PaymentLinkCreate,
     PaymentLinkCreateResponse,
     PaymentLinkListResponse,
     PaymentLinkResponse,
     PaymentLinkUpdate,
)
from services.credential_vault import CredentialVault
from services.payment_config_service import AdapterResolver
from services.payment_link_service import PaymentLinkService
from services.tenant_context import tenant_scope

router = APIRouter(prefix="/api/payment-links", tags=["payment-links"])


@router.post("", response_model=PaymentLinkCreateResponse)
def create_payment_link(
     body: PaymentLinkCreate,
     response: Response,
     db: Session = Depends(get_session),
     vault: CredentialVault = Depends(get_vault_dependency),
     adapter_for: AdapterResolver = Depends(get_adapter_resolver),
     settings: Settings = Depends(get_app_settings),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          link, result = PaymentLinkService.create_payment_link(db, vault, body, adapter_for, settings)
          db.commit()

          if link is None:
               return PaymentLinkCreateResponse(
                    success=False,
                    error=result.error,
                    error_details=result.error_details,
               )

          response.status_code = status.HTTP_201_CREATED
          return PaymentLinkCreateResponse(
               success=True,
               url=result.url,
               external_id=result.external_id,
               link=PaymentLinkResponse.model_validate(link),
          )


@router.get("", response_model=PaymentLinkListResponse)
def list_payment_links(
     status_filter: Optional[PaymentLinkStatus] = Query(None, alias="status"),
     provider: Optional[PaymentProvider] = None,
     limit: int = Query(100, ge=1, le=500),
     offset: int = Query(0, ge=0),
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          items, total = PaymentLinkService.list_links(db, status_filter, provider, limit, offset)
          return PaymentLinkListResponse(
               items=[PaymentLinkResponse.model_validate(link) for link in items],
               total=total,
          )


@router.post("/bulk", response_model=PaymentLinkBulkResult)
def bulk_payment_links(
     body: PaymentLinkBulkAction,
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          updated, failed = PaymentLinkService.bulk_action(db, body.action, body.ids)
          db.commit()
          return PaymentLinkBulkResult(action=body.action, updated=updated, failed=failed)


@router.get("/{link_id}", response_model=PaymentLinkResponse)
def get_payment_link(
     link_id: str,
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          return PaymentLinkResponse.model_validate(PaymentLinkService.get_link(db, link_id))


@router.post("/{link_id}/cancel", response_model=PaymentLinkResponse)
def cancel_payment_link(
     link_id: str,
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          link = PaymentLinkService.cancel_link(db, link_id)
          db.commit()
          return PaymentLinkResponse.model_validate(link)


@router.patch("/{link_id}", response_model=PaymentLinkResponse)
def update_payment_link(
     link_id: str,
     body: PaymentLinkUpdate,
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          link = PaymentLinkService.update_link(db, link_id, body)
          db.commit()
          return PaymentLinkResponse.model_validate(link)


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment_link(
     link_id: str,
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          PaymentLinkService.delete_link(db, link_id)
          db.commit()
     return Response(status_code=status.HTTP_204_NO_CONTENT)
