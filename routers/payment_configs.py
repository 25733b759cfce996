# routers/payment_configs.py
"""
Payment Config API - per-tenant provider credential profiles.

Credentials are encrypted before they reach the database and are only
ever returned masked.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import get_adapter_resolver, get_current_tenant_id, get_vault_dependency
from models import PaymentLinkConfig, PaymentProvider
from schemas.payment_config import (
     ConnectionTestResponse,
     PaymentConfigCreate,
     PaymentConfigListResponse,
     PaymentConfigResponse,
     PaymentConfigUpdate,
)
from services.credential_vault import CredentialVault
from services.payment_config_service import AdapterResolver, PaymentConfigService
from services.tenant_context import tenant_scope

router = APIRouter(prefix="/api/payment-configs", tags=["payment-configs"])


def _to_response(config: PaymentLinkConfig, vault: CredentialVault) -> PaymentConfigResponse:
     response = PaymentConfigResponse.model_validate(config)
     response.credentials = PaymentConfigService.masked_credentials(vault, config)
     return response


@router.post("", response_model=PaymentConfigResponse, status_code=status.HTTP_201_CREATED)
def create_payment_config(
     body: PaymentConfigCreate,
     db: Session = Depends(get_session),
     vault: CredentialVault = Depends(get_vault_dependency),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          config = PaymentConfigService.create_config(db, vault, body)
          db.commit()
          return _to_response(config, vault)


@router.get("", response_model=PaymentConfigListResponse)
def list_payment_configs(
     provider: Optional[PaymentProvider] = None,
     db: Session = Depends(get_session),
     vault: CredentialVault = Depends(get_vault_dependency),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          configs = PaymentConfigService.list_configs(db, provider)
          items = [_to_response(config, vault) for config in configs]
     return PaymentConfigListResponse(items=items, total=len(items))


@router.get("/{config_id}", response_model=PaymentConfigResponse)
def get_payment_config(
     config_id: str,
     db: Session = Depends(get_session),
     vault: CredentialVault = Depends(get_vault_dependency),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          config = PaymentConfigService.get_config(db, config_id)
          return _to_response(config, vault)


@router.patch("/{config_id}", response_model=PaymentConfigResponse)
def update_payment_config(
     config_id: str,
     body: PaymentConfigUpdate,
     db: Session = Depends(get_session),
     vault: CredentialVault = Depends(get_vault_dependency),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          config = PaymentConfigService.update_config(db, vault, config_id, body)
          db.commit()
          return _to_response(config, vault)


@router.delete("/{config_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment_config(
     config_id: str,
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          PaymentConfigService.delete_config(db, config_id)
          db.commit()
     return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{config_id}/test", response_model=ConnectionTestResponse)
def test_payment_config(
     config_id: str,
     db: Session = Depends(get_session),
     vault: CredentialVault = Depends(get_vault_dependency),
     adapter_for: AdapterResolver = Depends(get_adapter_resolver),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          success, message, config = PaymentConfigService.test_connection(db, vault, config_id, adapter_for)
          db.commit()
     return ConnectionTestResponse(
          success=success,
          message=message,
          tested_at=config.last_tested_at,
          verified_at=config.verified_at,
     )
