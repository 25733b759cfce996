# dependencies.py
"""
Shared FastAPI dependencies: auth token, tenant id, settings, vault, adapters.
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt

from config import Settings, get_settings
from models.enums import PaymentProvider
from providers import get_adapter
from services.credential_vault import CredentialVault, get_vault
from services.payment_config_service import AdapterResolver
from services.webhook_signatures import CertificateFetcher


def get_app_settings() -> Settings:
     return get_settings()


# Token Auth Dependency
def verify_token(request: Request, settings: Settings = Depends(get_app_settings)) -> dict:
     auth = request.headers.get("Authorization")
     if not auth or not auth.startswith("Bearer "):
          raise HTTPException(status_code=401, detail="Missing token")
     if not settings.jwt_secret:
          raise HTTPException(status_code=500, detail="Authentication is not configured")
     token = auth.split(" ")[1]
     try:
          payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
          return payload
     except JWTError:
          raise HTTPException(status_code=403, detail="Invalid token")


def get_current_tenant_id(token: dict = Depends(verify_token)) -> str:
     """Tenant the caller acts for: the tenant_id claim, else the user id."""
     tenant_id = token.get("tenant_id") or token.get("id")
     if tenant_id is None or str(tenant_id).strip() == "":
          raise HTTPException(status_code=403, detail="Token carries no tenant")
     return str(tenant_id)


def get_vault_dependency() -> CredentialVault:
     return get_vault()


def get_adapter_resolver(settings: Settings = Depends(get_app_settings)) -> AdapterResolver:
     def resolve(provider: PaymentProvider):
          return get_adapter(provider, settings)
     return resolve


def get_paypal_cert_fetcher() -> Optional[CertificateFetcher]:
     """Overridable in tests; None means download certificates over HTTPS."""
     return None
