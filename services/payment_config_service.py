# services/payment_config_service.py
"""
Payment Config Service - tenant credential profiles.

Credentials are validated against the provider's expected shape, then
sealed by the vault before they reach the database. All queries run inside
the caller's tenant scope, so a config of another tenant is simply
"not found".
"""
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from exceptions import ConflictError, CredentialError, NotFoundError
from models import PaymentLink, PaymentLinkConfig, PaymentProvider
from models.base import utcnow
from providers import ProviderAdapter
from schemas.credentials import ProviderCredentials, parse_credentials
from schemas.payment_config import PaymentConfigCreate, PaymentConfigUpdate
from services.credential_vault import CredentialVault
from services.tenant_context import require_tenant_id

logger = structlog.get_logger(__name__)

AdapterResolver = Callable[[PaymentProvider], ProviderAdapter]


class PaymentConfigService:
     """Service class for credential profile business logic."""

     @staticmethod
     def _ensure_unique_name(
          db: Session,
          provider: PaymentProvider,
          display_name: str,
          exclude_id: Optional[str] = None,
     ) -> None:
          query = db.query(PaymentLinkConfig).filter(
               PaymentLinkConfig.provider == provider,
               PaymentLinkConfig.display_name == display_name,
          )
          if exclude_id:
               query = query.filter(PaymentLinkConfig.id != exclude_id)
          if query.first() is not None:
               raise ConflictError(
                    f"A {provider.value} configuration named '{display_name}' already exists"
               )

     @staticmethod
     def create_config(db: Session, vault: CredentialVault, data: PaymentConfigCreate) -> PaymentLinkConfig:
          """
          Validate, encrypt and store a new credential profile.

          Args:
               db: SQLAlchemy database session
               vault: credential vault used to seal the secrets
               data: validated request body

          Returns:
               Created PaymentLinkConfig (flushed, not committed)

          Raises:
               CredentialError: credentials do not match the provider's format
               ConflictError: display name already used for this provider
          """
          tenant_id = require_tenant_id()
          credentials = parse_credentials(data.provider, data.credentials, data.is_test_mode)
          PaymentConfigService._ensure_unique_name(db, data.provider, data.display_name)

          config = PaymentLinkConfig(
               provider=data.provider,
               display_name=data.display_name,
               encrypted_config=vault.encrypt(
                    credentials.to_plain(), provider=data.provider.value, tenant_id=tenant_id
               ),
               is_test_mode=data.is_test_mode,
               is_active=data.is_active,
          )
          db.add(config)
          db.flush()
          logger.info("payment_config_created", config_id=config.id, provider=data.provider.value)
          return config

     @staticmethod
     def get_config(db: Session, config_id: str) -> PaymentLinkConfig:
          """
          Raises:
               NotFoundError: missing, or owned by another tenant
          """
          config = db.query(PaymentLinkConfig).filter(PaymentLinkConfig.id == config_id).first()
          if config is None:
               raise NotFoundError("Payment configuration not found")
          return config

     @staticmethod
     def list_configs(db: Session, provider: Optional[PaymentProvider] = None) -> List[PaymentLinkConfig]:
          query = db.query(PaymentLinkConfig)
          if provider is not None:
               query = query.filter(PaymentLinkConfig.provider == provider)
          return query.order_by(PaymentLinkConfig.created_at.desc()).all()

     @staticmethod
     def get_credentials(vault: CredentialVault, config: PaymentLinkConfig) -> ProviderCredentials:
          """
          Decrypt a config's credentials into the provider's credential model.

          Raises:
               CredentialError: undecryptable or no longer valid for the provider
          """
          plain = vault.decrypt(config.encrypted_config, provider=config.provider.value, tenant_id=config.tenant_id)
          return parse_credentials(config.provider, plain, config.is_test_mode)

     @staticmethod
     def update_config(
          db: Session,
          vault: CredentialVault,
          config_id: str,
          data: PaymentConfigUpdate,
     ) -> PaymentLinkConfig:
          """
          Update a profile. New credentials (or a mode switch) are re-validated,
          re-encrypted and leave the config unverified until the next test.
          """
          config = PaymentConfigService.get_config(db, config_id)

          if data.display_name is not None and data.display_name != config.display_name:
               PaymentConfigService._ensure_unique_name(db, config.provider, data.display_name, exclude_id=config.id)
               config.display_name = data.display_name
          if data.is_active is not None:
               config.is_active = data.is_active

          mode_changed = data.is_test_mode is not None and data.is_test_mode != config.is_test_mode
          if data.credentials is not None or mode_changed:
               is_test_mode = config.is_test_mode if data.is_test_mode is None else data.is_test_mode
               if data.credentials is not None:
                    plain = data.credentials
               else:
                    plain = vault.decrypt(config.encrypted_config, provider=config.provider.value, tenant_id=config.tenant_id)
               credentials = parse_credentials(config.provider, plain, is_test_mode)
               config.encrypted_config = vault.encrypt(
                    credentials.to_plain(), provider=config.provider.value, tenant_id=config.tenant_id
               )
               config.is_test_mode = is_test_mode
               config.verified_at = None

          db.flush()
          logger.info("payment_config_updated", config_id=config.id)
          return config

     @staticmethod
     def delete_config(db: Session, config_id: str) -> None:
          """
          Raises:
               NotFoundError: nothing deleted in this tenant
               ConflictError: payment links still reference the config
          """
          if db.query(PaymentLink.id).filter(PaymentLink.config_id == config_id).first() is not None:
               raise ConflictError("Configuration is referenced by payment links; deactivate it instead")
          deleted = (
               db.query(PaymentLinkConfig)
               .filter(PaymentLinkConfig.id == config_id)
               .delete(synchronize_session=False)
          )
          if deleted == 0:
               raise NotFoundError("Payment configuration not found")
          logger.info("payment_config_deleted", config_id=config_id)

     @staticmethod
     def test_connection(
          db: Session,
          vault: CredentialVault,
          config_id: str,
          adapter_for: AdapterResolver,
     ) -> Tuple[bool, str, PaymentLinkConfig]:
          """
          Check the stored credentials against the provider.

          last_tested_at is always updated; verified_at only on success. A
          credential that cannot be decrypted or parsed leaves the config
          unverified.

          Returns:
               (success, message, config)
          """
          config = PaymentConfigService.get_config(db, config_id)
          now = utcnow()
          config.last_tested_at = now

          try:
               credentials = PaymentConfigService.get_credentials(vault, config)
          except CredentialError as e:
               config.verified_at = None
               db.flush()
               logger.warning("payment_config_test_failed", config_id=config.id, reason=e.code)
               return False, e.message, config

          if adapter_for(config.provider).validate_credentials(credentials):
               config.verified_at = now
               message = "Connection successful"
          else:
               config.verified_at = None
               message = "The provider rejected these credentials"
          db.flush()
          logger.info("payment_config_tested", config_id=config.id, success=config.verified_at is not None)
          return config.verified_at is not None, message, config

     @staticmethod
     def masked_credentials(vault: CredentialVault, config: PaymentLinkConfig) -> Optional[Dict[str, str]]:
          """Masked values for display; None when the blob cannot be read."""
          try:
               plain = vault.decrypt(config.encrypted_config, provider=config.provider.value, tenant_id=config.tenant_id)
               return parse_credentials(config.provider, plain, config.is_test_mode).masked()
          except CredentialError:
               return None
