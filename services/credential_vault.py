# services/credential_vault.py
"""
Credential Vault - authenticated encryption of provider secrets.

Credentials are serialized to canonical JSON, together with the provider
and tenant they belong to, and sealed with Fernet
(AES-128-CBC + HMAC-SHA256), so any tampering, truncation or use of the
wrong key is detected on decrypt. VAULT_KEY may hold a comma-separated
list of keys: the first one encrypts, all of them decrypt (key rotation).

Pure and synchronous: no network I/O, safe to share across threads.
"""
import json
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

import structlog
from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from config import Settings, get_settings
from exceptions import DecryptionError, VaultConfigurationError

logger = structlog.get_logger(__name__)


class CredentialVault:
     def __init__(self, keys: Sequence[str]):
          if not keys:
               raise VaultConfigurationError("At least one vault key is required")
          try:
               self._fernet = MultiFernet([Fernet(key) for key in keys])
          except (ValueError, TypeError) as e:
               raise VaultConfigurationError(f"Malformed vault key: {e}") from e
          self.key_count = len(keys)

     @classmethod
     def from_settings(cls, settings: Settings) -> "CredentialVault":
          """
          Build the vault from VAULT_KEY.

          Production-like environments refuse to start without a key. Anywhere
          else an ephemeral key is generated, which means ciphertext written
          by this process is unreadable after a restart.
          """
          keys: List[str] = settings.vault_keys
          if not keys:
               if settings.is_production:
                    raise VaultConfigurationError(
                         f"VAULT_KEY must be set when APP_ENV={settings.app_env}"
                    )
               logger.warning("vault_using_ephemeral_key", app_env=settings.app_env)
               keys = [Fernet.generate_key().decode("ascii")]
          return cls(keys)

     def encrypt(
          self,
          plain_config: Dict[str, Any],
          *,
          provider: Optional[str] = None,
          tenant_id: Optional[str] = None,
     ) -> str:
          """
          Encrypt a credential payload.

          Args:
               plain_config: JSON-serializable credential dict
               provider, tenant_id: sealed next to the credentials; decrypt()
                    refuses the token when called with a different owner

          Returns:
               str: URL-safe Fernet token
          """
          envelope = {"config": plain_config, "provider": provider, "tenant_id": tenant_id}
          payload = json.dumps(envelope, sort_keys=True, separators=(",", ":"))
          token = self._fernet.encrypt(payload.encode("utf-8")).decode("ascii")
          logger.debug("credentials_encrypted", provider=provider, tenant_id=tenant_id)
          return token

     def decrypt(
          self,
          token: str,
          *,
          provider: Optional[str] = None,
          tenant_id: Optional[str] = None,
     ) -> Dict[str, Any]:
          """
          Decrypt a token produced by encrypt().

          When provider or tenant_id is given and the token was sealed for a
          different one, the token is refused, so ciphertext copied between
          rows or tenants never decrypts.

          Raises:
               DecryptionError: tampered, truncated, foreign-key, non-JSON or
                    foreign-owner payload
          """
          try:
               raw = self._fernet.decrypt(token.encode("ascii"))
          except (InvalidToken, UnicodeEncodeError, AttributeError) as e:
               logger.warning("credentials_decryption_failed", provider=provider, tenant_id=tenant_id)
               raise DecryptionError("Stored credentials could not be decrypted") from e

          try:
               envelope = json.loads(raw.decode("utf-8"))
          except (UnicodeDecodeError, ValueError) as e:
               raise DecryptionError("Stored credentials are not valid JSON") from e
          if not isinstance(envelope, dict) or not isinstance(envelope.get("config"), dict):
               raise DecryptionError("Stored credentials are not a JSON object")

          for field, expected in (("provider", provider), ("tenant_id", tenant_id)):
               sealed = envelope.get(field)
               if expected is not None and sealed is not None and sealed != expected:
                    logger.warning(
                         "credentials_owner_mismatch",
                         field=field,
                         provider=provider,
                         tenant_id=tenant_id,
                    )
                    raise DecryptionError("Stored credentials belong to another owner")

          logger.debug("credentials_decrypted", provider=provider, tenant_id=tenant_id)
          return envelope["config"]

     def rotate(self, token: str) -> str:
          """Re-encrypt a token under the primary key."""
          try:
               return self._fernet.rotate(token.encode("ascii")).decode("ascii")
          except InvalidToken as e:
               raise DecryptionError("Stored credentials could not be decrypted") from e


@lru_cache()
def get_vault() -> CredentialVault:
     """Process-wide vault built from settings; main.py calls it at startup."""
     return CredentialVault.from_settings(get_settings())
