# services/__init__.py
from .credential_vault import CredentialVault, get_vault
from .payment_config_service import PaymentConfigService
from .payment_link_service import PaymentLinkService
from .reconciliation_service import ReconciliationOutcome, ReconciliationService
from .tenant_context import current_tenant_id, tenant_scope, without_tenant_isolation
from .transaction_service import TransactionService
from .webhook_service import handle_webhook

__all__ = [
     "CredentialVault",
     "get_vault",
     "PaymentConfigService",
     "PaymentLinkService",
     "ReconciliationOutcome",
     "ReconciliationService",
     "TransactionService",
     "current_tenant_id",
     "tenant_scope",
     "without_tenant_isolation",
     "handle_webhook",
]
