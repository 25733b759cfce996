# services/webhook_service.py
"""
Inbound webhook pipeline: verify -> decode -> parse -> reconcile.

Verification always runs first on the raw body; a failed verification is
terminal for the delivery and touches nothing. The caller owns the
transaction boundary (commit on success, rollback on any exception).
"""
import json
from typing import Mapping, Optional

import structlog
from sqlalchemy.orm import Session

from config import Settings, get_settings
from exceptions import SignatureVerificationError, ValidationError
from models.enums import PaymentProvider
from services.reconciliation_service import ReconciliationOutcome, ReconciliationService
from services.webhook_events import parse_event
from services.webhook_signatures import CertificateFetcher, get_signature_verifier

logger = structlog.get_logger(__name__)


def handle_webhook(
     db: Session,
     provider: PaymentProvider,
     body: bytes,
     headers: Mapping[str, str],
     settings: Optional[Settings] = None,
     paypal_cert_fetcher: Optional[CertificateFetcher] = None,
) -> ReconciliationOutcome:
     """
     Process one webhook delivery.

     Raises:
          SignatureVerificationError: signature missing or invalid (no state change)
          ValidationError: verified body is not a usable event
     """
     settings = settings or get_settings()
     provider = PaymentProvider(provider)
     normalized = {key.lower(): value for key, value in headers.items()}
     log = logger.bind(provider=provider.value)

     verifier = get_signature_verifier(provider, settings, paypal_cert_fetcher=paypal_cert_fetcher)
     try:
          verifier.verify(body, normalized)
     except SignatureVerificationError as e:
          log.warning("webhook_signature_invalid", reason=e.message, body_size=len(body))
          raise
     log.info("webhook_signature_verified")

     try:
          payload = json.loads(body)
     except ValueError as e:
          raise ValidationError("Webhook body is not valid JSON") from e

     event = parse_event(provider, payload)
     if event is None:
          return ReconciliationOutcome(action="ignored")

     outcome = ReconciliationService(db).reconcile(event)
     log.info(
          "webhook_processed",
          event_type=event.event_type,
          action=outcome.action,
          transaction_id=outcome.transaction_id,
     )
     return outcome
