# routers/webhooks.py
"""
Provider webhook endpoints.

POST /api/webhooks/{provider}: verify the signature over the raw body,
reconcile the event into the ledger, acknowledge.

Status codes tell the provider whether to retry: 200 for anything handled
(including duplicates and events we do not track), 401 for a bad
signature, 400 for a malformed body, 409 for a refund that overtook its
capture, 5xx for failures worth retrying.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from config import Settings
from database import get_session
from dependencies import get_app_settings, get_paypal_cert_fetcher
from models import PaymentProvider
from schemas.webhook_event import WebhookAck
from services.webhook_service import handle_webhook
from services.webhook_signatures import CertificateFetcher

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _process(db: Session, provider, body: bytes, headers, settings, cert_fetcher):
     outcome = handle_webhook(db, provider, body, headers, settings, cert_fetcher)
     db.commit()
     return outcome


@router.post("/{provider}", response_model=WebhookAck)
async def receive_webhook(
     provider: PaymentProvider,
     request: Request,
     db: Session = Depends(get_session),
     settings: Settings = Depends(get_app_settings),
     cert_fetcher: Optional[CertificateFetcher] = Depends(get_paypal_cert_fetcher),
):
     body = await request.body()
     outcome = await run_in_threadpool(
          _process, db, provider, body, dict(request.headers), settings, cert_fetcher
     )
     return WebhookAck(action=outcome.action, transaction_id=outcome.transaction_id)
