# routers/transactions.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_session
from dependencies import get_current_tenant_id
from models import TransactionStatus
from schemas.transaction import TransactionListResponse, TransactionResponse, TransactionUpdate
from services.tenant_context import tenant_scope
from services.transaction_service import TransactionService

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@router.get("", response_model=TransactionListResponse)
def list_transactions(
     payment_link_id: Optional[str] = None,
     status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
     limit: int = Query(100, ge=1, le=500),
     offset: int = Query(0, ge=0),
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          revenue = None
          if payment_link_id is not None:
               revenue = TransactionService.recognized_revenue(db, payment_link_id)
          items, total = TransactionService.list_transactions(db, payment_link_id, status_filter, limit, offset)
          return TransactionListResponse(
               items=[TransactionResponse.model_validate(item) for item in items],
               total=total,
               recognized_revenue=revenue,
          )


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
     transaction_id: str,
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          return TransactionResponse.model_validate(TransactionService.get_transaction(db, transaction_id))


@router.patch("/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
     transaction_id: str,
     body: TransactionUpdate,
     db: Session = Depends(get_session),
     tenant_id: str = Depends(get_current_tenant_id),
):
     with tenant_scope(tenant_id):
          transaction = TransactionService.update_transaction(db, transaction_id, body)
          db.commit()
          return TransactionResponse.model_validate(transaction)
