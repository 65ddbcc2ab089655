"""
Admin override API endpoints.

Callers are expected to have been authorized as administrators before
reaching the core; ``admin_id`` identifies them in the activity log.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from banking_core.api.deps import get_notifier, http_error
from banking_core.models.base import get_db
from banking_core.schemas.admin import (
    AdjustRequest,
    ClearAccountRequest,
    ClearAccountResponse,
    ExpireResponse,
    ProcessTransferRequest,
)
from banking_core.schemas.transaction import TransactionResponse
from banking_core.schemas.transfer import TransferResponse
from banking_core.services.admin_service import AdminService
from banking_core.services.notifications import Notifier
from banking_core.services.transfer_service import TransferService

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post(
    "/accounts/{account_id}/adjust",
    response_model=TransactionResponse,
    status_code=201,
)
def adjust_balance(
    account_id: int,
    request: AdjustRequest,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Credit or debit a balance directly, optionally backdated."""
    service = AdminService(db, notifier=notifier)
    try:
        txn = service.adjust(
            account_id,
            request.direction,
            request.amount,
            request.balance_kind,
            admin_id=request.admin_id,
            description=request.description,
            metadata=request.metadata,
            backdated_at=request.backdated_at,
            notify=request.notify,
        )
        db.commit()
        return txn
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post("/accounts/{account_id}/clear", response_model=ClearAccountResponse)
def clear_account(
    account_id: int,
    request: ClearAccountRequest,
    db: Session = Depends(get_db),
):
    """Zero both balances and delete the account's transactions. Irreversible."""
    service = AdminService(db)
    try:
        result = service.clear_account(account_id, request.admin_id, request.reason)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise http_error(e)
    return ClearAccountResponse(
        account_id=result.account_id,
        cash_cleared=result.cash_cleared,
        bitcoin_cleared=result.bitcoin_cleared,
        transactions_deleted=result.transactions_deleted,
    )


@router.post("/transfers/{transfer_id}/process", response_model=TransferResponse)
def process_transfer(
    transfer_id: int,
    request: ProcessTransferRequest,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Complete a verified transfer, or reject/cancel one and refund it."""
    service = AdminService(db, notifier=notifier)
    try:
        transfer = service.process_transfer(
            transfer_id, request.admin_id, request.action, request.note
        )
        db.commit()
        return transfer
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post("/transfers/expire", response_model=ExpireResponse)
def expire_transfers(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Run the pending-transfer expiry sweep now."""
    service = TransferService(db, notifier=notifier)
    try:
        expired = service.expire_stale()
        db.commit()
    except ValueError as e:
        db.rollback()
        raise http_error(e)
    ids = [transfer.id for transfer in expired]
    return ExpireResponse(expired=ids, count=len(ids))
