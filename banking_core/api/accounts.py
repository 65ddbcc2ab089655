"""
Account API endpoints.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from banking_core.api.deps import http_error
from banking_core.models.base import get_db
from banking_core.models.enums import (
    BalanceKind,
    TransactionStatus,
    TransactionType,
    TransferStatus,
    TransferType,
)
from banking_core.schemas.account import (
    AccountBalanceResponse,
    AccountCreate,
    AccountResponse,
)
from banking_core.schemas.transaction import TransactionPage, TransactionResponse
from banking_core.schemas.transfer import TransferPage, TransferResponse
from banking_core.services.account_service import AccountService
from banking_core.services.ledger_service import LedgerService
from banking_core.services.transaction_service import TransactionRecorder
from banking_core.services.transfer_service import TransferService

router = APIRouter(prefix="/accounts", tags=["Accounts"])


@router.post("", response_model=AccountResponse, status_code=201)
def create_account(
    request: AccountCreate,
    db: Session = Depends(get_db),
):
    """Register an account. It starts with zero balances."""
    service = AccountService(db)
    try:
        account = service.create_account(request)
        db.commit()
        return account
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: int,
    db: Session = Depends(get_db),
):
    service = AccountService(db)
    try:
        return service.get_account(account_id)
    except ValueError as e:
        raise http_error(e)


@router.get("/{account_id}/balance", response_model=AccountBalanceResponse)
def get_account_balance(
    account_id: int,
    db: Session = Depends(get_db),
):
    """Current cash and bitcoin balances, read straight from the store."""
    ledger = LedgerService(db)
    try:
        account = ledger.get_account(account_id)
        balances = ledger.get_balances(account_id)
    except ValueError as e:
        raise http_error(e)
    return AccountBalanceResponse(
        account_id=account.id,
        account_number=account.account_number,
        status=account.status,
        currency=account.currency,
        cash_balance=balances[BalanceKind.CASH],
        bitcoin_balance=balances[BalanceKind.BITCOIN],
    )


@router.get("/{account_id}/transactions", response_model=TransactionPage)
def list_account_transactions(
    account_id: int,
    type: TransactionType | None = None,
    status: TransactionStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    try:
        AccountService(db).get_account(account_id)
    except ValueError as e:
        raise http_error(e)
    rows, total = TransactionRecorder(db).list_for_account(
        account_id, type=type, status=status, page=page, limit=limit
    )
    return TransactionPage(
        items=[TransactionResponse.model_validate(row) for row in rows],
        total=total, page=page, limit=limit,
    )


@router.get("/{account_id}/transfers", response_model=TransferPage)
def list_account_transfers(
    account_id: int,
    type: TransferType | None = None,
    status: TransferStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    try:
        AccountService(db).get_account(account_id)
    except ValueError as e:
        raise http_error(e)
    rows, total = TransferService(db).list_for_sender(
        account_id, type=type, status=status, page=page, limit=limit
    )
    return TransferPage(
        items=[TransferResponse.model_validate(row) for row in rows],
        total=total, page=page, limit=limit,
    )
