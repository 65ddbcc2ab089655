"""
Transaction API endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from banking_core.api.deps import http_error
from banking_core.models.base import get_db
from banking_core.schemas.transaction import TransactionResponse
from banking_core.services.transaction_service import TransactionRecorder

router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
):
    """Get a transaction record with its before/after balance snapshot."""
    service = TransactionRecorder(db)
    try:
        return service.get_transaction(transaction_id)
    except ValueError as e:
        raise http_error(e)
