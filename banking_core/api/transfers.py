"""
Transfer and verification API endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from banking_core.api.deps import get_notifier, http_error
from banking_core.errors import BankingError, ConcurrentModification
from banking_core.models.base import get_db
from banking_core.schemas.transfer import (
    OtpRequest,
    OtpResponse,
    TransferCreate,
    TransferResponse,
    VerificationResponse,
    VerifyRequest,
)
from banking_core.services.notifications import Notifier
from banking_core.services.transfer_service import TransferService
from banking_core.services.verification_service import VerificationService

router = APIRouter(prefix="/transfers", tags=["Transfers"])


@router.post("", response_model=TransferResponse, status_code=201)
def create_transfer(
    body: TransferCreate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Initiate a transfer.

    Internal transfers settle immediately. Local, international and
    crypto transfers reserve the funds and return PENDING, to be driven
    through verification.
    """
    request = body.root
    service = TransferService(db, notifier=notifier)
    try:
        transfer = service.initiate(
            sender_id=request.sender_id,
            type=request.transfer_type,
            recipient_details=request.recipient_details(),
            amount=request.amount,
            description=request.description,
            pin=request.pin,
            fee=getattr(request, "fee", None),
        )
        db.commit()
        return transfer
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("/{transfer_id}", response_model=TransferResponse)
def get_transfer(
    transfer_id: int,
    sender_id: int | None = None,
    db: Session = Depends(get_db),
):
    service = TransferService(db)
    try:
        return service.get_transfer(transfer_id, sender_id=sender_id)
    except ValueError as e:
        raise http_error(e)


@router.post("/{transfer_id}/otp", response_model=OtpResponse, status_code=201)
def request_otp(
    transfer_id: int,
    request: OtpRequest,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Issue a new OTP for the transfer; the code goes out via the notifier."""
    service = VerificationService(db, notifier=notifier)
    try:
        issue = service.request_otp(transfer_id, request.sender_id)
        transfer = service.transfers.get(transfer_id)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise http_error(e)
    return OtpResponse(
        transfer_id=transfer.id,
        reference=transfer.reference,
        expires_at=issue.expires_at,
    )


@router.post("/{transfer_id}/verify", response_model=VerificationResponse)
def verify_transfer(
    transfer_id: int,
    request: VerifyRequest,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Submit one verification step (imf, cot or otp).

    A refused step leaves the transfer as it was, but the attempt is
    committed to the activity log before the error is returned.
    """
    service = VerificationService(db, notifier=notifier)
    try:
        result = service.verify(
            transfer_id, request.sender_id, request.step, request.code
        )
        db.commit()
    except ConcurrentModification as e:
        db.rollback()
        raise http_error(e)
    except BankingError as e:
        db.commit()
        raise http_error(e)
    except ValueError as e:
        db.rollback()
        raise http_error(e)

    return VerificationResponse(
        step=result.step,
        already_verified=result.already_verified,
        completed=result.completed,
        transfer=TransferResponse.model_validate(result.transfer),
    )
