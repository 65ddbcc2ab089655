"""
Verification state machine for pending transfers.

A transfer advances through PENDING -> IMF_VERIFIED -> COT_VERIFIED ->
OTP_VERIFIED, skipping the steps it does not require. A step is only
accepted once every required step before it has been verified; the
last required step moves the transfer to PROCESSING with
codes_verified set.

The OTP is scoped to the transfer: its SHA-256 digest and expiry live
in the transfer metadata and requesting a new one overwrites the old,
so an earlier code stops matching as soon as it is replaced.

Every verify() outcome, success or failure, is appended to the
activity log.
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from banking_core.config import get_settings
from banking_core.errors import (
    BankingError,
    CodeExpired,
    CodeNotConfigured,
    ConcurrentModification,
    InvalidCode,
    StepNotRequired,
    StepOutOfOrder,
    TransferNotFound,
    TransferNotPending,
)
from banking_core.models.base import utcnow
from banking_core.models.enums import (
    ActorType,
    TransferStatus,
    VerificationStage,
    VerificationStep,
)
from banking_core.models.transfer import Transfer
from banking_core.repositories import AccountRepository, TransferRepository
from banking_core.services.audit_service import AuditService
from banking_core.services.notifications import Notifier, deliver

logger = logging.getLogger(__name__)


STEP_ORDER = (VerificationStep.IMF, VerificationStep.COT, VerificationStep.OTP)

STAGE_AFTER = {
    VerificationStep.IMF: VerificationStage.IMF_VERIFIED,
    VerificationStep.COT: VerificationStage.COT_VERIFIED,
    VerificationStep.OTP: VerificationStage.OTP_VERIFIED,
}

REQUIREMENT_FLAGS = {
    VerificationStep.IMF: "requires_imf_code",
    VerificationStep.COT: "requires_cot_code",
    VerificationStep.OTP: "requires_otp",
}

STEP_LABELS = {
    VerificationStep.IMF: "IMF Code",
    VerificationStep.COT: "COT Code",
    VerificationStep.OTP: "OTP",
}


def required_steps(transfer: Transfer) -> list[VerificationStep]:
    return [
        step for step in STEP_ORDER
        if getattr(transfer, REQUIREMENT_FLAGS[step])
    ]


def step_verified(transfer: Transfer, step: VerificationStep) -> bool:
    return bool((transfer.meta or {}).get(f"{step.value}_verified"))


def verification_complete(transfer: Transfer) -> bool:
    """True when every step the transfer requires has been verified."""
    return all(step_verified(transfer, step) for step in required_steps(transfer))


def otp_digest(reference: str, code: str) -> str:
    return hashlib.sha256(f"{reference}:{code}".encode("utf-8")).hexdigest()


def generate_otp(length: int) -> str:
    low = 10 ** (length - 1)
    return str(secrets.randbelow(9 * low) + low)


@dataclass(frozen=True)
class OtpIssue:
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class VerificationResult:
    transfer: Transfer
    step: VerificationStep
    already_verified: bool = False

    @property
    def completed(self) -> bool:
        return self.transfer.codes_verified


class VerificationService:

    def __init__(
        self,
        db: Session,
        transfers: TransferRepository | None = None,
        accounts: AccountRepository | None = None,
        audit: AuditService | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.transfers = transfers or TransferRepository(db)
        self.accounts = accounts or AccountRepository(db)
        self.audit = audit or AuditService(db)
        self.notifier = notifier or Notifier()
        self.clock = clock
        self.settings = get_settings()

    def verify(
        self,
        transfer_id: int,
        sender_id: int,
        step: VerificationStep,
        code: str,
    ) -> VerificationResult:
        """
        Submit the code for one verification step.

        Resubmitting a step that is already verified succeeds without
        changing anything, provided the code would still be accepted
        now: a replayed OTP fails once it has expired. Refusals
        leave the transfer untouched; the caller should still commit so
        the audit entry is kept.
        """
        step = VerificationStep(step)
        transfer = self._owned(transfer_id, sender_id)

        try:
            result = self._advance(transfer, step, (code or "").strip())
        except ConcurrentModification:
            raise
        except BankingError as exc:
            self._audit(transfer, step, "failed", exc.code)
            logger.warning(
                "Verification refused: %s", exc.reason,
                extra={"transfer_id": transfer.id, "action": f"verify_{step.value}"},
            )
            raise

        outcome = "already_verified" if result.already_verified else "verified"
        self._audit(transfer, step, outcome)
        return result

    def request_otp(self, transfer_id: int, sender_id: int) -> OtpIssue:
        """
        Issue a fresh OTP for the transfer, replacing any earlier one.
        The code is handed to the notifier and returned to the caller;
        only its digest is stored.
        """
        transfer = self._owned(transfer_id, sender_id)
        if not transfer.requires_otp:
            raise StepNotRequired("This transfer does not require an OTP")
        if transfer.status != TransferStatus.PENDING:
            raise TransferNotPending("Transfer is not pending verification")
        self._check_predecessors(transfer, VerificationStep.OTP)

        now = self.clock()
        code = generate_otp(self.settings.OTP_LENGTH)
        expires_at = now + timedelta(minutes=self.settings.OTP_EXPIRY_MINUTES)
        meta = dict(transfer.meta or {})
        transfer.meta = {
            **meta,
            "otp_hash": otp_digest(transfer.reference, code),
            "otp_expires_at": expires_at.isoformat(),
            "otp_issued_at": now.isoformat(),
            "otp_issue_count": meta.get("otp_issue_count", 0) + 1,
        }
        self._save(transfer)

        deliver(
            self.notifier, "send_otp",
            transfer.sender_id, code, transfer.reference, expires_at,
        )
        self.audit.record(
            transfer.sender_id, ActorType.USER, "request_otp", "transfer",
            transfer.id, {"expires_at": expires_at.isoformat()},
        )
        return OtpIssue(code=code, expires_at=expires_at)

    # --- Transitions ---

    def _advance(self, transfer, step, code) -> VerificationResult:
        if not getattr(transfer, REQUIREMENT_FLAGS[step]):
            raise StepNotRequired(
                f"{STEP_LABELS[step]} verification is not required for this transfer"
            )

        if step_verified(transfer, step):
            # Checked as strictly as a first submission, expiry included
            self._check_code(transfer, step, code)
            return VerificationResult(transfer, step, already_verified=True)

        if transfer.status != TransferStatus.PENDING:
            raise TransferNotPending("Transfer is not pending verification")
        self._check_predecessors(transfer, step)
        self._check_code(transfer, step, code)

        now = self.clock()
        meta = {
            **transfer.meta,
            f"{step.value}_verified": True,
            f"{step.value}_verified_at": now.isoformat(),
        }
        transfer.meta = meta
        transfer.verification_stage = STAGE_AFTER[step]

        done = verification_complete(transfer)
        if done:
            transfer.codes_verified = True
            transfer.status = TransferStatus.PROCESSING
        self._save(transfer)

        logger.info(
            "Verification step passed",
            extra={
                "transfer_id": transfer.id,
                "reference": transfer.reference,
                "action": f"verify_{step.value}",
                "status": transfer.status.value,
            },
        )
        if done:
            deliver(
                self.notifier, "notify", transfer.sender_id,
                "Transfer Verified",
                f"Your transfer {transfer.reference} has been verified "
                f"and is now being processed.",
                "success",
            )
        return VerificationResult(transfer, step)

    def _check_predecessors(self, transfer, step) -> None:
        for earlier in required_steps(transfer):
            if earlier == step:
                return
            if not step_verified(transfer, earlier):
                raise StepOutOfOrder(
                    f"{STEP_LABELS[earlier]} must be verified before "
                    f"{STEP_LABELS[step]}"
                )

    def _check_code(self, transfer, step, code) -> None:
        if step == VerificationStep.OTP:
            self._check_otp(transfer, code)
            return

        expected = self._account_code(transfer, step)
        if not expected:
            raise CodeNotConfigured(
                f"{STEP_LABELS[step]} not set for your account. "
                f"Please contact support."
            )
        if not hmac.compare_digest(code, expected):
            raise InvalidCode(self._invalid_message(step))

    def _check_otp(self, transfer, code) -> None:
        meta = transfer.meta or {}
        if not meta.get("otp_hash"):
            raise CodeNotConfigured("OTP not found. Please request a new OTP.")
        expires_at = datetime.fromisoformat(meta["otp_expires_at"])
        if self.clock() > expires_at:
            raise CodeExpired("OTP has expired. Please request a new OTP.")
        if not hmac.compare_digest(otp_digest(transfer.reference, code), meta["otp_hash"]):
            raise InvalidCode(self._invalid_message(VerificationStep.OTP))

    def _account_code(self, transfer, step) -> str | None:
        sender = self.accounts.get(transfer.sender_id)
        if step == VerificationStep.IMF:
            return sender.imf_code
        return sender.cot_code

    @staticmethod
    def _invalid_message(step) -> str:
        return f"Invalid {STEP_LABELS[step]}. Please check and try again."

    # --- Helpers ---

    def _owned(self, transfer_id: int, sender_id: int) -> Transfer:
        transfer = self.transfers.get_for_update(transfer_id)
        if not transfer or transfer.sender_id != sender_id:
            raise TransferNotFound(f"Transfer {transfer_id} not found")
        return transfer

    def _audit(self, transfer, step, outcome, error=None) -> None:
        details = {
            "reference": transfer.reference,
            "outcome": outcome,
            "stage": transfer.verification_stage.value,
        }
        if error:
            details["error"] = error
        self.audit.record(
            transfer.sender_id, ActorType.USER, f"verify_{step.value}",
            "transfer", transfer.id, details,
        )

    def _save(self, transfer: Transfer) -> None:
        try:
            self.db.flush()
        except StaleDataError:
            raise ConcurrentModification(
                f"Transfer {transfer.reference} was modified concurrently; "
                f"please retry"
            )
