"""
Transfer workflow: internal, local, international and crypto transfers.

Initiating an external transfer:
1. Checks the sender is active and the PIN matches
2. Checks the daily transfer limit for the transfer type
3. Resolves the fee and fixes total_amount = amount + fee
4. Debits ``amount`` from the sender through the ledger (funds are
   reserved now, not when verification completes)
5. Records a PENDING transfer_out transaction and a PENDING transfer

The fee is informational: it is recorded on the transfer and in
total_amount but is not withheld from the balance. Only ``amount``
ever moves.

Internal transfers need no verification and settle synchronously.
A local transfer to an account number held in this system is credited
to that account on completion.
A verified transfer (PROCESSING) is completed by an admin or a
background process; a rejected, cancelled or expired transfer gets its
reservation credited back to the sender exactly once.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from banking_core.config import get_settings
from banking_core.errors import (
    AccountNotEligible,
    AccountNotFound,
    ConcurrentModification,
    DuplicateReference,
    InvalidAmount,
    InvalidPin,
    InvalidRecipient,
    InvalidTransition,
    LimitExceeded,
    TransferNotFound,
)
from banking_core.models.account import Account
from banking_core.models.base import utcnow
from banking_core.models.enums import (
    AccountStatus,
    ActorType,
    BalanceKind,
    TransactionStatus,
    TransactionType,
    TransferStatus,
    TransferType,
    VerificationStage,
)
from banking_core.models.transfer import Transfer
from banking_core.repositories import AccountRepository, TransferRepository
from banking_core.services.account_service import check_pin
from banking_core.services.audit_service import AuditService
from banking_core.services.fees import FeePolicyProvider
from banking_core.services.ledger_service import (
    BALANCE_PRECISION,
    LedgerService,
    ineligible_reason,
    quantize_amount,
)
from banking_core.services.notifications import Notifier, deliver
from banking_core.services.references import ReferenceGenerator
from banking_core.services.transaction_service import TransactionRecorder
from banking_core.services.verification_service import verification_complete

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationPolicy:
    requires_imf_code: bool = False
    requires_cot_code: bool = False
    requires_otp: bool = False


VERIFICATION_POLICY = {
    TransferType.INTERNAL: VerificationPolicy(),
    TransferType.LOCAL: VerificationPolicy(requires_otp=True),
    TransferType.INTERNATIONAL: VerificationPolicy(
        requires_imf_code=True, requires_cot_code=True, requires_otp=True
    ),
    TransferType.CRYPTO: VerificationPolicy(requires_otp=True),
}

REFERENCE_PREFIXES = {
    TransferType.INTERNAL: "INT",
    TransferType.LOCAL: "LOC",
    TransferType.INTERNATIONAL: "IWT",
    TransferType.CRYPTO: "BTC",
}

# Types drawing on the account's daily_transfer_limit
DAILY_LIMITED_TYPES = {TransferType.LOCAL, TransferType.INTERNATIONAL}

# Transfers in these states no longer count against the daily limit
RELEASED_STATUSES = {
    TransferStatus.FAILED,
    TransferStatus.CANCELLED,
    TransferStatus.EXPIRED,
}

TYPE_LABELS = {
    TransferType.INTERNAL: "Internal",
    TransferType.LOCAL: "Local",
    TransferType.INTERNATIONAL: "International",
    TransferType.CRYPTO: "Bitcoin",
}


def balance_kind_for(transfer_type: TransferType) -> BalanceKind:
    if transfer_type == TransferType.CRYPTO:
        return BalanceKind.BITCOIN
    return BalanceKind.CASH


def format_amount(amount: Decimal, kind: BalanceKind) -> str:
    if kind == BalanceKind.BITCOIN:
        return f"{amount:.8f} BTC"
    return f"{amount:,.2f}"


class TransferService:

    def __init__(
        self,
        db: Session,
        ledger: LedgerService | None = None,
        recorder: TransactionRecorder | None = None,
        transfers: TransferRepository | None = None,
        accounts: AccountRepository | None = None,
        audit: AuditService | None = None,
        notifier: Notifier | None = None,
        fees: FeePolicyProvider | None = None,
        references: ReferenceGenerator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.accounts = accounts or AccountRepository(db)
        self.ledger = ledger or LedgerService(db, accounts=self.accounts)
        self.references = references or ReferenceGenerator()
        self.recorder = recorder or TransactionRecorder(
            db, references=self.references
        )
        self.transfers = transfers or TransferRepository(db)
        self.audit = audit or AuditService(db)
        self.notifier = notifier or Notifier()
        self.fees = fees or FeePolicyProvider()
        self.clock = clock
        self.settings = get_settings()

    # --- Initiation ---

    def initiate(
        self,
        sender_id: int,
        type: TransferType,
        recipient_details: dict,
        amount,
        description: str | None = None,
        pin: str | None = None,
        fee=None,
    ) -> Transfer:
        """
        Create a transfer. External transfers come back PENDING with the
        sender already debited; internal transfers come back COMPLETED.
        ``fee`` is a fee already resolved by the caller's payment-method
        policy; when omitted the configured policy for the type applies.
        """
        if type == TransferType.INTERNAL:
            return self._initiate_internal(
                sender_id, recipient_details, amount, description, pin
            )

        sender = self._eligible_sender(sender_id)
        self._check_pin(sender, pin)

        kind = balance_kind_for(type)
        amount = quantize_amount(amount, kind)
        self._check_daily_limit(sender, type, amount)

        fee = self._resolve_fee(type, amount, kind, fee)
        currency = "BTC" if kind == BalanceKind.BITCOIN else sender.currency
        recipient_id = self._resolve_recipient(sender, type, recipient_details)
        policy = VERIFICATION_POLICY[type]

        change = self.ledger.debit(sender.id, kind, amount)

        def build(reference: str) -> Transfer:
            return Transfer(
                sender_id=sender.id,
                recipient_id=recipient_id,
                recipient_details=dict(recipient_details),
                type=type,
                amount=amount,
                fee=fee,
                total_amount=amount + fee,
                currency=currency,
                balance_kind=kind,
                status=TransferStatus.PENDING,
                verification_stage=VerificationStage.PENDING,
                reference=reference,
                description=description,
                requires_imf_code=policy.requires_imf_code,
                requires_cot_code=policy.requires_cot_code,
                requires_otp=policy.requires_otp,
                codes_verified=False,
                meta={
                    "balance_before": str(change.balance_before),
                    "balance_after": str(change.balance_after),
                },
            )

        transfer = self._insert(REFERENCE_PREFIXES[type], build)
        reference = transfer.reference

        recipient_name = (
            recipient_details.get("account_name")
            or recipient_details.get("wallet_address")
            or "recipient"
        )
        self.recorder.record_change(
            change,
            TransactionType.TRANSFER_OUT,
            currency,
            f"{TYPE_LABELS[type]} transfer to {recipient_name} - {reference}",
            status=TransactionStatus.PENDING,
            reference=reference,
            metadata={
                "transfer_id": transfer.id,
                "transfer_type": type.value,
                "fee": str(fee),
                "recipient": dict(recipient_details),
            },
        )

        self.audit.record(
            sender.id, ActorType.USER, f"create_{type.value}_transfer",
            "transfer", transfer.id,
            {"amount": str(amount), "fee": str(fee), "reference": reference},
        )
        deliver(
            self.notifier, "notify", sender.id,
            "Transfer Initiated",
            f"Your {type.value} transfer of {format_amount(amount, kind)} "
            f"has been initiated and requires verification.",
        )
        logger.info(
            "Transfer initiated",
            extra={
                "transfer_id": transfer.id,
                "reference": reference,
                "account_id": sender.id,
                "amount": str(amount),
            },
        )
        return transfer

    def _initiate_internal(
        self, sender_id, recipient_details, amount, description, pin
    ) -> Transfer:
        sender = self._eligible_sender(sender_id)
        self._check_pin(sender, pin)
        amount = quantize_amount(amount, BalanceKind.CASH)

        account_number = recipient_details.get("account_number")
        recipient = (
            self.accounts.get_by_number(account_number) if account_number else None
        )
        if not recipient:
            raise AccountNotFound("Recipient account not found")
        if recipient.id == sender.id:
            raise InvalidRecipient("Cannot transfer to yourself")

        now = self.clock()

        sent = self.ledger.debit(sender.id, BalanceKind.CASH, amount)
        received = self.ledger.credit(recipient.id, BalanceKind.CASH, amount)

        def build(reference: str) -> Transfer:
            return Transfer(
                sender_id=sender.id,
                recipient_id=recipient.id,
                recipient_details={
                    "account_number": recipient.account_number,
                    "account_name": recipient.name,
                },
                type=TransferType.INTERNAL,
                amount=amount,
                fee=Decimal("0"),
                total_amount=amount,
                currency=sender.currency,
                balance_kind=BalanceKind.CASH,
                status=TransferStatus.COMPLETED,
                verification_stage=VerificationStage.PENDING,
                reference=reference,
                description=description,
                codes_verified=True,
                processed_at=now,
                meta={},
            )

        transfer = self._insert(REFERENCE_PREFIXES[TransferType.INTERNAL], build)
        reference = transfer.reference

        self.recorder.record_change(
            sent,
            TransactionType.TRANSFER_OUT,
            sender.currency,
            f"Transfer to {recipient.name} - {reference}",
            reference=reference,
            metadata={"transfer_id": transfer.id, "recipient_id": recipient.id},
        )
        self.recorder.record_change(
            received,
            TransactionType.TRANSFER_IN,
            recipient.currency,
            f"Transfer from {sender.name} - {reference}",
            reference=f"{reference}-IN",
            metadata={"transfer_id": transfer.id, "sender_id": sender.id},
        )

        self.audit.record(
            sender.id, ActorType.USER, "internal_transfer", "transfer",
            transfer.id,
            {"amount": str(amount), "recipient_account": recipient.account_number},
        )
        deliver(
            self.notifier, "notify", sender.id, "Transfer Successful",
            f"You have successfully transferred {amount:,.2f} to {recipient.name}.",
            "success",
        )
        deliver(
            self.notifier, "notify", recipient.id, "Money Received",
            f"You have received {amount:,.2f} from {sender.name}.",
            "success",
        )
        return transfer

    # --- Settlement ---

    def complete(
        self,
        transfer_id: int,
        actor_id: int | None,
        actor_type: ActorType = ActorType.ADMIN,
        note: str | None = None,
    ) -> Transfer:
        """
        Move a verified (PROCESSING) transfer to COMPLETED, crediting the
        recipient when it is an account in this system.
        """
        transfer = self._locked(transfer_id)
        if transfer.status == TransferStatus.COMPLETED:
            return transfer
        if transfer.status != TransferStatus.PROCESSING:
            raise InvalidTransition(
                f"Transfer {transfer.reference} is {transfer.status.value}; "
                f"only processing transfers can be completed"
            )
        if not verification_complete(transfer):
            raise InvalidTransition(
                f"Transfer {transfer.reference} has unverified steps"
            )

        if transfer.recipient_id is not None:
            received = self.ledger.credit(
                transfer.recipient_id, transfer.balance_kind, transfer.amount
            )
            self.recorder.record_change(
                received,
                TransactionType.TRANSFER_IN,
                transfer.currency,
                f"Transfer received - {transfer.reference}",
                reference=f"{transfer.reference}-IN",
                metadata={
                    "transfer_id": transfer.id,
                    "sender_id": transfer.sender_id,
                },
            )

        self.recorder.settle(
            transfer.reference, TransactionStatus.COMPLETED, missing_ok=True
        )
        transfer.status = TransferStatus.COMPLETED
        transfer.processed_by = actor_id
        transfer.processed_at = self.clock()
        if note:
            transfer.meta = {**transfer.meta, "note": note}
        self._save(transfer)

        self.audit.record(
            actor_id, actor_type, "process_transfer_completed", "transfer",
            transfer.id, {"amount": str(transfer.amount), "note": note},
        )
        deliver(
            self.notifier, "notify", transfer.sender_id, "Transfer Completed",
            f"Your transfer of "
            f"{format_amount(transfer.amount, transfer.balance_kind)} "
            f"has been completed successfully.",
            "success",
        )
        return transfer

    def reject(
        self,
        transfer_id: int,
        actor_id: int | None,
        reason: str | None = None,
        status: TransferStatus = TransferStatus.FAILED,
        actor_type: ActorType = ActorType.ADMIN,
    ) -> Transfer:
        """Fail or cancel an unfinished transfer and refund the reservation."""
        if status not in (TransferStatus.FAILED, TransferStatus.CANCELLED):
            raise InvalidTransition(
                f"A transfer cannot be rejected as {status.value}"
            )
        transfer = self._locked(transfer_id)
        if transfer.status == status:
            return transfer
        return self._release(transfer, status, actor_id, actor_type, reason)

    def stale_transfer_ids(self, now: datetime | None = None) -> list[int]:
        return self.transfers.stale_pending_ids(self._expiry_cutoff(now))

    def expire(self, transfer_id: int, now: datetime | None = None) -> Transfer | None:
        """
        Expire one abandoned PENDING transfer. Returns None if it was
        verified, settled or renewed in the meantime.
        """
        cutoff = self._expiry_cutoff(now)
        transfer = self._locked(transfer_id)
        if transfer.status != TransferStatus.PENDING or transfer.created_at >= cutoff:
            return None
        return self._release(
            transfer, TransferStatus.EXPIRED, None, ActorType.SYSTEM,
            "Verification was not completed in time",
        )

    def expire_stale(self, now: datetime | None = None) -> list[Transfer]:
        """Expire every abandoned PENDING transfer in one unit of work."""
        expired = []
        for transfer_id in self.stale_transfer_ids(now):
            transfer = self.expire(transfer_id, now)
            if transfer is not None:
                expired.append(transfer)
        return expired

    def _release(
        self,
        transfer: Transfer,
        status: TransferStatus,
        actor_id: int | None,
        actor_type: ActorType,
        reason: str | None,
    ) -> Transfer:
        if transfer.status not in (TransferStatus.PENDING, TransferStatus.PROCESSING):
            raise InvalidTransition(
                f"Transfer {transfer.reference} is already {transfer.status.value}"
            )

        refund = self.ledger.credit(
            transfer.sender_id, transfer.balance_kind, transfer.amount
        )
        self.recorder.record_change(
            refund,
            TransactionType.CREDIT,
            transfer.currency,
            f"Reversal of transfer {transfer.reference}",
            prefix="REV",
            metadata={
                "transfer_id": transfer.id,
                "reversal_of": transfer.reference,
                "reason": reason,
            },
        )
        self.recorder.settle(
            transfer.reference, TransactionStatus.FAILED, missing_ok=True
        )

        transfer.status = status
        transfer.processed_by = actor_id
        transfer.processed_at = self.clock()
        transfer.meta = {
            **transfer.meta,
            "refunded": str(transfer.amount),
            "reason": reason,
        }
        self._save(transfer)

        self.audit.record(
            actor_id, actor_type, f"process_transfer_{status.value}", "transfer",
            transfer.id, {"amount": str(transfer.amount), "reason": reason},
        )
        deliver(
            self.notifier, "notify", transfer.sender_id, "Transfer Failed",
            f"Your transfer of "
            f"{format_amount(transfer.amount, transfer.balance_kind)} "
            f"was {status.value} and has been refunded. {reason or ''}".strip(),
            "error",
        )
        logger.info(
            "Transfer released",
            extra={
                "transfer_id": transfer.id,
                "reference": transfer.reference,
                "status": status.value,
            },
        )
        return transfer

    # --- Queries ---

    def get_transfer(self, transfer_id: int, sender_id: int | None = None) -> Transfer:
        transfer = self.transfers.get(transfer_id)
        if not transfer or (sender_id is not None and transfer.sender_id != sender_id):
            raise TransferNotFound(f"Transfer {transfer_id} not found")
        return transfer

    def list_for_sender(
        self,
        sender_id: int,
        type: TransferType | None = None,
        status: TransferStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Transfer], int]:
        return self.transfers.list_for_sender(
            sender_id, type=type, status=status,
            offset=(page - 1) * limit, limit=limit,
        )

    # --- Helpers ---

    def _eligible_sender(self, sender_id: int) -> Account:
        sender = self.accounts.get(sender_id)
        if not sender:
            raise AccountNotFound("Sender not found")
        if sender.status != AccountStatus.ACTIVE:
            raise AccountNotEligible(
                ineligible_reason(sender.status), status=sender.status
            )
        return sender

    def _check_pin(self, sender: Account, pin: str | None) -> None:
        if sender.pin_hash is None:
            raise InvalidPin(
                "Transaction PIN not set. Please set a PIN before transferring."
            )
        if not pin or not check_pin(pin, sender.pin_hash):
            raise InvalidPin("Invalid PIN")

    def _check_daily_limit(
        self, sender: Account, type: TransferType, amount: Decimal
    ) -> None:
        if type not in DAILY_LIMITED_TYPES:
            return
        # Serializes concurrent limit checks for the same sender
        self.accounts.lock(sender.id)
        now = self.clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        used = self.transfers.sum_since(
            sender.id, DAILY_LIMITED_TYPES, start_of_day, RELEASED_STATUSES
        )
        limit = sender.daily_transfer_limit
        if used + amount > limit:
            remaining = max(limit - used, Decimal("0"))
            raise LimitExceeded(
                f"Daily transfer limit of {limit:,.2f} exceeded. "
                f"Remaining today: {remaining:,.2f}"
            )

    def _resolve_fee(self, type, amount, kind, fee) -> Decimal:
        precision = BALANCE_PRECISION[kind]
        if fee is None:
            return self.fees.policy_for(type).resolve(amount, precision)
        value = Decimal(str(fee))
        if value < 0:
            raise InvalidAmount("Fee cannot be negative")
        if value != value.quantize(precision):
            raise InvalidAmount(f"Fee {value} is finer than {precision}")
        return value.quantize(precision)

    def _resolve_recipient(
        self, sender: Account, type: TransferType, recipient_details: dict
    ) -> int | None:
        """
        A local transfer to an account number held in this system is
        credited to that account when the transfer completes.
        """
        if type != TransferType.LOCAL:
            return None
        account_number = recipient_details.get("account_number")
        recipient = (
            self.accounts.get_by_number(account_number) if account_number else None
        )
        if recipient is None:
            return None
        if recipient.id == sender.id:
            raise InvalidRecipient("Cannot transfer to yourself")
        return recipient.id

    def _insert(self, prefix: str, build: Callable[[str], Transfer]) -> Transfer:
        """
        Insert the transfer ``build`` makes for a fresh reference. A
        reference taken after the pre-check is regenerated, never surfaced.
        """
        for _ in range(self.references.max_attempts):
            transfer = build(self._new_reference(prefix))
            try:
                return self.transfers.insert(transfer)
            except IntegrityError:
                if not self.transfers.reference_exists(transfer.reference):
                    raise
                logger.warning(
                    "Transfer reference taken at insert, regenerating",
                    extra={"reference": transfer.reference},
                )

        raise DuplicateReference(
            f"Could not create a {prefix} transfer with a unique reference"
        )

    def _new_reference(self, prefix: str) -> str:
        return self.references.unique(
            prefix,
            lambda ref: (
                self.transfers.reference_exists(ref)
                or self.recorder.transactions.reference_exists(ref)
            ),
        )

    def _expiry_cutoff(self, now: datetime | None) -> datetime:
        now = now or self.clock()
        return now - timedelta(hours=self.settings.PENDING_TRANSFER_TTL_HOURS)

    def _locked(self, transfer_id: int) -> Transfer:
        transfer = self.transfers.get_for_update(transfer_id)
        if not transfer:
            raise TransferNotFound(f"Transfer {transfer_id} not found")
        return transfer

    def _save(self, transfer: Transfer) -> None:
        try:
            self.db.flush()
        except StaleDataError:
            raise ConcurrentModification(
                f"Transfer {transfer.reference} was modified concurrently; "
                f"please retry"
            )
