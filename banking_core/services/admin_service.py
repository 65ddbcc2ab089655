"""
Admin override path.

Privileged balance corrections that bypass the transfer workflow but
still go through the ledger and the transaction recorder, so the
non-negative balance rule and the status rules hold for admins too.

Every override is written to the activity log in the same unit of
work as the change it describes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from banking_core.errors import AccountNotFound, InvalidTransition
from banking_core.models.base import utcnow
from banking_core.models.enums import (
    ActorType,
    AdjustmentDirection,
    BalanceKind,
    TransactionType,
    TransferStatus,
)
from banking_core.models.transaction import Transaction
from banking_core.models.transfer import Transfer
from banking_core.repositories import AccountRepository
from banking_core.services.audit_service import AuditService
from banking_core.services.ledger_service import LedgerService
from banking_core.services.notifications import Notifier, deliver
from banking_core.services.transaction_service import TransactionRecorder
from banking_core.services.transfer_service import (
    TransferService,
    format_amount,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClearResult:
    account_id: int
    cash_cleared: Decimal
    bitcoin_cleared: Decimal
    transactions_deleted: int


class AdminService:

    def __init__(
        self,
        db: Session,
        ledger: LedgerService | None = None,
        recorder: TransactionRecorder | None = None,
        accounts: AccountRepository | None = None,
        audit: AuditService | None = None,
        notifier: Notifier | None = None,
        transfers: TransferService | None = None,
    ):
        self.db = db
        self.accounts = accounts or AccountRepository(db)
        self.ledger = ledger or LedgerService(db, accounts=self.accounts)
        self.recorder = recorder or TransactionRecorder(db)
        self.audit = audit or AuditService(db)
        self.notifier = notifier or Notifier()
        self.transfers = transfers or TransferService(
            db,
            ledger=self.ledger,
            recorder=self.recorder,
            accounts=self.accounts,
            audit=self.audit,
            notifier=self.notifier,
        )

    def adjust(
        self,
        account_id: int,
        direction: AdjustmentDirection,
        amount,
        balance_kind: BalanceKind,
        admin_id: int,
        description: str | None = None,
        metadata: dict | None = None,
        backdated_at: datetime | None = None,
        notify: bool = False,
    ) -> Transaction:
        """
        Credit or debit an account directly.

        ``backdated_at`` sets the record's created_at for generated
        history. A debit is refused exactly as any other debit would be
        (insufficient funds, dormant/suspended/blocked account).
        """
        direction = AdjustmentDirection(direction)
        balance_kind = BalanceKind(balance_kind)
        account = self.accounts.get(account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")

        if direction == AdjustmentDirection.CREDIT:
            change = self.ledger.credit(account_id, balance_kind, amount)
            txn_type = TransactionType.CREDIT
        else:
            change = self.ledger.debit(account_id, balance_kind, amount)
            txn_type = TransactionType.DEBIT

        currency = "BTC" if balance_kind == BalanceKind.BITCOIN else account.currency
        txn = self.recorder.record_change(
            change,
            txn_type,
            currency,
            description or f"Admin {direction.value}",
            prefix="ADM",
            created_at=backdated_at,
            metadata={
                **(metadata or {}),
                "admin_id": admin_id,
                "scope": "admin_adjustment",
                "balance_kind": balance_kind.value,
                "backdated": backdated_at is not None,
            },
        )

        self.audit.record(
            admin_id, ActorType.ADMIN, f"admin_{direction.value}", "account",
            account_id,
            {
                "amount": str(change.amount),
                "balance_kind": balance_kind.value,
                "reference": txn.reference,
                "backdated_at": backdated_at.isoformat() if backdated_at else None,
            },
        )

        if notify:
            label = "Credit" if direction == AdjustmentDirection.CREDIT else "Debit"
            deliver(
                self.notifier, "notify", account_id, f"{label} Alert",
                f"Your account has been {direction.value}ed with "
                f"{format_amount(change.amount, balance_kind)}. "
                f"Reference: {txn.reference}",
                "success" if direction == AdjustmentDirection.CREDIT else "info",
            )

        logger.info(
            "Admin adjustment applied",
            extra={
                "account_id": account_id,
                "actor_id": admin_id,
                "amount": str(change.amount),
                "balance_kind": balance_kind.value,
            },
        )
        return txn

    def clear_account(
        self, account_id: int, admin_id: int, reason: str | None = None
    ) -> ClearResult:
        """
        Zero both balances and purge the account's transaction history.

        Irreversible. The activity log keeps the balances as they were
        and the number of records removed; it is never purged.
        """
        cash, bitcoin = self.ledger.zero_balances(account_id)
        deleted = self.recorder.transactions.delete_for_account(account_id)

        self.audit.record(
            admin_id, ActorType.ADMIN, "clear_account", "account", account_id,
            {
                "cash_balance_before": str(cash),
                "bitcoin_balance_before": str(bitcoin),
                "transactions_deleted": deleted,
                "reason": reason,
                "cleared_at": utcnow().isoformat(),
            },
        )
        logger.warning(
            "Account cleared",
            extra={"account_id": account_id, "actor_id": admin_id},
        )
        return ClearResult(
            account_id=account_id,
            cash_cleared=cash,
            bitcoin_cleared=bitcoin,
            transactions_deleted=deleted,
        )

    def process_transfer(
        self,
        transfer_id: int,
        admin_id: int,
        action: str,
        note: str | None = None,
    ) -> Transfer:
        """Complete, reject (fail) or cancel a transfer on an admin's behalf."""
        if action == "complete":
            return self.transfers.complete(transfer_id, admin_id, note=note)
        if action == "reject":
            return self.transfers.reject(transfer_id, admin_id, reason=note)
        if action == "cancel":
            return self.transfers.reject(
                transfer_id, admin_id, reason=note,
                status=TransferStatus.CANCELLED,
            )
        raise InvalidTransition(f"Unknown transfer action: {action}")
