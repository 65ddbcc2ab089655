"""
Transaction recorder: one immutable record per balance mutation.

Each record:
1. Is written in the same unit of work as the ledger mutation it documents
2. Carries the before/after snapshot the ledger returned, checked for
   consistency with its type and amount
3. Gets a unique reference, regenerated on collision

A record may be written as PENDING when the balance has already moved
(an outbound transfer reserves funds eagerly) but the movement is not
yet considered settled. settle() later moves it to COMPLETED or FAILED;
nothing else about the record ever changes.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from banking_core.errors import (
    DuplicateReference,
    InvalidTransition,
    TransactionNotFound,
)
from banking_core.models.base import utcnow
from banking_core.models.enums import (
    BalanceKind,
    CREDIT_TRANSACTION_TYPES,
    TransactionStatus,
    TransactionType,
)
from banking_core.models.transaction import Transaction
from banking_core.repositories import TransactionRepository
from banking_core.services.ledger_service import BalanceChange
from banking_core.services.references import ReferenceGenerator

logger = logging.getLogger(__name__)


class TransactionRecorder:

    def __init__(
        self,
        db: Session,
        transactions: TransactionRepository | None = None,
        references: ReferenceGenerator | None = None,
    ):
        self.db = db
        self.transactions = transactions or TransactionRepository(db)
        self.references = references or ReferenceGenerator()

    def record(
        self,
        account_id: int,
        type: TransactionType,
        amount: Decimal,
        balance_before: Decimal,
        balance_after: Decimal,
        currency: str,
        description: str,
        metadata: dict | None = None,
        balance_kind: BalanceKind = BalanceKind.CASH,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        reference: str | None = None,
        prefix: str = "TXN",
        created_at: datetime | None = None,
    ) -> Transaction:
        """
        Write the record for a balance mutation that has just happened.

        When ``reference`` is given (a transfer shares its reference with
        its transfer_out record) a collision is reported as
        DuplicateReference; otherwise a fresh reference is generated and
        collisions are retried.
        """
        self._check_snapshot(type, amount, balance_before, balance_after)

        for _ in range(self.references.max_attempts):
            ref = reference or self.references.unique(
                prefix, self.transactions.reference_exists
            )
            txn = Transaction(
                account_id=account_id,
                type=type,
                amount=amount,
                balance_before=balance_before,
                balance_after=balance_after,
                balance_kind=balance_kind,
                currency=currency,
                status=status,
                description=description[:255],
                reference=ref,
                meta=dict(metadata or {}),
            )
            if created_at is not None:
                txn.created_at = created_at

            try:
                self.transactions.insert(txn)
            except IntegrityError:
                if not self.transactions.reference_exists(ref):
                    raise
                if reference is not None:
                    raise DuplicateReference(
                        f"Reference {reference} is already recorded"
                    )
                logger.warning(
                    "Reference taken at insert, regenerating",
                    extra={"reference": ref},
                )
                continue

            logger.info(
                "Transaction recorded",
                extra={
                    "account_id": account_id,
                    "reference": ref,
                    "amount": str(amount),
                    "status": status.value,
                },
            )
            return txn

        raise DuplicateReference(
            f"Could not record a {prefix} transaction with a unique reference"
        )

    def record_change(
        self,
        change: BalanceChange,
        type: TransactionType,
        currency: str,
        description: str,
        **kwargs,
    ) -> Transaction:
        """Record a ledger BalanceChange as returned by LedgerService."""
        return self.record(
            account_id=change.account_id,
            type=type,
            amount=change.amount,
            balance_before=change.balance_before,
            balance_after=change.balance_after,
            currency=currency,
            description=description,
            balance_kind=change.balance_kind,
            **kwargs,
        )

    def settle(
        self,
        reference: str,
        status: TransactionStatus,
        missing_ok: bool = False,
    ) -> Transaction | None:
        """
        Move a pending record to its final status. Settling to the status
        it already has is a no-op.

        ``missing_ok`` tolerates a record purged by an admin account clear.
        """
        txn = self.transactions.get_by_reference(reference)
        if not txn:
            if missing_ok:
                logger.warning(
                    "No transaction to settle", extra={"reference": reference}
                )
                return None
            raise TransactionNotFound(f"Transaction {reference} not found")

        if txn.status == status:
            return txn
        if txn.status != TransactionStatus.PENDING or status == TransactionStatus.PENDING:
            raise InvalidTransition(
                f"Cannot move transaction {reference} from "
                f"{txn.status.value} to {status.value}"
            )

        txn.status = status
        txn.meta = {**txn.meta, "settled_at": utcnow().isoformat()}
        self.db.flush()
        return txn

    def get_transaction(self, transaction_id: int) -> Transaction:
        txn = self.transactions.get(transaction_id)
        if not txn:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        return txn

    def list_for_account(
        self,
        account_id: int,
        type: TransactionType | None = None,
        status: TransactionStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Transaction], int]:
        return self.transactions.list_for_account(
            account_id,
            type=type,
            status=status,
            offset=(page - 1) * limit,
            limit=limit,
        )

    @staticmethod
    def _check_snapshot(type, amount, balance_before, balance_after):
        if type in CREDIT_TRANSACTION_TYPES:
            expected = balance_before + amount
        else:
            expected = balance_before - amount
        if Decimal(balance_after) != Decimal(expected):
            raise ValueError(
                f"Inconsistent snapshot for {type.value}: "
                f"{balance_before} -> {balance_after} with amount {amount}"
            )
