"""
Storage access for the money-movement core.

Services never query models directly; they receive repositories bound
to the request's session. The caller still owns the transaction
boundary: repositories flush, they never commit.

The balance statements live here because atomicity is a storage
guarantee. A debit is one conditional UPDATE; there is no window in
which a balance has been read but not yet written.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update, delete, func
from sqlalchemy.orm import Session

from banking_core.models.account import Account
from banking_core.models.activity import ActivityLog
from banking_core.models.enums import (
    BalanceKind,
    DEBIT_BLOCKING_STATUSES,
    TransactionStatus,
    TransactionType,
    TransferStatus,
    TransferType,
)
from banking_core.models.transaction import Transaction
from banking_core.models.transfer import Transfer


BALANCE_COLUMNS = {
    BalanceKind.CASH: Account.cash_balance,
    BalanceKind.BITCOIN: Account.bitcoin_balance,
}


def balance_column(kind: BalanceKind):
    return BALANCE_COLUMNS[kind]


class AccountRepository:

    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: int) -> Account | None:
        return self.db.get(Account, account_id)

    def get_by_number(self, account_number: str) -> Account | None:
        return self.db.execute(
            select(Account).where(Account.account_number == account_number)
        ).scalar_one_or_none()

    def add(self, account: Account) -> Account:
        self.db.add(account)
        self.db.flush()
        return account

    def read_balance(self, account_id: int, kind: BalanceKind) -> Decimal | None:
        """Read a single balance straight from the store."""
        return self.db.execute(
            select(balance_column(kind)).where(Account.id == account_id)
        ).scalar_one_or_none()

    def conditional_debit(
        self, account_id: int, kind: BalanceKind, amount: Decimal
    ) -> Decimal | None:
        """
        Decrement a balance only if it covers ``amount`` and the account
        may be debited. Returns the new balance, or None when no row
        matched (missing account, blocking status, or insufficient funds).
        """
        column = balance_column(kind)
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                column >= amount,
                Account.status.not_in(list(DEBIT_BLOCKING_STATUSES)),
            )
            .values({column: column - amount})
            .returning(column)
            .execution_options(synchronize_session="fetch")
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def increment(
        self, account_id: int, kind: BalanceKind, amount: Decimal
    ) -> Decimal | None:
        """Increment a balance; returns the new balance or None if missing."""
        column = balance_column(kind)
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values({column: column + amount})
            .returning(column)
            .execution_options(synchronize_session="fetch")
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def lock(self, account_id: int) -> Account | None:
        """Load an account holding a row lock until the transaction ends."""
        return self.db.execute(
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()


class TransactionRepository:

    def __init__(self, db: Session):
        self.db = db

    def get(self, transaction_id: int) -> Transaction | None:
        return self.db.get(Transaction, transaction_id)

    def get_by_reference(self, reference: str) -> Transaction | None:
        return self.db.execute(
            select(Transaction).where(Transaction.reference == reference)
        ).scalar_one_or_none()

    def reference_exists(self, reference: str) -> bool:
        return self.db.execute(
            select(Transaction.id).where(Transaction.reference == reference)
        ).first() is not None

    def insert(self, txn: Transaction) -> Transaction:
        """
        Insert inside a SAVEPOINT so a reference collision rolls back
        only this row. Raises IntegrityError on collision.
        """
        with self.db.begin_nested():
            self.db.add(txn)
            self.db.flush()
        return txn

    def list_for_account(
        self,
        account_id: int,
        type: TransactionType | None = None,
        status: TransactionStatus | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Transaction], int]:
        query = select(Transaction).where(Transaction.account_id == account_id)
        if type is not None:
            query = query.where(Transaction.type == type)
        if status is not None:
            query = query.where(Transaction.status == status)

        total = self.db.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()
        rows = self.db.execute(
            query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        ).scalars().all()
        return list(rows), total

    def delete_for_account(self, account_id: int) -> int:
        result = self.db.execute(
            delete(Transaction)
            .where(Transaction.account_id == account_id)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount


class TransferRepository:

    def __init__(self, db: Session):
        self.db = db

    def get(self, transfer_id: int) -> Transfer | None:
        return self.db.get(Transfer, transfer_id)

    def get_for_update(self, transfer_id: int) -> Transfer | None:
        """
        Load a transfer with a row lock, refreshing any copy already in
        the session so decisions are made on the stored state.
        """
        return self.db.execute(
            select(Transfer)
            .where(Transfer.id == transfer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def reference_exists(self, reference: str) -> bool:
        return self.db.execute(
            select(Transfer.id).where(Transfer.reference == reference)
        ).first() is not None

    def insert(self, transfer: Transfer) -> Transfer:
        with self.db.begin_nested():
            self.db.add(transfer)
            self.db.flush()
        return transfer

    def list_for_sender(
        self,
        sender_id: int,
        type: TransferType | None = None,
        status: TransferStatus | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Transfer], int]:
        query = select(Transfer).where(Transfer.sender_id == sender_id)
        if type is not None:
            query = query.where(Transfer.type == type)
        if status is not None:
            query = query.where(Transfer.status == status)

        total = self.db.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()
        rows = self.db.execute(
            query.order_by(Transfer.created_at.desc(), Transfer.id.desc())
            .offset(offset)
            .limit(limit)
        ).scalars().all()
        return list(rows), total

    def sum_since(
        self,
        sender_id: int,
        types: set[TransferType],
        since: datetime,
        excluded_statuses: set[TransferStatus],
    ) -> Decimal:
        total = self.db.execute(
            select(func.coalesce(func.sum(Transfer.amount), 0)).where(
                Transfer.sender_id == sender_id,
                Transfer.type.in_(list(types)),
                Transfer.created_at >= since,
                Transfer.status.not_in(list(excluded_statuses)),
            )
        ).scalar()
        return Decimal(str(total))

    def stale_pending_ids(self, cutoff: datetime) -> list[int]:
        return list(self.db.execute(
            select(Transfer.id)
            .where(
                Transfer.status == TransferStatus.PENDING,
                Transfer.created_at < cutoff,
            )
            .order_by(Transfer.id)
        ).scalars().all())


class ActivityRepository:

    def __init__(self, db: Session):
        self.db = db

    def add(self, entry: ActivityLog) -> ActivityLog:
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_for_resource(
        self, resource: str, resource_id: int
    ) -> list[ActivityLog]:
        return list(self.db.execute(
            select(ActivityLog)
            .where(
                ActivityLog.resource == resource,
                ActivityLog.resource_id == resource_id,
            )
            .order_by(ActivityLog.id)
        ).scalars().all())

    def list_by_action(self, action: str) -> list[ActivityLog]:
        return list(self.db.execute(
            select(ActivityLog)
            .where(ActivityLog.action == action)
            .order_by(ActivityLog.id)
        ).scalars().all())


__all__ = [
    "AccountRepository",
    "TransactionRepository",
    "TransferRepository",
    "ActivityRepository",
    "balance_column",
]
