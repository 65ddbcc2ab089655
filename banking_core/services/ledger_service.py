"""
Ledger service: the single writer of account balances.

This service enforces the fundamental rules:
1. Amounts are positive and carry the balance's precision
2. A balance never goes negative
3. Dormant, suspended and blocked accounts are never debited
4. The check and the mutation are one atomic statement

Every call returns the balance before and after the mutation so the
caller can hand both to the TransactionRecorder without a second read.
No other service writes balances directly.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy import update
from sqlalchemy.orm import Session

from banking_core.errors import (
    AccountNotEligible,
    AccountNotFound,
    InsufficientFunds,
    InvalidAmount,
)
from banking_core.models.account import Account
from banking_core.models.enums import (
    AccountStatus,
    BalanceKind,
    DEBIT_BLOCKING_STATUSES,
)
from banking_core.repositories import AccountRepository

logger = logging.getLogger(__name__)


# Smallest unit of each balance
BALANCE_PRECISION = {
    BalanceKind.CASH: Decimal("0.01"),
    BalanceKind.BITCOIN: Decimal("0.00000001"),
}

# Caller-facing reasons for accounts that may not be debited
INELIGIBLE_REASONS = {
    AccountStatus.DORMANT: (
        "Your account is currently dormant. "
        "Please contact support to reactivate."
    ),
    AccountStatus.SUSPENDED: (
        "Your account has been suspended. Please contact support."
    ),
    AccountStatus.BLOCKED: (
        "Your account has been blocked. Please contact support."
    ),
    AccountStatus.INACTIVE: "Your account is not active.",
    AccountStatus.PENDING: "Your account is pending approval.",
}


@dataclass(frozen=True)
class BalanceChange:
    """Outcome of one ledger mutation."""
    account_id: int
    balance_kind: BalanceKind
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal


def quantize_amount(amount, kind: BalanceKind) -> Decimal:
    """
    Validate an amount against the precision of ``kind``.

    Amounts finer than the smallest unit are refused, never rounded.
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    if not value.is_finite():
        raise InvalidAmount(f"Invalid amount: {amount!r}")

    precision = BALANCE_PRECISION[kind]
    try:
        exact = value.quantize(precision)
    except InvalidOperation:
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    if value != exact:
        raise InvalidAmount(
            f"Amount {value} is finer than the smallest {kind.value} unit "
            f"({precision})"
        )
    if exact <= 0:
        raise InvalidAmount("Amount must be greater than zero")
    return exact


def ineligible_reason(status: AccountStatus) -> str:
    return INELIGIBLE_REASONS.get(status, "Your account is not active.")


class LedgerService:
    """
    All balance mutations pass through this service.

    The service takes a database session as a constructor
    argument. This means the caller controls the transaction
    boundary: they decide when to commit or rollback.
    """

    def __init__(self, db: Session, accounts: AccountRepository | None = None):
        self.db = db
        self.accounts = accounts or AccountRepository(db)

    def get_account(self, account_id: int) -> Account:
        account = self.accounts.get(account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")
        return account

    def get_balances(self, account_id: int) -> dict[BalanceKind, Decimal]:
        account = self.get_account(account_id)
        self.db.refresh(account)
        return {
            BalanceKind.CASH: account.cash_balance,
            BalanceKind.BITCOIN: account.bitcoin_balance,
        }

    def credit(
        self, account_id: int, balance_kind: BalanceKind, amount
    ) -> BalanceChange:
        """Increase a balance by ``amount``."""
        amount = quantize_amount(amount, balance_kind)

        new_balance = self.accounts.increment(account_id, balance_kind, amount)
        if new_balance is None:
            raise AccountNotFound(f"Account {account_id} not found")

        change = self._change(account_id, balance_kind, amount, new_balance, +1)
        logger.info(
            "Balance credited",
            extra={
                "account_id": account_id,
                "balance_kind": balance_kind.value,
                "amount": str(amount),
            },
        )
        return change

    def debit(
        self, account_id: int, balance_kind: BalanceKind, amount
    ) -> BalanceChange:
        """
        Decrease a balance by ``amount``.

        The balance check, the status check and the decrement are a
        single conditional UPDATE, so two concurrent debits can never
        both pass the check and jointly overdraw the account. When the
        statement matches no row the cause is diagnosed afterwards;
        nothing has been written at that point.
        """
        amount = quantize_amount(amount, balance_kind)

        new_balance = self.accounts.conditional_debit(
            account_id, balance_kind, amount
        )
        if new_balance is None:
            self._raise_debit_refusal(account_id, balance_kind, amount)

        change = self._change(account_id, balance_kind, amount, new_balance, -1)
        logger.info(
            "Balance debited",
            extra={
                "account_id": account_id,
                "balance_kind": balance_kind.value,
                "amount": str(amount),
            },
        )
        return change

    def zero_balances(self, account_id: int) -> tuple[Decimal, Decimal]:
        """
        Reset both balances to zero, returning (cash, bitcoin) as they
        were. The row is locked first so the returned values are exactly
        what was cleared.
        """
        account = self.accounts.lock(account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")

        before = (account.cash_balance, account.bitcoin_balance)
        self.db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(cash_balance=Decimal("0"), bitcoin_balance=Decimal("0"))
            .execution_options(synchronize_session="fetch")
        )
        logger.warning(
            "Balances reset to zero", extra={"account_id": account_id}
        )
        return before

    def _change(self, account_id, kind, amount, new_balance, sign) -> BalanceChange:
        precision = BALANCE_PRECISION[kind]
        after = Decimal(str(new_balance)).quantize(precision)
        before = (after - sign * amount).quantize(precision)
        return BalanceChange(
            account_id=account_id,
            balance_kind=kind,
            amount=amount,
            balance_before=before,
            balance_after=after,
        )

    def _raise_debit_refusal(self, account_id, kind, amount):
        account = self.accounts.get(account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")

        self.db.refresh(account)
        if account.status in DEBIT_BLOCKING_STATUSES:
            logger.warning(
                "Debit refused for ineligible account",
                extra={"account_id": account_id, "status": account.status.value},
            )
            raise AccountNotEligible(
                ineligible_reason(account.status), status=account.status
            )

        available = (
            account.cash_balance if kind == BalanceKind.CASH
            else account.bitcoin_balance
        )
        label = "Bitcoin balance" if kind == BalanceKind.BITCOIN else "balance"
        raise InsufficientFunds(
            f"Insufficient {label}: available={available}, requested={amount}"
        )
