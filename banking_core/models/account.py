"""
Account model.

The account row holds the two balances the core mutates (cash and
bitcoin) together with the identity attributes the core only reads:
status, daily limits, PIN hash and the IMF/COT authorization codes.

The balance row is the only shared mutable resource in the system.
It is never updated with a read-modify-write; the ledger always issues
a conditional UPDATE against it.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, DateTime, Numeric, CheckConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from banking_core.models.base import Base, utcnow
from banking_core.models.enums import AccountStatus, DEBIT_BLOCKING_STATUSES


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("cash_balance >= 0", name="ck_accounts_cash_non_negative"),
        CheckConstraint(
            "bitcoin_balance >= 0", name="ck_accounts_bitcoin_non_negative"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD"
    )
    cash_balance: Mapped[Decimal] = mapped_column(
        Numeric(19, 2), nullable=False, default=Decimal("0")
    )
    bitcoin_balance: Mapped[Decimal] = mapped_column(
        Numeric(24, 8), nullable=False, default=Decimal("0")
    )
    status: Mapped[AccountStatus] = mapped_column(
        SAEnum(
            AccountStatus,
            name="account_status_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=AccountStatus.ACTIVE,
    )
    daily_transfer_limit: Mapped[Decimal] = mapped_column(
        Numeric(19, 2), nullable=False, default=Decimal("10000")
    )
    daily_withdrawal_limit: Mapped[Decimal] = mapped_column(
        Numeric(19, 2), nullable=False, default=Decimal("5000")
    )
    pin_hash: Mapped[str | None] = mapped_column(String(100), nullable=True)
    imf_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cot_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def can_debit(self) -> bool:
        return self.status not in DEBIT_BLOCKING_STATUSES

    def __repr__(self) -> str:
        return f"<Account {self.account_number} ({self.status.value})>"
