"""
Transaction model.

One immutable record per balance mutation. balance_before and
balance_after are captured from the ledger at mutation time and are
never recomputed or edited afterwards; only status may move from
pending to completed or failed.

Uniqueness of the reference is enforced by the database, which is
the final authority when two writers race for the same value.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, DateTime, Numeric, ForeignKey, JSON,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from banking_core.models.base import Base, utcnow
from banking_core.models.enums import (
    BalanceKind,
    TransactionType,
    TransactionStatus,
)


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False, index=True
    )
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(
            TransactionType,
            name="transaction_type_enum",
            create_constraint=True,
        ),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(
        Numeric(24, 8), nullable=False
    )
    balance_after: Mapped[Decimal] = mapped_column(
        Numeric(24, 8), nullable=False
    )
    balance_kind: Mapped[BalanceKind] = mapped_column(
        SAEnum(BalanceKind, name="balance_kind_enum", create_constraint=True),
        nullable=False,
        default=BalanceKind.CASH,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(
            TransactionStatus,
            name="transaction_status_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=TransactionStatus.COMPLETED,
    )
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction {self.reference} {self.type.value} "
            f"{self.amount} {self.currency} ({self.status.value})>"
        )
