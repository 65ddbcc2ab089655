"""
Transfer model.

An outbound money movement, distinct from the Transaction that records
the balance change it caused. Funds are reserved when the Transfer is
created; verification_stage tracks the ordered IMF -> COT -> OTP proofs
and status tracks the movement itself.

Rows are versioned: every ORM update is issued as
"UPDATE ... WHERE id = :id AND version = :seen", so two writers that
loaded the same state cannot both advance it.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Boolean, DateTime, Integer, Numeric, ForeignKey, JSON,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from banking_core.models.base import Base, utcnow
from banking_core.models.enums import (
    BalanceKind,
    TransferType,
    TransferStatus,
    VerificationStage,
)


class Transfer(Base):
    __tablename__ = "transfers"

    id: Mapped[int] = mapped_column(primary_key=True)
    sender_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False, index=True
    )
    recipient_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id"), nullable=True
    )
    recipient_details: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=dict
    )
    type: Mapped[TransferType] = mapped_column(
        SAEnum(TransferType, name="transfer_type_enum", create_constraint=True),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    fee: Mapped[Decimal] = mapped_column(
        Numeric(24, 8), nullable=False, default=Decimal("0")
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(24, 8), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance_kind: Mapped[BalanceKind] = mapped_column(
        SAEnum(BalanceKind, name="balance_kind_enum", create_constraint=True),
        nullable=False,
        default=BalanceKind.CASH,
    )
    status: Mapped[TransferStatus] = mapped_column(
        SAEnum(
            TransferStatus,
            name="transfer_status_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=TransferStatus.PENDING,
        index=True,
    )
    verification_stage: Mapped[VerificationStage] = mapped_column(
        SAEnum(
            VerificationStage,
            name="verification_stage_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=VerificationStage.PENDING,
    )
    reference: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    requires_imf_code: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    requires_cot_code: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    requires_otp: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    codes_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    # Verification sub-state: per-step flags/timestamps, pending OTP digest
    meta: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    processed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    sender: Mapped["Account"] = relationship(foreign_keys=[sender_id])
    recipient: Mapped["Account | None"] = relationship(
        foreign_keys=[recipient_id]
    )

    def __repr__(self) -> str:
        return (
            f"<Transfer {self.reference} {self.type.value} "
            f"{self.amount} {self.currency} ({self.status.value})>"
        )
