"""
Pydantic schemas for transaction records.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from banking_core.models.enums import (
    BalanceKind,
    TransactionStatus,
    TransactionType,
)


class TransactionResponse(BaseModel):
    id: int
    account_id: int
    type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    balance_kind: BalanceKind
    currency: str
    status: TransactionStatus
    description: str
    reference: str
    metadata: dict = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionPage(BaseModel):
    items: list[TransactionResponse]
    total: int
    page: int
    limit: int
