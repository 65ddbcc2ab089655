"""
Pydantic schemas for admin overrides.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from banking_core.models.enums import AdjustmentDirection, BalanceKind


class AdjustRequest(BaseModel):
    admin_id: int
    direction: AdjustmentDirection
    amount: Decimal = Field(gt=0)
    balance_kind: BalanceKind = BalanceKind.CASH
    description: str | None = Field(default=None, max_length=255)
    metadata: dict | None = None
    backdated_at: datetime | None = None
    notify: bool = False


class ClearAccountRequest(BaseModel):
    admin_id: int
    reason: str | None = Field(default=None, max_length=255)


class ClearAccountResponse(BaseModel):
    account_id: int
    cash_cleared: Decimal
    bitcoin_cleared: Decimal
    transactions_deleted: int


class ProcessTransferRequest(BaseModel):
    admin_id: int
    action: Literal["complete", "reject", "cancel"]
    note: str | None = Field(default=None, max_length=255)


class ExpireResponse(BaseModel):
    expired: list[int]
    count: int
