"""
Pydantic schemas for account operations.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from banking_core.models.enums import AccountStatus


class AccountCreate(BaseModel):
    """Register an account with the core (identity data is supplied, not owned)."""
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=5, max_length=255)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    status: AccountStatus = AccountStatus.ACTIVE
    daily_transfer_limit: Decimal = Field(default=Decimal("10000"), ge=0)
    daily_withdrawal_limit: Decimal = Field(default=Decimal("5000"), ge=0)
    pin: str | None = Field(default=None, pattern=r"^\d{4}$")
    imf_code: str | None = Field(default=None, min_length=1, max_length=50)
    cot_code: str | None = Field(default=None, min_length=1, max_length=50)


class AccountResponse(BaseModel):
    id: int
    account_number: str
    name: str
    email: str
    currency: str
    status: AccountStatus
    cash_balance: Decimal
    bitcoin_balance: Decimal
    daily_transfer_limit: Decimal
    daily_withdrawal_limit: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class AccountBalanceResponse(BaseModel):
    account_id: int
    account_number: str
    status: AccountStatus
    currency: str
    cash_balance: Decimal
    bitcoin_balance: Decimal
