"""
Pydantic schemas for transfers and their verification.

Transfer requests are a closed set of variants discriminated by
``type``; each variant carries only the recipient fields that make
sense for it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, ClassVar, Literal, Union

from pydantic import BaseModel, Field, RootModel, field_validator

from banking_core.models.enums import (
    BalanceKind,
    TransferStatus,
    TransferType,
    VerificationStage,
    VerificationStep,
)

BITCOIN_ADDRESS_PATTERN = r"^(1|3|bc1|tb1)[a-zA-HJ-NP-Z0-9]{25,62}$"
MIN_BITCOIN_AMOUNT = Decimal("0.00001")

# Never returned to clients
PRIVATE_METADATA_KEYS = {"otp_hash"}


# --- Request Schemas ---

class _TransferRequestBase(BaseModel):
    sender_id: int
    amount: Decimal = Field(gt=0)
    description: str | None = Field(default=None, max_length=255)
    pin: str = Field(pattern=r"^\d{4}$")

    recipient_fields: ClassVar[tuple[str, ...]] = ()

    @property
    def transfer_type(self) -> TransferType:
        return TransferType(self.type)

    def recipient_details(self) -> dict:
        return self.model_dump(
            include=set(self.recipient_fields), exclude_none=True
        )


class InternalTransferRequest(_TransferRequestBase):
    type: Literal["internal"]
    account_number: str = Field(min_length=1, max_length=20)

    recipient_fields = ("account_number",)


class LocalTransferRequest(_TransferRequestBase):
    type: Literal["local"]
    account_number: str = Field(min_length=1, max_length=34)
    account_name: str = Field(min_length=1, max_length=200)
    bank_name: str = Field(min_length=1, max_length=200)
    bank_code: str | None = Field(default=None, max_length=20)
    fee: Decimal | None = Field(default=None, ge=0)

    recipient_fields = ("account_number", "account_name", "bank_name", "bank_code")


class InternationalTransferRequest(_TransferRequestBase):
    type: Literal["international"]
    account_number: str = Field(min_length=1, max_length=34)
    account_name: str = Field(min_length=1, max_length=200)
    bank_name: str = Field(min_length=1, max_length=200)
    bank_address: str | None = Field(default=None, max_length=255)
    country: str = Field(min_length=2, max_length=100)
    swift_code: str = Field(min_length=8, max_length=11)
    routing_number: str | None = Field(default=None, max_length=20)
    fee: Decimal | None = Field(default=None, ge=0)

    recipient_fields = (
        "account_number", "account_name", "bank_name", "bank_address",
        "country", "swift_code", "routing_number",
    )


class CryptoTransferRequest(_TransferRequestBase):
    type: Literal["crypto"]
    wallet_address: str = Field(pattern=BITCOIN_ADDRESS_PATTERN)
    network: str = Field(default="bitcoin", max_length=30)
    fee: Decimal | None = Field(default=None, ge=0)

    recipient_fields = ("wallet_address", "network")

    @field_validator("amount")
    @classmethod
    def amount_above_minimum(cls, v: Decimal) -> Decimal:
        if v < MIN_BITCOIN_AMOUNT:
            raise ValueError(f"minimum Bitcoin transfer is {MIN_BITCOIN_AMOUNT} BTC")
        return v


TransferRequest = Annotated[
    Union[
        InternalTransferRequest,
        LocalTransferRequest,
        InternationalTransferRequest,
        CryptoTransferRequest,
    ],
    Field(discriminator="type"),
]


class TransferCreate(RootModel[TransferRequest]):
    """Request body for POST /transfers."""


class OtpRequest(BaseModel):
    sender_id: int


class VerifyRequest(BaseModel):
    sender_id: int
    step: VerificationStep
    code: str = Field(min_length=1, max_length=50)


# --- Response Schemas ---

class TransferResponse(BaseModel):
    id: int
    reference: str
    sender_id: int
    recipient_id: int | None
    recipient_details: dict
    type: TransferType
    amount: Decimal
    fee: Decimal
    total_amount: Decimal
    currency: str
    balance_kind: BalanceKind
    status: TransferStatus
    verification_stage: VerificationStage
    requires_imf_code: bool
    requires_cot_code: bool
    requires_otp: bool
    codes_verified: bool
    description: str | None
    metadata: dict = Field(default_factory=dict, validation_alias="meta")
    processed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("metadata")
    @classmethod
    def hide_private_metadata(cls, v: dict) -> dict:
        return {k: val for k, val in v.items() if k not in PRIVATE_METADATA_KEYS}


class TransferPage(BaseModel):
    items: list[TransferResponse]
    total: int
    page: int
    limit: int


class OtpResponse(BaseModel):
    transfer_id: int
    reference: str
    expires_at: datetime
    message: str = "OTP sent. It is valid for a limited time."


class VerificationResponse(BaseModel):
    step: VerificationStep
    already_verified: bool
    completed: bool
    transfer: TransferResponse
