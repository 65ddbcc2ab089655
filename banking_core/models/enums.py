"""
Shared enumerations for database models.

Using Python enums mapped to database enums ensures that
only valid values can be stored. Transaction and transfer
kinds are closed sets validated at the API boundary and
again by the database.
"""

import enum


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    DORMANT = "dormant"
    SUSPENDED = "suspended"
    BLOCKED = "blocked"


# The ledger refuses every debit from these, unconditionally
DEBIT_BLOCKING_STATUSES = frozenset({
    AccountStatus.DORMANT,
    AccountStatus.SUSPENDED,
    AccountStatus.BLOCKED,
})


class BalanceKind(str, enum.Enum):
    """The two independent balances held on an account."""
    CASH = "cash"
    BITCOIN = "bitcoin"


class TransactionType(str, enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    CREDIT = "credit"
    DEBIT = "debit"


# Types that increase the balance; the rest decrease it
CREDIT_TRANSACTION_TYPES = frozenset({
    TransactionType.DEPOSIT,
    TransactionType.TRANSFER_IN,
    TransactionType.CREDIT,
})


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransferType(str, enum.Enum):
    INTERNAL = "internal"
    LOCAL = "local"
    INTERNATIONAL = "international"
    CRYPTO = "crypto"


class TransferStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class VerificationStage(str, enum.Enum):
    """Verification progress of a PENDING transfer, in order."""
    PENDING = "pending"
    IMF_VERIFIED = "imf_verified"
    COT_VERIFIED = "cot_verified"
    OTP_VERIFIED = "otp_verified"


class VerificationStep(str, enum.Enum):
    IMF = "imf"
    COT = "cot"
    OTP = "otp"


class FeeType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class AdjustmentDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class ActorType(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"
