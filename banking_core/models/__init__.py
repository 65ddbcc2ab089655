"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from banking_core.models.base import Base
from banking_core.models.enums import (
    AccountStatus,
    BalanceKind,
    TransactionType,
    TransactionStatus,
    TransferType,
    TransferStatus,
    VerificationStage,
    VerificationStep,
    ActorType,
)
from banking_core.models.account import Account
from banking_core.models.transaction import Transaction
from banking_core.models.transfer import Transfer
from banking_core.models.activity import ActivityLog

__all__ = [
    "Base",
    "AccountStatus",
    "BalanceKind",
    "TransactionType",
    "TransactionStatus",
    "TransferType",
    "TransferStatus",
    "VerificationStage",
    "VerificationStep",
    "ActorType",
    "Account",
    "Transaction",
    "Transfer",
    "ActivityLog",
]
