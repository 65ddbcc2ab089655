"""Business logic services."""

from banking_core.services.ledger_service import LedgerService
from banking_core.services.account_service import AccountService
from banking_core.services.transaction_service import TransactionRecorder
from banking_core.services.transfer_service import TransferService
from banking_core.services.verification_service import VerificationService
from banking_core.services.admin_service import AdminService

__all__ = [
    "LedgerService",
    "AccountService",
    "TransactionRecorder",
    "TransferService",
    "VerificationService",
    "AdminService",
]
