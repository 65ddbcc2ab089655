"""
Domain errors for the money-movement core.

Every error is a ValueError subclass so callers that only care about
"the request was rejected" can keep catching ValueError. Each carries a
stable machine ``code`` and the HTTP status the API layer answers with.
The message is always a specific, user-facing reason.
"""


class BankingError(ValueError):
    """Base class for all rejected money-movement operations."""

    code = "banking_error"
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_detail(self) -> dict:
        return {"error": self.code, "reason": self.reason}


class InvalidAmount(BankingError):
    code = "invalid_amount"


class AccountNotFound(BankingError):
    code = "account_not_found"
    status_code = 404


class AccountNotEligible(BankingError):
    """Account status (dormant, suspended, blocked...) forbids the operation."""

    code = "account_not_eligible"
    status_code = 403

    def __init__(self, reason: str, status=None):
        super().__init__(reason)
        self.status = status


class InsufficientFunds(BankingError):
    code = "insufficient_funds"


class LimitExceeded(BankingError):
    code = "limit_exceeded"


class DuplicateReference(BankingError):
    """Raised only when reference generation exhausts its retry budget."""

    code = "duplicate_reference"
    status_code = 500


class TransactionNotFound(BankingError):
    code = "transaction_not_found"
    status_code = 404


class TransferNotFound(BankingError):
    code = "transfer_not_found"
    status_code = 404


class TransferNotPending(BankingError):
    code = "transfer_not_pending"
    status_code = 409


class InvalidTransition(BankingError):
    code = "invalid_transition"
    status_code = 409


class ConcurrentModification(BankingError):
    code = "concurrent_modification"
    status_code = 409


class InvalidRecipient(BankingError):
    code = "invalid_recipient"


# --- Verification ---

class VerificationError(BankingError):
    """A verification step was refused. The attempt is still audited."""

    code = "verification_failed"


class InvalidCode(VerificationError):
    code = "invalid_code"


class InvalidPin(InvalidCode):
    code = "invalid_pin"
    status_code = 401


class CodeNotConfigured(VerificationError):
    code = "code_not_configured"


class CodeExpired(VerificationError):
    code = "code_expired"


class StepOutOfOrder(VerificationError):
    code = "step_out_of_order"
    status_code = 409


class StepNotRequired(VerificationError):
    code = "step_not_required"
