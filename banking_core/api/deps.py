"""
Shared router dependencies and error mapping.
"""

from fastapi import HTTPException

from banking_core.errors import BankingError
from banking_core.services.notifications import Notifier

_notifier = Notifier()


def get_notifier() -> Notifier:
    """Notifier used by request handlers; overridden in tests."""
    return _notifier


def http_error(exc: ValueError) -> HTTPException:
    """Map a rejected operation to the response the client sees."""
    if isinstance(exc, BankingError):
        return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return HTTPException(
        status_code=400, detail={"error": "invalid_request", "reason": str(exc)}
    )
