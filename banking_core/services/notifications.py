"""
Outbound notifications.

Delivery belongs to an external service. The core informs it after the
fact and never waits on, or fails because of, delivery: every call goes
through ``deliver`` which logs and discards delivery errors.
"""

import logging
from datetime import datetime

logger = logging.getLogger(__name__)


class Notifier:
    """Default notifier: writes notifications to the application log."""

    def notify(
        self, account_id: int, title: str, message: str, level: str = "info"
    ) -> None:
        logger.info(
            "%s: %s", title, message,
            extra={"account_id": account_id, "status": level},
        )

    def send_otp(
        self, account_id: int, code: str, reference: str, expires_at: datetime
    ) -> None:
        # The code itself is never logged
        logger.info(
            "Transfer OTP issued, expires at %s", expires_at.isoformat(),
            extra={"account_id": account_id, "reference": reference},
        )


class RecordingNotifier(Notifier):
    """Keeps every notification in memory; useful for tests and dry runs."""

    def __init__(self):
        self.sent: list[dict] = []
        self.otps: list[dict] = []

    def notify(self, account_id, title, message, level="info"):
        self.sent.append({
            "account_id": account_id,
            "title": title,
            "message": message,
            "level": level,
        })

    def send_otp(self, account_id, code, reference, expires_at):
        self.otps.append({
            "account_id": account_id,
            "code": code,
            "reference": reference,
            "expires_at": expires_at,
        })


def deliver(notifier: Notifier, method: str, *args, **kwargs) -> bool:
    """Invoke a notifier method; a delivery failure is logged, not raised."""
    try:
        getattr(notifier, method)(*args, **kwargs)
        return True
    except Exception:
        logger.exception("Notification delivery failed: %s", method)
        return False
