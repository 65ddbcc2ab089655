"""
Background jobs.

The expiry sweep finds PENDING transfers older than
PENDING_TRANSFER_TTL_HOURS, marks them EXPIRED and credits the reserved
amount back to the sender. Each transfer is its own unit of work, so
one failure never holds back the rest of the batch.
"""

import logging
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from banking_core.config import get_settings
from banking_core.errors import BankingError
from banking_core.models.base import SessionLocal
from banking_core.services.notifications import Notifier
from banking_core.services.transfer_service import TransferService

logger = logging.getLogger(__name__)

EXPIRY_JOB_ID = "expire_pending_transfers"


def expire_pending_transfers(
    session_factory: Callable[[], Session] = SessionLocal,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> list[int]:
    """Expire abandoned transfers; returns the ids that were expired."""
    expired = []
    db = session_factory()
    try:
        service = TransferService(db, notifier=notifier)
        for transfer_id in service.stale_transfer_ids(now):
            try:
                transfer = service.expire(transfer_id, now)
                db.commit()
            except BankingError as exc:
                db.rollback()
                logger.error(
                    "Could not expire transfer: %s", exc.reason,
                    extra={"transfer_id": transfer_id},
                )
                continue
            if transfer is not None:
                expired.append(transfer_id)
    finally:
        db.close()

    if expired:
        logger.info("Expired %d pending transfers", len(expired))
    return expired


def create_scheduler() -> BackgroundScheduler:
    settings = get_settings()
    scheduler = BackgroundScheduler(
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 120,
        },
        timezone="UTC",
    )
    scheduler.add_job(
        expire_pending_transfers,
        trigger=IntervalTrigger(minutes=settings.EXPIRY_SWEEP_INTERVAL_MINUTES),
        id=EXPIRY_JOB_ID,
        name="Expire pending transfers",
        replace_existing=True,
    )
    return scheduler
