"""
Activity log writer.

Admin overrides and every verification outcome are appended here.
Entries are flushed with the caller's unit of work; the service never
updates or deletes an entry.
"""

import logging

from sqlalchemy.orm import Session

from banking_core.models.activity import ActivityLog
from banking_core.models.enums import ActorType
from banking_core.repositories import ActivityRepository

logger = logging.getLogger(__name__)


class AuditService:

    def __init__(self, db: Session, activity: ActivityRepository | None = None):
        self.db = db
        self.activity = activity or ActivityRepository(db)

    def record(
        self,
        actor_id: int | None,
        actor_type: ActorType,
        action: str,
        resource: str,
        resource_id: int | None = None,
        details: dict | None = None,
    ) -> ActivityLog:
        entry = self.activity.add(ActivityLog(
            actor_id=actor_id,
            actor_type=actor_type,
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=details or {},
        ))
        logger.info(
            "Activity recorded: %s", action,
            extra={"actor_id": actor_id, "action": action},
        )
        return entry

    def history(self, resource: str, resource_id: int) -> list[ActivityLog]:
        return self.activity.list_for_resource(resource, resource_id)
