"""
Activity log model.

Records admin overrides and verification outcomes, keyed by actor,
action, resource and resource id. Activity records are append-only:
they are never updated, and clearing an account does not touch them.
"""

from datetime import datetime

from sqlalchemy import String, DateTime, Integer, JSON, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from banking_core.models.base import Base, utcnow
from banking_core.models.enums import ActorType


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_type: Mapped[ActorType] = mapped_column(
        SAEnum(ActorType, name="actor_type_enum", create_constraint=True),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, index=True
    )
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<ActivityLog {self.action} {self.resource}:{self.resource_id}>"
