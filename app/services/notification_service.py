"""Event sink recording appointment event intents for the notification service."""

from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

import structlog
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notifications import notifications
from app.schemas.appointments import EventIntent

logger = structlog.get_logger(__name__)


class EventSink(Protocol):
    """Receives the ordered event intents of a committed transition."""

    async def publish(self, intents: Sequence[EventIntent]) -> None:
        """Hand intents over for delivery. Must not raise."""
        ...


class NotificationOutbox:
    """
    Persist event intents to the ``notifications`` table.

    Runs after the appointment transaction has committed. A failure here is
    logged and dropped: the transition stands regardless.
    """

    def __init__(self, db: AsyncSession):
        """Initialize outbox with database session."""
        self.db = db

    async def publish(self, intents: Sequence[EventIntent]) -> None:
        """
        Record intents in order.

        Args:
            intents: Event intents of one transition
        """
        if not intents:
            return

        rows = [
            {
                "kind": intent.kind,
                "appointment_id": intent.appointment_id,
                "recipient_id": intent.recipient_id,
                "recipient_role": intent.recipient_role,
                "data": intent.data,
            }
            for intent in intents
        ]

        try:
            await self.db.execute(insert(notifications), rows)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.warning(
                "failed_to_record_event_intents",
                error=str(e),
                kinds=[intent.kind for intent in intents],
            )
            return

        logger.info("event_intents_recorded", kinds=[intent.kind for intent in intents])

    async def pending_for(self, recipient_id: UUID) -> list[dict]:
        """
        Get undispatched notifications for a recipient, oldest first.

        Args:
            recipient_id: Patient, doctor or clinic ID

        Returns:
            Notification records
        """
        query = (
            select(notifications)
            .where(
                notifications.c.recipient_id == recipient_id,
                notifications.c.status == "pending",
            )
            .order_by(notifications.c.created_at)
        )
        result = await self.db.execute(query)
        return [dict(row) for row in result.mappings().all()]
