"""Guard against double-booking a doctor's slot."""

from datetime import datetime
from uuid import UUID

import structlog

from app.core.exceptions import SlotConflictException
from app.repositories.appointment_repository import AppointmentRepository

logger = structlog.get_logger(__name__)


class ScheduleConflictGuard:
    """
    Reject slot assignments that collide with another active appointment.

    Must run inside the same transaction as the write it protects. The partial
    unique index on ``(doctor_id, scheduled_at)`` covers the race between two
    concurrent transactions that both pass this check.
    """

    def __init__(self, repository: AppointmentRepository):
        """Initialize guard with the appointment repository."""
        self.repository = repository

    async def check(
        self,
        doctor_id: UUID,
        candidate_start: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> None:
        """
        Check that no other active appointment holds the slot.

        Args:
            doctor_id: Doctor ID
            candidate_start: Start of the slot being assigned
            exclude_appointment_id: Appointment under transition

        Raises:
            SlotConflictException: If the slot is taken
        """
        holders = await self.repository.list_active_at(
            doctor_id,
            candidate_start,
            exclude_appointment_id=exclude_appointment_id,
        )
        if holders:
            logger.info(
                "slot_conflict",
                doctor_id=str(doctor_id),
                scheduled_at=candidate_start.isoformat(),
                held_by=str(holders[0].id),
            )
            raise SlotConflictException(
                f"Doctor already has an appointment at {candidate_start.isoformat()}"
            )
