"""Slot availability: a doctor's free slots on a calendar date."""

from datetime import date, datetime, timedelta
from uuid import UUID

import structlog

from app.core.exceptions import InvalidInputException
from app.repositories.appointment_repository import AppointmentRepository
from app.schemas.scheduling import ScheduleConfig, Slot, SlotSelection
from app.services.doctor_service import DoctorService

logger = structlog.get_logger(__name__)


def parse_calendar_date(value: str | date) -> date:
    """
    Parse an ISO ``YYYY-MM-DD`` calendar date.

    Raises:
        InvalidInputException: If the value is not a valid date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise InvalidInputException(f"Invalid date '{value}', expected YYYY-MM-DD") from None


def generate_slots(schedule: ScheduleConfig, day: date) -> list[Slot]:
    """
    Partition the doctor's working window on ``day`` into fixed-width slots.

    A trailing window shorter than ``slot_duration_minutes`` is dropped, so
    every returned slot has the full configured width.

    Args:
        schedule: Doctor's working calendar
        day: Calendar date

    Returns:
        Slots in ascending order, empty if the doctor does not work that day
    """
    if not schedule.works_on(day):
        return []

    step = timedelta(minutes=schedule.slot_duration_minutes)
    window_end = datetime.combine(day, schedule.end_time)
    cursor = datetime.combine(day, schedule.start_time)

    slots: list[Slot] = []
    while cursor + step <= window_end:
        slots.append(Slot(start=cursor, end=cursor + step))
        cursor += step
    return slots


def slot_from_schedule(
    schedule: ScheduleConfig | None,
    selection: SlotSelection,
    duration_minutes: int,
) -> Slot:
    """
    Validate a caller's slot choice against the doctor's schedule.

    The start must be one of the generated slot starts for that date and the
    appointment, at its own fixed duration, must finish by the end of the
    working window.

    Raises:
        InvalidInputException: If the choice is not bookable
    """
    if schedule is None:
        raise InvalidInputException("Doctor has no working schedule configured")

    day = selection.start.date()
    starts = {slot.start for slot in generate_slots(schedule, day)}
    if selection.start not in starts:
        raise InvalidInputException(
            f"{selection.start.isoformat()} is not a bookable slot in the doctor's schedule"
        )

    end = selection.start + timedelta(minutes=duration_minutes)
    if end > datetime.combine(day, schedule.end_time):
        raise InvalidInputException("Appointment would run past the end of the working day")
    if selection.end is not None and selection.end != end:
        raise InvalidInputException(
            f"Slot must end at {end.isoformat()} for a {duration_minutes} minute appointment"
        )
    return Slot(start=selection.start, end=end)


class SlotAvailabilityResolver:
    """Resolve the bookable slots of a doctor on a date."""

    def __init__(self, repository: AppointmentRepository, doctors: DoctorService):
        """Initialize resolver with its read collaborators."""
        self.repository = repository
        self.doctors = doctors

    async def resolve(self, doctor_id: UUID, day: str | date) -> list[Slot]:
        """
        Get free slots for a doctor on a date.

        Args:
            doctor_id: Doctor ID
            day: Calendar date or ISO date string

        Returns:
            Free slots in ascending order

        Raises:
            InvalidInputException: If the date is malformed
            NotFoundException: If the doctor does not exist
        """
        day = parse_calendar_date(day)
        schedule = await self.doctors.get_schedule_config(doctor_id)

        if schedule is None:
            logger.debug("no_schedule_configured", doctor_id=str(doctor_id))
            return []

        candidates = generate_slots(schedule, day)
        if not candidates:
            return []

        booked = await self.repository.list_active_for_doctor_on_date(doctor_id, day)
        taken = {appointment.scheduled_at for appointment in booked}

        return [slot for slot in candidates if slot.start not in taken]
