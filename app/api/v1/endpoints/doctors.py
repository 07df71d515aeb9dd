"""Doctor schedule and availability endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.core.exceptions import ForbiddenException
from app.dependencies import Appointments, CurrentActor, Doctors
from app.schemas.appointments import ActorRole, AppointmentResponse
from app.schemas.scheduling import (
    AvailableSlotsResponse,
    ScheduleConfigUpdate,
    ScheduleResponse,
)
from app.services.slot_resolver import parse_calendar_date

router = APIRouter()


@router.get(
    "/{doctor_id}/slots",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get available slots",
)
async def get_available_slots(
    doctor_id: UUID,
    actor: CurrentActor,
    service: Appointments,
    date: str = Query(..., description="Calendar date, YYYY-MM-DD"),
) -> AvailableSlotsResponse:
    """
    Get a doctor's free slots on a date.

    A day the doctor does not work returns an empty list.
    """
    day = parse_calendar_date(date)
    slots = await service.resolve_slots(doctor_id, day)
    return AvailableSlotsResponse(doctor_id=doctor_id, date=day, available_slots=slots)


@router.get(
    "/{doctor_id}/schedule",
    response_model=ScheduleResponse,
    status_code=status.HTTP_200_OK,
    summary="Get doctor schedule",
)
async def get_schedule(
    doctor_id: UUID,
    actor: CurrentActor,
    doctors: Doctors,
) -> ScheduleResponse:
    """Get a doctor's working calendar."""
    schedule = await doctors.get_schedule_config(doctor_id)
    return ScheduleResponse(doctor_id=doctor_id, schedule=schedule)


@router.put(
    "/{doctor_id}/schedule",
    response_model=ScheduleResponse,
    status_code=status.HTTP_200_OK,
    summary="Update doctor schedule",
)
async def update_schedule(
    doctor_id: UUID,
    data: ScheduleConfigUpdate,
    actor: CurrentActor,
    doctors: Doctors,
) -> ScheduleResponse:
    """
    Replace a doctor's working calendar.

    Only clinic staff of the doctor's clinic may change schedules. Booked
    appointments are not moved or resized.
    """
    if actor.role != ActorRole.STAFF:
        raise ForbiddenException("Only clinic staff may change schedules")

    doctor = await doctors.get_doctor(doctor_id)
    if actor.clinic_id != doctor.clinic_id:
        raise ForbiddenException("Access denied to this doctor")

    updated = await doctors.update_schedule_config(doctor_id, data)
    return ScheduleResponse(doctor_id=doctor_id, schedule=updated.schedule)


@router.get(
    "/{doctor_id}/appointments/today",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Today's appointments",
)
async def get_todays_appointments(
    doctor_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> list[AppointmentResponse]:
    """Confirmed and completed visits for the current clinic day."""
    return await service.todays_appointments(doctor_id, actor)


@router.get(
    "/{doctor_id}/appointments/upcoming",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Upcoming appointments",
)
async def get_upcoming_appointments(
    doctor_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> list[AppointmentResponse]:
    """Confirmed visits from now until the end of the upcoming window."""
    return await service.upcoming_appointments(doctor_id, actor)
