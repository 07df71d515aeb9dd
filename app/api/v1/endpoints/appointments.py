"""Appointment endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import Appointments, CurrentActor
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    ApproveRequest,
    NotesUpdate,
    RejectRequest,
    RescheduleRequest,
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Request an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """
    Create an appointment request, with or without a preferred slot.

    Patients book for themselves; doctors and staff book for a patient and may
    attach a payment for the billing service.
    """
    return await service.create_appointment(actor, data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    actor: CurrentActor,
    service: Appointments,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    clinic_id: UUID | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments visible to the caller with filtering.

    Args:
        actor: Authenticated caller
        service: Appointment service
        status_filter: Filter by status
        doctor_id: Filter by doctor ID
        patient_id: Filter by patient ID
        clinic_id: Filter by clinic ID
        from_date: Scheduled at or after
        to_date: Scheduled at or before
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        doctor_id=doctor_id,
        patient_id=patient_id,
        clinic_id=clinic_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(actor, filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Get a specific appointment by ID."""
    return await service.get_appointment(appointment_id, actor)


@router.post(
    "/{appointment_id}/approve",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Approve appointment request",
)
async def approve_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
    data: ApproveRequest | None = None,
) -> AppointmentResponse:
    """
    Approve a requested appointment.

    A slot must be supplied when the request carried no preferred time.
    """
    data = data or ApproveRequest()
    return await service.approve(appointment_id, actor, slot=data.slot, notes=data.notes)


@router.post(
    "/{appointment_id}/reject",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reject appointment request",
)
async def reject_appointment(
    appointment_id: UUID,
    data: RejectRequest,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Reject a requested appointment with a reason."""
    return await service.reject(appointment_id, actor, data.rejection_reason)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: RescheduleRequest,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Move an appointment to a new slot."""
    return await service.reschedule(appointment_id, actor, data.slot, notes=data.notes)


@router.post(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Complete appointment",
)
async def complete_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Mark a confirmed appointment as completed."""
    return await service.complete(appointment_id, actor)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Cancel an appointment, freeing its slot."""
    return await service.cancel(appointment_id, actor)


@router.patch(
    "/{appointment_id}/notes",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment notes",
)
async def update_appointment_notes(
    appointment_id: UUID,
    data: NotesUpdate,
    actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Replace the doctor/staff notes on an appointment."""
    return await service.update_notes(appointment_id, actor, data.notes)
