"""Appointment service: the caller-facing scheduling operations."""

from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ForbiddenException,
    InvalidInputException,
    NotFoundException,
)
from app.models.appointments import appointments
from app.models.clinics import clinics
from app.models.patients import patients
from app.repositories.appointment_repository import AppointmentRepository
from app.schemas.appointments import (
    Actor,
    ActorRole,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
)
from app.schemas.scheduling import Slot, SlotSelection
from app.services.conflict_guard import ScheduleConflictGuard
from app.services.doctor_service import DoctorService
from app.services.notification_service import EventSink, NotificationOutbox
from app.services.slot_resolver import SlotAvailabilityResolver
from app.services.state_machine import AppointmentStateMachine, TransitionResult, authorize

logger = structlog.get_logger(__name__)

CONFIRMED_STATUSES = (AppointmentStatus.APPROVED, AppointmentStatus.RESCHEDULED)


def clinic_now() -> datetime:
    """Current wall-clock time at the clinic, without tzinfo."""
    if settings.clinic_timezone:
        return datetime.now(ZoneInfo(settings.clinic_timezone)).replace(tzinfo=None)
    return datetime.now()


class AppointmentService:
    """
    Service for managing appointments.

    Every transition runs the state machine, the conflict guard and the write
    in a single transaction, commits, and only then publishes event intents.
    """

    def __init__(
        self,
        db: AsyncSession,
        doctors: DoctorService | None = None,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = clinic_now,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.repository = AppointmentRepository(db)
        self.doctors = doctors or DoctorService(db)
        self.events = events or NotificationOutbox(db)
        self.guard = ScheduleConflictGuard(self.repository)
        self.resolver = SlotAvailabilityResolver(self.repository, self.doctors)
        self.machine = AppointmentStateMachine()
        self.clock = clock

    async def resolve_slots(self, doctor_id: UUID, day: str | date) -> list[Slot]:
        """
        Get a doctor's free slots on a date.

        Raises:
            InvalidInputException: If the date is malformed
            NotFoundException: If the doctor does not exist
        """
        return await self.resolver.resolve(doctor_id, day)

    async def _apply(
        self,
        result: TransitionResult,
        current: AppointmentResponse | None,
    ) -> AppointmentResponse:
        try:
            if result.slot is not None:
                doctor_id = current.doctor_id if current else result.changes["doctor_id"]
                await self.guard.check(
                    doctor_id,
                    result.slot.start,
                    exclude_appointment_id=current.id if current else None,
                )

            if current is None:
                appointment = await self.repository.create(result.changes)
            else:
                appointment = await self.repository.update(current.id, current.status, result.changes)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "appointment_transitioned",
            appointment_id=str(appointment.id),
            transition=result.event.value,
            from_status=result.source.value if result.source else None,
            to_status=result.target.value,
            scheduled_at=appointment.scheduled_at.isoformat() if appointment.scheduled_at else None,
        )

        try:
            await self.events.publish(result.intents)
        except Exception as e:
            logger.warning(
                "event_publish_failed",
                appointment_id=str(appointment.id),
                transition=result.event.value,
                error=str(e),
            )
        return appointment

    async def _validate_references(self, clinic_id: UUID, doctor_id: UUID, patient_id: UUID) -> None:
        clinic = (await self.db.execute(select(clinics.c.id).where(clinics.c.id == clinic_id))).first()
        if not clinic:
            raise NotFoundException("Clinic not found")

        doctor = await self.doctors.get_doctor(doctor_id)
        if doctor.clinic_id != clinic_id:
            raise NotFoundException("Doctor not found in this clinic")
        if not doctor.is_active:
            raise InvalidInputException("Doctor is not accepting appointments")

        patient = (
            await self.db.execute(select(patients.c.clinic_id).where(patients.c.id == patient_id))
        ).first()
        if not patient or patient.clinic_id != clinic_id:
            raise NotFoundException("Patient not found in this clinic")

    async def create_appointment(self, actor: Actor, data: AppointmentCreate) -> AppointmentResponse:
        """
        Create a new appointment request.

        Args:
            actor: Patient booking for themselves, or doctor/staff booking for a patient
            data: Appointment creation data

        Returns:
            Created appointment in ``requested`` status

        Raises:
            NotFoundException: If clinic, doctor or patient is unknown
            InvalidInputException: If the slot is off-schedule or the patient is missing
            SlotConflictException: If the supplied slot is taken
        """
        if actor.role == ActorRole.PATIENT:
            patient_id = data.patient_id or actor.id
        elif data.patient_id is None:
            raise InvalidInputException("patient_id is required for staff bookings")
        else:
            patient_id = data.patient_id

        await self._validate_references(data.clinic_id, data.doctor_id, patient_id)
        schedule = await self.doctors.get_schedule_config(data.doctor_id)

        result = self.machine.create(
            actor,
            clinic_id=data.clinic_id,
            doctor_id=data.doctor_id,
            patient_id=patient_id,
            schedule=schedule,
            selection=data.slot,
            notes=data.notes,
            payment=data.payment,
        )
        return await self._apply(result, None)

    async def approve(
        self,
        appointment_id: UUID,
        actor: Actor,
        slot: SlotSelection | None = None,
        notes: str | None = None,
    ) -> AppointmentResponse:
        """
        Approve a request at its own slot or at the one supplied.

        Raises:
            NotFoundException: If appointment not found
            InvalidTransitionException: If the appointment is not requested
            SlotConflictException: If the slot is taken by another appointment
        """
        current = await self.repository.get(appointment_id)
        schedule = await self.doctors.get_schedule_config(current.doctor_id) if slot else None
        result = self.machine.approve(current, actor, schedule=schedule, selection=slot, notes=notes)
        return await self._apply(result, current)

    async def reject(self, appointment_id: UUID, actor: Actor, reason: str) -> AppointmentResponse:
        """
        Reject a request with a reason.

        Raises:
            NotFoundException: If appointment not found
            InvalidTransitionException: If the appointment is not requested
            InvalidInputException: If the reason is blank
        """
        current = await self.repository.get(appointment_id)
        result = self.machine.reject(current, actor, reason=reason)
        return await self._apply(result, current)

    async def reschedule(
        self,
        appointment_id: UUID,
        actor: Actor,
        slot: SlotSelection,
        notes: str | None = None,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new slot.

        Raises:
            NotFoundException: If appointment not found
            InvalidTransitionException: If the appointment is terminal
            SlotConflictException: If the new slot is taken
        """
        current = await self.repository.get(appointment_id)
        schedule = await self.doctors.get_schedule_config(current.doctor_id)
        result = self.machine.reschedule(current, actor, schedule=schedule, selection=slot, notes=notes)
        return await self._apply(result, current)

    async def complete(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """
        Mark a confirmed visit as completed.

        Raises:
            NotFoundException: If appointment not found
            InvalidTransitionException: If not confirmed or not yet started
        """
        current = await self.repository.get(appointment_id)
        result = self.machine.complete(
            current,
            actor,
            now=self.clock(),
            enforce_start=settings.enforce_completion_after_start,
        )
        return await self._apply(result, current)

    async def cancel(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """
        Cancel an appointment.

        Raises:
            NotFoundException: If appointment not found
            InvalidTransitionException: If the appointment is terminal
        """
        current = await self.repository.get(appointment_id)
        result = self.machine.cancel(current, actor)
        return await self._apply(result, current)

    async def get_appointment(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the actor may not see it
        """
        appointment = await self.repository.get(appointment_id)
        authorize(
            actor,
            clinic_id=appointment.clinic_id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
        )
        return appointment

    async def update_notes(
        self,
        appointment_id: UUID,
        actor: Actor,
        notes: str | None,
    ) -> AppointmentResponse:
        """
        Replace the free-text notes. Status is left alone.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the actor is a patient or unrelated
        """
        current = await self.repository.get(appointment_id)
        authorize(
            actor,
            clinic_id=current.clinic_id,
            doctor_id=current.doctor_id,
            patient_id=current.patient_id,
            roles=frozenset({ActorRole.DOCTOR, ActorRole.STAFF}),
            action="annotate",
        )
        try:
            appointment = await self.repository.update(current.id, current.status, {"notes": notes})
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return appointment

    async def list_appointments(
        self,
        actor: Actor,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments visible to the actor with filtering and pagination.

        Patients see their own, doctors theirs, staff their clinic's.
        """
        scope = []
        if actor.role == ActorRole.PATIENT:
            scope.append(appointments.c.patient_id == actor.id)
        elif actor.role == ActorRole.DOCTOR:
            scope.append(appointments.c.doctor_id == actor.id)
        else:
            scope.append(appointments.c.clinic_id == actor.clinic_id)

        total, items = await self.repository.search(filters, scope)
        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    async def _authorize_doctor_view(self, doctor_id: UUID, actor: Actor) -> None:
        doctor = await self.doctors.get_doctor(doctor_id)
        if actor.role == ActorRole.PATIENT:
            raise ForbiddenException("A patient may not view a doctor's agenda")
        if actor.role == ActorRole.DOCTOR and actor.id != doctor_id:
            raise ForbiddenException("Access denied to this doctor's agenda")
        if actor.role == ActorRole.STAFF and actor.clinic_id != doctor.clinic_id:
            raise ForbiddenException("Access denied to this doctor's agenda")

    async def todays_appointments(self, doctor_id: UUID, actor: Actor) -> list[AppointmentResponse]:
        """Confirmed and completed visits of a doctor for the current clinic day."""
        await self._authorize_doctor_view(doctor_id, actor)
        start = datetime.combine(self.clock().date(), time.min)
        return await self.repository.list_for_doctor(
            doctor_id,
            start,
            start + timedelta(days=1),
            (*CONFIRMED_STATUSES, AppointmentStatus.COMPLETED),
        )

    async def upcoming_appointments(self, doctor_id: UUID, actor: Actor) -> list[AppointmentResponse]:
        """Confirmed visits of a doctor from now until the end of the upcoming window."""
        await self._authorize_doctor_view(doctor_id, actor)
        now = self.clock()
        return await self.repository.list_for_doctor(
            doctor_id,
            now,
            now + timedelta(days=settings.upcoming_window_days),
            CONFIRMED_STATUSES,
        )

