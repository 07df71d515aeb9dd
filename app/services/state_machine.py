"""Appointment lifecycle state machine.

Pure decision logic: given the current appointment, the acting user and the
requested event, either raise or return the field changes to persist, the
slot (if any) that must pass the conflict guard, and the event intents to
hand to the notification outbox. Nothing here touches storage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from app.core.exceptions import (
    ForbiddenException,
    InvalidInputException,
    InvalidTransitionException,
)
from app.schemas.appointments import (
    Actor,
    ActorRole,
    AppointmentEvent,
    AppointmentResponse,
    AppointmentStatus,
    CreatedBy,
    EventIntent,
    PaymentInfo,
)
from app.schemas.scheduling import ScheduleConfig, Slot, SlotSelection
from app.services.slot_resolver import slot_from_schedule

S = AppointmentStatus
R = ActorRole


@dataclass(frozen=True)
class Transition:
    """A legal edge of the lifecycle."""

    sources: frozenset[AppointmentStatus]
    target: AppointmentStatus
    actors: frozenset[ActorRole]


TRANSITIONS: dict[AppointmentEvent, Transition] = {
    AppointmentEvent.CREATE: Transition(
        sources=frozenset(),
        target=S.REQUESTED,
        actors=frozenset({R.PATIENT, R.DOCTOR, R.STAFF}),
    ),
    AppointmentEvent.APPROVE: Transition(
        sources=frozenset({S.REQUESTED}),
        target=S.APPROVED,
        actors=frozenset({R.DOCTOR, R.STAFF}),
    ),
    AppointmentEvent.REJECT: Transition(
        sources=frozenset({S.REQUESTED}),
        target=S.REJECTED,
        actors=frozenset({R.DOCTOR, R.STAFF}),
    ),
    AppointmentEvent.RESCHEDULE: Transition(
        sources=frozenset({S.REQUESTED, S.APPROVED, S.RESCHEDULED}),
        target=S.RESCHEDULED,
        actors=frozenset({R.DOCTOR, R.STAFF}),
    ),
    AppointmentEvent.COMPLETE: Transition(
        sources=frozenset({S.APPROVED, S.RESCHEDULED}),
        target=S.COMPLETED,
        actors=frozenset({R.DOCTOR}),
    ),
    AppointmentEvent.CANCEL: Transition(
        sources=frozenset({S.REQUESTED, S.APPROVED, S.RESCHEDULED}),
        target=S.CANCELLED,
        actors=frozenset({R.PATIENT, R.DOCTOR, R.STAFF}),
    ),
}


@dataclass
class TransitionResult:
    """Outcome of a legal transition, ready to be guarded and written."""

    event: AppointmentEvent
    source: AppointmentStatus | None
    target: AppointmentStatus
    changes: dict[str, Any]
    slot: Slot | None = None
    intents: list[EventIntent] = field(default_factory=list)


def allowed_events(status: AppointmentStatus) -> list[AppointmentEvent]:
    """Events that may be requested from a status."""
    return [event for event, edge in TRANSITIONS.items() if status in edge.sources]


def authorize(
    actor: Actor,
    *,
    clinic_id: UUID,
    doctor_id: UUID,
    patient_id: UUID,
    roles: frozenset[ActorRole] | None = None,
    action: str = "access",
) -> None:
    """
    Check the actor may act on an appointment.

    Patients only reach their own appointments, doctors only those booked with
    them, staff only those of their clinic.

    Raises:
        ForbiddenException: If the actor is not allowed
    """
    if roles is not None and actor.role not in roles:
        raise ForbiddenException(f"A {actor.role.value} may not {action} appointments")

    if actor.role == ActorRole.PATIENT and actor.id != patient_id:
        raise ForbiddenException("Access denied to this appointment")
    if actor.role == ActorRole.DOCTOR and actor.id != doctor_id:
        raise ForbiddenException("Access denied to this appointment")
    if actor.role == ActorRole.STAFF and actor.clinic_id != clinic_id:
        raise ForbiddenException("Access denied to this appointment")


class AppointmentStateMachine:
    """Validate lifecycle events and describe their effects."""

    def _edge(
        self,
        event: AppointmentEvent,
        appointment: AppointmentResponse,
        actor: Actor,
    ) -> Transition:
        edge = TRANSITIONS[event]
        status = appointment.status
        if status.is_terminal:
            raise InvalidTransitionException(f"Appointment is already {status.value}")
        if status not in edge.sources:
            allowed = ", ".join(e.value for e in allowed_events(status))
            raise InvalidTransitionException(
                f"Cannot {event.value} an appointment that is {status.value} (allowed: {allowed})"
            )
        authorize(
            actor,
            clinic_id=appointment.clinic_id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            roles=edge.actors,
            action=event.value,
        )
        return edge

    @staticmethod
    def _intent(
        kind: str,
        appointment_id: UUID,
        recipient_id: UUID,
        recipient_role: str,
        **data: Any,
    ) -> EventIntent:
        payload = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in data.items()
        }
        return EventIntent(
            kind=kind,
            appointment_id=appointment_id,
            recipient_id=recipient_id,
            recipient_role=recipient_role,
            data=payload,
        )

    def create(
        self,
        actor: Actor,
        *,
        clinic_id: UUID,
        doctor_id: UUID,
        patient_id: UUID,
        schedule: ScheduleConfig | None,
        selection: SlotSelection | None = None,
        notes: str | None = None,
        payment: PaymentInfo | None = None,
    ) -> TransitionResult:
        """
        Open a new appointment request.

        The duration is snapshotted from the doctor's current slot width.

        Raises:
            ForbiddenException: If the actor may not book for this patient/doctor
            InvalidInputException: If the doctor has no schedule or the slot is off-schedule
        """
        edge = TRANSITIONS[AppointmentEvent.CREATE]
        authorize(
            actor,
            clinic_id=clinic_id,
            doctor_id=doctor_id,
            patient_id=patient_id,
            roles=edge.actors,
            action="create",
        )
        if payment is not None and actor.role == ActorRole.PATIENT:
            raise ForbiddenException("Payments are recorded by clinic staff")
        if schedule is None:
            raise InvalidInputException("Doctor has no working schedule configured")

        duration = schedule.slot_duration_minutes
        slot = slot_from_schedule(schedule, selection, duration) if selection else None
        appointment_id = uuid4()
        created_by = CreatedBy.PATIENT if actor.role == ActorRole.PATIENT else CreatedBy.STAFF

        changes = {
            "id": appointment_id,
            "clinic_id": clinic_id,
            "doctor_id": doctor_id,
            "patient_id": patient_id,
            "scheduled_at": slot.start if slot else None,
            "duration_minutes": duration,
            "status": edge.target.value,
            "notes": notes,
            "created_by": created_by.value,
        }

        intents = [
            self._intent(
                "appointment.requested",
                appointment_id,
                doctor_id,
                ActorRole.DOCTOR.value,
                patient_id=str(patient_id),
                scheduled_at=slot.start if slot else None,
                created_by=created_by.value,
            )
        ]
        if payment is not None:
            intents.append(
                self._intent(
                    "payment.capture_requested",
                    appointment_id,
                    clinic_id,
                    "clinic",
                    patient_id=str(patient_id),
                    received_by=str(actor.id),
                    amount=str(payment.amount),
                    amount_paid=str(payment.amount_paid) if payment.amount_paid is not None else None,
                    payment_method=payment.payment_method.value,
                    notes=payment.notes,
                    exemption_reason=payment.exemption_reason,
                )
            )

        return TransitionResult(
            event=AppointmentEvent.CREATE,
            source=None,
            target=edge.target,
            changes=changes,
            slot=slot,
            intents=intents,
        )

    def approve(
        self,
        appointment: AppointmentResponse,
        actor: Actor,
        *,
        schedule: ScheduleConfig | None = None,
        selection: SlotSelection | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """
        Confirm a request, at its own slot or at one supplied now.

        Raises:
            InvalidTransitionException: If the appointment is not requested
            InvalidInputException: If no slot is on record or supplied
        """
        edge = self._edge(AppointmentEvent.APPROVE, appointment, actor)

        if selection is not None:
            slot = slot_from_schedule(schedule, selection, appointment.duration_minutes)
        elif appointment.scheduled_at is not None:
            # Validated when it was assigned; schedule changes since then do not apply
            slot = Slot(start=appointment.scheduled_at, end=appointment.scheduled_end)
        else:
            raise InvalidInputException(
                "A slot is required to approve a request without a preferred time"
            )

        changes: dict[str, Any] = {"status": edge.target.value, "scheduled_at": slot.start}
        if notes is not None:
            changes["notes"] = notes

        return TransitionResult(
            event=AppointmentEvent.APPROVE,
            source=appointment.status,
            target=edge.target,
            changes=changes,
            slot=slot,
            intents=[
                self._intent(
                    "appointment.approved",
                    appointment.id,
                    appointment.patient_id,
                    ActorRole.PATIENT.value,
                    scheduled_at=slot.start,
                    ends_at=slot.end,
                )
            ],
        )

    def reject(
        self,
        appointment: AppointmentResponse,
        actor: Actor,
        *,
        reason: str,
    ) -> TransitionResult:
        """
        Decline a request.

        Raises:
            InvalidTransitionException: If the appointment is not requested
            InvalidInputException: If the reason is blank
        """
        edge = self._edge(AppointmentEvent.REJECT, appointment, actor)

        reason = (reason or "").strip()
        if not reason:
            raise InvalidInputException("A rejection reason is required")

        return TransitionResult(
            event=AppointmentEvent.REJECT,
            source=appointment.status,
            target=edge.target,
            changes={"status": edge.target.value, "rejection_reason": reason},
            intents=[
                self._intent(
                    "appointment.rejected",
                    appointment.id,
                    appointment.patient_id,
                    ActorRole.PATIENT.value,
                    rejection_reason=reason,
                )
            ],
        )

    def reschedule(
        self,
        appointment: AppointmentResponse,
        actor: Actor,
        *,
        schedule: ScheduleConfig | None,
        selection: SlotSelection,
        notes: str | None = None,
    ) -> TransitionResult:
        """
        Move an appointment to a new slot.

        Raises:
            InvalidTransitionException: If the appointment is terminal
            InvalidInputException: If the new slot is off-schedule
        """
        edge = self._edge(AppointmentEvent.RESCHEDULE, appointment, actor)
        slot = slot_from_schedule(schedule, selection, appointment.duration_minutes)

        changes: dict[str, Any] = {"status": edge.target.value, "scheduled_at": slot.start}
        if notes is not None:
            changes["notes"] = notes

        return TransitionResult(
            event=AppointmentEvent.RESCHEDULE,
            source=appointment.status,
            target=edge.target,
            changes=changes,
            slot=slot,
            intents=[
                self._intent(
                    "appointment.rescheduled",
                    appointment.id,
                    appointment.patient_id,
                    ActorRole.PATIENT.value,
                    previous_scheduled_at=appointment.scheduled_at,
                    scheduled_at=slot.start,
                    ends_at=slot.end,
                )
            ],
        )

    def complete(
        self,
        appointment: AppointmentResponse,
        actor: Actor,
        *,
        now: datetime,
        enforce_start: bool = True,
    ) -> TransitionResult:
        """
        Mark a confirmed visit as done.

        Raises:
            InvalidTransitionException: If not confirmed, or before the start
                time while ``enforce_start`` is set
        """
        edge = self._edge(AppointmentEvent.COMPLETE, appointment, actor)

        if enforce_start and appointment.scheduled_at is not None and now < appointment.scheduled_at:
            raise InvalidTransitionException(
                "Cannot complete an appointment before its scheduled time"
            )

        return TransitionResult(
            event=AppointmentEvent.COMPLETE,
            source=appointment.status,
            target=edge.target,
            changes={"status": edge.target.value},
            intents=[
                self._intent(
                    "appointment.completed",
                    appointment.id,
                    appointment.patient_id,
                    ActorRole.PATIENT.value,
                )
            ],
        )

    def cancel(self, appointment: AppointmentResponse, actor: Actor) -> TransitionResult:
        """
        Cancel a live appointment, freeing its slot.

        The other party is notified: the doctor when a patient cancels, the
        patient otherwise.
        """
        edge = self._edge(AppointmentEvent.CANCEL, appointment, actor)

        if actor.role == ActorRole.PATIENT:
            recipient_id, recipient_role = appointment.doctor_id, ActorRole.DOCTOR.value
        else:
            recipient_id, recipient_role = appointment.patient_id, ActorRole.PATIENT.value

        return TransitionResult(
            event=AppointmentEvent.CANCEL,
            source=appointment.status,
            target=edge.target,
            changes={"status": edge.target.value},
            intents=[
                self._intent(
                    "appointment.cancelled",
                    appointment.id,
                    recipient_id,
                    recipient_role,
                    cancelled_by=actor.role.value,
                    scheduled_at=appointment.scheduled_at,
                )
            ],
        )
