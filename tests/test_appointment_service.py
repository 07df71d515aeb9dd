"""Tests for appointment service transitions against the database."""

import asyncio
import os
from collections.abc import Sequence
from datetime import datetime, time, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.exceptions import (
    ForbiddenException,
    InvalidInputException,
    InvalidTransitionException,
    NotFoundException,
    SlotConflictException,
)
from app.database import build_async_url
from app.models import clinics, doctors, metadata, patients
from app.models.notifications import notifications
from app.schemas.appointments import (
    Actor,
    ActorRole,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentStatus,
    EventIntent,
    PaymentInfo,
    PaymentMethod,
)
from app.schemas.scheduling import SlotSelection
from app.services.appointment_service import AppointmentService
from app.services.notification_service import NotificationOutbox
from tests.helpers import at


class RecordingSink:
    """Event sink that keeps what it was given."""

    def __init__(self):
        self.published: list[EventIntent] = []

    async def publish(self, intents: Sequence[EventIntent]) -> None:
        self.published.extend(intents)


class BrokenSink:
    """Event sink whose downstream is unavailable."""

    async def publish(self, intents: Sequence[EventIntent]) -> None:
        raise RuntimeError("notification service unavailable")


class CountingOutbox(NotificationOutbox):
    """Outbox that counts publish calls."""

    def __init__(self, db):
        super().__init__(db)
        self.attempts = 0

    async def publish(self, intents: Sequence[EventIntent]) -> None:
        self.attempts += 1
        await super().publish(intents)


async def request(service, actor, clinic_id, doctor_id, patient_id=None, start=None):
    return await service.create_appointment(
        actor,
        AppointmentCreate(
            clinic_id=clinic_id,
            doctor_id=doctor_id,
            patient_id=patient_id,
            slot=SlotSelection(start=start) if start else None,
        ),
    )


@pytest.mark.asyncio
async def test_create_request_defaults_patient(db_session, clinic_id, doctor_id, patient_id, patient):
    """Test a patient booking is made out to the caller."""
    sink = RecordingSink()
    service = AppointmentService(db_session, events=sink)

    appointment = await request(service, patient, clinic_id, doctor_id)

    assert appointment.patient_id == patient_id
    assert appointment.status == AppointmentStatus.REQUESTED
    assert appointment.scheduled_at is None
    assert appointment.duration_minutes == 30
    assert appointment.created_by == "patient"
    assert [intent.kind for intent in sink.published] == ["appointment.requested"]


@pytest.mark.asyncio
async def test_staff_booking_requires_patient(db_session, clinic_id, doctor_id, staff):
    """Test staff must name the patient they book for."""
    service = AppointmentService(db_session)

    with pytest.raises(InvalidInputException):
        await request(service, staff, clinic_id, doctor_id)


@pytest.mark.asyncio
async def test_create_with_unknown_references(db_session, clinic_id, doctor_id, patient_id, staff):
    """Test unknown clinic, doctor or patient are not found."""
    service = AppointmentService(db_session)

    with pytest.raises(NotFoundException):
        await request(service, staff, clinic_id, uuid4(), patient_id)
    with pytest.raises(NotFoundException):
        await request(service, staff, clinic_id, doctor_id, uuid4())
    with pytest.raises(NotFoundException):
        await request(service, staff, uuid4(), doctor_id, patient_id)


@pytest.mark.asyncio
async def test_create_for_unscheduled_doctor(db_session, clinic_id, unscheduled_doctor_id, patient):
    """Test a doctor with no schedule cannot be booked."""
    service = AppointmentService(db_session)

    with pytest.raises(InvalidInputException):
        await request(service, patient, clinic_id, unscheduled_doctor_id)


@pytest.mark.asyncio
async def test_create_into_taken_slot(
    db_session, clinic_id, doctor_id, patient, other_patient_id, staff, monday
):
    """Test a second request for a held slot conflicts."""
    service = AppointmentService(db_session)
    await request(service, patient, clinic_id, doctor_id, start=at(monday, 9))

    with pytest.raises(SlotConflictException):
        await request(service, staff, clinic_id, doctor_id, other_patient_id, start=at(monday, 9))


@pytest.mark.asyncio
async def test_approve_assigns_slot_and_notifies_patient(
    db_session, clinic_id, doctor_id, patient_id, patient, staff, monday
):
    """Test approving a timeless request at 10:00."""
    sink = RecordingSink()
    service = AppointmentService(db_session, events=sink)
    appointment = await request(service, patient, clinic_id, doctor_id)
    sink.published.clear()

    approved = await service.approve(appointment.id, staff, slot=SlotSelection(start=at(monday, 10)))

    assert approved.status == AppointmentStatus.APPROVED
    assert approved.scheduled_at == at(monday, 10)
    assert len(sink.published) == 1
    assert sink.published[0].kind == "appointment.approved"
    assert sink.published[0].recipient_id == patient_id


@pytest.mark.asyncio
async def test_approve_without_slot_fails(db_session, clinic_id, doctor_id, patient, staff):
    """Test approving a timeless request without a slot is invalid input."""
    service = AppointmentService(db_session)
    appointment = await request(service, patient, clinic_id, doctor_id)

    with pytest.raises(InvalidInputException):
        await service.approve(appointment.id, staff)

    assert (await service.get_appointment(appointment.id, staff)).status == AppointmentStatus.REQUESTED


@pytest.mark.asyncio
async def test_two_approvals_into_same_slot(
    db_session, clinic_id, doctor_id, patient, other_patient_id, staff, monday
):
    """Test only one of two requests can be approved into a slot."""
    service = AppointmentService(db_session)
    first = await request(service, patient, clinic_id, doctor_id)
    second = await request(service, staff, clinic_id, doctor_id, other_patient_id)
    slot = SlotSelection(start=at(monday, 10))

    await service.approve(first.id, staff, slot=slot)
    with pytest.raises(SlotConflictException):
        await service.approve(second.id, staff, slot=slot)

    assert (await service.get_appointment(second.id, staff)).status == AppointmentStatus.REQUESTED


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Sessions on separate connections to one shared database."""
    url = os.getenv("TEST_DATABASE_URL")
    if url and not url.startswith("sqlite"):
        engine = create_async_engine(build_async_url(url), poolclass=NullPool)
    else:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}", poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_approvals_into_same_slot(session_factory, monday):
    """Test two approvals racing for one slot on separate sessions."""
    clinic_id, doctor_id = uuid4(), uuid4()
    patient_ids = [uuid4(), uuid4()]
    staff = Actor(role=ActorRole.STAFF, id=uuid4(), clinic_id=clinic_id)

    async with session_factory() as session:
        await session.execute(insert(clinics).values(id=clinic_id, name="Race Clinic"))
        await session.execute(
            insert(doctors).values(
                id=doctor_id,
                clinic_id=clinic_id,
                full_name="Dr. Race",
                available_days=["monday"],
                start_time=time(9, 0),
                end_time=time(11, 0),
                slot_duration_minutes=30,
            )
        )
        for patient_id in patient_ids:
            await session.execute(
                insert(patients).values(id=patient_id, clinic_id=clinic_id, full_name="Race Patient")
            )
        await session.commit()

        service = AppointmentService(session)
        requests = [
            await request(service, staff, clinic_id, doctor_id, patient_id) for patient_id in patient_ids
        ]

    slot = SlotSelection(start=at(monday, 10))

    async def approve(appointment_id):
        async with session_factory() as session:
            return await AppointmentService(session).approve(appointment_id, staff, slot=slot)

    results = await asyncio.gather(
        *(approve(appointment.id) for appointment in requests), return_exceptions=True
    )

    approved = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, SlotConflictException)]
    assert len(approved) == 1
    assert len(conflicts) == 1
    assert approved[0].status == AppointmentStatus.APPROVED
    assert approved[0].scheduled_at == at(monday, 10)

    async with session_factory() as session:
        page = await AppointmentService(session).list_appointments(
            staff, AppointmentFilters(status=AppointmentStatus.APPROVED)
        )
    assert page.total == 1


@pytest.mark.asyncio
async def test_reapprove_own_slot_is_not_a_conflict(
    db_session, clinic_id, doctor_id, patient, doctor, monday
):
    """Test approving at the slot the request already holds."""
    service = AppointmentService(db_session)
    appointment = await request(service, patient, clinic_id, doctor_id, start=at(monday, 9, 30))

    approved = await service.approve(appointment.id, doctor, slot=SlotSelection(start=at(monday, 9, 30)))

    assert approved.status == AppointmentStatus.APPROVED
    assert approved.scheduled_at == at(monday, 9, 30)


@pytest.mark.asyncio
async def test_unique_index_backstops_the_guard(
    db_session, clinic_id, doctor_id, patient, other_patient_id, staff, monday
):
    """Test a write that skips the guard still cannot double-book."""
    service = AppointmentService(db_session)
    first = await request(service, patient, clinic_id, doctor_id)
    second = await request(service, staff, clinic_id, doctor_id, other_patient_id)
    values = {"status": AppointmentStatus.APPROVED.value, "scheduled_at": at(monday, 10)}

    await service.repository.update(first.id, AppointmentStatus.REQUESTED, values)
    await db_session.commit()

    with pytest.raises(SlotConflictException):
        await service.repository.update(second.id, AppointmentStatus.REQUESTED, values)
    await db_session.rollback()

    assert (await service.repository.get(second.id)).status == AppointmentStatus.REQUESTED


@pytest.mark.asyncio
async def test_stale_status_write_is_refused(db_session, clinic_id, doctor_id, patient, staff):
    """Test a write conditioned on an outdated status fails."""
    service = AppointmentService(db_session)
    appointment = await request(service, patient, clinic_id, doctor_id)
    await service.cancel(appointment.id, patient)

    with pytest.raises(InvalidTransitionException):
        await service.repository.update(
            appointment.id, AppointmentStatus.REQUESTED, {"status": AppointmentStatus.REJECTED.value}
        )
    await db_session.rollback()


@pytest.mark.asyncio
async def test_reject_with_blank_reason_keeps_request(
    db_session, clinic_id, doctor_id, patient, staff
):
    """Test an empty rejection reason leaves the request untouched."""
    service = AppointmentService(db_session)
    appointment = await request(service, patient, clinic_id, doctor_id)

    with pytest.raises(InvalidInputException):
        await service.reject(appointment.id, staff, "  ")

    current = await service.get_appointment(appointment.id, staff)
    assert current.status == AppointmentStatus.REQUESTED
    assert current.rejection_reason is None


@pytest.mark.asyncio
async def test_reject_frees_slot(db_session, clinic_id, doctor_id, patient, staff, monday):
    """Test a rejected request no longer holds its slot."""
    service = AppointmentService(db_session)
    appointment = await request(service, patient, clinic_id, doctor_id, start=at(monday, 9))

    rejected = await service.reject(appointment.id, staff, "Doctor unavailable")

    assert rejected.status == AppointmentStatus.REJECTED
    assert rejected.rejection_reason == "Doctor unavailable"
    slots = await service.resolve_slots(doctor_id, monday)
    assert at(monday, 9) in [slot.start for slot in slots]


@pytest.mark.asyncio
async def test_reschedule_moves_slot(db_session, clinic_id, doctor_id, patient, staff, monday):
    """Test rescheduling frees the old slot and takes the new one."""
    service = AppointmentService(db_session)
    appointment = await request(service, patient, clinic_id, doctor_id, start=at(monday, 9))
    await service.approve(appointment.id, staff)

    moved = await service.reschedule(appointment.id, staff, SlotSelection(start=at(monday, 10, 30)))

    assert moved.status == AppointmentStatus.RESCHEDULED
    assert moved.scheduled_at == at(monday, 10, 30)
    starts = [slot.start for slot in await service.resolve_slots(doctor_id, monday)]
    assert at(monday, 9) in starts
    assert at(monday, 10, 30) not in starts


@pytest.mark.asyncio
async def test_reschedule_into_taken_slot(
    db_session, clinic_id, doctor_id, patient, other_patient_id, staff, monday
):
    """Test rescheduling onto another appointment's slot conflicts and changes nothing."""
    service = AppointmentService(db_session)
    moving = await request(service, patient, clinic_id, doctor_id, start=at(monday, 9))
    await request(service, staff, clinic_id, doctor_id, other_patient_id, start=at(monday, 10))

    with pytest.raises(SlotConflictException):
        await service.reschedule(moving.id, staff, SlotSelection(start=at(monday, 10)))

    current = await service.get_appointment(moving.id, staff)
    assert current.status == AppointmentStatus.REQUESTED
    assert current.scheduled_at == at(monday, 9)


@pytest.mark.asyncio
async def test_complete_before_start_is_refused(
    db_session, clinic_id, doctor_id, patient, staff, doctor, monday
):
    """Test a future visit cannot be completed."""
    service = AppointmentService(db_session, clock=lambda: at(monday, 8))
    appointment = await request(service, patient, clinic_id, doctor_id, start=at(monday, 9))
    await service.approve(appointment.id, staff)

    with pytest.raises(InvalidTransitionException):
        await service.complete(appointment.id, doctor)


@pytest.mark.asyncio
async def test_complete_after_start(db_session, clinic_id, doctor_id, patient, staff, doctor, monday):
    """Test completing a started visit stamps completed_at and keeps the slot."""
    service = AppointmentService(db_session, clock=lambda: at(monday, 9, 10))
    appointment = await request(service, patient, clinic_id, doctor_id, start=at(monday, 9))
    await service.approve(appointment.id, staff)

    completed = await service.complete(appointment.id, doctor)

    assert completed.status == AppointmentStatus.COMPLETED
    assert completed.completed_at is not None
    starts = [slot.start for slot in await service.resolve_slots(doctor_id, monday)]
    assert at(monday, 9) not in starts

    with pytest.raises(InvalidTransitionException):
        await service.cancel(appointment.id, staff)


@pytest.mark.asyncio
async def test_cancel_stamps_cancelled_at(db_session, clinic_id, doctor_id, patient):
    """Test cancelling records when it happened."""
    service = AppointmentService(db_session)
    appointment = await request(service, patient, clinic_id, doctor_id)

    cancelled = await service.cancel(appointment.id, patient)

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancelled_at is not None


@pytest.mark.asyncio
async def test_unknown_appointment(db_session, staff):
    """Test transitions on a missing appointment are not found."""
    service = AppointmentService(db_session)

    with pytest.raises(NotFoundException):
        await service.cancel(uuid4(), staff)


@pytest.mark.asyncio
async def test_outbox_records_intents_in_order(
    db_session, clinic_id, doctor_id, patient_id, staff
):
    """Test event intents land in the notifications table."""
    service = AppointmentService(db_session)

    appointment = await service.create_appointment(
        staff,
        AppointmentCreate(
            clinic_id=clinic_id,
            doctor_id=doctor_id,
            patient_id=patient_id,
            payment=PaymentInfo(
                amount=Decimal("40.00"),
                amount_paid=Decimal("10.00"),
                payment_method=PaymentMethod.PARTIAL,
            ),
        ),
    )

    to_doctor = await service.events.pending_for(doctor_id)
    to_clinic = await service.events.pending_for(clinic_id)
    assert [row["kind"] for row in to_doctor] == ["appointment.requested"]
    assert to_doctor[0]["appointment_id"] == appointment.id
    assert [row["kind"] for row in to_clinic] == ["payment.capture_requested"]
    assert to_clinic[0]["data"]["amount_paid"] == "10.00"


@pytest.mark.asyncio
async def test_event_sink_failure_keeps_transition(
    db_session, clinic_id, doctor_id, patient, staff
):
    """Test an outbox failure does not undo the committed transition."""
    outbox = CountingOutbox(db_session)
    service = AppointmentService(db_session, events=outbox)
    appointment = await request(service, patient, clinic_id, doctor_id)

    # Take the outbox table away so the next publish fails
    await db_session.run_sync(lambda session: notifications.drop(session.connection()))
    await db_session.commit()

    cancelled = await service.cancel(appointment.id, staff)

    assert outbox.attempts == 2
    assert cancelled.status == AppointmentStatus.CANCELLED
    assert (await service.get_appointment(appointment.id, staff)).status == AppointmentStatus.CANCELLED


@pytest.mark.asyncio
async def test_raising_sink_does_not_fail_transition(db_session, clinic_id, doctor_id, patient, staff):
    """Test a sink that raises still hands back the stored appointment."""
    service = AppointmentService(db_session, events=BrokenSink())

    appointment = await request(service, patient, clinic_id, doctor_id)
    assert appointment.status == AppointmentStatus.REQUESTED

    cancelled = await service.cancel(appointment.id, staff)
    assert cancelled.status == AppointmentStatus.CANCELLED

    page = await service.list_appointments(staff, AppointmentFilters())
    assert page.total == 1
    assert page.items[0].id == appointment.id
    assert page.items[0].status == AppointmentStatus.CANCELLED


@pytest.mark.asyncio
async def test_list_is_scoped_by_role(
    db_session, clinic_id, doctor_id, patient, other_patient_id, staff, doctor
):
    """Test patients see their own appointments, doctors and staff see more."""
    service = AppointmentService(db_session)
    await request(service, patient, clinic_id, doctor_id)
    await request(service, staff, clinic_id, doctor_id, other_patient_id)

    assert (await service.list_appointments(patient, AppointmentFilters())).total == 1
    assert (await service.list_appointments(doctor, AppointmentFilters())).total == 2
    assert (await service.list_appointments(staff, AppointmentFilters())).total == 2

    outsider = Actor(role=ActorRole.STAFF, id=uuid4(), clinic_id=uuid4())
    assert (await service.list_appointments(outsider, AppointmentFilters())).total == 0


@pytest.mark.asyncio
async def test_list_filters_by_status(db_session, clinic_id, doctor_id, patient, staff, monday):
    """Test status filtering."""
    service = AppointmentService(db_session)
    first = await request(service, patient, clinic_id, doctor_id, start=at(monday, 9))
    await request(service, patient, clinic_id, doctor_id, start=at(monday, 10))
    await service.approve(first.id, staff)

    page = await service.list_appointments(staff, AppointmentFilters(status=AppointmentStatus.APPROVED))

    assert page.total == 1
    assert page.items[0].id == first.id


@pytest.mark.asyncio
async def test_get_appointment_of_other_patient(
    db_session, clinic_id, doctor_id, patient, staff, other_patient_id
):
    """Test a patient cannot read someone else's appointment."""
    service = AppointmentService(db_session)
    appointment = await request(service, staff, clinic_id, doctor_id, other_patient_id)

    with pytest.raises(ForbiddenException):
        await service.get_appointment(appointment.id, patient)


@pytest.mark.asyncio
async def test_update_notes(db_session, clinic_id, doctor_id, patient, doctor):
    """Test doctors annotate without changing status and patients cannot."""
    service = AppointmentService(db_session)
    appointment = await request(service, patient, clinic_id, doctor_id)

    updated = await service.update_notes(appointment.id, doctor, "Bring previous X-rays")

    assert updated.notes == "Bring previous X-rays"
    assert updated.status == AppointmentStatus.REQUESTED

    with pytest.raises(ForbiddenException):
        await service.update_notes(appointment.id, patient, "Please call me")


@pytest.mark.asyncio
async def test_doctor_agenda(db_session, clinic_id, doctor_id, patient, other_patient_id, staff, doctor, monday):
    """Test today's and upcoming agendas list confirmed visits only."""
    service = AppointmentService(db_session, clock=lambda: at(monday, 8))
    confirmed = await request(service, patient, clinic_id, doctor_id, start=at(monday, 9))
    await service.approve(confirmed.id, staff)
    await request(service, staff, clinic_id, doctor_id, other_patient_id, start=at(monday, 10))
    later = await request(
        service, staff, clinic_id, doctor_id, other_patient_id, start=at(monday + timedelta(days=1), 9)
    )
    await service.approve(later.id, staff)

    today = await service.todays_appointments(doctor_id, doctor)
    upcoming = await service.upcoming_appointments(doctor_id, staff)

    assert [item.id for item in today] == [confirmed.id]
    assert [item.id for item in upcoming] == [confirmed.id, later.id]

    with pytest.raises(ForbiddenException):
        await service.todays_appointments(doctor_id, patient)


@pytest.mark.asyncio
async def test_transition_timestamps_are_naive(db_session, clinic_id, doctor_id, patient, monday):
    """Test scheduled times round-trip as wall-clock values."""
    service = AppointmentService(db_session)

    appointment = await request(service, patient, clinic_id, doctor_id, start=at(monday, 9))

    assert isinstance(appointment.scheduled_at, datetime)
    assert appointment.scheduled_at.tzinfo is None
    assert appointment.scheduled_end == at(monday, 9, 30)
