"""Appointment repository - database operations for appointments."""

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import Select, and_, func, insert, select, true, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    InvalidTransitionException,
    NotFoundException,
    RepositoryException,
    SlotConflictException,
)
from app.models.appointments import SLOT_UNIQUE_INDEX, appointments
from app.schemas.appointments import (
    AppointmentFilters,
    AppointmentResponse,
    AppointmentStatus,
)

logger = structlog.get_logger(__name__)

_ACTIVE_VALUES = [status.value for status in AppointmentStatus if status.holds_slot]


def _is_slot_violation(exc: IntegrityError) -> bool:
    # PostgreSQL names the index; SQLite lists the indexed columns
    message = str(exc.orig)
    return SLOT_UNIQUE_INDEX in message or (
        "appointments.doctor_id" in message and "appointments.scheduled_at" in message
    )


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class AppointmentRepository:
    """
    Storage contract for appointments.

    Methods do not commit; the caller owns the transaction so that the
    conflict check and the write it protects land together.
    """

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def _execute(self, stmt: Any) -> Any:
        try:
            return await self.db.execute(stmt)
        except IntegrityError as e:
            if _is_slot_violation(e):
                raise SlotConflictException() from e
            logger.error("appointment_integrity_error", error=str(e.orig))
            raise RepositoryException("Appointment could not be stored") from e
        except SQLAlchemyError as e:
            logger.error("appointment_storage_error", error=str(e))
            raise RepositoryException() from e

    async def _fetch_all(self, stmt: Select) -> list[AppointmentResponse]:
        result = await self._execute(stmt)
        return [AppointmentResponse.model_validate(dict(row)) for row in result.mappings().all()]

    async def create(self, values: dict[str, Any]) -> AppointmentResponse:
        """
        Insert a new appointment.

        Raises:
            SlotConflictException: If another active appointment holds the slot
            RepositoryException: On any other storage failure
        """
        stmt = insert(appointments).values(**values).returning(appointments)
        result = await self._execute(stmt)
        row = result.mappings().first()
        return AppointmentResponse.model_validate(dict(row))

    async def get(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        result = await self._execute(stmt)
        row = result.mappings().first()

        if not row:
            raise NotFoundException("Appointment not found")

        return AppointmentResponse.model_validate(dict(row))

    async def list_active_for_doctor_on_date(
        self,
        doctor_id: UUID,
        day: date,
    ) -> list[AppointmentResponse]:
        """List slot-holding appointments of a doctor on a calendar date."""
        start, end = _day_bounds(day)
        stmt = (
            select(appointments)
            .where(
                appointments.c.doctor_id == doctor_id,
                appointments.c.scheduled_at >= start,
                appointments.c.scheduled_at < end,
                appointments.c.status.in_(_ACTIVE_VALUES),
            )
            .order_by(appointments.c.scheduled_at)
        )
        return await self._fetch_all(stmt)

    async def list_active_at(
        self,
        doctor_id: UUID,
        scheduled_at: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> list[AppointmentResponse]:
        """List active appointments holding an exact doctor slot."""
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.scheduled_at == scheduled_at,
            appointments.c.status.in_(_ACTIVE_VALUES),
        ]
        if exclude_appointment_id is not None:
            conditions.append(appointments.c.id != exclude_appointment_id)

        return await self._fetch_all(select(appointments).where(and_(*conditions)))

    async def update(
        self,
        appointment_id: UUID,
        expected_status: AppointmentStatus,
        values: dict[str, Any],
    ) -> AppointmentResponse:
        """
        Write new state, provided the status is still the one that was read.

        Raises:
            InvalidTransitionException: If the status changed concurrently
            SlotConflictException: If the new slot is held by another appointment
            RepositoryException: On any other storage failure
        """
        values = dict(values)
        status = values.get("status")
        if status == AppointmentStatus.CANCELLED.value:
            values["cancelled_at"] = func.now()
        elif status == AppointmentStatus.COMPLETED.value:
            values["completed_at"] = func.now()

        stmt = (
            update(appointments)
            .where(
                appointments.c.id == appointment_id,
                appointments.c.status == expected_status.value,
            )
            .values(**values)
            .returning(appointments)
        )
        result = await self._execute(stmt)
        row = result.mappings().first()

        if not row:
            # Either gone or moved on since it was read
            await self.get(appointment_id)
            raise InvalidTransitionException("Appointment was modified by another request")

        return AppointmentResponse.model_validate(dict(row))

    async def search(
        self,
        filters: AppointmentFilters,
        scope: Iterable[Any] = (),
    ) -> tuple[int, list[AppointmentResponse]]:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters
            scope: Extra conditions restricting what the caller may see

        Returns:
            Total matching count and the requested page
        """
        conditions = list(scope)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.clinic_id:
            conditions.append(appointments.c.clinic_id == filters.clinic_id)

        if filters.from_date:
            conditions.append(appointments.c.scheduled_at >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.scheduled_at <= filters.to_date)

        where = and_(true(), *conditions)

        count_stmt = select(func.count()).select_from(appointments).where(where)
        total_result = await self._execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            select(appointments)
            .where(where)
            .order_by(appointments.c.scheduled_at.desc().nulls_last(), appointments.c.created_at.desc())
            .limit(filters.page_size)
            .offset(offset)
        )
        return total, await self._fetch_all(stmt)

    async def list_for_doctor(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        statuses: Iterable[AppointmentStatus],
    ) -> list[AppointmentResponse]:
        """List a doctor's appointments in ``[start, end)`` with the given statuses."""
        stmt = (
            select(appointments)
            .where(
                appointments.c.doctor_id == doctor_id,
                appointments.c.scheduled_at >= start,
                appointments.c.scheduled_at < end,
                appointments.c.status.in_([status.value for status in statuses]),
            )
            .order_by(appointments.c.scheduled_at)
        )
        return await self._fetch_all(stmt)
