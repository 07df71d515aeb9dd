"""Doctor service: staff records and their working calendars."""

from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import NotFoundException
from app.core.redis_client import CacheManager
from app.models.doctors import doctors
from app.schemas.doctors import DoctorResponse
from app.schemas.scheduling import ScheduleConfig, ScheduleConfigUpdate

logger = structlog.get_logger(__name__)

_SCHEDULE_FIELDS = ("available_days", "start_time", "end_time", "slot_duration_minutes")


def _schedule_from_row(row: dict) -> ScheduleConfig | None:
    if any(row.get(name) is None for name in _SCHEDULE_FIELDS):
        return None
    return ScheduleConfig(**{name: row[name] for name in _SCHEDULE_FIELDS})


def _doctor_from_row(row: dict) -> DoctorResponse:
    return DoctorResponse(
        id=row["id"],
        clinic_id=row["clinic_id"],
        full_name=row["full_name"],
        specialization=row["specialization"],
        clinic_room=row["clinic_room"],
        is_active=row["is_active"],
        schedule=_schedule_from_row(row),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class DoctorService:
    """Service for doctor staff records."""

    def __init__(self, db: AsyncSession, cache_manager: CacheManager | None = None):
        """Initialize service with database session and optional cache manager."""
        self.db = db
        self.cache = cache_manager

    @staticmethod
    def _get_doctor_cache_key(doctor_id: UUID) -> str:
        """Generate cache key for doctor."""
        return f"doctor:{doctor_id}"

    async def get_doctor(self, doctor_id: UUID) -> DoctorResponse:
        """
        Get doctor by ID with caching.

        Raises:
            NotFoundException: If doctor not found
        """
        # Try cache first
        if self.cache:
            cached = self.cache.get_json(self._get_doctor_cache_key(doctor_id))
            if cached:
                return DoctorResponse.model_validate(cached)

        query = select(doctors).where(doctors.c.id == doctor_id)
        result = await self.db.execute(query)
        row = result.mappings().first()

        if not row:
            raise NotFoundException("Doctor not found")

        doctor = _doctor_from_row(dict(row))

        if self.cache:
            self.cache.set_json(
                self._get_doctor_cache_key(doctor_id),
                doctor.model_dump(mode="json"),
                ttl=settings.schedule_cache_ttl,
            )

        return doctor

    async def get_schedule_config(self, doctor_id: UUID) -> ScheduleConfig | None:
        """
        Get a doctor's working calendar.

        Returns:
            The schedule, or None if the doctor has none configured

        Raises:
            NotFoundException: If doctor not found
        """
        doctor = await self.get_doctor(doctor_id)
        return doctor.schedule

    async def update_schedule_config(
        self,
        doctor_id: UUID,
        data: ScheduleConfigUpdate,
    ) -> DoctorResponse:
        """
        Replace a doctor's working calendar.

        Existing appointments keep their slot and duration.

        Raises:
            NotFoundException: If doctor not found
        """
        query = (
            update(doctors)
            .where(doctors.c.id == doctor_id)
            .values(
                available_days=[day.value for day in data.available_days],
                start_time=data.start_time,
                end_time=data.end_time,
                slot_duration_minutes=data.slot_duration_minutes,
            )
            .returning(doctors)
        )
        result = await self.db.execute(query)
        row = result.mappings().first()

        if not row:
            await self.db.rollback()
            raise NotFoundException("Doctor not found")

        await self.db.commit()

        # Invalidate cache
        if self.cache:
            self.cache.delete(self._get_doctor_cache_key(doctor_id))

        logger.info(
            "doctor_schedule_updated",
            doctor_id=str(doctor_id),
            available_days=[day.value for day in data.available_days],
            slot_duration_minutes=data.slot_duration_minutes,
        )
        return _doctor_from_row(dict(row))
