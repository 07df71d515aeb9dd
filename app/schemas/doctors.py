"""Doctor schemas for request/response validation."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from app.schemas.scheduling import ScheduleConfig


class DoctorResponse(BaseModel):
    """Doctor staff record as seen by the scheduling API."""

    id: UUID
    clinic_id: UUID
    full_name: str
    specialization: str | None = None
    clinic_room: str | None = None
    is_active: bool
    schedule: ScheduleConfig | None = None
    created_at: datetime
    updated_at: datetime
