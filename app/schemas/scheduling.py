"""Schedule and slot schemas."""

from datetime import date, datetime, time
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Weekday(str, Enum):
    """Day of the week, ordered Monday first to match ``date.weekday()``."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        """Get the weekday of a calendar date."""
        return list(cls)[day.weekday()]


def _parse_weekdays(value: Any) -> list[Weekday]:
    # The staff screens send either a list or "Monday,Tuesday"
    if isinstance(value, str):
        value = [part for part in value.split(",") if part.strip()]
    if not isinstance(value, list | tuple | set | frozenset):
        raise ValueError("available_days must be a list of weekday names")

    days: set[Weekday] = set()
    for item in value:
        name = item.value if isinstance(item, Weekday) else str(item).strip().lower()
        try:
            days.add(Weekday(name))
        except ValueError:
            raise ValueError(f"Unknown weekday: {item}") from None

    order = list(Weekday)
    return sorted(days, key=order.index)


class ScheduleConfig(BaseModel):
    """A doctor's working calendar."""

    model_config = ConfigDict(frozen=True)

    available_days: list[Weekday] = Field(..., min_length=1)
    start_time: time
    end_time: time
    slot_duration_minutes: int = Field(..., gt=0, le=24 * 60)

    @field_validator("available_days", mode="before")
    @classmethod
    def normalize_days(cls, v: Any) -> list[Weekday]:
        """Accept names in any case and drop duplicates."""
        return _parse_weekdays(v)

    @model_validator(mode="after")
    def validate_window(self) -> "ScheduleConfig":
        """Validate the working window is not empty."""
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def works_on(self, day: date) -> bool:
        """Check if the doctor works on the given date."""
        return Weekday.from_date(day) in self.available_days


class ScheduleConfigUpdate(ScheduleConfig):
    """Schema for replacing a doctor's working calendar."""

    model_config = ConfigDict(frozen=False)


class ScheduleResponse(BaseModel):
    """A doctor's working calendar, if one is configured."""

    doctor_id: UUID
    schedule: ScheduleConfig | None


class Slot(BaseModel):
    """A discrete bookable window."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        """Width of the window in whole minutes."""
        return int((self.end - self.start).total_seconds() // 60)


class SlotSelection(BaseModel):
    """A slot chosen by the caller. ``end`` is optional and checked if given."""

    start: datetime
    end: datetime | None = None

    @field_validator("start", "end")
    @classmethod
    def strip_timezone(cls, v: datetime | None) -> datetime | None:
        """Scheduling works on naive wall-clock values."""
        if v is not None and v.tzinfo is not None:
            return v.replace(tzinfo=None)
        return v

    @model_validator(mode="after")
    def validate_end(self) -> "SlotSelection":
        """Validate end time is after start time."""
        if self.end is not None and self.end <= self.start:
            raise ValueError("End time must be after start time")
        return self


class AvailableSlotsResponse(BaseModel):
    """Free slots for a doctor on a date."""

    doctor_id: UUID
    date: date
    available_slots: list[Slot]
