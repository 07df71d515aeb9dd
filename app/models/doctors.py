"""Doctor staff record using SQLAlchemy Core.

The working calendar (``available_days``, ``start_time``, ``end_time``,
``slot_duration_minutes``) lives on the doctor row. A doctor without all four
fields has no schedule configured and offers no slots.
"""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    Time,
    Uuid,
    func,
    text,
)

from app.models.base import metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "clinic_id",
        Uuid,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("full_name", Text, nullable=False),
    Column("specialization", String(200), index=True),
    Column("clinic_room", String(50)),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Availability
    Column("available_days", JSON),
    # Example: ["monday", "wednesday", "friday"]
    Column("start_time", Time),
    Column("end_time", Time),
    Column("slot_duration_minutes", Integer),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    ),
    CheckConstraint(
        "slot_duration_minutes IS NULL OR slot_duration_minutes > 0",
        name="doctors_slot_duration_check",
    ),
)
