"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from app.models.base import metadata

# Statuses that hold a doctor's slot. Kept in sync with AppointmentStatus.
ACTIVE_STATUS_VALUES = ("requested", "approved", "rescheduled", "completed")

SLOT_UNIQUE_INDEX = "uq_appointments_doctor_slot_active"

_active_status_clause = text(
    "status IN (" + ", ".join(f"'{value}'" for value in ACTIVE_STATUS_VALUES) + ")"
)

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # References
    Column("clinic_id", Uuid, ForeignKey("clinics.id"), nullable=False, index=True),
    Column("doctor_id", Uuid, ForeignKey("doctors.id"), nullable=False, index=True),
    Column("patient_id", Uuid, ForeignKey("patients.id"), nullable=False, index=True),
    # Scheduling (clinic wall-clock time, no timezone conversion)
    Column("scheduled_at", DateTime(timezone=False), nullable=True),
    Column("duration_minutes", Integer, nullable=False),
    # Status management
    Column("status", String(20), nullable=False, server_default="requested"),
    Column("rejection_reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_by", String(20), nullable=False, server_default="patient"),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    ),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('requested', 'approved', 'rejected', 'rescheduled', 'completed', 'cancelled')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "created_by IN ('patient', 'staff')",
        name="appointments_created_by_check",
    ),
    CheckConstraint(
        "status = 'requested' OR scheduled_at IS NOT NULL OR status IN ('rejected', 'cancelled')",
        name="appointments_scheduled_at_check",
    ),
    CheckConstraint("duration_minutes > 0", name="appointments_duration_check"),
)

Index("idx_appointments_doctor_scheduled", appointments.c.doctor_id, appointments.c.scheduled_at)
Index("idx_appointments_status", appointments.c.status)

# At most one active appointment per doctor and start time
Index(
    SLOT_UNIQUE_INDEX,
    appointments.c.doctor_id,
    appointments.c.scheduled_at,
    unique=True,
    postgresql_where=_active_status_clause,
    sqlite_where=_active_status_clause,
)
