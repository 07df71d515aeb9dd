"""Notification outbox table holding event intents for the delivery service."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    String,
    Table,
    Uuid,
    func,
)

from app.models.base import metadata

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("kind", String(50), nullable=False),
    Column("appointment_id", Uuid, nullable=True),
    Column("recipient_id", Uuid, nullable=False),
    Column("recipient_role", String(20), nullable=False),
    Column("data", JSON, nullable=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("dispatched_at", DateTime(timezone=True), nullable=True),
    CheckConstraint(
        "status IN ('pending', 'dispatched', 'failed')",
        name="notifications_status_check",
    ),
    Index("idx_notifications_recipient", "recipient_id", "status"),
    Index("idx_notifications_appointment", "appointment_id"),
)
