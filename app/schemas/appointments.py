"""Appointment schemas for request/response validation."""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.schemas.scheduling import SlotSelection


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """No transition leaves a terminal status."""
        return self in TERMINAL_STATUSES

    @property
    def holds_slot(self) -> bool:
        """Active appointments occupy their doctor's slot."""
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.REJECTED, AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset(
    {
        AppointmentStatus.REQUESTED,
        AppointmentStatus.APPROVED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.COMPLETED,
    }
)


class AppointmentEvent(str, Enum):
    """Lifecycle events an actor can request."""

    CREATE = "create"
    APPROVE = "approve"
    REJECT = "reject"
    RESCHEDULE = "reschedule"
    COMPLETE = "complete"
    CANCEL = "cancel"


class ActorRole(str, Enum):
    """Role of whoever performs a transition."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    STAFF = "staff"


class CreatedBy(str, Enum):
    """Who originated an appointment."""

    PATIENT = "patient"
    STAFF = "staff"


class Actor(BaseModel):
    """The authenticated caller, passed explicitly into every transition."""

    model_config = ConfigDict(frozen=True)

    role: ActorRole
    id: UUID
    clinic_id: UUID | None = None

    @model_validator(mode="after")
    def validate_clinic(self) -> "Actor":
        """Staff always act on behalf of one clinic."""
        if self.role == ActorRole.STAFF and self.clinic_id is None:
            raise ValueError("clinic_id is required for staff")
        return self


class PaymentMethod(str, Enum):
    """Payment method captured at the front desk."""

    CASH = "cash"
    LATER = "later"
    PARTIAL = "partial"
    EXEMPT = "exempt"


class PaymentInfo(BaseModel):
    """Optional payment attached to a staff booking, forwarded to billing."""

    amount: Decimal = Field(..., ge=0, decimal_places=2)
    amount_paid: Decimal | None = Field(None, ge=0, decimal_places=2)
    payment_method: PaymentMethod
    notes: str | None = Field(None, max_length=1000)
    exemption_reason: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_amounts(self) -> "PaymentInfo":
        """Validate the paid amount and exemption details."""
        if self.amount_paid is not None and self.amount_paid > self.amount:
            raise ValueError("amount_paid cannot exceed amount")
        if self.payment_method == PaymentMethod.PARTIAL and self.amount_paid is None:
            raise ValueError("amount_paid is required for partial payments")
        if self.payment_method == PaymentMethod.EXEMPT and not self.exemption_reason:
            raise ValueError("exemption_reason is required for exemptions")
        return self


class AppointmentCreate(BaseModel):
    """Schema for creating a new appointment."""

    clinic_id: UUID
    doctor_id: UUID
    patient_id: UUID | None = Field(
        None, description="Required for staff bookings; defaults to the caller for patients"
    )
    slot: SlotSelection | None = Field(None, description="Omit to request without a time")
    notes: str | None = Field(None, max_length=1000)
    payment: PaymentInfo | None = None


class ApproveRequest(BaseModel):
    """Schema for approving a requested appointment."""

    slot: SlotSelection | None = None
    notes: str | None = Field(None, max_length=1000)


class RejectRequest(BaseModel):
    """Schema for rejecting a requested appointment."""

    rejection_reason: str = Field(..., max_length=1000)


class RescheduleRequest(BaseModel):
    """Schema for moving an appointment to a new slot."""

    slot: SlotSelection
    notes: str | None = Field(None, max_length=1000)


class NotesUpdate(BaseModel):
    """Schema for updating doctor/staff notes."""

    notes: str | None = Field(None, max_length=1000)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    clinic_id: UUID
    doctor_id: UUID
    patient_id: UUID
    scheduled_at: datetime | None
    duration_minutes: int
    status: AppointmentStatus
    rejection_reason: str | None = None
    notes: str | None = None
    created_by: CreatedBy
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def scheduled_end(self) -> datetime | None:
        """End of the held slot."""
        if self.scheduled_at is None:
            return None
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    clinic_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class EventIntent(BaseModel):
    """A side effect for a collaborator outside the core to deliver."""

    model_config = ConfigDict(frozen=True)

    kind: str
    appointment_id: UUID | None
    recipient_id: UUID
    recipient_role: str
    data: dict[str, Any] = Field(default_factory=dict)
