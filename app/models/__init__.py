"""Database models."""

from app.models.appointments import appointments
from app.models.base import metadata
from app.models.clinics import clinics
from app.models.doctors import doctors
from app.models.notifications import notifications
from app.models.patients import patients

__all__ = [
    "appointments",
    "clinics",
    "doctors",
    "metadata",
    "notifications",
    "patients",
]
