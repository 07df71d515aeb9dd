"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.redis_client import CacheManager, get_cache_manager
from app.core.security import decode_access_token
from app.database import get_db
from app.schemas.appointments import Actor
from app.services.appointment_service import AppointmentService
from app.services.doctor_service import DoctorService

# Security
security = HTTPBearer(auto_error=False)


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Actor:
    """
    Build the acting user from JWT claims.

    Args:
        credentials: Bearer token credentials

    Returns:
        Actor with role, id and clinic id (required for staff)

    Raises:
        HTTPException: If token is missing, invalid, expired or lacks required claims
    """
    if credentials is None:
        raise _credentials_error("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    try:
        return Actor(
            id=UUID(str(payload.get("sub"))),
            role=payload.get("role"),
            clinic_id=payload.get("clinic_id"),
        )
    except (ValueError, ValidationError):
        raise _credentials_error("Invalid token claims")


def get_doctor_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager | None, Depends(get_cache_manager)],
) -> DoctorService:
    """Doctor service bound to the request session."""
    return DoctorService(db, cache_manager=cache)


def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    doctors: Annotated[DoctorService, Depends(get_doctor_service)],
) -> AppointmentService:
    """Appointment service bound to the request session."""
    return AppointmentService(db, doctors=doctors)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Doctors = Annotated[DoctorService, Depends(get_doctor_service)]
Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
