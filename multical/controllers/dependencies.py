"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from multical.repository.calendar_repository import CalendarRepository
from multical.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from multical.services.enrollment_monitor import EnrollmentMonitorService
from multical.services.notification_parser import NotificationParser
from multical.services.schedule_service import ScheduleService
from multical.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)


def _require_state(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_repository(request: Request) -> CalendarRepository:
    return _require_state(request, "repository", "Calendar repository")


def get_schedule_service(request: Request) -> ScheduleService:
    return _require_state(request, "schedule_service", "Schedule service")


def get_monitor_service(request: Request) -> EnrollmentMonitorService:
    return _require_state(request, "monitor_service", "Enrollment monitor")


def get_notification_parser(request: Request) -> NotificationParser:
    parser = getattr(request.app.state, "notification_parser", None)
    if parser is None:
        parser = NotificationParser(settings=get_settings())
        request.app.state.notification_parser = parser
    return parser


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if not auth_service.auth_enabled:
        return
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        auth_service.validate_bearer_token(credentials.credentials)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
