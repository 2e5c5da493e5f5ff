"""HTTP controller layer for bookings, notifications and the enrollment sweep."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from multical.controllers.dependencies import (
    get_monitor_service,
    get_notification_parser,
    get_repository,
    get_schedule_service,
    require_admin,
)
from multical.domain.enrollment import EnrollmentPayloadError
from multical.domain.models import BookingIntent, BookingRequest, ScheduleResult
from multical.repository.calendar_repository import CalendarRepository, CalendarStoreError
from multical.services.enrollment_monitor import EnrollmentMonitorService
from multical.services.notification_parser import NotificationParseError, NotificationParser
from multical.services.schedule_service import ScheduleService
from multical.utils.config import get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["scheduling"])


def _require_aware(value: datetime, field_name: str) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"{field_name} must include a UTC offset")
    return value


class BookingPayload(BaseModel):
    """Input DTO for an already parsed booking or cancellation."""

    title: str = Field(min_length=1)
    intent: BookingIntent
    tags: list[str] = Field(default_factory=list)
    start: datetime
    end: datetime
    description: str = ""

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must be non-empty")
        return value.strip()

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, value: list[str]) -> list[str]:
        return [tag.strip() for tag in value if tag.strip()]

    @model_validator(mode="after")
    def validate_time_range(self) -> "BookingPayload":
        _require_aware(self.start, "start")
        _require_aware(self.end, "end")
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self

    def to_request(self) -> BookingRequest:
        return BookingRequest(
            title=self.title,
            intent=self.intent,
            tags=tuple(self.tags),
            start=self.start,
            end=self.end,
            description=self.description,
        )


class NotificationPayload(BaseModel):
    """A single booking-notification e-mail as delivered by the mail hook."""

    subject: str = Field(min_length=3)
    html: str = Field(min_length=1)
    sender: Optional[str] = None


class TagOutcomeResponse(BaseModel):
    tag: str
    status: str
    error: Optional[str] = None
    detail: str = ""


class ScheduleResponse(BaseModel):
    title: str
    intent: BookingIntent
    success: bool
    archive: bool
    outcomes: list[TagOutcomeResponse]


class SweepRequest(BaseModel):
    now: Optional[datetime] = None

    @field_validator("now")
    @classmethod
    def validate_now(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return _require_aware(value, "now")


class SweepResponse(BaseModel):
    cancelled_event_ids: list[int]
    locked_event_ids: list[int]


class CalendarEventResponse(BaseModel):
    event_id: int = Field(gt=0)
    calendar_id: str
    title: str
    description: str
    start: datetime
    end: datetime
    transparent: bool


def _to_response(result: ScheduleResult) -> ScheduleResponse:
    return ScheduleResponse(
        title=result.title,
        intent=result.intent,
        success=result.success,
        archive=result.success,
        outcomes=[
            TagOutcomeResponse(
                tag=outcome.tag,
                status=outcome.status.value,
                error=outcome.error.value if outcome.error is not None else None,
                detail=outcome.detail,
            )
            for outcome in result.outcomes
        ],
    )


@router.post(
    "/bookings",
    response_model=ScheduleResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def submit_booking(
    payload: BookingPayload,
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleResponse:
    """Apply one booking or cancellation to every tagged resource."""
    try:
        return _to_response(service.handle(payload.to_request()))
    except EnrollmentPayloadError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to apply booking",
        ) from exc


@router.post(
    "/notifications",
    response_model=ScheduleResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def receive_notification(
    payload: NotificationPayload,
    parser: NotificationParser = Depends(get_notification_parser),
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleResponse:
    """Parse a booking-notification e-mail and apply it."""
    if payload.sender is not None and payload.sender.strip().lower() != settings.notification_sender:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Notifications are only accepted from {settings.notification_sender}",
        )
    try:
        request = parser.parse(payload.subject, payload.html)
        return _to_response(service.handle(request))
    except (NotificationParseError, EnrollmentPayloadError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected notification failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process notification",
        ) from exc


@router.post(
    "/enrollments/check",
    response_model=SweepResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def check_enrollments(
    payload: SweepRequest,
    service: EnrollmentMonitorService = Depends(get_monitor_service),
) -> SweepResponse:
    """Cancel under-filled group events and lock confirmed ones."""
    try:
        result = service.check_enrollments(payload.now)
        return SweepResponse(
            cancelled_event_ids=result.cancelled_event_ids,
            locked_event_ids=result.locked_event_ids,
        )
    except CalendarStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected enrollment sweep failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check enrollments",
        ) from exc


@router.get(
    "/calendars/{calendar_id}/events",
    response_model=list[CalendarEventResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def list_calendar_events(
    calendar_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    repository: CalendarRepository = Depends(get_repository),
) -> list[CalendarEventResponse]:
    if start.tzinfo is None or end.tzinfo is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start and end must include a UTC offset",
        )
    if end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must not be before start",
        )
    try:
        events = repository.list_events(calendar_id, start, end)
    except CalendarStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return [
        CalendarEventResponse(
            event_id=event.event_id,
            calendar_id=event.calendar_id,
            title=event.title,
            description=event.description,
            start=event.start,
            end=event.end,
            transparent=event.transparent,
        )
        for event in events
    ]
