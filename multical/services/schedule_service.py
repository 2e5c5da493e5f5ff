"""Orchestrates one booking or cancellation across all of its tags."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional
from zoneinfo import ZoneInfo

from multical.domain.enrollment import EnrollmentPayloadError
from multical.domain.models import (
    BookingIntent,
    BookingRequest,
    ScheduleResult,
    TagError,
    TagOutcome,
    TagStatus,
    ensure_aware,
)
from multical.repository.calendar_repository import CalendarStoreError
from multical.services.enrollment_service import EnrollmentRuleNotFoundError, EnrollmentService
from multical.services.keyword_resolver import KeywordResolver
from multical.services.reservation_service import ReservationService
from multical.utils.config import Settings, get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)


class ScheduleService:
    """Business logic orchestration for a single parsed booking notification.

    Tags are handled independently: a failure on one tag is recorded in its
    outcome and never stops its siblings. The request as a whole succeeds
    only when no tag failed.
    """

    def __init__(
        self,
        resolver: KeywordResolver,
        reservation_service: ReservationService,
        enrollment_service: EnrollmentService,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._resolver = resolver
        self._reservation_service = reservation_service
        self._enrollment_service = enrollment_service
        self._zone = ZoneInfo(self._settings.timezone)

    def handle(self, request: BookingRequest) -> ScheduleResult:
        # Naive times are wall-clock times in the configured timezone.
        request = replace(
            request,
            start=ensure_aware(request.start, self._zone),
            end=ensure_aware(request.end, self._zone),
        )
        logger.info(
            "Handling booking | title=%s | intent=%s | tags=%s",
            request.title,
            request.intent.value,
            list(request.tags),
        )
        if request.tags and self._resolver.is_group_sentinel(request.tags[0]):
            outcomes = self._handle_group(request)
        else:
            outcomes = [self._handle_tag(request, raw_tag) for raw_tag in request.tags]

        result = ScheduleResult(title=request.title, intent=request.intent, outcomes=outcomes)
        logger.info(
            "Booking handled | title=%s | success=%s | failed_tags=%s",
            request.title,
            result.success,
            [outcome.tag for outcome in outcomes if outcome.failed],
        )
        return result

    def _handle_tag(self, request: BookingRequest, raw_tag: str) -> TagOutcome:
        try:
            if request.intent is BookingIntent.NEW:
                return self._reservation_service.reserve(
                    request.title,
                    raw_tag,
                    request.start,
                    request.end,
                    request.description,
                )
            return self._reservation_service.cancel(
                request.title,
                raw_tag,
                request.start,
                request.end,
            )
        except CalendarStoreError as exc:
            logger.warning("Calendar operation failed | tag=%s | error=%s", raw_tag, exc)
            return TagOutcome(raw_tag, TagStatus.FAILED, TagError.COLLABORATOR_FAILURE, str(exc))

    def _handle_group(self, request: BookingRequest) -> list[TagOutcome]:
        sentinel, resource_tags = request.tags[0], request.tags[1:]
        resolution = self._resolver.resolve(sentinel, request.title)
        if not resolution.is_resolved:
            logger.warning("No calendar found for group event | title=%s", request.title)
            return [TagOutcome(sentinel, TagStatus.FAILED, TagError.UNRESOLVED_TAG, request.title)]
        calendar_id = resolution.calendar_id

        try:
            record = self._enrollment_service.find_record(
                calendar_id, request.title, request.start, request.end
            )
            if request.intent is BookingIntent.NEW and record is None:
                self._enrollment_service.create_record(
                    calendar_id,
                    request.title,
                    request.start,
                    request.end,
                    request.description,
                    tuple(resource_tags),
                )
                outcomes = [TagOutcome(sentinel, TagStatus.APPLIED, detail="created")]
                # Resources are held at the tag's full amount until the sign-up window closes.
                outcomes.extend(self._handle_tag(request, raw_tag) for raw_tag in resource_tags)
                return outcomes

            if record is None:
                logger.warning("Group event could not be found | title=%s", request.title)
                outcome = TagOutcome(sentinel, TagStatus.FAILED, TagError.NO_MATCH, request.title)
            else:
                delta = 1 if request.intent is BookingIntent.NEW else -1
                still_exists = self._enrollment_service.apply_delta(record, delta)
                outcome = TagOutcome(
                    sentinel,
                    TagStatus.APPLIED,
                    detail="updated" if still_exists else "deleted",
                )
        except EnrollmentRuleNotFoundError as exc:
            logger.warning("Group event has no enrollment rule | title=%s", request.title)
            return [TagOutcome(sentinel, TagStatus.FAILED, TagError.NO_ENROLLMENT_RULE, str(exc))]
        except (CalendarStoreError, EnrollmentPayloadError) as exc:
            logger.warning("Group event operation failed | title=%s | error=%s", request.title, exc)
            return [TagOutcome(sentinel, TagStatus.FAILED, TagError.COLLABORATOR_FAILURE, str(exc))]

        # Held resources only move with the record itself; a deleted record
        # has already released them.
        skipped = [
            TagOutcome(raw_tag, TagStatus.SKIPPED, detail="held by group record")
            for raw_tag in resource_tags
        ]
        return [outcome, *skipped]
