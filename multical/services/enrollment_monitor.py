"""Periodic sweep over group records whose sign-up window has closed."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from multical.domain.enrollment import EnrollmentPayloadError, EnrollmentRecord
from multical.domain.models import CalendarEvent, EnrollmentSweepResult, EnrollmentState
from multical.domain.rules import SchedulingRules
from multical.repository.calendar_repository import CalendarRepository, CalendarStoreError
from multical.services.enrollment_service import EnrollmentService
from multical.services.keyword_resolver import KeywordResolver
from multical.utils.config import Settings, get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)

CANCELLED_PREFIX = "Cancelled: "


class EnrollmentMonitorService:
    """Cancels under-filled group records and locks confirmed ones.

    Meant to run on a short schedule (more often than the backfill window)
    so records are handled soon after their confirmation window opens.
    """

    def __init__(
        self,
        repository: CalendarRepository,
        resolver: KeywordResolver,
        enrollment_service: EnrollmentService,
        rules: SchedulingRules,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._resolver = resolver
        self._enrollment_service = enrollment_service
        self._rules = rules

    def check_enrollments(self, now: Optional[datetime] = None) -> EnrollmentSweepResult:
        current_time = now or datetime.now(timezone.utc)
        window_start = current_time - timedelta(minutes=self._settings.monitor_backfill_minutes)
        window_end = window_start + timedelta(minutes=self._settings.group_event_lookahead_minutes)

        cancelled: list[int] = []
        locked: list[int] = []
        for title, rule in self._rules.enrollment_rules.items():
            resolution = self._resolver.resolve(title)
            if not resolution.is_resolved:
                logger.info("No calendar found for group title | title=%s", title)
                continue
            calendar_id = resolution.calendar_id
            window = timedelta(minutes=rule.confirmation_window_minutes)

            try:
                tentative = self._upcoming(calendar_id, EnrollmentState.TENTATIVE, title, window_start, window_end)
                confirmed = self._upcoming(calendar_id, EnrollmentState.CONFIRMED, title, window_start, window_end)
            except CalendarStoreError as exc:
                logger.warning("Could not list group records | title=%s | error=%s", title, exc)
                continue

            for event in tentative:
                if event.start - window >= current_time:
                    continue
                logger.info("Group event did not meet its minimum; cancelling | title=%s", event.title)
                if self._cancel(event):
                    cancelled.append(event.event_id)

            for event in confirmed:
                if event.start - window >= current_time:
                    continue
                logger.info("Group event confirmed; locking sign-ups | title=%s", event.title)
                if self._lock(event):
                    locked.append(event.event_id)

        logger.info(
            "Enrollment sweep completed | cancelled=%s | locked=%s",
            len(cancelled),
            len(locked),
        )
        return EnrollmentSweepResult(cancelled_event_ids=cancelled, locked_event_ids=locked)

    def _upcoming(
        self,
        calendar_id: str,
        state: EnrollmentState,
        title: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[CalendarEvent]:
        expected = (state.title_prefix + title).strip()
        return [
            event
            for event in self._repository.list_events(calendar_id, window_start, window_end)
            if event.title.strip() == expected
        ]

    def _lock(self, event: CalendarEvent) -> bool:
        try:
            record = self._enrollment_service.load_record(event)
            if record.payload.locked:
                return False
            self._enrollment_service.apply_delta(record, None)
        except EnrollmentPayloadError as exc:
            logger.warning("Unreadable group record | event_id=%s | error=%s", event.event_id, exc)
            return False
        except CalendarStoreError as exc:
            logger.warning("Could not lock group record | event_id=%s | error=%s", event.event_id, exc)
            return False
        return True

    def _cancel(self, event: CalendarEvent) -> bool:
        try:
            record = self._enrollment_service.load_record(event)
        except EnrollmentPayloadError as exc:
            logger.warning("Unreadable group record | event_id=%s | error=%s", event.event_id, exc)
            return False

        try:
            if not self._drain(event.event_id, record):
                logger.warning("Group record survived cancellation | event_id=%s", event.event_id)
                return False
            # Placeholder only after the record is deleted.
            self._repository.create_event(
                calendar_id=event.calendar_id,
                title=CANCELLED_PREFIX + record.title,
                start=event.start,
                end=event.end,
                transparent=True,
            )
        except (CalendarStoreError, EnrollmentPayloadError) as exc:
            logger.warning("Could not cancel group record | event_id=%s | error=%s", event.event_id, exc)
            return False
        return True

    def _drain(self, event_id: int, record: EnrollmentRecord) -> bool:
        """Remove one sign-up at a time until the record deletes itself."""
        for _ in range(record.payload.enrollment):
            if not self._enrollment_service.apply_delta(record, -1):
                return True
            refreshed = self._repository.get_event(event_id)
            if refreshed is None:
                return True
            record = self._enrollment_service.load_record(refreshed)
        return False
