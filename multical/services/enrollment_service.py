"""Lifecycle of group (multi sign-up) bookings."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

from multical.domain.enrollment import (
    FULL_LINE,
    INVITE_LINE,
    LOCKED_LINE,
    EnrollmentPayload,
    EnrollmentPayloadError,
    EnrollmentRecord,
    display_state_for,
    generic_signup_link,
    instance_signup_link,
    new_payload,
    parse_description,
    render_description,
    strip_state_prefix,
)
from multical.domain.models import DISPLAY_STATES, CalendarEvent, TagStatus, TimeRange
from multical.domain.rules import EnrollmentRule, SchedulingRules
from multical.domain.tags import parse_resource_tag
from multical.repository.calendar_repository import CalendarRepository, CalendarStoreError
from multical.services.keyword_resolver import KeywordResolver
from multical.services.occupancy_service import OccupancyService
from multical.services.reservation_service import ReservationService
from multical.utils.config import Settings, get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)


class EnrollmentRuleNotFoundError(LookupError):
    """Raised when a group title has no enrollment rule configured."""


class EnrollmentService:
    """Applies sign-up deltas to group records.

    State lives only in the record's calendar description; every call works
    from a freshly loaded record and writes the result straight back.
    """

    def __init__(
        self,
        repository: CalendarRepository,
        resolver: KeywordResolver,
        occupancy_service: OccupancyService,
        reservation_service: ReservationService,
        rules: SchedulingRules,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._resolver = resolver
        self._occupancy_service = occupancy_service
        self._reservation_service = reservation_service
        self._rules = rules

    def rule_for(self, title: str) -> EnrollmentRule:
        rule = self._rules.enrollment_rules.get(title)
        if rule is None:
            raise EnrollmentRuleNotFoundError(f"No enrollment rule for title {title!r}")
        return rule

    def load_record(self, event: CalendarEvent) -> EnrollmentRecord:
        payload = parse_description(event.description)
        title = payload.title or strip_state_prefix(event.title) or event.title
        try:
            rule = self.rule_for(title)
        except EnrollmentRuleNotFoundError as exc:
            raise EnrollmentPayloadError(str(exc)) from exc
        return EnrollmentRecord(
            event_id=event.event_id,
            calendar_id=event.calendar_id,
            time_range=event.time_range,
            rule=rule,
            payload=payload,
        )

    def find_record(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
    ) -> Optional[EnrollmentRecord]:
        """Look for the record under each display prefix, under-filled first."""
        for state in DISPLAY_STATES:
            matches = self._repository.find_events_by_title(
                calendar_id, state.title_prefix + title, start, end
            )
            if not matches:
                continue
            if len(matches) > 1:
                logger.warning(
                    "Multiple group records found; using the first | title=%s | matches=%s",
                    title,
                    len(matches),
                )
            return self.load_record(matches[0])
        return None

    def create_record(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
        description: str,
        tags: tuple[str, ...],
    ) -> EnrollmentRecord:
        """Create the record for a first sign-up.

        The last line of ``description`` is the event type's booking page.
        """
        rule = self.rule_for(title)
        lines = description.split("\n")
        booking_page = lines.pop().strip() if lines else ""
        payload = new_payload(
            title=title,
            rule=rule,
            booking_page=booking_page,
            start=start,
            tags=tags,
            notes="\n".join(lines),
        )
        display_title = display_state_for(payload.enrollment, rule).title_prefix + title
        event = self._repository.create_event(
            calendar_id=calendar_id,
            title=display_title,
            start=start,
            end=end,
            description=render_description(payload),
        )
        logger.info("Group record created | title=%s | event_id=%s", display_title, event.event_id)
        return EnrollmentRecord(
            event_id=event.event_id,
            calendar_id=calendar_id,
            time_range=TimeRange(start, end),
            rule=rule,
            payload=payload,
        )

    def apply_delta(self, record: EnrollmentRecord, delta: Optional[int]) -> bool:
        """Apply +1, -1 or a passive lock (``None``); return whether the record still exists."""
        logger.info(
            "Adjusting group record | title=%s | event_id=%s | delta=%s",
            record.title,
            record.event_id,
            delta,
        )
        if delta is None:
            return self._lock(record)
        if delta == 1:
            return self._gain(record)
        if delta == -1:
            return self._lose(record)
        raise ValueError(f"Enrollment delta must be +1, -1 or None, got {delta!r}")

    def _lock(self, record: EnrollmentRecord) -> bool:
        payload = record.payload
        if payload.locked:
            logger.info("Group record already locked | event_id=%s", record.event_id)
            return True

        held_tags, give_back = self._plan_unused_capacity(record)
        locked = replace(
            payload,
            tags=held_tags,
            invite_line=LOCKED_LINE,
            signup_link=generic_signup_link(payload.signup_link),
            locked=True,
        )
        self._repository.update_event(record.event_id, description=render_description(locked))
        for calendar_id, returned_tag in give_back:
            logger.info("Returning capacity | tag=%s", returned_tag)
            self._occupancy_service.adjust(
                calendar_id,
                returned_tag,
                record.time_range.start,
                record.time_range.end,
                True,
            )
        return True

    def _gain(self, record: EnrollmentRecord) -> bool:
        payload = record.payload
        if payload.locked:
            logger.warning("Sign-up window has passed; ignoring sign-up | event_id=%s", record.event_id)
            return True
        if payload.enrollment >= record.rule.maximum:
            logger.warning("Group record already full; ignoring sign-up | event_id=%s", record.event_id)
            return True

        updated = self._recount(payload, record.rule, payload.enrollment + 1)
        if updated.enrollment >= record.rule.maximum:
            updated = replace(
                updated,
                invite_line=FULL_LINE,
                signup_link=generic_signup_link(updated.signup_link),
            )
        self._write(record, updated)
        return True

    def _lose(self, record: EnrollmentRecord) -> bool:
        payload = record.payload
        enrollment = payload.enrollment - 1
        if enrollment <= 0:
            self._repository.delete_event(record.event_id)
            self._release_all(record)
            logger.info("Group record deleted | title=%s | event_id=%s", record.title, record.event_id)
            return False

        updated = self._recount(payload, record.rule, enrollment)
        was_full = payload.enrollment >= record.rule.maximum
        if was_full and not payload.locked:
            updated = replace(
                updated,
                invite_line=INVITE_LINE,
                signup_link=instance_signup_link(
                    generic_signup_link(payload.signup_link),
                    record.time_range.start,
                ),
            )
        self._write(record, updated)
        return True

    @staticmethod
    def _recount(payload: EnrollmentPayload, rule: EnrollmentRule, enrollment: int) -> EnrollmentPayload:
        return replace(
            payload,
            enrollment=enrollment,
            maximum=rule.maximum,
            minimum_outstanding=max(0, rule.minimum - enrollment),
        )

    def _write(self, record: EnrollmentRecord, payload: EnrollmentPayload) -> None:
        title = display_state_for(payload.enrollment, record.rule).title_prefix + record.title
        self._repository.update_event(
            record.event_id,
            title=title,
            description=render_description(payload),
        )
        logger.info(
            "Group record updated | title=%s | enrollment=%s/%s",
            title,
            payload.enrollment,
            record.rule.maximum,
        )

    def _plan_unused_capacity(
        self, record: EnrollmentRecord
    ) -> tuple[tuple[str, ...], list[tuple[str, str]]]:
        """Work out the capacity held for sign-ups that never came.

        Returns the record's tags rewritten to the amounts it keeps, and the
        ``(calendar_id, Base[n])`` give-backs, so a later deletion releases
        only what the record kept.
        """
        enrollment = record.payload.enrollment
        unused = record.rule.maximum - enrollment
        logger.info("Returning unused occupancy | title=%s | unused=%s", record.title, unused)
        held_tags: list[str] = []
        give_back: list[tuple[str, str]] = []
        for raw_tag in record.payload.tags:
            held_tags.append(raw_tag)
            tag = parse_resource_tag(raw_tag)
            capacity = self._occupancy_service.capacity_for(tag.base)
            if not tag.is_occupancy_tagged or capacity is None or enrollment >= capacity:
                continue
            resolution = self._resolver.resolve(tag.base, record.title)
            if not resolution.is_resolved:
                logger.info("No calendar found for keyword | keyword=%s", tag.base)
                continue
            returned = min(unused, capacity)
            if returned <= 0:
                continue
            give_back.append((resolution.calendar_id, f"{tag.base}[{returned}]"))
            held_tags[-1] = f"{tag.base}[{max(0, tag.requested - returned)}]"
        return tuple(held_tags), give_back

    def _release_all(self, record: EnrollmentRecord) -> None:
        """Cancel every resource the record still holds, at its stored amount."""
        for raw_tag in record.payload.tags:
            try:
                outcome = self._reservation_service.cancel(
                    record.title,
                    raw_tag,
                    record.time_range.start,
                    record.time_range.end,
                )
            except CalendarStoreError:
                logger.exception("Problem releasing group resource | tag=%s", raw_tag)
                continue
            if outcome.status is TagStatus.FAILED:
                logger.warning(
                    "Group resource could not be released | tag=%s | error=%s",
                    raw_tag,
                    outcome.error,
                )
