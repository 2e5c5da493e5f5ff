"""Per-tag reservation and cancellation of plain and occupancy resources."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from multical.domain.models import TagError, TagOutcome, TagStatus
from multical.domain.tags import parse_resource_tag
from multical.repository.calendar_repository import CalendarRepository
from multical.services.keyword_resolver import KeywordResolver
from multical.services.occupancy_service import OccupancyService
from multical.utils.config import Settings, get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)


def display_title(title: str, base: str, ancestors: Iterable[str]) -> str:
    """``"Title Using: Resource_1, KeySpace_1"`` so umbrella spaces block too."""
    names = [base, *ancestors]
    return f"{title} Using: " + ", ".join(names)


class ReservationService:
    """Books one resource tag onto its calendar, or removes that booking."""

    def __init__(
        self,
        repository: CalendarRepository,
        resolver: KeywordResolver,
        occupancy_service: OccupancyService,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._resolver = resolver
        self._occupancy_service = occupancy_service

    def reserve(
        self,
        title: str,
        raw_tag: str,
        start: datetime,
        end: datetime,
        description: str = "",
    ) -> TagOutcome:
        tag = parse_resource_tag(raw_tag)
        resolution = self._resolver.resolve(tag.base, title)
        if not resolution.is_resolved:
            logger.info("No calendar found for keyword | keyword=%s", tag.base)
            return TagOutcome(raw_tag, TagStatus.SKIPPED, TagError.UNRESOLVED_TAG)

        error: Optional[TagError] = None
        transparent = False
        if tag.is_occupancy_tagged:
            if self._occupancy_service.capacity_for(tag.base) is None:
                error = TagError.NO_CAPACITY_RULE
            else:
                transparent = True
            self._occupancy_service.adjust(resolution.calendar_id, raw_tag, start, end, False)

        subtitle = display_title(title, tag.base, resolution.ancestors)
        self._repository.create_event(
            calendar_id=resolution.calendar_id,
            title=subtitle,
            start=start,
            end=end,
            description=description,
            transparent=transparent,
        )
        logger.info("Event created | title=%s | calendar_id=%s", subtitle, resolution.calendar_id)
        return TagOutcome(raw_tag, TagStatus.APPLIED, error)

    def cancel(
        self,
        title: str,
        raw_tag: str,
        start: datetime,
        end: datetime,
    ) -> TagOutcome:
        tag = parse_resource_tag(raw_tag)
        resolution = self._resolver.resolve(tag.base, title)
        if not resolution.is_resolved:
            logger.info("No calendar found for keyword | keyword=%s", tag.base)
            return TagOutcome(raw_tag, TagStatus.SKIPPED, TagError.UNRESOLVED_TAG)

        # A locked group record may hold Base[0]; nothing to give back.
        if tag.is_occupancy_tagged and tag.requested > 0:
            self._occupancy_service.adjust(resolution.calendar_id, raw_tag, start, end, True)

        subtitle = display_title(title, tag.base, resolution.ancestors)
        matches = self._repository.find_events_by_title(
            resolution.calendar_id, subtitle, start, end
        )
        if not matches:
            logger.warning("Event details are valid, but it cannot be cancelled | title=%s", subtitle)
            return TagOutcome(raw_tag, TagStatus.FAILED, TagError.NO_MATCH, subtitle)

        error: Optional[TagError] = None
        if len(matches) > 1:
            logger.warning(
                "Multiple matching events found; cancelling the first | title=%s | matches=%s",
                subtitle,
                len(matches),
            )
            error = TagError.AMBIGUOUS_MATCH
        self._repository.delete_event(matches[0].event_id)
        logger.info("Event cancelled | title=%s", subtitle)
        return TagOutcome(raw_tag, TagStatus.APPLIED, error)
