"""Remaining-capacity bookkeeping for occupancy-tagged resources."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from multical.domain.models import OccupancyMarker, TimeRange, ensure_aware
from multical.domain.rules import SchedulingRules
from multical.domain.tags import parse_resource_tag
from multical.repository.calendar_repository import CalendarRepository
from multical.services.interval_splitter import split_interval
from multical.utils.config import Settings, get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)


class OccupancyService:
    """Keeps non-overlapping ``Base[n]`` markers in step with reservations.

    Each call handles the first marker overlapping the requested range,
    then recurses on the parts of the range that marker did not cover, so
    an arbitrary request against many markers reduces to single splits.
    Not safe under concurrent writers to the same calendar.
    """

    def __init__(
        self,
        repository: CalendarRepository,
        rules: SchedulingRules,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._rules = rules
        self._zone = ZoneInfo(self._settings.timezone)

    def capacity_for(self, base: str) -> Optional[int]:
        return self._rules.occupancy_rules.get(base.strip())

    def adjust(
        self,
        calendar_id: str,
        tagged_keyword: str,
        start: datetime,
        end: datetime,
        is_cancellation: bool,
    ) -> None:
        start = ensure_aware(start, self._zone)
        end = ensure_aware(end, self._zone)
        tag = parse_resource_tag(tagged_keyword)
        capacity = self.capacity_for(tag.base)
        if capacity is None:
            logger.info("No occupancy rule found | keyword=%s", tag.base)
            return
        if tag.requested is None:
            logger.info("Keyword has no occupancy data | keyword=%s", tag.base)
            return

        logger.info(
            "Adjusting occupancy | calendar_id=%s | keyword=%s | start=%s | end=%s | cancellation=%s",
            calendar_id,
            tag,
            start.isoformat(),
            end.isoformat(),
            is_cancellation,
        )
        self._adjust_range(
            calendar_id=calendar_id,
            base=tag.base,
            requested=tag.requested,
            capacity=capacity,
            request=TimeRange(start, end),
            is_cancellation=is_cancellation,
        )

    def _adjust_range(
        self,
        *,
        calendar_id: str,
        base: str,
        requested: int,
        capacity: int,
        request: TimeRange,
        is_cancellation: bool,
    ) -> None:
        if request.is_empty:
            return

        markers = self._repository.find_overlapping_markers(
            calendar_id, base, request.start, request.end
        )
        if not markers:
            if not is_cancellation:
                self._create_marker(calendar_id, base, requested, capacity, request)
            return

        consumed = -requested if is_cancellation else requested
        marker = markers[0]
        split = split_interval(marker.time_range, request)
        pieces = self._apply_split(marker, split.pieces)
        self._shift_marker(pieces[split.overlap_index], consumed, capacity)

        if split.cuts_start and split.cuts_end:
            leftovers: tuple[TimeRange, ...] = ()
        elif split.cuts_start:
            leftovers = (TimeRange(marker.time_range.end, request.end),)
        elif split.cuts_end:
            leftovers = (TimeRange(request.start, marker.time_range.start),)
        else:
            leftovers = (
                TimeRange(marker.time_range.end, request.end),
                TimeRange(request.start, marker.time_range.start),
            )

        for leftover in leftovers:
            if leftover.is_empty:
                continue
            if not leftover.is_strictly_narrower_than(request):
                raise AssertionError(
                    f"Occupancy recursion did not shrink: {leftover} within {request}"
                )
            self._adjust_range(
                calendar_id=calendar_id,
                base=base,
                requested=requested,
                capacity=capacity,
                request=leftover,
                is_cancellation=is_cancellation,
            )

    def _create_marker(
        self,
        calendar_id: str,
        base: str,
        requested: int,
        capacity: int,
        request: TimeRange,
    ) -> None:
        remaining = capacity - requested
        if remaining >= capacity:
            logger.info("Reservation consumes no capacity; no marker needed | keyword=%s", base)
            return
        if remaining < 0:
            logger.warning(
                "Reservation exceeds capacity; clamping to zero | keyword=%s | requested=%s | capacity=%s",
                base,
                requested,
                capacity,
            )
            remaining = 0
        marker = self._repository.create_marker(
            calendar_id, base, request.start, request.end, remaining
        )
        logger.info(
            "Capacity marker created | event_id=%s | keyword=%s | remaining=%s",
            marker.event_id,
            base,
            remaining,
        )

    def _apply_split(
        self,
        marker: OccupancyMarker,
        pieces: tuple[TimeRange, ...],
    ) -> list[OccupancyMarker]:
        """Shrink the stored marker to the first piece and store the rest as copies."""
        if len(pieces) == 1:
            return [marker]
        stored = [self._repository.resize_marker(marker, pieces[0])]
        for piece in pieces[1:]:
            stored.append(
                self._repository.create_marker(
                    marker.calendar_id,
                    marker.base,
                    piece.start,
                    piece.end,
                    marker.remaining,
                )
            )
        return stored

    def _shift_marker(self, marker: OccupancyMarker, consumed: int, capacity: int) -> None:
        count = marker.remaining - consumed
        if count >= capacity:
            logger.info(
                "All reservations removed; deleting capacity marker | event_id=%s",
                marker.event_id,
            )
            self._repository.delete_marker(marker)
            return
        if count < 0:
            logger.warning(
                "Capacity overdrawn; clamping to zero | event_id=%s | count=%s",
                marker.event_id,
                count,
            )
            count = 0
        self._repository.mutate_marker(marker, count)
