"""Domain models for occupancy tracking and group enrollment."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Optional


def ensure_aware(value: datetime, zone: tzinfo) -> datetime:
    """Read a naive datetime as wall-clock time in ``zone``; aware values pass through."""
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval ``[start, end)``."""

    start: datetime
    end: datetime

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: TimeRange) -> bool:
        return self.start < other.end and self.end > other.start

    def contains(self, other: TimeRange) -> bool:
        return self.start <= other.start and other.end <= self.end

    def is_strictly_narrower_than(self, other: TimeRange) -> bool:
        return other.contains(self) and self.duration < other.duration


@dataclass(frozen=True)
class ResourceTag:
    """A tag split into its base name and optional occupancy request.

    ``requested`` is ``None`` when the tag carries no ``[n]`` suffix; a
    suffix of ``[0]`` is a real (if pointless) request for zero units.
    """

    base: str
    requested: Optional[int] = None

    @property
    def is_occupancy_tagged(self) -> bool:
        return self.requested is not None

    def __str__(self) -> str:
        if self.requested is None:
            return self.base
        return f"{self.base}[{self.requested}]"


@dataclass(frozen=True)
class CalendarEvent:
    event_id: int
    calendar_id: str
    title: str
    description: str
    start: datetime
    end: datetime
    transparent: bool = False

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start, self.end)


@dataclass(frozen=True)
class OccupancyMarker:
    """Bookkeeping event recording remaining capacity for one base tag."""

    event_id: int
    calendar_id: str
    base: str
    time_range: TimeRange
    remaining: int


@dataclass(frozen=True)
class KeywordResolution:
    calendar_id: Optional[str]
    ancestors: tuple[str, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return self.calendar_id is not None


@dataclass(frozen=True)
class SplitResult:
    """Partition of a marker interval around a request interval."""

    pieces: tuple[TimeRange, ...]
    cuts_start: bool
    cuts_end: bool

    @property
    def overlap_index(self) -> int:
        """Index of the piece that lies inside the request interval."""
        if self.cuts_start:
            return 1
        return 0


class BookingIntent(str, Enum):
    NEW = "NEW"
    CANCEL = "CAN"


class EnrollmentState(str, Enum):
    TENTATIVE = "Tentative"
    CONFIRMED = "Confirmed"
    FULL = "Full"
    LOCKED = "Locked"
    DELETED = "Deleted"

    @property
    def title_prefix(self) -> str:
        return f"{self.value}: "


# Title prefixes a group record can carry, in lookup priority order.
DISPLAY_STATES: tuple[EnrollmentState, ...] = (
    EnrollmentState.TENTATIVE,
    EnrollmentState.CONFIRMED,
    EnrollmentState.FULL,
)


@dataclass(frozen=True)
class BookingRequest:
    title: str
    intent: BookingIntent
    tags: tuple[str, ...]
    start: datetime
    end: datetime
    description: str = ""


class TagStatus(str, Enum):
    APPLIED = "APPLIED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class TagError(str, Enum):
    UNRESOLVED_TAG = "UNRESOLVED_TAG"
    NO_CAPACITY_RULE = "NO_CAPACITY_RULE"
    AMBIGUOUS_MATCH = "AMBIGUOUS_MATCH"
    NO_MATCH = "NO_MATCH"
    NO_ENROLLMENT_RULE = "NO_ENROLLMENT_RULE"
    COLLABORATOR_FAILURE = "COLLABORATOR_FAILURE"


@dataclass(frozen=True)
class TagOutcome:
    tag: str
    status: TagStatus
    error: Optional[TagError] = None
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.status is TagStatus.FAILED


@dataclass(frozen=True)
class ScheduleResult:
    title: str
    intent: BookingIntent
    outcomes: list[TagOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(outcome.failed for outcome in self.outcomes)


@dataclass(frozen=True)
class EnrollmentSweepResult:
    cancelled_event_ids: list[int]
    locked_event_ids: list[int]
