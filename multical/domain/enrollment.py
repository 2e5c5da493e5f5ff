"""Group enrollment record payload and its calendar description codec.

The calendar store only keeps free text, so the payload is rendered into a
fixed six-line header followed by the booking's own notes:

    0  "<enrollment> of <maximum> spaces filled."
    1  minimum line ("2 more sign-ups required to confirm.")
    2  invite line
    3  sign-up link
    4  base event title
    5  "Tags: <tag>, <tag>"
    6+ free-text notes
    [Locked]  (optional trailing sentinel)

Descriptions edited by hand in the calendar UI come back with ``<br>``
separators instead of newlines; both are accepted on parse.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from multical.domain.models import (
    DISPLAY_STATES,
    EnrollmentState,
    TimeRange,
)
from multical.domain.rules import EnrollmentRule


INVITE_LINE = "Interested in joining? Sign up here:"
FULL_LINE = (
    "This event is full! If you need to schedule a training, please book a new "
    "training slot using the following link."
)
LOCKED_LINE = (
    "The sign-up window for this event has passed. To book another event, "
    "please use the following page:"
)
LOCKED_SENTINEL = "[Locked]"
MINIMUM_MET_LINE = "0 more signups required! The minimum enrollment has been met for this meeting."

_HEADER_LINES = 6
_LEADING_INT = re.compile(r"^\s*(\d+)")
_MAXIMUM = re.compile(r"of\s+(\d+)")
_TAGS = re.compile(r"Tags:\s?(.*)")
_INSTANCE_DATE = re.compile(r"^(.*?)\d{4}-\d{2}-\d{2}")


class EnrollmentPayloadError(ValueError):
    """Raised when a record description cannot be read back into a payload."""


@dataclass(frozen=True)
class EnrollmentPayload:
    enrollment: int
    maximum: int
    minimum_outstanding: int
    invite_line: str
    signup_link: str
    title: str
    tags: tuple[str, ...]
    notes: str = ""
    locked: bool = False


@dataclass(frozen=True)
class EnrollmentRecord:
    """A group booking loaded from its calendar entry; nothing else is persisted."""

    event_id: int
    calendar_id: str
    time_range: TimeRange
    rule: EnrollmentRule
    payload: EnrollmentPayload

    @property
    def title(self) -> str:
        return self.payload.title

    @property
    def display_state(self) -> EnrollmentState:
        return display_state_for(self.payload.enrollment, self.rule)

    @property
    def state(self) -> EnrollmentState:
        if self.payload.enrollment <= 0:
            return EnrollmentState.DELETED
        if self.payload.locked:
            return EnrollmentState.LOCKED
        return self.display_state


def display_state_for(enrollment: int, rule: EnrollmentRule) -> EnrollmentState:
    if enrollment >= rule.maximum:
        return EnrollmentState.FULL
    if rule.minimum - enrollment <= 0:
        return EnrollmentState.CONFIRMED
    return EnrollmentState.TENTATIVE


def enrollment_line(enrollment: int, maximum: int) -> str:
    return f"{enrollment} of {maximum} spaces filled."


def minimum_line(outstanding: int) -> str:
    if outstanding <= 0:
        return MINIMUM_MET_LINE
    if outstanding == 1:
        return "1 more sign-up required to confirm."
    return f"{outstanding} more sign-ups required to confirm."


def instance_signup_link(booking_page: str, start: datetime) -> str:
    """Deep link to one occurrence: ``<page>/2001-01-01T12:00:00Z``."""
    link = booking_page if booking_page.endswith("/") else booking_page + "/"
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return link + start.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def generic_signup_link(link: str) -> str:
    """Strip the occurrence timestamp, leaving the event type's booking page."""
    match = _INSTANCE_DATE.match(link)
    if match is None:
        return link
    return match.group(1)


def new_payload(
    *,
    title: str,
    rule: EnrollmentRule,
    booking_page: str,
    start: datetime,
    tags: tuple[str, ...],
    notes: str,
) -> EnrollmentPayload:
    """Payload for the first sign-up of a new group booking."""
    payload = EnrollmentPayload(
        enrollment=1,
        maximum=rule.maximum,
        minimum_outstanding=max(0, rule.minimum - 1),
        invite_line=INVITE_LINE,
        signup_link=instance_signup_link(booking_page, start),
        title=title,
        tags=tags,
        notes=notes,
    )
    if payload.enrollment >= rule.maximum:
        payload = replace(
            payload,
            invite_line=FULL_LINE,
            signup_link=generic_signup_link(payload.signup_link),
        )
    return payload


def render_description(payload: EnrollmentPayload) -> str:
    lines = [
        enrollment_line(payload.enrollment, payload.maximum),
        minimum_line(payload.minimum_outstanding),
        payload.invite_line,
        payload.signup_link,
        payload.title,
        "Tags: " + ", ".join(payload.tags),
        payload.notes,
    ]
    if payload.locked:
        lines.append(LOCKED_SENTINEL)
    return "\n".join(lines)


def split_description(text: str) -> list[str]:
    lines = text.replace("\r\n", "\n").split("\n")
    if len(lines) == 1 and "<br>" in lines[0]:
        lines = lines[0].split("<br>")
    return lines


def parse_description(text: str) -> EnrollmentPayload:
    lines = split_description(text)
    if len(lines) < _HEADER_LINES:
        raise EnrollmentPayloadError(
            f"Enrollment description needs {_HEADER_LINES} header lines, found {len(lines)}"
        )

    enrollment_match = _LEADING_INT.match(lines[0])
    maximum_match = _MAXIMUM.search(lines[0])
    if enrollment_match is None or maximum_match is None:
        raise EnrollmentPayloadError(f"Unreadable enrollment line: {lines[0]!r}")
    minimum_match = _LEADING_INT.match(lines[1])
    tags_match = _TAGS.search(lines[5])
    if tags_match is None:
        raise EnrollmentPayloadError(f"Unreadable tag line: {lines[5]!r}")
    tag_text = tags_match.group(1).strip()

    rest = lines[_HEADER_LINES:]
    locked = bool(rest) and rest[-1].strip() == LOCKED_SENTINEL
    if locked:
        rest = rest[:-1]

    return EnrollmentPayload(
        enrollment=int(enrollment_match.group(1)),
        maximum=int(maximum_match.group(1)),
        minimum_outstanding=int(minimum_match.group(1)) if minimum_match else 0,
        invite_line=lines[2],
        signup_link=lines[3].strip(),
        title=lines[4].strip(),
        tags=tuple(tag.strip() for tag in tag_text.split(",") if tag.strip()),
        notes="\n".join(rest),
        locked=locked,
    )


def strip_state_prefix(title: str) -> Optional[str]:
    for state in DISPLAY_STATES:
        if title.startswith(state.title_prefix):
            return title[len(state.title_prefix):]
    return None
