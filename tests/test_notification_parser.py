from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from multical.domain.models import BookingIntent
from multical.services.notification_parser import NotificationParseError, NotificationParser
from multical.utils.config import get_settings


EASTERN = ZoneInfo("America/New_York")

NOTIFICATION_HTML = """
<html>
  <head>
    <title>New Event: Workshop</title>
    <style>p { color: #333; }</style>
  </head>
  <body>
    <script>track();</script>
    <p>Workshop</p>
    <p>Wednesday, June 4, 2025, 1:45pm (Eastern)</p>
    <p>Bring a laptop.</p>
    <p>https://calendly.com/acme/workshop</p>
    <p>60mins | GROUP, Room[3]</p>
    <p>Sent from Calendly</p>
  </body>
</html>
"""


def _parser() -> NotificationParser:
    get_settings.cache_clear()
    return NotificationParser(settings=replace(get_settings(), timezone="America/New_York"))


def test_extract_lines_drops_header_and_footer() -> None:
    lines = NotificationParser.extract_lines(NOTIFICATION_HTML)
    assert lines == [
        "Workshop",
        "Wednesday, June 4, 2025, 1:45pm (Eastern)",
        "Bring a laptop.",
        "https://calendly.com/acme/workshop",
        "60mins | GROUP, Room[3]",
    ]


def test_parse_builds_booking_request() -> None:
    request = _parser().parse("New Event: Workshop", NOTIFICATION_HTML)
    assert request.intent is BookingIntent.NEW
    assert request.title == "Workshop"
    assert request.tags == ("GROUP", "Room[3]")
    assert request.start == datetime(2025, 6, 4, 13, 45, tzinfo=EASTERN)
    assert request.end - request.start == timedelta(minutes=60)
    assert request.description == "Bring a laptop.\nhttps://calendly.com/acme/workshop"


def test_cancellation_subject_sets_intent() -> None:
    request = _parser().parse("Canceled: Workshop", NOTIFICATION_HTML)
    assert request.intent is BookingIntent.CANCEL


def test_unknown_subject_is_rejected() -> None:
    with pytest.raises(NotificationParseError):
        _parser().parse("Reminder: Workshop", NOTIFICATION_HTML)


def test_body_without_description_has_empty_description() -> None:
    request = _parser().parse_body(
        ["Standup", "Monday, March 3, 2025, 9:00am (Eastern)", "15mins | Projector"],
        BookingIntent.NEW,
    )
    assert request.description == ""
    assert request.tags == ("Projector",)


def test_short_body_is_rejected() -> None:
    with pytest.raises(NotificationParseError):
        _parser().parse_body(["Standup", "15mins | Projector"], BookingIntent.NEW)


def test_missing_duration_is_rejected() -> None:
    with pytest.raises(NotificationParseError):
        _parser().parse_body(
            ["Standup", "Monday, March 3, 2025, 9:00am (Eastern)", "soon | Projector"],
            BookingIntent.NEW,
        )


@pytest.mark.parametrize(
    ("text", "hour", "minute"),
    [
        ("Monday, March 3, 2025, 12:15am (Eastern)", 0, 15),
        ("Monday, March 3, 2025, 12:30pm (Eastern)", 12, 30),
        ("Monday, March 3, 2025, 9:05PM (Eastern)", 21, 5),
    ],
)
def test_parse_start_handles_meridian(text: str, hour: int, minute: int) -> None:
    start = _parser().parse_start(text)
    assert (start.hour, start.minute) == (hour, minute)
    assert start.tzinfo == EASTERN


@pytest.mark.parametrize(
    "text",
    [
        "Monday, Marchember 3, 2025, 9:00am (Eastern)",
        "Monday, February 30, 2025, 9:00am (Eastern)",
        "Monday, March 3, 2025, nine (Eastern)",
        "tomorrow",
    ],
)
def test_parse_start_rejects_unreadable_times(text: str) -> None:
    with pytest.raises(NotificationParseError):
        _parser().parse_start(text)
