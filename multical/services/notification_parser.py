"""Turns booking-notification e-mails into booking requests."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bs4 import BeautifulSoup

from multical.domain.models import BookingIntent, BookingRequest
from multical.utils.config import Settings, get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)

_MONTHS = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)
_DURATION = re.compile(r"(\d+)")
_CLOCK = re.compile(r"(\d{1,2}):(\d{2})\s*(am|pm)", re.IGNORECASE)
_MIN_BODY_LINES = 3


class NotificationParseError(ValueError):
    """Raised when a notification does not carry a readable booking."""


class NotificationParser:
    """Reads the booking tool's notification layout.

    After flattening, the body lines are:

        0      event title
        1      start, e.g. "Wednesday, June 4, 2025, 1:45pm (Eastern)"
        2..N-1 free-text description (booking link last for group events)
        N      "<duration>mins | Tag_1, Tag_2[3]"
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        try:
            self._timezone = ZoneInfo(self._settings.timezone)
        except ZoneInfoNotFoundError as exc:
            raise NotificationParseError(f"Unknown timezone {self._settings.timezone!r}") from exc

    def parse_intent(self, subject: str) -> BookingIntent:
        prefix = subject.strip()[:3].upper()
        if prefix == self._settings.notification_new_subject:
            return BookingIntent.NEW
        if prefix == self._settings.notification_cancel_subject:
            return BookingIntent.CANCEL
        raise NotificationParseError(f"Unsupported notification subject: {subject!r}")

    @staticmethod
    def extract_lines(html: str) -> list[str]:
        """Flatten the HTML body to the lines between the header and the tag line."""
        soup = BeautifulSoup(html, "html.parser")
        for element in soup(["style", "script", "head"]):
            title = element.find("title") if element.name == "head" else None
            if title is not None:
                # The <title> text is the first body line and is dropped below.
                element.replace_with(title.get_text() + "\n")
            else:
                element.decompose()
        for paragraph in soup.find_all(["p", "br", "div", "tr", "li"]):
            paragraph.append("\n")

        lines = [line.strip() for line in soup.get_text().split("\n")]
        lines = [line for line in lines if line]

        cutoff = len(lines)
        for index in range(len(lines) - 1, -1, -1):
            if "|" in lines[index]:
                cutoff = index + 1
                break
        return lines[1:cutoff]

    def parse_body(self, lines: list[str], intent: BookingIntent) -> BookingRequest:
        if len(lines) < _MIN_BODY_LINES:
            raise NotificationParseError(
                f"Notification body too short: {len(lines)} lines"
            )

        duration_part, _, tag_part = lines[-1].partition("|")
        duration_match = _DURATION.search(duration_part)
        if duration_match is None:
            raise NotificationParseError(f"No duration found in {lines[-1]!r}")
        tags = tuple(tag for tag in tag_part.replace(" ", "").split(",") if tag)

        start = self.parse_start(lines[1])
        end = start + timedelta(minutes=int(duration_match.group(1)))
        return BookingRequest(
            title=lines[0],
            intent=intent,
            tags=tags,
            start=start,
            end=end,
            description="\n".join(lines[2:-1]),
        )

    def parse_start(self, text: str) -> datetime:
        """Parse ``Wednesday, June 4, 2025, 1:45pm (Eastern)`` in the configured timezone."""
        parts = text.split()
        if len(parts) < 5:
            raise NotificationParseError(f"Unreadable start time: {text!r}")
        month_name = parts[1].strip(",").lower()
        if month_name not in _MONTHS:
            raise NotificationParseError(f"Unknown month in start time: {text!r}")
        clock = _CLOCK.match(parts[4])
        if clock is None:
            raise NotificationParseError(f"Unreadable clock time: {text!r}")

        hour, minute, meridian = int(clock.group(1)), int(clock.group(2)), clock.group(3).lower()
        if meridian == "pm" and hour != 12:
            hour += 12
        if meridian == "am" and hour == 12:
            hour = 0
        try:
            return datetime(
                year=int(parts[3].strip(",")),
                month=_MONTHS.index(month_name) + 1,
                day=int(parts[2].strip(",")),
                hour=hour,
                minute=minute,
                tzinfo=self._timezone,
            )
        except ValueError as exc:
            raise NotificationParseError(f"Invalid start time {text!r}: {exc}") from exc

    def parse(self, subject: str, html: str) -> BookingRequest:
        intent = self.parse_intent(subject)
        lines = self.extract_lines(html)
        request = self.parse_body(lines, intent)
        logger.info(
            "Notification parsed | title=%s | intent=%s | tags=%s",
            request.title,
            intent.value,
            list(request.tags),
        )
        return request
