"""Repository layer responsible for all calendar store access."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from multical.domain.models import CalendarEvent, OccupancyMarker, TimeRange, ensure_aware
from multical.domain.tags import enumerate_marker_title, marker_base_from_title
from multical.utils.config import Settings, get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)

_EVENT_COLUMNS = "id, calendar_id, title, description, start_time, end_time, transparency"


class CalendarStoreError(RuntimeError):
    """Raised when the underlying calendar store rejects an operation."""


def _to_db_time(value: datetime, zone: tzinfo) -> str:
    return ensure_aware(value, zone).astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _row_to_event(row: sqlite3.Row) -> CalendarEvent:
    return CalendarEvent(
        event_id=int(row["id"]),
        calendar_id=str(row["calendar_id"]),
        title=str(row["title"]),
        description=str(row["description"]),
        start=_from_db_time(str(row["start_time"])),
        end=_from_db_time(str(row["end_time"])),
        transparent=str(row["transparency"]) == "transparent",
    )


class CalendarRepository:
    """Encapsulates SQLite access so scheduling logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._zone = ZoneInfo(self._settings.timezone)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS CalendarEvents (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        calendar_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT '',
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        transparency TEXT NOT NULL DEFAULT 'opaque'
                            CHECK (transparency IN ('opaque', 'transparent')),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_events_calendar_window
                    ON CalendarEvents(calendar_id, start_time, end_time);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise CalendarStoreError(f"Database initialization failed: {exc}") from exc

    def _fetch_events(self, query: str, params: tuple) -> list[CalendarEvent]:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params)
                return [_row_to_event(row) for row in cursor.fetchall()]
        except sqlite3.Error as exc:
            raise CalendarStoreError(f"Calendar query failed: {exc}") from exc

    def get_event(self, event_id: int) -> Optional[CalendarEvent]:
        events = self._fetch_events(
            f"SELECT {_EVENT_COLUMNS} FROM CalendarEvents WHERE id = ?;",
            (event_id,),
        )
        return events[0] if events else None

    def list_events(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        """Return events overlapping ``[start, end)`` in start order."""
        return self._fetch_events(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM CalendarEvents
            WHERE calendar_id = ?
              AND start_time < ?
              AND end_time > ?
            ORDER BY start_time ASC, id ASC;
            """,
            (calendar_id, _to_db_time(end, self._zone), _to_db_time(start, self._zone)),
        )

    def find_events_by_title(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        """Return events whose trimmed title and exact timing match."""
        candidates = self._fetch_events(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM CalendarEvents
            WHERE calendar_id = ?
              AND start_time = ?
              AND end_time = ?
            ORDER BY id ASC;
            """,
            (calendar_id, _to_db_time(start, self._zone), _to_db_time(end, self._zone)),
        )
        expected = title.strip()
        return [event for event in candidates if event.title.strip() == expected]

    def count_events(self, calendar_id: Optional[str] = None) -> int:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                if calendar_id is None:
                    cursor.execute("SELECT COUNT(*) AS count FROM CalendarEvents;")
                else:
                    cursor.execute(
                        "SELECT COUNT(*) AS count FROM CalendarEvents WHERE calendar_id = ?;",
                        (calendar_id,),
                    )
                return int(cursor.fetchone()["count"])
        except sqlite3.Error as exc:
            raise CalendarStoreError(f"Calendar count failed: {exc}") from exc

    def create_event(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
        description: str = "",
        transparent: bool = False,
    ) -> CalendarEvent:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO CalendarEvents (
                        calendar_id,
                        title,
                        description,
                        start_time,
                        end_time,
                        transparency
                    )
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    (
                        calendar_id,
                        title,
                        description,
                        _to_db_time(start, self._zone),
                        _to_db_time(end, self._zone),
                        "transparent" if transparent else "opaque",
                    ),
                )
                conn.commit()
                event_id = int(cursor.lastrowid)
        except sqlite3.Error as exc:
            raise CalendarStoreError(f"Event creation failed: {exc}") from exc
        logger.debug("Event created | calendar_id=%s | event_id=%s | title=%s", calendar_id, event_id, title)
        return CalendarEvent(
            event_id=event_id,
            calendar_id=calendar_id,
            title=title,
            description=description,
            start=start,
            end=end,
            transparent=transparent,
        )

    def update_event(
        self,
        event_id: int,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> None:
        assignments: list[str] = []
        params: list[str] = []
        if title is not None:
            assignments.append("title = ?")
            params.append(title)
        if description is not None:
            assignments.append("description = ?")
            params.append(description)
        if start is not None:
            assignments.append("start_time = ?")
            params.append(_to_db_time(start, self._zone))
        if end is not None:
            assignments.append("end_time = ?")
            params.append(_to_db_time(end, self._zone))
        if not assignments:
            return
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"UPDATE CalendarEvents SET {', '.join(assignments)} WHERE id = ?;",
                    (*params, event_id),
                )
                conn.commit()
                if cursor.rowcount == 0:
                    raise CalendarStoreError(f"Event {event_id} does not exist")
        except sqlite3.Error as exc:
            raise CalendarStoreError(f"Event update failed: {exc}") from exc

    def delete_event(self, event_id: int) -> None:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM CalendarEvents WHERE id = ?;", (event_id,))
                conn.commit()
                if cursor.rowcount == 0:
                    raise CalendarStoreError(f"Event {event_id} does not exist")
        except sqlite3.Error as exc:
            raise CalendarStoreError(f"Event deletion failed: {exc}") from exc
        logger.debug("Event deleted | event_id=%s", event_id)

    def find_overlapping_markers(
        self,
        calendar_id: str,
        base: str,
        start: datetime,
        end: datetime,
    ) -> list[OccupancyMarker]:
        """Return capacity markers for ``base`` overlapping ``[start, end)``."""
        markers: list[OccupancyMarker] = []
        for event in self.list_events(calendar_id, start, end):
            if marker_base_from_title(event.title) != base:
                continue
            try:
                remaining = int(event.description.strip())
            except ValueError:
                logger.warning(
                    "Ignoring marker with unreadable count | event_id=%s | description=%r",
                    event.event_id,
                    event.description,
                )
                continue
            markers.append(
                OccupancyMarker(
                    event_id=event.event_id,
                    calendar_id=event.calendar_id,
                    base=base,
                    time_range=event.time_range,
                    remaining=remaining,
                )
            )
        return markers

    def create_marker(
        self,
        calendar_id: str,
        base: str,
        start: datetime,
        end: datetime,
        remaining: int,
    ) -> OccupancyMarker:
        event = self.create_event(
            calendar_id=calendar_id,
            title=enumerate_marker_title(base, remaining),
            start=start,
            end=end,
            description=str(remaining),
        )
        return OccupancyMarker(
            event_id=event.event_id,
            calendar_id=calendar_id,
            base=base,
            time_range=TimeRange(start, end),
            remaining=remaining,
        )

    def mutate_marker(self, marker: OccupancyMarker, new_remaining: int) -> OccupancyMarker:
        self.update_event(
            marker.event_id,
            title=enumerate_marker_title(marker.base, new_remaining),
            description=str(new_remaining),
        )
        return OccupancyMarker(
            event_id=marker.event_id,
            calendar_id=marker.calendar_id,
            base=marker.base,
            time_range=marker.time_range,
            remaining=new_remaining,
        )

    def resize_marker(self, marker: OccupancyMarker, time_range: TimeRange) -> OccupancyMarker:
        self.update_event(marker.event_id, start=time_range.start, end=time_range.end)
        return OccupancyMarker(
            event_id=marker.event_id,
            calendar_id=marker.calendar_id,
            base=marker.base,
            time_range=time_range,
            remaining=marker.remaining,
        )

    def delete_marker(self, marker: OccupancyMarker) -> None:
        self.delete_event(marker.event_id)
