from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from multical.domain.models import BookingIntent, BookingRequest, TagError, TagStatus
from multical.domain.rules import SchedulingRules
from multical.repository.calendar_repository import CalendarRepository, CalendarStoreError
from multical.services.enrollment_service import EnrollmentService
from multical.services.keyword_resolver import KeywordResolver
from multical.services.occupancy_service import OccupancyService
from multical.services.reservation_service import ReservationService
from multical.services.schedule_service import ScheduleService
from multical.utils.config import get_settings


START = datetime(2030, 2, 11, 15, 0, tzinfo=timezone.utc)
END = START + timedelta(minutes=30)
PAGE = "https://calendly.com/acme/workshop"

RULES = {
    "occupancy_rules": {"Room": 4, "Desk": 2},
    "keyword_tree": {"Desk": "Room"},
    "calendar_tree": {
        "Room": "c_rooms",
        "Projector": "c_gear",
        "Workshop": "c_groups",
        "Seminar": "c_groups",
    },
    "enrollment_rules": {"Workshop": [60, 2, 3]},
}


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename)


def _build_service(tmp_path) -> tuple[ScheduleService, CalendarRepository]:
    settings = _build_test_settings(tmp_path, "schedule.db")
    repository = CalendarRepository(settings)
    repository.initialize_database()
    rules = SchedulingRules.from_mapping(RULES)
    resolver = KeywordResolver(rules, settings=settings)
    occupancy = OccupancyService(repository, rules, settings=settings)
    reservations = ReservationService(repository, resolver, occupancy, settings=settings)
    enrollment = EnrollmentService(repository, resolver, occupancy, reservations, rules, settings=settings)
    return ScheduleService(resolver, reservations, enrollment, settings=settings), repository


def _request(title: str, intent: BookingIntent, *tags: str, description: str = "") -> BookingRequest:
    return BookingRequest(
        title=title,
        intent=intent,
        tags=tags,
        start=START,
        end=END,
        description=description,
    )


def _titles(repository: CalendarRepository, calendar_id: str) -> list[str]:
    return [event.title for event in repository.list_events(calendar_id, START, END)]


def test_booking_and_cancellation_across_calendars(tmp_path) -> None:
    service, repository = _build_service(tmp_path)

    result = service.handle(_request("Standup", BookingIntent.NEW, "Desk[1]", "Projector"))
    assert result.success
    assert [outcome.status for outcome in result.outcomes] == [TagStatus.APPLIED, TagStatus.APPLIED]
    assert sorted(_titles(repository, "c_rooms")) == ["Desk[1]", "Standup Using: Desk, Room"]
    assert _titles(repository, "c_gear") == ["Standup Using: Projector"]

    display = repository.find_events_by_title("c_rooms", "Standup Using: Desk, Room", START, END)
    assert display[0].transparent
    assert not repository.list_events("c_gear", START, END)[0].transparent

    result = service.handle(_request("Standup", BookingIntent.CANCEL, "Desk[1]", "Projector"))
    assert result.success
    assert repository.count_events() == 0


def test_unresolved_tag_is_skipped_without_failing(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    result = service.handle(_request("Standup", BookingIntent.NEW, "Mystery", "Projector"))
    assert result.success
    assert result.outcomes[0].status is TagStatus.SKIPPED
    assert result.outcomes[0].error is TagError.UNRESOLVED_TAG
    assert repository.count_events() == 1


def test_cancel_without_matching_event_fails(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    result = service.handle(_request("Standup", BookingIntent.CANCEL, "Projector"))
    assert not result.success
    assert result.outcomes[0].error is TagError.NO_MATCH


def test_duplicate_events_cancel_the_first(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.handle(_request("Standup", BookingIntent.NEW, "Projector"))
    service.handle(_request("Standup", BookingIntent.NEW, "Projector"))

    result = service.handle(_request("Standup", BookingIntent.CANCEL, "Projector"))
    assert result.success
    assert result.outcomes[0].error is TagError.AMBIGUOUS_MATCH
    assert repository.count_events("c_gear") == 1


def test_suffix_without_capacity_rule_books_plain_event(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    result = service.handle(_request("Standup", BookingIntent.NEW, "Projector[1]"))
    assert result.success
    assert result.outcomes[0].error is TagError.NO_CAPACITY_RULE
    events = repository.list_events("c_gear", START, END)
    assert [event.title for event in events] == ["Standup Using: Projector"]
    assert not events[0].transparent


def test_store_failure_marks_only_that_tag(tmp_path, monkeypatch) -> None:
    service, repository = _build_service(tmp_path)
    original_create = repository.create_event

    def flaky_create(calendar_id, *args, **kwargs):
        if calendar_id == "c_gear":
            raise CalendarStoreError("calendar unavailable")
        return original_create(calendar_id, *args, **kwargs)

    monkeypatch.setattr(repository, "create_event", flaky_create)

    result = service.handle(_request("Standup", BookingIntent.NEW, "Projector", "Room"))
    assert not result.success
    assert result.outcomes[0].status is TagStatus.FAILED
    assert result.outcomes[0].error is TagError.COLLABORATOR_FAILURE
    assert result.outcomes[1].status is TagStatus.APPLIED
    assert _titles(repository, "c_rooms") == ["Standup Using: Room"]


def test_group_booking_holds_resources_until_last_cancellation(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    description = f"Bring a laptop.\n{PAGE}"

    first = service.handle(
        _request("Workshop", BookingIntent.NEW, "GROUP", "Room[3]", description=description)
    )
    assert first.success
    assert [outcome.detail for outcome in first.outcomes][0] == "created"
    assert first.outcomes[1].status is TagStatus.APPLIED
    assert _titles(repository, "c_groups") == ["Tentative: Workshop"]
    assert sorted(_titles(repository, "c_rooms")) == ["Room[1]", "Workshop Using: Room"]

    second = service.handle(
        _request("Workshop", BookingIntent.NEW, "GROUP", "Room[3]", description=description)
    )
    assert second.success
    assert second.outcomes[0].detail == "updated"
    assert second.outcomes[1].status is TagStatus.SKIPPED
    assert _titles(repository, "c_groups") == ["Confirmed: Workshop"]
    assert repository.count_events("c_rooms") == 2

    cancel = service.handle(_request("Workshop", BookingIntent.CANCEL, "GROUP", "Room[3]"))
    assert cancel.success
    assert cancel.outcomes[0].detail == "updated"
    assert _titles(repository, "c_groups") == ["Tentative: Workshop"]
    assert repository.count_events("c_rooms") == 2

    last = service.handle(_request("Workshop", BookingIntent.CANCEL, "GROUP", "Room[3]"))
    assert last.success
    assert last.outcomes[0].detail == "deleted"
    assert repository.count_events() == 0


def test_group_cancel_without_record_fails(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    result = service.handle(_request("Workshop", BookingIntent.CANCEL, "GROUP", "Room[3]"))
    assert not result.success
    assert result.outcomes[0].error is TagError.NO_MATCH


def test_group_title_without_calendar_fails(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    result = service.handle(_request("Meetup", BookingIntent.NEW, "GROUP", "Room[3]"))
    assert not result.success
    assert result.outcomes[0].error is TagError.UNRESOLVED_TAG
    assert repository.count_events() == 0


def test_group_title_without_enrollment_rule_fails(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    result = service.handle(
        _request("Seminar", BookingIntent.NEW, "GROUP", "Room[3]", description=PAGE)
    )
    assert not result.success
    assert result.outcomes[0].error is TagError.NO_ENROLLMENT_RULE
    assert repository.count_events() == 0


def test_naive_request_times_use_the_configured_timezone(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    zone = ZoneInfo(get_settings().timezone)
    wall_start = START.astimezone(zone).replace(tzinfo=None)
    wall_end = END.astimezone(zone).replace(tzinfo=None)

    assert service.handle(_request("Standup", BookingIntent.NEW, "Desk[1]")).success
    naive = BookingRequest(
        title="Review",
        intent=BookingIntent.NEW,
        tags=("Desk[1]",),
        start=wall_start,
        end=wall_end,
    )
    assert service.handle(naive).success
    markers = repository.find_overlapping_markers("c_rooms", "Desk", START, END)
    assert [marker.remaining for marker in markers] == [0]

    assert service.handle(replace(naive, intent=BookingIntent.CANCEL)).success
    markers = repository.find_overlapping_markers("c_rooms", "Desk", START, END)
    assert [marker.remaining for marker in markers] == [1]
