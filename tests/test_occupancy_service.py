from __future__ import annotations

import random
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from multical.domain.rules import SchedulingRules
from multical.repository.calendar_repository import CalendarRepository
from multical.services.occupancy_service import OccupancyService
from multical.utils.config import get_settings


CALENDAR = "c_test"
BASE = datetime(2030, 5, 6, 10, 0, tzinfo=timezone.utc)


def _at(minutes: int) -> datetime:
    return BASE + timedelta(minutes=minutes)


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename)


def _build_service(tmp_path, capacity: int = 3) -> tuple[OccupancyService, CalendarRepository]:
    settings = _build_test_settings(tmp_path, "occupancy.db")
    repository = CalendarRepository(settings)
    repository.initialize_database()
    rules = SchedulingRules.from_mapping(
        {"occupancy_rules": {"Base": capacity}, "calendar_tree": {"Base": CALENDAR}}
    )
    return OccupancyService(repository, rules, settings=settings), repository


def _markers(repository: CalendarRepository, start: int = -600, end: int = 600):
    return repository.find_overlapping_markers(CALENDAR, "Base", _at(start), _at(end))


def _remaining_at(repository: CalendarRepository, capacity: int, minute: int) -> int:
    covering = [
        marker
        for marker in _markers(repository)
        if marker.time_range.start <= _at(minute) < marker.time_range.end
    ]
    assert len(covering) <= 1, "markers for one base must never overlap"
    return covering[0].remaining if covering else capacity


def test_first_reservation_creates_marker(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.adjust(CALENDAR, "Base[2]", _at(0), _at(60), False)

    markers = _markers(repository)
    assert len(markers) == 1
    assert markers[0].remaining == 1
    event = repository.get_event(markers[0].event_id)
    assert event.title == "Base[1]"
    assert event.description == "1"


def test_nested_reservation_then_cancel_restores_capacity(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.adjust(CALENDAR, "Base[2]", _at(0), _at(60), False)
    service.adjust(CALENDAR, "Base[1]", _at(30), _at(45), False)

    markers = _markers(repository)
    assert [(m.time_range.start, m.time_range.end, m.remaining) for m in markers] == [
        (_at(0), _at(30), 1),
        (_at(30), _at(45), 0),
        (_at(45), _at(60), 1),
    ]
    assert repository.get_event(markers[1].event_id).title == "Base[0]"

    service.adjust(CALENDAR, "Base[2]", _at(0), _at(60), True)

    markers = _markers(repository)
    assert len(markers) == 1
    assert markers[0].time_range.start == _at(30)
    assert markers[0].time_range.end == _at(45)
    assert markers[0].remaining == 2
    assert repository.get_event(markers[0].event_id).title == "Base[2], Base[1]"

    service.adjust(CALENDAR, "Base[1]", _at(30), _at(45), True)
    assert _markers(repository) == []


def test_reservation_spanning_marker_and_free_time(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.adjust(CALENDAR, "Base[1]", _at(30), _at(60), False)
    service.adjust(CALENDAR, "Base[1]", _at(0), _at(90), False)

    assert _remaining_at(repository, 3, 10) == 2
    assert _remaining_at(repository, 3, 45) == 1
    assert _remaining_at(repository, 3, 75) == 2
    assert _remaining_at(repository, 3, 95) == 3


def test_overbooking_clamps_to_zero(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.adjust(CALENDAR, "Base[5]", _at(0), _at(60), False)
    assert [m.remaining for m in _markers(repository)] == [0]

    service.adjust(CALENDAR, "Base[2]", _at(0), _at(60), False)
    assert [m.remaining for m in _markers(repository)] == [0]


def test_over_release_deletes_marker(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.adjust(CALENDAR, "Base[1]", _at(0), _at(60), False)
    service.adjust(CALENDAR, "Base[3]", _at(0), _at(60), True)
    assert _markers(repository) == []


def test_cancellation_on_free_time_is_noop(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.adjust(CALENDAR, "Base[1]", _at(0), _at(60), True)
    assert repository.count_events(CALENDAR) == 0


def test_zero_request_creates_no_marker(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.adjust(CALENDAR, "Base[0]", _at(0), _at(60), False)
    assert repository.count_events(CALENDAR) == 0


def test_zero_length_range_is_ignored(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.adjust(CALENDAR, "Base[1]", _at(0), _at(0), False)
    service.adjust(CALENDAR, "Base[1]", _at(60), _at(0), False)
    assert repository.count_events(CALENDAR) == 0


@pytest.mark.parametrize("keyword", ["Other[1]", "Base", "Base[]"])
def test_unmanaged_keywords_are_ignored(tmp_path, keyword: str) -> None:
    service, repository = _build_service(tmp_path)
    service.adjust(CALENDAR, keyword, _at(0), _at(60), False)
    assert repository.count_events(CALENDAR) == 0


def test_randomized_reserve_cancel_conserves_capacity(tmp_path) -> None:
    capacity = 4
    service, repository = _build_service(tmp_path, capacity=capacity)
    rng = random.Random(7)
    active: list[tuple[int, int, int]] = []

    for _ in range(40):
        if active and rng.random() < 0.4:
            start, end, amount = active.pop(rng.randrange(len(active)))
            service.adjust(CALENDAR, f"Base[{amount}]", _at(start), _at(end), True)
        else:
            start = rng.randrange(0, 24) * 15
            end = start + rng.randrange(1, 8) * 15
            amount = rng.randint(1, 2)
            reserved = [
                held
                for held_start, held_end, held in active
                if held_start < end and start < held_end
            ]
            # Only book where capacity is left everywhere, so clamping never hides state.
            if sum(reserved) + amount > capacity:
                continue
            service.adjust(CALENDAR, f"Base[{amount}]", _at(start), _at(end), False)
            active.append((start, end, amount))

        for minute in range(0, 480, 15):
            reserved = sum(
                amount for start, end, amount in active if start <= minute < end
            )
            remaining = _remaining_at(repository, capacity, minute)
            assert 0 <= remaining <= capacity
            assert remaining + reserved == capacity


def test_naive_times_are_read_in_the_configured_timezone(tmp_path) -> None:
    settings = replace(_build_test_settings(tmp_path, "naive.db"), timezone="America/New_York")
    repository = CalendarRepository(settings)
    repository.initialize_database()
    rules = SchedulingRules.from_mapping(
        {"occupancy_rules": {"Base": 3}, "calendar_tree": {"Base": CALENDAR}}
    )
    service = OccupancyService(repository, rules, settings=settings)

    service.adjust(CALENDAR, "Base[1]", _at(0), _at(60), False)
    # 10:30 UTC is 06:30 in New York during daylight saving time.
    service.adjust(CALENDAR, "Base[1]", datetime(2030, 5, 6, 6, 30), datetime(2030, 5, 6, 7, 30), False)

    markers = _markers(repository)
    assert [marker.remaining for marker in markers] == [2, 1, 2]
    assert [marker.time_range.start for marker in markers] == [_at(0), _at(30), _at(60)]
    assert markers[-1].time_range.end == _at(90)
