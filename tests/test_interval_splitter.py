from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

from multical.domain.models import TimeRange
from multical.services.interval_splitter import split_interval


BASE = datetime(2030, 3, 4, 8, 0, tzinfo=timezone.utc)


def _at(minutes: int) -> datetime:
    return BASE + timedelta(minutes=minutes)


def _range(start: int, end: int) -> TimeRange:
    return TimeRange(_at(start), _at(end))


def _assert_partition(marker: TimeRange, pieces: tuple[TimeRange, ...]) -> None:
    assert pieces[0].start == marker.start
    assert pieces[-1].end == marker.end
    for left, right in zip(pieces, pieces[1:]):
        assert left.end == right.start
    for piece in pieces:
        assert not piece.is_empty


def test_request_inside_marker_cuts_three_pieces() -> None:
    marker = _range(0, 60)
    result = split_interval(marker, _range(30, 45))
    assert result.cuts_start and result.cuts_end
    assert result.pieces == (_range(0, 30), _range(30, 45), _range(45, 60))
    assert result.pieces[result.overlap_index] == _range(30, 45)


def test_three_piece_split_first_piece_ends_at_request_start() -> None:
    # Regression guard: the first piece must stop where the request begins,
    # not where it ends.
    result = split_interval(_range(0, 60), _range(10, 20))
    assert result.pieces[0].end == _at(10)


def test_request_overlapping_marker_tail_cuts_start_only() -> None:
    result = split_interval(_range(0, 60), _range(40, 90))
    assert result.cuts_start and not result.cuts_end
    assert result.pieces == (_range(0, 40), _range(40, 60))
    assert result.pieces[result.overlap_index] == _range(40, 60)


def test_request_overlapping_marker_head_cuts_end_only() -> None:
    result = split_interval(_range(30, 90), _range(0, 45))
    assert result.cuts_end and not result.cuts_start
    assert result.pieces == (_range(30, 45), _range(45, 90))
    assert result.pieces[result.overlap_index] == _range(30, 45)


def test_request_covering_marker_leaves_it_whole() -> None:
    marker = _range(15, 30)
    result = split_interval(marker, _range(0, 60))
    assert not result.cuts_start and not result.cuts_end
    assert result.pieces == (marker,)


def test_equal_boundaries_do_not_cut() -> None:
    marker = _range(0, 60)
    assert split_interval(marker, _range(0, 60)).pieces == (marker,)
    assert split_interval(marker, _range(0, 30)).pieces == (_range(0, 30), _range(30, 60))
    assert split_interval(marker, _range(30, 60)).pieces == (_range(0, 30), _range(30, 60))


def test_disjoint_request_leaves_marker_whole() -> None:
    marker = _range(0, 60)
    assert split_interval(marker, _range(60, 120)).pieces == (marker,)


def test_randomized_pieces_always_tile_the_marker() -> None:
    rng = random.Random(20300304)
    for _ in range(500):
        marker_start = rng.randint(0, 100)
        marker = _range(marker_start, marker_start + rng.randint(1, 100))
        request_start = rng.randint(-20, 220)
        request = _range(request_start, request_start + rng.randint(1, 100))

        result = split_interval(marker, request)

        _assert_partition(marker, result.pieces)
        assert len(result.pieces) == 1 + int(result.cuts_start) + int(result.cuts_end)
        if marker.overlaps(request):
            assert request.contains(result.pieces[result.overlap_index])
