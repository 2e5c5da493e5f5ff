"""Partitioning of a capacity marker around a request interval."""

from __future__ import annotations

from multical.domain.models import SplitResult, TimeRange


def split_interval(marker: TimeRange, request: TimeRange) -> SplitResult:
    """Cut ``marker`` at whichever request boundaries fall strictly inside it.

    The returned pieces tile the marker exactly, in time order. When neither
    boundary cuts the marker it is returned whole; the caller already knows
    the two overlap, so that case means the request covers the marker.
    """
    cuts_start = marker.start < request.start < marker.end
    cuts_end = marker.start < request.end < marker.end

    if cuts_start and cuts_end:
        pieces = (
            TimeRange(marker.start, request.start),
            TimeRange(request.start, request.end),
            TimeRange(request.end, marker.end),
        )
    elif cuts_start:
        pieces = (
            TimeRange(marker.start, request.start),
            TimeRange(request.start, marker.end),
        )
    elif cuts_end:
        pieces = (
            TimeRange(marker.start, request.end),
            TimeRange(request.end, marker.end),
        )
    else:
        pieces = (marker,)

    return SplitResult(pieces=pieces, cuts_start=cuts_start, cuts_end=cuts_end)
