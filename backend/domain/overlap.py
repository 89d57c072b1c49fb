"""Date range intersection rules shared by detection and reporting."""

from __future__ import annotations

from typing import Optional

from backend.domain.models import DateRange


def overlap_range(first: DateRange, second: DateRange) -> Optional[DateRange]:
    """Return the shared sub-range, or None when the ranges do not overlap.

    Overlap is strict: ranges that only touch on a boundary day (one ends on
    the day the other starts) share no interior and are not an overlap.
    """
    latest_start = max(first.start, second.start)
    earliest_end = min(first.end, second.end)
    if latest_start < earliest_end:
        return DateRange(start=latest_start, end=earliest_end)
    return None


def ranges_overlap(first: DateRange, second: DateRange) -> bool:
    return overlap_range(first, second) is not None
