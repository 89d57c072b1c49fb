"""Domain-level validation rules for allocation inputs."""

from __future__ import annotations

from datetime import date

from backend.domain.models import ConflictSeverity, DateRange
from backend.utils.config import Settings


MAX_ALLOCATION_PERCENTAGE = 100.0
LOAD_PRECISION = 6


def validate_allocation_percentage(percentage: float, *, allow_zero: bool = False) -> None:
    if allow_zero:
        if not 0.0 <= percentage <= MAX_ALLOCATION_PERCENTAGE:
            raise ValueError("allocation_percentage must be between 0 and 100")
        return
    if not 0.0 < percentage <= MAX_ALLOCATION_PERCENTAGE:
        raise ValueError("allocation_percentage must be in (0, 100]")


def validate_date_range(start_date: date, end_date: date) -> DateRange:
    if start_date > end_date:
        raise ValueError("start_date must be on or before end_date")
    return DateRange(start=start_date, end=end_date)


def validate_hours_per_day(hours_per_day: float) -> None:
    if not 0.0 < hours_per_day <= 24.0:
        raise ValueError("hours_per_day must be in (0, 24]")


def percentage_from_hours(hours_per_day: float, standard_hours_per_day: float) -> float:
    """Convert a daily hour commitment into a share of the standard working day."""
    validate_hours_per_day(hours_per_day)
    return round(hours_per_day / standard_hours_per_day * 100.0, 4)


def normalize_load(value: float) -> float:
    """Round a summed load so float noise never decides an admission."""
    return round(value, LOAD_PRECISION)


def classify_severity(total_allocation: float, settings: Settings) -> ConflictSeverity:
    if total_allocation <= settings.severity_low_max:
        return ConflictSeverity.LOW
    if total_allocation <= settings.severity_medium_max:
        return ConflictSeverity.MEDIUM
    if total_allocation <= settings.severity_high_max:
        return ConflictSeverity.HIGH
    return ConflictSeverity.CRITICAL
