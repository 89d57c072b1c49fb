"""Admission decisions for candidate allocations."""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Optional

from backend.domain.constraints import (
    normalize_load,
    validate_allocation_percentage,
    validate_date_range,
)
from backend.domain.models import DateRange, ValidationResult
from backend.repository.data_repository import DataRepository
from backend.services.conflict_detector import ConflictDetector
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class AllocationError(Exception):
    """Base exception for allocation workflow failures."""


class AllocationValidationError(AllocationError):
    """Raised when allocation inputs are malformed."""


def build_date_range(start_date: date, end_date: date) -> DateRange:
    try:
        return validate_date_range(start_date, end_date)
    except ValueError as exc:
        raise AllocationValidationError(str(exc)) from exc


class AllocationValidator:
    """Runs conflict detection against the resource's stored commitments."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        detector: Optional[ConflictDetector] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._detector = detector or ConflictDetector(self._settings)

    def validate(
        self,
        resource_id: str,
        date_range: DateRange,
        percentage: float,
        *,
        exclude_allocation_id: Optional[str] = None,
        include_overlaps: bool = False,
        organization_id: Optional[str] = None,
    ) -> ValidationResult:
        """Decide whether `percentage` more load fits on the resource.

        Load from every organization counts toward the ceiling. When
        `organization_id` is given, conflicts owned by other organizations
        are returned without their project details.
        """
        if not resource_id:
            raise AllocationValidationError("resource_id is required")
        try:
            validate_allocation_percentage(percentage, allow_zero=True)
        except ValueError as exc:
            raise AllocationValidationError(str(exc)) from exc
        build_date_range(date_range.start, date_range.end)

        existing = [
            allocation
            for allocation in self._repository.find_overlapping(
                resource_id,
                date_range.start,
                date_range.end,
            )
            if allocation.allocation_id != exclude_allocation_id
        ]
        detection = self._detector.detect(
            resource_id,
            date_range,
            percentage,
            existing,
            include_overlaps=include_overlaps,
        )

        ceiling = self._settings.capacity_ceiling_percentage
        is_valid = normalize_load(detection.total_allocation + percentage) <= ceiling
        available_capacity = normalize_load(max(0.0, ceiling - detection.total_allocation))
        if not is_valid:
            logger.info(
                (
                    "Allocation would exceed capacity | resource_id=%s | range=%s..%s | "
                    "requested=%.2f | total_allocation=%.2f | conflicts=%s"
                ),
                resource_id,
                date_range.start,
                date_range.end,
                percentage,
                detection.total_allocation,
                len(detection.conflicts),
            )
        conflicts = detection.conflicts
        if organization_id is not None:
            owners = {item.allocation_id: item.organization_id for item in existing}
            conflicts = [
                conflict
                if owners.get(conflict.allocation_id) == organization_id
                else replace(conflict, project_id=None, project_name=None)
                for conflict in conflicts
            ]
        return ValidationResult(
            is_valid=is_valid,
            conflicts=conflicts,
            total_allocation=detection.total_allocation,
            available_capacity=available_capacity,
        )

    def check_allocation_conflicts(
        self,
        resource_id: str,
        date_range: DateRange,
        organization_id: Optional[str] = None,
    ) -> ValidationResult:
        """Probe the window without adding load; bookings are listed as overlaps."""
        return self.validate(
            resource_id,
            date_range,
            0.0,
            include_overlaps=True,
            organization_id=organization_id,
        )
