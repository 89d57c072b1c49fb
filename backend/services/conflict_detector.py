"""Cumulative-load conflict detection for a candidate allocation."""

from __future__ import annotations

from typing import Iterable, Optional

from backend.domain.constraints import classify_severity, normalize_load
from backend.domain.models import (
    ConflictType,
    DateRange,
    DetectionResult,
    ResourceAllocation,
    ResourceConflict,
)
from backend.domain.overlap import overlap_range
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def stable_order(allocations: Iterable[ResourceAllocation]) -> list[ResourceAllocation]:
    """Order by start date then id so conflict attribution is reproducible."""
    return sorted(allocations, key=lambda item: (item.start_date, item.allocation_id))


class ConflictDetector:
    """Accumulates overlapping load and flags allocations that break the ceiling.

    Load is accumulated progressively: each overlapping allocation is added
    to the running total and flagged when the running total plus the
    candidate exceeds the ceiling. Which allocations get flagged therefore
    depends on iteration order, which `stable_order` fixes.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    @property
    def ceiling(self) -> float:
        return self._settings.capacity_ceiling_percentage

    def detect(
        self,
        resource_id: str,
        candidate_range: DateRange,
        candidate_percentage: float,
        existing_allocations: Iterable[ResourceAllocation],
        *,
        include_overlaps: bool = False,
    ) -> DetectionResult:
        total_allocation = 0.0
        conflicts: list[ResourceConflict] = []

        for allocation in stable_order(existing_allocations):
            if allocation.resource_id != resource_id:
                continue
            shared = overlap_range(allocation.date_range, candidate_range)
            if shared is None:
                continue

            total_allocation = normalize_load(total_allocation + allocation.allocation_percentage)
            cumulative = normalize_load(total_allocation + candidate_percentage)
            if cumulative > self.ceiling:
                conflict_type = ConflictType.OVERALLOCATION
                severity = classify_severity(cumulative, self._settings)
            elif include_overlaps:
                conflict_type = ConflictType.SCHEDULE_OVERLAP
                severity = None
            else:
                continue

            conflicts.append(
                ResourceConflict(
                    allocation_id=allocation.allocation_id,
                    project_id=allocation.project_id,
                    project_name=allocation.project_name,
                    start_date=allocation.start_date,
                    end_date=allocation.end_date,
                    allocation_percentage=allocation.allocation_percentage,
                    conflict_type=conflict_type,
                    overlap_start=shared.start,
                    overlap_end=shared.end,
                    cumulative_allocation=cumulative,
                    severity=severity,
                )
            )

        logger.debug(
            "Conflict detection | resource_id=%s | total_allocation=%.2f | conflicts=%s",
            resource_id,
            total_allocation,
            len(conflicts),
        )
        return DetectionResult(total_allocation=total_allocation, conflicts=conflicts)
