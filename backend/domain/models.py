"""Domain models for resource allocation and capacity reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class ConflictType(str, Enum):
    OVERALLOCATION = "OVERALLOCATION"
    SCHEDULE_OVERLAP = "SCHEDULE_OVERLAP"


class ConflictSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar range."""

    start: date
    end: date


@dataclass(frozen=True)
class CallerContext:
    organization_id: str
    caller_id: str


@dataclass(frozen=True)
class ResourceAllocation:
    allocation_id: str
    resource_id: str
    project_id: str
    start_date: date
    end_date: date
    allocation_percentage: float
    hours_per_day: float
    organization_id: str
    task_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    project_name: Optional[str] = None

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start_date, end=self.end_date)


@dataclass(frozen=True)
class AllocationRequest:
    resource_id: str
    project_id: str
    start_date: date
    end_date: date
    organization_id: str
    allocation_percentage: Optional[float] = None
    hours_per_day: Optional[float] = None
    task_id: Optional[str] = None


@dataclass(frozen=True)
class AllocationPatch:
    """Partial update; `None` leaves the stored value untouched.

    `task_id` is the one optional column; `clear_task_id` removes it.
    """

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    allocation_percentage: Optional[float] = None
    hours_per_day: Optional[float] = None
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    clear_task_id: bool = False

    def touches_capacity(self) -> bool:
        return (
            self.start_date is not None
            or self.end_date is not None
            or self.allocation_percentage is not None
        )


@dataclass(frozen=True)
class ResourceConflict:
    allocation_id: str
    project_id: Optional[str]
    project_name: Optional[str]
    start_date: date
    end_date: date
    allocation_percentage: float
    conflict_type: ConflictType
    overlap_start: date
    overlap_end: date
    cumulative_allocation: float
    severity: Optional[ConflictSeverity] = None


@dataclass(frozen=True)
class DetectionResult:
    total_allocation: float
    conflicts: list[ResourceConflict]


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    conflicts: list[ResourceConflict]
    total_allocation: float
    available_capacity: float


@dataclass(frozen=True)
class ProjectContribution:
    project_id: str
    project_name: Optional[str]
    allocation_percentage: float


@dataclass(frozen=True)
class ResourceUtilization:
    resource_id: str
    total_allocation: float
    available_capacity: float
    allocation_count: int
    projects: list[ProjectContribution]
    date_range: Optional[DateRange] = None


@dataclass(frozen=True)
class CapacityEntry:
    resource_id: str
    total_allocation: float
    available_capacity: float
    allocation_count: int


@dataclass(frozen=True)
class CrossProjectEntry:
    resource_id: str
    cumulative_allocation: float
    projects: list[ProjectContribution]
    allocations: list[ResourceAllocation] = field(default_factory=list)


@dataclass(frozen=True)
class OverallocatedDay:
    resource_id: str
    day: date
    total_allocation: float
    severity: ConflictSeverity
    allocation_ids: list[str]
