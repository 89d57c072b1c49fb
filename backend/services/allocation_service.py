"""Create, update and remove allocations behind the capacity check."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from threading import Lock, RLock
from typing import Iterator, Optional
from weakref import WeakValueDictionary

from backend.domain.constraints import (
    percentage_from_hours,
    validate_allocation_percentage,
    validate_hours_per_day,
)
from backend.domain.models import (
    AllocationPatch,
    AllocationRequest,
    CapacityEntry,
    DateRange,
    ResourceAllocation,
    ResourceConflict,
    ValidationResult,
)
from backend.repository.data_repository import DataRepository, new_allocation_id
from backend.services.utilization_service import UtilizationAggregator
from backend.services.validation_service import (
    AllocationError,
    AllocationValidationError,
    AllocationValidator,
    build_date_range,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class AllocationNotFoundError(AllocationError):
    """Raised when an allocation id does not exist for the caller."""


class AllocationConflictError(AllocationError):
    """Raised when a write would push a resource above its capacity ceiling."""

    def __init__(
        self,
        message: str,
        result: ValidationResult,
        suggestions: Optional[list[CapacityEntry]] = None,
    ) -> None:
        super().__init__(message)
        self.result = result
        self.suggestions = suggestions or []

    @property
    def conflicts(self) -> list[ResourceConflict]:
        return self.result.conflicts

    @property
    def conflict_count(self) -> int:
        return len(self.result.conflicts)

    @property
    def total_allocation(self) -> float:
        return self.result.total_allocation

    @property
    def available_capacity(self) -> float:
        return self.result.available_capacity


class ResourceLockRegistry:
    """Hands out one re-entrant lock per resource id.

    Entries are weak: a lock is dropped once no caller holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: "WeakValueDictionary[str, RLock]" = WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def _lock_for(self, resource_id: str) -> RLock:
        with self._guard:
            lock = self._locks.get(resource_id)
            if lock is None:
                lock = RLock()
                self._locks[resource_id] = lock
            return lock

    @contextmanager
    def hold(self, resource_id: str) -> Iterator[None]:
        lock = self._lock_for(resource_id)
        with lock:
            yield


def _require(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise AllocationValidationError(f"{field_name} is required")
    return value


def _checked_percentage(percentage: float) -> float:
    try:
        validate_allocation_percentage(percentage)
    except ValueError as exc:
        raise AllocationValidationError(str(exc)) from exc
    return float(percentage)


def _checked_hours(hours_per_day: float) -> float:
    try:
        validate_hours_per_day(hours_per_day)
    except ValueError as exc:
        raise AllocationValidationError(str(exc)) from exc
    return float(hours_per_day)


class AllocationManager:
    """Single-row writes; validate and persist run under a per-resource lock.

    Two requests for the same resource are serialised, so neither can pass
    validation against a state the other is about to change. The lock is
    process-local: writers in separate processes, or writes that bypass this
    service, are not checked against each other.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        validator: Optional[AllocationValidator] = None,
        locks: Optional[ResourceLockRegistry] = None,
        aggregator: Optional[UtilizationAggregator] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._validator = validator or AllocationValidator(
            repository=self._repository,
            settings=self._settings,
        )
        self._locks = locks or ResourceLockRegistry()
        self._aggregator = aggregator or UtilizationAggregator(
            repository=self._repository,
            settings=self._settings,
        )

    def _suggestions(
        self,
        organization_id: str,
        resource_id: str,
        date_range: DateRange,
        percentage: float,
    ) -> list[CapacityEntry]:
        return self._aggregator.suggest_resources(
            organization_id,
            date_range,
            percentage,
            exclude_resource_id=resource_id,
        )

    def _resolve_percentage(self, request: AllocationRequest) -> float:
        if request.allocation_percentage is not None:
            return _checked_percentage(request.allocation_percentage)
        if request.hours_per_day is None:
            raise AllocationValidationError(
                "allocation_percentage or hours_per_day is required"
            )
        try:
            derived = percentage_from_hours(
                request.hours_per_day,
                self._settings.default_hours_per_day,
            )
        except ValueError as exc:
            raise AllocationValidationError(str(exc)) from exc
        return _checked_percentage(derived)

    def get(self, allocation_id: str, organization_id: Optional[str] = None) -> ResourceAllocation:
        allocation = self._repository.find_by_id(allocation_id)
        if allocation is None or (
            organization_id is not None and allocation.organization_id != organization_id
        ):
            raise AllocationNotFoundError(f"allocation {allocation_id} not found")
        return allocation

    def allocate(self, request: AllocationRequest) -> ResourceAllocation:
        resource_id = _require(request.resource_id, "resource_id")
        project_id = _require(request.project_id, "project_id")
        organization_id = _require(request.organization_id, "organization_id")
        date_range = build_date_range(request.start_date, request.end_date)
        percentage = self._resolve_percentage(request)
        hours_per_day = (
            _checked_hours(request.hours_per_day)
            if request.hours_per_day is not None
            else self._settings.default_hours_per_day
        )

        with self._locks.hold(resource_id):
            result = self._validator.validate(
                resource_id,
                date_range,
                percentage,
                organization_id=organization_id,
            )
            if not result.is_valid:
                logger.warning(
                    "Allocation rejected | resource_id=%s | project_id=%s | conflicts=%s",
                    resource_id,
                    project_id,
                    len(result.conflicts),
                )
                raise AllocationConflictError(
                    (
                        f"Cannot create allocation: {len(result.conflicts)} conflicting "
                        f"allocation(s); resource is {result.total_allocation:g}% allocated "
                        f"with {result.available_capacity:g}% available"
                    ),
                    result,
                    self._suggestions(organization_id, resource_id, date_range, percentage),
                )

            saved = self._repository.save(
                ResourceAllocation(
                    allocation_id=new_allocation_id(),
                    resource_id=resource_id,
                    project_id=project_id,
                    task_id=request.task_id,
                    start_date=date_range.start,
                    end_date=date_range.end,
                    allocation_percentage=percentage,
                    hours_per_day=hours_per_day,
                    organization_id=organization_id,
                )
            )

        logger.info(
            "Allocation created | allocation_id=%s | resource_id=%s | project_id=%s | %s..%s | %.2f%%",
            saved.allocation_id,
            saved.resource_id,
            saved.project_id,
            saved.start_date,
            saved.end_date,
            saved.allocation_percentage,
        )
        return saved

    def update(
        self,
        allocation_id: str,
        patch: AllocationPatch,
        organization_id: Optional[str] = None,
    ) -> ResourceAllocation:
        if patch.allocation_percentage is not None:
            _checked_percentage(patch.allocation_percentage)
        if patch.hours_per_day is not None:
            _checked_hours(patch.hours_per_day)
        if patch.project_id is not None:
            _require(patch.project_id, "project_id")
        if patch.clear_task_id and patch.task_id is not None:
            raise AllocationValidationError("task_id cannot be both set and cleared")
        if patch.start_date is not None and patch.end_date is not None:
            build_date_range(patch.start_date, patch.end_date)

        current = self.get(allocation_id, organization_id)
        with self._locks.hold(current.resource_id):
            # Re-read under the lock; the row may have changed or gone.
            current = self.get(allocation_id, organization_id)
            merged = replace(
                current,
                start_date=patch.start_date or current.start_date,
                end_date=patch.end_date or current.end_date,
                allocation_percentage=(
                    patch.allocation_percentage
                    if patch.allocation_percentage is not None
                    else current.allocation_percentage
                ),
                hours_per_day=(
                    patch.hours_per_day
                    if patch.hours_per_day is not None
                    else current.hours_per_day
                ),
                project_id=patch.project_id or current.project_id,
                task_id=(
                    None
                    if patch.clear_task_id
                    else patch.task_id if patch.task_id is not None else current.task_id
                ),
            )
            date_range = build_date_range(merged.start_date, merged.end_date)

            if patch.touches_capacity():
                result = self._validator.validate(
                    merged.resource_id,
                    date_range,
                    merged.allocation_percentage,
                    exclude_allocation_id=allocation_id,
                    organization_id=merged.organization_id,
                )
                if not result.is_valid:
                    logger.warning(
                        "Allocation update rejected | allocation_id=%s | resource_id=%s | conflicts=%s",
                        allocation_id,
                        merged.resource_id,
                        len(result.conflicts),
                    )
                    raise AllocationConflictError(
                        (
                            f"Update would create {len(result.conflicts)} conflicting "
                            f"allocation(s); resource is {result.total_allocation:g}% allocated "
                            f"elsewhere with {result.available_capacity:g}% available"
                        ),
                        result,
                        self._suggestions(
                            merged.organization_id,
                            merged.resource_id,
                            date_range,
                            merged.allocation_percentage,
                        ),
                    )

            saved = self._repository.save(merged)

        logger.info(
            "Allocation updated | allocation_id=%s | resource_id=%s | %s..%s | %.2f%%",
            saved.allocation_id,
            saved.resource_id,
            saved.start_date,
            saved.end_date,
            saved.allocation_percentage,
        )
        return saved

    def remove(self, allocation_id: str, organization_id: Optional[str] = None) -> None:
        allocation = self.get(allocation_id, organization_id)
        self._repository.delete(allocation.allocation_id)
        logger.info(
            "Allocation removed | allocation_id=%s | resource_id=%s",
            allocation.allocation_id,
            allocation.resource_id,
        )
