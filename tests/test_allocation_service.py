from __future__ import annotations

import gc
import threading
import time
from dataclasses import replace
from datetime import date

import pytest

from backend.domain.models import AllocationPatch, AllocationRequest
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import (
    AllocationConflictError,
    AllocationManager,
    AllocationNotFoundError,
    ResourceLockRegistry,
)
from backend.services.validation_service import AllocationValidationError
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename)


def _build_manager(tmp_path, filename: str, repository_cls=DataRepository):
    settings = _build_test_settings(tmp_path, filename)
    repository = repository_cls(settings)
    repository.initialize_database()
    return AllocationManager(repository=repository, settings=settings), repository


def _request(
    start: str,
    end: str,
    percentage: float | None,
    *,
    resource_id: str = "R1",
    project_id: str = "P1",
    organization_id: str = "org-1",
    hours_per_day: float | None = None,
) -> AllocationRequest:
    return AllocationRequest(
        resource_id=resource_id,
        project_id=project_id,
        start_date=date.fromisoformat(start),
        end_date=date.fromisoformat(end),
        organization_id=organization_id,
        allocation_percentage=percentage,
        hours_per_day=hours_per_day,
    )


def test_allocation_scenario_end_to_end(tmp_path):
    manager, repository = _build_manager(tmp_path, "scenario.db")
    repository.upsert_project("P1", "Website Relaunch", "org-1")

    first = manager.allocate(_request("2025-04-01", "2025-04-15", 70.0))
    assert first.hours_per_day == 8.0
    assert first.project_name == "Website Relaunch"

    with pytest.raises(AllocationConflictError) as excinfo:
        manager.allocate(_request("2025-04-10", "2025-04-20", 40.0, project_id="P2"))
    error = excinfo.value
    assert error.conflict_count == 1
    assert error.conflicts[0].project_id == "P1"
    assert error.conflicts[0].project_name == "Website Relaunch"
    assert error.total_allocation == 70.0
    assert error.available_capacity == 30.0

    third = manager.allocate(_request("2025-04-16", "2025-04-20", 40.0, project_id="P3"))
    assert third.project_id == "P3"
    assert repository.count_allocations() == 2


def test_percentage_derived_from_hours(tmp_path):
    manager, _ = _build_manager(tmp_path, "hours.db")
    allocation = manager.allocate(_request("2025-04-01", "2025-04-15", None, hours_per_day=4.0))
    assert allocation.allocation_percentage == 50.0
    assert allocation.hours_per_day == 4.0


def test_missing_percentage_and_hours_rejected(tmp_path):
    manager, _ = _build_manager(tmp_path, "missing.db")
    with pytest.raises(AllocationValidationError):
        manager.allocate(_request("2025-04-01", "2025-04-15", None))


class _ForbiddenRepository(DataRepository):
    def find_overlapping(self, *args, **kwargs):  # pragma: no cover - must not be reached
        raise AssertionError("repository accessed before input validation")


@pytest.mark.parametrize(
    "request_args",
    [
        ("2025-04-01", "2025-04-15", 0.0),
        ("2025-04-01", "2025-04-15", 120.0),
        ("2025-04-15", "2025-04-01", 50.0),
    ],
)
def test_malformed_input_rejected_before_repository_access(tmp_path, request_args):
    manager, _ = _build_manager(tmp_path, "malformed.db", _ForbiddenRepository)
    with pytest.raises(AllocationValidationError):
        manager.allocate(_request(*request_args))


def test_update_does_not_conflict_with_itself(tmp_path):
    manager, _ = _build_manager(tmp_path, "self.db")
    allocation = manager.allocate(_request("2025-03-01", "2025-03-31", 90.0))

    updated = manager.update(allocation.allocation_id, AllocationPatch(allocation_percentage=95.0))

    assert updated.allocation_percentage == 95.0
    assert updated.start_date == date(2025, 3, 1)
    assert updated.created_at == allocation.created_at


def test_update_rejected_when_other_allocations_fill_capacity(tmp_path):
    manager, repository = _build_manager(tmp_path, "update_conflict.db")
    manager.allocate(_request("2025-03-01", "2025-03-31", 60.0, project_id="P1"))
    second = manager.allocate(_request("2025-04-01", "2025-04-30", 50.0, project_id="P2"))

    with pytest.raises(AllocationConflictError) as excinfo:
        manager.update(second.allocation_id, AllocationPatch(start_date=date(2025, 3, 20)))

    assert excinfo.value.total_allocation == 60.0
    stored = repository.find_by_id(second.allocation_id)
    assert stored is not None
    assert stored.start_date == date(2025, 4, 1)


def test_update_without_capacity_fields_skips_validation(tmp_path):
    manager, repository = _build_manager(tmp_path, "metadata.db")
    allocation = manager.allocate(_request("2025-03-01", "2025-03-31", 60.0))
    # Bypass the manager to push the resource over the ceiling.
    repository.save(replace(allocation, allocation_id="imported", allocation_percentage=80.0))

    updated = manager.update(allocation.allocation_id, AllocationPatch(task_id="T-7"))

    assert updated.task_id == "T-7"


def test_update_rejects_inverted_merged_range(tmp_path):
    manager, _ = _build_manager(tmp_path, "inverted.db")
    allocation = manager.allocate(_request("2025-03-01", "2025-03-31", 60.0))
    with pytest.raises(AllocationValidationError):
        manager.update(allocation.allocation_id, AllocationPatch(start_date=date(2025, 4, 15)))


def test_update_missing_allocation_raises_not_found(tmp_path):
    manager, _ = _build_manager(tmp_path, "update_missing.db")
    with pytest.raises(AllocationNotFoundError):
        manager.update("does-not-exist", AllocationPatch(allocation_percentage=10.0))


def test_remove_deletes_permanently(tmp_path):
    manager, repository = _build_manager(tmp_path, "remove.db")
    allocation = manager.allocate(_request("2025-03-01", "2025-03-31", 60.0))

    manager.remove(allocation.allocation_id)

    assert repository.find_by_id(allocation.allocation_id) is None
    with pytest.raises(AllocationNotFoundError):
        manager.remove(allocation.allocation_id)


def test_other_organization_sees_not_found(tmp_path):
    manager, _ = _build_manager(tmp_path, "tenant.db")
    allocation = manager.allocate(_request("2025-03-01", "2025-03-31", 60.0))

    with pytest.raises(AllocationNotFoundError):
        manager.get(allocation.allocation_id, organization_id="org-2")
    with pytest.raises(AllocationNotFoundError):
        manager.remove(allocation.allocation_id, organization_id="org-2")
    assert manager.get(allocation.allocation_id, organization_id="org-1") == allocation


class _SlowReadRepository(DataRepository):
    """Widens the gap between the capacity read and the write."""

    def find_overlapping(self, resource_id, range_start, range_end):
        rows = super().find_overlapping(resource_id, range_start, range_end)
        time.sleep(0.2)
        return rows


def test_concurrent_allocations_for_same_resource_are_serialized(tmp_path):
    manager, repository = _build_manager(tmp_path, "race.db", _SlowReadRepository)
    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def worker(project_id: str) -> None:
        barrier.wait()
        try:
            manager.allocate(_request("2025-06-01", "2025-06-30", 60.0, project_id=project_id))
            outcome = "created"
        except AllocationConflictError:
            outcome = "conflict"
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(project,)) for project in ("P1", "P2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert sorted(outcomes) == ["conflict", "created"]
    stored = repository.find_by_resource("R1")
    assert sum(item.allocation_percentage for item in stored) == 60.0


def test_different_resources_do_not_block_each_other(tmp_path):
    manager, repository = _build_manager(tmp_path, "parallel.db")
    threads = [
        threading.Thread(
            target=manager.allocate,
            args=(_request("2025-06-01", "2025-06-30", 100.0, resource_id=resource_id),),
        )
        for resource_id in ("R1", "R2", "R3")
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert repository.count_allocations() == 3


def test_decimal_shares_can_fill_capacity_exactly(tmp_path):
    manager, repository = _build_manager(tmp_path, "decimal.db")
    manager.allocate(_request("2025-02-01", "2025-02-28", 10.2, project_id="P1"))
    manager.allocate(_request("2025-02-01", "2025-02-28", 73.9, project_id="P2"))

    last = manager.allocate(_request("2025-02-01", "2025-02-28", 15.9, project_id="P3"))

    assert last.allocation_percentage == 15.9
    assert repository.count_allocations() == 3
    with pytest.raises(AllocationConflictError):
        manager.allocate(_request("2025-02-10", "2025-02-20", 0.5, project_id="P4"))


def test_conflict_suggests_resources_with_room(tmp_path):
    manager, repository = _build_manager(tmp_path, "suggest.db")
    manager.allocate(_request("2025-04-01", "2025-04-30", 70.0, resource_id="R1"))
    manager.allocate(_request("2025-04-01", "2025-04-30", 50.0, resource_id="R2"))
    manager.allocate(_request("2025-04-01", "2025-04-30", 10.0, resource_id="R3"))
    manager.allocate(_request("2025-04-01", "2025-04-30", 80.0, resource_id="R4"))
    manager.allocate(
        _request("2025-04-01", "2025-04-30", 5.0, resource_id="R9", organization_id="org-2")
    )

    with pytest.raises(AllocationConflictError) as excinfo:
        manager.allocate(_request("2025-04-10", "2025-04-20", 40.0, resource_id="R1", project_id="P2"))

    suggestions = excinfo.value.suggestions
    assert [(item.resource_id, item.available_capacity) for item in suggestions] == [
        ("R3", 90.0),
        ("R2", 50.0),
    ]


def test_suggestions_are_capped(tmp_path):
    settings = replace(_build_test_settings(tmp_path, "suggest_cap.db"), suggestion_limit=2)
    repository = DataRepository(settings)
    repository.initialize_database()
    manager = AllocationManager(repository=repository, settings=settings)
    manager.allocate(_request("2025-04-01", "2025-04-30", 60.0, resource_id="R1"))
    for resource_id in ("R2", "R3", "R4"):
        manager.allocate(_request("2025-04-01", "2025-04-30", 20.0, resource_id=resource_id))

    with pytest.raises(AllocationConflictError) as excinfo:
        manager.allocate(_request("2025-04-01", "2025-04-30", 50.0, resource_id="R1", project_id="P2"))

    assert [item.resource_id for item in excinfo.value.suggestions] == ["R2", "R3"]


def test_lock_registry_drops_released_locks(tmp_path):
    registry = ResourceLockRegistry()
    with registry.hold("R1"):
        assert len(registry) == 1
    gc.collect()
    assert len(registry) == 0

    settings = _build_test_settings(tmp_path, "locks.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    manager = AllocationManager(repository=repository, settings=settings, locks=registry)
    for resource_id in ("R1", "R2", "R3"):
        manager.allocate(_request("2025-04-01", "2025-04-30", 50.0, resource_id=resource_id))
    gc.collect()
    assert len(registry) == 0


def test_update_can_clear_task_id(tmp_path):
    manager, _ = _build_manager(tmp_path, "clear_task.db")
    allocation = manager.allocate(replace(_request("2025-03-01", "2025-03-31", 40.0), task_id="T-1"))
    assert allocation.task_id == "T-1"

    kept = manager.update(allocation.allocation_id, AllocationPatch(allocation_percentage=45.0))
    assert kept.task_id == "T-1"

    cleared = manager.update(allocation.allocation_id, AllocationPatch(clear_task_id=True))
    assert cleared.task_id is None

    with pytest.raises(AllocationValidationError):
        manager.update(
            allocation.allocation_id,
            AllocationPatch(task_id="T-2", clear_task_id=True),
        )
