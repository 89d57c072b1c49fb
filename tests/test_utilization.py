from __future__ import annotations

from dataclasses import replace
from datetime import date

from backend.domain.models import ConflictSeverity, DateRange, ResourceAllocation
from backend.repository.data_repository import DataRepository
from backend.services.utilization_service import UtilizationAggregator, build_daily_load_frame
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename)


def _build_aggregator(tmp_path, filename: str) -> tuple[UtilizationAggregator, DataRepository]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.upsert_project("P1", "Portal", "org-1")
    repository.upsert_project("P2", "Billing", "org-1")
    return UtilizationAggregator(repository=repository, settings=settings), repository


def _store(
    repository: DataRepository,
    allocation_id: str,
    resource_id: str,
    project_id: str,
    start: str,
    end: str,
    percentage: float,
    organization_id: str = "org-1",
) -> ResourceAllocation:
    return repository.save(
        ResourceAllocation(
            allocation_id=allocation_id,
            resource_id=resource_id,
            project_id=project_id,
            start_date=date.fromisoformat(start),
            end_date=date.fromisoformat(end),
            allocation_percentage=percentage,
            hours_per_day=8.0,
            organization_id=organization_id,
        )
    )


def _seed(repository: DataRepository) -> None:
    # R1 is over capacity in June; written directly, as a bulk import would.
    _store(repository, "a1", "R1", "P1", "2025-06-01", "2025-06-15", 80.0)
    _store(repository, "a2", "R1", "P2", "2025-06-10", "2025-06-20", 60.0)
    _store(repository, "a3", "R1", "P1", "2025-08-01", "2025-08-31", 20.0)
    _store(repository, "b1", "R2", "P2", "2025-06-01", "2025-06-30", 50.0)
    _store(repository, "c1", "R3", "P1", "2025-09-01", "2025-09-30", 40.0)
    _store(repository, "x1", "R9", "P9", "2025-06-01", "2025-06-30", 100.0, organization_id="org-2")


def _window(start: str, end: str) -> DateRange:
    return DateRange(start=date.fromisoformat(start), end=date.fromisoformat(end))


def test_resource_utilization_all_time(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "util_all.db")
    _seed(repository)

    result = aggregator.get_resource_utilization("R1")

    assert result.total_allocation == 160.0
    assert result.available_capacity == 0.0
    assert result.allocation_count == 3
    assert [(p.project_id, p.project_name, p.allocation_percentage) for p in result.projects] == [
        ("P1", "Portal", 100.0),
        ("P2", "Billing", 60.0),
    ]


def test_resource_utilization_in_range_uses_strict_overlap(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "util_range.db")
    _seed(repository)

    result = aggregator.get_resource_utilization("R1", _window("2025-06-15", "2025-06-30"))

    # a1 only touches the window on 2025-06-15.
    assert result.total_allocation == 60.0
    assert result.available_capacity == 40.0
    assert [p.project_id for p in result.projects] == ["P2"]


def test_available_capacity_reports_only_resources_with_load(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "capacity.db")
    _seed(repository)

    entries = aggregator.get_available_capacity("org-1", _window("2025-06-01", "2025-06-30"))

    assert [(e.resource_id, e.total_allocation, e.available_capacity) for e in entries] == [
        ("R1", 140.0, 0.0),
        ("R2", 50.0, 50.0),
    ]


def test_cross_project_view_groups_by_resource(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "cross.db")
    _seed(repository)

    view = aggregator.get_cross_project_view("org-1")

    assert [entry.resource_id for entry in view] == ["R1", "R2", "R3"]
    first = view[0]
    assert first.cumulative_allocation == 160.0
    assert [item.allocation_id for item in first.allocations] == ["a1", "a2", "a3"]
    assert {p.project_id for p in first.projects} == {"P1", "P2"}


def test_reads_are_idempotent(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "idempotent.db")
    _seed(repository)

    assert aggregator.get_resource_utilization("R1") == aggregator.get_resource_utilization("R1")
    assert aggregator.get_cross_project_view("org-1") == aggregator.get_cross_project_view("org-1")


def test_project_allocations_ordered_by_start(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "project.db")
    _seed(repository)

    allocations = aggregator.get_project_allocations("P1")

    assert [item.allocation_id for item in allocations] == ["a1", "a3", "c1"]
    assert all(item.project_name == "Portal" for item in allocations)


def test_find_overallocations_reports_shared_days(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "audit.db")
    _seed(repository)

    report = aggregator.find_overallocations("org-1", _window("2025-06-01", "2025-06-30"))

    # a1 covers 06-01..06-14, a2 covers 06-10..06-19 (end day excluded).
    assert [item.day for item in report] == [date(2025, 6, day) for day in range(10, 15)]
    assert all(item.resource_id == "R1" for item in report)
    assert all(item.total_allocation == 140.0 for item in report)
    assert all(item.severity is ConflictSeverity.HIGH for item in report)
    assert report[0].allocation_ids == ["a1", "a2"]


def test_find_overallocations_clean_organization(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "audit_clean.db")
    _store(repository, "a1", "R1", "P1", "2025-01-01", "2025-01-10", 80.0)
    _store(repository, "a2", "R1", "P2", "2025-01-10", "2025-01-20", 80.0)

    assert aggregator.find_overallocations("org-1", _window("2025-01-01", "2025-01-31")) == []


def test_daily_load_frame_clips_to_window():
    allocation = ResourceAllocation(
        allocation_id="a",
        resource_id="R1",
        project_id="P1",
        start_date=date(2025, 1, 1),
        end_date=date(2025, 1, 31),
        allocation_percentage=50.0,
        hours_per_day=8.0,
        organization_id="org-1",
    )
    frame = build_daily_load_frame([allocation], _window("2025-01-20", "2025-02-10"))

    assert len(frame) == 11
    assert frame["day"].min() == date(2025, 1, 20)
    assert frame["day"].max() == date(2025, 1, 30)


def test_demo_seed_is_reported_by_overallocation_scan(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "demo.db")
    repository.seed_demo_data()
    repository.seed_demo_data()
    assert repository.count_allocations() == 5

    report = aggregator.find_overallocations("demo-org", _window("2025-09-01", "2025-09-30"))

    by_resource: dict[str, set[ConflictSeverity]] = {}
    for item in report:
        by_resource.setdefault(item.resource_id, set()).add(item.severity)
    assert by_resource == {
        "mike": {ConflictSeverity.CRITICAL},
        "sarah": {ConflictSeverity.HIGH},
    }


def test_resource_utilization_scoped_to_organization(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "util_tenant.db")
    _seed(repository)
    _store(repository, "y1", "R1", "P1", "2025-06-01", "2025-06-30", 30.0, organization_id="org-2")

    everyone = aggregator.get_resource_utilization("R1", _window("2025-06-01", "2025-06-30"))
    scoped = aggregator.get_resource_utilization(
        "R1",
        _window("2025-06-01", "2025-06-30"),
        organization_id="org-2",
    )

    assert everyone.total_allocation == 170.0
    assert scoped.total_allocation == 30.0
    assert scoped.available_capacity == 70.0
    # P1 is registered to org-1, so its name is not attached to org-2 rows.
    assert [(p.project_id, p.project_name) for p in scoped.projects] == [("P1", None)]


def test_project_allocations_scoped_to_organization(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "project_tenant.db")
    _seed(repository)
    _store(repository, "y1", "R1", "P1", "2025-06-01", "2025-06-30", 30.0, organization_id="org-2")

    assert [item.allocation_id for item in aggregator.get_project_allocations("P1", "org-2")] == ["y1"]
    assert "y1" not in [item.allocation_id for item in aggregator.get_project_allocations("P1", "org-1")]


def test_suggest_resources_orders_by_free_capacity(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "suggest.db")
    _seed(repository)

    suggestions = aggregator.suggest_resources(
        "org-1",
        _window("2025-06-01", "2025-06-30"),
        40.0,
        exclude_resource_id="R3",
    )

    assert [(item.resource_id, item.available_capacity) for item in suggestions] == [("R2", 50.0)]
    assert aggregator.suggest_resources("org-1", _window("2025-06-01", "2025-06-30"), 60.0) == []


def test_cumulative_views_round_decimal_shares(tmp_path):
    aggregator, repository = _build_aggregator(tmp_path, "util_decimal.db")
    _store(repository, "d1", "R1", "P1", "2025-02-01", "2025-02-28", 10.2)
    _store(repository, "d2", "R1", "P2", "2025-02-01", "2025-02-28", 73.9)
    _store(repository, "d3", "R1", "P1", "2025-02-01", "2025-02-28", 15.9)

    result = aggregator.get_resource_utilization("R1")

    assert result.total_allocation == 100.0
    assert result.available_capacity == 0.0
    assert aggregator.find_overallocations("org-1", _window("2025-02-01", "2025-02-28")) == []
