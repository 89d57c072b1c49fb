"""Read-only utilization and capacity reporting."""

from __future__ import annotations

from collections import OrderedDict, defaultdict
from datetime import timedelta
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from backend.domain.constraints import LOAD_PRECISION, classify_severity, normalize_load
from backend.domain.models import (
    CapacityEntry,
    CrossProjectEntry,
    DateRange,
    OverallocatedDay,
    ProjectContribution,
    ResourceAllocation,
    ResourceUtilization,
)
from backend.domain.overlap import ranges_overlap
from backend.repository.data_repository import DataRepository
from backend.services.validation_service import build_date_range
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def summarize_projects(allocations: Iterable[ResourceAllocation]) -> list[ProjectContribution]:
    """Sum percentages per project, keeping first-seen order."""
    totals: "OrderedDict[str, float]" = OrderedDict()
    names: dict[str, Optional[str]] = {}
    for allocation in allocations:
        totals[allocation.project_id] = (
            totals.get(allocation.project_id, 0.0) + allocation.allocation_percentage
        )
        names.setdefault(allocation.project_id, allocation.project_name)
    return [
        ProjectContribution(
            project_id=project_id,
            project_name=names[project_id],
            allocation_percentage=normalize_load(total),
        )
        for project_id, total in totals.items()
    ]


def build_daily_load_frame(
    allocations: Iterable[ResourceAllocation],
    window: DateRange,
) -> pd.DataFrame:
    """Expand allocations into one row per covered day inside `window`.

    Days are covered half-open, `[start_date, end_date)`, which makes two
    allocations share a day exactly when their ranges overlap under the
    strict boundary rule. Single-day allocations cover no day.
    """
    records = []
    for allocation in allocations:
        first_day = max(allocation.start_date, window.start)
        last_day = min(allocation.end_date - timedelta(days=1), window.end)
        if first_day > last_day:
            continue
        records.append(
            {
                "resource_id": allocation.resource_id,
                "allocation_id": allocation.allocation_id,
                "allocation_percentage": allocation.allocation_percentage,
                "day": list(pd.date_range(first_day, last_day, freq="D").date),
            }
        )

    columns = ["resource_id", "allocation_id", "allocation_percentage", "day"]
    if not records:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(records, columns=columns).explode("day", ignore_index=True)


class UtilizationAggregator:
    """Pure aggregations over repository reads.

    Nothing here validates or writes, so reports stay available when stored
    allocations already exceed the ceiling.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def _available(self, total_allocation: float) -> float:
        return normalize_load(max(0.0, self._settings.capacity_ceiling_percentage - total_allocation))

    def get_resource_utilization(
        self,
        resource_id: str,
        date_range: Optional[DateRange] = None,
        organization_id: Optional[str] = None,
    ) -> ResourceUtilization:
        """Load booked on the resource, all time or within `date_range`.

        With `organization_id`, only that organization's allocations count.
        """
        if date_range is None:
            allocations = self._repository.find_by_resource(resource_id)
        else:
            window = build_date_range(date_range.start, date_range.end)
            allocations = [
                allocation
                for allocation in self._repository.find_overlapping(
                    resource_id,
                    window.start,
                    window.end,
                )
                if ranges_overlap(allocation.date_range, window)
            ]
        if organization_id is not None:
            allocations = [
                allocation
                for allocation in allocations
                if allocation.organization_id == organization_id
            ]

        total = normalize_load(sum(allocation.allocation_percentage for allocation in allocations))
        return ResourceUtilization(
            resource_id=resource_id,
            total_allocation=total,
            available_capacity=self._available(total),
            allocation_count=len(allocations),
            projects=summarize_projects(allocations),
            date_range=date_range,
        )

    def get_available_capacity(
        self,
        organization_id: str,
        date_range: DateRange,
    ) -> list[CapacityEntry]:
        """One entry per resource with load in the window.

        Resources without any allocation in the window are not reported: an
        allocation is the only signal that a resource belongs to the
        organization.
        """
        window = build_date_range(date_range.start, date_range.end)
        by_resource: dict[str, list[ResourceAllocation]] = defaultdict(list)
        for allocation in self._repository.find_by_organization_overlapping(
            organization_id,
            window.start,
            window.end,
        ):
            if ranges_overlap(allocation.date_range, window):
                by_resource[allocation.resource_id].append(allocation)

        entries = []
        for resource_id in sorted(by_resource):
            total = normalize_load(
                sum(item.allocation_percentage for item in by_resource[resource_id])
            )
            entries.append(
                CapacityEntry(
                    resource_id=resource_id,
                    total_allocation=total,
                    available_capacity=self._available(total),
                    allocation_count=len(by_resource[resource_id]),
                )
            )
        return entries

    def get_cross_project_view(self, organization_id: str) -> list[CrossProjectEntry]:
        by_resource: dict[str, list[ResourceAllocation]] = defaultdict(list)
        for allocation in self._repository.find_by_organization(organization_id):
            by_resource[allocation.resource_id].append(allocation)

        view = []
        for resource_id in sorted(by_resource):
            allocations = sorted(
                by_resource[resource_id],
                key=lambda item: (item.start_date, item.allocation_id),
            )
            view.append(
                CrossProjectEntry(
                    resource_id=resource_id,
                    cumulative_allocation=normalize_load(
                        sum(item.allocation_percentage for item in allocations)
                    ),
                    projects=summarize_projects(allocations),
                    allocations=allocations,
                )
            )
        return view

    def get_project_allocations(
        self,
        project_id: str,
        organization_id: Optional[str] = None,
    ) -> list[ResourceAllocation]:
        allocations = self._repository.find_by_project(project_id)
        if organization_id is None:
            return allocations
        return [item for item in allocations if item.organization_id == organization_id]

    def suggest_resources(
        self,
        organization_id: str,
        date_range: DateRange,
        required_percentage: float,
        *,
        exclude_resource_id: Optional[str] = None,
    ) -> list[CapacityEntry]:
        """Resources that could take `required_percentage` over the window.

        Most available first, ties by resource id, capped at
        `settings.suggestion_limit`.
        """
        candidates = [
            entry
            for entry in self.get_available_capacity(organization_id, date_range)
            if entry.resource_id != exclude_resource_id
            and entry.available_capacity >= normalize_load(required_percentage)
        ]
        candidates.sort(key=lambda entry: (-entry.available_capacity, entry.resource_id))
        return candidates[: self._settings.suggestion_limit]

    def find_overallocations(
        self,
        organization_id: str,
        date_range: DateRange,
    ) -> list[OverallocatedDay]:
        """Report every resource-day whose stored load exceeds the ceiling.

        Catches combinations written outside the validation path (bulk
        imports, concurrent writers in other processes). Reports only.
        """
        window = build_date_range(date_range.start, date_range.end)
        allocations = self._repository.find_by_organization_overlapping(
            organization_id,
            window.start,
            window.end,
        )
        frame = build_daily_load_frame(allocations, window)
        if frame.empty:
            return []

        keys = ["resource_id", "day"]
        grouped = frame.groupby(keys, sort=True)
        totals = grouped["allocation_percentage"].sum().round(LOAD_PRECISION)
        members = grouped["allocation_id"].apply(lambda ids: sorted(ids)).to_dict()
        ceiling = self._settings.capacity_ceiling_percentage
        over_mask = np.greater(totals.to_numpy(dtype=float), ceiling)

        report = []
        for (resource_id, day), total in totals[over_mask].items():
            report.append(
                OverallocatedDay(
                    resource_id=str(resource_id),
                    day=day,
                    total_allocation=float(total),
                    severity=classify_severity(float(total), self._settings),
                    allocation_ids=list(members[(resource_id, day)]),
                )
            )

        if report:
            logger.warning(
                "Overallocation detected | organization_id=%s | range=%s..%s | resource_days=%s",
                organization_id,
                window.start,
                window.end,
                len(report),
            )
        return report
