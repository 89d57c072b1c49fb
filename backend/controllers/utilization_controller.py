"""Controller layer for utilization and capacity reporting endpoints."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from backend.controllers.allocation_controller import AllocationResponse
from backend.controllers.dependencies import (
    get_caller_context,
    get_repository,
    get_utilization_aggregator,
)
from backend.domain.models import CallerContext, DateRange, ProjectContribution
from backend.repository.data_repository import DataRepository
from backend.services.utilization_service import UtilizationAggregator
from backend.services.validation_service import AllocationValidationError
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["utilization"])


class ProjectContributionResponse(BaseModel):
    project_id: str
    project_name: Optional[str] = None
    allocation_percentage: float

    @classmethod
    def from_domain(cls, item: ProjectContribution) -> "ProjectContributionResponse":
        return cls(
            project_id=item.project_id,
            project_name=item.project_name,
            allocation_percentage=item.allocation_percentage,
        )


class ResourceUtilizationResponse(BaseModel):
    resource_id: str
    total_allocation: float = Field(ge=0.0)
    available_capacity: float = Field(ge=0.0)
    allocation_count: int = Field(ge=0)
    projects: list[ProjectContributionResponse]
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class CapacityEntryResponse(BaseModel):
    resource_id: str
    total_allocation: float = Field(ge=0.0)
    available_capacity: float = Field(ge=0.0)
    allocation_count: int = Field(ge=0)


class CrossProjectEntryResponse(BaseModel):
    resource_id: str
    cumulative_allocation: float = Field(ge=0.0)
    projects: list[ProjectContributionResponse]
    allocations: list[AllocationResponse]


class OverallocatedDayResponse(BaseModel):
    resource_id: str
    day: date
    total_allocation: float
    severity: str
    allocation_ids: list[str]


class RegisterProjectRequest(BaseModel):
    name: str = Field(min_length=1)


def _window(start_date: Optional[date], end_date: Optional[date]) -> Optional[DateRange]:
    if start_date is None and end_date is None:
        return None
    if start_date is None or end_date is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date and end_date must be provided together",
        )
    return DateRange(start=start_date, end=end_date)


@router.get("/resources/{resource_id}/utilization", response_model=ResourceUtilizationResponse)
def get_resource_utilization(
    resource_id: str,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    caller: CallerContext = Depends(get_caller_context),
    aggregator: UtilizationAggregator = Depends(get_utilization_aggregator),
) -> ResourceUtilizationResponse:
    window = _window(start_date, end_date)
    try:
        result = aggregator.get_resource_utilization(resource_id, window, caller.organization_id)
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return ResourceUtilizationResponse(
        resource_id=result.resource_id,
        total_allocation=result.total_allocation,
        available_capacity=result.available_capacity,
        allocation_count=result.allocation_count,
        projects=[ProjectContributionResponse.from_domain(item) for item in result.projects],
        start_date=window.start if window else None,
        end_date=window.end if window else None,
    )


@router.get("/capacity", response_model=list[CapacityEntryResponse])
def get_available_capacity(
    start_date: date = Query(),
    end_date: date = Query(),
    caller: CallerContext = Depends(get_caller_context),
    aggregator: UtilizationAggregator = Depends(get_utilization_aggregator),
) -> list[CapacityEntryResponse]:
    try:
        entries = aggregator.get_available_capacity(
            caller.organization_id,
            DateRange(start=start_date, end=end_date),
        )
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return [
        CapacityEntryResponse(
            resource_id=entry.resource_id,
            total_allocation=entry.total_allocation,
            available_capacity=entry.available_capacity,
            allocation_count=entry.allocation_count,
        )
        for entry in entries
    ]


@router.get("/cross_project_view", response_model=list[CrossProjectEntryResponse])
def get_cross_project_view(
    caller: CallerContext = Depends(get_caller_context),
    aggregator: UtilizationAggregator = Depends(get_utilization_aggregator),
) -> list[CrossProjectEntryResponse]:
    return [
        CrossProjectEntryResponse(
            resource_id=entry.resource_id,
            cumulative_allocation=entry.cumulative_allocation,
            projects=[ProjectContributionResponse.from_domain(item) for item in entry.projects],
            allocations=[AllocationResponse.from_domain(item) for item in entry.allocations],
        )
        for entry in aggregator.get_cross_project_view(caller.organization_id)
    ]


@router.get("/projects/{project_id}/allocations", response_model=list[AllocationResponse])
def get_project_allocations(
    project_id: str,
    caller: CallerContext = Depends(get_caller_context),
    aggregator: UtilizationAggregator = Depends(get_utilization_aggregator),
) -> list[AllocationResponse]:
    return [
        AllocationResponse.from_domain(item)
        for item in aggregator.get_project_allocations(project_id, caller.organization_id)
    ]


@router.put("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def register_project(
    project_id: str,
    payload: RegisterProjectRequest,
    caller: CallerContext = Depends(get_caller_context),
    repository: DataRepository = Depends(get_repository),
) -> None:
    """Record the display name shown in conflict and utilization records."""
    if not repository.upsert_project(project_id, payload.name, caller.organization_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"project {project_id} is registered to another organization",
        )


@router.get("/overallocations", response_model=list[OverallocatedDayResponse])
def get_overallocations(
    start_date: date = Query(),
    end_date: date = Query(),
    caller: CallerContext = Depends(get_caller_context),
    aggregator: UtilizationAggregator = Depends(get_utilization_aggregator),
) -> list[OverallocatedDayResponse]:
    try:
        report = aggregator.find_overallocations(
            caller.organization_id,
            DateRange(start=start_date, end=end_date),
        )
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:
        logger.exception("Unexpected overallocation report failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build overallocation report",
        ) from exc
    return [
        OverallocatedDayResponse(
            resource_id=item.resource_id,
            day=item.day,
            total_allocation=item.total_allocation,
            severity=item.severity.value,
            allocation_ids=item.allocation_ids,
        )
        for item in report
    ]
