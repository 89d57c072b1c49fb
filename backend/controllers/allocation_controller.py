"""HTTP controller layer for allocation writes and admission checks."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field, model_validator

from backend.controllers.dependencies import (
    get_allocation_manager,
    get_allocation_validator,
    get_caller_context,
)
from backend.domain.models import (
    AllocationPatch,
    AllocationRequest,
    CallerContext,
    CapacityEntry,
    DateRange,
    ResourceAllocation,
    ResourceConflict,
    ValidationResult,
)
from backend.services.allocation_service import (
    AllocationConflictError,
    AllocationManager,
    AllocationNotFoundError,
)
from backend.services.validation_service import AllocationValidationError, AllocationValidator
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["allocations"])


class CreateAllocationRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    resource_id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    task_id: Optional[str] = None
    start_date: date
    end_date: date
    allocation_percentage: Optional[float] = Field(default=None, gt=0.0, le=100.0)
    hours_per_day: Optional[float] = Field(default=None, gt=0.0, le=24.0)

    @model_validator(mode="after")
    def validate_date_order(self) -> "CreateAllocationRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class UpdateAllocationRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    allocation_percentage: Optional[float] = Field(default=None, gt=0.0, le=100.0)
    hours_per_day: Optional[float] = Field(default=None, gt=0.0, le=24.0)
    project_id: Optional[str] = Field(default=None, min_length=1)
    task_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_date_order(self) -> "UpdateAllocationRequest":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class ValidateAllocationRequest(BaseModel):
    resource_id: str = Field(min_length=1)
    start_date: date
    end_date: date
    allocation_percentage: float = Field(gt=0.0, le=100.0)


class ConflictProbeRequest(BaseModel):
    resource_id: str = Field(min_length=1)
    start_date: date
    end_date: date


class AllocationResponse(BaseModel):
    allocation_id: str
    resource_id: str
    project_id: str
    project_name: Optional[str] = None
    task_id: Optional[str] = None
    start_date: date
    end_date: date
    allocation_percentage: float = Field(gt=0.0, le=100.0)
    hours_per_day: float
    organization_id: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_domain(cls, allocation: ResourceAllocation) -> "AllocationResponse":
        return cls(
            allocation_id=allocation.allocation_id,
            resource_id=allocation.resource_id,
            project_id=allocation.project_id,
            project_name=allocation.project_name,
            task_id=allocation.task_id,
            start_date=allocation.start_date,
            end_date=allocation.end_date,
            allocation_percentage=allocation.allocation_percentage,
            hours_per_day=allocation.hours_per_day,
            organization_id=allocation.organization_id,
            created_at=allocation.created_at,
            updated_at=allocation.updated_at,
        )


class ConflictResponse(BaseModel):
    allocation_id: str
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    start_date: date
    end_date: date
    allocation_percentage: float
    conflict_type: str
    overlap_start: date
    overlap_end: date
    cumulative_allocation: float
    severity: Optional[str] = None

    @classmethod
    def from_domain(cls, conflict: ResourceConflict) -> "ConflictResponse":
        return cls(
            allocation_id=conflict.allocation_id,
            project_id=conflict.project_id,
            project_name=conflict.project_name,
            start_date=conflict.start_date,
            end_date=conflict.end_date,
            allocation_percentage=conflict.allocation_percentage,
            conflict_type=conflict.conflict_type.value,
            overlap_start=conflict.overlap_start,
            overlap_end=conflict.overlap_end,
            cumulative_allocation=conflict.cumulative_allocation,
            severity=conflict.severity.value if conflict.severity else None,
        )


class SuggestionResponse(BaseModel):
    """Another resource with room for the requested load."""

    resource_id: str
    total_allocation: float = Field(ge=0.0)
    available_capacity: float = Field(ge=0.0)

    @classmethod
    def from_domain(cls, entry: CapacityEntry) -> "SuggestionResponse":
        return cls(
            resource_id=entry.resource_id,
            total_allocation=entry.total_allocation,
            available_capacity=entry.available_capacity,
        )


class ValidationResponse(BaseModel):
    is_valid: bool
    conflicts: list[ConflictResponse]
    total_allocation: float = Field(ge=0.0)
    available_capacity: float = Field(ge=0.0)

    @classmethod
    def from_domain(cls, result: ValidationResult) -> "ValidationResponse":
        return cls(
            is_valid=result.is_valid,
            conflicts=[ConflictResponse.from_domain(item) for item in result.conflicts],
            total_allocation=result.total_allocation,
            available_capacity=result.available_capacity,
        )


def _conflict_exception(exc: AllocationConflictError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": str(exc),
            "conflict_count": exc.conflict_count,
            "total_allocation": exc.total_allocation,
            "available_capacity": exc.available_capacity,
            "conflicts": [
                ConflictResponse.from_domain(item).model_dump(mode="json")
                for item in exc.conflicts
            ],
            "suggestions": [
                SuggestionResponse.from_domain(item).model_dump(mode="json")
                for item in exc.suggestions
            ],
        },
    )


@router.post(
    "/allocations",
    response_model=AllocationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_allocation(
    payload: CreateAllocationRequest,
    caller: CallerContext = Depends(get_caller_context),
    manager: AllocationManager = Depends(get_allocation_manager),
) -> AllocationResponse:
    try:
        allocation = manager.allocate(
            AllocationRequest(
                resource_id=payload.resource_id,
                project_id=payload.project_id,
                task_id=payload.task_id,
                start_date=payload.start_date,
                end_date=payload.end_date,
                allocation_percentage=payload.allocation_percentage,
                hours_per_day=payload.hours_per_day,
                organization_id=caller.organization_id,
            )
        )
        return AllocationResponse.from_domain(allocation)
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except AllocationConflictError as exc:
        raise _conflict_exception(exc) from exc
    except Exception as exc:
        logger.exception("Unexpected allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create allocation",
        ) from exc


@router.get("/allocations/{allocation_id}", response_model=AllocationResponse)
def get_allocation(
    allocation_id: str,
    caller: CallerContext = Depends(get_caller_context),
    manager: AllocationManager = Depends(get_allocation_manager),
) -> AllocationResponse:
    try:
        return AllocationResponse.from_domain(
            manager.get(allocation_id, caller.organization_id)
        )
    except AllocationNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.patch("/allocations/{allocation_id}", response_model=AllocationResponse)
def update_allocation(
    allocation_id: str,
    payload: UpdateAllocationRequest,
    caller: CallerContext = Depends(get_caller_context),
    manager: AllocationManager = Depends(get_allocation_manager),
) -> AllocationResponse:
    try:
        allocation = manager.update(
            allocation_id,
            AllocationPatch(
                **payload.model_dump(),
                clear_task_id="task_id" in payload.model_fields_set and payload.task_id is None,
            ),
            organization_id=caller.organization_id,
        )
        return AllocationResponse.from_domain(allocation)
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except AllocationNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except AllocationConflictError as exc:
        raise _conflict_exception(exc) from exc
    except Exception as exc:
        logger.exception("Unexpected allocation update failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update allocation",
        ) from exc


@router.delete("/allocations/{allocation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_allocation(
    allocation_id: str,
    caller: CallerContext = Depends(get_caller_context),
    manager: AllocationManager = Depends(get_allocation_manager),
) -> Response:
    try:
        manager.remove(allocation_id, caller.organization_id)
    except AllocationNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/allocations/validate", response_model=ValidationResponse)
def validate_allocation(
    payload: ValidateAllocationRequest,
    caller: CallerContext = Depends(get_caller_context),
    validator: AllocationValidator = Depends(get_allocation_validator),
) -> ValidationResponse:
    """Dry-run admission check; nothing is written."""
    try:
        result = validator.validate(
            payload.resource_id,
            DateRange(start=payload.start_date, end=payload.end_date),
            payload.allocation_percentage,
            organization_id=caller.organization_id,
        )
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return ValidationResponse.from_domain(result)


@router.post("/allocations/conflicts", response_model=ValidationResponse)
def check_allocation_conflicts(
    payload: ConflictProbeRequest,
    caller: CallerContext = Depends(get_caller_context),
    validator: AllocationValidator = Depends(get_allocation_validator),
) -> ValidationResponse:
    try:
        result = validator.check_allocation_conflicts(
            payload.resource_id,
            DateRange(start=payload.start_date, end=payload.end_date),
            caller.organization_id,
        )
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return ValidationResponse.from_domain(result)
