"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from backend.domain.models import CallerContext
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import AllocationManager
from backend.services.utilization_service import UtilizationAggregator
from backend.services.validation_service import AllocationValidator


def _from_state(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_repository(request: Request) -> DataRepository:
    return _from_state(request, "repository", "Repository")


def get_allocation_manager(request: Request) -> AllocationManager:
    return _from_state(request, "allocation_manager", "Allocation manager")


def get_allocation_validator(request: Request) -> AllocationValidator:
    return _from_state(request, "allocation_validator", "Allocation validator")


def get_utilization_aggregator(request: Request) -> UtilizationAggregator:
    return _from_state(request, "utilization_aggregator", "Utilization aggregator")


async def get_caller_context(
    x_organization_id: str | None = Header(default=None),
    x_caller_id: str | None = Header(default=None),
) -> CallerContext:
    """Caller identity is established upstream; only its presence is checked."""
    if not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Organization-Id header is required",
        )
    return CallerContext(
        organization_id=x_organization_id,
        caller_id=x_caller_id or "anonymous",
    )
