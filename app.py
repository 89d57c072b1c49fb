"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.allocation_controller import router as allocation_router
from backend.controllers.utilization_controller import router as utilization_router
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import AllocationManager
from backend.services.conflict_detector import ConflictDetector
from backend.services.utilization_service import UtilizationAggregator
from backend.services.validation_service import AllocationValidator
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    No global singletons; every dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (per-call SQLite connections) ---
    repository = DataRepository(settings)

    # --- Services (business logic, no direct DB access) ---
    detector = ConflictDetector(settings)
    validator = AllocationValidator(
        repository=repository,
        settings=settings,
        detector=detector,
    )
    aggregator = UtilizationAggregator(
        repository=repository,
        settings=settings,
    )
    manager = AllocationManager(
        repository=repository,
        settings=settings,
        validator=validator,
        aggregator=aggregator,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(allocation_router)
    app.include_router(utilization_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.allocation_validator = validator
    app.state.allocation_manager = manager
    app.state.utilization_aggregator = aggregator

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """Idempotent startup sequence. Safe to re-run on server restarts."""
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo allocations (skipped if any exist)")
        repository.seed_demo_data()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
