"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and services, registers routers, and initializes the
reservation store on startup.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from backend.controllers.booking_controller import router as booking_router
from backend.controllers.dependencies import request_validation_handler
from backend.controllers.staff_controller import router as staff_router
from backend.repository.data_repository import DataRepository
from backend.services.admission_service import AdmissionCoordinator
from backend.services.auth_service import StaffAuthService
from backend.services.availability_service import AvailabilityService
from backend.services.booking_service import BookingService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service is created here and attached to app.state, so each
    dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (one SQLite connection per call; the DB is the only shared state) ---
    repository = DataRepository(settings)

    # --- Services ---
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)
    booking_service = BookingService(
        repository=repository,
        settings=settings,
        coordinator=coordinator,
    )
    availability_service = AvailabilityService(repository=repository, settings=settings)
    auth_service = StaffAuthService(settings=settings)

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
    app.include_router(booking_router)
    app.include_router(staff_router)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.admission_coordinator = coordinator
    app.state.booking_service = booking_service
    app.state.availability_service = availability_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema (tables, indexes, overlap triggers) must exist before seeding.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing reservation store")
    repository.initialize_database()

    if settings.seed_demo_inventory:
        logger.info("Startup: seeding demo room inventory (skipped if rooms exist)")
        repository.seed_demo_inventory()

    if not settings.staff_token:
        logger.warning("STAFF_TOKEN is not set; staff endpoints are open")

    logger.info("Startup complete, accepting bookings")


# Module-level app object for uvicorn
app = create_app()
