"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It loads the scheduling rules, wires all services, registers routers,
and initializes the calendar store on startup.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from multical.controllers.auth_controller import router as auth_router
from multical.controllers.booking_controller import router as booking_router
from multical.domain.rules import load_scheduling_rules
from multical.repository.calendar_repository import CalendarRepository
from multical.services.auth_service import AuthService
from multical.services.enrollment_monitor import EnrollmentMonitorService
from multical.services.enrollment_service import EnrollmentService
from multical.services.keyword_resolver import KeywordResolver
from multical.services.notification_parser import NotificationParser
from multical.services.occupancy_service import OccupancyService
from multical.services.reservation_service import ReservationService
from multical.services.schedule_service import ScheduleService
from multical.utils.config import get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)


def create_app() -> FastAPI:
    """
    Build and wire the FastAPI application.

    The scheduling rules are loaded and validated once here, then injected
    into every service; all services are exposed through app.state.
    """
    settings = get_settings()
    rules = load_scheduling_rules(settings.rules_path)

    # --- Repository (single SQLite connection factory) ---
    repository = CalendarRepository(settings)

    # --- Services ---
    resolver = KeywordResolver(rules, settings=settings)
    occupancy_service = OccupancyService(repository, rules, settings=settings)
    reservation_service = ReservationService(
        repository=repository,
        resolver=resolver,
        occupancy_service=occupancy_service,
        settings=settings,
    )
    enrollment_service = EnrollmentService(
        repository=repository,
        resolver=resolver,
        occupancy_service=occupancy_service,
        reservation_service=reservation_service,
        rules=rules,
        settings=settings,
    )
    schedule_service = ScheduleService(
        resolver=resolver,
        reservation_service=reservation_service,
        enrollment_service=enrollment_service,
        settings=settings,
    )
    monitor_service = EnrollmentMonitorService(
        repository=repository,
        resolver=resolver,
        enrollment_service=enrollment_service,
        rules=rules,
        settings=settings,
    )
    notification_parser = NotificationParser(settings=settings)
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(auth_router)
    app.include_router(booking_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.rules = rules
    app.state.repository = repository
    app.state.schedule_service = schedule_service
    app.state.monitor_service = monitor_service
    app.state.notification_parser = notification_parser
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """Idempotent startup sequence. Safe to re-run on server restarts."""
    repository: CalendarRepository = app.state.repository

    logger.info("Startup: initializing calendar store | path=%s", repository.database_path)
    repository.initialize_database()

    logger.info(
        "Startup complete | capacity_rules=%s | enrollment_rules=%s",
        len(app.state.rules.occupancy_rules),
        len(app.state.rules.enrollment_rules),
    )


# Module-level app object for uvicorn
app = create_app()
