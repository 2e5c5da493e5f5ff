#!/usr/bin/env python3
"""Validate local scheduler environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from importlib.metadata import version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from multical.domain.models import BookingIntent, BookingRequest
from multical.domain.rules import SchedulingRules, load_scheduling_rules
from multical.repository.calendar_repository import CalendarRepository
from multical.services.enrollment_service import EnrollmentService
from multical.services.keyword_resolver import KeywordResolver
from multical.services.occupancy_service import OccupancyService
from multical.services.reservation_service import ReservationService
from multical.services.schedule_service import ScheduleService
from multical.utils.config import get_settings

SEPARATOR_LINE = "=" * 44
SMOKE_CALENDAR = "c_validation"


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def _smoke_schedule_service(repository: CalendarRepository, rules: SchedulingRules) -> ScheduleService:
    resolver = KeywordResolver(rules, settings=repository.settings)
    occupancy = OccupancyService(repository, rules, settings=repository.settings)
    reservations = ReservationService(repository, resolver, occupancy, settings=repository.settings)
    enrollment = EnrollmentService(
        repository, resolver, occupancy, reservations, rules, settings=repository.settings
    )
    return ScheduleService(resolver, reservations, enrollment, settings=repository.settings)


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="multical-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("bs4", "beautifulsoup4"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            _ = version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        base_settings = get_settings()
        validation_settings = replace(
            base_settings,
            database_path=Path(temp_dir) / "multical_validation.db",
        )

        # CHECK 3: Scheduling rules
        try:
            load_scheduling_rules(validation_settings.rules_path)
            ok, line = _print_result("Scheduling rules", True)
        except Exception as exc:
            ok, line = _print_result("Scheduling rules", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Database initialization
        repository = CalendarRepository(validation_settings)
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Reserve then cancel leaves the calendar empty
        try:
            rules = SchedulingRules.from_mapping(
                {
                    "occupancy_rules": {"Smoke": 3},
                    "calendar_tree": {"Smoke": SMOKE_CALENDAR},
                }
            )
            service = _smoke_schedule_service(repository, rules)
            start = datetime(2030, 1, 1, 9, tzinfo=timezone.utc)
            end = start + timedelta(hours=1)
            for intent in (BookingIntent.NEW, BookingIntent.CANCEL):
                result = service.handle(
                    BookingRequest(
                        title="Validation",
                        intent=intent,
                        tags=("Smoke[1]",),
                        start=start,
                        end=end,
                    )
                )
                if not result.success:
                    raise RuntimeError(f"{intent.value} failed: {result.outcomes}")
            remaining = repository.count_events(SMOKE_CALENDAR)
            if remaining != 0:
                raise RuntimeError(f"expected an empty calendar, found {remaining} events")
            ok, line = _print_result("Reserve/cancel smoke scenario", True)
        except Exception as exc:
            ok, line = _print_result("Reserve/cancel smoke scenario", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Multical Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
