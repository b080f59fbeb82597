#!/usr/bin/env python3
"""Validate local booking-service environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date, timedelta
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.models import GuestDetails
from backend.repository.data_repository import DataRepository, demo_room_id
from backend.services.admission_service import AdmissionCoordinator
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="guesthouse-env-")

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

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("requests", "requests"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    from importlib.metadata import PackageNotFoundError, version

    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
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
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "guesthouse_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Schema, indexes and overlap triggers
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo inventory
        try:
            repository.seed_demo_inventory()
            room_count = len(repository.list_rooms())
            if room_count == 0:
                raise RuntimeError("no rooms seeded")
            ok, line = _print_result("Demo inventory", True, f": {room_count} rooms")
        except Exception as exc:
            ok, line = _print_result("Demo inventory", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Admission rejects a second overlapping stay
        try:
            coordinator = AdmissionCoordinator(repository=repository, settings=validation_settings)
            check_in = date.today() + timedelta(days=30)
            guest = GuestDetails(name="Env Check", email="env-check@example.com")
            first = coordinator.admit(
                room_id=demo_room_id("101"),
                check_in=check_in,
                check_out=check_in + timedelta(days=2),
                guest=guest,
            )
            second = coordinator.admit(
                room_id=demo_room_id("101"),
                check_in=check_in + timedelta(days=1),
                check_out=check_in + timedelta(days=3),
                guest=guest,
            )
            if not first.accepted or second.accepted:
                raise RuntimeError(f"unexpected decisions: {first}, {second}")
            ok, line = _print_result("Admission conflict check", True)
        except Exception as exc:
            ok, line = _print_result("Admission conflict check", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Service Environment Validation")
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
