#!/usr/bin/env python3
"""Validate local capacity engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.models import DateRange
from backend.repository.data_repository import DataRepository
from backend.services.utilization_service import UtilizationAggregator
from backend.services.validation_service import AllocationValidator
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44
DEMO_WINDOW = DateRange(start=date(2025, 9, 1), end=date(2025, 9, 30))


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="capacity-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
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
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
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
            database_path=Path(temp_dir) / "capacity_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except RuntimeError as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo allocation seeding
        try:
            repository.seed_demo_data()
            seeded = repository.count_allocations()
            if seeded != 5:
                raise RuntimeError(f"expected 5 allocations, got {seeded}")
            ok, line = _print_result("Demo allocations: 5 rows", True)
        except RuntimeError as exc:
            ok, line = _print_result("Demo allocations", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Admission check rejects a full resource
        try:
            validator = AllocationValidator(repository=repository, settings=validation_settings)
            result = validator.validate("emily", DEMO_WINDOW, 30.0)
            if result.is_valid or result.available_capacity != 25.0:
                raise RuntimeError(
                    f"unexpected result valid={result.is_valid} "
                    f"available={result.available_capacity}"
                )
            ok, line = _print_result("Admission check", True, ": 75% booked, 30% rejected")
        except RuntimeError as exc:
            ok, line = _print_result("Admission check", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Overallocation report finds the seeded conflicts
        try:
            aggregator = UtilizationAggregator(repository=repository, settings=validation_settings)
            report = aggregator.find_overallocations("demo-org", DEMO_WINDOW)
            flagged = sorted({item.resource_id for item in report})
            if flagged != ["mike", "sarah"]:
                raise RuntimeError(f"expected mike and sarah, got {flagged}")
            ok, line = _print_result(
                "Overallocation report",
                True,
                f": {len(report)} resource-days",
            )
        except RuntimeError as exc:
            ok, line = _print_result("Overallocation report", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Capacity Engine Environment Validation")
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
