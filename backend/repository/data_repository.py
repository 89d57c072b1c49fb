"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from backend.domain.models import ResourceAllocation
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


_ALLOCATION_COLUMNS = """
    a.id,
    a.resource_id,
    a.project_id,
    a.task_id,
    a.start_date,
    a.end_date,
    a.allocation_percentage,
    a.hours_per_day,
    a.organization_id,
    a.created_at,
    a.updated_at,
    p.name AS project_name
"""

_ALLOCATION_FROM = """
    FROM ResourceAllocations AS a
    LEFT JOIN Projects AS p
        ON p.id = a.project_id AND p.organization_id = a.organization_id
"""


def new_allocation_id() -> str:
    return uuid.uuid4().hex


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_allocation(row: sqlite3.Row) -> ResourceAllocation:
    return ResourceAllocation(
        allocation_id=str(row["id"]),
        resource_id=str(row["resource_id"]),
        project_id=str(row["project_id"]),
        task_id=row["task_id"],
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        allocation_percentage=float(row["allocation_percentage"]),
        hours_per_day=float(row["hours_per_day"]),
        organization_id=str(row["organization_id"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        project_name=row["project_name"],
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Every call opens its own connection, so one instance can be shared by
    request threads. The store does not cap the sum of overlapping
    allocations; that ceiling lives in the validation service.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=30.0)
        connection.row_factory = sqlite3.Row
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Projects (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        organization_id TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ResourceAllocations (
                        id TEXT PRIMARY KEY,
                        resource_id TEXT NOT NULL,
                        project_id TEXT NOT NULL,
                        task_id TEXT,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        allocation_percentage REAL NOT NULL
                            CHECK (allocation_percentage > 0 AND allocation_percentage <= 100),
                        hours_per_day REAL NOT NULL DEFAULT 8,
                        organization_id TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        CHECK (start_date <= end_date)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_allocations_resource_dates
                    ON ResourceAllocations(resource_id, start_date, end_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_allocations_org_dates
                    ON ResourceAllocations(organization_id, start_date, end_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_allocations_project
                    ON ResourceAllocations(project_id, start_date);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> None:
        """Seed a small demo organization only when no allocations exist.

        Rows are written directly, bypassing the validation service, so the
        demo includes resources that are already over capacity.
        """
        organization_id = "demo-org"
        projects = [
            ("proj-portal", "Customer Portal Redesign"),
            ("proj-api", "API Migration Phase 2"),
            ("proj-mobile", "Mobile App Launch"),
            ("proj-infra", "Infrastructure Upgrade"),
        ]
        allocations = [
            ("sarah", "proj-portal", "2025-09-01", "2025-09-15", 80.0, 6.4),
            ("sarah", "proj-api", "2025-09-10", "2025-09-20", 60.0, 4.8),
            ("mike", "proj-api", "2025-09-05", "2025-09-25", 100.0, 8.0),
            ("mike", "proj-mobile", "2025-09-10", "2025-09-30", 80.0, 6.4),
            ("emily", "proj-infra", "2025-09-01", "2025-09-30", 75.0, 6.0),
        ]
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM ResourceAllocations;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return

                cursor.executemany(
                    """
                    INSERT OR IGNORE INTO Projects (id, name, organization_id)
                    VALUES (?, ?, ?);
                    """,
                    [(project_id, name, organization_id) for project_id, name in projects],
                )
                now = _utc_now()
                cursor.executemany(
                    """
                    INSERT INTO ResourceAllocations (
                        id, resource_id, project_id, task_id, start_date, end_date,
                        allocation_percentage, hours_per_day, organization_id,
                        created_at, updated_at
                    )
                    VALUES (?, ?, ?, NULL, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    [
                        (
                            new_allocation_id(),
                            resource_id,
                            project_id,
                            start_date,
                            end_date,
                            percentage,
                            hours,
                            organization_id,
                            now,
                            now,
                        )
                        for resource_id, project_id, start_date, end_date, percentage, hours in allocations
                    ],
                )
                conn.commit()
            logger.info("Demo seed completed with %s allocations", len(allocations))
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    def upsert_project(self, project_id: str, name: str, organization_id: str) -> bool:
        """Register the display name used in conflict and utilization records.

        Returns False, writing nothing, when another organization owns the id.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO Projects (id, name, organization_id)
                VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name
                WHERE Projects.organization_id = excluded.organization_id;
                """,
                (project_id, name, organization_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def _select_allocations(self, where: str, params: tuple, order_by: str) -> list[ResourceAllocation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_ALLOCATION_COLUMNS} {_ALLOCATION_FROM} WHERE {where} ORDER BY {order_by};",
                params,
            )
            return [_row_to_allocation(row) for row in cursor.fetchall()]

    def find_overlapping(
        self,
        resource_id: str,
        range_start: date,
        range_end: date,
    ) -> list[ResourceAllocation]:
        """Return the resource's allocations intersecting the window.

        Uses the full interval predicate so allocations that start before the
        window but run into it are included. Ordered by start date, then id.
        """
        return self._select_allocations(
            "a.resource_id = ? AND a.start_date <= ? AND a.end_date >= ?",
            (resource_id, range_end.isoformat(), range_start.isoformat()),
            "a.start_date ASC, a.id ASC",
        )

    def find_by_organization_overlapping(
        self,
        organization_id: str,
        range_start: date,
        range_end: date,
    ) -> list[ResourceAllocation]:
        return self._select_allocations(
            "a.organization_id = ? AND a.start_date <= ? AND a.end_date >= ?",
            (organization_id, range_end.isoformat(), range_start.isoformat()),
            "a.resource_id ASC, a.start_date ASC, a.id ASC",
        )

    def find_by_id(self, allocation_id: str) -> Optional[ResourceAllocation]:
        rows = self._select_allocations("a.id = ?", (allocation_id,), "a.id ASC")
        if not rows:
            return None
        return rows[0]

    def find_by_project(self, project_id: str) -> list[ResourceAllocation]:
        return self._select_allocations(
            "a.project_id = ?",
            (project_id,),
            "a.start_date ASC, a.id ASC",
        )

    def find_by_resource(self, resource_id: str) -> list[ResourceAllocation]:
        return self._select_allocations(
            "a.resource_id = ?",
            (resource_id,),
            "a.start_date ASC, a.id ASC",
        )

    def find_by_organization(self, organization_id: str) -> list[ResourceAllocation]:
        return self._select_allocations(
            "a.organization_id = ?",
            (organization_id,),
            "a.resource_id ASC, a.start_date ASC, a.id ASC",
        )

    def save(self, allocation: ResourceAllocation) -> ResourceAllocation:
        """Insert or fully replace one allocation row and return the stored record."""
        now = _utc_now()
        stored = replace(
            allocation,
            created_at=allocation.created_at or now,
            updated_at=now,
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO ResourceAllocations (
                    id, resource_id, project_id, task_id, start_date, end_date,
                    allocation_percentage, hours_per_day, organization_id,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    resource_id = excluded.resource_id,
                    project_id = excluded.project_id,
                    task_id = excluded.task_id,
                    start_date = excluded.start_date,
                    end_date = excluded.end_date,
                    allocation_percentage = excluded.allocation_percentage,
                    hours_per_day = excluded.hours_per_day,
                    organization_id = excluded.organization_id,
                    updated_at = excluded.updated_at;
                """,
                (
                    stored.allocation_id,
                    stored.resource_id,
                    stored.project_id,
                    stored.task_id,
                    stored.start_date.isoformat(),
                    stored.end_date.isoformat(),
                    stored.allocation_percentage,
                    stored.hours_per_day,
                    stored.organization_id,
                    stored.created_at,
                    stored.updated_at,
                ),
            )
            conn.commit()
        saved = self.find_by_id(stored.allocation_id)
        if saved is None:  # pragma: no cover - row was just written
            raise RuntimeError(f"allocation {stored.allocation_id} missing after save")
        return saved

    def delete(self, allocation_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM ResourceAllocations WHERE id = ?;", (allocation_id,))
            conn.commit()

    def count_allocations(self) -> int:
        """Return persisted allocation count for diagnostics and tests."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM ResourceAllocations;")
            return int(cursor.fetchone()["count"])
