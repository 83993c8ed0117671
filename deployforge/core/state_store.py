"""Versioned service records with compare-and-swap updates, backed by SQLite.

Each service has at most one current record. A rollout may only replace it
by naming the version it read; a mismatch means another rollout got there
first. Every accepted record is also appended to an immutable history.

Only environment *keys* are stored here. Values stay in the runtime.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

from deployforge.models.deployment import ServiceRecord


_CREATE_SERVICES = """
CREATE TABLE IF NOT EXISTS services (
    service_name  TEXT PRIMARY KEY,
    version       INTEGER NOT NULL,
    record_json   TEXT NOT NULL
);
"""

_CREATE_HISTORY = """
CREATE TABLE IF NOT EXISTS service_history (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    service_name  TEXT NOT NULL,
    version       INTEGER NOT NULL,
    record_json   TEXT NOT NULL,
    UNIQUE (service_name, version)
);
"""


class VersionConflictError(RuntimeError):
    """Raised when the stored version differs from the expected one."""

    def __init__(self, service_name: str, expected: int, actual: int) -> None:
        super().__init__(
            f"service {service_name!r} is at version {actual}, expected {expected}"
        )
        self.service_name = service_name
        self.expected = expected
        self.actual = actual


class DeploymentStateStore:
    """Current-revision records, one per service.

    Version 0 means "no record yet"; the first successful rollout writes
    version 1.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(_CREATE_SERVICES)
            conn.execute(_CREATE_HISTORY)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below.
        conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False, isolation_level=None
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def get(self, service_name: str) -> ServiceRecord | None:
        """Return the current record for a service, or None."""
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT record_json FROM services WHERE service_name = ?",
                (service_name,),
            ).fetchone()
        finally:
            conn.close()
        return ServiceRecord.model_validate_json(row[0]) if row else None

    def current_version(self, service_name: str) -> int:
        record = self.get(service_name)
        return record.version if record else 0

    def compare_and_swap(
        self, service_name: str, expected_version: int, record: ServiceRecord
    ) -> ServiceRecord:
        """Replace the record iff its stored version equals ``expected_version``.

        The written record gets ``version = expected_version + 1``.
        Raises ``VersionConflictError`` otherwise.
        """
        new_record = record.model_copy(
            update={"service_name": service_name, "version": expected_version + 1}
        )
        payload = new_record.model_dump_json()

        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT version FROM services WHERE service_name = ?",
                (service_name,),
            ).fetchone()
            actual = row[0] if row else 0
            if actual != expected_version:
                conn.execute("ROLLBACK")
                raise VersionConflictError(service_name, expected_version, actual)
            conn.execute(
                "INSERT INTO services (service_name, version, record_json) VALUES (?, ?, ?) "
                "ON CONFLICT(service_name) DO UPDATE SET "
                "version = excluded.version, record_json = excluded.record_json",
                (service_name, new_record.version, payload),
            )
            conn.execute(
                "INSERT INTO service_history (service_name, version, record_json) "
                "VALUES (?, ?, ?)",
                (service_name, new_record.version, payload),
            )
            conn.execute("COMMIT")
        finally:
            conn.close()
        return new_record

    def history(self, service_name: str) -> list[ServiceRecord]:
        """All accepted records for a service, oldest first."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT record_json FROM service_history WHERE service_name = ? ORDER BY version",
                (service_name,),
            ).fetchall()
        finally:
            conn.close()
        return [ServiceRecord.model_validate_json(row[0]) for row in rows]

    def list_services(self) -> list[ServiceRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT record_json FROM services ORDER BY service_name"
            ).fetchall()
        finally:
            conn.close()
        return [ServiceRecord.model_validate_json(row[0]) for row in rows]

    def export(self) -> str:
        """JSON dump of all current records, for diagnostics."""
        return json.dumps(
            [json.loads(r.model_dump_json()) for r in self.list_services()], indent=2
        )
