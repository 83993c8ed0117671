"""Append-only, hash-chained Run Ledger backed by SQLite.

The ledger is the source of truth for what every pipeline run did. The
``status`` command is a projection of it.

Design:
- Append-only: only ``append()`` writes; no update, no delete.
- Hash-chained: each entry includes SHA-256 of the previous entry of its run.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from deployforge.core.hasher import compute_entry_hash
from deployforge.models.ledger import LedgerEntry


_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    stage_id              TEXT NOT NULL,
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    input_hash            TEXT NOT NULL DEFAULT '',
    output_hash           TEXT NOT NULL DEFAULT '',
    artifact_refs_json    TEXT NOT NULL DEFAULT '[]',
    detail                TEXT NOT NULL DEFAULT '',
    pipeline_version      TEXT NOT NULL,
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""

_COLUMNS = (
    "entry_id, run_id, stage_id, state_transition, timestamp_utc, "
    "input_hash, output_hash, artifact_refs_json, detail, "
    "pipeline_version, previous_entry_hash, entry_hash"
)


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained Run Ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._append_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal ``entry`` onto the end of its run's chain and store it.

        Any ``previous_entry_hash`` or ``entry_hash`` on the input is
        replaced. Reading the chain head and inserting happen in one write
        transaction, so two processes appending to the same run cannot both
        link to the same predecessor.
        """
        with self._append_lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (entry.run_id,),
            ).fetchone()
            sealed = _seal(entry, row[0] if row else "")
            conn.execute(
                f"INSERT INTO run_ledger ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _row_values(sealed),
            )
        return sealed

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Return all distinct run_ids, most recent first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id, MAX(id) AS last_id FROM run_ledger "
                "GROUP BY run_id ORDER BY last_id DESC"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity for a run.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )

            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, "
                    f"got {entry.entry_hash!r}"
                )

            prev_hash = entry.entry_hash

        return True

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            entry_id,
            run_id,
            stage_id,
            state_transition,
            timestamp_utc,
            input_hash,
            output_hash,
            artifact_refs_json,
            detail,
            pipeline_version,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            stage_id=stage_id,
            state_transition=state_transition,
            timestamp_utc=timestamp_utc,
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=json.loads(artifact_refs_json),
            detail=detail,
            pipeline_version=pipeline_version,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )


def _seal(entry: LedgerEntry, previous_hash: str) -> LedgerEntry:
    unsealed = entry.model_dump(mode="json")
    unsealed["previous_entry_hash"] = previous_hash
    unsealed["entry_hash"] = ""
    return entry.model_copy(
        update={
            "previous_entry_hash": previous_hash,
            "entry_hash": compute_entry_hash(unsealed),
        }
    )


def _row_values(entry: LedgerEntry) -> tuple:
    timestamp = entry.timestamp_utc
    return (
        entry.entry_id,
        entry.run_id,
        entry.stage_id,
        entry.state_transition,
        timestamp.isoformat() if isinstance(timestamp, datetime) else timestamp,
        entry.input_hash,
        entry.output_hash,
        json.dumps(entry.artifact_references),
        entry.detail,
        entry.pipeline_version,
        entry.previous_entry_hash,
        entry.entry_hash,
    )
