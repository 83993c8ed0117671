"""Tests for the RunLedger — append-only, hash-chained, tamper-evident."""

from __future__ import annotations

import sqlite3

import pytest

from deployforge.core.run_ledger import LedgerIntegrityError, RunLedger
from deployforge.models.ledger import LedgerEntry


def _entry(run_id: str = "run-1", stage_id: str = "build", transition: str = "not_started->running", **kw):
    return LedgerEntry(run_id=run_id, stage_id=stage_id, state_transition=transition, **kw)


class TestRunLedger:
    def test_append_sets_entry_hash(self, ledger: RunLedger):
        sealed = ledger.append(_entry())
        assert sealed.entry_hash != ""
        assert sealed.previous_entry_hash == ""  # first entry

    def test_hash_chain_links(self, ledger: RunLedger):
        e1 = ledger.append(_entry())
        e2 = ledger.append(_entry(transition="running->passed"))
        assert e2.previous_entry_hash == e1.entry_hash

    def test_chains_are_per_run(self, ledger: RunLedger):
        ledger.append(_entry(run_id="run-1"))
        first_of_run2 = ledger.append(_entry(run_id="run-2"))
        assert first_of_run2.previous_entry_hash == ""

    def test_verify_chain_valid(self, ledger: RunLedger):
        ledger.append(_entry())
        ledger.append(_entry(stage_id="publish", artifact_references=["sha256:abc"]))
        assert ledger.verify_chain("run-1") is True

    def test_verify_chain_empty(self, ledger: RunLedger):
        assert ledger.verify_chain("nonexistent") is True

    def test_get_run_entries_roundtrip(self, ledger: RunLedger):
        sealed = ledger.append(_entry(detail="boom", artifact_references=["sha256:1"]))
        ledger.append(_entry(run_id="run-2"))
        entries = ledger.get_run_entries("run-1")
        assert len(entries) == 1
        assert entries[0] == sealed

    def test_get_all_run_ids_most_recent_first(self, ledger: RunLedger):
        ledger.append(_entry(run_id="run-1"))
        ledger.append(_entry(run_id="run-2"))
        ledger.append(_entry(run_id="run-1", stage_id="publish"))
        assert ledger.get_all_run_ids() == ["run-1", "run-2"]


class TestTampering:
    def test_modified_detail_is_detected(self, ledger: RunLedger, tmp_dir):
        ledger.append(_entry())
        ledger.append(_entry(transition="running->failed", detail="original"))
        conn = sqlite3.connect(tmp_dir / "test_ledger.db")
        conn.execute("UPDATE run_ledger SET detail = 'rewritten' WHERE detail = 'original'")
        conn.commit()
        conn.close()
        with pytest.raises(LedgerIntegrityError, match="Tampered"):
            ledger.verify_chain("run-1")

    def test_deleted_entry_breaks_chain(self, ledger: RunLedger, tmp_dir):
        first = ledger.append(_entry())
        ledger.append(_entry(transition="running->passed"))
        conn = sqlite3.connect(tmp_dir / "test_ledger.db")
        conn.execute("DELETE FROM run_ledger WHERE entry_id = ?", (first.entry_id,))
        conn.commit()
        conn.close()
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            ledger.verify_chain("run-1")
