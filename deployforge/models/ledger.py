"""Run ledger entry model (append-only, hash-chained).

One entry per stage transition, scoped to ``run_id`` + ``stage_id``.
Entries never carry secret values: stage inputs are hashed over
environment *keys* only.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str
    state_transition: str  # "from_state->to_state", e.g. "not_started->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []  # content addresses / image refs
    detail: str = ""  # failure message or short note
    pipeline_version: str = "0.1.0"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed by RunLedger.append, seals this entry
