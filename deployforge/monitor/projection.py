"""RunProjection — pure read-only view over the RunLedger.

Every call re-reads the ledger; the projection never keeps state of its own.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from deployforge.core.run_ledger import LedgerIntegrityError, RunLedger
from deployforge.models.ledger import LedgerEntry
from deployforge.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    StageDefinition,
    StageState,
)


class StageStatus(BaseModel):
    """Point-in-time status of a single stage, derived from ledger entries."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    state: StageState = StageState.NOT_STARTED
    entered_at: datetime | None = None
    detail: str = ""
    artifact_refs: list[str] = []


class RunSnapshot(BaseModel):
    """A frozen, point-in-time snapshot of a pipeline run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    stages: list[StageStatus] = []
    entry_count: int = 0
    chain_valid: bool = True
    chain_error: str = ""
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.stages if s.state == StageState.PASSED)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    @property
    def failed_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.FAILED]

    @property
    def succeeded(self) -> bool:
        return bool(self.stages) and self.completed_count == self.total_stages


class RunProjection:
    """Read-only projection over the RunLedger.

    Parameters
    ----------
    ledger:
        The RunLedger to project from.
    stage_definitions:
        Stage definitions for display names and ordering.
    """

    def __init__(
        self,
        ledger: RunLedger,
        stage_definitions: list[StageDefinition] | None = None,
    ) -> None:
        self._ledger = ledger
        definitions = sorted(
            stage_definitions or DEFAULT_STAGE_DEFINITIONS, key=lambda sd: sd.ordinal
        )
        self._definitions = definitions

    def snapshot(self, run_id: str) -> RunSnapshot:
        """Produce a snapshot of ``run_id``, verifying its hash chain."""
        entries = self._ledger.get_run_entries(run_id)
        latest = self._latest_by_stage(entries)

        stages = []
        for sd in self._definitions:
            entry = latest.get(sd.stage_id)
            if entry is None:
                stages.append(StageStatus(stage_id=sd.stage_id, display_name=sd.display_name))
                continue
            stages.append(
                StageStatus(
                    stage_id=sd.stage_id,
                    display_name=sd.display_name,
                    state=StageState(entry.state_transition.split("->", 1)[1]),
                    entered_at=entry.timestamp_utc,
                    detail=entry.detail,
                    artifact_refs=entry.artifact_references,
                )
            )

        chain_valid, chain_error = True, ""
        try:
            self._ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            chain_valid, chain_error = False, str(exc)

        return RunSnapshot(
            run_id=run_id,
            stages=stages,
            entry_count=len(entries),
            chain_valid=chain_valid,
            chain_error=chain_error,
            last_updated=entries[-1].timestamp_utc if entries else datetime.now(timezone.utc),
        )

    @staticmethod
    def _latest_by_stage(entries: list[LedgerEntry]) -> dict[str, LedgerEntry]:
        latest: dict[str, LedgerEntry] = {}
        for entry in entries:
            latest[entry.stage_id] = entry
        return latest
