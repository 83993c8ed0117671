"""Deterministic stage state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- A stage enters RUNNING only when every prerequisite is PASSED
- Failure or cancellation of a stage blocks / cancels every later stage
- Every transition recorded in the Run Ledger
"""

from __future__ import annotations

from collections import deque

from deployforge.core.run_ledger import RunLedger
from deployforge.models.ledger import LedgerEntry
from deployforge.models.stages import (
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class PrerequisiteNotMetError(RuntimeError):
    """Raised when a stage cannot run because prerequisites are not met."""


class StageMachine:
    """Enforces the stage state machine with prerequisite checking.

    Parameters
    ----------
    ledger:
        The Run Ledger to record transitions into.
    stages:
        Stage definitions; prerequisites must refer to known stages.
    """

    def __init__(self, ledger: RunLedger, stages: list[StageDefinition]) -> None:
        self._ledger = ledger
        self._stages = {sd.stage_id: sd for sd in sorted(stages, key=lambda s: s.ordinal)}
        self._dependents: dict[str, list[str]] = {sid: [] for sid in self._stages}
        for sd in self._stages.values():
            for prereq in sd.prerequisites:
                if prereq not in self._stages:
                    raise ValueError(f"{sd.stage_id} depends on unknown stage {prereq}")
                self._dependents[prereq].append(sd.stage_id)
        # In-memory state cache: run_id -> {stage_id -> StageState}
        self._states: dict[str, dict[str, StageState]] = {}

    @property
    def stage_ids(self) -> list[str]:
        return list(self._stages)

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(self, run_id: str) -> dict[str, StageState]:
        """Initialize all stages to NOT_STARTED for a new run."""
        states = {sid: StageState.NOT_STARTED for sid in self._stages}
        self._states[run_id] = states
        return dict(states)

    def get_current_state(self, run_id: str, stage_id: str) -> StageState:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return self._states[run_id].get(stage_id, StageState.NOT_STARTED)

    def get_all_states(self, run_id: str) -> dict[str, StageState]:
        """Return a snapshot of all stage states for a run."""
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return dict(self._states[run_id])

    def _rebuild_state(self, run_id: str) -> None:
        """Rebuild in-memory state from the ledger."""
        states = {sid: StageState.NOT_STARTED for sid in self._stages}
        for entry in self._ledger.get_run_entries(run_id):
            if "->" in entry.state_transition and entry.stage_id in states:
                _, to_state = entry.state_transition.split("->", 1)
                states[entry.stage_id] = StageState(to_state)
        self._states[run_id] = states

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: str = "",
    ) -> LedgerEntry:
        """Transition a stage to a new state, recording it in the ledger.

        Returns the sealed LedgerEntry.
        """
        if stage_id not in self._stages:
            raise InvalidTransitionError(f"Unknown stage {stage_id!r}")
        if run_id not in self._states:
            self._rebuild_state(run_id)
        states = self._states[run_id]
        current = states[stage_id]

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target_state == StageState.RUNNING:
            reasons = self.blocking_reasons(run_id, stage_id)
            if reasons:
                raise PrerequisiteNotMetError(
                    f"Cannot start {stage_id}: {'; '.join(reasons)}"
                )

        sealed = self._ledger.append(
            LedgerEntry(
                run_id=run_id,
                stage_id=stage_id,
                state_transition=f"{current.value}->{target_state.value}",
                input_hash=input_hash,
                output_hash=output_hash,
                artifact_references=artifact_references or [],
                detail=detail,
            )
        )
        states[stage_id] = target_state

        if target_state == StageState.FAILED:
            self._cascade(run_id, stage_id, StageState.BLOCKED, f"upstream {stage_id} failed")
        elif target_state == StageState.CANCELLED:
            self._cascade(run_id, stage_id, StageState.CANCELLED, "run cancelled")

        return sealed

    def _cascade(
        self, run_id: str, stage_id: str, target_state: StageState, detail: str
    ) -> list[str]:
        """Move every not-started transitive dependent to ``target_state``."""
        states = self._states[run_id]
        touched: list[str] = []
        queue = deque(self._dependents[stage_id])
        while queue:
            dep = queue.popleft()
            if states[dep] != StageState.NOT_STARTED:
                continue
            self._ledger.append(
                LedgerEntry(
                    run_id=run_id,
                    stage_id=dep,
                    state_transition=f"{StageState.NOT_STARTED.value}->{target_state.value}",
                    detail=detail,
                )
            )
            states[dep] = target_state
            touched.append(dep)
            queue.extend(self._dependents[dep])
        return touched

    def blocking_reasons(self, run_id: str, stage_id: str) -> list[str]:
        """Return why ``stage_id`` cannot start; empty when it can."""
        states = self.get_all_states(run_id)
        return [
            f"{prereq} is {states[prereq].value}"
            for prereq in self._stages[stage_id].prerequisites
            if states[prereq] != StageState.PASSED
        ]

    def cancel_remaining(self, run_id: str, detail: str = "run cancelled") -> list[str]:
        """Cancel every stage that has not started or is still running."""
        cancelled: list[str] = []
        for sid in self._stages:
            state = self.get_current_state(run_id, sid)
            if state in (StageState.NOT_STARTED, StageState.RUNNING):
                self.transition(run_id, sid, StageState.CANCELLED, detail=detail)
                cancelled.append(sid)
        return cancelled
