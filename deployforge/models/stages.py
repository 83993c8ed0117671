"""Stage state machine models for the build -> publish -> deploy pipeline."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageState(str, Enum):
    """Strict state model for each pipeline stage."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    BLOCKED = "blocked"
    FAILED = "failed"
    PASSED = "passed"
    CANCELLED = "cancelled"


# Valid state transitions, enforced by StageMachine.
# A run never retries a stage: FAILED, PASSED, BLOCKED and CANCELLED are
# terminal. Re-running a commit starts a new run.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {
        StageState.RUNNING,
        StageState.BLOCKED,
        StageState.CANCELLED,
    },
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED, StageState.CANCELLED},
    StageState.BLOCKED: set(),
    StageState.FAILED: set(),
    StageState.PASSED: set(),
    StageState.CANCELLED: set(),
}


class StageDefinition(BaseModel):
    """Defines a pipeline stage and the stage it depends on."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: int
    prerequisites: list[str] = []  # stage_ids that must be PASSED


BUILD_STAGE = "build"
PUBLISH_STAGE = "publish"
DEPLOY_STAGE = "deploy"

DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id=BUILD_STAGE,
        display_name="Artifact Build",
        ordinal=0,
    ),
    StageDefinition(
        stage_id=PUBLISH_STAGE,
        display_name="Registry Publish",
        ordinal=1,
        prerequisites=[BUILD_STAGE],
    ),
    StageDefinition(
        stage_id=DEPLOY_STAGE,
        display_name="Rollout",
        ordinal=2,
        prerequisites=[PUBLISH_STAGE],
    ),
]
