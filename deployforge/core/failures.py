"""Pipeline failure classes.

Each class maps to one stage and one process exit code so that upstream
automation can branch on the failure class.
"""

from __future__ import annotations

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_BUILD_FAILURE = 10
EXIT_PUBLISH_FAILURE = 20
EXIT_ROLLOUT_FAILURE = 30
EXIT_CANCELLED = 130


class PipelineFailure(RuntimeError):
    """Terminal failure of a pipeline run."""

    exit_code: int = EXIT_CONFIG_ERROR
    stage_id: str = ""
    run_id: str = ""  # set by the pipeline runner when raised inside a run


class BuildFailure(PipelineFailure):
    """The source tree does not satisfy the packaging contract.

    Not retryable without a source fix.
    """

    exit_code = EXIT_BUILD_FAILURE
    stage_id = "build"


class PublishFailure(PipelineFailure):
    """The artifact could not be published.

    ``retryable`` is True when the retry budget ran out on transient
    errors, False for authentication, quota or tag-immutability errors.
    """

    exit_code = EXIT_PUBLISH_FAILURE
    stage_id = "publish"

    def __init__(self, message: str, *, retryable: bool = False, attempts: int = 1) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.attempts = attempts


class RolloutFailure(PipelineFailure):
    """The new revision did not become the serving revision.

    The previously serving revision, if any, is still live.
    """

    exit_code = EXIT_ROLLOUT_FAILURE
    stage_id = "deploy"

    def __init__(self, message: str, *, service_name: str = "", serving_revision: str | None = None) -> None:
        super().__init__(message)
        self.service_name = service_name
        self.serving_revision = serving_revision


class ConcurrentRolloutError(RolloutFailure):
    """Another rollout changed the service record while this one ran."""


class PipelineCancelled(PipelineFailure):
    """The run was cancelled before it completed."""

    exit_code = EXIT_CANCELLED
