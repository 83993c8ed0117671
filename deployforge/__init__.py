"""deployforge: build, publish and deploy a containerized service.

A single run takes a source tree at a commit through three stages:

  - build: a deterministic, content-addressed build context
  - publish: an immutable registry tag, retried on transient errors
  - deploy: a zero-downtime revision swap guarded by readiness checks

Every stage transition is recorded in a hash-chained run ledger.
"""

__version__ = "0.1.0"
__description__ = "Build, publish and deploy containerized services with an auditable run ledger"

from deployforge.core.pipeline import PipelineResult, PipelineRunner

__all__ = ["PipelineResult", "PipelineRunner", "__version__"]
