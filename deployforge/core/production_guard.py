"""Production configuration guard.

Runs once when a pipeline runner is constructed and fails hard (raises
``ProductionConfigError``) if the process is configured for production
but still points at the simulated local backends.
"""

from __future__ import annotations

import logging

from deployforge.config import ProdConfig

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The process should exit; the error must not be caught and ignored.
    """


def enforce_production_constraints(config: ProdConfig) -> None:
    """Validate production-critical settings.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. The registry backend must be ``docker``.
    3. The runtime backend must be ``cloud-run``.

    Raises
    ------
    ProductionConfigError
        If any constraint is violated.
    """
    if not config.is_production:
        return

    violations: list[str] = []
    if config.debug:
        violations.append("debug=True is not allowed in production. Set DEPLOYFORGE_DEBUG=false.")
    if config.registry_backend == "local":
        violations.append(
            "registry_backend=local is not allowed in production. "
            "Set DEPLOYFORGE_REGISTRY_BACKEND=docker."
        )
    if config.runtime_backend == "local":
        violations.append(
            "runtime_backend=local is not allowed in production. "
            "Set DEPLOYFORGE_RUNTIME_BACKEND=cloud-run."
        )

    if violations:
        msg = "Production configuration invalid:\n  - " + "\n  - ".join(violations)
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration validated.")
