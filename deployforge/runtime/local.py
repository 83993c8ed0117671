"""Local managed runtime.

Simulates a managed serving platform in-process. When given a state
directory, it persists each service to ``{root}/{service}.json`` with
``0600`` permissions; that directory plays the role of the platform's own
secret storage, so revision environments are kept there and nowhere else.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from deployforge.core.hasher import sha256_hex
from deployforge.models.deployment import DeploymentTarget, RevisionHandle
from deployforge.runtime import RuntimeBackendError

logger = logging.getLogger(__name__)


def _empty_service() -> dict[str, Any]:
    return {"serving": None, "counter": 0, "revisions": {}}


class LocalRuntime:
    """In-process runtime with Cloud Run style revision naming.

    Parameters
    ----------
    root:
        Optional state directory. In-memory only when omitted.
    readiness:
        Optional hook deciding whether a revision is ready; every revision
        is ready when omitted.
    """

    def __init__(
        self,
        root: Path | None = None,
        *,
        readiness: Callable[[RevisionHandle], bool] | None = None,
    ) -> None:
        self._root = Path(root) if root is not None else None
        if self._root is not None:
            self._root.mkdir(parents=True, exist_ok=True)
        self._readiness = readiness
        self._services: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self, service_name: str) -> dict[str, Any]:
        if service_name in self._services:
            return self._services[service_name]
        state = _empty_service()
        if self._root is not None:
            path = self._root / f"{service_name}.json"
            if path.exists():
                state = json.loads(path.read_text(encoding="utf-8"))
        self._services[service_name] = state
        return state

    def _save(self, service_name: str) -> None:
        if self._root is None:
            return
        path = self._root / f"{service_name}.json"
        tmp = path.with_suffix(".json.tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(self._services[service_name], fh, sort_keys=True)
        os.replace(tmp, path)

    # ------------------------------------------------------------------
    # ServingRuntime
    # ------------------------------------------------------------------

    def create_revision(self, target: DeploymentTarget, image_ref: str) -> RevisionHandle:
        with self._lock:
            state = self._load(target.service_name)
            state["counter"] += 1
            suffix = sha256_hex(f"{image_ref}#{state['counter']}".encode())[:3]
            name = f"{target.service_name}-{state['counter']:05d}-{suffix}"
            url = f"https://{target.service_name}-{target.region}.run.local"
            state["revisions"][name] = {
                "image_ref": image_ref,
                "env": target.reveal_env(),
                "url": url,
                "region": target.region,
                "platform": target.platform.value,
                "access_policy": target.access_policy.value,
            }
            self._save(target.service_name)
        logger.info(
            "Created revision %s of %s (env keys: %s)",
            name,
            target.service_name,
            ", ".join(target.env_keys) or "-",
        )
        return RevisionHandle(
            service_name=target.service_name,
            revision_name=name,
            image_ref=image_ref,
            url=url,
        )

    def route_traffic(self, target: DeploymentTarget, revision_name: str) -> None:
        with self._lock:
            state = self._load(target.service_name)
            if revision_name not in state["revisions"]:
                raise RuntimeBackendError(
                    f"{target.service_name} has no revision {revision_name!r}"
                )
            state["serving"] = revision_name
            self._save(target.service_name)
        logger.info("Routed 100%% of %s traffic to %s", target.service_name, revision_name)

    def delete_revision(self, target: DeploymentTarget, revision_name: str) -> None:
        with self._lock:
            state = self._load(target.service_name)
            if state["serving"] == revision_name:
                raise RuntimeBackendError(f"{revision_name} is serving traffic")
            if state["revisions"].pop(revision_name, None) is not None:
                self._save(target.service_name)
        logger.info("Deleted revision %s", revision_name)

    def serving_revision(self, target: DeploymentTarget) -> str | None:
        return self.serving_revision_of(target.service_name)

    def is_ready(self, target: DeploymentTarget, handle: RevisionHandle) -> bool:
        with self._lock:
            known = handle.revision_name in self._load(target.service_name)["revisions"]
        if not known:
            return False
        return self._readiness(handle) if self._readiness is not None else True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def serving_revision_of(self, service_name: str) -> str | None:
        with self._lock:
            return self._load(service_name)["serving"]

    def revisions(self, service_name: str) -> list[str]:
        with self._lock:
            return sorted(self._load(service_name)["revisions"])

    def environment_of(self, service_name: str, revision_name: str | None = None) -> dict[str, str]:
        """The environment a revision's process sees (serving one by default)."""
        with self._lock:
            state = self._load(service_name)
            name = revision_name or state["serving"]
            if name is None or name not in state["revisions"]:
                raise RuntimeBackendError(f"{service_name} has no revision {name!r}")
            return dict(state["revisions"][name]["env"])

    def request(self, service_name: str) -> int:
        """Status code a client would get from the service right now."""
        with self._lock:
            state = self._load(service_name)
            serving = state["serving"]
            if serving is None:
                return 404
            revision = state["revisions"][serving]
        handle = RevisionHandle(
            service_name=service_name,
            revision_name=serving,
            image_ref=revision["image_ref"],
            url=revision["url"],
        )
        if self._readiness is not None and not self._readiness(handle):
            return 503
        return 200
