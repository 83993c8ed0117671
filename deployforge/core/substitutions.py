"""Substitution variables and pipeline files.

Templates use Cloud Build style variables: ``$VAR`` or ``${VAR}``.
Built-in variables are ``PROJECT_ID``, ``COMMIT_SHA`` and ``SHORT_SHA``;
user-defined variables must start with an underscore (``_SUPABASE_URL``).
"""

from __future__ import annotations

import json
import string
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from deployforge.models.config import BuildSettings, DeploySettings, PipelineConfig

BUILTIN_KEYS = frozenset({"PROJECT_ID", "COMMIT_SHA", "SHORT_SHA"})


class SubstitutionError(ValueError):
    """Raised for unknown, malformed or unresolvable substitutions."""


def builtin_substitutions(project_id: str, commit_sha: str) -> dict[str, str]:
    return {
        "PROJECT_ID": project_id,
        "COMMIT_SHA": commit_sha,
        "SHORT_SHA": commit_sha[:7],
    }


def validate_user_keys(values: dict[str, str]) -> dict[str, str]:
    """Reject user substitutions that do not start with ``_``."""
    for key in values:
        if not key.startswith("_") or not key[1:].replace("_", "").isalnum():
            raise SubstitutionError(
                f"user substitution {key!r} must match _[A-Z0-9_]+"
            )
    return values


def expand(template: str, values: dict[str, str]) -> str:
    """Expand ``$VAR`` / ``${VAR}`` in ``template``.

    ``$$`` yields a literal ``$``. Any variable missing from ``values``
    raises ``SubstitutionError``.
    """
    try:
        return string.Template(template).substitute(values)
    except KeyError as exc:
        raise SubstitutionError(f"unknown substitution ${exc.args[0]} in {template!r}") from None
    except ValueError as exc:
        raise SubstitutionError(f"malformed template {template!r}: {exc}") from None


def parse_assignments(items: list[str] | None) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings; the value may itself contain ``=``."""
    result: dict[str, str] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise SubstitutionError(f"expected KEY=VALUE, got {item!r}")
        result[key] = value
    return result


def load_substitutions_file(path: Path) -> dict[str, str]:
    """Load a key-value file: a JSON object or ``KEY=VALUE`` lines.

    Blank lines and lines starting with ``#`` are ignored in the line format.
    """
    text = Path(path).read_text(encoding="utf-8")
    if text.lstrip().startswith("{"):
        data = json.loads(text)
        if not isinstance(data, dict):
            raise SubstitutionError(f"{path}: expected a JSON object")
        return {str(k): str(v) for k, v in data.items()}
    lines = [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]
    return parse_assignments(lines)


def load_pipeline_file(path: Path, **overrides: Any) -> PipelineConfig:
    """Load a ``deployforge.toml`` pipeline declaration.

    Example::

        project = "demo"

        [build]
        source = "."
        registry = "gcr.io"
        image = "supabase-app"

        [deploy]
        service = "supabase-service"
        region = "us-central1"
        access = "public"

        [deploy.env]
        SUPABASE_URL = "${_SUPABASE_URL}"
        SUPABASE_KEY = "${_SUPABASE_KEY}"

        [substitutions]
        _SUPABASE_URL = "https://example.supabase.co"
    """
    path = Path(path)
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    build = dict(data.get("build", {}))
    deploy = dict(data.get("deploy", {}))
    renames = {"source": "source_dir", "image": "image_name", "tag": "tag_template"}
    for old, new in renames.items():
        if old in build:
            build[new] = build.pop(old)
    if "source_dir" in build:
        source = Path(build["source_dir"])
        build["source_dir"] = source if source.is_absolute() else path.parent / source
    for old, new in {"service": "service_name", "access": "access_policy"}.items():
        if old in deploy:
            deploy[new] = deploy.pop(old)

    try:
        return PipelineConfig(
            project_id=data.get("project", ""),
            build=BuildSettings(**build),
            deploy=DeploySettings(**deploy),
            substitutions=validate_user_keys(
                {str(k): str(v) for k, v in data.get("substitutions", {}).items()}
            ),
            **overrides,
        )
    except ValidationError as exc:
        raise SubstitutionError(f"{path}: {exc}") from exc
