"""Artifact Builder.

Turns a source tree into a deterministic tar build context and stores it in
the content-addressed artifact store. The image reference is derived only
from the build spec and the commit, so rebuilding a commit always yields the
same reference; an unchanged tree also yields the same digest.
"""

from __future__ import annotations

import fnmatch
import io
import logging
import os
import re
import stat
import tarfile
from pathlib import Path

from deployforge.core.artifact_store import ContentAddressedStore
from deployforge.core.failures import BuildFailure
from deployforge.core.substitutions import (
    SubstitutionError,
    builtin_substitutions,
    expand,
)
from deployforge.models.artifacts import BuildSpec, Revision

logger = logging.getLogger(__name__)

COMMIT_RE = re.compile(r"^[0-9a-f]{4,64}$")
TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")

ARTIFACT_TYPE = "build-context"

_ALWAYS_EXCLUDED = (".git",)


def normalize_commit(commit_sha: str) -> str:
    """Lower-case and validate a commit hash."""
    commit = commit_sha.strip().lower()
    if not COMMIT_RE.match(commit):
        raise BuildFailure(f"invalid commit hash {commit_sha!r}: expected 4-64 hex characters")
    return commit


def read_ignore_patterns(path: Path) -> list[str]:
    """Read ``.dockerignore``-style patterns (fnmatch syntax, no negation)."""
    if not path.is_file():
        return []
    patterns: list[str] = []
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("!"):
            logger.warning("Ignoring unsupported negated pattern %r in %s", line, path.name)
            continue
        patterns.append(line.strip("/"))
    return patterns


def _is_ignored(rel_path: str, patterns: list[str]) -> bool:
    parts = rel_path.split("/")
    if parts[0] in _ALWAYS_EXCLUDED:
        return True
    # A pattern matching a parent directory excludes everything below it.
    prefixes = ["/".join(parts[: i + 1]) for i in range(len(parts))]
    return any(fnmatch.fnmatchcase(p, pattern) for pattern in patterns for p in prefixes)


def _tarinfo(rel_path: str, full_path: Path) -> tuple[tarfile.TarInfo, bytes | None]:
    st = full_path.lstat()
    info = tarfile.TarInfo(name=rel_path)
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    if stat.S_ISLNK(st.st_mode):
        info.type = tarfile.SYMTYPE
        info.linkname = os.readlink(full_path)
        info.mode = 0o777
        return info, None
    if not stat.S_ISREG(st.st_mode):
        raise BuildFailure(f"cannot package {rel_path}: not a regular file")
    data = full_path.read_bytes()
    info.size = len(data)
    info.mode = 0o755 if st.st_mode & 0o111 else 0o644
    return info, data


def package_source(source_dir: Path, *, keep: tuple[str, ...] = (), ignore_file: str = ".dockerignore") -> tuple[bytes, int]:
    """Pack ``source_dir`` into a reproducible tar archive.

    Returns ``(archive_bytes, file_count)``. Paths listed in ``keep`` are
    included even when an ignore pattern matches them. Only regular files
    and symlinks can be packaged; anything else is a ``BuildFailure``.
    """
    source_dir = Path(source_dir)
    patterns = read_ignore_patterns(source_dir / ignore_file) if ignore_file else []
    members: list[str] = []
    for dirpath, dirnames, filenames in os.walk(source_dir):
        rel_dir = Path(dirpath).relative_to(source_dir).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir
        kept_dirs = []
        for name in dirnames:
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if (Path(dirpath) / name).is_symlink():
                filenames.append(name)
            elif not _is_ignored(rel, patterns) or any(k.startswith(rel + "/") for k in keep):
                kept_dirs.append(name)
        dirnames[:] = kept_dirs
        for name in filenames:
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if rel in keep or not _is_ignored(rel, patterns):
                members.append(rel)

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.GNU_FORMAT) as tar:
        for rel in sorted(members):
            info, data = _tarinfo(rel, source_dir / rel)
            tar.addfile(info, io.BytesIO(data) if data is not None else None)
    return buffer.getvalue(), len(members)


class ArtifactBuilder:
    """Builds immutable, content-addressed artifacts from a source tree.

    Parameters
    ----------
    spec:
        The resolved build spec.
    store:
        Artifact store receiving the packaged build context.
    """

    def __init__(self, spec: BuildSpec, store: ContentAddressedStore) -> None:
        self.spec = spec
        self._store = store

    def image_reference(self, commit_sha: str, substitutions: dict[str, str] | None = None) -> str:
        """Render the image reference for a commit. Pure; touches no files."""
        commit = normalize_commit(commit_sha)
        values = {**(substitutions or {}), **builtin_substitutions(self.spec.project_id, commit)}
        try:
            tag = expand(self.spec.tag_template, values)
        except SubstitutionError as exc:
            raise BuildFailure(f"cannot render image tag: {exc}") from exc
        if not TAG_RE.match(tag):
            raise BuildFailure(f"rendered tag {tag!r} is not a valid image tag")
        if not self.spec.project_id:
            raise BuildFailure("project id is required to name the image")
        return self.spec.image_reference(tag)

    def check_source(self) -> Path:
        """Verify the source tree satisfies the packaging contract."""
        source = Path(self.spec.source_dir)
        if not source.is_dir():
            raise BuildFailure(f"source directory {source} does not exist")
        descriptor = source / self.spec.descriptor
        if not descriptor.is_file():
            raise BuildFailure(
                f"build descriptor {self.spec.descriptor} not found in {source}"
            )
        return source

    def build(self, commit_sha: str, substitutions: dict[str, str] | None = None) -> Revision:
        """Package the source tree and store it; returns the Revision.

        Raises ``BuildFailure`` when the tree or the naming inputs are invalid.
        Nothing is stored unless the whole archive was produced.
        """
        image_ref = self.image_reference(commit_sha, substitutions)
        source = self.check_source()

        try:
            data, file_count = package_source(
                source,
                keep=(self.spec.descriptor, self.spec.ignore_file),
                ignore_file=self.spec.ignore_file,
            )
        except (OSError, UnicodeDecodeError) as exc:
            raise BuildFailure(f"failed to package {source}: {exc}") from exc

        artifact = self._store.store(
            data,
            name=image_ref,
            artifact_type=ARTIFACT_TYPE,
            metadata={"commit_sha": normalize_commit(commit_sha), "files": file_count},
        )
        logger.info(
            "Built %s: %s (%d files, %d bytes)",
            image_ref,
            artifact.content_address[:19],
            file_count,
            artifact.size_bytes,
        )
        return Revision(
            commit_sha=normalize_commit(commit_sha),
            image_ref=image_ref,
            artifact=artifact.to_ref(),
        )
