"""Ecosystem detection over repository tree snapshots."""

from __future__ import annotations

import hashlib
import posixpath
from dataclasses import dataclass
from typing import Dict, Iterable, List, Set, Tuple

from .errors import DetectionIOError
from .logging import get_logger
from .models import DetectionResult, Ecosystem, RepoTree

_EXCLUDED_DIRS = {
    "node_modules",
    "vendor",
    ".venv",
    "__pycache__",
}

_WORKFLOWS_PREFIX = ".github/workflows/"


@dataclass(frozen=True)
class ManifestRule:
    """Maps a manifest file name to the ecosystem it implies."""

    filename: str
    ecosystem: str


MANIFEST_RULES: Tuple[ManifestRule, ...] = (
    ManifestRule("package.json", "npm"),
    ManifestRule("go.mod", "gomod"),
    ManifestRule(".gitmodules", "gitsubmodule"),
    ManifestRule("requirements.txt", "pip"),
    ManifestRule("Gemfile.lock", "bundler"),
    ManifestRule("Dockerfile", "docker"),
    ManifestRule(".terraform.lock.hcl", "terraform"),
)

_SPECIAL_FILES = {"Cargo.toml", "pyproject.toml", "uv.lock"}

MANIFEST_FILENAMES = frozenset(
    {rule.filename for rule in MANIFEST_RULES} | _SPECIAL_FILES
)


def manifest_fingerprint(tree: RepoTree) -> str:
    """Hash the manifest-relevant part of the tree listing."""
    entries = sorted(
        (path, sha)
        for path, sha in tree.entries.items()
        if _is_relevant(path)
    )
    digest = hashlib.sha256()
    for path, sha in entries:
        digest.update(path.encode("utf-8"))
        digest.update(b"\0")
        digest.update((sha or "").encode("utf-8"))
        digest.update(b"\0")
    digest.update(str(len(entries)).encode("utf-8"))
    return digest.hexdigest()


def _is_relevant(path: str) -> bool:
    if _is_excluded(path):
        return False
    if path.startswith(_WORKFLOWS_PREFIX):
        return True
    return posixpath.basename(path) in MANIFEST_FILENAMES


def _is_excluded(path: str) -> bool:
    parts = path.split("/")[:-1]
    return any(part in _EXCLUDED_DIRS for part in parts)


def _directory_of(path: str) -> str:
    parent = posixpath.dirname(path)
    return "/" + parent if parent else "/"


def _is_nested_under(directory: str, candidates: Iterable[str]) -> bool:
    for other in candidates:
        if other == directory:
            continue
        prefix = other.rstrip("/") + "/"
        if directory.startswith(prefix):
            return True
    return False


class EcosystemDetector:
    """Finds package ecosystems in a repository tree snapshot."""

    def __init__(self) -> None:
        self.logger = get_logger("detector")

    def detect(self, tree: RepoTree, *, fingerprint: str | None = None) -> DetectionResult:
        """Return the distinct (ecosystem, directory) pairs present in ``tree``."""
        if fingerprint is None:
            fingerprint = manifest_fingerprint(tree)

        by_name: Dict[str, List[str]] = {}
        for path in sorted(tree.entries):
            if _is_excluded(path):
                continue
            by_name.setdefault(posixpath.basename(path), []).append(path)

        found: Set[Ecosystem] = set()
        for rule in MANIFEST_RULES:
            for path in by_name.get(rule.filename, []):
                found.add(Ecosystem(rule.ecosystem, _directory_of(path)))

        cargo_dirs = [_directory_of(path) for path in by_name.get("Cargo.toml", [])]
        for directory in cargo_dirs:
            # workspace members are covered by the top-most manifest
            if not _is_nested_under(directory, cargo_dirs):
                found.add(Ecosystem("cargo", directory))

        found.update(self._detect_python(tree, by_name))

        if any(path.startswith(_WORKFLOWS_PREFIX) for path in tree.entries):
            found.add(Ecosystem("github-actions", "/"))

        ecosystems = tuple(sorted(found, key=lambda item: item.sort_key))
        for ecosystem in ecosystems:
            self.logger.debug(
                "Found ecosystem %s at %s in %s",
                ecosystem.name,
                ecosystem.directory,
                tree.repository,
            )
        return DetectionResult(
            repository=tree.repository,
            ecosystems=ecosystems,
            fingerprint=fingerprint,
        )

    def _detect_python(
        self, tree: RepoTree, by_name: Dict[str, List[str]]
    ) -> Set[Ecosystem]:
        uv_dirs = {_directory_of(path) for path in by_name.get("uv.lock", [])}
        pyprojects = by_name.get("pyproject.toml", [])
        for path in pyprojects:
            if self._declares_uv(tree, path):
                uv_dirs.add(_directory_of(path))

        found = {Ecosystem("uv", directory) for directory in uv_dirs}
        # a repository that uses uv anywhere has its pyproject files managed by uv
        if not uv_dirs:
            found.update(Ecosystem("pip", _directory_of(path)) for path in pyprojects)
        return found

    @staticmethod
    def _declares_uv(tree: RepoTree, path: str) -> bool:
        try:
            content = tree.read(path)
        except Exception as exc:
            raise DetectionIOError(
                f"Failed to read {path} from {tree.repository}: {exc}"
            ) from exc
        if not content:
            return False
        return "[tool.uv" in content


__all__ = [
    "EcosystemDetector",
    "MANIFEST_FILENAMES",
    "MANIFEST_RULES",
    "ManifestRule",
    "manifest_fingerprint",
]
