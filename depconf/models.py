"""Core data models shared across depconf components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Repository:
    """A repository of the audited organization."""

    name: str
    full_name: str
    default_branch: str = "main"
    archived: bool = False


@dataclass(frozen=True)
class RemoteFile:
    """File content fetched from the hosting platform."""

    path: str
    content: str
    sha: Optional[str] = None


@dataclass(frozen=True)
class RepoTree:
    """Snapshot of a repository file listing.

    ``entries`` maps repository-relative paths to blob shas. ``loader`` reads
    the content of a path on demand; it is supplied by the host client.
    """

    repository: str
    entries: Mapping[str, str]
    loader: Optional[Callable[[str], Optional[str]]] = field(
        default=None, compare=False, repr=False
    )

    def read(self, path: str) -> Optional[str]:
        if self.loader is None:
            return None
        return self.loader(path)


@dataclass(frozen=True, order=True)
class Ecosystem:
    """A package ecosystem found at one root directory."""

    name: str
    directory: str = "/"

    @property
    def sort_key(self) -> Tuple[str, str]:
        return (self.name, self.directory)


@dataclass(frozen=True)
class DetectionResult:
    """Ecosystems detected in a repository, tied to a content fingerprint."""

    repository: str
    ecosystems: Tuple[Ecosystem, ...]
    fingerprint: str

    def by_name(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for ecosystem in self.ecosystems:
            grouped.setdefault(ecosystem.name, []).append(ecosystem.directory)
        return grouped


@dataclass(frozen=True)
class Schedule:
    interval: str = "weekly"
    day: Optional[str] = None
    time: Optional[str] = None
    timezone: Optional[str] = None
    cronjob: Optional[str] = None


@dataclass(frozen=True)
class Group:
    """A named Dependabot group inside one update entry."""

    name: str
    patterns: Tuple[str, ...] = ()
    exclude_patterns: Tuple[str, ...] = ()
    update_types: Tuple[str, ...] = ()
    applies_to: Optional[str] = None
    dependency_type: Optional[str] = None


@dataclass(frozen=True)
class IgnoreRule:
    dependency_name: str
    versions: Tuple[str, ...] = ()
    update_types: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AllowRule:
    """Restricts updates to matching dependencies; at least one field is set."""

    dependency_name: Optional[str] = None
    dependency_type: Optional[str] = None


@dataclass(frozen=True)
class CommitMessage:
    prefix: Optional[str] = None
    prefix_development: Optional[str] = None
    include: Optional[str] = None


@dataclass(frozen=True)
class Cooldown:
    default_days: Optional[int] = None
    semver_major_days: Optional[int] = None
    semver_minor_days: Optional[int] = None
    semver_patch_days: Optional[int] = None
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UpdateDirective:
    """Fully resolved update instruction for one (ecosystem, directory)."""

    ecosystem: str
    directory: str
    schedule: Schedule = field(default_factory=Schedule)
    groups: Tuple[Group, ...] = ()
    target_branch: Optional[str] = None
    reviewers: Tuple[str, ...] = ()
    assignees: Tuple[str, ...] = ()
    labels: Tuple[str, ...] = ()
    ignore: Tuple[IgnoreRule, ...] = ()
    commit_message: Optional[CommitMessage] = None
    open_pull_requests_limit: Optional[int] = None
    cooldown: Optional[Cooldown] = None
    versioning_strategy: Optional[str] = None
    allow: Tuple[AllowRule, ...] = ()
    registries: Tuple[str, ...] = ()
    milestone: Optional[int] = None
    vendor: Optional[bool] = None
    rebase_strategy: Optional[str] = None
    insecure_external_code_execution: Optional[str] = None
    pull_request_branch_separator: Optional[str] = None
    enabled: bool = True

    @property
    def key(self) -> Tuple[str, str]:
        return (self.ecosystem, self.directory)

    @property
    def group_names(self) -> Tuple[str, ...]:
        return tuple(sorted(group.name for group in self.groups))


__all__ = [
    "AllowRule",
    "CommitMessage",
    "Cooldown",
    "DetectionResult",
    "Ecosystem",
    "Group",
    "IgnoreRule",
    "RemoteFile",
    "RepoTree",
    "Repository",
    "Schedule",
    "UpdateDirective",
]
