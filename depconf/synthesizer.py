"""Rendering of update directives into the canonical dependabot.yml."""

from __future__ import annotations

import dataclasses
import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from .errors import InternalInvariantError
from .models import Cooldown, Group, UpdateDirective

DEPENDABOT_PATH = ".github/dependabot.yml"
CONFIG_VERSION = 2

HEADER = (
    "# DO NOT EDIT THIS FILE. This dependabot file was generated\n"
    "# by depconf. Changes to this file should be addressed in\n"
    "# the depconf overrides file.\n\n"
)


class ConfigDocument:
    """A dependabot configuration, either synthesized or parsed from a repository.

    Equality is canonical: two documents are equal when their parsed data
    serializes identically with sorted keys, regardless of formatting or
    comments. A document whose text is not a YAML mapping equals nothing.
    """

    __slots__ = ("text", "data")

    def __init__(self, text: str, data: Optional[Mapping[str, Any]]) -> None:
        self.text = text
        self.data = data

    @classmethod
    def from_text(cls, text: str) -> "ConfigDocument":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError:
            data = None
        if not isinstance(data, Mapping):
            data = None
        return cls(text, data)

    @property
    def updates(self) -> List[Mapping[str, Any]]:
        if self.data is None:
            return []
        updates = self.data.get("updates")
        return list(updates) if isinstance(updates, list) else []

    @property
    def is_valid(self) -> bool:
        return self.data is not None

    def canonical(self) -> Optional[str]:
        if self.data is None:
            return None
        return json.dumps(
            _normalise(self.data), sort_keys=True, separators=(",", ":"), default=str
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigDocument):
            return NotImplemented
        mine = self.canonical()
        return mine is not None and mine == other.canonical()

    def __hash__(self) -> int:
        return hash(self.canonical())

    def __repr__(self) -> str:
        return f"ConfigDocument(updates={len(self.updates)})"


def synthesize(
    directives: Iterable[UpdateDirective],
    *,
    registries: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> ConfigDocument:
    """Render ``directives`` into a deterministic :class:`ConfigDocument`.

    Directives are re-sorted by (ecosystem, directory). Directives of one
    ecosystem that declare the same groups and otherwise identical settings
    are folded into a single entry listing all their directories.
    """
    ordered = sorted(
        (directive for directive in directives if directive.enabled),
        key=lambda directive: directive.key,
    )
    seen_keys = set()
    for directive in ordered:
        if directive.key in seen_keys:
            raise InternalInvariantError(
                f"Duplicate directive for {directive.ecosystem} at {directive.directory}"
            )
        seen_keys.add(directive.key)

    folded: List[Tuple[UpdateDirective, List[str]]] = []
    fold_index: Dict[UpdateDirective, int] = {}
    for directive in ordered:
        if directive.groups:
            signature = dataclasses.replace(directive, directory="")
            index = fold_index.get(signature)
            if index is not None:
                folded[index][1].append(directive.directory)
                continue
            fold_index[signature] = len(folded)
        folded.append((directive, [directive.directory]))

    data: Dict[str, Any] = {
        "version": CONFIG_VERSION,
        "updates": [_render_entry(directive, directories) for directive, directories in folded],
    }
    if registries:
        data["registries"] = {
            name: {key: registries[name][key] for key in sorted(registries[name])}
            for name in sorted(registries)
        }

    body = yaml.safe_dump(
        data,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=1000,
    )
    return ConfigDocument(HEADER + body, data)


def _render_entry(directive: UpdateDirective, directories: List[str]) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"package-ecosystem": directive.ecosystem}
    if len(directories) == 1:
        entry["directory"] = directories[0]
    else:
        entry["directories"] = list(directories)

    schedule: Dict[str, Any] = {"interval": directive.schedule.interval}
    _put(schedule, "day", directive.schedule.day)
    _put(schedule, "time", directive.schedule.time)
    _put(schedule, "timezone", directive.schedule.timezone)
    _put(schedule, "cronjob", directive.schedule.cronjob)
    entry["schedule"] = schedule

    _put(entry, "registries", list(directive.registries))
    _put(entry, "vendor", directive.vendor)
    _put(entry, "insecure-external-code-execution", directive.insecure_external_code_execution)
    _put(entry, "target-branch", directive.target_branch)
    _put(entry, "open-pull-requests-limit", directive.open_pull_requests_limit)
    _put(entry, "reviewers", list(directive.reviewers))
    _put(entry, "assignees", list(directive.assignees))
    _put(entry, "labels", list(directive.labels))
    _put(entry, "milestone", directive.milestone)
    if directive.commit_message is not None:
        message: Dict[str, Any] = {}
        _put(message, "prefix", directive.commit_message.prefix)
        _put(message, "prefix-development", directive.commit_message.prefix_development)
        _put(message, "include", directive.commit_message.include)
        _put(entry, "commit-message", message)
    if directive.pull_request_branch_separator is not None:
        entry["pull-request-branch-name"] = {"separator": directive.pull_request_branch_separator}
    _put(entry, "rebase-strategy", directive.rebase_strategy)
    _put(entry, "versioning-strategy", directive.versioning_strategy)
    if directive.allow:
        allow: List[Dict[str, Any]] = []
        for allowed in directive.allow:
            condition: Dict[str, Any] = {}
            _put(condition, "dependency-name", allowed.dependency_name)
            _put(condition, "dependency-type", allowed.dependency_type)
            allow.append(condition)
        entry["allow"] = allow
    if directive.ignore:
        ignore: List[Dict[str, Any]] = []
        for rule in directive.ignore:
            item: Dict[str, Any] = {"dependency-name": rule.dependency_name}
            _put(item, "versions", list(rule.versions))
            _put(item, "update-types", list(rule.update_types))
            ignore.append(item)
        entry["ignore"] = ignore
    if directive.groups:
        entry["groups"] = {
            group.name: _render_group(group)
            for group in sorted(directive.groups, key=lambda group: group.name)
        }
    if directive.cooldown is not None:
        _put(entry, "cooldown", _render_cooldown(directive.cooldown))
    return entry


def _render_group(group: Group) -> Dict[str, Any]:
    rendered: Dict[str, Any] = {}
    _put(rendered, "applies-to", group.applies_to)
    _put(rendered, "dependency-type", group.dependency_type)
    _put(rendered, "patterns", list(group.patterns) or ["*"])
    _put(rendered, "exclude-patterns", list(group.exclude_patterns))
    _put(rendered, "update-types", list(group.update_types))
    return rendered


def _render_cooldown(cooldown: Cooldown) -> Dict[str, Any]:
    rendered: Dict[str, Any] = {}
    _put(rendered, "default-days", cooldown.default_days)
    _put(rendered, "semver-major-days", cooldown.semver_major_days)
    _put(rendered, "semver-minor-days", cooldown.semver_minor_days)
    _put(rendered, "semver-patch-days", cooldown.semver_patch_days)
    _put(rendered, "include", list(cooldown.include))
    _put(rendered, "exclude", list(cooldown.exclude))
    return rendered


def _normalise(value: Any) -> Any:
    # hand-written files may use non-string keys (``1:``, ``~:``, YAML 1.1 ``on:``)
    if isinstance(value, Mapping):
        return {str(key): _normalise(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_normalise(item) for item in value]
    return value


def _put(target: Dict[str, Any], key: str, value: Any) -> None:
    if value is None or value == [] or value == {}:
        return
    target[key] = value


__all__ = [
    "CONFIG_VERSION",
    "ConfigDocument",
    "DEPENDABOT_PATH",
    "HEADER",
    "synthesize",
]
