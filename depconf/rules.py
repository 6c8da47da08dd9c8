"""Loading of the Dependabot override rule source (YAML or TOML)."""

from __future__ import annotations

import enum
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

from .errors import AmbiguousScopeError, OverrideParseError
from .models import AllowRule, CommitMessage, Cooldown, Group, IgnoreRule, Repository


class Scope(enum.IntEnum):
    """Rule scopes ordered from least to most specific."""

    GLOBAL = 0
    ORGANIZATION = 1
    REPOSITORY = 2
    REPOSITORY_ECOSYSTEM = 3


@dataclass(frozen=True)
class OverrideRule:
    """Explicitly set fields for one scope.

    ``target`` is ``None`` for the global scope, the organization name, the
    repository key as written in the source (``name`` or ``owner/name``), or
    ``(repository key, ecosystem)``.
    """

    scope: Scope
    target: Any
    fields: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    directories: Tuple[str, ...] = ()

    def describe(self) -> str:
        if self.scope is Scope.GLOBAL:
            return "global"
        if self.scope is Scope.REPOSITORY_ECOSYSTEM:
            repo, ecosystem = self.target
            return f"repository '{repo}' ecosystem '{ecosystem}'"
        return f"{self.scope.name.lower()} '{self.target}'"


BUILTIN_DEFAULTS: Mapping[str, Any] = MappingProxyType(
    {"schedule-interval": "weekly", "enabled": True}
)


@dataclass(frozen=True)
class RuleSet:
    """Immutable set of override rules loaded once per run."""

    rules: Tuple[OverrideRule, ...] = ()
    registries: Mapping[str, Mapping[str, Any]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def empty(cls) -> "RuleSet":
        return cls()

    def global_rule(self) -> OverrideRule:
        fields: Dict[str, Any] = dict(BUILTIN_DEFAULTS)
        for rule in self.rules:
            if rule.scope is Scope.GLOBAL:
                fields.update(rule.fields)
        return OverrideRule(Scope.GLOBAL, None, MappingProxyType(fields))

    def applicable(
        self,
        scope: Scope,
        repository: Repository,
        ecosystem: Optional[str] = None,
    ) -> List[OverrideRule]:
        """Return the rules of ``scope`` that apply to ``repository``."""
        matches: List[OverrideRule] = []
        for rule in self.rules:
            if rule.scope is not scope:
                continue
            if scope is Scope.ORGANIZATION:
                if _same_name(rule.target, _owner_of(repository)):
                    matches.append(rule)
            elif scope is Scope.REPOSITORY:
                if _matches_repository(rule.target, repository):
                    matches.append(rule)
            elif scope is Scope.REPOSITORY_ECOSYSTEM:
                repo_key, rule_ecosystem = rule.target
                if rule_ecosystem == ecosystem and _matches_repository(repo_key, repository):
                    matches.append(rule)
        return matches

    def supplements(self, repository: Repository) -> Dict[str, Tuple[str, ...]]:
        """Directories explicitly added per ecosystem for ``repository``."""
        added: Dict[str, set[str]] = {}
        for rule in self.rules:
            if rule.scope is not Scope.REPOSITORY_ECOSYSTEM or not rule.directories:
                continue
            repo_key, ecosystem = rule.target
            if _matches_repository(repo_key, repository):
                added.setdefault(ecosystem, set()).update(rule.directories)
        return {name: tuple(sorted(dirs)) for name, dirs in added.items()}

    def check_repository(self, repository: Repository) -> None:
        """Raise :class:`AmbiguousScopeError` when rules for ``repository`` disagree.

        A repository can be addressed as ``name`` and as ``owner/name``; the two
        only conflict once both match the same repository.
        """
        merge_same_scope(self.applicable(Scope.REPOSITORY, repository))
        ecosystems = {
            rule.target[1] for rule in self.rules if rule.scope is Scope.REPOSITORY_ECOSYSTEM
        }
        for ecosystem in sorted(ecosystems):
            merge_same_scope(
                self.applicable(Scope.REPOSITORY_ECOSYSTEM, repository, ecosystem)
            )


def merge_same_scope(rules: Sequence[OverrideRule]) -> Dict[str, Any]:
    """Combine rules claiming the same scope, refusing conflicting values."""
    merged: Dict[str, Any] = {}
    owners: Dict[str, OverrideRule] = {}
    for rule in rules:
        for name, value in rule.fields.items():
            if name in merged and merged[name] != value:
                raise AmbiguousScopeError(
                    owners[name].describe(), name, (merged[name], value)
                )
            merged[name] = value
            owners[name] = rule
    return merged


def load_rules(path: Path | None) -> RuleSet:
    """Load the override rule source. ``None`` yields an empty rule set."""
    if path is None:
        return RuleSet.empty()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise OverrideParseError(f"Failed to read overrides file {path}: {exc}") from exc
    if path.suffix.lower() == ".toml":
        return parse_rules(_read_toml(text, path.name))
    return parse_rules(_read_yaml(text, path.name))


def parse_rules(data: Any) -> RuleSet:
    """Build a :class:`RuleSet` from an already decoded document."""
    if data is None:
        return RuleSet.empty()
    if not isinstance(data, Mapping):
        raise OverrideParseError("Overrides must contain a mapping at the root")

    rules: List[OverrideRule] = []
    global_fields = {
        key: value
        for key, value in data.items()
        if key not in _SECTION_KEYS
    }
    if global_fields:
        rules.append(
            OverrideRule(Scope.GLOBAL, None, _parse_fields(global_fields, "global"))
        )

    for org, section in _as_section_map(data.get("organizations"), "organizations").items():
        rules.append(
            OverrideRule(
                Scope.ORGANIZATION,
                org,
                _parse_fields(_as_mapping(section, f"organization '{org}'"), f"organization '{org}'"),
            )
        )

    for repo_key, section in _as_section_map(data.get("repositories"), "repositories").items():
        rules.extend(_parse_repository(repo_key, _as_mapping(section, f"repository '{repo_key}'")))

    registries = _parse_registries(data.get("registries"))
    _check_registry_references(rules, registries)
    _check_ambiguity(rules)
    return RuleSet(rules=tuple(rules), registries=registries)


# ----------------------------------------------------------------------
# Document decoding

_MERGE_TAG = "tag:yaml.org,2002:merge"


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys.

    Only keys written in the mapping itself count; keys pulled in through
    ``<<`` merges may be overridden as YAML allows.
    """

    def construct_mapping(self, node, deep=False):  # type: ignore[override]
        seen = set()
        for key_node, _ in node.value:
            if key_node.tag == _MERGE_TAG:
                continue
            key = self.construct_object(key_node, deep=deep)
            if not isinstance(key, (str, int, float, bool)):
                continue
            if key in seen:
                raise OverrideParseError(
                    f"Duplicate key {key!r} at line {key_node.start_mark.line + 1}"
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _read_yaml(text: str, name: str) -> Any:
    if not text.strip():
        return None
    try:
        return yaml.load(text, Loader=_UniqueKeyLoader)  # noqa: S506 - SafeLoader subclass
    except yaml.YAMLError as exc:
        raise OverrideParseError(f"Failed to parse {name}: {exc}") from exc


def _read_toml(text: str, name: str) -> Any:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise OverrideParseError(f"Failed to parse {name}: {exc}") from exc


# ----------------------------------------------------------------------
# Sections

_SECTION_KEYS = {"organizations", "repositories", "registries"}
_REPOSITORY_SECTION_KEYS = {"updates", "ecosystems"}


def _parse_repository(repo_key: str, section: Mapping[str, Any]) -> List[OverrideRule]:
    label = f"repository '{repo_key}'"
    rules: List[OverrideRule] = []
    repo_fields = {
        key: value for key, value in section.items() if key not in _REPOSITORY_SECTION_KEYS
    }
    rules.append(OverrideRule(Scope.REPOSITORY, repo_key, _parse_fields(repo_fields, label)))

    for ecosystem, eco_section in _as_section_map(section.get("ecosystems"), f"{label} ecosystems").items():
        rules.append(
            _parse_ecosystem_rule(
                repo_key, ecosystem, _as_mapping(eco_section, f"{label} ecosystem '{ecosystem}'")
            )
        )

    updates = section.get("updates")
    if updates is not None:
        if not isinstance(updates, list):
            raise OverrideParseError(f"{label}: 'updates' must be a list")
        for index, entry in enumerate(updates):
            entry = _as_mapping(entry, f"{label} updates[{index}]")
            ecosystem = entry.get("package-ecosystem")
            if not isinstance(ecosystem, str) or not ecosystem:
                raise OverrideParseError(
                    f"{label} updates[{index}]: 'package-ecosystem' is required"
                )
            remaining = {k: v for k, v in entry.items() if k != "package-ecosystem"}
            rules.append(_parse_ecosystem_rule(repo_key, ecosystem, remaining))
    return rules


def _parse_ecosystem_rule(
    repo_key: str, ecosystem: str, section: Mapping[str, Any]
) -> OverrideRule:
    label = f"repository '{repo_key}' ecosystem '{ecosystem}'"
    directories: List[str] = []
    if "directory" in section:
        directories.append(_normalize_directory(_expect_str(section["directory"], label, "directory")))
    if "directories" in section:
        directories.extend(
            _normalize_directory(item)
            for item in _expect_str_list(section["directories"], label, "directories")
        )
    fields = {
        key: value for key, value in section.items() if key not in {"directory", "directories"}
    }
    return OverrideRule(
        Scope.REPOSITORY_ECOSYSTEM,
        (repo_key, ecosystem),
        _parse_fields(fields, label),
        tuple(sorted(set(directories))),
    )


def _parse_registries(value: Any) -> Mapping[str, Mapping[str, Any]]:
    registries: Dict[str, Mapping[str, Any]] = {}
    for name, entry in _as_section_map(value, "registries").items():
        entry = _as_mapping(entry, f"registry '{name}'")
        for required in ("type", "url"):
            if not isinstance(entry.get(required), str):
                raise OverrideParseError(f"registry '{name}': '{required}' must be a string")
        registries[name] = MappingProxyType(dict(entry))
    return MappingProxyType(registries)


def _check_registry_references(
    rules: Sequence[OverrideRule], registries: Mapping[str, Mapping[str, Any]]
) -> None:
    for rule in rules:
        for name in rule.fields.get("registries", ()):
            if name != "*" and name not in registries:
                raise OverrideParseError(
                    f"{rule.describe()}: registry '{name}' is not defined under 'registries'"
                )


def _check_ambiguity(rules: Sequence[OverrideRule]) -> None:
    by_scope: Dict[Tuple[Scope, Any], List[OverrideRule]] = {}
    for rule in rules:
        by_scope.setdefault((rule.scope, _scope_key(rule)), []).append(rule)
    for claimants in by_scope.values():
        if len(claimants) > 1:
            merge_same_scope(claimants)


def _scope_key(rule: OverrideRule) -> Any:
    if rule.scope is Scope.REPOSITORY:
        return rule.target.casefold()
    if rule.scope is Scope.REPOSITORY_ECOSYSTEM:
        repo_key, ecosystem = rule.target
        return (repo_key.casefold(), ecosystem)
    if rule.scope is Scope.ORGANIZATION:
        return str(rule.target).casefold()
    return None


# ----------------------------------------------------------------------
# Fields

def _parse_fields(raw: Mapping[str, Any], label: str) -> Mapping[str, Any]:
    fields: Dict[str, Any] = {}
    for key, value in raw.items():
        parser = _FIELD_PARSERS.get(key)
        if parser is None:
            raise OverrideParseError(f"{label}: unknown field '{key}'")
        fields[key] = parser(value, label, key)
    return MappingProxyType(fields)


def _expect_str(value: Any, label: str, key: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise OverrideParseError(f"{label}: '{key}' must be a non-empty string")
    return value.strip()


def _expect_bool(value: Any, label: str, key: str) -> bool:
    if not isinstance(value, bool):
        raise OverrideParseError(f"{label}: '{key}' must be true or false")
    return value


def _expect_int(value: Any, label: str, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise OverrideParseError(f"{label}: '{key}' must be a non-negative integer")
    return value


def _expect_str_list(value: Any, label: str, key: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise OverrideParseError(f"{label}: '{key}' must be a list of strings")
    return tuple(item.strip() for item in value if item.strip())


def _parse_grouping(value: Any, label: str, key: str) -> Tuple[Group, ...]:
    groups: List[Group] = []
    for name, options in _as_section_map(value, f"{label} {key}").items():
        if isinstance(options, (list, str)):
            groups.append(Group(name=name, patterns=_expect_str_list(options, label, f"{key}.{name}")))
            continue
        options = _as_mapping(options, f"{label} {key}.{name}")
        unknown = set(options) - _GROUP_KEYS
        if unknown:
            raise OverrideParseError(
                f"{label}: unknown keys in group '{name}': {', '.join(sorted(unknown))}"
            )
        sub = f"{key}.{name}"
        groups.append(
            Group(
                name=name,
                patterns=_expect_str_list(options.get("patterns", []), label, sub),
                exclude_patterns=_expect_str_list(options.get("exclude-patterns", []), label, sub),
                update_types=_expect_str_list(options.get("update-types", []), label, sub),
                applies_to=_optional_str(options.get("applies-to"), label, sub),
                dependency_type=_optional_str(options.get("dependency-type"), label, sub),
            )
        )
    return tuple(sorted(groups, key=lambda group: group.name))


_GROUP_KEYS = {"patterns", "exclude-patterns", "update-types", "applies-to", "dependency-type"}


def _parse_ignore(value: Any, label: str, key: str) -> Tuple[IgnoreRule, ...]:
    if not isinstance(value, list):
        raise OverrideParseError(f"{label}: '{key}' must be a list")
    rules: List[IgnoreRule] = []
    for item in value:
        if isinstance(item, str):
            rules.append(IgnoreRule(dependency_name=_expect_str(item, label, key)))
            continue
        item = _as_mapping(item, f"{label} {key}")
        rules.append(
            IgnoreRule(
                dependency_name=_expect_str(item.get("dependency-name"), label, f"{key}.dependency-name"),
                versions=_expect_str_list(item.get("versions", []), label, f"{key}.versions"),
                update_types=_expect_str_list(item.get("update-types", []), label, f"{key}.update-types"),
            )
        )
    return tuple(rules)


def _parse_commit_message(value: Any, label: str, key: str) -> CommitMessage:
    options = _as_mapping(value, f"{label} {key}")
    return CommitMessage(
        prefix=_optional_str(options.get("prefix"), label, key),
        prefix_development=_optional_str(options.get("prefix-development"), label, key),
        include=_optional_str(options.get("include"), label, key),
    )


def _parse_cooldown(value: Any, label: str, key: str) -> Cooldown:
    options = _as_mapping(value, f"{label} {key}")

    def _days(name: str) -> Optional[int]:
        raw = options.get(name)
        return None if raw is None else _expect_int(raw, label, f"{key}.{name}")

    return Cooldown(
        default_days=_days("default-days"),
        semver_major_days=_days("semver-major-days"),
        semver_minor_days=_days("semver-minor-days"),
        semver_patch_days=_days("semver-patch-days"),
        include=_expect_str_list(options.get("include", []), label, f"{key}.include"),
        exclude=_expect_str_list(options.get("exclude", []), label, f"{key}.exclude"),
    )


def _parse_allow(value: Any, label: str, key: str) -> Tuple[AllowRule, ...]:
    if not isinstance(value, list):
        raise OverrideParseError(f"{label}: '{key}' must be a list")
    rules: List[AllowRule] = []
    for item in value:
        if isinstance(item, str):
            rules.append(AllowRule(dependency_name=_expect_str(item, label, key)))
            continue
        item = _as_mapping(item, f"{label} {key}")
        rule = AllowRule(
            dependency_name=_optional_str(item.get("dependency-name"), label, f"{key}.dependency-name"),
            dependency_type=_optional_str(item.get("dependency-type"), label, f"{key}.dependency-type"),
        )
        if rule.dependency_name is None and rule.dependency_type is None:
            raise OverrideParseError(
                f"{label}: '{key}' entries need 'dependency-name' or 'dependency-type'"
            )
        rules.append(rule)
    return tuple(rules)


def _expect_one_of(*choices: str):
    def _parse(value: Any, label: str, key: str) -> str:
        text = _expect_str(value, label, key)
        if text not in choices:
            raise OverrideParseError(f"{label}: '{key}' must be one of {', '.join(choices)}")
        return text

    return _parse


def _parse_external_code(value: Any, label: str, key: str) -> str:
    # older override files spell this as a boolean
    if isinstance(value, bool):
        return "allow" if value else "deny"
    return _expect_one_of("allow", "deny")(value, label, key)


def _parse_branch_name(value: Any, label: str, key: str) -> str:
    options = _as_mapping(value, f"{label} {key}")
    if set(options) != {"separator"}:
        raise OverrideParseError(f"{label}: '{key}' only accepts 'separator'")
    return _expect_one_of("-", "_", "/")(options["separator"], label, f"{key}.separator")


def _optional_str(value: Any, label: str, key: str) -> Optional[str]:
    if value is None:
        return None
    return _expect_str(value, label, key)


_FIELD_PARSERS = {
    "schedule-interval": _expect_str,
    "schedule-day": _expect_str,
    "schedule-time": _expect_str,
    "schedule-timezone": _expect_str,
    "schedule-cronjob": _expect_str,
    "grouping": _parse_grouping,
    "target-branch": _expect_str,
    "reviewers": _expect_str_list,
    "assignees": _expect_str_list,
    "labels": _expect_str_list,
    "ignore": _parse_ignore,
    "commit-message": _parse_commit_message,
    "open-pull-requests-limit": _expect_int,
    "cooldown": _parse_cooldown,
    "versioning-strategy": _expect_str,
    "allow": _parse_allow,
    "registries": _expect_str_list,
    "milestone": _expect_int,
    "vendor": _expect_bool,
    "rebase-strategy": _expect_one_of("auto", "disabled"),
    "insecure-external-code-execution": _parse_external_code,
    "pull-request-branch-name": _parse_branch_name,
    "enabled": _expect_bool,
}

FIELD_NAMES = frozenset(_FIELD_PARSERS)


# ----------------------------------------------------------------------
# Small helpers

def _as_mapping(value: Any, label: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise OverrideParseError(f"{label} must be a mapping")
    return value


def _as_section_map(value: Any, label: str) -> Dict[str, Any]:
    if value is None:
        return {}
    mapping = _as_mapping(value, label)
    for key in mapping:
        if not isinstance(key, str) or not key:
            raise OverrideParseError(f"{label}: keys must be non-empty strings")
    return dict(mapping)


def _normalize_directory(value: str) -> str:
    stripped = value.strip().strip("/")
    return "/" + stripped if stripped else "/"


def _owner_of(repository: Repository) -> str:
    return repository.full_name.split("/", 1)[0] if "/" in repository.full_name else ""


def _same_name(left: Any, right: str) -> bool:
    return isinstance(left, str) and left.casefold() == right.casefold()


def _matches_repository(key: str, repository: Repository) -> bool:
    if "/" in key:
        return _same_name(key, repository.full_name)
    return _same_name(key, repository.name)


__all__ = [
    "BUILTIN_DEFAULTS",
    "FIELD_NAMES",
    "OverrideRule",
    "RuleSet",
    "Scope",
    "load_rules",
    "merge_same_scope",
    "parse_rules",
]
