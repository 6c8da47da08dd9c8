"""Merge detected ecosystems with override rules into update directives."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Set, Tuple

from .logging import get_logger
from .models import DetectionResult, Repository, Schedule, UpdateDirective
from .rules import RuleSet, Scope, merge_same_scope

_logger = get_logger("resolver")

# Dependabot rejects these options for some ecosystems.
_UNSUPPORTED_FIELDS: Mapping[str, frozenset[str]] = {
    "gitsubmodule": frozenset({"cooldown"}),
}


def resolve(
    repository: Repository,
    detection: DetectionResult,
    rules: RuleSet,
) -> Tuple[UpdateDirective, ...]:
    """Return the enabled directives for ``repository`` sorted by (ecosystem, directory).

    Fields are folded from the least to the most specific scope: global
    defaults, organization, repository, then repository+ecosystem. A field
    set at a more specific scope replaces only that field.
    """
    base: Dict[str, Any] = dict(rules.global_rule().fields)
    for scope in (Scope.ORGANIZATION, Scope.REPOSITORY):
        base.update(merge_same_scope(rules.applicable(scope, repository)))

    targets: Set[Tuple[str, str]] = {
        (ecosystem.name, ecosystem.directory) for ecosystem in detection.ecosystems
    }
    for name, directories in rules.supplements(repository).items():
        for directory in directories:
            if (name, directory) not in targets:
                _logger.debug(
                    "Adding %s at %s for %s from overrides",
                    name,
                    directory,
                    repository.full_name,
                )
            targets.add((name, directory))

    ecosystem_fields: Dict[str, Dict[str, Any]] = {}
    directives: List[UpdateDirective] = []
    for name, directory in sorted(targets):
        if name not in ecosystem_fields:
            ecosystem_fields[name] = merge_same_scope(
                rules.applicable(Scope.REPOSITORY_ECOSYSTEM, repository, name)
            )
        fields = {**base, **ecosystem_fields[name]}
        directive = _build_directive(name, directory, fields)
        if not directive.enabled:
            _logger.debug(
                "Dropping disabled %s at %s for %s", name, directory, repository.full_name
            )
            continue
        directives.append(directive)
    return tuple(directives)


def _build_directive(ecosystem: str, directory: str, fields: Mapping[str, Any]) -> UpdateDirective:
    unsupported = _UNSUPPORTED_FIELDS.get(ecosystem, frozenset())
    fields = {key: value for key, value in fields.items() if key not in unsupported}
    return UpdateDirective(
        ecosystem=ecosystem,
        directory=directory,
        schedule=Schedule(
            interval=fields.get("schedule-interval", "weekly"),
            day=fields.get("schedule-day"),
            time=fields.get("schedule-time"),
            timezone=fields.get("schedule-timezone"),
            cronjob=fields.get("schedule-cronjob"),
        ),
        groups=fields.get("grouping", ()),
        target_branch=fields.get("target-branch"),
        reviewers=fields.get("reviewers", ()),
        assignees=fields.get("assignees", ()),
        labels=fields.get("labels", ()),
        ignore=fields.get("ignore", ()),
        commit_message=fields.get("commit-message"),
        open_pull_requests_limit=fields.get("open-pull-requests-limit"),
        cooldown=fields.get("cooldown"),
        versioning_strategy=fields.get("versioning-strategy"),
        allow=fields.get("allow", ()),
        registries=fields.get("registries", ()),
        milestone=fields.get("milestone"),
        vendor=fields.get("vendor"),
        rebase_strategy=fields.get("rebase-strategy"),
        insecure_external_code_execution=fields.get("insecure-external-code-execution"),
        pull_request_branch_separator=fields.get("pull-request-branch-name"),
        enabled=fields.get("enabled", True),
    )


__all__ = ["resolve"]
