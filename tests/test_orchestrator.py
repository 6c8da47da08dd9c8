"""Tests for the run orchestrator."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from depconf.config import Settings
from depconf.detector import EcosystemDetector
from depconf.errors import AmbiguousScopeError, HostClientError, InternalInvariantError
from depconf.orchestrator import Orchestrator, RunOptions
from depconf.reconciler import (
    SKIP_ARCHIVED,
    SKIP_FETCH_ERROR,
    SKIP_NO_EXISTING,
    SKIP_NO_OPEN_PR,
    Create,
    NoChange,
    Skip,
    Update,
)
from depconf.rules import parse_rules
from depconf.stores import EcosystemCache
from depconf.synthesizer import DEPENDABOT_PATH
from tests._fixtures.fake_host import FakeHost

NPM_ONLY_CONFIG = """
version: 2
updates:
  - package-ecosystem: npm
    directory: /
    schedule:
      interval: weekly
"""

APP_FILES = {"package.json": "{}", "backend/Cargo.toml": "[package]\nname = 'api'\n"}


class CountingDetector(EcosystemDetector):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def detect(self, tree, *, fingerprint=None):
        self.calls += 1
        return super().detect(tree, fingerprint=fingerprint)


def _orchestrator(host: FakeHost, **kwargs) -> Orchestrator:
    kwargs.setdefault("settings", Settings(workers=2))
    return Orchestrator(host, **kwargs)


def _by_name(summary):
    return {outcome.repository.name: outcome for outcome in summary.outcomes}


def test_outdated_config_is_planned_as_update(fake_host: FakeHost) -> None:
    fake_host.add_repository("app", {**APP_FILES, DEPENDABOT_PATH: NPM_ONLY_CONFIG})

    summary = _orchestrator(fake_host).run("acme")

    (outcome,) = summary.outcomes
    assert isinstance(outcome.action, Update)
    ecosystems = [entry["package-ecosystem"] for entry in outcome.action.document.updates]
    assert ecosystems == ["cargo", "npm"]
    assert outcome.published is not None and outcome.published.written is False
    assert fake_host.writes == []


def test_force_new_creates_config_for_unconfigured_repository(fake_host: FakeHost) -> None:
    fake_host.add_repository("app", APP_FILES)

    summary = _orchestrator(fake_host).run("acme", RunOptions(force_new=True))

    action = summary.outcomes[0].action
    assert isinstance(action, Create)
    data = yaml.safe_load(action.document.text)
    assert [(entry["package-ecosystem"], entry["directory"]) for entry in data["updates"]] == [
        ("cargo", "/backend"),
        ("npm", "/"),
    ]


def test_unconfigured_repository_is_skipped_without_force_new(fake_host: FakeHost) -> None:
    fake_host.add_repository("app", APP_FILES)

    summary = _orchestrator(fake_host).run("acme")

    assert summary.outcomes[0].action == Skip(SKIP_NO_EXISTING)
    assert summary.counts() == {"skip": 1}


def test_only_existing_requires_open_pull_request(fake_host: FakeHost) -> None:
    fake_host.add_repository("app", {**APP_FILES, DEPENDABOT_PATH: NPM_ONLY_CONFIG})
    fake_host.add_repository("lib", {**APP_FILES, DEPENDABOT_PATH: NPM_ONLY_CONFIG})
    fake_host.open_prs[("acme/lib", "depconf/update-dependabot")] = 3

    summary = _orchestrator(fake_host).run("acme", RunOptions(only_existing=True))

    outcomes = _by_name(summary)
    assert outcomes["app"].action == Skip(SKIP_NO_OPEN_PR)
    assert isinstance(outcomes["lib"].action, Update)


def test_fetch_error_skips_only_that_repository(fake_host: FakeHost) -> None:
    fake_host.add_repository("app", {**APP_FILES, DEPENDABOT_PATH: NPM_ONLY_CONFIG})
    fake_host.add_repository("broken", APP_FILES)
    fake_host.failing_trees.add("acme/broken")

    summary = _orchestrator(fake_host).run("acme")

    outcomes = _by_name(summary)
    assert outcomes["broken"].action == Skip(SKIP_FETCH_ERROR)
    assert isinstance(outcomes["app"].action, Update)
    assert summary.failed is False


def test_archived_repositories_are_skipped(fake_host: FakeHost) -> None:
    fake_host.add_repository("old", APP_FILES, archived=True)

    summary = _orchestrator(fake_host).run("acme", RunOptions(force_new=True))

    assert summary.outcomes[0].action == Skip(SKIP_ARCHIVED)
    assert fake_host.tree_calls == []


def test_repository_filter_limits_the_run(fake_host: FakeHost) -> None:
    fake_host.add_repository("app", APP_FILES)
    fake_host.add_repository("lib", APP_FILES)

    summary = _orchestrator(fake_host).run("acme", RunOptions(repositories=("ACME/lib",)))

    assert [outcome.repository.name for outcome in summary.outcomes] == ["lib"]


def test_create_pr_writes_and_rerun_after_merge_is_unchanged(fake_host: FakeHost) -> None:
    fake_host.add_repository("app", {**APP_FILES, DEPENDABOT_PATH: NPM_ONLY_CONFIG})
    orchestrator = _orchestrator(fake_host)

    first = orchestrator.run("acme", RunOptions(create_pr=True))

    assert first.outcomes[0].published.pull_request == 1
    written = fake_host.branches["acme/app"]["depconf/update-dependabot"][DEPENDABOT_PATH]
    fake_host.branches["acme/app"]["main"][DEPENDABOT_PATH] = written

    second = orchestrator.run("acme", RunOptions(create_pr=True))

    assert second.outcomes[0].action == NoChange()
    assert len(fake_host.writes) == 1


def test_overrides_flow_into_the_document(fake_host: FakeHost) -> None:
    fake_host.add_repository("app", APP_FILES)
    rules = parse_rules(
        {
            "labels": ["dependencies"],
            "repositories": {"app": {"ecosystems": {"npm": {"schedule-interval": "daily"}}}},
        }
    )

    summary = _orchestrator(fake_host, rules=rules).run("acme", RunOptions(force_new=True))

    cargo, npm = summary.outcomes[0].action.document.updates
    assert cargo["schedule"] == {"interval": "weekly"}
    assert npm["schedule"] == {"interval": "daily"}
    assert cargo["labels"] == ["dependencies"]


def test_cached_detection_is_reused_across_runs(fake_host: FakeHost, tmp_path: Path) -> None:
    fake_host.add_repository("app", APP_FILES)
    cache_path = tmp_path / "ecosystems.json"

    first_detector = CountingDetector()
    _orchestrator(fake_host, cache=EcosystemCache(cache_path), detector=first_detector).run("acme")
    assert first_detector.calls == 1
    assert cache_path.exists()

    second_detector = CountingDetector()
    summary = _orchestrator(
        fake_host, cache=EcosystemCache(cache_path), detector=second_detector
    ).run("acme")

    assert second_detector.calls == 0
    assert [ecosystem.name for ecosystem in summary.outcomes[0].ecosystems] == ["cargo", "npm"]


def test_changed_manifests_invalidate_cache(fake_host: FakeHost, tmp_path: Path) -> None:
    fake_host.add_repository("app", APP_FILES)
    cache_path = tmp_path / "ecosystems.json"
    _orchestrator(fake_host, cache=EcosystemCache(cache_path)).run("acme")

    fake_host.branches["acme/app"]["main"]["web/package.json"] = "{}"
    detector = CountingDetector()
    summary = _orchestrator(fake_host, cache=EcosystemCache(cache_path), detector=detector).run("acme")

    assert detector.calls == 1
    assert ("npm", "/web") in [(e.name, e.directory) for e in summary.outcomes[0].ecosystems]


def test_invariant_violation_fails_the_repository(
    fake_host: FakeHost, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake_host.add_repository("app", APP_FILES)

    def _broken(*args, **kwargs):
        raise InternalInvariantError("duplicate directive")

    monkeypatch.setattr("depconf.orchestrator.synthesize", _broken)

    summary = _orchestrator(fake_host).run("acme")

    assert summary.failed is True
    assert summary.outcomes[0].kind == "failed"
    assert summary.counts() == {"failed": 1}


def test_publish_failure_fails_the_repository(
    fake_host: FakeHost, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake_host.add_repository("app", {**APP_FILES, DEPENDABOT_PATH: NPM_ONLY_CONFIG})

    def _reject(*args, **kwargs):
        raise HostClientError("forbidden", status=403)

    monkeypatch.setattr(fake_host, "put_file", _reject)

    summary = _orchestrator(fake_host).run("acme", RunOptions(create_pr=True))

    assert summary.failed is True
    assert "forbidden" in summary.outcomes[0].error


def test_dispatch_disabled_never_publishes(fake_host: FakeHost) -> None:
    fake_host.add_repository("app", {**APP_FILES, DEPENDABOT_PATH: NPM_ONLY_CONFIG})

    summary = _orchestrator(fake_host).run("acme", RunOptions(create_pr=True), dispatch=False)

    assert isinstance(summary.outcomes[0].action, Update)
    assert summary.outcomes[0].published is None
    assert fake_host.writes == []


def test_unknown_organization_propagates(fake_host: FakeHost) -> None:
    with pytest.raises(HostClientError):
        _orchestrator(fake_host).run("nope")


def test_empty_organization_returns_empty_summary(fake_host: FakeHost) -> None:
    summary = _orchestrator(fake_host).run("acme")

    assert summary.outcomes == []
    assert summary.failed is False


def test_existing_config_with_non_string_keys_does_not_abort_the_run(
    fake_host: FakeHost,
) -> None:
    fake_host.add_repository("good", {**APP_FILES, DEPENDABOT_PATH: NPM_ONLY_CONFIG})
    fake_host.add_repository(
        "odd", {**APP_FILES, DEPENDABOT_PATH: "version: 2\nupdates: []\n1: legacy\n"}
    )

    summary = _orchestrator(fake_host).run("acme", RunOptions())

    outcomes = _by_name(summary)
    assert set(outcomes) == {"good", "odd"}
    assert isinstance(outcomes["odd"].action, Update)
    assert isinstance(outcomes["good"].action, Update)


def test_conflicting_rules_for_a_repository_stop_the_run_before_fetching(
    fake_host: FakeHost,
) -> None:
    fake_host.add_repository("app", APP_FILES)
    fake_host.add_repository("lib", APP_FILES)
    rules = parse_rules(
        {"repositories": {"app": {"labels": ["a"]}, "acme/app": {"labels": ["b"]}}}
    )

    with pytest.raises(AmbiguousScopeError):
        _orchestrator(fake_host, rules=rules).run("acme")

    assert fake_host.tree_calls == []


def test_short_repository_key_applies_across_owners_without_conflict(
    fake_host: FakeHost,
) -> None:
    fake_host.add_repository("app", {**APP_FILES, DEPENDABOT_PATH: NPM_ONLY_CONFIG})
    rules = parse_rules(
        {"repositories": {"app": {"labels": ["a"]}, "other/app": {"labels": ["b"]}}}
    )

    summary = _orchestrator(fake_host, rules=rules).run("acme", dispatch=False)

    (outcome,) = summary.outcomes
    assert all(entry["labels"] == ["a"] for entry in outcome.action.document.updates)
