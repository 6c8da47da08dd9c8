"""Tests for depconf.config."""

from __future__ import annotations

import pytest

from depconf.config import ConfigError, PublishSettings, Settings, load_settings


def test_load_settings_returns_defaults_for_empty_environment() -> None:
    settings = load_settings({})

    assert settings == Settings()
    assert settings.api_url == "https://api.github.com"
    assert settings.workers == 4
    assert settings.publish.branch == "depconf/update-dependabot"


def test_load_settings_reads_environment() -> None:
    settings = load_settings(
        {
            "GITHUB_TOKEN": "fallback",
            "GH_TOKEN": "gh",
            "DEPCONF_API_URL": "https://ghe.example.com/api/v3/",
            "DEPCONF_WORKERS": "8",
            "DEPCONF_TIMEOUT": "5.5",
            "DEPCONF_BRANCH": "bots/dependabot",
        }
    )

    assert settings.token == "gh"
    assert settings.api_url == "https://ghe.example.com/api/v3"
    assert settings.workers == 8
    assert settings.request_timeout == 5.5
    assert settings.publish == PublishSettings(branch="bots/dependabot")


def test_dedicated_token_takes_precedence() -> None:
    settings = load_settings({"DEPCONF_GITHUB_TOKEN": "mine", "GH_TOKEN": "gh"})

    assert settings.require_token() == "mine"


@pytest.mark.parametrize(
    "environ",
    [
        {"DEPCONF_WORKERS": "many"},
        {"DEPCONF_WORKERS": "0"},
        {"DEPCONF_TIMEOUT": "soon"},
    ],
)
def test_load_settings_rejects_invalid_values(environ: dict[str, str]) -> None:
    with pytest.raises(ConfigError):
        load_settings(environ)


def test_require_token_fails_without_token() -> None:
    with pytest.raises(ConfigError):
        Settings().require_token()


def test_with_overrides_replaces_only_given_values() -> None:
    settings = Settings(token="t").with_overrides(workers=2, branch="x/y")

    assert settings.token == "t"
    assert settings.workers == 2
    assert settings.publish.branch == "x/y"
    assert Settings().with_overrides() == Settings()

    with pytest.raises(ConfigError):
        Settings().with_overrides(workers=0)
