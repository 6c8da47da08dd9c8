"""Runtime settings for depconf, resolved from the environment and CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from .errors import DepconfError


class ConfigError(DepconfError):
    """Raised when runtime settings are missing or invalid."""


DEFAULT_API_URL = "https://api.github.com"
DEFAULT_BRANCH = "depconf/update-dependabot"
DEFAULT_WORKERS = 4

_TOKEN_KEYS = ("DEPCONF_GITHUB_TOKEN", "GH_TOKEN", "GITHUB_TOKEN")


@dataclass(frozen=True)
class PublishSettings:
    """Branch and pull request conventions used when writing configs."""

    branch: str = DEFAULT_BRANCH
    pr_title: str = "Update dependabot config"
    pr_body: str = (
        "This PR was automatically generated by depconf. "
        "Request changes in the depconf overrides file rather than editing it here."
    )
    commit_message: str = "Update dependabot config"


@dataclass(frozen=True)
class Settings:
    """Effective settings for one run."""

    token: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    workers: int = DEFAULT_WORKERS
    request_timeout: float = 30.0
    publish: PublishSettings = PublishSettings()

    def require_token(self) -> str:
        if not self.token:
            raise ConfigError(
                "GitHub token not set. Export GH_TOKEN (or DEPCONF_GITHUB_TOKEN)."
            )
        return self.token

    def with_overrides(
        self, *, workers: Optional[int] = None, branch: Optional[str] = None
    ) -> "Settings":
        settings = self
        if workers is not None:
            settings = replace(settings, workers=_validate_workers(workers))
        if branch:
            settings = replace(settings, publish=replace(settings.publish, branch=branch))
        return settings


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from environment variables."""
    env = os.environ if environ is None else environ

    token = next((env[key] for key in _TOKEN_KEYS if env.get(key)), None)
    api_url = (env.get("DEPCONF_API_URL") or DEFAULT_API_URL).rstrip("/")

    workers = DEFAULT_WORKERS
    raw_workers = env.get("DEPCONF_WORKERS")
    if raw_workers:
        workers = _validate_workers(_as_int(raw_workers, "DEPCONF_WORKERS"))

    timeout = 30.0
    raw_timeout = env.get("DEPCONF_TIMEOUT")
    if raw_timeout:
        try:
            timeout = float(raw_timeout)
        except ValueError as exc:
            raise ConfigError(f"DEPCONF_TIMEOUT must be a number, got {raw_timeout!r}") from exc

    publish = PublishSettings()
    branch = env.get("DEPCONF_BRANCH")
    if branch:
        publish = replace(publish, branch=branch)

    return Settings(
        token=token,
        api_url=api_url,
        workers=workers,
        request_timeout=timeout,
        publish=publish,
    )


def _as_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _validate_workers(value: int) -> int:
    if value < 1:
        raise ConfigError("workers must be at least 1")
    return value


__all__ = ["ConfigError", "PublishSettings", "Settings", "load_settings"]
