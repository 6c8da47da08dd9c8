"""Publishing synthesized configs through a pull request branch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from ..config import PublishSettings
from ..errors import HostClientError
from ..logging import get_logger
from ..models import RemoteFile, Repository
from ..synthesizer import DEPENDABOT_PATH, ConfigDocument


class PublishingHost(Protocol):
    def get_branch_sha(self, repository: Repository, branch: str) -> Optional[str]: ...

    def create_branch(self, repository: Repository, branch: str, sha: str) -> None: ...

    def get_file(
        self, repository: Repository, path: str, ref: str | None = None
    ) -> Optional[RemoteFile]: ...

    def put_file(
        self,
        repository: Repository,
        path: str,
        content: str,
        message: str,
        *,
        branch: str,
        sha: str | None = None,
    ) -> Optional[str]: ...

    def open_pull_request(
        self, repository: Repository, *, head: str, base: str, title: str, body: str
    ) -> Tuple[int, Optional[str]]: ...


@dataclass(frozen=True)
class PublishResult:
    """What the publisher did for one repository."""

    written: bool
    pull_request: Optional[int] = None
    url: Optional[str] = None


class PullRequestPublisher:
    """Writes dependabot.yml to a dedicated branch and opens a PR for it."""

    def __init__(self, host: PublishingHost, settings: PublishSettings | None = None) -> None:
        self._host = host
        self._settings = settings or PublishSettings()
        self.logger = get_logger("publisher")

    @property
    def branch(self) -> str:
        return self._settings.branch

    def publish(
        self, repository: Repository, document: ConfigDocument, *, dry_run: bool = False
    ) -> PublishResult:
        """Commit ``document`` on the update branch and open a PR against the default branch."""
        if dry_run:
            self.logger.info(
                "Would create or update PR for %s. Pass --create-pr to perform the changes.",
                repository.full_name,
            )
            return PublishResult(written=False)

        branch = self._settings.branch
        base = repository.default_branch
        if self._host.get_branch_sha(repository, branch) is None:
            base_sha = self._host.get_branch_sha(repository, base)
            if base_sha is None:
                raise HostClientError(
                    f"Default branch {base} of {repository.full_name} not found"
                )
            self._host.create_branch(repository, branch, base_sha)
            self.logger.debug("Created branch %s in %s", branch, repository.full_name)

        current = self._host.get_file(repository, DEPENDABOT_PATH, ref=branch)
        if current is not None and current.content == document.text:
            self.logger.info("No changes for %s on %s", repository.full_name, branch)
            return PublishResult(written=False)

        verb = "Updating" if current is not None else "Creating"
        self.logger.info("%s dependabot file for %s", verb, repository.full_name)
        self._host.put_file(
            repository,
            DEPENDABOT_PATH,
            document.text,
            self._settings.commit_message,
            branch=branch,
            sha=current.sha if current is not None else None,
        )

        try:
            number, url = self._host.open_pull_request(
                repository,
                head=branch,
                base=base,
                title=self._settings.pr_title,
                body=self._settings.pr_body,
            )
        except HostClientError as exc:
            self.logger.warning(
                "Did not create a (new) PR for %s. Likely it already exists: %s",
                repository.full_name,
                exc,
            )
            return PublishResult(written=True)

        self.logger.info("Created PR for %s: %s", repository.full_name, url or f"#{number}")
        return PublishResult(written=True, pull_request=number, url=url)


__all__ = ["PublishResult", "PublishingHost", "PullRequestPublisher"]
