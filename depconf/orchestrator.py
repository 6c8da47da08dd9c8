"""Run orchestration: drive each repository through detect, resolve, synthesize, reconcile."""

from __future__ import annotations

from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from .config import Settings
from .detector import EcosystemDetector, manifest_fingerprint
from .errors import DetectionIOError, HostClientError, InternalInvariantError
from .github.publisher import PublishingHost, PublishResult, PullRequestPublisher
from .logging import RepositoryLogger, get_logger, log_exception
from .models import DetectionResult, Ecosystem, RemoteFile, RepoTree, Repository
from .reconciler import (
    SKIP_ARCHIVED,
    SKIP_FETCH_ERROR,
    Create,
    ReconcileFlags,
    ReconciliationAction,
    Skip,
    Update,
    reconcile,
)
from .resolver import resolve
from .rules import RuleSet
from .stores import CacheMiss, EcosystemCache
from .synthesizer import DEPENDABOT_PATH, ConfigDocument, synthesize


class RepositoryHost(PublishingHost, Protocol):
    def list_org_repositories(self, org: str) -> List[Repository]: ...

    def list_tree(self, repository: Repository) -> RepoTree: ...

    def find_open_pull_request(
        self, repository: Repository, head: str, base: str | None = None
    ) -> Optional[int]: ...


@dataclass(frozen=True)
class RunOptions:
    """Per-run switches mirroring the CLI flags."""

    create_pr: bool = False
    force_new: bool = False
    only_existing: bool = False
    repositories: Tuple[str, ...] = ()

    @property
    def flags(self) -> ReconcileFlags:
        return ReconcileFlags(force_new=self.force_new, only_existing=self.only_existing)


@dataclass(frozen=True)
class RepositoryOutcome:
    """Result of processing one repository. ``error`` marks an unrecoverable failure."""

    repository: Repository
    action: Optional[ReconciliationAction]
    ecosystems: Tuple[Ecosystem, ...] = ()
    document: Optional[ConfigDocument] = None
    published: Optional[PublishResult] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def kind(self) -> str:
        if self.action is None:
            return "failed"
        return self.action.kind


@dataclass
class RunSummary:
    outcomes: List[RepositoryOutcome] = field(default_factory=list)
    interrupted: bool = False

    def counts(self) -> Dict[str, int]:
        return dict(Counter(outcome.kind for outcome in self.outcomes))

    @property
    def failed(self) -> bool:
        return any(outcome.failed for outcome in self.outcomes)


class Orchestrator:
    """Coordinates the per-repository pipeline across an organization."""

    def __init__(
        self,
        host: RepositoryHost,
        rules: RuleSet | None = None,
        *,
        cache: EcosystemCache | None = None,
        detector: EcosystemDetector | None = None,
        publisher: PullRequestPublisher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.host = host
        self.rules = rules if rules is not None else RuleSet.empty()
        self.cache = cache if cache is not None else EcosystemCache(None)
        self.detector = detector or EcosystemDetector()
        self.settings = settings or Settings()
        self.publisher = publisher or PullRequestPublisher(host, self.settings.publish)
        self.logger = get_logger("orchestrator")

    def run(
        self,
        org: str,
        options: RunOptions | None = None,
        *,
        on_outcome: Callable[[RepositoryOutcome], None] | None = None,
        dispatch: bool = True,
    ) -> RunSummary:
        """Process every selected repository of ``org`` on a bounded worker pool.

        With ``dispatch=False`` repositories are only planned and nothing is written.
        Conflicting rules for any selected repository raise
        :class:`AmbiguousScopeError` before work starts.
        """
        options = options or RunOptions()
        summary = RunSummary()
        if self.cache.load_error:
            self.logger.warning("Ignoring ecosystem cache: %s", self.cache.load_error)

        repositories = self._select(self.host.list_org_repositories(org), options.repositories)
        if not repositories:
            self.logger.warning("No repositories found.")
            return summary
        for repository in repositories:
            self.rules.check_repository(repository)

        self.logger.info("Processing %d repositories in %s", len(repositories), org)
        worker = self.process_repository if dispatch else self.plan_repository
        try:
            with ThreadPoolExecutor(
                max_workers=self.settings.workers, thread_name_prefix="depconf"
            ) as executor:
                futures: Dict[Future[RepositoryOutcome], Repository] = {
                    executor.submit(worker, repository, options): repository
                    for repository in repositories
                }
                try:
                    for future in as_completed(futures):
                        outcome = future.result()
                        summary.outcomes.append(outcome)
                        if on_outcome is not None:
                            on_outcome(outcome)
                except KeyboardInterrupt:
                    self.logger.warning("Interrupted; waiting for in-flight repositories")
                    summary.interrupted = True
                    executor.shutdown(wait=True, cancel_futures=True)
        finally:
            self._persist_cache()
        return summary

    def process_repository(
        self, repository: Repository, options: RunOptions
    ) -> RepositoryOutcome:
        """Plan ``repository`` and dispatch the resulting action."""
        outcome = self.plan_repository(repository, options)
        if outcome.failed or not isinstance(outcome.action, (Create, Update)):
            return outcome
        try:
            published = self.publisher.publish(
                repository, outcome.action.document, dry_run=not options.create_pr
            )
        except HostClientError as exc:
            log_exception(self._for(repository), "Publishing failed", exc)
            return RepositoryOutcome(
                repository=repository,
                action=outcome.action,
                ecosystems=outcome.ecosystems,
                document=outcome.document,
                error=f"publish failed: {exc}",
            )
        return RepositoryOutcome(
            repository=repository,
            action=outcome.action,
            ecosystems=outcome.ecosystems,
            document=outcome.document,
            published=published,
        )

    def plan_repository(
        self, repository: Repository, options: RunOptions
    ) -> RepositoryOutcome:
        """Detect, resolve, synthesize and reconcile without writing anything."""
        if repository.archived:
            return RepositoryOutcome(repository=repository, action=Skip(SKIP_ARCHIVED))

        try:
            detection = self._detect(repository)
            existing = self._existing_document(repository)
        except (HostClientError, DetectionIOError) as exc:
            self._for(repository).warning("Skipping after fetch error: %s", exc)
            return RepositoryOutcome(repository=repository, action=Skip(SKIP_FETCH_ERROR))

        try:
            directives = resolve(repository, detection, self.rules)
            document = synthesize(directives, registries=self.rules.registries)
        except InternalInvariantError as exc:
            log_exception(self._for(repository), "Invariant violated", exc)
            return RepositoryOutcome(
                repository=repository,
                action=None,
                ecosystems=detection.ecosystems,
                error=str(exc),
            )

        def _find_open_pr() -> Optional[int]:
            return self.host.find_open_pull_request(
                repository, self.settings.publish.branch, base=repository.default_branch
            )

        try:
            action = reconcile(existing, document, options.flags, find_open_pr=_find_open_pr)
        except HostClientError as exc:
            self._for(repository).warning("Skipping after fetch error: %s", exc)
            action = Skip(SKIP_FETCH_ERROR)

        self._for(repository).info("%s", _describe(action))
        return RepositoryOutcome(
            repository=repository,
            action=action,
            ecosystems=detection.ecosystems,
            document=document,
        )

    # ------------------------------------------------------------------
    # Helpers

    def _detect(self, repository: Repository) -> DetectionResult:
        tree = self.host.list_tree(repository)
        fingerprint = manifest_fingerprint(tree)
        cached = self.cache.get(repository.full_name, fingerprint)
        if not isinstance(cached, CacheMiss):
            self._for(repository).debug("Using cached ecosystems")
            return cached
        self._for(repository).debug("Cache %s; scanning tree", cached.reason)
        detection = self.detector.detect(tree, fingerprint=fingerprint)
        self.cache.put(repository.full_name, fingerprint, detection)
        return detection

    def _existing_document(self, repository: Repository) -> Optional[ConfigDocument]:
        remote: Optional[RemoteFile] = self.host.get_file(
            repository, DEPENDABOT_PATH, ref=repository.default_branch
        )
        if remote is None:
            return None
        document = ConfigDocument.from_text(remote.content)
        if not document.is_valid:
            self._for(repository).warning(
                "Existing %s is not valid YAML; it will be replaced", DEPENDABOT_PATH
            )
        return document

    def _for(self, repository: Repository) -> RepositoryLogger:
        return RepositoryLogger(self.logger, repository.full_name)

    def _persist_cache(self) -> None:
        try:
            if self.cache.persist():
                self.logger.debug("Ecosystem cache written with %d entries", len(self.cache))
        except OSError as exc:
            self.logger.warning("Failed to write ecosystem cache: %s", exc)

    @staticmethod
    def _select(
        repositories: Sequence[Repository], names: Sequence[str]
    ) -> List[Repository]:
        if not names:
            return list(repositories)
        wanted = {name.casefold() for name in names}
        return [
            repository
            for repository in repositories
            if repository.name.casefold() in wanted or repository.full_name.casefold() in wanted
        ]


def _describe(action: ReconciliationAction) -> str:
    if isinstance(action, Skip):
        return f"skip ({action.reason})"
    return action.kind


__all__ = [
    "Orchestrator",
    "RepositoryHost",
    "RepositoryOutcome",
    "RunOptions",
    "RunSummary",
]
