"""CLI entrypoint for auditing Dependabot configs across an organization."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import ConfigError, Settings, load_settings
from .errors import AmbiguousScopeError, HostClientError, OverrideParseError
from .github import GitHubClient
from .logging import configure_logging
from .orchestrator import Orchestrator, RepositoryOutcome, RunOptions, RunSummary
from .reconciler import ACTION_KINDS, Create, Skip, Update
from .rules import load_rules
from .stores import EcosystemCache

EXIT_FAILED = 1
EXIT_INPUT_ERROR = 2
EXIT_INTERRUPTED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="depconf",
        description="Check and reconcile Dependabot configs for all repositories in an organization.",
    )
    parser.add_argument("org", help="Organization name.")
    parser.add_argument(
        "--repo",
        action="append",
        default=[],
        metavar="NAME",
        help="Limit the run to this repository (repeatable).",
    )
    parser.add_argument(
        "--ecosystems-cache",
        type=Path,
        default=None,
        metavar="PATH",
        help="Cache file for detected ecosystems.",
    )
    parser.add_argument(
        "--dependabot-overrides",
        type=Path,
        default=None,
        metavar="PATH",
        help="Override rules file (YAML or TOML).",
    )
    parser.add_argument(
        "--create-pr",
        action="store_true",
        help="Write configs and open pull requests instead of a dry run.",
    )
    parser.add_argument(
        "--force-new",
        action="store_true",
        help="Create a config for repositories that do not have one yet.",
    )
    parser.add_argument(
        "--only-existing",
        action="store_true",
        help="Only process repositories that already have an open depconf PR.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of repositories processed in parallel.",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write logs to this file.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Increase log verbosity and print synthesized configs.",
    )
    return parser


def _build_orchestrator(args: argparse.Namespace, settings: Settings) -> Orchestrator:
    rules = load_rules(args.dependabot_overrides)
    host = GitHubClient(
        token=settings.require_token(),
        api_base_url=settings.api_url,
        timeout_seconds=settings.request_timeout,
    )
    return Orchestrator(
        host,
        rules,
        cache=EcosystemCache(args.ecosystems_cache),
        settings=settings,
    )


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for depconf."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)

    try:
        settings = load_settings().with_overrides(workers=args.workers)
        orchestrator = _build_orchestrator(args, settings)
    except (OverrideParseError, AmbiguousScopeError) as exc:
        parser.exit(EXIT_INPUT_ERROR, f"Invalid overrides: {exc}\n")
    except ConfigError as exc:
        parser.exit(EXIT_INPUT_ERROR, f"{exc}\n")

    options = RunOptions(
        create_pr=bool(args.create_pr),
        force_new=bool(args.force_new),
        only_existing=bool(args.only_existing),
        repositories=tuple(args.repo),
    )

    def _report(outcome: RepositoryOutcome) -> None:
        print(_format_outcome(outcome))
        if args.verbose and isinstance(outcome.action, (Create, Update)):
            print(outcome.action.document.text)

    try:
        summary = orchestrator.run(args.org, options, on_outcome=_report)
    except AmbiguousScopeError as exc:
        parser.exit(EXIT_INPUT_ERROR, f"Invalid overrides: {exc}\n")
    except HostClientError as exc:
        parser.exit(EXIT_FAILED, f"depconf failed: {exc}\nRun with --verbose for more details.\n")

    print(_format_summary(summary))
    if summary.interrupted:
        parser.exit(EXIT_INTERRUPTED, "Interrupted.\n")
    if summary.failed:
        parser.exit(EXIT_FAILED, "Some repositories could not be processed.\n")


def _format_outcome(outcome: RepositoryOutcome) -> str:
    ecosystems = ", ".join(
        f"{ecosystem.name} {ecosystem.directory}" for ecosystem in outcome.ecosystems
    ) or "none"
    if outcome.failed:
        result = f"failed ({outcome.error})"
    elif isinstance(outcome.action, Skip):
        result = f"skip ({outcome.action.reason})"
    else:
        result = outcome.kind
    return f"{outcome.repository.full_name}: ecosystems [{ecosystems}] -> {result}"


def _format_summary(summary: RunSummary) -> str:
    counts = summary.counts()
    parts = [f"{kind}={counts.get(kind, 0)}" for kind in ACTION_KINDS]
    if counts.get("failed"):
        parts.append(f"failed={counts['failed']}")
    return f"Processed {len(summary.outcomes)} repositories: " + ", ".join(parts)


if __name__ == "__main__":
    main(sys.argv[1:])
