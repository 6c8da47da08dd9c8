"""Classification of a repository into a reconciliation action."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

from .synthesizer import ConfigDocument

SKIP_NO_EXISTING = "no existing config, force-new not set"
SKIP_NO_OPEN_PR = "only-existing set, no open PR"
SKIP_NO_ECOSYSTEMS = "no ecosystems detected"
SKIP_FETCH_ERROR = "fetch error"
SKIP_ARCHIVED = "archived"


@dataclass(frozen=True)
class ReconcileFlags:
    force_new: bool = False
    only_existing: bool = False


@dataclass(frozen=True)
class NoChange:
    kind = "no-change"


@dataclass(frozen=True)
class Create:
    document: ConfigDocument
    kind = "create"


@dataclass(frozen=True)
class Update:
    existing: ConfigDocument
    document: ConfigDocument
    kind = "update"


@dataclass(frozen=True)
class Skip:
    reason: str
    kind = "skip"


ReconciliationAction = Union[NoChange, Create, Update, Skip]

ACTION_KINDS = ("create", "update", "no-change", "skip")


def reconcile(
    existing: Optional[ConfigDocument],
    synthesized: ConfigDocument,
    flags: ReconcileFlags,
    *,
    find_open_pr: Optional[Callable[[], Optional[int]]] = None,
) -> ReconciliationAction:
    """Decide what should happen to a repository's dependabot.yml.

    Never mutates remote state. ``find_open_pr`` is only consulted when
    ``flags.only_existing`` is set; its absence counts as "no open PR".
    """
    if flags.only_existing:
        pr_number = find_open_pr() if find_open_pr is not None else None
        if pr_number is None:
            return Skip(SKIP_NO_OPEN_PR)

    if not synthesized.updates:
        return Skip(SKIP_NO_ECOSYSTEMS)

    if existing is None:
        if not flags.force_new:
            return Skip(SKIP_NO_EXISTING)
        return Create(synthesized)

    if existing == synthesized:
        return NoChange()
    return Update(existing, synthesized)


__all__ = [
    "ACTION_KINDS",
    "Create",
    "NoChange",
    "ReconcileFlags",
    "ReconciliationAction",
    "SKIP_ARCHIVED",
    "SKIP_FETCH_ERROR",
    "SKIP_NO_ECOSYSTEMS",
    "SKIP_NO_EXISTING",
    "SKIP_NO_OPEN_PR",
    "Skip",
    "reconcile",
]
