"""Exception hierarchy for depconf."""

from __future__ import annotations


class DepconfError(RuntimeError):
    """Base class for all depconf errors."""


class OverrideParseError(DepconfError):
    """Raised when the override rule source is malformed."""


class AmbiguousScopeError(DepconfError):
    """Raised when two rules for the same scope set a field to different values."""

    def __init__(self, scope: str, field_name: str, values: tuple[object, object]) -> None:
        self.scope = scope
        self.field_name = field_name
        self.values = values
        super().__init__(
            f"Conflicting values for '{field_name}' in scope {scope}: "
            f"{values[0]!r} vs {values[1]!r}"
        )


class DetectionIOError(DepconfError):
    """Raised when the repository tree cannot be read during detection."""


class HostClientError(DepconfError):
    """Raised when a request to the hosting platform fails."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class InternalInvariantError(DepconfError):
    """Raised when the merge or synthesis contract is violated."""


__all__ = [
    "AmbiguousScopeError",
    "DepconfError",
    "DetectionIOError",
    "HostClientError",
    "InternalInvariantError",
    "OverrideParseError",
]
