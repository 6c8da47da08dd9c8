"""Persistent stores used across runs."""

from .ecosystem_cache import ABSENT, STALE, CacheMiss, EcosystemCache

__all__ = ["ABSENT", "STALE", "CacheMiss", "EcosystemCache"]
