"""Persistent cache for ecosystem detection results."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..models import DetectionResult, Ecosystem

_CACHE_VERSION = 1


@dataclass(frozen=True)
class CacheMiss:
    """Explicit miss returned by :meth:`EcosystemCache.get`."""

    reason: str


ABSENT = CacheMiss("absent")
STALE = CacheMiss("stale")


class EcosystemCache:
    """Stores detection results keyed by repository and manifest fingerprint.

    The snapshot is loaded once on construction and written back by
    :meth:`persist`. An unreadable snapshot yields an empty cache; the reason
    is kept in ``load_error`` so callers can report it.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._entries: Dict[str, Dict[str, object]] = {}
        self._dirty = False
        self._lock = threading.Lock()
        self.load_error: Optional[str] = None
        if self._path is not None:
            self._load(self._path)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, repository: str, fingerprint: str) -> Union[DetectionResult, CacheMiss]:
        with self._lock:
            entry = self._entries.get(repository)
        if entry is None:
            return ABSENT
        if entry.get("fingerprint") != fingerprint:
            return STALE
        ecosystems = _ecosystems_from_payload(entry.get("ecosystems"))
        if ecosystems is None:
            return STALE
        return DetectionResult(
            repository=repository,
            ecosystems=ecosystems,
            fingerprint=fingerprint,
        )

    def put(self, repository: str, fingerprint: str, result: DetectionResult) -> None:
        payload = {
            "fingerprint": fingerprint,
            "ecosystems": [
                {"name": name, "directories": directories}
                for name, directories in sorted(result.by_name().items())
            ],
            "updated_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        }
        with self._lock:
            self._entries[repository] = payload
            self._dirty = True

    def persist(self) -> bool:
        """Write the snapshot when it changed. Returns True when a write happened."""
        with self._lock:
            if not self._dirty or self._path is None:
                return False
            payload = {
                "version": _CACHE_VERSION,
                "entries": self._entries,
            }
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
            )
            self._dirty = False
        return True

    # ------------------------------------------------------------------
    # Internal helpers

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            self.load_error = f"unreadable cache {path}: {exc}"
            return
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            self.load_error = f"unsupported cache format in {path}"
            return
        entries = data.get("entries")
        if not isinstance(entries, dict):
            self.load_error = f"cache {path} has no entries mapping"
            return
        valid_entries: Dict[str, Dict[str, object]] = {}
        for key, raw in entries.items():
            if not isinstance(key, str) or not isinstance(raw, dict):
                continue
            if not isinstance(raw.get("fingerprint"), str):
                continue
            if _ecosystems_from_payload(raw.get("ecosystems")) is None:
                continue
            valid_entries[key] = raw
        self._entries = valid_entries
        self._dirty = False


def _ecosystems_from_payload(payload: object) -> Optional[tuple[Ecosystem, ...]]:
    if not isinstance(payload, list):
        return None
    ecosystems: List[Ecosystem] = []
    for item in payload:
        if not isinstance(item, dict):
            return None
        name = item.get("name")
        directories = item.get("directories")
        if not isinstance(name, str) or not isinstance(directories, list):
            return None
        for directory in directories:
            if not isinstance(directory, str):
                return None
            ecosystems.append(Ecosystem(name, directory))
    return tuple(sorted(set(ecosystems), key=lambda item: item.sort_key))


__all__ = ["ABSENT", "STALE", "CacheMiss", "EcosystemCache"]
