"""On-disk response cache with TTL, keyed by (provider, prompt, parameters)."""

import dataclasses
import hashlib
import json
import logging
import os
import tempfile
import time
from collections.abc import Callable, Iterable
from enum import Enum
from pathlib import Path
from typing import Any

from config.config_loader import CacheConfig
from quorum.errors import CacheIOError
from quorum.models import CacheEntry, CacheStats

logger = logging.getLogger(__name__)


def normalize_prompt(text: str) -> str:
    """Trim and collapse whitespace runs so cosmetic spacing never misses the cache."""
    return " ".join(text.split())


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def make_key(
    provider_id: str,
    prompt: str,
    model: str | None = None,
    task_hint: Any = None,
    **extra: Any,
) -> str:
    """Deterministic cache key, stable across runs.

    Includes everything that changes the answer (provider, prompt, model,
    task hint, route extras) and nothing volatile.
    """
    payload = {
        "provider": provider_id.strip().lower(),
        "prompt": normalize_prompt(prompt),
        "model": model,
        "task": _plain(task_hint),
        "extra": {k: _plain(v) for k, v in sorted(extra.items())},
    }
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


class ResponseCache:
    """One JSON file per key under ``cache_dir``.

    Expired entries read as misses and stay on disk until the next write to
    the same key overwrites them, or ``prune``/``clear`` removes them.
    Writes are atomic (temp file + rename) and last-write-wins.
    """

    def __init__(
        self,
        cache_dir: Path,
        ttl_sec: float = 86400.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._dir = Path(cache_dir)
        self._ttl_sec = ttl_sec
        self._enabled = enabled
        self._clock = clock

    @classmethod
    def from_config(cls, config: CacheConfig) -> "ResponseCache":
        return cls(config.dir, ttl_sec=config.ttl_sec, enabled=config.enabled)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def _files(self) -> list[Path]:
        if not self._dir.exists():
            return []
        return sorted(self._dir.glob("*.json"))

    def new_entry(self, key: str, response: str, provider_id: str, prompt: str = "") -> CacheEntry:
        return CacheEntry(
            key=key,
            response=response,
            created_at=self._clock(),
            ttl_sec=self._ttl_sec,
            provider_id=provider_id,
            prompt=prompt,
        )

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheIOError(f"Cannot read cache file {path}: {exc}") from exc
        try:
            return CacheEntry(**json.loads(raw))
        except (ValueError, TypeError) as exc:
            logger.warning("Ignoring corrupt cache file %s: %s", path.name, exc)
            return None

    def get(self, key: str) -> CacheEntry | None:
        """Return the live entry for ``key``, or None if absent or expired.

        Raises:
            CacheIOError: If the cache file exists but cannot be read.
        """
        if not self._enabled:
            return None
        entry = self._read(self._path(key))
        if entry is None or entry.key != key:
            return None
        if entry.is_expired(self._clock()):
            logger.debug("Cache entry %s expired", key[:12])
            return None
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        """Store ``entry`` under ``key``, overwriting whatever is there.

        Raises:
            CacheIOError: If the directory or file cannot be written.
        """
        if not self._enabled:
            return
        if entry.key != key:
            entry = dataclasses.replace(entry, key=key)
        content = json.dumps(dataclasses.asdict(entry), indent=2)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(content)
                os.replace(tmp_name, self._path(key))
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CacheIOError(f"Cannot write cache entry {key[:12]}: {exc}") from exc
        logger.debug("Cached %s for %s", key[:12], entry.provider_id)

    def put_many(self, entries: Iterable[CacheEntry]) -> None:
        for entry in entries:
            self.put(entry.key, entry)

    def clear(self) -> int:
        """Remove every entry. Returns the number of files removed."""
        count = 0
        try:
            for path in self._files():
                path.unlink(missing_ok=True)
                count += 1
        except OSError as exc:
            raise CacheIOError(f"Cannot clear cache in {self._dir}: {exc}") from exc
        logger.info("Cleared %d cache entries", count)
        return count

    def prune(self) -> int:
        """Remove expired entries. Returns the number of files removed."""
        now = self._clock()
        count = 0
        try:
            for path in self._files():
                entry = self._read(path)
                if entry is not None and entry.is_expired(now):
                    path.unlink(missing_ok=True)
                    count += 1
        except OSError as exc:
            raise CacheIOError(f"Cannot prune cache in {self._dir}: {exc}") from exc
        return count

    def stats(self) -> CacheStats:
        stats = CacheStats()
        now = self._clock()
        for path in self._files():
            stats.total_entries += 1
            try:
                stats.total_bytes += path.stat().st_size
                entry = self._read(path)
            except (OSError, CacheIOError):
                continue
            if entry is not None and entry.is_expired(now):
                stats.expired_entries += 1
        return stats
