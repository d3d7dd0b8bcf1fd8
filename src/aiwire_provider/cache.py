"""File-based response cache.

Layout::

    <base_dir>/
        0/                 global entries (no context)
            1a2b3c4d5e6f.json
        1042/              entries scoped to context (record) 1042
            9f8e7d6c5b4a.json

Each file holds one JSON entry with absolute creation/expiry timestamps and
the serialized CompletionResult. Expired or unreadable entries are deleted
as soon as a lookup sees them; `sweep_expired` reclaims the rest, along
with temp files left behind by interrupted writes.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .contracts import CompletionResult
from .logging import LogChannels
from .metrics import cache_events_total
from .options import AskOptions
from .ttl import CacheTtl

FINGERPRINT_LENGTH = 12
MESSAGE_PREVIEW_CHARS = 200
# Temp files older than this are leftovers of an interrupted write.
STALE_TEMP_SECONDS = 3600


def _md5(data: Any) -> str:
    encoded = json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return hashlib.md5(encoded).hexdigest()


def fingerprint(message: str, options: AskOptions) -> str:
    """Cache identity: what was asked, not how it was transported."""
    history = options.history_dicts()
    parts = {
        "msg": message,
        "provider": options.provider or "",
        "model": options.model or "",
        "system": options.system_prompt or "",
        "temp": options.temperature if options.temperature is not None else "",
        "history": _md5(history) if history else "",
    }
    return _md5(parts)[:FINGERPRINT_LENGTH]


@dataclass(frozen=True)
class CacheStats:
    total_files: int = 0
    total_size: int = 0
    partitions: int = 0
    expired: int = 0


class ResponseCache:
    def __init__(
        self,
        base_dir: str | Path,
        *,
        clock: Callable[[], float] | None = None,
        log: LogChannels | None = None,
    ):
        self.base_dir = Path(base_dir)
        self._clock: Callable[[], float] = clock or time.time
        self._log = log or LogChannels()

    def _partition(self, context_id: int) -> Path:
        return self.base_dir / str(int(context_id))

    def _path(self, context_id: int, key: str) -> Path:
        return self._partition(context_id) / f"{key}.json"

    def _partitions(self) -> list[Path]:
        if not self.base_dir.is_dir():
            return []
        return sorted(p for p in self.base_dir.iterdir() if p.is_dir())

    @staticmethod
    def _entries(partition: Path) -> Iterator[Path]:
        return iter(sorted(partition.glob("*.json")))

    def _remove_stale_temp_files(self, partition: Path) -> None:
        cutoff = self._clock() - STALE_TEMP_SECONDS
        for path in partition.glob(".*.tmp"):
            try:
                stale = path.stat().st_mtime < cutoff
            except FileNotFoundError:
                continue
            if stale:
                self._unlink(path)

    @staticmethod
    def _read(path: Path) -> dict[str, Any] | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict) or not isinstance(data.get("expires_at"), (int, float)):
            return None
        return data

    def _is_live(self, data: dict[str, Any] | None) -> bool:
        return data is not None and self._clock() <= data["expires_at"]

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def get(self, message: str, options: AskOptions, context_id: int = 0) -> CompletionResult | None:
        key = fingerprint(message, options)
        path = self._path(context_id, key)
        if not path.exists():
            cache_events_total.labels(event="miss").inc()
            return None

        data = self._read(path)
        result: CompletionResult | None = None
        if data is not None:
            try:
                result = CompletionResult.from_dict(data.get("result"))
            except (TypeError, ValueError):
                result = None
        if data is None or result is None:
            self.delete(context_id, key)
            cache_events_total.labels(event="invalid").inc()
            self._log.debug("cache_invalid_entry", context_id=context_id, fingerprint=key)
            return None

        if not self._is_live(data):
            self.delete(context_id, key)
            cache_events_total.labels(event="expired").inc()
            self._log.debug("cache_expired", context_id=context_id, fingerprint=key)
            return None

        cache_events_total.labels(event="hit").inc()
        self._log.debug("cache_hit", context_id=context_id, fingerprint=key)
        return result.annotate(cached=True)

    def set(
        self,
        message: str,
        options: AskOptions,
        result: CompletionResult,
        ttl: int | str | CacheTtl,
        context_id: int = 0,
    ) -> bool:
        key = fingerprint(message, options)
        ttl = ttl if isinstance(ttl, CacheTtl) else CacheTtl.parse(ttl)
        now = int(self._clock())
        entry = {
            "created_at": now,
            "expires_at": now + ttl.seconds,
            "ttl": ttl.spec,
            "ttl_seconds": ttl.seconds,
            "message": message[:MESSAGE_PREVIEW_CHARS],
            "provider": options.provider or "",
            "model": options.model or "",
            "context_id": int(context_id),
            "result": result.annotate(cached=False, side_effects=()).to_dict(),
        }

        partition = self._partition(context_id)
        try:
            partition.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=partition, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(entry, fh, ensure_ascii=False, indent=2)
                os.replace(tmp_name, self._path(context_id, key))
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            cache_events_total.labels(event="write_error").inc()
            self._log.error("cache_write_failed", context_id=context_id, fingerprint=key, error=str(e))
            return False

        self._log.debug("cache_set", context_id=context_id, fingerprint=key, ttl=ttl.spec, ttl_seconds=ttl.seconds)
        return True

    def delete(self, context_id: int, key: str) -> bool:
        return self._unlink(self._path(context_id, key))

    def clear_context(self, context_id: int) -> int:
        partition = self._partition(context_id)
        if not partition.is_dir():
            return 0
        count = sum(1 for path in self._entries(partition) if self._unlink(path))
        self._remove_if_empty(partition)
        return count

    def clear_all(self) -> int:
        count = 0
        for partition in self._partitions():
            count += sum(1 for path in self._entries(partition) if self._unlink(path))
            self._remove_if_empty(partition)
        self._log.debug("cache_cleared", removed=count)
        return count

    def sweep_expired(self) -> int:
        count = 0
        for partition in self._partitions():
            for path in self._entries(partition):
                if not self._is_live(self._read(path)) and self._unlink(path):
                    count += 1
            self._remove_stale_temp_files(partition)
            self._remove_if_empty(partition)
        if count:
            self._log.debug("cache_swept", removed=count)
        return count

    def stats(self) -> CacheStats:
        partitions = self._partitions()
        total_files = total_size = expired = 0
        for partition in partitions:
            for path in self._entries(partition):
                try:
                    total_size += path.stat().st_size
                except FileNotFoundError:
                    continue
                total_files += 1
                if not self._is_live(self._read(path)):
                    expired += 1
        return CacheStats(total_files=total_files, total_size=total_size, partitions=len(partitions), expired=expired)

    @staticmethod
    def _remove_if_empty(partition: Path) -> None:
        try:
            partition.rmdir()
        except OSError:
            # still holds entries, or a concurrent clear already removed it
            return
