"""Two-tier (memory + disk) cache for query results.

Memory entries expire after ``memory_ttl`` seconds, disk entries after
``disk_ttl``. The disk tier is kept under ``max_disk_size`` bytes by a
background cleanup that drops the least recently modified files first.
A miss never raises: caching failures are logged and reported as misses.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import shutil
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set

from docsref.config import CacheConfig
from docsref.models import CacheEntry

LOGGER = logging.getLogger(__name__)

MAX_ENCODED_KEY_LENGTH = 200


class TwoTierCache:
    """Query-result cache with an in-memory tier in front of a disk tier."""

    def __init__(
        self,
        directory: Path,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.directory = Path(directory)
        self.config = config or CacheConfig()
        self._clock = clock
        self._memory: Dict[str, CacheEntry[Any]] = {}
        self._cleanup_tasks: Set[asyncio.Task[int]] = set()

    def __len__(self) -> int:
        return len(self._memory)

    def disk_path(self, key: str) -> Path:
        """File holding ``key`` on disk.

        Keys are URL-safe base64 encoded; very long keys fall back to a SHA-256
        digest to stay within filename limits.
        """
        encoded = base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii").rstrip("=")
        if len(encoded) > MAX_ENCODED_KEY_LENGTH:
            encoded = "sha256-" + hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{encoded}.json"

    async def get(self, key: str, *, skip_disk: bool = False) -> Optional[Any]:
        now = self._clock()
        cached = self._memory.get(key)
        if cached is not None:
            if cached.age(now) > self.config.memory_ttl:
                del self._memory[key]
            else:
                return cached.data

        if skip_disk:
            return None

        path = self.disk_path(key)
        try:
            entry = await asyncio.to_thread(self._read_entry, path)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.debug("Ignoring unreadable cache file %s: %s", path, exc)
            return None

        if entry.age(now) > self.config.disk_ttl:
            try:
                await asyncio.to_thread(path.unlink, missing_ok=True)
            except OSError as exc:
                LOGGER.warning("Failed to delete expired cache file %s: %s", path, exc)
            return None

        self._set_memory(key, entry.data, entry.tokens)
        return entry.data

    async def set(
        self,
        key: str,
        value: Any,
        *,
        tokens: int | None = None,
        memory_only: bool = False,
    ) -> None:
        """Store ``value`` under ``key``, replacing any previous entry."""
        entry = self._set_memory(key, value, tokens)
        if memory_only:
            return

        path = self.disk_path(key)
        try:
            await asyncio.to_thread(self._write_entry, path, entry)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.warning("Failed to write disk cache entry %s: %s", path, exc)
            return
        self._schedule_cleanup()

    async def clear(self) -> None:
        self._memory.clear()
        try:
            await asyncio.to_thread(self._reset_directory)
        except OSError as exc:
            LOGGER.warning("Failed to clear disk cache at %s: %s", self.directory, exc)

    async def cleanup_disk(self) -> int:
        """Delete the oldest files once the disk tier exceeds its size budget.

        Returns the number of files removed.
        """
        try:
            return await asyncio.to_thread(self._cleanup_disk)
        except OSError as exc:
            LOGGER.warning("Failed to clean up disk cache at %s: %s", self.directory, exc)
            return 0

    async def wait_for_cleanup(self) -> None:
        """Wait for pending background cleanups."""
        if self._cleanup_tasks:
            await asyncio.gather(*self._cleanup_tasks, return_exceptions=True)

    def _set_memory(self, key: str, value: Any, tokens: int | None) -> CacheEntry[Any]:
        if key not in self._memory and len(self._memory) >= self.config.max_memory_entries:
            oldest = min(self._memory, key=lambda existing: self._memory[existing].timestamp)
            del self._memory[oldest]
        entry = CacheEntry(data=value, timestamp=self._clock(), tokens=tokens)
        self._memory[key] = entry
        return entry

    def _schedule_cleanup(self) -> None:
        task = asyncio.get_running_loop().create_task(self.cleanup_disk())
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_done)

    def _cleanup_done(self, task: asyncio.Task[int]) -> None:
        self._cleanup_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.warning("Disk cache cleanup failed: %s", task.exception())

    def _read_entry(self, path: Path) -> CacheEntry[Any]:
        with path.open("r", encoding="utf-8") as handle:
            return CacheEntry.from_dict(json.load(handle))

    def _write_entry(self, path: Path, entry: CacheEntry[Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(entry.to_dict())
        path.write_text(payload, encoding="utf-8")

    def _reset_directory(self) -> None:
        shutil.rmtree(self.directory, ignore_errors=True)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _cleanup_disk(self) -> int:
        if not self.directory.is_dir():
            return 0
        files = []
        for path in self.directory.iterdir():
            if path.is_file():
                stat = path.stat()
                files.append((stat.st_mtime, stat.st_size, path))
        files.sort(key=lambda item: item[0], reverse=True)

        removed = 0
        total_size = 0
        for _, size, path in files:
            total_size += size
            if total_size > self.config.max_disk_size:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            LOGGER.debug("Removed %d files from disk cache", removed)
        return removed
