"""
ScheduleStore — the authoritative in-memory schedule list.

Persistence is delegated to a SchedulePersistence collaborator that reads
and writes the whole document at once:

    {"schedules": [ {...}, {...} ]}

Because the full list is written on every change, concurrent fires of
different schedules must not interleave their read-modify-write cycles.
All mutations therefore go through a single asyncio.Lock.

Usage:
    store = ScheduleStore(JsonFilePersistence(Path(".cadence/schedules.json")))
    await store.load()
    await store.update(schedule_id, last_execution_time=now)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from cadence.core.errors import PersistenceError, ScheduleError
from cadence.scheduler.schedule import SCHEDULE_FIELDS, Schedule, utc_now_iso

logger = logging.getLogger(__name__)


class SchedulePersistence(ABC):
    """Reads and writes the complete schedule list."""

    @abstractmethod
    async def load(self) -> list[Schedule]:
        ...

    @abstractmethod
    async def save(self, schedules: list[Schedule]) -> None:
        ...


class JsonFilePersistence(SchedulePersistence):
    """
    The schedules document on disk.  Blocking file I/O runs in the executor.

    A missing file is an empty list. Writes go to a temp file in the same
    directory and are moved into place, so readers never see half a file.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._saved_mtime: float | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def saved_mtime(self) -> float | None:
        """Modification time of our own last write, to tell it from external edits."""
        return self._saved_mtime

    async def load(self) -> list[Schedule]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._load_sync)

    def _load_sync(self) -> list[Schedule]:
        if not self._path.exists():
            logger.info(f"Schedules file not found at {self._path}")
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(
                f"Error loading schedules from {self._path}: {e}",
                details={"path": str(self._path)},
            ) from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Schedules file {self._path} is not a JSON object")
        schedules = []
        for entry in data.get("schedules") or []:
            try:
                schedules.append(Schedule.from_dict(entry))
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed schedule entry {entry!r}: {e}")
        return schedules

    async def save(self, schedules: list[Schedule]) -> None:
        content = json.dumps({"schedules": [s.to_dict() for s in schedules]}, indent=2)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._save_sync, content)

    def _save_sync(self, content: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".schedules-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp, self._path)
                self._saved_mtime = self._path.stat().st_mtime
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(
                f"Error saving schedules to {self._path}: {e}",
                details={"path": str(self._path)},
            ) from e


class InMemoryPersistence(SchedulePersistence):
    """
    Dict-backed persistence for tests and embedding.

    Round-trips through to_dict()/from_dict() so tests see exactly what
    would have been written to disk.
    """

    def __init__(self, schedules: list[Schedule] | None = None) -> None:
        self.document: dict[str, Any] = {
            "schedules": [s.to_dict() for s in (schedules or [])]
        }
        self.save_count = 0

    async def load(self) -> list[Schedule]:
        return [Schedule.from_dict(d) for d in self.document["schedules"]]

    async def save(self, schedules: list[Schedule]) -> None:
        self.document = {"schedules": [s.to_dict() for s in schedules]}
        self.save_count += 1


class ScheduleStore:
    """In-memory schedule list with serialised write-through persistence."""

    def __init__(self, persistence: SchedulePersistence) -> None:
        self._persistence = persistence
        self._schedules: list[Schedule] = []
        self._lock = asyncio.Lock()

    # ── Reads ────────────────────────────────────────────────────────────────

    def all(self) -> list[Schedule]:
        return list(self._schedules)

    def get(self, schedule_id: str) -> Schedule | None:
        for s in self._schedules:
            if s.id == schedule_id:
                return s
        return None

    def __len__(self) -> int:
        return len(self._schedules)

    # ── Load ─────────────────────────────────────────────────────────────────

    async def load(self) -> list[Schedule]:
        """
        Replace the in-memory list with the persisted one.

        Raises PersistenceError and leaves the current list untouched
        when the document cannot be read.
        """
        async with self._lock:
            schedules = await self._persistence.load()
            self._schedules = schedules
            logger.info(f"Loaded {len(schedules)} schedules")
            return list(schedules)

    # ── Writes ───────────────────────────────────────────────────────────────

    async def add(self, schedule: Schedule) -> Schedule:
        async with self._lock:
            if self.get(schedule.id) is not None:
                raise ScheduleError(
                    f"Schedule with ID {schedule.id} already exists", schedule_id=schedule.id
                )
            self._schedules.append(schedule)
            await self._save()
            return schedule

    async def update(self, schedule_id: str, **changes: Any) -> Schedule | None:
        """
        Apply field changes to one schedule and persist the whole list.

        Returns the updated schedule, or None if the id is unknown. On a
        failed write the in-memory change is kept and PersistenceError is
        raised.
        """
        if "id" in changes:
            raise ScheduleError("Schedule id is immutable", schedule_id=schedule_id)
        unknown = set(changes) - SCHEDULE_FIELDS
        if unknown:
            raise ScheduleError(f"Unknown schedule fields: {sorted(unknown)}", schedule_id=schedule_id)
        async with self._lock:
            index = self._index_of(schedule_id)
            if index is None:
                return None
            updated = self._schedules[index].copy(updated_at=utc_now_iso(), **changes)
            self._schedules[index] = updated
            await self._save()
            return updated

    async def remove(self, schedule_id: str) -> bool:
        async with self._lock:
            index = self._index_of(schedule_id)
            if index is None:
                return False
            del self._schedules[index]
            await self._save()
            return True

    def set_next_execution(self, schedule_id: str, when: datetime | None) -> None:
        """
        Cache the projected next fire time in memory.

        Not persisted on its own; it rides along with the next write.
        """
        index = self._index_of(schedule_id)
        if index is not None:
            self._schedules[index] = self._schedules[index].copy(next_execution_time=when)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _index_of(self, schedule_id: str) -> int | None:
        for i, s in enumerate(self._schedules):
            if s.id == schedule_id:
                return i
        return None

    async def _save(self) -> None:
        try:
            await self._persistence.save(list(self._schedules))
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Error saving schedules: {e}") from e
        logger.debug("Schedules saved successfully")
