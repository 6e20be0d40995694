"""Per-field task bookkeeping for recompute cycles.

Each field gets a logical timestamp every time a recompute is requested for
it. Only the latest timestamp is valid, so a slow derivation from an older
request can never overwrite a newer one. The updating set guards store
write-back against re-triggering the engine.
"""
from __future__ import annotations

import itertools
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

logger = logging.getLogger(__name__)


@dataclass
class Task:
    """A pending recompute request for one field."""

    field_path: str
    timestamp: int
    affected_fields: tuple[str, ...] = field(default_factory=tuple)


class LinkageTaskQueue:
    """FIFO of per-field tasks with merge-on-enqueue and stale checks."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._queue: list[Task] = []
        self._latest: dict[str, int] = {}
        self._updating: set[str] = set()
        self.processing = False

    def enqueue(self, field_path: str, affected_fields: Iterable[str] = ()) -> int:
        """Queue a task for ``field_path``; a pending task for it is merged.

        Returns:
            The fresh timestamp, which becomes the only valid one for the field.
        """
        timestamp = next(self._counter)
        affected = tuple(affected_fields)
        for task in self._queue:
            if task.field_path == field_path:
                task.timestamp = timestamp
                task.affected_fields = affected
                break
        else:
            self._queue.append(Task(field_path, timestamp, affected))
        self._latest[field_path] = timestamp
        return timestamp

    def dequeue(self) -> Task | None:
        return self._queue.pop(0) if self._queue else None

    def is_empty(self) -> bool:
        return not self._queue

    def complete(self, field_path: str, timestamp: int) -> None:
        """Drop the pending task for ``field_path`` if it still carries ``timestamp``."""
        self._queue = [
            task for task in self._queue if not (task.field_path == field_path and task.timestamp == timestamp)
        ]

    def is_task_valid(self, field_path: str, timestamp: int) -> bool:
        return self._latest.get(field_path) == timestamp

    def latest(self, field_path: str) -> int | None:
        return self._latest.get(field_path)

    def mark_field_updating(self, field_path: str) -> None:
        self._updating.add(field_path)

    def unmark_field_updating(self, field_path: str) -> None:
        self._updating.discard(field_path)

    def is_field_updating(self, field_path: str) -> bool:
        return field_path in self._updating

    @contextmanager
    def updating(self, field_path: str) -> Iterator[None]:
        """Mark ``field_path`` as being written by the engine for the block's duration."""
        self.mark_field_updating(field_path)
        try:
            yield
        finally:
            self.unmark_field_updating(field_path)

    def clear(self) -> None:
        """Forget pending tasks and timestamps. In-flight results become stale."""
        logger.debug("Clearing task queue (%s pending)", len(self._queue))
        self._queue.clear()
        self._latest.clear()

    def status(self) -> dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "processing": self.processing,
            "updating_fields": sorted(self._updating),
            "tasks": [(task.field_path, task.timestamp) for task in self._queue],
        }
