"""Process-wide view of running and recently finished scrape attempts."""

from __future__ import annotations

import dataclasses
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from .models import ScrapeState, ScrapeStatus

DEFAULT_HISTORY_LIMIT = 50


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ScrapeStateTracker:
    """Track one active state per source and a bounded, newest-first history.

    Readers always receive copies, so a caller's snapshot never changes under
    it.
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.history_limit = history_limit
        self._lock = ReadWriteLock()
        self._active: Dict[int, ScrapeState] = {}
        self._recent: List[ScrapeState] = []

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def start_scrape(self, source_id: int, source_name: str) -> None:
        """Mark ``source_id`` as running, replacing any active state it had."""

        state = ScrapeState(
            source_id=source_id,
            source_name=source_name,
            status=ScrapeStatus.RUNNING,
            started_at=self._now(),
        )
        with self._lock.write():
            self._active[source_id] = state

    def complete_scrape(
        self, source_id: int, entries_found: int, entries_inserted: int
    ) -> Optional[ScrapeState]:
        """Finalize the active attempt as completed; no-op if none is active."""

        with self._lock.write():
            state = self._active.get(source_id)
            if state is None:
                return None
            state.status = ScrapeStatus.COMPLETED
            state.completed_at = self._now()
            state.entries_found = entries_found
            state.entries_inserted = entries_inserted
            return self._archive(state)

    def fail_scrape(self, source_id: int, error: str) -> Optional[ScrapeState]:
        with self._lock.write():
            state = self._active.get(source_id)
            if state is None:
                return None
            state.status = ScrapeStatus.FAILED
            state.completed_at = self._now()
            state.error = error
            return self._archive(state)

    def record_failure(self, source_id: int, source_name: str, error: str) -> ScrapeState:
        """Log a failure for an attempt that never got far enough to run."""

        now = self._now()
        state = ScrapeState(
            source_id=source_id,
            source_name=source_name,
            status=ScrapeStatus.FAILED,
            started_at=now,
            completed_at=now,
            error=error,
        )
        with self._lock.write():
            self._recent.insert(0, state)
            del self._recent[self.history_limit:]
            return dataclasses.replace(state)

    def _archive(self, state: ScrapeState) -> ScrapeState:
        # caller holds the write lock
        self._recent.insert(0, state)
        del self._recent[self.history_limit:]
        self._active.pop(state.source_id, None)
        return dataclasses.replace(state)

    def get(self, source_id: int) -> Optional[ScrapeState]:
        with self._lock.read():
            state = self._active.get(source_id)
            return dataclasses.replace(state) if state is not None else None

    def active(self) -> List[ScrapeState]:
        with self._lock.read():
            return [dataclasses.replace(state) for state in self._active.values()]

    def recent(self, limit: int = DEFAULT_HISTORY_LIMIT) -> List[ScrapeState]:
        with self._lock.read():
            return [dataclasses.replace(state) for state in self._recent[: max(0, limit)]]


__all__ = ["ReadWriteLock", "ScrapeStateTracker"]
