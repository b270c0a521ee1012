"""Source catalogue and entry storage used by the orchestrator."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .models import ScrapedCandidate, Source, StoredEntry

LOGGER = logging.getLogger(__name__)


class SourceNotFoundError(LookupError):
    """Raised when a source id is not in the catalogue."""

    def __init__(self, source_id: int) -> None:
        self.source_id = source_id
        super().__init__(f"source {source_id} not found")


class Store(Protocol):
    def list_source_ids(self) -> List[int]: ...

    def source_by_id(self, source_id: int) -> Source: ...

    def entry_exists(self, source_id: int, title: str) -> bool: ...

    def insert_entry(self, source_id: int, candidate: ScrapedCandidate) -> int: ...

    def update_analysis(self, entry_id: int, text: str) -> None: ...


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class JsonStore:
    """Thread-safe in-memory store, optionally mirrored to a JSON file.

    Entries are unique per ``(source_id, title)`` only because the orchestrator
    checks :meth:`entry_exists` before inserting; nothing here enforces it.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._sources: Dict[int, Source] = {}
        self._entries: Dict[int, StoredEntry] = {}
        self._next_source_id = 1
        self._next_entry_id = 1
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._load()

    def add_source(self, name: str, url: str) -> Source:
        with self._lock:
            source = Source(
                id=self._next_source_id,
                name=name,
                url=url,
                created_at=datetime.now(timezone.utc),
            )
            self._sources[source.id] = source
            self._next_source_id += 1
            self._save()
        LOGGER.info("Registered source %d (%s) -> %s", source.id, name, url)
        return source

    def list_sources(self) -> List[Source]:
        with self._lock:
            return [self._sources[key] for key in sorted(self._sources)]

    def list_source_ids(self) -> List[int]:
        with self._lock:
            return sorted(self._sources)

    def source_by_id(self, source_id: int) -> Source:
        with self._lock:
            source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    def update_source(self, source_id: int, name: str, url: str) -> Source:
        """Rename or re-point a source; its id, creation time and entries are kept."""

        with self._lock:
            source = self._sources.get(source_id)
            if source is None:
                raise SourceNotFoundError(source_id)
            source.name = name
            source.url = url
            self._save()
        LOGGER.info("Updated source %d (%s) -> %s", source_id, name, url)
        return source

    def delete_source(self, source_id: int) -> int:
        """Remove a source and its entries. Returns the number of entries removed."""

        with self._lock:
            if self._sources.pop(source_id, None) is None:
                raise SourceNotFoundError(source_id)
            doomed = [key for key, entry in self._entries.items() if entry.source_id == source_id]
            for key in doomed:
                del self._entries[key]
            self._save()
        LOGGER.info("Deleted source %d and %d entries", source_id, len(doomed))
        return len(doomed)

    def entry_exists(self, source_id: int, title: str) -> bool:
        with self._lock:
            return any(
                entry.source_id == source_id and entry.title == title
                for entry in self._entries.values()
            )

    def insert_entry(self, source_id: int, candidate: ScrapedCandidate) -> int:
        with self._lock:
            if source_id not in self._sources:
                raise SourceNotFoundError(source_id)
            entry = StoredEntry(
                id=self._next_entry_id,
                source_id=source_id,
                title=candidate.title,
                cleaned_content=candidate.cleaned_content,
                share_date=candidate.share_date,
                criticality_score=candidate.criticality_score,
                category=candidate.category,
                created_at=datetime.now(timezone.utc),
            )
            self._entries[entry.id] = entry
            self._next_entry_id += 1
            self._save()
            return entry.id

    def update_analysis(self, entry_id: int, text: str) -> None:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                raise KeyError(f"entry {entry_id} not found")
            entry.ai_analysis = text
            self._save()

    def list_entries(self, source_id: Optional[int] = None) -> List[StoredEntry]:
        with self._lock:
            entries = [
                entry
                for entry in self._entries.values()
                if source_id is None or entry.source_id == source_id
            ]
        entries.sort(key=lambda entry: entry.created_at, reverse=True)
        return entries

    def _load(self) -> None:
        assert self.path is not None
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to load store from %s: %s", self.path, exc)
            return

        for item in raw.get("sources", []):
            try:
                source = Source(
                    id=int(item["id"]),
                    name=item["name"],
                    url=item["url"],
                    created_at=_parse_dt(item.get("created_at")) or datetime.now(timezone.utc),
                )
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.debug("Skipping invalid stored source: %s", exc)
                continue
            self._sources[source.id] = source

        for item in raw.get("entries", []):
            try:
                entry = StoredEntry(
                    id=int(item["id"]),
                    source_id=int(item["source_id"]),
                    title=item["title"],
                    cleaned_content=item.get("cleaned_content", ""),
                    share_date=_parse_dt(item.get("share_date")),
                    criticality_score=int(item.get("criticality_score", 0)),
                    category=item.get("category", "Uncategorized"),
                    created_at=_parse_dt(item.get("created_at")) or datetime.now(timezone.utc),
                    ai_analysis=item.get("ai_analysis"),
                )
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.debug("Skipping invalid stored entry: %s", exc)
                continue
            self._entries[entry.id] = entry

        self._next_source_id = max(self._sources, default=0) + 1
        self._next_entry_id = max(self._entries, default=0) + 1
        LOGGER.info(
            "Loaded %d sources and %d entries from %s",
            len(self._sources),
            len(self._entries),
            self.path,
        )

    def _save(self) -> None:
        # caller holds the lock
        if self.path is None:
            return
        payload = {
            "sources": [source.to_dict() for source in self._sources.values()],
            "entries": [entry.to_dict() for entry in self._entries.values()],
        }
        try:
            self.path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError:
            LOGGER.warning("Failed to persist store to %s", self.path, exc_info=True)


__all__ = ["JsonStore", "SourceNotFoundError", "Store"]
