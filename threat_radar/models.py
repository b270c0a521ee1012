"""Core data models for the threat radar."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Source:
    """A registered site the crawler visits on every cycle."""

    id: int
    name: str
    url: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "created_at": _iso(self.created_at),
        }


@dataclass
class ScrapedCandidate:
    """Record extracted from one fetched page, not yet persisted."""

    title: str
    cleaned_content: str
    share_date: Optional[datetime]
    criticality_score: int
    category: str


@dataclass
class StoredEntry:
    """A persisted candidate together with its storage metadata."""

    id: int
    source_id: int
    title: str
    cleaned_content: str
    share_date: Optional[datetime]
    criticality_score: int
    category: str
    created_at: datetime
    ai_analysis: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "title": self.title,
            "cleaned_content": self.cleaned_content,
            "share_date": _iso(self.share_date),
            "criticality_score": self.criticality_score,
            "category": self.category,
            "ai_analysis": self.ai_analysis,
            "created_at": _iso(self.created_at),
        }


class ScrapeStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ScrapeState:
    """Progress of a single scrape attempt for one source."""

    source_id: int
    source_name: str
    status: ScrapeStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    entries_found: int = 0
    entries_inserted: int = 0
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not ScrapeStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "entries_found": self.entries_found,
            "entries_inserted": self.entries_inserted,
            "error": self.error,
        }


@dataclass
class ReadinessStatus:
    """Whether the proxy is reachable and actually routing traffic."""

    is_ready: bool
    bootstrap_percent: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_ready": self.is_ready,
            "bootstrap_percent": self.bootstrap_percent,
            "message": self.message,
        }


@dataclass
class NetworkStatus:
    """Connectivity through the proxy and the exit address it presents."""

    is_connected: bool
    exit_address: Optional[str]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "exit_address": self.exit_address,
            "message": self.message,
        }


__all__ = [
    "NetworkStatus",
    "ReadinessStatus",
    "ScrapeState",
    "ScrapeStatus",
    "ScrapedCandidate",
    "Source",
    "StoredEntry",
]
