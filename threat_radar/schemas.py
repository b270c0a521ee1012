"""Pydantic schemas for request and response payloads."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import NetworkStatus, ReadinessStatus, ScrapeState, Source, StoredEntry


class SourceCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Display name of the source")
    url: str = Field(..., description="Page to fetch through the proxy (http or https)")

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name must not be blank")
        return cleaned

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return cleaned


class SourceUpdate(SourceCreate):
    """Replacement name and URL for an existing source."""


class SourceResponse(BaseModel):
    id: int
    name: str
    url: str
    created_at: datetime

    @classmethod
    def from_source(cls, source: Source) -> "SourceResponse":
        return cls(id=source.id, name=source.name, url=source.url, created_at=source.created_at)


class EntryResponse(BaseModel):
    id: int
    source_id: int
    title: str
    cleaned_content: str
    share_date: Optional[datetime]
    criticality_score: int
    category: str
    ai_analysis: Optional[str]
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: StoredEntry) -> "EntryResponse":
        return cls(**entry.to_dict())


class ScrapeStateResponse(BaseModel):
    source_id: int
    source_name: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    entries_found: int
    entries_inserted: int
    error: Optional[str] = None

    @classmethod
    def from_state(cls, state: ScrapeState) -> "ScrapeStateResponse":
        return cls(**state.to_dict())


class ScraperStatusResponse(BaseModel):
    active_scrapes: List[ScrapeStateResponse]
    recent_scrapes: List[ScrapeStateResponse]


class ReadinessResponse(BaseModel):
    is_ready: bool
    bootstrap_percent: int = Field(..., ge=0, le=100)
    message: str

    @classmethod
    def from_status(cls, status: ReadinessStatus) -> "ReadinessResponse":
        return cls(**status.to_dict())


class NetworkStatusResponse(BaseModel):
    is_connected: bool
    exit_address: Optional[str]
    message: str

    @classmethod
    def from_status(cls, status: NetworkStatus) -> "NetworkStatusResponse":
        return cls(**status.to_dict())


class TriggerResponse(BaseModel):
    status: str
    message: str
    source_id: Optional[int] = None


__all__ = [
    "EntryResponse",
    "NetworkStatusResponse",
    "ReadinessResponse",
    "ScrapeStateResponse",
    "ScraperStatusResponse",
    "SourceCreate",
    "SourceResponse",
    "SourceUpdate",
    "TriggerResponse",
]
