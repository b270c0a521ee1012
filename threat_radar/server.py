"""FastAPI application exposing scraper controls and proxy health."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from .schemas import (
    EntryResponse,
    NetworkStatusResponse,
    ReadinessResponse,
    ScrapeStateResponse,
    ScraperStatusResponse,
    SourceCreate,
    SourceResponse,
    SourceUpdate,
    TriggerResponse,
)
from .service import ScrapeAlreadyRunning, ScraperService
from .store import SourceNotFoundError

LOGGER = logging.getLogger(__name__)


def create_app(service: ScraperService) -> FastAPI:
    app = FastAPI(title="Threat Radar", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_service() -> ScraperService:
        return service

    @app.get("/healthz", summary="Health check")
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/tor/status", response_model=NetworkStatusResponse)
    def tor_status(svc: ScraperService = Depends(get_service)) -> NetworkStatusResponse:
        return NetworkStatusResponse.from_status(svc.check_status())

    @app.get("/tor/readiness", response_model=ReadinessResponse)
    def tor_readiness(svc: ScraperService = Depends(get_service)) -> ReadinessResponse:
        return ReadinessResponse.from_status(svc.check_readiness())

    @app.get("/scraper/status", response_model=ScraperStatusResponse)
    def scraper_status(
        limit: int = Query(20, ge=1, le=50),
        svc: ScraperService = Depends(get_service),
    ) -> ScraperStatusResponse:
        return ScraperStatusResponse(
            active_scrapes=[ScrapeStateResponse.from_state(s) for s in svc.active_scrapes()],
            recent_scrapes=[ScrapeStateResponse.from_state(s) for s in svc.recent_scrapes(limit)],
        )

    @app.get("/scraper/status/{source_id}", response_model=ScrapeStateResponse)
    def source_scrape_status(
        source_id: int,
        svc: ScraperService = Depends(get_service),
    ) -> ScrapeStateResponse:
        state = svc.scrape_state(source_id)
        if state is None:
            raise HTTPException(status_code=404, detail="No scrape found for this source")
        return ScrapeStateResponse.from_state(state)

    @app.post("/scraper/trigger", response_model=TriggerResponse, status_code=202)
    def trigger_all(svc: ScraperService = Depends(get_service)) -> TriggerResponse:
        readiness = svc.check_readiness()
        if not readiness.is_ready:
            raise HTTPException(status_code=503, detail=f"Proxy not ready: {readiness.message}")
        if not svc.trigger_all():
            raise HTTPException(status_code=429, detail="Too many queued scrapes, try again later")
        return TriggerResponse(
            status="started",
            message="Scraping started in background. Sources will be scraped shortly.",
        )

    @app.post("/scraper/trigger/{source_id}", response_model=TriggerResponse, status_code=202)
    def trigger_source(source_id: int, svc: ScraperService = Depends(get_service)) -> TriggerResponse:
        try:
            accepted = svc.trigger_source(source_id)
        except ScrapeAlreadyRunning as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if not accepted:
            raise HTTPException(status_code=429, detail="Too many queued scrapes, try again later")
        return TriggerResponse(
            status="started",
            message="Source is being scraped in the background.",
            source_id=source_id,
        )

    @app.get("/sources", response_model=list[SourceResponse])
    def list_sources(svc: ScraperService = Depends(get_service)) -> list[SourceResponse]:
        return [SourceResponse.from_source(source) for source in svc.store.list_sources()]

    @app.post("/sources", response_model=SourceResponse, status_code=201)
    def create_source(
        request: SourceCreate,
        svc: ScraperService = Depends(get_service),
    ) -> SourceResponse:
        source = svc.store.add_source(request.name, request.url)
        if not svc.trigger_source(source.id):
            LOGGER.info("Trigger queue full; source %d waits for the next cycle", source.id)
        return SourceResponse.from_source(source)

    @app.get("/sources/{source_id}", response_model=SourceResponse)
    def get_source(source_id: int, svc: ScraperService = Depends(get_service)) -> SourceResponse:
        try:
            source = svc.store.source_by_id(source_id)
        except SourceNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return SourceResponse.from_source(source)

    @app.put("/sources/{source_id}", response_model=SourceResponse)
    def update_source(
        source_id: int,
        request: SourceUpdate,
        svc: ScraperService = Depends(get_service),
    ) -> SourceResponse:
        try:
            source = svc.store.update_source(source_id, request.name, request.url)
        except SourceNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return SourceResponse.from_source(source)

    @app.delete("/sources/{source_id}", status_code=204)
    def delete_source(source_id: int, svc: ScraperService = Depends(get_service)) -> Response:
        try:
            svc.store.delete_source(source_id)
        except SourceNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return Response(status_code=204)

    @app.get("/entries", response_model=list[EntryResponse])
    def list_entries(
        source_id: Optional[int] = None,
        limit: int = Query(100, ge=1, le=1000),
        svc: ScraperService = Depends(get_service),
    ) -> list[EntryResponse]:
        entries = svc.store.list_entries(source_id)[:limit]
        return [EntryResponse.from_entry(entry) for entry in entries]

    return app


__all__ = ["create_app"]
