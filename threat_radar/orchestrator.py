"""Scrape cycles: fetch every source through the proxy, extract, dedupe, store."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlsplit

from .analyzer import AnalysisWorker
from .config import ScraperConfig
from .extraction import build_candidate
from .models import ScrapedCandidate, ScrapeState, ScrapeStatus, Source
from .state import ScrapeStateTracker
from .store import Store
from .transport import ProxyNotReadyError, ProxyTransport, TransportError, describe_error

LOGGER = logging.getLogger(__name__)

ContentPipeline = Callable[[str], Optional[ScrapedCandidate]]


class ScrapeError(Exception):
    """An expected reason for a scrape attempt to end as failed."""


class ScrapeOrchestrator:
    """Drive catalogue-wide and per-source scrape attempts.

    Every attempt that reaches the running state is finalized exactly once,
    as completed or failed, whatever goes wrong inside it.
    """

    def __init__(
        self,
        config: ScraperConfig,
        store: Store,
        transport: ProxyTransport,
        tracker: ScrapeStateTracker,
        analysis: Optional[AnalysisWorker] = None,
        pipeline: ContentPipeline = build_candidate,
    ) -> None:
        self.config = config
        self.store = store
        self.transport = transport
        self.tracker = tracker
        self.analysis = analysis
        self.pipeline = pipeline

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        """Wait for the proxy (best effort), then scrape everything on a fixed period."""

        stop_event = stop_event or threading.Event()
        LOGGER.info("Scraper loop starting")
        try:
            self.transport.wait_for_ready(
                self.config.startup_ready_attempts,
                self.config.startup_ready_delay_seconds,
            )
        except ProxyNotReadyError as exc:
            LOGGER.warning("Proxy did not become ready: %s", exc)
            LOGGER.warning("Continuing anyway; every scrape re-checks the proxy before fetching")
        else:
            LOGGER.info("Proxy is ready, starting initial scrape")

        while not stop_event.is_set():
            started = time.monotonic()
            try:
                self.scrape_all(stop_event)
            except Exception:  # pragma: no cover - resilience
                LOGGER.exception("Scrape cycle failed")
            elapsed = time.monotonic() - started
            stop_event.wait(max(0.0, self.config.scrape_interval_seconds - elapsed))
        LOGGER.info("Scraper loop stopped")

    def scrape_all(self, stop_event: Optional[threading.Event] = None) -> List[ScrapeState]:
        """Scrape every source one after another, pausing between them.

        All fetches share a single proxy circuit, so sources are never fetched
        in parallel.
        """

        try:
            source_ids = self.store.list_source_ids()
        except Exception:
            LOGGER.exception("Error fetching sources")
            return []

        LOGGER.info("Found %d sources to scrape", len(source_ids))
        if not source_ids:
            LOGGER.warning("No sources registered; add sources first")
            return []

        results: List[ScrapeState] = []
        for index, source_id in enumerate(source_ids, start=1):
            if stop_event is not None and stop_event.is_set():
                LOGGER.info("Stop requested, abandoning cycle after %d sources", len(results))
                break
            LOGGER.info("Scraping source %d/%d (ID: %d)", index, len(source_ids), source_id)
            results.append(self.scrape_source(source_id))
            if index < len(source_ids):
                self._pause(stop_event)

        LOGGER.info("Scrape cycle finished, processed %d sources", len(results))
        return results

    def _pause(self, stop_event: Optional[threading.Event]) -> None:
        if stop_event is not None:
            stop_event.wait(self.config.source_pause_seconds)
        else:
            time.sleep(self.config.source_pause_seconds)

    def scrape_source(self, source_id: int) -> ScrapeState:
        """Run one attempt for ``source_id`` and return its terminal state."""

        try:
            source = self.store.source_by_id(source_id)
        except Exception as exc:
            message = f"source lookup failed: {exc}"
            LOGGER.error("Failed to load source %d: %s", source_id, exc)
            return self.tracker.record_failure(source_id, "", message)

        self.tracker.start_scrape(source.id, source.name)
        LOGGER.info("Source found: ID=%d, Name=%s, URL=%s", source.id, source.name, source.url)

        try:
            found, inserted = self._attempt(source)
        except ScrapeError as exc:
            LOGGER.error("Scrape of source %d (%s) failed: %s", source.id, source.name, exc)
            return self._finish_failed(source, str(exc))
        except Exception as exc:
            LOGGER.exception("Unexpected error while scraping source %d", source.id)
            return self._finish_failed(source, f"unexpected error: {describe_error(exc)}")

        LOGGER.info(
            "Source %d processed: %d entries inserted, %d skipped",
            source.id,
            inserted,
            found - inserted,
        )
        state = self.tracker.complete_scrape(source.id, found, inserted)
        if state is None:
            state = self._detached_state(source, ScrapeStatus.COMPLETED, found, inserted, None)
        return state

    def _finish_failed(self, source: Source, message: str) -> ScrapeState:
        state = self.tracker.fail_scrape(source.id, message)
        if state is None:
            state = self._detached_state(source, ScrapeStatus.FAILED, 0, 0, message)
        return state

    @staticmethod
    def _detached_state(
        source: Source,
        status: ScrapeStatus,
        found: int,
        inserted: int,
        error: Optional[str],
    ) -> ScrapeState:
        # The tracker entry was already finalized by an overlapping attempt.
        now = datetime.now(timezone.utc)
        return ScrapeState(
            source_id=source.id,
            source_name=source.name,
            status=status,
            started_at=now,
            completed_at=now,
            entries_found=found,
            entries_inserted=inserted,
            error=error,
        )

    def _attempt(self, source: Source) -> Tuple[int, int]:
        url = (source.url or "").strip()
        if not url:
            raise ScrapeError("source URL is empty")
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ScrapeError(f"invalid URL format: must start with http:// or https://, got {url!r}")

        self._ensure_proxy_ready(source)

        LOGGER.info("Fetching %s via proxy", url)
        try:
            raw = self.transport.fetch_with_retry(
                url,
                self.config.fetch_attempts,
                self.config.fetch_retry_delay_seconds,
            )
        except TransportError as exc:
            raise ScrapeError(f"fetch failed: {exc}") from exc
        if not raw:
            raise ScrapeError("no content fetched from URL")
        LOGGER.info("Fetched %s (%d characters)", url, len(raw))

        candidate = self.pipeline(raw)
        if candidate is None:
            LOGGER.warning("No entries extracted from %s (source ID: %d)", url, source.id)
            return 0, 0
        return 1, self._store_candidate(source, candidate)

    def _ensure_proxy_ready(self, source: Source) -> None:
        readiness = self.transport.check_readiness()
        if readiness.is_ready:
            return
        LOGGER.warning("Proxy not ready for source %d: %s; waiting briefly", source.id, readiness.message)
        try:
            self.transport.wait_for_ready(
                self.config.source_ready_attempts,
                self.config.source_ready_delay_seconds,
            )
        except ProxyNotReadyError as exc:
            raise ScrapeError(f"proxy not ready: {exc}") from exc
        LOGGER.info("Proxy became ready, continuing scrape for source %d", source.id)

    def _store_candidate(self, source: Source, candidate: ScrapedCandidate) -> int:
        """Insert ``candidate`` unless an entry with the same title exists; return 1 if inserted."""

        try:
            exists = self.store.entry_exists(source.id, candidate.title)
        except Exception as exc:
            LOGGER.error("Failed to check entry existence for %r: %s", candidate.title, exc)
            return 0
        if exists:
            LOGGER.info("Entry already exists, skipping: %s", candidate.title)
            return 0

        try:
            entry_id = self.store.insert_entry(source.id, candidate)
        except Exception as exc:
            LOGGER.error("Failed to insert entry %r: %s", candidate.title, exc)
            return 0

        LOGGER.info(
            "New entry inserted - ID: %d, Title: %s, Category: %s, Criticality: %d",
            entry_id,
            candidate.title,
            candidate.category,
            candidate.criticality_score,
        )
        if self.analysis is not None and self.analysis.enabled:
            self.analysis.submit(
                entry_id,
                candidate.title,
                candidate.cleaned_content,
                candidate.category,
                candidate.criticality_score,
            )
        return 1


__all__ = ["ScrapeError", "ScrapeOrchestrator"]
