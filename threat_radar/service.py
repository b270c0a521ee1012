"""Long-running scraper service and its on-demand trigger pool."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Optional

from .analyzer import AnalysisWorker, AnalyzerClient
from .config import AppConfig
from .models import NetworkStatus, ReadinessStatus, ScrapeState, ScrapeStatus
from .network_status import NetworkStatusProbe
from .orchestrator import ScrapeOrchestrator
from .state import ScrapeStateTracker
from .store import JsonStore, Store
from .transport import ProxyTransport

LOGGER = logging.getLogger(__name__)


class ScrapeAlreadyRunning(Exception):
    """Raised when an on-demand scrape is requested for a source that is running."""

    def __init__(self, source_id: int) -> None:
        self.source_id = source_id
        super().__init__(f"a scrape is already in progress for source {source_id}")


@dataclass(frozen=True)
class _Trigger:
    source_id: Optional[int] = None

    @property
    def is_catalog(self) -> bool:
        return self.source_id is None


class ScraperService:
    """Own every collaborator of a scraper process and expose its controls."""

    def __init__(
        self,
        config: AppConfig,
        store: Optional[Store] = None,
        transport: Optional[ProxyTransport] = None,
        analyzer: Optional[AnalyzerClient] = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else JsonStore(config.store_path)
        self.transport = transport or ProxyTransport(config.proxy)
        self.network = NetworkStatusProbe(self.transport)
        self.tracker = ScrapeStateTracker(config.scraper.history_limit)
        self.analyzer = analyzer or AnalyzerClient(config.analyzer)
        self.analysis = AnalysisWorker(self.analyzer, self.store, config.analyzer.queue_size)
        self.orchestrator = ScrapeOrchestrator(
            config.scraper,
            self.store,
            self.transport,
            self.tracker,
            analysis=self.analysis,
        )
        self._stop_event = threading.Event()
        self._triggers: "queue.Queue[_Trigger | None]" = queue.Queue(
            maxsize=config.scraper.trigger_queue_size
        )
        self._workers: List[threading.Thread] = []
        self._loop_thread: Optional[threading.Thread] = None

    def start_workers(self) -> None:
        """Start the analysis worker and the pool that serves on-demand triggers."""

        if self._workers:
            return
        self._stop_event.clear()
        self.analysis.start()
        for index in range(self.config.scraper.trigger_workers):
            worker = threading.Thread(
                target=self._serve_triggers,
                name=f"scrape-trigger-{index}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)
        LOGGER.info(
            "Started %d trigger workers (analysis %s)",
            len(self._workers),
            "enabled" if self.analysis.enabled else "disabled",
        )

    def start_loop(self) -> None:
        """Run the periodic scrape cycle in the calling thread until :meth:`stop`."""

        self.start_workers()
        self.orchestrator.run_forever(self._stop_event)

    def start(self) -> None:
        """Run the periodic scrape cycle on a background thread."""

        LOGGER.info("Starting scraper service")
        self.start_workers()
        if self._loop_thread is None or not self._loop_thread.is_alive():
            self._loop_thread = threading.Thread(
                target=self.orchestrator.run_forever,
                args=(self._stop_event,),
                name="scrape-loop",
                daemon=True,
            )
            self._loop_thread.start()

    def stop(self) -> None:
        LOGGER.info("Stopping scraper service")
        self._stop_event.set()
        for _ in self._workers:
            try:
                self._triggers.put_nowait(None)
            except queue.Full:
                break
        for worker in self._workers:
            worker.join(timeout=5)
        self._workers.clear()
        if self._loop_thread is not None:
            self._loop_thread.join(timeout=5)
        self.analysis.stop()
        self.analyzer.close()
        self.transport.close()

    def trigger_all(self) -> bool:
        """Queue a catalogue-wide scrape. Returns False when the queue is full."""

        return self._enqueue(_Trigger())

    def trigger_source(self, source_id: int) -> bool:
        """Queue a scrape of one source. Returns False when the queue is full."""

        state = self.tracker.get(source_id)
        if state is not None and state.status is ScrapeStatus.RUNNING:
            raise ScrapeAlreadyRunning(source_id)
        return self._enqueue(_Trigger(source_id))

    def wait_for_triggers(self) -> None:
        """Block until every queued trigger has been processed."""

        self._triggers.join()

    def _enqueue(self, trigger: _Trigger) -> bool:
        try:
            self._triggers.put_nowait(trigger)
        except queue.Full:
            LOGGER.warning("Trigger queue full, rejecting %s", _describe(trigger))
            return False
        LOGGER.info("Queued %s", _describe(trigger))
        return True

    def _serve_triggers(self) -> None:
        while not self._stop_event.is_set():
            trigger = self._triggers.get()
            try:
                if trigger is None:
                    break
                self._run_trigger(trigger)
            except Exception:  # pragma: no cover - keeps the worker alive
                LOGGER.exception("Triggered scrape crashed")
            finally:
                self._triggers.task_done()

    def _run_trigger(self, trigger: _Trigger) -> None:
        LOGGER.info("Starting %s", _describe(trigger))
        if trigger.is_catalog:
            self.orchestrator.scrape_all(self._stop_event)
        else:
            assert trigger.source_id is not None
            self.orchestrator.scrape_source(trigger.source_id)
        LOGGER.info("Finished %s", _describe(trigger))

    def scrape_state(self, source_id: int) -> Optional[ScrapeState]:
        return self.tracker.get(source_id)

    def active_scrapes(self) -> List[ScrapeState]:
        return self.tracker.active()

    def recent_scrapes(self, limit: int = 20) -> List[ScrapeState]:
        return self.tracker.recent(limit)

    def check_readiness(self) -> ReadinessStatus:
        return self.transport.check_readiness()

    def wait_for_ready(self, max_attempts: int = 20, delay: float = 3.0) -> ReadinessStatus:
        return self.transport.wait_for_ready(max_attempts, delay)

    def check_status(self) -> NetworkStatus:
        return self.network.check_status()


def _describe(trigger: _Trigger) -> str:
    if trigger.is_catalog:
        return "manual scrape of all sources"
    return f"manual scrape of source {trigger.source_id}"


__all__ = ["ScrapeAlreadyRunning", "ScraperService"]
