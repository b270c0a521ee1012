"""Optional annotation of stored entries by an external analysis service."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import AnalyzerConfig
from .store import Store

LOGGER = logging.getLogger(__name__)


class AnalyzerError(Exception):
    """Raised when the analysis service fails or answers with an error."""


class AnalyzerClient:
    """Thin client for ``POST {base_url}/analyze``. Disabled without a base URL."""

    def __init__(self, config: AnalyzerConfig, client: Optional[httpx.Client] = None) -> None:
        self.config = config
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
        if self._owns_client:
            self._client = None

    def _http(self) -> Optional[httpx.Client]:
        if self._client is None and self._owns_client and self.enabled:
            self._client = httpx.Client(timeout=self.config.timeout_seconds)
        return self._client

    def analyze(self, title: str, content: str, category: str, criticality_score: int) -> Optional[str]:
        """Return the analysis text, or ``None`` when disabled or empty."""

        client = self._http() if self.enabled else None
        if client is None:
            return None
        try:
            response = client.post(
                f"{self.config.base_url}/analyze",
                json={
                    "title": title,
                    "content": content,
                    "category": category,
                    "criticality_score": criticality_score,
                },
            )
        except httpx.HTTPError as exc:
            raise AnalyzerError(f"analysis service request failed: {exc}") from exc

        if response.status_code != 200:
            raise AnalyzerError(
                f"analysis service returned status {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise AnalyzerError("failed to decode analysis response") from exc

        if not isinstance(data, dict):
            raise AnalyzerError("analysis response is not an object")
        if data.get("error"):
            raise AnalyzerError(f"analysis service error: {data['error']}")
        analysis = data.get("analysis")
        return analysis or None


@dataclass
class _AnalysisJob:
    entry_id: int
    title: str
    content: str
    category: str
    criticality_score: int


class AnalysisWorker:
    """Run analyses on a dedicated thread and write results back to the store.

    :meth:`submit` never blocks; when the queue is full the job is dropped
    with a warning. Failures are logged and never reach the scrape loop.
    """

    def __init__(self, analyzer: AnalyzerClient, store: Store, queue_size: int = 100) -> None:
        self.analyzer = analyzer
        self.store = store
        self._queue: "queue.Queue[_AnalysisJob | None]" = queue.Queue(maxsize=queue_size)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def enabled(self) -> bool:
        return self.analyzer.enabled

    def start(self) -> None:
        if not self.enabled or (self._thread is not None and self._thread.is_alive()):
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="analysis-worker", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            try:
                self._queue.put_nowait(None)
            except queue.Full:
                LOGGER.debug("Analysis queue full while stopping; worker exits after its current job")
            self._thread.join(timeout=5)

    def submit(
        self,
        entry_id: int,
        title: str,
        content: str,
        category: str,
        criticality_score: int,
    ) -> bool:
        if not self.enabled:
            return False
        job = _AnalysisJob(entry_id, title, content, category, criticality_score)
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            LOGGER.warning("Analysis queue full, dropping request for entry %d", entry_id)
            return False
        return True

    def process(self, job: _AnalysisJob) -> None:
        try:
            analysis = self.analyzer.analyze(job.title, job.content, job.category, job.criticality_score)
        except AnalyzerError as exc:
            LOGGER.warning("Analysis failed for entry %d: %s (scraping continues)", job.entry_id, exc)
            return
        if not analysis:
            return
        try:
            self.store.update_analysis(job.entry_id, analysis)
        except Exception:
            LOGGER.exception("Error storing analysis for entry %d", job.entry_id)
            return
        LOGGER.info("Analysis added for entry %d", job.entry_id)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            job = self._queue.get()
            try:
                if job is None:
                    break
                self.process(job)
            except Exception:  # pragma: no cover - keeps the worker alive
                LOGGER.exception("Unexpected error in analysis worker")
            finally:
                self._queue.task_done()


__all__ = ["AnalysisWorker", "AnalyzerClient", "AnalyzerError"]
