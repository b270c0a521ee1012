import threading

import pytest

from threat_radar.config import ScraperConfig
from threat_radar.models import ReadinessStatus, ScrapeStatus
from threat_radar.orchestrator import ScrapeOrchestrator
from threat_radar.state import ScrapeStateTracker
from threat_radar.store import JsonStore
from threat_radar.transport import ProxyNotReadyError, TransportError

PAGE = (
    "<html><head><title>Ransomware hits hospital network</title></head>"
    "<body><p>A ransomware infection spread through the hospital and a trojan "
    "backdoor was found on several hosts.</p></body></html>"
)


class FakeTransport:
    def __init__(self, pages=None, ready=True, error=None):
        self.pages = pages or {}
        self.ready = ready
        self.error = error
        self.fetched = []
        self.waits = []

    def check_readiness(self):
        if self.ready:
            return ReadinessStatus(True, 100, "ready")
        return ReadinessStatus(False, 0, "port closed")

    def wait_for_ready(self, max_attempts=20, initial_delay=3.0):
        self.waits.append((max_attempts, initial_delay))
        if not self.ready:
            raise ProxyNotReadyError("still bootstrapping")
        return ReadinessStatus(True, 100, "ready")

    def fetch_with_retry(self, url, max_attempts=3, base_delay=5.0):
        self.fetched.append((url, max_attempts, base_delay))
        if self.error is not None:
            raise self.error
        return self.pages.get(url, PAGE)


class RecordingAnalysis:
    enabled = True

    def __init__(self):
        self.jobs = []

    def submit(self, entry_id, title, content, category, criticality_score):
        self.jobs.append((entry_id, title, category, criticality_score))
        return True


class OneShotEvent(threading.Event):
    """Set itself the first time anything waits on it."""

    def wait(self, timeout=None):
        self.set()
        return True


def make_orchestrator(transport=None, store=None, **kwargs):
    store = store or JsonStore()
    tracker = ScrapeStateTracker()
    orchestrator = ScrapeOrchestrator(
        ScraperConfig(),
        store,
        transport or FakeTransport(),
        tracker,
        **kwargs,
    )
    return orchestrator, store, tracker


def assert_finalized(tracker, state):
    assert tracker.get(state.source_id) is None
    assert tracker.recent(1)[0] == state


def test_successful_scrape_inserts_entry():
    orchestrator, store, tracker = make_orchestrator()
    source = store.add_source("alpha", "http://alpha.onion/news")

    state = orchestrator.scrape_source(source.id)

    assert state.status is ScrapeStatus.COMPLETED
    assert (state.entries_found, state.entries_inserted) == (1, 1)
    assert_finalized(tracker, state)
    entry = store.list_entries()[0]
    assert entry.title == "Ransomware hits hospital network"
    assert entry.category == "Malware Analysis"
    assert orchestrator.transport.fetched == [("http://alpha.onion/news", 3, 5.0)]


def test_repeated_scrape_does_not_duplicate_entries():
    orchestrator, store, tracker = make_orchestrator()
    source = store.add_source("alpha", "http://alpha.onion/news")

    first = orchestrator.scrape_source(source.id)
    second = orchestrator.scrape_source(source.id)

    assert first.entries_inserted == 1
    assert second.status is ScrapeStatus.COMPLETED
    assert (second.entries_found, second.entries_inserted) == (1, 0)
    assert len(store.list_entries()) == 1


def test_unknown_source_fails_with_lookup_error():
    orchestrator, _, tracker = make_orchestrator()

    state = orchestrator.scrape_source(404)

    assert state.status is ScrapeStatus.FAILED
    assert state.error.startswith("source lookup failed")
    assert tracker.active() == []
    assert tracker.get(404) is None
    assert tracker.recent(1)[0].source_id == 404


@pytest.mark.parametrize(
    "url, message",
    [
        ("", "source URL is empty"),
        ("   ", "source URL is empty"),
        ("ftp://alpha.onion", "invalid URL format"),
        ("alpha.onion/page", "invalid URL format"),
    ],
)
def test_invalid_urls_fail_without_fetching(url, message):
    orchestrator, store, tracker = make_orchestrator()
    source = store.add_source("alpha", url)

    state = orchestrator.scrape_source(source.id)

    assert state.status is ScrapeStatus.FAILED
    assert message in state.error
    assert orchestrator.transport.fetched == []
    assert_finalized(tracker, state)


def test_fetch_failure_becomes_failed_state():
    transport = FakeTransport(error=TransportError("failed to fetch URL: ConnectError: refused"))
    orchestrator, store, tracker = make_orchestrator(transport)
    source = store.add_source("alpha", "http://alpha.onion")

    state = orchestrator.scrape_source(source.id)

    assert state.status is ScrapeStatus.FAILED
    assert state.error.startswith("fetch failed: failed to fetch URL")
    assert_finalized(tracker, state)


def test_proxy_not_ready_fails_before_fetch():
    transport = FakeTransport(ready=False)
    orchestrator, store, tracker = make_orchestrator(transport)
    source = store.add_source("alpha", "http://alpha.onion")

    state = orchestrator.scrape_source(source.id)

    assert state.status is ScrapeStatus.FAILED
    assert state.error.startswith("proxy not ready")
    assert transport.waits == [(5, 2.0)]
    assert transport.fetched == []


def test_short_page_completes_with_nothing_found():
    transport = FakeTransport(pages={"http://alpha.onion": "<p>short</p>"})
    orchestrator, store, tracker = make_orchestrator(transport)
    source = store.add_source("alpha", "http://alpha.onion")

    state = orchestrator.scrape_source(source.id)

    assert state.status is ScrapeStatus.COMPLETED
    assert (state.entries_found, state.entries_inserted) == (0, 0)
    assert store.list_entries() == []


def test_unexpected_pipeline_error_is_contained():
    def exploding_pipeline(raw):
        raise RuntimeError("boom")

    orchestrator, store, tracker = make_orchestrator(pipeline=exploding_pipeline)
    source = store.add_source("alpha", "http://alpha.onion")

    state = orchestrator.scrape_source(source.id)

    assert state.status is ScrapeStatus.FAILED
    assert state.error == "unexpected error: RuntimeError: boom"
    assert_finalized(tracker, state)


def test_insert_failure_is_skipped_not_fatal(monkeypatch):
    orchestrator, store, tracker = make_orchestrator()
    source = store.add_source("alpha", "http://alpha.onion")

    def broken_insert(source_id, candidate):
        raise OSError("disk full")

    monkeypatch.setattr(store, "insert_entry", broken_insert)
    state = orchestrator.scrape_source(source.id)

    assert state.status is ScrapeStatus.COMPLETED
    assert (state.entries_found, state.entries_inserted) == (1, 0)


def test_new_entries_are_submitted_for_analysis():
    analysis = RecordingAnalysis()
    orchestrator, store, _ = make_orchestrator(analysis=analysis)
    source = store.add_source("alpha", "http://alpha.onion")

    orchestrator.scrape_source(source.id)
    orchestrator.scrape_source(source.id)

    assert analysis.jobs == [(1, "Ransomware hits hospital network", "Malware Analysis", 70)]


def test_scrape_all_visits_sources_in_order(sleeps):
    orchestrator, store, tracker = make_orchestrator()
    store.add_source("alpha", "http://alpha.onion")
    store.add_source("beta", "ftp://beta.onion")
    store.add_source("gamma", "http://gamma.onion")

    states = orchestrator.scrape_all()

    assert [s.source_name for s in states] == ["alpha", "beta", "gamma"]
    assert [s.status for s in states] == [
        ScrapeStatus.COMPLETED,
        ScrapeStatus.FAILED,
        ScrapeStatus.COMPLETED,
    ]
    assert sleeps == [2.0, 2.0]
    assert [s.source_name for s in tracker.recent(3)] == ["gamma", "beta", "alpha"]


def test_scrape_all_with_no_sources():
    orchestrator, _, _ = make_orchestrator()

    assert orchestrator.scrape_all() == []


def test_scrape_all_honours_stop_request():
    orchestrator, store, _ = make_orchestrator()
    store.add_source("alpha", "http://alpha.onion")
    store.add_source("beta", "http://beta.onion")

    states = orchestrator.scrape_all(OneShotEvent())

    assert [s.source_name for s in states] == ["alpha"]


def test_run_forever_continues_when_proxy_never_ready():
    transport = FakeTransport(ready=False)
    orchestrator, store, _ = make_orchestrator(transport)

    orchestrator.run_forever(OneShotEvent())

    assert transport.waits == [(20, 3.0)]
