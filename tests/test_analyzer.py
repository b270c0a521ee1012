import json

import httpx
import pytest

from threat_radar.analyzer import AnalysisWorker, AnalyzerClient, AnalyzerError
from threat_radar.config import AnalyzerConfig
from threat_radar.models import ScrapedCandidate
from threat_radar.store import JsonStore


def make_client(handler, base_url="http://analyzer.test"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return AnalyzerClient(AnalyzerConfig(base_url=base_url), client=client)


def test_disabled_without_base_url():
    analyzer = AnalyzerClient(AnalyzerConfig())

    assert analyzer.enabled is False
    assert analyzer.analyze("t", "c", "Data Breach", 85) is None


def test_analyze_posts_payload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"analysis": "Likely credential dump."})

    result = make_client(handler).analyze("Leak", "content", "Data Breach", 85)

    assert result == "Likely credential dump."
    assert seen["url"] == "http://analyzer.test/analyze"
    assert seen["body"] == {
        "title": "Leak",
        "content": "content",
        "category": "Data Breach",
        "criticality_score": 85,
    }


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="down"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"error": "model unavailable"}),
    ],
)
def test_analyze_failures_raise(response):
    with pytest.raises(AnalyzerError):
        make_client(lambda request: response).analyze("t", "c", "x", 1)


def test_worker_writes_analysis_back():
    store = JsonStore()
    source = store.add_source("alpha", "http://alpha.onion")
    entry_id = store.insert_entry(
        source.id,
        ScrapedCandidate("Leak", "content", None, 85, "Data Breach"),
    )
    analyzer = make_client(lambda request: httpx.Response(200, json={"analysis": "noted"}))
    worker = AnalysisWorker(analyzer, store)

    worker.start()
    try:
        assert worker.submit(entry_id, "Leak", "content", "Data Breach", 85)
        worker._queue.join()
    finally:
        worker.stop()

    assert store.list_entries()[0].ai_analysis == "noted"


def test_worker_processes_jobs_after_restart():
    store = JsonStore()
    source = store.add_source("alpha", "http://alpha.onion")
    entry_id = store.insert_entry(
        source.id,
        ScrapedCandidate("Leak", "content", None, 85, "Data Breach"),
    )
    analyzer = make_client(lambda request: httpx.Response(200, json={"analysis": "after restart"}))
    worker = AnalysisWorker(analyzer, store)

    worker.start()
    worker.stop()
    worker.start()
    try:
        assert worker.submit(entry_id, "Leak", "content", "Data Breach", 85)
        worker._queue.join()
    finally:
        worker.stop()

    assert store.list_entries()[0].ai_analysis == "after restart"


def test_owned_client_is_rebuilt_after_close(monkeypatch):
    built = []
    real_client = httpx.Client

    def fake_client(*args, **kwargs):
        client = real_client(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"analysis": "ok"}))
        )
        built.append(client)
        return client

    monkeypatch.setattr(httpx, "Client", fake_client)
    analyzer = AnalyzerClient(AnalyzerConfig(base_url="http://analyzer.test"))

    assert analyzer.analyze("t", "c", "x", 1) == "ok"
    analyzer.close()
    assert built[0].is_closed
    assert analyzer.analyze("t", "c", "x", 1) == "ok"

    assert len(built) == 2


def test_worker_logs_failures_and_leaves_entry_untouched(caplog):
    store = JsonStore()
    source = store.add_source("alpha", "http://alpha.onion")
    entry_id = store.insert_entry(
        source.id,
        ScrapedCandidate("Leak", "content", None, 85, "Data Breach"),
    )
    worker = AnalysisWorker(make_client(lambda request: httpx.Response(502)), store)

    job_submitted = worker.submit(entry_id, "Leak", "content", "Data Breach", 85)
    worker.process(worker._queue.get_nowait())

    assert job_submitted
    assert store.list_entries()[0].ai_analysis is None
    assert "Analysis failed" in caplog.text


def test_worker_drops_when_queue_full():
    worker = AnalysisWorker(
        make_client(lambda request: httpx.Response(200, json={"analysis": "x"})),
        JsonStore(),
        queue_size=1,
    )

    assert worker.submit(1, "a", "b", "c", 1) is True
    assert worker.submit(2, "a", "b", "c", 1) is False
