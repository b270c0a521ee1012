import json
from datetime import datetime, timezone

import pytest

from threat_radar.models import ScrapedCandidate
from threat_radar.store import JsonStore, SourceNotFoundError


def candidate(title="Leak of customer records", **overrides):
    values = dict(
        title=title,
        cleaned_content="customer records leaked",
        share_date=datetime(2024, 1, 2, tzinfo=timezone.utc),
        criticality_score=85,
        category="Data Breach",
    )
    values.update(overrides)
    return ScrapedCandidate(**values)


def test_sources_get_sequential_ids():
    store = JsonStore()
    first = store.add_source("alpha", "http://alpha.onion")
    second = store.add_source("beta", "http://beta.onion")

    assert (first.id, second.id) == (1, 2)
    assert store.list_source_ids() == [1, 2]
    assert store.source_by_id(2).name == "beta"


def test_unknown_source_raises():
    store = JsonStore()

    with pytest.raises(SourceNotFoundError) as excinfo:
        store.source_by_id(42)
    assert excinfo.value.source_id == 42

    with pytest.raises(SourceNotFoundError):
        store.insert_entry(42, candidate())


def test_update_source_keeps_id_and_entries():
    store = JsonStore()
    source = store.add_source("alpha", "http://alpha.onion")
    store.insert_entry(source.id, candidate())

    updated = store.update_source(source.id, "alpha mirror", "http://mirror.onion")

    assert updated.id == source.id
    assert store.source_by_id(source.id).url == "http://mirror.onion"
    assert store.source_by_id(source.id).name == "alpha mirror"
    assert len(store.list_entries(source.id)) == 1

    with pytest.raises(SourceNotFoundError):
        store.update_source(99, "x", "http://x.onion")


def test_delete_source_removes_its_entries():
    store = JsonStore()
    doomed = store.add_source("alpha", "http://alpha.onion")
    kept = store.add_source("beta", "http://beta.onion")
    store.insert_entry(doomed.id, candidate("first"))
    store.insert_entry(doomed.id, candidate("second"))
    store.insert_entry(kept.id, candidate("third"))

    assert store.delete_source(doomed.id) == 2
    assert store.list_source_ids() == [kept.id]
    assert [e.title for e in store.list_entries()] == ["third"]
    assert not store.entry_exists(doomed.id, "first")

    with pytest.raises(SourceNotFoundError):
        store.delete_source(doomed.id)


def test_delete_source_is_persisted(tmp_path):
    path = tmp_path / "store.json"
    store = JsonStore(path)
    source = store.add_source("alpha", "http://alpha.onion")
    store.insert_entry(source.id, candidate())
    store.delete_source(source.id)

    reloaded = JsonStore(path)

    assert reloaded.list_sources() == []
    assert reloaded.list_entries() == []


def test_entry_exists_is_scoped_to_source():
    store = JsonStore()
    a = store.add_source("alpha", "http://alpha.onion")
    b = store.add_source("beta", "http://beta.onion")

    store.insert_entry(a.id, candidate())

    assert store.entry_exists(a.id, "Leak of customer records")
    assert not store.entry_exists(b.id, "Leak of customer records")
    assert not store.entry_exists(a.id, "Something else")


def test_update_analysis():
    store = JsonStore()
    source = store.add_source("alpha", "http://alpha.onion")
    entry_id = store.insert_entry(source.id, candidate())

    store.update_analysis(entry_id, "looks bad")

    assert store.list_entries()[0].ai_analysis == "looks bad"
    with pytest.raises(KeyError):
        store.update_analysis(999, "nope")


def test_list_entries_filters_by_source():
    store = JsonStore()
    a = store.add_source("alpha", "http://alpha.onion")
    b = store.add_source("beta", "http://beta.onion")
    store.insert_entry(a.id, candidate("one"))
    store.insert_entry(b.id, candidate("two"))

    assert [e.title for e in store.list_entries(b.id)] == ["two"]
    assert len(store.list_entries()) == 2


def test_store_round_trips_through_file(tmp_path):
    path = tmp_path / "nested" / "store.json"
    store = JsonStore(path)
    source = store.add_source("alpha", "http://alpha.onion")
    entry_id = store.insert_entry(source.id, candidate())
    store.update_analysis(entry_id, "summary")

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["sources"][0]["url"] == "http://alpha.onion"

    reloaded = JsonStore(path)
    entry = reloaded.list_entries()[0]
    assert reloaded.source_by_id(source.id).name == "alpha"
    assert entry.share_date == datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert entry.ai_analysis == "summary"
    assert reloaded.add_source("beta", "http://beta.onion").id == 2
    assert reloaded.insert_entry(source.id, candidate("next")) == entry_id + 1


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    store = JsonStore(path)

    assert store.list_sources() == []
