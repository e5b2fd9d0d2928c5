import asyncio
from datetime import date

import pytest

from concall.common.errors import EnrichmentError, PipelineTimeoutError, UpstreamFetchError
from concall.ingest.models import DateRange
from concall.ingest.service import ConcallIngestor
from tests._fakes import (
    _FakeEnrichment,
    _FakeFeed,
    _FakeRetriever,
    _InMemoryGuidanceStore,
    _Recorder,
    announcement,
)

_RANGE = DateRange(start=date(2025, 10, 18), end=date(2025, 10, 18))


def _ingestor(tmp_path, *, feed, store=None, retriever=None, enrichment=None, sleep=None):
    return ConcallIngestor(
        feed=feed,
        retriever=retriever or _FakeRetriever(),
        enrichment=enrichment or _FakeEnrichment(),
        store=store if store is not None else _InMemoryGuidanceStore(),
        dest_dir=tmp_path / "work",
        inter_item_delay_s=2.0,
        sleep=sleep or _Recorder(),
    )


def test_empty_feed_reports_empty(tmp_path):
    store = _InMemoryGuidanceStore()
    res = asyncio.run(_ingestor(tmp_path, feed=_FakeFeed([]), store=store).run(_RANGE))
    assert res.status == "empty"
    assert res.fetched == 0
    assert store.lookups == []


def test_known_issuer_is_deduped_before_processing(tmp_path):
    store = _InMemoryGuidanceStore(names={"Old Co"})
    feed = _FakeFeed([announcement("Old Co", attachment="old.pdf"), announcement("New Co", attachment="new.pdf")])
    enrichment = _FakeEnrichment()

    res = asyncio.run(_ingestor(tmp_path, feed=feed, store=store, enrichment=enrichment).run(_RANGE))

    assert res.fetched == 2
    assert res.after_dedup == 1
    assert [p.name for p in enrichment.seen] == ["New_Co_2025-10-18.pdf"]


def test_all_known_reports_noop_without_touching_disk(tmp_path):
    store = _InMemoryGuidanceStore(names={"Old Co"})
    res = asyncio.run(_ingestor(tmp_path, feed=_FakeFeed([announcement("Old Co", attachment="a.pdf")]), store=store).run(_RANGE))
    assert res.status == "noop"
    assert not (tmp_path / "work").exists()
    assert store.insert_calls == 0


def test_survivor_without_attachment_is_skipped_and_nothing_written(tmp_path):
    store = _InMemoryGuidanceStore()
    enrichment = _FakeEnrichment()
    res = asyncio.run(
        _ingestor(tmp_path, feed=_FakeFeed([announcement("No Pdf Ltd")]), store=store, enrichment=enrichment).run(_RANGE)
    )
    assert res.status == "processed"
    assert res.skipped == 1
    assert res.enriched == 0
    assert enrichment.seen == []
    assert store.rows == []
    assert store.insert_calls == 0


def test_guidance_is_persisted_with_issuer_and_date(tmp_path):
    store = _InMemoryGuidanceStore()
    feed = _FakeFeed([announcement("Acme Ltd", attachment="acme.pdf", news_dt="2025-10-18T19:42:10.36")])
    res = asyncio.run(_ingestor(tmp_path, feed=feed, store=store).run(_RANGE))

    assert res.status == "processed"
    assert res.enriched == 1
    assert len(store.rows) == 1
    rec = store.rows[0]
    assert (rec.issuer_name, rec.disclosure_date, rec.guidance_text) == ("Acme Ltd", "2025-10-18", "Revenue growth of 12-15%")
    d = rec.to_dict()
    assert set(d) == {"id", "name", "date", "guidance", "created_at"}


def test_one_bad_item_does_not_stop_the_batch(tmp_path):
    store = _InMemoryGuidanceStore()
    feed = _FakeFeed(
        [
            announcement("Empty Pdf Ltd", attachment="empty.pdf"),
            announcement("Missing Ltd", attachment="missing.pdf"),
            announcement("Broken Ai Ltd", attachment="broken.pdf"),
            announcement("Good Ltd", attachment="good.pdf"),
        ]
    )
    retriever = _FakeRetriever(per_ref={"empty.pdf": b""}, fail=["missing.pdf"])
    enrichment = _FakeEnrichment({"Broken_Ai": EnrichmentError("gemini.generate failed with non-retriable error: 400")})
    sleep = _Recorder()

    res = asyncio.run(
        _ingestor(tmp_path, feed=feed, store=store, retriever=retriever, enrichment=enrichment, sleep=sleep).run(_RANGE)
    )

    assert res.status == "processed"
    assert res.errored == 3
    assert res.enriched == 1
    assert [r.issuer_name for r in store.rows] == ["Good Ltd"]
    # Fixed pause after every item, failures included.
    assert sleep.delays == [2.0, 2.0, 2.0, 2.0]
    # No scratch files left behind on any path.
    assert list((tmp_path / "work").iterdir()) == []


def test_na_guidance_is_never_stored(tmp_path):
    store = _InMemoryGuidanceStore()
    feed = _FakeFeed([announcement("Quiet Ltd", attachment="q.pdf"), announcement("Loud Ltd", attachment="l.pdf")])
    enrichment = _FakeEnrichment({"Quiet_Ltd": "NA"})

    res = asyncio.run(_ingestor(tmp_path, feed=feed, store=store, enrichment=enrichment).run(_RANGE))

    assert res.skipped == 1
    assert [r.issuer_name for r in store.rows] == ["Loud Ltd"]
    assert all(r.guidance_text != "NA" for r in store.rows)


def test_file_exists_during_enrichment_and_is_removed_after(tmp_path):
    enrichment = _FakeEnrichment()
    feed = _FakeFeed([announcement("Acme Ltd", attachment="acme.pdf")])
    asyncio.run(_ingestor(tmp_path, feed=feed, enrichment=enrichment).run(_RANGE))
    assert enrichment.existed_during_call == [True]
    assert not enrichment.seen[0].exists()


def test_persist_failure_reports_unsaved_count(tmp_path):
    store = _InMemoryGuidanceStore(fail_insert=True)
    feed = _FakeFeed([announcement("A Ltd", attachment="a.pdf"), announcement("B Ltd", attachment="b.pdf")])

    res = asyncio.run(_ingestor(tmp_path, feed=feed, store=store).run(_RANGE))

    assert res.status == "persist_failed"
    assert res.unsaved == 2
    assert "connection refused" in (res.error or "")


def test_feed_failure_aborts_the_invocation(tmp_path):
    feed = _FakeFeed([], exc=UpstreamFetchError("announcement feed returned status 503"))
    with pytest.raises(UpstreamFetchError):
        asyncio.run(_ingestor(tmp_path, feed=feed).run(_RANGE))


def test_deadline_turns_into_timeout_error(tmp_path):
    feed = _FakeFeed([announcement("Slow Ltd", attachment="s.pdf")])
    ing = ConcallIngestor(
        feed=feed,
        retriever=_FakeRetriever(),
        enrichment=_FakeEnrichment(),
        store=_InMemoryGuidanceStore(),
        dest_dir=tmp_path / "work",
        inter_item_delay_s=30.0,
    )

    with pytest.raises(PipelineTimeoutError) as ei:
        asyncio.run(ing.run_with_deadline(_RANGE, deadline_s=0.05))
    assert ei.value.deadline_s == pytest.approx(0.05)
    assert list((tmp_path / "work").iterdir()) == []


def test_same_new_issuer_twice_in_one_batch_is_stored_once(tmp_path):
    store = _InMemoryGuidanceStore()
    feed = _FakeFeed([announcement("Acme Ltd", attachment="a1.pdf"), announcement("Acme Ltd", attachment="a2.pdf")])
    enrichment = _FakeEnrichment()
    sleep = _Recorder()

    res = asyncio.run(_ingestor(tmp_path, feed=feed, store=store, enrichment=enrichment, sleep=sleep).run(_RANGE))

    assert res.status == "processed"
    assert res.after_dedup == 2
    assert (res.enriched, res.skipped, res.errored) == (1, 1, 0)
    assert [r.issuer_name for r in store.rows] == ["Acme Ltd"]
    assert len(enrichment.seen) == 1
    assert sleep.delays == [2.0, 2.0]
