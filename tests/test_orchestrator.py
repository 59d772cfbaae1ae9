"""Tests for the crawl orchestrator"""

import asyncio

import pytest

from conftest import make_raw
from movie_aggregator.models.crawler import CrawlerConfigError, CrawlPhase
from movie_aggregator.services.orchestrator import checkpoint_key
from movie_aggregator.sources.base import SourceFetchError

HOST = "https://fake.example"


async def _seed(orchestrator, *slugs):
    """Store current versions so the next fetch of these slugs is a skip"""
    for slug in slugs:
        await orchestrator.merge_engine.merge(make_raw(slug))


class TestFullPass:
    """One pass over the listing"""

    def test_new_and_unchanged_items(self, make_orchestrator, store):
        adapter, orchestrator, batcher = make_orchestrator()
        adapter.pages[1] = ["movie-a", "movie-b", "movie-c"]
        for slug in adapter.pages[1]:
            adapter.details[slug] = make_raw(slug)
        # The unchanged item finishes last
        adapter.delays["movie-c"] = 0.05

        async def run():
            await _seed(orchestrator, "movie-c")
            return await orchestrator.trigger()

        status = asyncio.run(run())

        assert status.phase == CrawlPhase.COMPLETED
        assert status.processed_items == 2
        assert status.skipped_items == 1
        assert status.failed_items == 0
        assert status.continuous_skips == 1
        assert status.is_running is False
        assert status.end_time is not None
        assert len(store.collections["movies"]) == 3
        assert [sorted(batch) for batch in batcher.sent] == [["movie-a", "movie-b"]]

    def test_circuit_breaker_suspends_pass(self, make_orchestrator, cache):
        adapter, orchestrator, _ = make_orchestrator(total_pages=10, max_continuous_skips=5)
        adapter.pages[1] = ["new-1", "new-2"]
        adapter.pages[2] = ["new-3", "new-4"]
        adapter.pages[3] = [f"old-{i}" for i in range(8)]
        for page in (1, 2, 3):
            for slug in adapter.pages[page]:
                adapter.details[slug] = make_raw(slug)

        async def run():
            await _seed(orchestrator, *adapter.pages[3])
            status = await orchestrator.trigger()
            marker = await orchestrator.auto_stop.get()
            checkpoint = await cache.get(checkpoint_key(HOST))
            return status, marker, checkpoint

        status, marker, checkpoint = asyncio.run(run())

        assert status.phase == CrawlPhase.SUSPENDED
        assert adapter.listed_pages == [1, 2, 3]
        assert [s for s in adapter.detail_calls if s.startswith("old-")] == [f"old-{i}" for i in range(5)]
        assert status.processed_items == 4
        assert status.skipped_items == 5
        assert status.continuous_skips == 5
        assert marker is not None
        # Interrupted page is not checkpointed
        assert checkpoint == 2

    def test_resumes_after_checkpoint(self, make_orchestrator, cache):
        adapter, orchestrator, _ = make_orchestrator(total_pages=3)
        adapter.pages = {1: ["movie-a"], 2: ["movie-b"], 3: ["movie-c"]}
        for slug in ("movie-a", "movie-b", "movie-c"):
            adapter.details[slug] = make_raw(slug)

        async def run():
            await cache.set(checkpoint_key(HOST), 2)
            status = await orchestrator.trigger()
            return status, await cache.get(checkpoint_key(HOST))

        status, checkpoint = asyncio.run(run())

        assert status.phase == CrawlPhase.COMPLETED
        assert adapter.listed_pages == [1, 3]
        assert adapter.detail_calls == ["movie-c"]
        assert checkpoint == 3

    def test_no_slug_counts_as_skip(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator()
        adapter.pages[1] = [None]

        status = asyncio.run(orchestrator.trigger())

        assert status.skipped_items == 1
        assert adapter.detail_calls == []

    def test_stop_ends_pass_without_retry(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator(total_pages=3)
        adapter.pages = {1: ["slow"], 2: ["movie-b"], 3: ["movie-c"]}
        adapter.details["slow"] = make_raw("slow")
        adapter.delays["slow"] = 0.05

        async def run():
            task = asyncio.create_task(orchestrator.trigger())
            await asyncio.sleep(0.01)
            assert orchestrator.is_running
            orchestrator.stop()
            return await task

        status = asyncio.run(run())

        assert status.phase == CrawlPhase.STOPPED
        assert adapter.listed_pages == [1]
        # In-flight item still completes
        assert status.processed_items == 1


class TestFailures:
    """Failure ledger and retry pass"""

    def test_failed_movie_retried_at_end_of_pass(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator()
        adapter.pages[1] = ["flaky"]
        adapter.details["flaky"] = [SourceFetchError("fake://flaky", "Upstream returned 503", 503), make_raw("flaky")]

        async def run():
            status = await orchestrator.trigger()
            return status, await orchestrator.movie_ledger.load()

        status, ledger = asyncio.run(run())

        assert status.phase == CrawlPhase.COMPLETED
        assert status.failed_items == 1
        assert status.processed_items == 1
        assert adapter.detail_calls == ["flaky", "flaky"]
        assert ledger == {}

    def test_permanent_failure_stays_in_ledger(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator()
        adapter.pages[1] = ["gone"]

        async def run():
            await orchestrator.trigger()
            return await orchestrator.movie_ledger.get("gone")

        record = asyncio.run(run())

        assert record is not None
        assert record.retry_count == 1
        assert "Not found" in record.error

    def test_exhausted_entries_are_not_retried(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator(max_retries=1)
        adapter.pages[1] = []

        async def run():
            await orchestrator.movie_ledger.record_retry_failure("gone", "Not found")
            await orchestrator.trigger()
            return await orchestrator.movie_ledger.get("gone")

        record = asyncio.run(run())

        assert adapter.detail_calls == []
        assert record.retry_count == 1

    def test_failed_page_retried(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator(total_pages=2)
        adapter.pages = {1: ["movie-a"], 2: ["movie-b"]}
        adapter.details["movie-a"] = make_raw("movie-a")
        adapter.details["movie-b"] = make_raw("movie-b")
        adapter.page_errors[2] = SourceFetchError("fake://page/2", "Timed out")

        async def run():
            status = await orchestrator.trigger()
            return status, await orchestrator.page_ledger.load()

        status, pages = asyncio.run(run())

        assert adapter.listed_pages == [1, 2, 2]
        assert status.processed_items == 2
        assert pages == {}

    def test_retry_pass_ignores_circuit_breaker(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator(max_continuous_skips=1)
        adapter.pages[1] = []
        adapter.details["old"] = make_raw("old")

        async def run():
            await _seed(orchestrator, "old")
            await orchestrator.movie_ledger.record_failure("old", "Timed out")
            status = await orchestrator.trigger()
            return status, await orchestrator.auto_stop.get()

        status, marker = asyncio.run(run())

        assert status.phase == CrawlPhase.COMPLETED
        assert status.skipped_items == 1
        assert marker is None


class TestControl:
    """Enable gate, cooldown and single-slug triggers"""

    def test_disabled_by_kill_switch(self, make_orchestrator, monkeypatch):
        monkeypatch.setenv("DISABLE_CRAWL", "true")
        adapter, orchestrator, _ = make_orchestrator()

        status = asyncio.run(orchestrator.trigger())

        assert orchestrator.is_enabled() == (False, "DISABLE_CRAWL is set")
        assert status.phase == CrawlPhase.IDLE
        assert adapter.listed_pages == []

    def test_disabled_by_exclusion_and_source_flag(self, make_orchestrator, monkeypatch):
        monkeypatch.setenv("EXCLUDE_MOVIE_SRC", "other, FAKE")
        _, excluded, _ = make_orchestrator()
        assert excluded.is_enabled()[0] is False

        monkeypatch.setenv("EXCLUDE_MOVIE_SRC", "")
        monkeypatch.setenv("DISABLE_FAKE_CRAWL", "true")
        _, flagged, _ = make_orchestrator()
        assert flagged.is_enabled()[0] is False

    def test_disabled_by_config_and_host(self, make_orchestrator):
        _, disabled, _ = make_orchestrator(enabled=False)
        assert disabled.is_enabled() == (False, "disabled in crawler settings")

        _, no_host, _ = make_orchestrator(host="false")
        assert no_host.is_enabled() == (False, "source host not configured")

        _, enabled, _ = make_orchestrator()
        assert enabled.is_enabled() == (True, "")

    def test_cooldown_refuses_trigger(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator()

        async def run():
            await orchestrator.auto_stop.mark()
            return await orchestrator.trigger()

        status = asyncio.run(run())

        assert status.phase == CrawlPhase.IDLE
        assert adapter.listed_pages == []

    def test_resume_clears_marker(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator()
        adapter.pages[1] = []

        async def run():
            await orchestrator.auto_stop.mark()
            status = await orchestrator.resume()
            return status, await orchestrator.auto_stop.get()

        status, marker = asyncio.run(run())

        assert status.phase == CrawlPhase.COMPLETED
        assert adapter.listed_pages == [1]
        assert marker is None

    def test_stop_reports_idle_but_refuses_trigger_until_drained(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator(total_pages=2)
        adapter.pages = {1: ["slow"], 2: ["movie-b"]}
        adapter.details["slow"] = make_raw("slow")
        adapter.delays["slow"] = 0.05

        async def run():
            task = asyncio.create_task(orchestrator.trigger())
            await asyncio.sleep(0.01)
            orchestrator.stop()
            reported = orchestrator.get_status().is_running
            await orchestrator.trigger()
            status = await task
            return reported, status

        reported, status = asyncio.run(run())

        assert reported is False
        # The refused trigger listed nothing of its own
        assert adapter.listed_pages == [1]
        assert adapter.detail_calls == ["slow"]
        assert status.phase == CrawlPhase.STOPPED
        assert orchestrator.is_running is False

    def test_running_crawler_refuses_trigger(self, make_orchestrator):
        adapter, orchestrator, _ = make_orchestrator()
        orchestrator.state.active = True

        asyncio.run(orchestrator.trigger())

        assert adapter.listed_pages == []

    def test_single_slug(self, make_orchestrator, store):
        adapter, orchestrator, batcher = make_orchestrator()
        adapter.details["movie-a"] = make_raw("movie-a")

        status = asyncio.run(orchestrator.trigger("movie-a"))

        assert status.phase == CrawlPhase.COMPLETED
        assert status.processed_items == 1
        assert adapter.listed_pages == []
        assert adapter.detail_calls == ["movie-a"]
        assert batcher.sent == [["movie-a"]]

    def test_single_slug_failure_recorded(self, make_orchestrator):
        _, orchestrator, _ = make_orchestrator()

        async def run():
            status = await orchestrator.trigger("missing")
            return status, await orchestrator.movie_ledger.get("missing")

        status, record = asyncio.run(run())

        assert status.phase == CrawlPhase.FAILED
        assert status.failed_items == 1
        assert record is not None

    def test_stop_when_idle_is_noop(self, make_orchestrator):
        _, orchestrator, _ = make_orchestrator()
        orchestrator.stop()
        assert orchestrator.state.stop_requested is False

    @pytest.mark.parametrize("changes", [
        {"host": ""},
        {"cron_schedule": " "},
        {"max_concurrent_requests": 0},
    ])
    def test_invalid_config_rejected(self, make_orchestrator, changes):
        with pytest.raises(CrawlerConfigError):
            make_orchestrator(**changes)
