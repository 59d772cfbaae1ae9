"""Pytest configuration and fixtures"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from movie_aggregator.db.base import DocumentStore, DuplicateKeyError, matches_filter, new_document_id, unique_key_field
from movie_aggregator.db.cache import MemoryCache
from movie_aggregator.models.crawler import CrawlerConfig
from movie_aggregator.models.movie import Episode, EpisodeServerData, ImdbRef, TmdbRef
from movie_aggregator.models.source import ListingItem, ListingPage, MovieCredits, RawMovieRecord
from movie_aggregator.services.orchestrator import CrawlOrchestrator
from movie_aggregator.services.revalidation import RevalidationBatcher
from movie_aggregator.sources.base import SourceAdapter, SourceFetchError
from movie_aggregator.utils.config import get_settings


@pytest.fixture(autouse=True)
def test_env(tmp_path, monkeypatch):
    """Set up test environment with temporary database and no external services"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("DB_MODE", "sqlite")
    monkeypatch.setenv("CACHE_MODE", "memory")
    monkeypatch.setenv("DISABLE_CRAWL", "false")
    monkeypatch.setenv("EXCLUDE_MOVIE_SRC", "")
    for name in ("REVALIDATE_WEBHOOK_URL", "REVALIDATE_API_KEY", "TMDB_API_KEY",
                 "DISABLE_FAKE_CRAWL", "DISABLE_OPHIM_CRAWL", "DISABLE_KKPHIM_CRAWL",
                 "DISABLE_NGUONC_CRAWL"):
        monkeypatch.delenv(name, raising=False)

    yield


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Retry passes run without the exponential-backoff sleep"""
    from movie_aggregator.services import failure_ledger

    monkeypatch.setattr(failure_ledger, "calculate_backoff", lambda retry_count: 0)


class MemoryDocumentStore(DocumentStore):
    """DocumentStore kept in dicts; never yields to the event loop"""

    def __init__(self):
        self.collections: Dict[str, List[dict]] = {}

    def _docs(self, collection):
        return self.collections.setdefault(collection, [])

    def _check_unique(self, collection, doc, ignore_id=None):
        field = unique_key_field(collection)
        for other in self._docs(collection):
            if other["id"] == ignore_id:
                continue
            if other["id"] == doc["id"] and ignore_id is None:
                raise DuplicateKeyError(collection, doc["id"])
            if doc.get(field) is not None and other.get(field) == doc.get(field):
                raise DuplicateKeyError(collection, doc.get(field))

    async def find_one(self, collection, filter):
        docs = await self.find(collection, filter, 1)
        return docs[0] if docs else None

    async def find(self, collection, filter=None, limit=None):
        docs = [dict(d) for d in self._docs(collection) if matches_filter(d, filter)]
        return docs[:limit] if limit else docs

    async def find_one_and_update(self, collection, filter, patch):
        for index, doc in enumerate(self._docs(collection)):
            if matches_filter(doc, filter):
                updated = {**doc, **patch, "id": doc["id"]}
                self._check_unique(collection, updated, ignore_id=doc["id"])
                self._docs(collection)[index] = updated
                return dict(updated)
        return None

    async def create(self, collection, doc):
        doc = dict(doc)
        doc.setdefault("id", new_document_id())
        self._check_unique(collection, doc)
        self._docs(collection).append(doc)
        return dict(doc)

    async def insert_many(self, collection, docs):
        return [await self.create(collection, doc) for doc in docs]

    async def count(self, collection, filter=None):
        return len(await self.find(collection, filter))


class FakeAdapter(SourceAdapter):
    """Serves canned listing pages and movie details"""

    name = "fake"

    def __init__(self, config: CrawlerConfig, total_pages: int = 1):
        super().__init__(config, timeout_seconds=1)
        self.total_pages = total_pages
        self.pages: Dict[int, List[Optional[str]]] = {}
        self.details: Dict[str, Any] = {}
        self.delays: Dict[str, float] = {}
        self.page_errors: Dict[int, Exception] = {}
        self.listed_pages: List[int] = []
        self.detail_calls: List[str] = []

    async def get_listing_page(self, page: int) -> ListingPage:
        self.listed_pages.append(page)
        if page in self.page_errors:
            raise self.page_errors.pop(page)
        items = [ListingItem(slug=slug) for slug in self.pages.get(page, [])]
        return ListingPage(items=items, total_pages=self.total_pages)

    async def get_movie_detail(self, slug: str) -> RawMovieRecord:
        self.detail_calls.append(slug)
        if slug in self.delays:
            await asyncio.sleep(self.delays[slug])
        detail = self.details.get(slug)
        if isinstance(detail, list):
            detail = detail.pop(0)
        if isinstance(detail, Exception):
            raise detail
        if detail is None:
            raise SourceFetchError(f"fake://{slug}", "Not found", 404)
        return detail

    def parse_listing(self, payload):
        raise NotImplementedError

    def parse_detail(self, payload):
        raise NotImplementedError


class RecordingBatcher(RevalidationBatcher):
    """Revalidation batcher that records batches instead of POSTing"""

    def __init__(self, status: int = 200, **kwargs):
        kwargs.setdefault("webhook_url", "http://frontend.test/revalidate")
        kwargs.setdefault("api_key", "secret")
        super().__init__(**kwargs)
        self.status = status
        self.sent: List[List[str]] = []

    async def _post(self, slugs):
        self.sent.append(list(slugs))
        return self.status


class FakeTmdb:
    """Stands in for TmdbClient with fixed credits, ids and images"""

    img_host = "https://image.tmdb.test/t/p/original"
    enabled = True

    def __init__(
        self,
        credits: Optional[MovieCredits] = None,
        error: Optional[Exception] = None,
        found: Optional[TmdbRef] = None,
        external: Optional[ImdbRef] = None,
        images: Optional[Dict[str, Optional[str]]] = None,
        lookup_error: Optional[Exception] = None,
    ):
        self.credits = credits
        self.error = error
        self.found = found
        self.external = external
        self.images = images or {}
        self.lookup_error = lookup_error
        self.calls = 0
        self.lookups: List[str] = []
        self.closed = False

    def image_url(self, path):
        return f"{self.img_host}{path}" if path else None

    async def get_credits(self, tmdb):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.credits

    async def find_by_imdb_id(self, imdb_id):
        self.lookups.append(f"find:{imdb_id}")
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.found

    async def get_external_ids(self, tmdb):
        self.lookups.append(f"external_ids:{tmdb.id}")
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.external

    async def get_images(self, tmdb):
        self.lookups.append(f"images:{tmdb.id}")
        return dict(self.images)

    async def close(self):
        self.closed = True


def make_raw(slug: str, modified: Optional[datetime] = None, origin_src: str = "fake", **fields) -> RawMovieRecord:
    """RawMovieRecord with one server of one episode"""
    fields.setdefault("name", slug.replace("-", " ").title())
    fields.setdefault("episodes", [Episode(
        origin_src=origin_src,
        server_name="Vietsub #1",
        server_data=[EpisodeServerData(name="Tập 01", slug="tap-01", link_m3u8=f"https://cdn.test/{slug}/1.m3u8")],
    )])
    return RawMovieRecord(
        origin_src=origin_src,
        slug=slug,
        modified=modified or datetime(2024, 5, 1, tzinfo=timezone.utc),
        **fields,
    )


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def crawler_config():
    return CrawlerConfig(
        name="fake",
        host="https://fake.example",
        cron_schedule="0 4 * * *",
        rate_limit_delay=0,
        max_concurrent_requests=1,
        max_continuous_skips=10,
        max_retries=3,
    )


@pytest.fixture
def make_orchestrator(store, cache, crawler_config):
    """Factory: (adapter, orchestrator, batcher) over the in-memory store and cache"""

    def factory(total_pages: int = 1, tmdb=None, **config_changes):
        config = crawler_config.model_copy(update=config_changes)
        adapter = FakeAdapter(config, total_pages=total_pages)
        batcher = RecordingBatcher()
        orchestrator = CrawlOrchestrator(
            adapter=adapter,
            store=store,
            cache=cache,
            config=config,
            tmdb=tmdb,
            revalidator=batcher,
            settings=get_settings(),
        )
        return adapter, orchestrator, batcher

    return factory
