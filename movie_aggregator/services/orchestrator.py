"""Crawl orchestrator: one full pass over a source's paginated catalog"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import BaseModel

from movie_aggregator.db.base import DocumentStore
from movie_aggregator.db.cache import Cache
from movie_aggregator.models.crawler import (
    CrawlerConfig,
    CrawlPhase,
    CrawlStatus,
    MergeOutcome,
    MergeResult,
)
from movie_aggregator.models.source import ListingItem, ListingPage
from movie_aggregator.services.circuit_breaker import AutoStopGuard, CircuitBreaker
from movie_aggregator.services.dispatcher import RequestDispatcher
from movie_aggregator.services.entity_resolver import EntityResolver
from movie_aggregator.services.failure_ledger import (
    MOVIE_LEDGER,
    PAGE_LEDGER,
    FailureLedger,
    host_key,
    retry_pass,
)
from movie_aggregator.services.merge import MergeEngine
from movie_aggregator.services.revalidation import RevalidationBatcher
from movie_aggregator.services.settings_store import CrawlerSettingsStore
from movie_aggregator.services.tmdb import TmdbClient
from movie_aggregator.sources.base import SourceAdapter
from movie_aggregator.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)

CHECKPOINT_TTL_SECONDS = 24 * 60 * 60


class CrawlState(BaseModel):
    """Mutable state of the current pass, owned by one orchestrator"""
    status: CrawlStatus
    # True from pass start until the pass has drained, even after a stop
    active: bool = False
    stop_requested: bool = False
    suspended: bool = False
    in_retry_pass: bool = False


def checkpoint_key(host: str, day: Optional[str] = None) -> str:
    day = day or datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return f"crawled-pages:{host_key(host)}:{day}"


class CrawlOrchestrator:
    """Drives listing pages -> detail fetch -> merge for one source.

    Phases: idle -> running -> completed | suspended | stopped | failed.
    A pass resumes after today's checkpoint, stops early when the circuit
    breaker trips, then retries the failure ledgers and flushes revalidation.
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        store: DocumentStore,
        cache: Cache,
        config: Optional[CrawlerConfig] = None,
        tmdb: Optional[TmdbClient] = None,
        revalidator: Optional[RevalidationBatcher] = None,
        settings_store: Optional[CrawlerSettingsStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.adapter = adapter
        self.store = store
        self.cache = cache
        self.settings = settings or get_settings()
        self.settings_store = settings_store
        self.merge_engine = MergeEngine(store, EntityResolver(store, tmdb))
        self.revalidator = revalidator or RevalidationBatcher()
        self._config_loaded = settings_store is None
        self._apply_config(config or adapter.config)

        self.state = CrawlState(status=CrawlStatus(source=self.name))
        self.breaker = CircuitBreaker(self.config.max_continuous_skips)

    def _apply_config(self, config: CrawlerConfig) -> None:
        config.validate_required()
        self.config = config
        self.adapter.config = config
        self.dispatcher = RequestDispatcher(config.max_concurrent_requests, config.rate_limit_delay)
        self.movie_ledger = FailureLedger(self.cache, config.host, MOVIE_LEDGER)
        self.page_ledger = FailureLedger(self.cache, config.host, PAGE_LEDGER)
        self.auto_stop = AutoStopGuard(self.cache, config.name)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_running(self) -> bool:
        return self.state.active

    def get_status(self) -> CrawlStatus:
        return self.state.status.model_copy()

    # Enable gate

    def is_enabled(self) -> Tuple[bool, str]:
        """Kill switch, exclusion list, per-source flag, then adapter predicate"""
        if self.settings.disable_crawl:
            return False, "DISABLE_CRAWL is set"
        if self.name.lower() in self.settings.excluded_sources:
            return False, "listed in EXCLUDE_MOVIE_SRC"
        if os.getenv(f"DISABLE_{self.name.upper()}_CRAWL", "").strip().lower() == "true":
            return False, f"DISABLE_{self.name.upper()}_CRAWL is set"
        if not self.config.enabled:
            return False, "disabled in crawler settings"
        if not self.adapter.should_enable():
            return False, "source host not configured"
        return True, ""

    # Control surface

    async def trigger(self, slug: Optional[str] = None) -> CrawlStatus:
        """Start a full pass, or fetch-and-save a single slug"""
        if not self._config_loaded:
            await self.refresh_config()

        enabled, reason = self.is_enabled()
        if not enabled:
            logger.warning(f"[{self.name}] Cannot trigger crawl: {reason}")
            return self.get_status()

        remaining = await self.auto_stop.remaining_cooldown()
        if remaining is not None:
            hours = remaining.total_seconds() / 3600
            logger.info(
                f"[{self.name}] Auto-stopped after continuous skips; "
                f"{hours:.1f}h of cooldown remaining"
            )
            return self.get_status()

        if self.is_running:
            logger.warning(f"[{self.name}] Crawler is already running")
            return self.get_status()

        if slug:
            return await self.crawl_single(slug)
        return await self.crawl()

    def stop(self) -> None:
        """Stop iterating pages; in-flight requests finish.

        The reported status stops running at once, while new triggers stay
        refused until the current page has drained.
        """
        if not self.is_running:
            logger.info(f"[{self.name}] Crawler is not running")
            return
        self.state.stop_requested = True
        self.state.status.is_running = False
        logger.info(f"[{self.name}] Stop requested")

    async def resume(self) -> CrawlStatus:
        """Clear the auto-stop marker and start a full pass"""
        await self.auto_stop.clear()
        logger.info(f"[{self.name}] Auto-stop cleared, resuming")
        return await self.trigger()

    async def refresh_config(self) -> CrawlerConfig:
        if self.settings_store is not None:
            config = await self.settings_store.load(self.config)
            self._apply_config(config)
            self.breaker.max_continuous_skips = config.max_continuous_skips
        self._config_loaded = True
        return self.config

    async def update_crawler_config(self) -> CrawlerConfig:
        """Drop the cached settings and re-apply the persisted values"""
        if self.settings_store is not None:
            await self.settings_store.invalidate(self.name)
        config = await self.refresh_config()
        logger.info(
            f"[{self.name}] Config reloaded: cron={config.cron_schedule} "
            f"concurrency={config.max_concurrent_requests} delay={config.rate_limit_delay}ms "
            f"max_skips={config.max_continuous_skips} enabled={config.enabled}"
        )
        return config

    # Passes

    def _begin(self) -> None:
        self.state = CrawlState(active=True, status=CrawlStatus(
            source=self.name,
            phase=CrawlPhase.RUNNING,
            is_running=True,
            start_time=datetime.now(timezone.utc),
        ))
        self.breaker = CircuitBreaker(self.config.max_continuous_skips)

    async def _finish(self) -> CrawlStatus:
        await self.revalidator.flush()
        status = self.state.status
        status.is_running = False
        status.end_time = datetime.now(timezone.utc)
        self.state.active = False
        logger.info(
            f"[{self.name}] Crawl {status.phase.value}: {status.processed_items} processed, "
            f"{status.skipped_items} skipped, {status.failed_items} failed"
        )
        return self.get_status()

    async def crawl(self) -> CrawlStatus:
        """One full pass over the catalog"""
        self._begin()
        status = self.state.status
        logger.info(f"[{self.name}] Starting crawl")

        try:
            first_page = await self.dispatcher.run(lambda: self.adapter.get_listing_page(1))
            status.total_pages = first_page.total_pages

            checkpoint = await self._load_checkpoint()
            start_page = checkpoint + 1 if checkpoint else 1
            if start_page > 1:
                logger.info(f"[{self.name}] Resuming from page {start_page}/{status.total_pages}")

            for page in range(start_page, status.total_pages + 1):
                if self.state.stop_requested:
                    break
                status.current_page = page
                await self._crawl_page(page, first_page if page == 1 else None)
                if self.state.suspended:
                    break
                await self._save_checkpoint(page)

            if not self.state.stop_requested:
                await self._retry_failures()

            if self.state.suspended:
                status.phase = CrawlPhase.SUSPENDED
            elif self.state.stop_requested:
                status.phase = CrawlPhase.STOPPED
            else:
                status.phase = CrawlPhase.COMPLETED
        except Exception as e:
            status.phase = CrawlPhase.FAILED
            status.last_error = str(e)
            logger.error(f"[{self.name}] Error crawling movies: {e}")
        finally:
            await self._finish()

        return self.get_status()

    async def crawl_single(self, slug: str) -> CrawlStatus:
        """Fetch and save one slug outside the pagination loop"""
        self._begin()
        status = self.state.status
        logger.info(f"[{self.name}] Crawling single movie {slug}")
        try:
            result = await self._fetch_and_merge(slug)
            await self._record(result)
            status.phase = CrawlPhase.COMPLETED
        except Exception as e:
            status.failed_items += 1
            status.last_error = str(e)
            status.phase = CrawlPhase.FAILED
            logger.error(f"[{self.name}] Failed to crawl {slug}: {e}")
            await self.movie_ledger.record_failure(slug, str(e))
        finally:
            await self._finish()
        return self.get_status()

    # Pages and items

    async def _crawl_page(self, page: int, listing: Optional[ListingPage] = None) -> None:
        try:
            if listing is None:
                listing = await self.dispatcher.run(lambda: self.adapter.get_listing_page(page))
        except Exception as e:
            self.state.status.last_error = str(e)
            logger.error(f"[{self.name}] Error fetching page {page}: {e}")
            await self.page_ledger.record_failure(page, str(e))
            return

        logger.info(
            f"[{self.name}] Page {page}/{self.state.status.total_pages}: {len(listing.items)} items"
        )
        await asyncio.gather(*(self._process_item(item) for item in listing.items))

    def _halted(self) -> bool:
        return self.state.suspended and not self.state.in_retry_pass

    async def _process_item(self, item: ListingItem) -> None:
        if self._halted():
            return
        if not item.slug:
            logger.debug(f"[{self.name}] Listing item without slug: {item.name!r}")
            await self._record(MergeResult(outcome=MergeOutcome.SKIPPED))
            return

        try:
            result = await self._fetch_and_merge(item.slug)
        except Exception as e:
            self.state.status.failed_items += 1
            self.state.status.last_error = str(e)
            logger.error(f"[{self.name}] Error processing {item.slug}: {e}")
            await self.movie_ledger.record_failure(item.slug, str(e))
            return

        if result is not None:
            await self._record(result)

    async def _fetch_and_merge(self, slug: str) -> Optional[MergeResult]:
        """None when the breaker tripped while this item waited for a slot"""

        async def fetch():
            if self._halted():
                return None
            return await self.adapter.get_movie_detail(slug)

        raw = await self.dispatcher.run(fetch)
        if raw is None:
            return None
        return await self.merge_engine.merge(raw, force_update=self.config.force_update)

    async def _record(self, result: MergeResult) -> None:
        status = self.state.status
        if result.changed:
            status.processed_items += 1
            await self.revalidator.add(result.slug)
        else:
            status.skipped_items += 1

        if self.state.in_retry_pass:
            return

        tripped = self.breaker.record(result.outcome)
        status.continuous_skips = self.breaker.continuous_skips
        if tripped and not self.state.suspended:
            self.state.suspended = True
            await self.auto_stop.mark()
            logger.warning(
                f"[{self.name}] {self.breaker.continuous_skips} continuous skips on page "
                f"{status.current_page}, auto-stopping crawler"
            )

    # Retry

    async def _retry_movie(self, slug: str) -> None:
        result = await self._fetch_and_merge(slug)
        if result is not None:
            await self._record(result)

    async def _retry_page(self, page: str) -> None:
        listing = await self.dispatcher.run(lambda: self.adapter.get_listing_page(int(page)))
        await asyncio.gather(*(self._process_item(item) for item in listing.items))

    async def _retry_failures(self) -> None:
        self.state.in_retry_pass = True
        try:
            def keep_going() -> bool:
                return not self.state.stop_requested

            pages = await retry_pass(self.page_ledger, self.config.max_retries, self._retry_page, keep_going)
            movies = await retry_pass(self.movie_ledger, self.config.max_retries, self._retry_movie, keep_going)
            if pages.attempted or movies.attempted:
                logger.info(
                    f"[{self.name}] Retry pass: pages {pages.succeeded}/{pages.attempted}, "
                    f"movies {movies.succeeded}/{movies.attempted} succeeded"
                )
        finally:
            self.state.in_retry_pass = False

    # Checkpoint

    async def _load_checkpoint(self) -> int:
        try:
            value = await self.cache.get(checkpoint_key(self.config.host))
            return int(value or 0)
        except Exception as e:
            logger.error(f"[{self.name}] Error getting last crawled page: {e}")
            return 0

    async def _save_checkpoint(self, page: int) -> None:
        try:
            await self.cache.set(checkpoint_key(self.config.host), page, CHECKPOINT_TTL_SECONDS)
        except Exception as e:
            logger.error(f"[{self.name}] Error saving checkpoint for page {page}: {e}")
