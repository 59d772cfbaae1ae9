"""Background worker: runs source crawls on their cron schedules using APScheduler."""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from movie_aggregator.db.cache import Cache, get_cache
from movie_aggregator.db.base import DocumentStore
from movie_aggregator.models.crawler import CrawlStatus
from movie_aggregator.services.orchestrator import CrawlOrchestrator
from movie_aggregator.services.revalidation import RevalidationBatcher
from movie_aggregator.services.settings_store import CrawlerSettingsStore
from movie_aggregator.services.tmdb import TmdbClient
from movie_aggregator.sources import ADAPTERS, default_config, get_adapter
from movie_aggregator.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


class WorkerJob(BaseModel):
    """A scheduled crawl job"""
    id: str
    source: str
    next_run: Optional[datetime] = None
    trigger: str = ""


class WorkerStatus(BaseModel):
    is_running: bool = False
    jobs: List[WorkerJob] = []
    crawlers: List[CrawlStatus] = []
    last_check: Optional[datetime] = None


def job_id(source: str) -> str:
    return f"schedule:{source}"


def build_orchestrators(
    store: DocumentStore,
    cache: Cache,
    settings: Optional[Settings] = None,
    tmdb: Optional[TmdbClient] = None,
) -> Dict[str, CrawlOrchestrator]:
    """One orchestrator per registered source, sharing store, cache and TMDB client"""
    settings = settings or get_settings()
    tmdb = tmdb or TmdbClient()
    settings_store = CrawlerSettingsStore(store, cache)
    orchestrators = {}
    for name in ADAPTERS:
        config = default_config(name, settings)
        orchestrators[name] = CrawlOrchestrator(
            adapter=get_adapter(config),
            store=store,
            cache=cache,
            config=config,
            tmdb=tmdb,
            revalidator=RevalidationBatcher(),
            settings_store=settings_store,
            settings=settings,
        )
    return orchestrators


class CrawlerWorker:
    """Schedules and controls crawl orchestrators."""

    def __init__(self, orchestrators: Optional[Dict[str, CrawlOrchestrator]] = None):
        self.settings = get_settings()
        self._orchestrators = orchestrators
        self._scheduler = None
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def scheduler(self):
        """Lazy-load APScheduler."""
        if self._scheduler is None:
            from apscheduler.schedulers.asyncio import AsyncIOScheduler
            self._scheduler = AsyncIOScheduler()
        return self._scheduler

    @property
    def orchestrators(self) -> Dict[str, CrawlOrchestrator]:
        """Lazy-build orchestrators from the configured store and cache."""
        if self._orchestrators is None:
            from movie_aggregator.db.supabase import get_database
            self._orchestrators = build_orchestrators(get_database(), get_cache(), self.settings)
        return self._orchestrators

    def get_orchestrator(self, name: str) -> CrawlOrchestrator:
        try:
            return self.orchestrators[name]
        except KeyError:
            raise KeyError(f"Unknown crawler: {name}") from None

    def _schedule(self, orchestrator: CrawlOrchestrator) -> bool:
        """Add/replace the cron job for one source, or remove it when disabled"""
        from apscheduler.triggers.cron import CronTrigger

        name = orchestrator.name
        enabled, reason = orchestrator.is_enabled()
        if not enabled:
            self._unschedule(name)
            logger.info(f"  Not scheduled: {name} ({reason})")
            return False

        try:
            trigger = CronTrigger.from_crontab(orchestrator.config.cron_schedule)
        except ValueError as e:
            logger.error(f"  Invalid cron '{orchestrator.config.cron_schedule}' for {name}: {e}")
            self._unschedule(name)
            return False

        self.scheduler.add_job(
            self.run_source,
            trigger=trigger,
            args=[name],
            id=job_id(name),
            name=f"Crawl: {name}",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(f"  Scheduled: {name} ({orchestrator.config.cron_schedule})")
        return True

    def _unschedule(self, name: str) -> None:
        if self._scheduler is not None and self._scheduler.get_job(job_id(name)):
            self._scheduler.remove_job(job_id(name))

    async def start(self) -> None:
        """Load persisted configs, create one cron job per enabled source, start scheduler."""
        if self._scheduler and self._scheduler.running:
            logger.warning("Worker already running")
            return

        logger.info("Starting crawler worker...")
        scheduled = 0
        for orchestrator in self.orchestrators.values():
            await orchestrator.refresh_config()
            if self._schedule(orchestrator):
                scheduled += 1

        self.scheduler.start()
        logger.info(f"Worker started with {scheduled} scheduled jobs")

    def stop(self) -> None:
        """Shutdown scheduler and ask running crawls to stop."""
        for orchestrator in self.orchestrators.values():
            if orchestrator.is_running:
                orchestrator.stop()
        if self._scheduler and self._scheduler.running:
            logger.info("Stopping crawler worker...")
            self._scheduler.shutdown(wait=False)
            logger.info("Worker stopped")
        else:
            logger.info("Worker not running")

    async def close(self) -> None:
        """Close adapter sessions, the shared TMDB client and the cache."""
        if self._orchestrators is None:
            return
        closing = []
        for orchestrator in self._orchestrators.values():
            closing.append(orchestrator.adapter)
            closing.append(orchestrator.merge_engine.resolver.tmdb)
            closing.append(orchestrator.cache)
        seen = set()
        for resource in closing:
            if resource is None or id(resource) in seen:
                continue
            seen.add(id(resource))
            try:
                await resource.close()
            except Exception as e:
                logger.error(f"Error closing {type(resource).__name__}: {e}")
        logger.info("Worker resources closed")

    async def run_source(self, name: str, slug: Optional[str] = None) -> CrawlStatus:
        """Scheduled/manual entry point for one source"""
        return await self.get_orchestrator(name).trigger(slug)

    def trigger(self, name: str, slug: Optional[str] = None) -> bool:
        """Start a crawl in the background. False when one is already running."""
        orchestrator = self.get_orchestrator(name)
        task = self._tasks.get(name)
        if orchestrator.is_running or (task is not None and not task.done()):
            logger.warning(f"Crawler {name} is already running")
            return False
        self._tasks[name] = asyncio.create_task(self.run_source(name, slug))
        return True

    def stop_crawler(self, name: str) -> CrawlStatus:
        orchestrator = self.get_orchestrator(name)
        orchestrator.stop()
        return orchestrator.get_status()

    def resume(self, name: str) -> bool:
        """Clear auto-stop and start a full pass in the background"""
        orchestrator = self.get_orchestrator(name)
        task = self._tasks.get(name)
        if orchestrator.is_running or (task is not None and not task.done()):
            logger.warning(f"Crawler {name} is already running")
            return False
        self._tasks[name] = asyncio.create_task(orchestrator.resume())
        return True

    async def update_config(self, name: str):
        """Hot-reload persisted settings and reschedule"""
        orchestrator = self.get_orchestrator(name)
        config = await orchestrator.update_crawler_config()
        if self._scheduler is not None and self._scheduler.running:
            self._schedule(orchestrator)
        return config

    def get_status(self) -> WorkerStatus:
        """Return current worker state + job schedule."""
        is_running = bool(self._scheduler and self._scheduler.running)

        jobs = []
        if is_running:
            for job in self._scheduler.get_jobs():
                jobs.append(WorkerJob(
                    id=job.id,
                    source=job.args[0] if job.args else "unknown",
                    next_run=job.next_run_time,
                    trigger=str(job.trigger),
                ))

        return WorkerStatus(
            is_running=is_running,
            jobs=jobs,
            crawlers=[o.get_status() for o in self.orchestrators.values()],
            last_check=datetime.now(),
        )


# Singleton
_worker: Optional[CrawlerWorker] = None


def get_worker() -> CrawlerWorker:
    """Get or create worker singleton."""
    global _worker
    if _worker is None:
        _worker = CrawlerWorker()
    return _worker
