"""Crawler control routes: trigger, stop, resume, reload config, status."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from movie_aggregator import __version__
from movie_aggregator.api.schemas import (
    ActionResponse,
    CrawlerInfo,
    CrawlerListResponse,
    HealthResponse,
)
from movie_aggregator.models.crawler import CrawlerConfigError
from movie_aggregator.services.orchestrator import CrawlOrchestrator
from movie_aggregator.services.worker import CrawlerWorker, get_worker

logger = logging.getLogger(__name__)

router = APIRouter()

# Shared worker, set via init_worker() from app.py
worker: Optional[CrawlerWorker] = None


def init_worker(shared_worker: CrawlerWorker):
    """Set the shared worker (called from app.py)."""
    global worker
    worker = shared_worker


def _worker() -> CrawlerWorker:
    return worker or get_worker()


def _orchestrator(name: str) -> CrawlOrchestrator:
    try:
        return _worker().get_orchestrator(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown crawler: {name}")


def _info(orchestrator: CrawlOrchestrator) -> CrawlerInfo:
    enabled, reason = orchestrator.is_enabled()
    config = orchestrator.config
    return CrawlerInfo(
        name=config.name,
        host=config.host,
        cron_schedule=config.cron_schedule,
        enabled=enabled,
        disabled_reason=reason or None,
        force_update=config.force_update,
        max_concurrent_requests=config.max_concurrent_requests,
        rate_limit_delay=config.rate_limit_delay,
        max_continuous_skips=config.max_continuous_skips,
        status=orchestrator.get_status(),
    )


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(scheduler_running=_worker().get_status().is_running, version=__version__)


@router.get("/crawlers", response_model=CrawlerListResponse)
async def list_crawlers():
    """List crawlers with config and last-known status."""
    current = _worker()
    return CrawlerListResponse(
        scheduler_running=bool(current._scheduler and current._scheduler.running),
        crawlers=[_info(o) for o in current.orchestrators.values()],
    )


@router.get("/crawlers/{name}/status", response_model=CrawlerInfo)
async def crawler_status(name: str):
    return _info(_orchestrator(name))


@router.post("/crawlers/{name}/trigger", response_model=ActionResponse)
async def trigger_crawler(name: str, slug: Optional[str] = Query(None, description="Crawl one movie only")):
    """Start a full pass (or a single slug) in the background."""
    orchestrator = _orchestrator(name)
    enabled, reason = orchestrator.is_enabled()
    if not enabled:
        return ActionResponse(name=name, accepted=False, slug=slug, message=f"Crawler disabled: {reason}")

    accepted = _worker().trigger(name, slug)
    message = "Crawl started" if accepted else "Crawler is already running"
    return ActionResponse(name=name, accepted=accepted, slug=slug, message=message, status=orchestrator.get_status())


@router.post("/crawlers/{name}/stop", response_model=ActionResponse)
async def stop_crawler(name: str):
    _orchestrator(name)
    status = _worker().stop_crawler(name)
    return ActionResponse(name=name, accepted=True, message="Stop requested", status=status)


@router.post("/crawlers/{name}/resume", response_model=ActionResponse)
async def resume_crawler(name: str):
    """Clear the auto-stop marker and start a full pass."""
    orchestrator = _orchestrator(name)
    accepted = _worker().resume(name)
    message = "Crawler resumed" if accepted else "Crawler is already running"
    return ActionResponse(name=name, accepted=accepted, message=message, status=orchestrator.get_status())


@router.post("/crawlers/{name}/config/reload", response_model=CrawlerInfo)
async def reload_config(name: str):
    """Hot-reload persisted settings for one crawler."""
    orchestrator = _orchestrator(name)
    try:
        await _worker().update_config(name)
    except CrawlerConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _info(orchestrator)
