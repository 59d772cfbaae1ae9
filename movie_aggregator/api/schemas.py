"""Request/response schemas for the crawler control API"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from movie_aggregator.models.crawler import CrawlStatus


class CrawlerInfo(BaseModel):
    """One crawler with its effective configuration"""
    name: str
    host: str
    cron_schedule: str
    enabled: bool
    disabled_reason: Optional[str] = None
    force_update: bool = False
    max_concurrent_requests: int
    rate_limit_delay: int
    max_continuous_skips: int
    status: CrawlStatus


class CrawlerListResponse(BaseModel):
    scheduler_running: bool = False
    crawlers: List[CrawlerInfo] = []


class ActionResponse(BaseModel):
    """Result of a control action"""
    name: str
    accepted: bool
    message: str
    slug: Optional[str] = None
    status: Optional[CrawlStatus] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class HealthResponse(BaseModel):
    status: str = "ok"
    scheduler_running: bool = False
    version: str
