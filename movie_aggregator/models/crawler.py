"""Crawler configuration, state and ledger models"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class CrawlerConfigError(ValueError):
    """Raised when a crawler is constructed with an unusable configuration"""


class CrawlerConfig(BaseModel):
    """Per-source crawler configuration (hot-reloadable)"""
    name: str
    host: str
    img_host: Optional[str] = None
    cron_schedule: str
    force_update: bool = False
    max_retries: int = 3
    rate_limit_delay: int = 1000        # milliseconds
    max_concurrent_requests: int = 5
    max_continuous_skips: int = 10
    enabled: bool = True

    def validate_required(self) -> "CrawlerConfig":
        """Raise CrawlerConfigError when name, host or cron schedule is blank"""
        missing = [
            field for field in ("name", "host", "cron_schedule")
            if not (getattr(self, field) or "").strip()
        ]
        if missing:
            raise CrawlerConfigError(
                f"Crawler config '{self.name or '?'}' missing required field(s): {', '.join(missing)}"
            )
        if self.max_concurrent_requests < 1:
            raise CrawlerConfigError(
                f"Crawler config '{self.name}': max_concurrent_requests must be >= 1"
            )
        return self


class CrawlPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    SUSPENDED = "suspended"
    STOPPED = "stopped"
    FAILED = "failed"


class CrawlStatus(BaseModel):
    """Snapshot of one crawl pass, reported to the control surface"""
    source: str
    phase: CrawlPhase = CrawlPhase.IDLE
    is_running: bool = False
    current_page: int = 0
    total_pages: int = 0
    processed_items: int = 0
    skipped_items: int = 0
    failed_items: int = 0
    continuous_skips: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_error: Optional[str] = None


class FailureRecord(BaseModel):
    """Ledger entry for a movie slug or listing page that failed"""
    error: str
    retry_count: int = 0
    last_attempt: datetime


class AutoStopMarker(BaseModel):
    source_name: str
    stopped_at: datetime


class MergeOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class MergeResult(BaseModel):
    """What the merge engine did with one fetched record"""
    outcome: MergeOutcome
    slug: Optional[str] = None
    movie_id: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.outcome != MergeOutcome.SKIPPED
