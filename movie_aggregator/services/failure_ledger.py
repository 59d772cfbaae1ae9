"""Per-host failure ledger with exponential-backoff retry"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel

from movie_aggregator.db.cache import Cache
from movie_aggregator.models.crawler import FailureRecord

logger = logging.getLogger(__name__)

LEDGER_TTL_SECONDS = 24 * 60 * 60
BASE_DELAY_MS = 1000
MAX_DELAY_MS = 60000
MAX_JITTER_MS = 1000

MOVIE_LEDGER = "movie"
PAGE_LEDGER = "page"


def host_key(host: str) -> str:
    """'https://ophim1.com/' -> 'ophim1.com' (path kept for hosts like phim.nguonc.com/api)"""
    parsed = urlparse(host if "://" in host else f"//{host}")
    return f"{parsed.netloc}{parsed.path}".rstrip("/")


def calculate_backoff(retry_count: int) -> float:
    """Delay in milliseconds: min(60s, 1s * 2^retry_count) + up to 1s jitter"""
    exponential = min(MAX_DELAY_MS, BASE_DELAY_MS * (2 ** retry_count))
    return exponential + random.random() * MAX_JITTER_MS


class RetrySummary(BaseModel):
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    abandoned: int = 0


class FailureLedger:
    """Durable map of failed movie slugs (or listing pages) for one host.

    Stored as a single cache entry `failed-<kind>-crawls:<host>` expiring after
    24 hours; the entry is deleted rather than left as an empty map.
    """

    def __init__(self, cache: Cache, host: str, kind: str = MOVIE_LEDGER, ttl_seconds: int = LEDGER_TTL_SECONDS):
        if kind not in (MOVIE_LEDGER, PAGE_LEDGER):
            raise ValueError(f"Unknown ledger kind: {kind}")
        self.cache = cache
        self.host = host
        self.kind = kind
        self.ttl_seconds = ttl_seconds
        self._lock = asyncio.Lock()

    @property
    def key(self) -> str:
        return f"failed-{self.kind}-crawls:{host_key(self.host)}"

    async def load(self) -> Dict[str, FailureRecord]:
        try:
            raw = await self.cache.get(self.key)
        except Exception as e:
            logger.error(f"Failed to read ledger {self.key}: {e}")
            return {}
        if not isinstance(raw, dict):
            return {}
        records = {}
        for item, value in raw.items():
            try:
                records[item] = FailureRecord.model_validate(value)
            except ValueError:
                logger.warning(f"Dropping unreadable ledger entry {self.key}[{item}]")
        return records

    async def _save(self, records: Dict[str, FailureRecord]) -> None:
        try:
            if not records:
                await self.cache.delete(self.key)
                return
            payload = {item: record.model_dump(mode="json") for item, record in records.items()}
            await self.cache.set(self.key, payload, self.ttl_seconds)
        except Exception as e:
            logger.error(f"Failed to write ledger {self.key}: {e}")

    async def get(self, item) -> Optional[FailureRecord]:
        return (await self.load()).get(str(item))

    async def record_failure(self, item, error: str) -> FailureRecord:
        """First failure creates the record; later ones overwrite error/last_attempt"""
        async with self._lock:
            records = await self.load()
            existing = records.get(str(item))
            record = FailureRecord(
                error=str(error),
                retry_count=existing.retry_count if existing else 0,
                last_attempt=datetime.now(timezone.utc),
            )
            records[str(item)] = record
            await self._save(records)
            return record

    async def record_retry_failure(self, item, error: str) -> FailureRecord:
        async with self._lock:
            records = await self.load()
            existing = records.get(str(item))
            record = FailureRecord(
                error=str(error),
                retry_count=(existing.retry_count if existing else 0) + 1,
                last_attempt=datetime.now(timezone.utc),
            )
            records[str(item)] = record
            await self._save(records)
            return record

    async def remove(self, item) -> None:
        async with self._lock:
            records = await self.load()
            if records.pop(str(item), None) is not None:
                await self._save(records)

    async def clear(self) -> None:
        async with self._lock:
            await self._save({})


async def retry_pass(
    ledger: FailureLedger,
    max_retries: int,
    retry: Callable[[str], Awaitable[object]],
    should_continue: Optional[Callable[[], bool]] = None,
) -> RetrySummary:
    """Retry every ledger entry below max_retries, sequentially with backoff.

    `retry` succeeds by returning; any exception counts as a failed attempt.
    """
    summary = RetrySummary()
    records = await ledger.load()
    if not records:
        return summary

    logger.info(f"Retrying {len(records)} entries from {ledger.key}")
    for item, record in records.items():
        if should_continue is not None and not should_continue():
            logger.info(f"Retry pass for {ledger.key} interrupted")
            break
        if record.retry_count >= max_retries:
            summary.abandoned += 1
            logger.debug(f"Skipping {item}: {record.retry_count} retries already")
            continue

        delay_ms = calculate_backoff(record.retry_count)
        await asyncio.sleep(delay_ms / 1000)

        summary.attempted += 1
        try:
            await retry(item)
        except Exception as e:
            summary.failed += 1
            updated = await ledger.record_retry_failure(item, str(e))
            logger.warning(
                f"Retry failed for {item} (attempt {updated.retry_count}/{max_retries}): {e}"
            )
            continue

        summary.succeeded += 1
        await ledger.remove(item)
        logger.info(f"Retry succeeded for {item}")

    return summary
