"""Batches changed movie slugs and notifies the front-end cache"""

import asyncio
import logging
from typing import List, Optional

import aiohttp

from movie_aggregator.utils.config import get_settings

logger = logging.getLogger(__name__)

REVALIDATION_BATCH_SIZE = 40


class RevalidationBatcher:
    """Accumulates slugs; POSTs {"movieSlug": [...]} with an x-api-key header.

    The queue is cleared only after a 200 response, so failed flushes are
    retried with the next batch or at the end of the pass.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        api_key: Optional[str] = None,
        batch_size: int = REVALIDATION_BATCH_SIZE,
        timeout_seconds: float = 30.0,
    ):
        settings = get_settings()
        self.webhook_url = webhook_url if webhook_url is not None else settings.revalidate_webhook_url
        self.api_key = api_key if api_key is not None else settings.revalidate_api_key
        self.batch_size = batch_size
        self.timeout_seconds = timeout_seconds
        self.pending: List[str] = []
        self._lock = asyncio.Lock()

    async def add(self, slug: Optional[str]) -> None:
        """Queue a slug; flush once the batch is full"""
        if not slug:
            return
        if slug not in self.pending:
            self.pending.append(slug)
        if len(self.pending) >= self.batch_size and not self._lock.locked():
            await self.flush()

    async def _post(self, slugs: List[str]) -> int:
        """POST one batch, return the HTTP status"""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.webhook_url, json={"movieSlug": slugs}, headers=headers) as response:
                return response.status

    async def flush(self) -> bool:
        """Send everything queued. Never raises; returns True on success."""
        if not self.pending:
            return True

        if not self.webhook_url:
            logger.warning(
                f"REVALIDATE_WEBHOOK_URL not set, dropping {len(self.pending)} queued slugs"
            )
            self.pending.clear()
            return False

        async with self._lock:
            batch = list(self.pending)
            try:
                status = await self._post(batch)
            except Exception as e:
                logger.error(f"Failed to revalidate {len(batch)} movies: {e}")
                return False

        if status != 200:
            logger.error(f"Failed to revalidate on front-end side: HTTP {status}")
            return False

        self.pending = [slug for slug in self.pending if slug not in batch]
        logger.info(f"Revalidated {len(batch)} movies")
        return True
