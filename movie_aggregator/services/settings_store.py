"""Persisted, hot-reloadable crawler settings"""

import logging
from typing import Optional

from movie_aggregator.db.base import CRAWLER_SETTINGS, DocumentStore, DuplicateKeyError
from movie_aggregator.db.cache import Cache
from movie_aggregator.models.crawler import CrawlerConfig

logger = logging.getLogger(__name__)

CONFIG_CACHE_TTL_SECONDS = 60 * 60

_OVERRIDABLE = (
    "host",
    "img_host",
    "cron_schedule",
    "force_update",
    "max_retries",
    "rate_limit_delay",
    "max_concurrent_requests",
    "max_continuous_skips",
    "enabled",
)


def config_cache_key(name: str) -> str:
    return f"CACHED:CRAWLER_CONFIG:{name}"


class CrawlerSettingsStore:
    """Reads crawler settings from the `crawler_settings` collection.

    Missing settings are created from the defaults. Reads are cached for an
    hour; `invalidate` drops the cached copy so the next load is fresh.
    """

    def __init__(self, store: DocumentStore, cache: Cache):
        self.store = store
        self.cache = cache

    async def _read_cached(self, name: str) -> Optional[dict]:
        try:
            return await self.cache.get(config_cache_key(name))
        except Exception as e:
            logger.error(f"Failed to read cached config for {name}: {e}")
            return None

    async def _write_cached(self, name: str, doc: dict) -> None:
        try:
            await self.cache.set(config_cache_key(name), doc, CONFIG_CACHE_TTL_SECONDS)
        except Exception as e:
            logger.error(f"Failed to cache config for {name}: {e}")

    async def invalidate(self, name: str) -> None:
        try:
            await self.cache.delete(config_cache_key(name))
        except Exception as e:
            logger.error(f"Failed to drop cached config for {name}: {e}")

    async def _load_document(self, defaults: CrawlerConfig) -> dict:
        doc = await self.store.find_one(CRAWLER_SETTINGS, {"name": defaults.name})
        if doc is not None:
            return doc
        try:
            doc = await self.store.create(CRAWLER_SETTINGS, defaults.model_dump())
            logger.info(f"Created default crawler settings for {defaults.name}")
            return doc
        except DuplicateKeyError:
            doc = await self.store.find_one(CRAWLER_SETTINGS, {"name": defaults.name})
            if doc is None:
                raise
            return doc

    async def load(self, defaults: CrawlerConfig) -> CrawlerConfig:
        """Defaults overlaid with any non-empty persisted values"""
        doc = await self._read_cached(defaults.name)
        if doc is None:
            try:
                doc = await self._load_document(defaults)
            except Exception as e:
                logger.error(f"Failed to load persisted settings for {defaults.name}, using defaults: {e}")
                return defaults
            await self._write_cached(defaults.name, doc)

        overrides = {
            field: doc[field]
            for field in _OVERRIDABLE
            if doc.get(field) not in (None, "")
        }
        return defaults.model_copy(update=overrides)

    async def save(self, name: str, **changes) -> Optional[dict]:
        """Update persisted settings (admin path) and drop the cached copy"""
        patch = {k: v for k, v in changes.items() if k in _OVERRIDABLE}
        updated = await self.store.find_one_and_update(CRAWLER_SETTINGS, {"name": name}, patch)
        await self.invalidate(name)
        return updated
