"""Source adapter contract shared by every upstream catalog"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp

from movie_aggregator.models.crawler import CrawlerConfig
from movie_aggregator.models.source import ListingPage, RawMovieRecord
from movie_aggregator.utils.config import get_settings

logger = logging.getLogger(__name__)


class SourceFetchError(Exception):
    """Transient upstream failure (network error, 429 or 5xx)"""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(f"{message} ({url})")


class MalformedRecordError(ValueError):
    """Upstream payload is missing required fields"""


class SourceAdapter(ABC):
    """Translates one upstream API into ListingPage / RawMovieRecord."""

    name: str = ""
    listing_path: str = ""
    detail_path: str = ""

    def __init__(self, config: CrawlerConfig, timeout_seconds: Optional[float] = None):
        self.config = config
        self.timeout_seconds = timeout_seconds or get_settings().crawler_http_timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def host(self) -> str:
        return (self.config.host or "").rstrip("/")

    def should_enable(self) -> bool:
        """Adapter-specific enable predicate: host configured and not 'false'"""
        host = (self.config.host or "").strip()
        return bool(host) and host.lower() != "false"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers={"Accept": "application/json"},
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch_json(self, url: str, params: Optional[dict] = None) -> Any:
        """GET url and decode JSON, mapping upstream failures to SourceFetchError"""
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as response:
                if response.status == 429 or response.status >= 500:
                    raise SourceFetchError(url, f"Upstream returned {response.status}", response.status)
                if response.status != 200:
                    raise SourceFetchError(url, f"Unexpected status {response.status}", response.status)
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise MalformedRecordError(f"Invalid JSON from {url}: {e}") from e
        except asyncio.TimeoutError as e:
            raise SourceFetchError(url, "Timed out") from e
        except aiohttp.ClientError as e:
            raise SourceFetchError(url, f"Network error: {e}") from e

    async def get_listing_page(self, page: int) -> ListingPage:
        payload = await self.fetch_json(f"{self.host}{self.listing_path}", params={"page": page})
        return self.parse_listing(payload)

    async def get_movie_detail(self, slug: str) -> RawMovieRecord:
        payload = await self.fetch_json(f"{self.host}{self.detail_path.format(slug=slug)}")
        return self.parse_detail(payload)

    @abstractmethod
    def parse_listing(self, payload: Any) -> ListingPage:
        """Native listing JSON -> ListingPage"""

    @abstractmethod
    def parse_detail(self, payload: Any) -> RawMovieRecord:
        """Native detail JSON -> RawMovieRecord. Raises MalformedRecordError."""
