"""Rating-database (TMDB) client: credits, external ids and images"""

import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from movie_aggregator.models.movie import ImdbRef, TmdbRef
from movie_aggregator.models.source import MovieCredits
from movie_aggregator.sources.base import SourceFetchError
from movie_aggregator.utils.config import get_settings
from movie_aggregator.utils.mapping import resolve_url

logger = logging.getLogger(__name__)


class TmdbClient:
    """Fetches credits, external ids and artwork for movies and TV shows."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_host: Optional[str] = None,
        img_host: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.tmdb_api_key
        self.api_host = (api_host or settings.tmdb_api_host).rstrip("/")
        self.img_host = img_host or settings.tmdb_img_host
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def image_url(self, path: Optional[str]) -> Optional[str]:
        return resolve_url(path, self.img_host)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        url = f"{self.api_host}{path}"
        try:
            async with self._session.get(url, params={**(params or {}), "api_key": self.api_key}) as response:
                if response.status != 200:
                    raise SourceFetchError(url, f"TMDB returned {response.status}", response.status)
                return await response.json()
        except asyncio.TimeoutError as e:
            raise SourceFetchError(url, "Timed out") from e
        except aiohttp.ClientError as e:
            raise SourceFetchError(url, f"Network error: {e}") from e

    async def get_credits(self, tmdb: Optional[TmdbRef]) -> Optional[MovieCredits]:
        """Credits for a rating-database reference.

        Returns None when no API key is configured or the reference cannot be
        resolved to movie/tv credits; callers then use the manual name lists.
        """
        if not self.enabled or tmdb is None or not tmdb.id:
            return None

        if tmdb.type == "tv" and tmdb.season:
            path = f"/tv/{tmdb.id}/season/{tmdb.season}/credits"
        elif tmdb.type == "tv":
            path = f"/tv/{tmdb.id}/credits"
        elif tmdb.type == "movie":
            path = f"/movie/{tmdb.id}/credits"
        else:
            return None

        data = await self._get(path)
        logger.debug(f"TMDB credits {path}: {len(data.get('cast') or [])} cast")
        return MovieCredits.model_validate({
            "cast": [c for c in data.get("cast") or [] if c.get("id") and c.get("name")],
            "crew": [c for c in data.get("crew") or [] if c.get("id") and c.get("name")],
        })

    def _media_path(self, tmdb: Optional[TmdbRef]) -> Optional[str]:
        if not self.enabled or tmdb is None or not tmdb.id:
            return None
        if tmdb.type not in ("movie", "tv"):
            return None
        return f"/{tmdb.type}/{tmdb.id}"

    async def find_by_imdb_id(self, imdb_id: Optional[str]) -> Optional[TmdbRef]:
        """Rating-database reference for an external (IMDb) id, movies first"""
        if not self.enabled or not imdb_id:
            return None

        data = await self._get(f"/find/{imdb_id}", {"external_source": "imdb_id"})
        for media_type in ("movie", "tv"):
            for result in data.get(f"{media_type}_results") or []:
                if result.get("id"):
                    return TmdbRef(
                        type=media_type,
                        id=str(result["id"]),
                        vote_average=result.get("vote_average"),
                        vote_count=result.get("vote_count"),
                    )
        logger.debug(f"TMDB has no match for {imdb_id}")
        return None

    async def get_external_ids(self, tmdb: Optional[TmdbRef]) -> Optional[ImdbRef]:
        path = self._media_path(tmdb)
        if path is None:
            return None
        data = await self._get(f"{path}/external_ids")
        imdb_id = data.get("imdb_id")
        return ImdbRef(id=imdb_id) if imdb_id else None

    async def get_images(self, tmdb: Optional[TmdbRef]) -> Dict[str, Optional[str]]:
        """First backdrop as thumb_url and first poster as poster_url, absolute"""
        images: Dict[str, Optional[str]] = {"thumb_url": None, "poster_url": None}
        path = self._media_path(tmdb)
        if path is None:
            return images

        data = await self._get(f"{path}/images")
        backdrops = [b for b in data.get("backdrops") or [] if b.get("file_path")]
        posters = [p for p in data.get("posters") or [] if p.get("file_path")]
        if backdrops:
            images["thumb_url"] = self.image_url(backdrops[0]["file_path"])
        if posters:
            images["poster_url"] = self.image_url(posters[0]["file_path"])
        return images
