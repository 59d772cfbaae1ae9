"""Ophim adapter (also the base for the KKPhim API family)"""

import logging
from typing import Any, List, Optional

from movie_aggregator.models.movie import Episode, EpisodeServerData, ImdbRef, TmdbRef
from movie_aggregator.models.source import ListingItem, ListingPage, RawMovieRecord, TaxonomyRef
from movie_aggregator.sources.base import MalformedRecordError, SourceAdapter
from movie_aggregator.utils.mapping import (
    mapping_name_slug_episode,
    parse_int,
    parse_timestamp,
    resolve_url,
)

logger = logging.getLogger(__name__)


def _names(values: Any) -> List[str]:
    if isinstance(values, str):
        values = values.split(",")
    return [str(v).strip() for v in values or [] if v and str(v).strip()]


def _taxonomy(values: Any) -> List[TaxonomyRef]:
    refs = []
    for value in values or []:
        if isinstance(value, dict) and value.get("name"):
            refs.append(TaxonomyRef(name=value["name"], slug=value.get("slug") or None))
    return refs


def parse_episodes(servers: Any, origin_src: str) -> List[Episode]:
    """[{server_name, server_data: [...]}] -> Episode groups tagged with origin_src

    Null entries and entries without any playable link are dropped, and a
    group is kept only when it has a server name and at least one entry.
    """
    episodes = []
    for server in servers or []:
        if not isinstance(server, dict):
            continue
        server_name = (server.get("server_name") or "").strip()
        if not server_name:
            continue
        server_data = []
        for index, item in enumerate(server.get("server_data") or []):
            if not isinstance(item, dict):
                continue
            link_embed = item.get("link_embed") or ""
            link_m3u8 = item.get("link_m3u8") or ""
            if not link_embed and not link_m3u8:
                continue
            name, slug = mapping_name_slug_episode(item.get("name"), item.get("slug"), index)
            server_data.append(EpisodeServerData(
                name=name,
                slug=slug,
                filename=item.get("filename") or "",
                link_embed=link_embed,
                link_m3u8=link_m3u8,
            ))
        if not server_data:
            continue
        episodes.append(Episode(
            origin_src=origin_src,
            server_name=server_name,
            server_data=server_data,
        ))
    return episodes


def parse_tmdb(raw: Any) -> Optional[TmdbRef]:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    return TmdbRef(
        type=raw.get("type") or None,
        id=str(raw["id"]),
        season=parse_int(raw.get("season")),
        vote_average=raw.get("vote_average"),
        vote_count=parse_int(raw.get("vote_count")),
    )


def parse_imdb(raw: Any) -> Optional[ImdbRef]:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    return ImdbRef(id=str(raw["id"]))


def parse_listing(payload: Any) -> ListingPage:
    """{items: [...], pagination: {totalPages}} -> ListingPage"""
    if not isinstance(payload, dict):
        raise MalformedRecordError("Listing payload is not an object")
    items = []
    for item in payload.get("items") or []:
        modified = item.get("modified")
        items.append(ListingItem(
            slug=item.get("slug") or None,
            name=item.get("name"),
            modified=parse_timestamp(modified.get("time") if isinstance(modified, dict) else modified),
        ))
    pagination = payload.get("pagination") or {}
    total_pages = parse_int(pagination.get("totalPages")) or 1
    return ListingPage(items=items, total_pages=total_pages)


def parse_detail(payload: Any, origin_src: str, img_host: Optional[str] = None) -> RawMovieRecord:
    """{movie: {...}, episodes: [...]} -> RawMovieRecord"""
    movie = payload.get("movie") if isinstance(payload, dict) else None
    if not isinstance(movie, dict) or not movie.get("slug"):
        raise MalformedRecordError(f"{origin_src}: detail payload without movie slug")

    modified = movie.get("modified")
    return RawMovieRecord(
        origin_src=origin_src,
        source_id=movie.get("_id"),
        name=movie.get("name") or movie["slug"],
        slug=movie["slug"],
        origin_name=movie.get("origin_name"),
        content=movie.get("content") or "",
        type=movie.get("type"),
        status=movie.get("status"),
        # Source "thumb" is the landscape image; the canonical thumb is the vertical poster
        thumb_url=resolve_url(movie.get("poster_url"), img_host),
        poster_url=resolve_url(movie.get("thumb_url"), img_host),
        trailer_url=movie.get("trailer_url") or None,
        time=movie.get("time"),
        episode_current=movie.get("episode_current"),
        episode_total=str(movie["episode_total"]) if movie.get("episode_total") else None,
        quality=movie.get("quality"),
        lang=movie.get("lang"),
        year=parse_int(movie.get("year")),
        view=parse_int(movie.get("view")),
        actors=_names(movie.get("actor")),
        directors=_names(movie.get("director")),
        categories=_taxonomy(movie.get("category")),
        countries=_taxonomy(movie.get("country")),
        tmdb=parse_tmdb(movie.get("tmdb")),
        imdb=parse_imdb(movie.get("imdb")),
        episodes=parse_episodes(payload.get("episodes") or movie.get("episodes"), origin_src),
        modified=parse_timestamp(modified.get("time") if isinstance(modified, dict) else modified),
    )


class OphimAdapter(SourceAdapter):
    """ophim1.com catalog"""

    name = "ophim"
    listing_path = "/danh-sach/phim-moi-cap-nhat"
    detail_path = "/phim/{slug}"

    def parse_listing(self, payload: Any) -> ListingPage:
        return parse_listing(payload)

    def parse_detail(self, payload: Any) -> RawMovieRecord:
        return parse_detail(payload, self.name, self.config.img_host)
