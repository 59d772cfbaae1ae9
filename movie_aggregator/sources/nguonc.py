"""Nguonc adapter"""

import logging
from typing import Any, List, Optional, Tuple

from movie_aggregator.models.movie import Episode, EpisodeServerData
from movie_aggregator.models.source import ListingItem, ListingPage, RawMovieRecord, TaxonomyRef
from movie_aggregator.sources.base import MalformedRecordError, SourceAdapter
from movie_aggregator.utils.mapping import (
    map_movie_type,
    mapping_name_slug_episode,
    parse_int,
    parse_timestamp,
    resolve_url,
)
from movie_aggregator.utils.vietnamese import slugify_vietnamese

logger = logging.getLogger(__name__)

GROUP_FORMAT = "định dạng"
GROUP_REGION = "quốc gia"
GROUP_YEAR = "năm"


def _split_names(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if v and str(v).strip()]
    return [name.strip() for name in (value or "").split(",") if name.strip()]


def _groups(category: Any) -> List[Tuple[str, List[str]]]:
    """{"1": {group: {name}, list: [{name}]}} -> [(group name, [names])]"""
    groups = category.values() if isinstance(category, dict) else category or []
    result = []
    for group in groups:
        if not isinstance(group, dict):
            continue
        group_name = ((group.get("group") or {}).get("name") or "").strip().lower()
        names = [item.get("name", "").strip() for item in group.get("list") or [] if isinstance(item, dict)]
        result.append((group_name, [n for n in names if n]))
    return result


def movie_status(current_episode: Optional[str]) -> Optional[str]:
    current = current_episode or ""
    if "Hoàn tất" in current:
        return "completed"
    if "Tập" in current:
        return "ongoing"
    if "Đang cập nhật" in current:
        return "updating"
    return None


def parse_episodes(servers: Any) -> List[Episode]:
    episodes = []
    for server in servers or []:
        if not isinstance(server, dict):
            continue
        server_name = (server.get("server_name") or "").strip()
        if not server_name:
            continue
        server_data = []
        for index, item in enumerate(server.get("items") or []):
            if not isinstance(item, dict):
                continue
            link_embed = item.get("embed") or ""
            link_m3u8 = item.get("m3u8") or ""
            # entries with neither link cannot be played
            if not link_embed and not link_m3u8:
                continue
            name, slug = mapping_name_slug_episode(item.get("name"), item.get("slug"), index)
            server_data.append(EpisodeServerData(
                name=name,
                slug=slug,
                link_embed=link_embed,
                link_m3u8=link_m3u8,
            ))
        if not server_data:
            continue
        episodes.append(Episode(
            origin_src=NguoncAdapter.name,
            server_name=server_name,
            server_data=server_data,
        ))
    return episodes


def parse_listing(payload: Any) -> ListingPage:
    """{paginate: {total_page}, items: [...]} -> ListingPage"""
    if not isinstance(payload, dict):
        raise MalformedRecordError("Listing payload is not an object")
    items = [
        ListingItem(
            slug=item.get("slug") or None,
            name=item.get("name"),
            modified=parse_timestamp(item.get("modified")),
        )
        for item in payload.get("items") or []
    ]
    paginate = payload.get("paginate") or {}
    return ListingPage(items=items, total_pages=parse_int(paginate.get("total_page")) or 1)


def parse_detail(payload: Any, img_host: Optional[str] = None) -> RawMovieRecord:
    """{movie: {...}} -> RawMovieRecord"""
    movie = payload.get("movie") if isinstance(payload, dict) else None
    if not isinstance(movie, dict) or not (movie.get("slug") or movie.get("name")):
        raise MalformedRecordError("nguonc: detail payload without movie slug")

    categories: List[TaxonomyRef] = []
    countries: List[TaxonomyRef] = []
    movie_type = None
    year = None
    for group_name, names in _groups(movie.get("category")):
        if group_name == GROUP_REGION:
            countries.extend(TaxonomyRef(name=n) for n in names)
            continue
        if group_name == GROUP_FORMAT and names and movie_type is None:
            movie_type = map_movie_type(names[0])
        if group_name == GROUP_YEAR and names:
            year = parse_int(names[0])
        categories.extend(TaxonomyRef(name=n) for n in names)

    slug = movie.get("slug") or slugify_vietnamese(movie["name"])
    total = movie.get("total_episodes")
    return RawMovieRecord(
        origin_src=NguoncAdapter.name,
        source_id=movie.get("id"),
        name=movie.get("name") or slug,
        slug=slug,
        origin_name=movie.get("original_name"),
        content=movie.get("description") or "",
        type=movie_type,
        status=movie_status(movie.get("current_episode")),
        thumb_url=resolve_url(movie.get("thumb_url"), img_host),
        poster_url=resolve_url(movie.get("poster_url"), img_host),
        time=movie.get("time"),
        episode_current=movie.get("current_episode"),
        episode_total=str(total) if total else None,
        quality=movie.get("quality"),
        lang=movie.get("language"),
        year=year,
        actors=_split_names(movie.get("casts")),
        directors=_split_names(movie.get("director")),
        categories=categories,
        countries=countries,
        episodes=parse_episodes(movie.get("episodes")),
        modified=parse_timestamp(movie.get("modified")),
    )


class NguoncAdapter(SourceAdapter):
    """phim.nguonc.com catalog"""

    name = "nguonc"
    listing_path = "/films/phim-moi-cap-nhat"
    detail_path = "/film/{slug}"

    def parse_listing(self, payload: Any) -> ListingPage:
        return parse_listing(payload)

    def parse_detail(self, payload: Any) -> RawMovieRecord:
        return parse_detail(payload, self.config.img_host)
