"""Canonical movie models"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class EpisodeServerData(BaseModel):
    """One playable entry on an episode server"""
    name: str
    slug: str
    filename: str = ""
    link_embed: str = ""
    link_m3u8: str = ""


class Episode(BaseModel):
    """Episode group contributed by one source for one server"""
    origin_src: str
    server_name: str
    server_data: List[EpisodeServerData] = []


class TmdbRef(BaseModel):
    """Rating-database reference"""
    type: Optional[str] = None          # 'movie' | 'tv'
    id: Optional[str] = None
    season: Optional[int] = None
    vote_average: Optional[float] = None
    vote_count: Optional[int] = None


class ImdbRef(BaseModel):
    id: Optional[str] = None


class EntityReference(BaseModel):
    """Actor, director, category or region document"""
    id: str
    name: str
    slug: str
    tmdb_person_id: Optional[int] = None
    original_name: Optional[str] = None
    thumb_url: Optional[str] = None
    known_for_department: Optional[str] = None


class MovieRecord(BaseModel):
    """Canonical movie document aggregating every source"""
    id: str
    name: str
    slug: str
    origin_name: Optional[str] = None
    content: str = ""
    type: Optional[str] = None          # single | series | tvshows | hoathinh
    status: str = "updating"
    poster_url: Optional[str] = None
    thumb_url: Optional[str] = None
    trailer_url: Optional[str] = None
    time: Optional[str] = None
    episode_current: Optional[str] = None
    episode_total: Optional[str] = None
    quality: Optional[str] = None
    lang: Optional[str] = None
    year: Optional[int] = None
    view: int = 0
    actors: List[str] = []
    directors: List[str] = []
    categories: List[str] = []
    countries: List[str] = []
    tmdb: Optional[TmdbRef] = None
    imdb: Optional[ImdbRef] = None
    episodes: List[Episode] = []
    # One timestamp per contributing source
    last_sync_modified: Dict[str, datetime] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
