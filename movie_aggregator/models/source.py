"""Source-neutral shapes produced by source adapters"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from movie_aggregator.models.movie import Episode, ImdbRef, TmdbRef


class TaxonomyRef(BaseModel):
    """Category or region as named by a source"""
    name: str
    slug: Optional[str] = None


class PersonCredit(BaseModel):
    """Cast or crew credit from the rating database"""
    id: int
    name: str
    original_name: Optional[str] = None
    profile_path: Optional[str] = None
    character: Optional[str] = None
    job: Optional[str] = None
    known_for_department: Optional[str] = None


class MovieCredits(BaseModel):
    cast: List[PersonCredit] = []
    crew: List[PersonCredit] = []


class RawMovieRecord(BaseModel):
    """One movie as fetched from a single source, before reconciliation"""
    origin_src: str
    source_id: Optional[str] = None
    name: str
    slug: str
    origin_name: Optional[str] = None
    content: str = ""
    type: Optional[str] = None
    status: Optional[str] = None
    poster_url: Optional[str] = None
    thumb_url: Optional[str] = None
    trailer_url: Optional[str] = None
    time: Optional[str] = None
    episode_current: Optional[str] = None
    episode_total: Optional[str] = None
    quality: Optional[str] = None
    lang: Optional[str] = None
    year: Optional[int] = None
    view: Optional[int] = None
    actors: List[str] = []              # free-text names
    directors: List[str] = []           # free-text names
    categories: List[TaxonomyRef] = []
    countries: List[TaxonomyRef] = []
    tmdb: Optional[TmdbRef] = None
    imdb: Optional[ImdbRef] = None
    episodes: List[Episode] = []
    modified: Optional[datetime] = None


class ListingItem(BaseModel):
    slug: Optional[str] = None
    name: Optional[str] = None
    modified: Optional[datetime] = None


class ListingPage(BaseModel):
    """One page of a source's "recently updated" listing"""
    items: List[ListingItem] = []
    total_pages: int = 1
