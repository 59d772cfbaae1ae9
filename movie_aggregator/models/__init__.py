"""Data models"""

from movie_aggregator.models.movie import (
    EpisodeServerData,
    Episode,
    TmdbRef,
    ImdbRef,
    EntityReference,
    MovieRecord,
)
from movie_aggregator.models.source import (
    TaxonomyRef,
    PersonCredit,
    MovieCredits,
    RawMovieRecord,
    ListingItem,
    ListingPage,
)
from movie_aggregator.models.crawler import (
    CrawlerConfigError,
    CrawlerConfig,
    CrawlPhase,
    CrawlStatus,
    FailureRecord,
    AutoStopMarker,
    MergeOutcome,
    MergeResult,
)

__all__ = [
    "EpisodeServerData",
    "Episode",
    "TmdbRef",
    "ImdbRef",
    "EntityReference",
    "MovieRecord",
    "TaxonomyRef",
    "PersonCredit",
    "MovieCredits",
    "RawMovieRecord",
    "ListingItem",
    "ListingPage",
    "CrawlerConfigError",
    "CrawlerConfig",
    "CrawlPhase",
    "CrawlStatus",
    "FailureRecord",
    "AutoStopMarker",
    "MergeOutcome",
    "MergeResult",
]
