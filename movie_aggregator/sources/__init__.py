"""Upstream catalog adapters"""

from typing import Dict, Optional, Type

from movie_aggregator.models.crawler import CrawlerConfig
from movie_aggregator.sources.base import MalformedRecordError, SourceAdapter, SourceFetchError
from movie_aggregator.sources.kkphim import KKPhimAdapter
from movie_aggregator.sources.nguonc import NguoncAdapter
from movie_aggregator.sources.ophim import OphimAdapter
from movie_aggregator.utils.config import Settings, get_settings

ADAPTERS: Dict[str, Type[SourceAdapter]] = {
    OphimAdapter.name: OphimAdapter,
    KKPhimAdapter.name: KKPhimAdapter,
    NguoncAdapter.name: NguoncAdapter,
}


def default_config(name: str, settings: Optional[Settings] = None) -> CrawlerConfig:
    """CrawlerConfig for a known source built from environment settings"""
    if name not in ADAPTERS:
        raise KeyError(f"Unknown source: {name}")
    settings = settings or get_settings()
    return CrawlerConfig(
        name=name,
        host=getattr(settings, f"{name}_host"),
        img_host=getattr(settings, f"{name}_img_host", None),
        cron_schedule=getattr(settings, f"{name}_cron"),
        force_update=getattr(settings, f"{name}_force_update"),
        max_retries=settings.crawler_max_retries,
        rate_limit_delay=settings.crawler_rate_limit_delay_ms,
        max_concurrent_requests=settings.crawler_max_concurrent_requests,
        max_continuous_skips=settings.crawler_max_continuous_skips,
    )


def get_adapter(config: CrawlerConfig) -> SourceAdapter:
    """Instantiate the adapter registered under config.name"""
    try:
        adapter_cls = ADAPTERS[config.name]
    except KeyError:
        raise KeyError(f"Unknown source: {config.name}") from None
    return adapter_cls(config)


__all__ = [
    "ADAPTERS",
    "MalformedRecordError",
    "SourceAdapter",
    "SourceFetchError",
    "KKPhimAdapter",
    "NguoncAdapter",
    "OphimAdapter",
    "default_config",
    "get_adapter",
]
