"""Configuration management using pydantic-settings"""

import logging
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    log_level: str = Field(default="INFO", description="Logging level")

    # Document store: 'sqlite' or 'supabase'
    db_mode: str = Field(default="sqlite", description="Document store backend: 'sqlite' or 'supabase'")
    database_path: str = Field(default="./data/movies.db", description="Path to SQLite database")
    supabase_url: Optional[str] = Field(default=None, description="Supabase project URL")
    supabase_key: Optional[str] = Field(default=None, description="Supabase anon key")
    supabase_service_key: Optional[str] = Field(default=None, description="Supabase service role key")

    # Cache: 'memory' or 'redis'
    cache_mode: str = Field(default="memory", description="Cache backend: 'memory' or 'redis'")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")

    # Enable/disable gate
    disable_crawl: bool = Field(default=False, description="Global crawler kill switch")
    exclude_movie_src: str = Field(default="", description="Comma-separated source names to exclude")

    # Front-end cache revalidation
    revalidate_webhook_url: Optional[str] = Field(default=None, description="Revalidation webhook URL")
    revalidate_api_key: Optional[str] = Field(default=None, description="API key sent as x-api-key")

    # Rating database (TMDB)
    tmdb_api_key: Optional[str] = Field(default=None, description="TMDB API key")
    tmdb_api_host: str = Field(default="https://api.themoviedb.org/3", description="TMDB API base URL")
    tmdb_img_host: str = Field(default="https://image.tmdb.org/t/p/original", description="TMDB image host")

    # Sources
    ophim_host: str = Field(default="https://ophim1.com", description="Ophim API host")
    ophim_img_host: str = Field(default="https://img.ophim.live/uploads/movies", description="Ophim image host")
    ophim_cron: str = Field(default="0 4 * * *", description="Ophim crawl schedule")
    ophim_force_update: bool = Field(default=False, description="Ignore freshness gate for Ophim")

    kkphim_host: str = Field(default="https://phimapi.com", description="KKPhim API host")
    kkphim_img_host: str = Field(default="https://phimimg.com", description="KKPhim image host")
    kkphim_cron: str = Field(default="0 5 * * *", description="KKPhim crawl schedule")
    kkphim_force_update: bool = Field(default=False, description="Ignore freshness gate for KKPhim")

    nguonc_host: str = Field(default="https://phim.nguonc.com/api", description="Nguonc API host")
    nguonc_cron: str = Field(default="0 6 * * *", description="Nguonc crawl schedule")
    nguonc_force_update: bool = Field(default=False, description="Ignore freshness gate for Nguonc")

    # Crawler defaults (overridden by persisted crawler settings)
    crawler_max_retries: int = Field(default=3, description="Max retries per failed item or page")
    crawler_rate_limit_delay_ms: int = Field(default=1000, description="Pause before every request (ms)")
    crawler_max_concurrent_requests: int = Field(default=5, description="Concurrent outbound requests")
    crawler_max_continuous_skips: int = Field(default=10, description="Skips in a row before auto-stop")
    crawler_http_timeout_seconds: float = Field(default=60.0, description="Total HTTP timeout per request")

    # API server
    api_host: str = Field(default="0.0.0.0", description="Control API bind host")
    api_port: int = Field(default=8000, description="Control API port")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def excluded_sources(self) -> List[str]:
        return [s.strip().lower() for s in self.exclude_movie_src.split(",") if s.strip()]


def get_settings() -> Settings:
    """Get application settings"""
    return Settings()


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for CLI and API entry points"""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
