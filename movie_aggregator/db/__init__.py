"""Persistence: document store and cache backends"""

from movie_aggregator.db.base import (
    DocumentStore,
    DuplicateKeyError,
    coerce_document_id,
    new_document_id,
)
from movie_aggregator.db.cache import Cache, MemoryCache, RedisCache, get_cache
from movie_aggregator.db.supabase import get_database

__all__ = [
    "DocumentStore",
    "DuplicateKeyError",
    "coerce_document_id",
    "new_document_id",
    "Cache",
    "MemoryCache",
    "RedisCache",
    "get_cache",
    "get_database",
]
