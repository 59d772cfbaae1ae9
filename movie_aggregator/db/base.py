"""Abstract document store interface: strategy pattern for SQLite/Supabase switching"""

import re
import secrets
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

MOVIES = "movies"
ACTORS = "actors"
DIRECTORS = "directors"
CATEGORIES = "categories"
REGIONS = "regions"
CRAWLER_SETTINGS = "crawler_settings"

# Field carrying the per-collection unique index
UNIQUE_KEYS = {
    CRAWLER_SETTINGS: "name",
}
DEFAULT_UNIQUE_KEY = "slug"

_DOCUMENT_ID_RE = re.compile(r"^[0-9a-f]{24}$")


class DuplicateKeyError(Exception):
    """Unique-index violation on create/update"""

    def __init__(self, collection: str, key: Optional[str] = None):
        self.collection = collection
        self.key = key
        super().__init__(f"Duplicate key in {collection}: {key}")


def unique_key_field(collection: str) -> str:
    return UNIQUE_KEYS.get(collection, DEFAULT_UNIQUE_KEY)


def new_document_id() -> str:
    """Mint a 24-char hex document id"""
    return secrets.token_hex(12)


def coerce_document_id(value: Any) -> Optional[str]:
    """Validate a foreign id into the native format, or None"""
    if value is None:
        return None
    candidate = str(value).strip().lower()
    if _DOCUMENT_ID_RE.match(candidate):
        return candidate
    return None


def get_path(doc: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path ("tmdb.id") inside a document"""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _matches_value(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and "$in" in condition:
        candidates = condition["$in"]
        if isinstance(value, list):
            return any(v in candidates for v in value)
        return value in candidates
    if isinstance(value, list) and not isinstance(condition, list):
        return condition in value
    return value == condition


def matches_filter(doc: Dict[str, Any], filter: Optional[Dict[str, Any]]) -> bool:
    """Evaluate the store's filter dialect against one document.

    Supported: dotted-path equality, {"field": {"$in": [...]}} and
    top-level {"$or": [filter, ...]}. Empty filter matches everything.
    """
    if not filter:
        return True
    for key, condition in filter.items():
        if key == "$or":
            if not any(matches_filter(doc, sub) for sub in condition):
                return False
            continue
        if not _matches_value(get_path(doc, key), condition):
            return False
    return True


class DocumentStore(ABC):
    """Async document store used by the crawl engine.
    Implemented by both SQLite and Supabase backends."""

    @abstractmethod
    async def find_one(self, collection: str, filter: Dict[str, Any]) -> Optional[dict]:
        """First document matching filter, or None."""

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[dict]:
        """All documents matching filter."""

    @abstractmethod
    async def find_one_and_update(
        self,
        collection: str,
        filter: Dict[str, Any],
        patch: Dict[str, Any],
    ) -> Optional[dict]:
        """Set top-level fields on the first match. Returns the updated document or None.
        Raises DuplicateKeyError when the patch collides on the unique key."""

    @abstractmethod
    async def create(self, collection: str, doc: Dict[str, Any]) -> dict:
        """Insert one document (id minted when absent). Raises DuplicateKeyError."""

    @abstractmethod
    async def insert_many(self, collection: str, docs: List[Dict[str, Any]]) -> List[dict]:
        """Insert several documents. Raises DuplicateKeyError on the first collision."""

    @abstractmethod
    async def count(self, collection: str, filter: Optional[Dict[str, Any]] = None) -> int:
        """Number of documents matching filter."""
