"""Supabase document store implementing DocumentStore"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from movie_aggregator.db.base import (
    DocumentStore,
    DuplicateKeyError,
    matches_filter,
    new_document_id,
    unique_key_field,
)
from movie_aggregator.utils.config import get_settings

logger = logging.getLogger(__name__)

TABLE = "documents"
UNIQUE_VIOLATION = "23505"

# Lazy import to avoid requiring supabase when using sqlite mode
_service_client = None


def _get_service_client():
    """Get or create the singleton Supabase service-role client (bypasses RLS)."""
    global _service_client
    if _service_client is None:
        from supabase import ClientOptions, create_client

        settings = get_settings()
        key = settings.supabase_service_key or settings.supabase_key
        if not settings.supabase_url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set when DB_MODE=supabase"
            )
        _service_client = create_client(
            settings.supabase_url,
            key,
            options=ClientOptions(
                postgrest_client_timeout=10,
                storage_client_timeout=30,
            ),
        )
    return _service_client


def _json_path(path: str) -> str:
    """'tmdb.id' -> 'doc->tmdb->>id' (PostgREST JSON operators)"""
    parts = path.split(".")
    if len(parts) == 1:
        return f"doc->>{parts[0]}"
    return "doc->" + "->".join(parts[:-1]) + f"->>{parts[-1]}"


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SupabaseDocumentStore(DocumentStore):
    """Supabase implementation of DocumentStore.

    All collections share one `documents` table; see migrations/001_documents.sql.
    Equality and $in conditions are pushed down to PostgREST, $or branches run
    as separate queries and are unioned, then every row is re-checked locally.
    """

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _get_service_client()
        return self._client

    def init_db(self) -> None:
        """Verify the documents table exists (migration is run in the SQL Editor)."""
        try:
            self.client.table(TABLE).select("id").limit(1).execute()
            logger.info("Supabase schema verified: documents table accessible")
        except Exception as e:
            migration_path = Path(__file__).parent / "migrations" / "001_documents.sql"
            logger.error(
                f"Schema not found. Run migration SQL in Supabase SQL Editor: {migration_path}"
            )
            raise RuntimeError(
                f"Supabase schema not initialized. Run 001_documents.sql in SQL Editor. Error: {e}"
            ) from e

    def _query(self, collection: str, filter: Dict[str, Any]) -> List[dict]:
        query = self.client.table(TABLE).select("doc").eq("collection", collection)
        for key, condition in filter.items():
            if isinstance(condition, dict) and "$in" in condition:
                query = query.in_(_json_path(key), [_as_text(v) for v in condition["$in"]])
            elif not isinstance(condition, (dict, list)) and condition is not None:
                query = query.eq(_json_path(key), _as_text(condition))
        result = query.order("created_at").execute()
        return [row["doc"] for row in result.data or []]

    def _find_sync(self, collection, filter, limit) -> List[dict]:
        filter = filter or {}
        base = {k: v for k, v in filter.items() if k != "$or"}
        branches = filter.get("$or") or [{}]

        docs: Dict[str, dict] = {}
        for branch in branches:
            for doc in self._query(collection, {**base, **branch}):
                docs.setdefault(doc["id"], doc)

        matched = [doc for doc in docs.values() if matches_filter(doc, filter)]
        return matched[:limit] if limit else matched

    def _write(self, operation, collection: str, key: Optional[str]):
        from postgrest.exceptions import APIError

        try:
            return operation.execute()
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateKeyError(collection, key) from e
            raise

    def _row(self, collection: str, doc: dict) -> dict:
        return {
            "collection": collection,
            "id": doc["id"],
            "unique_key": doc.get(unique_key_field(collection)),
            "doc": json.loads(json.dumps(doc, ensure_ascii=False, default=str)),
        }

    def _create_sync(self, collection, docs) -> List[dict]:
        prepared = []
        for doc in docs:
            doc = dict(doc)
            doc.setdefault("id", new_document_id())
            prepared.append(doc)
        rows = [self._row(collection, doc) for doc in prepared]
        keys = ", ".join(str(r["unique_key"]) for r in rows)
        self._write(self.client.table(TABLE).insert(rows), collection, keys)
        return [row["doc"] for row in rows]

    def _update_sync(self, collection, filter, patch) -> Optional[dict]:
        docs = self._find_sync(collection, filter, 1)
        if not docs:
            return None
        doc = {**docs[0], **patch, "id": docs[0]["id"]}
        row = self._row(collection, doc)
        operation = (
            self.client.table(TABLE)
            .update({"unique_key": row["unique_key"], "doc": row["doc"]})
            .eq("collection", collection)
            .eq("id", doc["id"])
        )
        self._write(operation, collection, row["unique_key"])
        return row["doc"]

    # DocumentStore

    async def find_one(self, collection: str, filter: Dict[str, Any]) -> Optional[dict]:
        docs = await asyncio.to_thread(self._find_sync, collection, filter, 1)
        return docs[0] if docs else None

    async def find(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[dict]:
        return await asyncio.to_thread(self._find_sync, collection, filter, limit)

    async def find_one_and_update(
        self,
        collection: str,
        filter: Dict[str, Any],
        patch: Dict[str, Any],
    ) -> Optional[dict]:
        return await asyncio.to_thread(self._update_sync, collection, filter, patch)

    async def create(self, collection: str, doc: Dict[str, Any]) -> dict:
        created = await asyncio.to_thread(self._create_sync, collection, [doc])
        return created[0]

    async def insert_many(self, collection: str, docs: List[Dict[str, Any]]) -> List[dict]:
        if not docs:
            return []
        return await asyncio.to_thread(self._create_sync, collection, docs)

    async def count(self, collection: str, filter: Optional[Dict[str, Any]] = None) -> int:
        docs = await asyncio.to_thread(self._find_sync, collection, filter, None)
        return len(docs)


def get_database(mode: str = None) -> DocumentStore:
    """Factory: returns appropriate document store implementation.

    mode: 'supabase' or 'sqlite'. Defaults to DB_MODE env var.
    """
    if mode is None:
        mode = get_settings().db_mode

    if mode == "supabase":
        return SupabaseDocumentStore()
    else:
        # Import here to avoid circular imports
        from movie_aggregator.db.sqlite import SQLiteDocumentStore

        return SQLiteDocumentStore()
