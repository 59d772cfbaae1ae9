"""SQLite document store: JSON documents keyed by (collection, id)"""

import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from movie_aggregator.db.base import (
    DocumentStore,
    DuplicateKeyError,
    matches_filter,
    new_document_id,
    unique_key_field,
)
from movie_aggregator.utils.config import get_settings

logger = logging.getLogger(__name__)

# Scalar identity paths with an expression index; matches_filter still runs
# on every row, so these clauses only narrow the scan.
INDEXED_PATHS = ("tmdb.id", "tmdb.type", "imdb.id", "tmdb_person_id")
PUSHDOWN_PATHS = set(INDEXED_PATHS) | {"id"}


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def _path_sql(path: str) -> str:
    if path == "id":
        return "id"
    return f"json_extract(doc, '$.{path}')"


def _indexed_conditions(filter: Optional[Dict[str, Any]]) -> Tuple[List[str], List[Any]]:
    """SQL clauses for the parts of a filter that hit indexed paths"""
    clauses: List[str] = []
    params: List[Any] = []
    for key, condition in (filter or {}).items():
        if key == "$or":
            # {"$or": [{path: a}, {path: b}]} on one indexed path -> IN (...)
            branches = [next(iter(sub.items())) for sub in condition if isinstance(sub, dict) and len(sub) == 1]
            paths = {path for path, _ in branches}
            values = [value for _, value in branches]
            if (branches and len(branches) == len(condition) and len(paths) == 1
                    and paths <= PUSHDOWN_PATHS and all(_is_scalar(v) for v in values)):
                clauses.append(f"{_path_sql(paths.pop())} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            continue
        if key in PUSHDOWN_PATHS and _is_scalar(condition):
            clauses.append(f"{_path_sql(key)} = ?")
            params.append(condition)
    return clauses, params


class SQLiteDocumentStore(DocumentStore):
    """SQLite implementation of DocumentStore"""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = Path(db_path or get_settings().database_path)
        self.init_db()

    @contextmanager
    def get_connection(self):
        """Get a database connection as context manager"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Initialize database with schema"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    unique_key TEXT,
                    doc TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, id),
                    UNIQUE (collection, unique_key)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_collection
                ON documents(collection)
            """)
            for path in INDEXED_PATHS:
                name = path.replace(".", "_")
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_documents_{name}
                    ON documents(collection, json_extract(doc, '$.{path}'))
                """)

    # Sync primitives, run in a worker thread by the async methods

    def _select(self, conn, collection: str, filter: Optional[Dict[str, Any]]) -> List[dict]:
        key_field = unique_key_field(collection)
        key_value = (filter or {}).get(key_field)
        if isinstance(key_value, str):
            rows = conn.execute(
                "SELECT doc FROM documents WHERE collection = ? AND unique_key = ?",
                (collection, key_value),
            ).fetchall()
        else:
            where, params = _indexed_conditions(filter)
            rows = conn.execute(
                "SELECT doc FROM documents WHERE collection = ?"
                + "".join(f" AND {clause}" for clause in where)
                + " ORDER BY created_at, rowid",
                (collection, *params),
            ).fetchall()
        docs = [json.loads(row["doc"]) for row in rows]
        return [doc for doc in docs if matches_filter(doc, filter)]

    def _insert(self, conn, collection: str, doc: Dict[str, Any]) -> dict:
        doc = dict(doc)
        doc.setdefault("id", new_document_id())
        key = doc.get(unique_key_field(collection))
        try:
            conn.execute(
                "INSERT INTO documents (collection, id, unique_key, doc) VALUES (?, ?, ?, ?)",
                (collection, doc["id"], key, json.dumps(doc, ensure_ascii=False, default=str)),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateKeyError(collection, key or doc["id"]) from e
        return doc

    def _find_sync(self, collection, filter, limit) -> List[dict]:
        with self.get_connection() as conn:
            docs = self._select(conn, collection, filter)
        return docs[:limit] if limit else docs

    def _update_sync(self, collection, filter, patch) -> Optional[dict]:
        with self.get_connection() as conn:
            docs = self._select(conn, collection, filter)
            if not docs:
                return None
            doc = {**docs[0], **patch, "id": docs[0]["id"]}
            key = doc.get(unique_key_field(collection))
            try:
                conn.execute(
                    "UPDATE documents SET unique_key = ?, doc = ? WHERE collection = ? AND id = ?",
                    (key, json.dumps(doc, ensure_ascii=False, default=str), collection, doc["id"]),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateKeyError(collection, key) from e
            return doc

    def _create_sync(self, collection, docs) -> List[dict]:
        with self.get_connection() as conn:
            return [self._insert(conn, collection, doc) for doc in docs]

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
