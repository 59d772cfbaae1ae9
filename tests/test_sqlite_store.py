"""Tests for the SQLite document store"""

import asyncio

import pytest

from movie_aggregator.db.base import ACTORS, CRAWLER_SETTINGS, MOVIES, DuplicateKeyError
from movie_aggregator.db.sqlite import SQLiteDocumentStore


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteDocumentStore(str(tmp_path / "documents.db"))


def test_create_and_find(sqlite_store):
    async def run():
        created = await sqlite_store.create(MOVIES, {"name": "Mai", "slug": "mai", "tmdb": {"id": "1", "type": "movie"}})
        by_slug = await sqlite_store.find_one(MOVIES, {"slug": "mai"})
        by_path = await sqlite_store.find_one(MOVIES, {"tmdb.id": "1", "tmdb.type": "movie"})
        missing = await sqlite_store.find_one(MOVIES, {"tmdb.id": "1", "tmdb.type": "tv"})
        return created, by_slug, by_path, missing

    created, by_slug, by_path, missing = asyncio.run(run())

    assert len(created["id"]) == 24
    assert by_slug == created
    assert by_path["id"] == created["id"]
    assert missing is None


def test_unique_slug_per_collection(sqlite_store):
    async def run():
        await sqlite_store.create(ACTORS, {"name": "Lý Hải", "slug": "ly-hai"})
        await sqlite_store.create(MOVIES, {"name": "Lý Hải", "slug": "ly-hai"})
        with pytest.raises(DuplicateKeyError):
            await sqlite_store.create(ACTORS, {"name": "Ly Hai", "slug": "ly-hai"})
        return await sqlite_store.count(ACTORS)

    assert asyncio.run(run()) == 1


def test_crawler_settings_unique_by_name(sqlite_store):
    async def run():
        await sqlite_store.create(CRAWLER_SETTINGS, {"name": "ophim", "host": "https://a"})
        with pytest.raises(DuplicateKeyError):
            await sqlite_store.create(CRAWLER_SETTINGS, {"name": "ophim", "host": "https://b"})

    asyncio.run(run())


def test_find_operators(sqlite_store):
    async def run():
        await sqlite_store.insert_many(ACTORS, [
            {"name": "A", "slug": "a", "tmdb_person_id": 1},
            {"name": "B", "slug": "b", "tmdb_person_id": 2},
            {"name": "C", "slug": "c"},
        ])
        in_result = await sqlite_store.find(ACTORS, {"slug": {"$in": ["a", "c", "z"]}})
        or_result = await sqlite_store.find(ACTORS, {"$or": [{"tmdb_person_id": 2}, {"slug": "c"}]})
        limited = await sqlite_store.find(ACTORS, {}, limit=2)
        return in_result, or_result, limited

    in_result, or_result, limited = asyncio.run(run())

    assert [d["slug"] for d in in_result] == ["a", "c"]
    assert sorted(d["slug"] for d in or_result) == ["b", "c"]
    assert len(limited) == 2


def test_find_one_and_update(sqlite_store):
    async def run():
        created = await sqlite_store.create(ACTORS, {"name": "A", "slug": "a"})
        await sqlite_store.create(ACTORS, {"name": "B", "slug": "b"})
        updated = await sqlite_store.find_one_and_update(ACTORS, {"id": created["id"]}, {"tmdb_person_id": 5})
        none = await sqlite_store.find_one_and_update(ACTORS, {"slug": "zzz"}, {"name": "Z"})
        with pytest.raises(DuplicateKeyError):
            await sqlite_store.find_one_and_update(ACTORS, {"slug": "a"}, {"slug": "b"})
        return updated, none, await sqlite_store.find_one(ACTORS, {"tmdb_person_id": 5})

    updated, none, reread = asyncio.run(run())

    assert updated["tmdb_person_id"] == 5
    assert updated["name"] == "A"
    assert none is None
    assert reread["slug"] == "a"


def test_insert_many_is_atomic(sqlite_store):
    async def run():
        await sqlite_store.create(ACTORS, {"name": "B", "slug": "b"})
        with pytest.raises(DuplicateKeyError):
            await sqlite_store.insert_many(ACTORS, [{"name": "A", "slug": "a"}, {"name": "B", "slug": "b"}])
        return await sqlite_store.count(ACTORS)

    assert asyncio.run(run()) == 1


def test_identity_lookups_use_indexed_paths(sqlite_store):
    async def run():
        mai = await sqlite_store.create(MOVIES, {"slug": "mai", "tmdb": {"id": "1183905", "type": "movie"}, "imdb": {"id": "tt31"}})
        await sqlite_store.create(MOVIES, {"slug": "lat-mat", "tmdb": {"id": "1183905", "type": "tv"}, "imdb": None})
        await sqlite_store.insert_many(ACTORS, [
            {"name": "A", "slug": "a", "tmdb_person_id": 1},
            {"name": "B", "slug": "b", "tmdb_person_id": "1"},
            {"name": "C", "slug": "c", "tmdb_person_id": 3},
        ])
        return mai, {
            "by_tmdb": await sqlite_store.find(MOVIES, {"tmdb.id": "1183905", "tmdb.type": "movie"}),
            "by_imdb": await sqlite_store.find(MOVIES, {"imdb.id": "tt31"}),
            "by_id": await sqlite_store.find(MOVIES, {"id": mai["id"]}),
            "people": await sqlite_store.find(ACTORS, {"$or": [{"tmdb_person_id": 1}, {"tmdb_person_id": 3}]}),
        }

    mai, found = asyncio.run(run())

    assert [d["slug"] for d in found["by_tmdb"]] == ["mai"]
    assert [d["slug"] for d in found["by_imdb"]] == ["mai"]
    assert [d["id"] for d in found["by_id"]] == [mai["id"]]
    # Person ids compare by type: "1" is not 1
    assert [d["slug"] for d in found["people"]] == ["a", "c"]

    with sqlite_store.get_connection() as conn:
        plan = conn.execute(
            "EXPLAIN QUERY PLAN SELECT doc FROM documents WHERE collection = ? "
            "AND json_extract(doc, '$.tmdb.id') = ?",
            (MOVIES, "1183905"),
        ).fetchall()
    assert any("idx_documents_tmdb_id" in row["detail"] for row in plan)
