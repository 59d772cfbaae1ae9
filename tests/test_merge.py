"""Tests for the merge engine"""

import asyncio
from datetime import datetime, timedelta, timezone

from conftest import FakeTmdb, MemoryDocumentStore, make_raw
from movie_aggregator.db.base import MOVIES
from movie_aggregator.models.crawler import MergeOutcome
from movie_aggregator.models.movie import Episode, EpisodeServerData, ImdbRef, TmdbRef
from movie_aggregator.services.entity_resolver import EntityResolver
from movie_aggregator.services.merge import MergeEngine, merge_episodes
from movie_aggregator.utils.mapping import parse_int

MODIFIED = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _engine(store=None, tmdb=None):
    store = store or MemoryDocumentStore()
    return store, MergeEngine(store, EntityResolver(store, tmdb))


def _episode(origin, server, *slugs):
    return Episode(
        origin_src=origin,
        server_name=server,
        server_data=[EpisodeServerData(name=s, slug=s) for s in slugs],
    )


def test_create_then_skip_unchanged():
    store, engine = _engine()

    async def run():
        first = await engine.merge(make_raw("movie-a"))
        second = await engine.merge(make_raw("movie-a"))
        return first, second

    first, second = asyncio.run(run())

    assert first.outcome == MergeOutcome.CREATED
    assert second.outcome == MergeOutcome.SKIPPED
    assert second.movie_id == first.movie_id
    assert len(store.collections[MOVIES]) == 1


def test_force_update_bypasses_freshness():
    _, engine = _engine()

    async def run():
        await engine.merge(make_raw("movie-a"))
        return await engine.merge(make_raw("movie-a"), force_update=True)

    assert asyncio.run(run()).outcome == MergeOutcome.UPDATED


def test_older_version_is_skipped_and_sync_never_regresses():
    store, engine = _engine()

    async def run():
        await engine.merge(make_raw("movie-a", modified=MODIFIED))
        older = await engine.merge(make_raw("movie-a", modified=MODIFIED - timedelta(days=1)))
        forced = await engine.merge(make_raw("movie-a", modified=MODIFIED - timedelta(days=2)), force_update=True)
        return older, forced

    older, forced = asyncio.run(run())

    assert older.outcome == MergeOutcome.SKIPPED
    assert forced.outcome == MergeOutcome.UPDATED
    doc = store.collections[MOVIES][0]
    assert doc["last_sync_modified"]["fake"].startswith("2024-05-01")


def test_sources_tracked_separately():
    store, engine = _engine()

    async def run():
        await engine.merge(make_raw("movie-a", origin_src="ophim"))
        return await engine.merge(make_raw("movie-a", origin_src="kkphim"))

    result = asyncio.run(run())

    assert result.outcome == MergeOutcome.UPDATED
    doc = store.collections[MOVIES][0]
    assert set(doc["last_sync_modified"]) == {"ophim", "kkphim"}
    assert [e["origin_src"] for e in doc["episodes"]] == ["ophim", "kkphim"]


def test_field_policy():
    store, engine = _engine()
    later = MODIFIED + timedelta(hours=1)

    async def run():
        await engine.merge(make_raw(
            "movie-a", quality="FHD", view=500, origin_name="Movie A", year=2024, status="ongoing",
        ))
        await engine.merge(make_raw("movie-a", modified=later, quality="HD", view=10, status="completed"))

    asyncio.run(run())

    doc = store.collections[MOVIES][0]
    assert doc["quality"] == "fhd"
    assert doc["view"] == 500
    assert doc["origin_name"] == "Movie A"
    assert doc["year"] == 2024
    assert doc["status"] == "completed"


def test_identity_by_rating_reference_then_imdb():
    store, engine = _engine()

    async def run():
        first = await engine.merge(make_raw("movie-a", tmdb=TmdbRef(type="movie", id="550")))
        renamed = await engine.merge(make_raw(
            "movie-a-2024", origin_src="kkphim", tmdb=TmdbRef(type="movie", id="550"),
        ))
        other_type = await engine.merge(make_raw("show-a", tmdb=TmdbRef(type="tv", id="550")))
        by_imdb_1 = await engine.merge(make_raw("movie-b", imdb=ImdbRef(id="tt001")))
        by_imdb_2 = await engine.merge(make_raw("movie-b-alt", origin_src="nguonc", imdb=ImdbRef(id="tt001")))
        return first, renamed, other_type, by_imdb_1, by_imdb_2

    first, renamed, other_type, by_imdb_1, by_imdb_2 = asyncio.run(run())

    assert renamed.movie_id == first.movie_id
    # Existing slug is kept
    assert renamed.slug == "movie-a"
    assert other_type.movie_id != first.movie_id
    assert by_imdb_2.movie_id == by_imdb_1.movie_id
    assert len(store.collections[MOVIES]) == 3


def test_source_id_kept_when_native_format():
    _, engine = _engine()
    native = "5f0c1e2d3c4b5a6978695a4b"

    async def run():
        kept = await engine.merge(make_raw("movie-a", source_id=native.upper()))
        minted = await engine.merge(make_raw("movie-b", source_id="12345"))
        return kept, minted

    kept, minted = asyncio.run(run())

    assert kept.movie_id == native
    assert minted.movie_id != "12345"
    assert len(minted.movie_id) == 24


def test_merge_episodes_union():
    existing = [_episode("ophim", "Vietsub #1", "tap-01", "tap-02")]
    incoming = [
        _episode("ophim", "Vietsub #1", "tap-02", "tap-03"),
        _episode("ophim", "Thuyết Minh #1", "tap-01"),
    ]

    merged = merge_episodes(existing, incoming)

    assert [(e.server_name, [d.slug for d in e.server_data]) for e in merged] == [
        ("Vietsub #1", ["tap-01", "tap-02", "tap-03"]),
        ("Thuyết Minh #1", ["tap-01"]),
    ]
    # Inputs untouched
    assert [d.slug for d in existing[0].server_data] == ["tap-01", "tap-02"]


def test_update_after_external_delete_recreates():
    store, engine = _engine()

    async def run():
        await engine.merge(make_raw("movie-a"))
        existing = await engine.find_existing(make_raw("movie-a"))
        store.collections[MOVIES].clear()
        entities = await engine.resolver.resolve(make_raw("movie-a"))
        return await engine._save(make_raw("movie-a"), existing, entities)

    result = asyncio.run(run())

    assert result.outcome == MergeOutcome.CREATED
    assert len(store.collections[MOVIES]) == 1


def test_negative_view_is_clamped():
    store, engine = _engine()

    asyncio.run(engine.merge(make_raw("movie-a", view=parse_int("-42"))))

    assert store.collections[MOVIES][0]["view"] == 0


def test_imdb_id_finds_rating_reference():
    found = TmdbRef(type="movie", id="27205", vote_average=8.4)
    store, engine = _engine(tmdb=FakeTmdb(found=found))

    asyncio.run(engine.merge(make_raw("inception", imdb=ImdbRef(id="tt1375666"), thumb_url="t", poster_url="p")))

    doc = store.collections[MOVIES][0]
    assert doc["tmdb"]["id"] == "27205"
    assert doc["imdb"]["id"] == "tt1375666"


def test_rating_reference_fills_imdb_id_and_missing_images():
    tmdb = FakeTmdb(
        external=ImdbRef(id="tt0137523"),
        images={"thumb_url": "https://image.tmdb.test/b.jpg", "poster_url": "https://image.tmdb.test/p.jpg"},
    )
    store, engine = _engine(tmdb=tmdb)

    asyncio.run(engine.merge(make_raw(
        "fight-club", tmdb=TmdbRef(type="movie", id="550"), thumb_url="https://src.test/thumb.jpg",
    )))

    doc = store.collections[MOVIES][0]
    assert doc["imdb"]["id"] == "tt0137523"
    # Source artwork kept, only the missing poster comes from the rating database
    assert doc["thumb_url"] == "https://src.test/thumb.jpg"
    assert doc["poster_url"] == "https://image.tmdb.test/p.jpg"
    assert tmdb.lookups == ["external_ids:550", "images:550"]


def test_kkphim_prefers_rating_database_images():
    tmdb = FakeTmdb(images={"thumb_url": "https://image.tmdb.test/b.jpg", "poster_url": None})
    store, engine = _engine(tmdb=tmdb)

    asyncio.run(engine.merge(make_raw(
        "movie-k", origin_src="kkphim", tmdb=TmdbRef(type="movie", id="1"), imdb=ImdbRef(id="tt1"),
        thumb_url="https://src.test/thumb.jpg", poster_url="https://src.test/poster.jpg",
    )))

    doc = store.collections[MOVIES][0]
    assert doc["thumb_url"] == "https://image.tmdb.test/b.jpg"
    assert doc["poster_url"] == "https://src.test/poster.jpg"


def test_found_reference_matches_existing_record():
    store, engine = _engine()

    async def run():
        first = await engine.merge(make_raw("inception", tmdb=TmdbRef(type="movie", id="27205")))
        engine.resolver.tmdb = FakeTmdb(found=TmdbRef(type="movie", id="27205"))
        second = await engine.merge(make_raw(
            "inception-2010", origin_src="nguonc", imdb=ImdbRef(id="tt1375666"), thumb_url="t", poster_url="p",
        ))
        return first, second

    first, second = asyncio.run(run())

    assert second.outcome == MergeOutcome.UPDATED
    assert second.movie_id == first.movie_id
    assert len(store.collections[MOVIES]) == 1


def test_lookup_failure_keeps_record_as_fetched():
    tmdb = FakeTmdb(lookup_error=RuntimeError("TMDB down"))
    store, engine = _engine(tmdb=tmdb)

    result = asyncio.run(engine.merge(make_raw("movie-x", imdb=ImdbRef(id="tt9"), thumb_url="t", poster_url="p")))

    assert result.outcome == MergeOutcome.CREATED
    doc = store.collections[MOVIES][0]
    assert doc["tmdb"] is None
    assert doc["imdb"]["id"] == "tt9"
