"""Reconciles a fetched RawMovieRecord with the canonical movie document"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from movie_aggregator.db.base import (
    MOVIES,
    DocumentStore,
    DuplicateKeyError,
    coerce_document_id,
    new_document_id,
)
from movie_aggregator.models.crawler import MergeOutcome, MergeResult
from movie_aggregator.models.movie import Episode, MovieRecord
from movie_aggregator.models.source import RawMovieRecord
from movie_aggregator.services.entity_resolver import EntityResolver, ResolvedEntities
from movie_aggregator.utils.mapping import (
    best_quality,
    convert_to_vietnamese_time,
    map_language,
    map_movie_type,
    map_quality,
    map_status,
    strip_html,
)
from movie_aggregator.utils.vietnamese import make_slug, normalize_movie_slug

logger = logging.getLogger(__name__)

# Sources whose own artwork is replaced by rating-database images
PREFER_TMDB_IMAGES = {"kkphim"}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def merge_episodes(existing: List[Episode], incoming: List[Episode]) -> List[Episode]:
    """Union episode groups keyed by (origin_src, server_name).

    Known groups only gain server entries whose slug they do not hold yet;
    unknown groups are appended whole. Existing order is preserved.
    """
    merged = [group.model_copy(deep=True) for group in existing]
    index: Dict[tuple, Episode] = {(g.origin_src, g.server_name): g for g in merged}

    for group in incoming:
        key = (group.origin_src, group.server_name)
        target = index.get(key)
        if target is None:
            target = Episode(origin_src=group.origin_src, server_name=group.server_name)
            merged.append(target)
            index[key] = target
        seen = {item.slug for item in target.server_data}
        for item in group.server_data:
            if item.slug not in seen:
                target.server_data.append(item.model_copy())
                seen.add(item.slug)

    return merged


def is_fresh(existing: Optional[MovieRecord], raw: RawMovieRecord) -> bool:
    """True when the canonical record already holds this source's version"""
    if existing is None:
        return False
    synced = _as_utc(existing.last_sync_modified.get(raw.origin_src))
    incoming = _as_utc(raw.modified)
    if synced is None or incoming is None:
        return False
    return synced >= incoming


def build_record(
    raw: RawMovieRecord,
    existing: Optional[MovieRecord],
    entities: ResolvedEntities,
    now: Optional[datetime] = None,
) -> MovieRecord:
    """Field policy: incoming value, else existing. Quality keeps the better
    rank, view keeps the maximum, last-sync is per source and never regresses."""
    now = now or datetime.now(timezone.utc)
    modified = _as_utc(raw.modified) or now

    last_sync = dict(existing.last_sync_modified) if existing else {}
    previous = _as_utc(last_sync.get(raw.origin_src))
    last_sync[raw.origin_src] = max(previous, modified) if previous else modified

    def pick(incoming, current):
        return incoming if incoming not in (None, "", []) else current

    if existing is not None:
        record_id = existing.id
        slug = existing.slug
    else:
        record_id = coerce_document_id(raw.source_id) or new_document_id()
        slug = normalize_movie_slug(raw.slug) or make_slug(raw.name)

    base = existing or MovieRecord(id=record_id, name=raw.name, slug=slug)
    return MovieRecord(
        id=record_id,
        name=pick(raw.name, base.name),
        slug=slug,
        origin_name=pick(raw.origin_name, base.origin_name),
        content=pick(strip_html(raw.content), base.content),
        type=pick(map_movie_type(raw.type), base.type),
        status=map_status(raw.status) if raw.status else base.status,
        poster_url=pick(raw.poster_url, base.poster_url),
        thumb_url=pick(raw.thumb_url, base.thumb_url),
        trailer_url=pick(raw.trailer_url, base.trailer_url),
        time=convert_to_vietnamese_time(raw.time) if raw.time else (base.time or convert_to_vietnamese_time(None)),
        episode_current=pick(raw.episode_current, base.episode_current),
        episode_total=pick(raw.episode_total, base.episode_total),
        quality=best_quality(base.quality, map_quality(raw.quality)),
        lang=pick(map_language(raw.lang), base.lang),
        year=pick(raw.year, base.year),
        view=max(raw.view or 0, base.view or 0, 0),
        actors=pick(entities.actors, base.actors),
        directors=pick(entities.directors, base.directors),
        categories=pick(entities.categories, base.categories),
        countries=pick(entities.countries, base.countries),
        tmdb=raw.tmdb or base.tmdb,
        imdb=raw.imdb or base.imdb,
        episodes=merge_episodes(base.episodes if existing else [], raw.episodes),
        last_sync_modified=last_sync,
        created_at=base.created_at or now,
        updated_at=now,
    )


class MergeEngine:
    """Looks up, reconciles and persists one fetched record."""

    def __init__(self, store: DocumentStore, resolver: EntityResolver):
        self.store = store
        self.resolver = resolver

    async def find_existing(self, raw: RawMovieRecord) -> Optional[MovieRecord]:
        """Identity: rating-database id + type, then external-database id, then slug"""
        doc = None
        if raw.tmdb and raw.tmdb.id and raw.tmdb.type:
            doc = await self.store.find_one(MOVIES, {"tmdb.id": raw.tmdb.id, "tmdb.type": raw.tmdb.type})
        if doc is None and raw.imdb and raw.imdb.id:
            doc = await self.store.find_one(MOVIES, {"imdb.id": raw.imdb.id})
        if doc is None:
            slug = normalize_movie_slug(raw.slug)
            if slug:
                doc = await self.store.find_one(MOVIES, {"slug": slug})
        return MovieRecord.model_validate(doc) if doc else None

    async def enrich_external(self, raw: RawMovieRecord) -> RawMovieRecord:
        """Fill rating/external ids and artwork from the rating database.

        An IMDb id finds the TMDB reference, a TMDB reference finds the IMDb
        id. Images fill missing artwork, and replace it for sources listed in
        PREFER_TMDB_IMAGES. Lookup failures leave the record as fetched.
        """
        tmdb_client = self.resolver.tmdb
        if tmdb_client is None or not tmdb_client.enabled:
            return raw

        changes = {}
        tmdb, imdb = raw.tmdb, raw.imdb
        try:
            if imdb and imdb.id and not (tmdb and tmdb.id):
                tmdb = await tmdb_client.find_by_imdb_id(imdb.id)
                if tmdb is not None:
                    changes["tmdb"] = tmdb
            elif tmdb and tmdb.id and not (imdb and imdb.id):
                imdb = await tmdb_client.get_external_ids(tmdb)
                if imdb is not None:
                    changes["imdb"] = imdb
        except Exception as e:
            logger.error(f"[{raw.origin_src}] Error processing external ids for {raw.slug}: {e}")

        prefer_tmdb = raw.origin_src in PREFER_TMDB_IMAGES
        if tmdb and tmdb.id and (prefer_tmdb or not raw.thumb_url or not raw.poster_url):
            try:
                images = await tmdb_client.get_images(tmdb) or {}
            except Exception as e:
                logger.error(f"[{raw.origin_src}] Error fetching images for {raw.slug}: {e}")
                images = {}
            for field in ("thumb_url", "poster_url"):
                current = getattr(raw, field)
                found = images.get(field)
                if found and (prefer_tmdb or not current):
                    changes[field] = found

        return raw.model_copy(update=changes) if changes else raw

    async def merge(self, raw: RawMovieRecord, force_update: bool = False) -> MergeResult:
        existing = await self.find_existing(raw)

        if not force_update and is_fresh(existing, raw):
            logger.debug(f"[{raw.origin_src}] {raw.slug} is up to date, skipping")
            return MergeResult(outcome=MergeOutcome.SKIPPED, slug=existing.slug, movie_id=existing.id)

        enriched = await self.enrich_external(raw)
        if existing is None and enriched is not raw:
            # New ids may match a record stored under another slug
            existing = await self.find_existing(enriched)
            if not force_update and is_fresh(existing, enriched):
                return MergeResult(outcome=MergeOutcome.SKIPPED, slug=existing.slug, movie_id=existing.id)
        raw = enriched

        entities = await self.resolver.resolve(raw)
        return await self._save(raw, existing, entities)

    async def _save(
        self,
        raw: RawMovieRecord,
        existing: Optional[MovieRecord],
        entities: ResolvedEntities,
        retry_on_conflict: bool = True,
    ) -> MergeResult:
        record = build_record(raw, existing, entities)
        doc = record.model_dump(mode="json")

        if existing is not None:
            updated = await self.store.find_one_and_update(MOVIES, {"id": existing.id}, doc)
            if updated is None:
                # Removed externally between read and write
                return await self._save(raw, None, entities, retry_on_conflict)
            logger.info(f"[{raw.origin_src}] Updated movie: {record.slug}")
            return MergeResult(outcome=MergeOutcome.UPDATED, slug=record.slug, movie_id=record.id)

        try:
            await self.store.create(MOVIES, doc)
        except DuplicateKeyError:
            if not retry_on_conflict:
                raise
            # Another crawl created it first: re-read and update instead
            logger.warning(f"[{raw.origin_src}] Duplicate key creating {record.slug}, re-reading")
            current = await self.store.find_one(MOVIES, {"slug": record.slug})
            if current is None:
                current = await self.store.find_one(MOVIES, {"id": record.id})
            if current is None:
                raise
            return await self._save(raw, MovieRecord.model_validate(current), entities, False)

        logger.info(f"[{raw.origin_src}] Saved new movie: {record.slug}")
        return MergeResult(outcome=MergeOutcome.CREATED, slug=record.slug, movie_id=record.id)
