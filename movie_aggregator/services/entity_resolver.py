"""Deduplicating upsert of people and taxonomy referenced by a movie"""

import asyncio
import logging
from typing import Awaitable, Dict, List, Optional

from pydantic import BaseModel

from movie_aggregator.db.base import (
    ACTORS,
    CATEGORIES,
    DIRECTORS,
    REGIONS,
    DocumentStore,
    DuplicateKeyError,
    new_document_id,
)
from movie_aggregator.models.movie import EntityReference
from movie_aggregator.models.source import MovieCredits, PersonCredit, RawMovieRecord, TaxonomyRef
from movie_aggregator.services.tmdb import TmdbClient
from movie_aggregator.utils.vietnamese import make_slug

logger = logging.getLogger(__name__)


class ResolvedEntities(BaseModel):
    actors: List[str] = []
    directors: List[str] = []
    categories: List[str] = []
    countries: List[str] = []


def _unique(ids: List[Optional[str]]) -> List[str]:
    seen = set()
    result = []
    for entity_id in ids:
        if entity_id and entity_id not in seen:
            seen.add(entity_id)
            result.append(entity_id)
    return result


class EntityResolver:
    """Resolves actors, directors, categories and regions to document ids.

    People are matched by rating-database person id first (one batched
    lookup), then by slug. A slug already owned by a different person id
    gets a `-t-<id>` suffixed sibling instead of being overwritten.
    """

    def __init__(self, store: DocumentStore, tmdb: Optional[TmdbClient] = None):
        self.store = store
        self.tmdb = tmdb

    async def resolve(self, raw: RawMovieRecord) -> ResolvedEntities:
        credits = await self._fetch_credits(raw)
        actors, directors, categories, countries = await asyncio.gather(
            self._guarded(ACTORS, raw.slug, self.resolve_actors(credits, raw.actors)),
            self._guarded(DIRECTORS, raw.slug, self.resolve_directors(credits, raw.directors)),
            self._guarded(CATEGORIES, raw.slug, self.resolve_taxonomy(CATEGORIES, raw.categories)),
            self._guarded(REGIONS, raw.slug, self.resolve_taxonomy(REGIONS, raw.countries)),
        )
        return ResolvedEntities(
            actors=actors,
            directors=directors,
            categories=categories,
            countries=countries,
        )

    async def _guarded(self, collection: str, slug: str, resolving: Awaitable[List[str]]) -> List[str]:
        """A failing entity kind resolves to no ids instead of failing the movie"""
        try:
            return await resolving
        except Exception as e:
            logger.error(f"Error resolving {collection} for {slug}: {e}")
            return []

    async def _fetch_credits(self, raw: RawMovieRecord) -> Optional[MovieCredits]:
        if self.tmdb is None or raw.tmdb is None or not raw.tmdb.id:
            return None
        try:
            return await self.tmdb.get_credits(raw.tmdb)
        except Exception as e:
            logger.error(f"Error fetching credits for {raw.slug} (tmdb {raw.tmdb.id}): {e}")
            return None

    # People

    async def resolve_actors(self, credits: Optional[MovieCredits], names: List[str]) -> List[str]:
        if credits is not None and credits.cast:
            try:
                ids = await self._resolve_credits(ACTORS, credits.cast)
                if ids:
                    return ids
            except Exception as e:
                logger.error(f"Error resolving credited actors: {e}")
        return await self._resolve_names(ACTORS, names, "actor")

    async def resolve_directors(self, credits: Optional[MovieCredits], names: List[str]) -> List[str]:
        if credits is not None and credits.crew:
            directors = [c for c in credits.crew if (c.job or "").lower() == "director"]
            if directors:
                try:
                    ids = await self._resolve_credits(DIRECTORS, directors)
                    if ids:
                        return ids
                except Exception as e:
                    logger.error(f"Error resolving credited directors: {e}")
        return await self._resolve_names(DIRECTORS, names, "director")

    def _person_doc(self, credit: PersonCredit, slug: str) -> dict:
        image = self.tmdb.image_url(credit.profile_path) if self.tmdb else None
        return EntityReference(
            id=new_document_id(),
            name=credit.name,
            slug=slug,
            tmdb_person_id=credit.id,
            original_name=credit.original_name or credit.name,
            thumb_url=image,
            known_for_department=credit.known_for_department,
        ).model_dump()

    async def _resolve_credits(self, collection: str, credits: List[PersonCredit]) -> List[str]:
        # Same person can be credited twice (e.g. two characters)
        unique_credits: Dict[int, PersonCredit] = {}
        for credit in credits:
            unique_credits.setdefault(credit.id, credit)

        existing = await self.store.find(
            collection,
            {"$or": [{"tmdb_person_id": person_id} for person_id in unique_credits]},
        )
        by_person: Dict[int, str] = {
            doc["tmdb_person_id"]: doc["id"] for doc in existing if doc.get("tmdb_person_id") is not None
        }

        remaining = [c for pid, c in unique_credits.items() if pid not in by_person]
        slugs = {c.id: make_slug(c.name, fallback=f"t-{c.id}") for c in remaining}
        by_slug: Dict[str, dict] = {}
        if slugs:
            found = await self.store.find(collection, {"$or": [{"slug": s} for s in set(slugs.values())]})
            by_slug = {doc["slug"]: doc for doc in found}

        for credit in remaining:
            try:
                by_person[credit.id] = await self._upsert_person(
                    collection, credit, slugs[credit.id], by_slug.get(slugs[credit.id])
                )
            except Exception as e:
                logger.error(f"Error resolving {collection} '{credit.name}' (tmdb {credit.id}): {e}")

        return _unique([by_person.get(c.id) for c in credits])

    async def _upsert_person(
        self,
        collection: str,
        credit: PersonCredit,
        slug: str,
        existing: Optional[dict],
        attempts: int = 2,
    ) -> str:
        if existing is not None:
            owner = existing.get("tmdb_person_id")
            if owner is None:
                patch = {"tmdb_person_id": credit.id}
                image = self.tmdb.image_url(credit.profile_path) if self.tmdb else None
                if image:
                    patch["thumb_url"] = image
                await self.store.find_one_and_update(collection, {"id": existing["id"]}, patch)
                logger.debug(f"Enriched {collection} '{slug}' with tmdb {credit.id}")
                return existing["id"]
            if owner == credit.id:
                return existing["id"]
            # Different person already owns this slug
            slug = f"{slug}-t-{credit.id}"
            existing = await self.store.find_one(collection, {"slug": slug})
            if existing is not None:
                return existing["id"]

        try:
            created = await self.store.create(collection, self._person_doc(credit, slug))
            logger.debug(f"Created {collection} '{slug}' (tmdb {credit.id})")
            return created["id"]
        except DuplicateKeyError:
            if attempts <= 0:
                raise
            # Lost a create race: re-read and apply the same rules
            winner = await self.store.find_one(collection, {"slug": slug})
            if winner is None:
                raise
            return await self._upsert_person(collection, credit, slug, winner, attempts - 1)

    async def _resolve_names(self, collection: str, names: List[str], prefix: str) -> List[str]:
        valid = [n.strip() for n in names or [] if isinstance(n, str) and n.strip()]
        if not valid:
            return []

        slugs = [make_slug(name, fallback=f"{prefix}-{new_document_id()}") for name in valid]
        existing = await self.store.find(collection, {"slug": {"$in": slugs}})
        by_slug: Dict[str, str] = {doc["slug"]: doc["id"] for doc in existing}

        to_create: Dict[str, dict] = {}
        for name, slug in zip(valid, slugs):
            if slug not in by_slug and slug not in to_create:
                to_create[slug] = EntityReference(
                    id=new_document_id(), name=name, slug=slug, original_name=name
                ).model_dump()

        if to_create:
            try:
                created = await self.store.insert_many(collection, list(to_create.values()))
                by_slug.update({doc["slug"]: doc["id"] for doc in created})
            except DuplicateKeyError:
                # Concurrent crawl created some of them; fall back to one at a time
                for slug, doc in to_create.items():
                    try:
                        by_slug[slug] = await self._find_or_create(collection, doc)
                    except Exception as e:
                        logger.error(f"Error resolving {collection} '{doc['name']}': {e}")

        return _unique([by_slug.get(slug) for slug in slugs])

    # Taxonomy

    async def _find_or_create(self, collection: str, doc: dict) -> str:
        existing = await self.store.find_one(collection, {"slug": doc["slug"]})
        if existing is not None:
            return existing["id"]
        try:
            created = await self.store.create(collection, doc)
            return created["id"]
        except DuplicateKeyError:
            existing = await self.store.find_one(collection, {"slug": doc["slug"]})
            if existing is None:
                raise
            return existing["id"]

    async def resolve_taxonomy(self, collection: str, refs: List[TaxonomyRef]) -> List[str]:
        """Categories/regions: find by slug, else create"""
        docs: Dict[str, dict] = {}
        for ref in refs or []:
            name = (ref.name or "").strip()
            if not name:
                continue
            slug = ref.slug or make_slug(name)
            docs.setdefault(slug, EntityReference(id=new_document_id(), name=name, slug=slug).model_dump())

        ids = []
        for slug, doc in docs.items():
            try:
                ids.append(await self._find_or_create(collection, doc))
            except Exception as e:
                logger.error(f"Error resolving {collection} '{slug}': {e}")
        return _unique(ids)
