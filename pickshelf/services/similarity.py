"""Embedding similarity queries and the vector-backed candidate source."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import ItemEmbedding, MediaItem, ParentalRatingValue
from ..models import Candidate, ContentType

logger = logging.getLogger(__name__)

RATING_MAX = 10.0
NEUTRAL_SCORE = 0.5


@dataclass(frozen=True, slots=True)
class CandidateFilters:
    """Hard filters every candidate must satisfy."""

    media_type: ContentType
    genres: frozenset[str] = frozenset()
    rating_ceiling: int | None = None

    def matches_genres(self, item_genres: Iterable[str] | None) -> bool:
        if not self.genres:
            return True
        wanted = {genre.casefold() for genre in self.genres}
        return any(genre.casefold() in wanted for genre in item_genres or ())


@dataclass(slots=True)
class NeighborRow:
    item_id: str
    provider_item_id: str
    title: str
    year: int | None
    distance: float


@dataclass(slots=True)
class RatedRow:
    item_id: str
    provider_item_id: str
    title: str
    year: int | None
    community_rating: float | None


class SimilarityStore:
    """Query capability over stored item embeddings and catalog metadata."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def item_embeddings(self, item_ids: Sequence[str]) -> dict[str, list[float]]:
        if not item_ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(ItemEmbedding.item_id, ItemEmbedding.vector).where(
                    ItemEmbedding.item_id.in_(list(item_ids))
                )
            )
            return {
                item_id: vector for item_id, vector in result.all() if vector
            }

    @staticmethod
    def average_vectors(vectors: Iterable[Sequence[float]]) -> np.ndarray | None:
        """Mean of the given vectors, ignoring any whose dimension disagrees."""

        arrays = [np.asarray(vector, dtype=np.float64) for vector in vectors]
        arrays = [array for array in arrays if array.ndim == 1 and array.size]
        if not arrays:
            return None
        dimension = arrays[0].size
        usable = [array for array in arrays if array.size == dimension]
        return np.mean(np.vstack(usable), axis=0)

    async def nearest_neighbors(
        self, vector: Sequence[float], filters: CandidateFilters, limit: int
    ) -> list[NeighborRow]:
        """Items closest to ``vector`` by cosine distance, nearest first."""

        if limit <= 0:
            return []
        query = np.asarray(vector, dtype=np.float64)
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        stmt = self._filtered(
            select(
                MediaItem.id,
                MediaItem.provider_item_id,
                MediaItem.title,
                MediaItem.year,
                MediaItem.genres,
                ItemEmbedding.vector,
            ).join(ItemEmbedding, ItemEmbedding.item_id == MediaItem.id),
            filters,
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        kept = [
            row
            for row in rows
            if row.vector
            and len(row.vector) == query.size
            and filters.matches_genres(row.genres)
        ]
        if not kept:
            return []

        matrix = np.asarray([row.vector for row in kept], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0.0] = np.inf
        distances = 1.0 - (matrix @ query) / (norms * query_norm)
        # Stable sort keeps catalog order among equidistant items.
        order = np.argsort(distances, kind="stable")[:limit]
        return [
            NeighborRow(
                item_id=kept[index].id,
                provider_item_id=kept[index].provider_item_id,
                title=kept[index].title,
                year=kept[index].year,
                distance=float(distances[index]),
            )
            for index in order
        ]

    async def ranked_by_rating(
        self, filters: CandidateFilters, limit: int
    ) -> list[RatedRow]:
        """Items ordered by community rating, highest first and unrated last."""

        if limit <= 0:
            return []
        stmt = self._filtered(
            select(
                MediaItem.id,
                MediaItem.provider_item_id,
                MediaItem.title,
                MediaItem.year,
                MediaItem.genres,
                MediaItem.community_rating,
            ),
            filters,
        ).order_by(
            MediaItem.community_rating.is_(None),
            MediaItem.community_rating.desc(),
            MediaItem.id,
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        ranked: list[RatedRow] = []
        for row in rows:
            if not filters.matches_genres(row.genres):
                continue
            ranked.append(
                RatedRow(
                    item_id=row.id,
                    provider_item_id=row.provider_item_id,
                    title=row.title,
                    year=row.year,
                    community_rating=row.community_rating,
                )
            )
            if len(ranked) >= limit:
                break
        return ranked

    @staticmethod
    def _filtered(stmt: Select, filters: CandidateFilters) -> Select:
        stmt = stmt.where(MediaItem.media_type == filters.media_type)
        if filters.rating_ceiling is None:
            return stmt
        return stmt.outerjoin(
            ParentalRatingValue,
            ParentalRatingValue.rating_name == MediaItem.content_rating,
        ).where(
            or_(
                MediaItem.content_rating.is_(None),
                func.coalesce(ParentalRatingValue.rating_value, 0)
                <= filters.rating_ceiling,
            )
        )


class VectorCandidateSource:
    """Produce scored candidates from a taste vector or the rating fallback."""

    def __init__(self, store: SimilarityStore):
        self._store = store

    async def find_candidates(
        self,
        taste: Sequence[float] | None,
        filters: CandidateFilters,
        exclude_ids: set[str],
        pool_size: int,
    ) -> list[Candidate]:
        if pool_size <= 0:
            return []
        # Over-fetch so dropping consumed items does not under-fill the pool.
        limit = pool_size + len(exclude_ids)

        if taste is not None:
            try:
                neighbors = await self._store.nearest_neighbors(taste, filters, limit)
            except SQLAlchemyError as exc:
                logger.warning(
                    "Similarity index unavailable, using rating fallback: %s", exc
                )
                neighbors = []
            candidates = [
                Candidate(
                    item_id=row.item_id,
                    external_item_id=row.provider_item_id,
                    title=row.title,
                    year=row.year,
                    score=min(1.0, max(0.0, 1.0 - row.distance)),
                )
                for row in neighbors
                if row.item_id not in exclude_ids
            ]
            if candidates:
                return candidates[:pool_size]

        rated = await self._store.ranked_by_rating(filters, limit)
        return [
            Candidate(
                item_id=row.item_id,
                external_item_id=row.provider_item_id,
                title=row.title,
                year=row.year,
                score=(
                    row.community_rating / RATING_MAX
                    if row.community_rating is not None
                    else NEUTRAL_SCORE
                ),
            )
            for row in rated
            if row.item_id not in exclude_ids
        ][:pool_size]
