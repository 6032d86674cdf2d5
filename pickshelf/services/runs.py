"""Persistence of recommendation runs and their selected candidates."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Episode, MediaItem, RecommendationCandidate, RecommendationRun
from ..models import (
    ActorCredit,
    EpisodeMetadata,
    ItemMetadata,
    RunSelection,
    RunStatus,
    SelectedCandidate,
    TasteDefinition,
)
from ..utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunRecord:
    id: str
    channel_id: str
    owner_id: str
    media_type: str
    status: RunStatus
    created_at: datetime


class RunStore:
    """Append-only history of candidate generations per channel."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, taste: TasteDefinition) -> RunRecord:
        now = utcnow()
        run = RecommendationRun(
            id=uuid.uuid4().hex,
            channel_id=taste.channel_id,
            owner_id=taste.owner_id,
            media_type=taste.media_type,
            status="running",
            created_at=now,
        )
        async with self._session_factory() as session:
            session.add(run)
            await session.commit()
        return RunRecord(
            id=run.id,
            channel_id=run.channel_id,
            owner_id=run.owner_id,
            media_type=run.media_type,
            status="running",
            created_at=now,
        )

    async def complete(
        self, run_id: str, selected: Sequence[SelectedCandidate]
    ) -> None:
        """Store the selection and close the run in one transaction."""

        async with self._session_factory() as session:
            for candidate in selected:
                session.add(
                    RecommendationCandidate(
                        run_id=run_id,
                        item_id=candidate.item_id,
                        rank=candidate.rank,
                        score=candidate.score,
                        is_selected=candidate.is_selected,
                    )
                )
            await self._set_status(session, run_id, "completed")
            await session.commit()

    async def fail(self, run_id: str, error: str) -> None:
        async with self._session_factory() as session:
            await self._set_status(session, run_id, "failed", error=error)
            await session.commit()

    async def cancel(self, run_id: str) -> None:
        async with self._session_factory() as session:
            await self._set_status(session, run_id, "cancelled")
            await session.commit()

    @staticmethod
    async def _set_status(
        session: AsyncSession,
        run_id: str,
        status: RunStatus,
        *,
        error: str | None = None,
    ) -> None:
        await session.execute(
            update(RecommendationRun)
            .where(
                RecommendationRun.id == run_id,
                RecommendationRun.status == "running",
            )
            .values(status=status, error=error, completed_at=utcnow())
        )

    async def get(self, run_id: str) -> RunRecord | None:
        async with self._session_factory() as session:
            run = await session.get(RecommendationRun, run_id)
            if run is None:
                return None
            return RunRecord(
                id=run.id,
                channel_id=run.channel_id,
                owner_id=run.owner_id,
                media_type=run.media_type,
                status=run.status,  # type: ignore[arg-type]
                created_at=run.created_at,
            )

    async def latest_selection(self, channel_id: str) -> RunSelection | None:
        """Selected candidates and their metadata from the newest completed run."""

        async with self._session_factory() as session:
            run = (
                await session.execute(
                    select(RecommendationRun)
                    .where(
                        RecommendationRun.channel_id == channel_id,
                        RecommendationRun.status == "completed",
                    )
                    .order_by(RecommendationRun.created_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            if run is None:
                return None

            rows = (
                await session.execute(
                    select(RecommendationCandidate, MediaItem)
                    .join(MediaItem, MediaItem.id == RecommendationCandidate.item_id)
                    .where(
                        RecommendationCandidate.run_id == run.id,
                        RecommendationCandidate.is_selected.is_(True),
                    )
                    .order_by(RecommendationCandidate.rank)
                )
            ).all()

            episodes_by_series: dict[str, list[Episode]] = {}
            series_ids = [item.id for _, item in rows if item.media_type == "series"]
            if series_ids:
                episode_rows = (
                    await session.execute(
                        select(Episode)
                        .where(Episode.series_id.in_(series_ids))
                        .order_by(
                            Episode.series_id,
                            Episode.season_number,
                            Episode.episode_number,
                        )
                    )
                ).scalars()
                for episode in episode_rows:
                    episodes_by_series.setdefault(episode.series_id, []).append(
                        episode
                    )

        candidates: list[SelectedCandidate] = []
        metadata: dict[str, ItemMetadata] = {}
        for candidate, item in rows:
            candidates.append(
                SelectedCandidate(
                    item_id=item.id,
                    external_item_id=item.provider_item_id,
                    title=item.title,
                    year=item.year,
                    score=candidate.score,
                    rank=candidate.rank,
                    is_selected=candidate.is_selected,
                )
            )
            metadata[item.id] = _item_metadata(
                item, episodes_by_series.get(item.id, [])
            )
        return RunSelection(
            run_id=run.id,
            created_at=run.created_at,
            candidates=candidates,
            metadata=metadata,
        )


def _item_metadata(item: MediaItem, episodes: list[Episode]) -> ItemMetadata:
    actors: list[ActorCredit] = []
    for entry in item.actors or []:
        if isinstance(entry, dict) and entry.get("name"):
            actors.append(
                ActorCredit(
                    name=str(entry["name"]),
                    role=entry.get("role") or None,
                    thumb=entry.get("thumb") or None,
                )
            )
        elif isinstance(entry, str) and entry.strip():
            actors.append(ActorCredit(name=entry.strip()))

    return ItemMetadata(
        item_id=item.id,
        external_item_id=item.provider_item_id,
        media_type="series" if item.media_type == "series" else "movie",
        title=item.title,
        year=item.year,
        original_title=item.original_title,
        sort_title=item.sort_title,
        premiere_date=item.premiere_date,
        path=item.path,
        overview=item.overview,
        tagline=item.tagline,
        community_rating=item.community_rating,
        critic_rating=item.critic_rating,
        content_rating=item.content_rating,
        runtime_minutes=item.runtime_minutes,
        genres=list(item.genres or []),
        studios=list(item.studios or []),
        directors=list(item.directors or []),
        writers=list(item.writers or []),
        actors=actors,
        tags=list(item.tags or []),
        production_countries=list(item.production_countries or []),
        network=item.network,
        status=item.status,
        poster_url=item.poster_url,
        backdrop_url=item.backdrop_url,
        episodes=[
            EpisodeMetadata(
                episode_id=episode.id,
                external_item_id=episode.provider_item_id,
                season_number=episode.season_number,
                episode_number=episode.episode_number,
                title=episode.title,
                overview=episode.overview,
                premiere_date=episode.premiere_date,
                runtime_minutes=episode.runtime_minutes,
                path=episode.path,
            )
            for episode in episodes
        ],
    )
