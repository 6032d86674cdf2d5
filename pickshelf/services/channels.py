"""Channel taste definitions and the candidate generation pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import Channel, User, WatchHistory
from ..models import SelectedCandidate, TasteDefinition
from .sampler import DiversitySampler
from .similarity import CandidateFilters, SimilarityStore, VectorCandidateSource

logger = logging.getLogger(__name__)


class ChannelNotFoundError(LookupError):
    """Raised when a channel id does not resolve to a stored channel."""

    def __init__(self, channel_id: str):
        super().__init__(f"Channel {channel_id} not found")
        self.channel_id = channel_id


@dataclass(frozen=True, slots=True)
class ChannelRecord:
    """A channel joined with the owner fields the sync engine needs."""

    taste: TasteDefinition
    provider_user_id: str
    owner_display_name: str
    library_name: str | None


class ChannelRepository:
    """Read access to channels and their owners."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load_taste(self, channel_id: str) -> TasteDefinition:
        return (await self.load(channel_id)).taste

    async def load(self, channel_id: str) -> ChannelRecord:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(Channel, User)
                    .join(User, User.id == Channel.owner_id)
                    .where(Channel.id == channel_id)
                )
            ).first()
        if row is None:
            raise ChannelNotFoundError(channel_id)
        channel, owner = row
        return self._to_record(channel, owner)

    async def list_active(self) -> list[ChannelRecord]:
        """Active channels of enabled owners, ordered by owner then channel."""

        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(Channel, User)
                    .join(User, User.id == Channel.owner_id)
                    .where(Channel.is_active.is_(True), User.is_enabled.is_(True))
                    .order_by(Channel.owner_id, Channel.id)
                )
            ).all()
        return [self._to_record(channel, owner) for channel, owner in rows]

    @staticmethod
    def _to_record(channel: Channel, owner: User) -> ChannelRecord:
        media_type = "series" if channel.media_type == "series" else "movie"
        taste = TasteDefinition(
            channel_id=channel.id,
            owner_id=owner.id,
            name=channel.name,
            media_type=media_type,
            genre_filters=frozenset(
                genre.strip() for genre in channel.genre_filters or [] if genre.strip()
            ),
            text_preferences=channel.text_preferences,
            example_item_ids=tuple(channel.example_item_ids or []),
            policy_rating_ceiling=owner.max_parental_rating,
            item_count=channel.item_count,
        )
        return ChannelRecord(
            taste=taste,
            provider_user_id=owner.provider_user_id,
            owner_display_name=owner.display_name or owner.username,
            library_name=channel.library_name,
        )


class WatchHistoryStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def consumed_item_ids(self, owner_id: str) -> set[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchHistory.item_id).where(WatchHistory.user_id == owner_id)
            )
            return set(result.scalars().all())


class CandidatePipeline:
    """Turn a channel's taste definition into a ranked, diversified selection."""

    def __init__(
        self,
        settings: Settings,
        channels: ChannelRepository,
        store: SimilarityStore,
        history: WatchHistoryStore,
        sampler: DiversitySampler | None = None,
    ):
        self._settings = settings
        self._channels = channels
        self._store = store
        self._history = history
        self._source = VectorCandidateSource(store)
        self._sampler = sampler or DiversitySampler()

    def target_size(self, taste: TasteDefinition) -> int:
        return taste.item_count or self._settings.channel_item_count

    async def generate(self, channel_id: str) -> list[SelectedCandidate]:
        taste = await self._channels.load_taste(channel_id)
        target_size = self.target_size(taste)

        embeddings = await self._store.item_embeddings(taste.example_item_ids)
        vector = self._store.average_vectors(
            embeddings[item_id]
            for item_id in taste.example_item_ids
            if item_id in embeddings
        )
        if vector is None:
            logger.info(
                "Channel %s has no usable taste vector; ranking by rating",
                channel_id,
            )

        consumed = await self._history.consumed_item_ids(taste.owner_id)
        filters = CandidateFilters(
            media_type=taste.media_type,
            genres=taste.genre_filters,
            rating_ceiling=taste.policy_rating_ceiling,
        )
        pool = await self._source.find_candidates(
            vector.tolist() if vector is not None else None,
            filters,
            consumed,
            target_size * self._settings.oversample_factor,
        )
        selected = self._sampler.sample(pool, target_size)
        logger.info(
            "Generated %d candidates for channel %s from a pool of %d",
            len(selected),
            channel_id,
            len(pool),
        )
        return selected
