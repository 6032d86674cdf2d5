"""Register reconciled directories as media-server libraries."""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import StrmLibrary
from ..models import LibraryHandle, LibraryTarget
from .media_server import Library, MediaServerError, MediaServerProvider

logger = logging.getLogger(__name__)


class ExternalLibraryBinder:
    """Keep one media-server library per target and grant its owner access."""

    def __init__(
        self,
        provider: MediaServerProvider,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._provider = provider
        self._session_factory = session_factory

    async def ensure_bound(
        self, target: LibraryTarget, library_name: str, library_path: str
    ) -> LibraryHandle:
        await self._drop_stale_record(target.channel_id, library_name, library_path)

        created = False
        library = self._find(
            await self._provider.get_libraries(), library_name, library_path
        )
        if library is None:
            await self._provider.create_virtual_library(
                library_name, library_path, target.collection_type
            )
            created = True
            library = self._find(
                await self._provider.get_libraries(), library_name, library_path
            )
            if library is None:
                raise MediaServerError(
                    f"Library {library_name!r} was not listed after creation"
                )

        await self._provider.refresh_library(library.id)
        await self._store_record(target, library, library_name, library_path)
        await self._grant_access(target.provider_user_id, library)

        return LibraryHandle(
            library_id=library.id,
            library_guid=library.guid,
            name=library_name,
            path=library_path,
            created=created,
        )

    @staticmethod
    def _find(
        libraries: list[Library], library_name: str, library_path: str
    ) -> Library | None:
        for library in libraries:
            if library.name == library_name:
                return library
        for library in libraries:
            if library_path in library.locations:
                return library
        return None

    async def _drop_stale_record(
        self, channel_id: str, library_name: str, library_path: str
    ) -> None:
        async with self._session_factory() as session:
            record = (
                await session.execute(
                    select(StrmLibrary).where(StrmLibrary.channel_id == channel_id)
                )
            ).scalar_one_or_none()
            if record is None:
                return
            if record.name == library_name and record.path == library_path:
                return
            logger.info(
                "Library record for channel %s drifted (%s at %s); clearing it",
                channel_id,
                record.name,
                record.path,
            )
            await session.execute(
                delete(StrmLibrary).where(StrmLibrary.channel_id == channel_id)
            )
            await session.commit()

    async def _store_record(
        self,
        target: LibraryTarget,
        library: Library,
        library_name: str,
        library_path: str,
    ) -> None:
        async with self._session_factory() as session:
            record = (
                await session.execute(
                    select(StrmLibrary).where(
                        StrmLibrary.channel_id == target.channel_id
                    )
                )
            ).scalar_one_or_none()
            if record is None:
                record = StrmLibrary(
                    channel_id=target.channel_id, owner_id=target.owner_id
                )
                session.add(record)
            record.owner_id = target.owner_id
            record.name = library_name
            record.path = library_path
            record.provider_library_id = library.id
            record.provider_library_guid = library.guid
            await session.commit()

    async def _grant_access(self, provider_user_id: str, library: Library) -> None:
        access = await self._provider.get_user_library_access(provider_user_id)
        if access.enable_all_folders:
            logger.debug("User %s already sees every library", provider_user_id)
            return
        if library.guid in access.enabled_folders:
            return
        logger.info(
            "Granting user %s access to library %s", provider_user_id, library.name
        )
        await self._provider.update_user_library_access(
            provider_user_id, [*access.enabled_folders, library.guid]
        )
