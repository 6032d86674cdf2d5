"""HTTP clients for Emby and Jellyfin library management."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import quote, urlencode

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)

CollectionType = Literal["movies", "tvshows"]


class MediaServerError(RuntimeError):
    """Raised when the media server rejects a request or cannot be reached."""


class MediaServerConfigError(RuntimeError):
    """Raised when the media server cannot be used with the current settings."""


@dataclass(slots=True)
class Library:
    id: str
    guid: str
    name: str
    collection_type: str | None = None
    locations: list[str] = field(default_factory=list)

    @property
    def path(self) -> str | None:
        return self.locations[0] if self.locations else None


@dataclass(slots=True)
class UserLibraryAccess:
    enable_all_folders: bool
    enabled_folders: list[str]


class MediaServerProvider:
    """Shared client for the MediaBrowser-style API both servers expose."""

    auth_header = "X-Emby-Authorization"

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        api_key: str | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._base_url = settings.media_server_url.rstrip("/")
        self._api_key = api_key if api_key is not None else settings.media_server_api_key
        self._max_retries = 2

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    def _require_key(self) -> str:
        if not self._api_key:
            raise MediaServerConfigError(
                "MEDIA_SERVER_API_KEY is not configured"
            )
        return self._api_key

    def _headers(self, api_key: str) -> dict[str, str]:
        client = self._settings.app_name
        value = (
            f'MediaBrowser Client="{client}", Device="{client}", '
            f'DeviceId="{client.lower()}-sync", Version="1.0.0", Token="{api_key}"'
        )
        return {self.auth_header: value, "Accept": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
    ) -> httpx.Response:
        api_key = self._require_key()
        url = f"{self._base_url}{path}"
        attempt = 0
        while True:
            try:
                response = await self._client.request(
                    method, url, headers=self._headers(api_key), json=json
                )
            except httpx.TransportError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = 0.5 * attempt
                    logger.info(
                        "Transient error talking to the media server (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise MediaServerError(f"{method} {path} failed: {exc}") from exc

            if 500 <= response.status_code < 600 and attempt < self._max_retries:
                attempt += 1
                await asyncio.sleep(0.5 * attempt)
                continue
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise MediaServerError(
                    f"{method} {path} returned {response.status_code}"
                ) from exc
            return response

    async def get_libraries(self) -> list[Library]:
        response = await self._request("GET", "/Library/VirtualFolders")
        payload = response.json()
        if isinstance(payload, dict):
            payload = payload.get("Items") or []
        libraries: list[Library] = []
        for raw in payload or []:
            if not isinstance(raw, dict):
                continue
            library_id = str(raw.get("ItemId") or raw.get("Id") or "")
            if not library_id:
                continue
            locations = [str(location) for location in raw.get("Locations") or []]
            if not locations and raw.get("Path"):
                locations = [str(raw["Path"])]
            libraries.append(
                Library(
                    id=library_id,
                    guid=str(raw.get("Guid") or library_id),
                    name=str(raw.get("Name") or ""),
                    collection_type=raw.get("CollectionType"),
                    locations=locations,
                )
            )
        return libraries

    async def create_virtual_library(
        self, name: str, path: str, collection_type: CollectionType
    ) -> None:
        query = urlencode(
            {
                "name": name,
                "collectionType": collection_type,
                "paths": path,
                "refreshLibrary": "true",
            },
            quote_via=quote,
        )
        logger.info("Creating %s library %r at %s", collection_type, name, path)
        await self._request("POST", f"/Library/VirtualFolders?{query}")

    async def refresh_library(self, library_id: str) -> None:
        await self._request("POST", f"/Items/{quote(library_id, safe='')}/Refresh")

    async def _get_user(self, user_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"/Users/{quote(user_id, safe='')}")
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def get_user_library_access(self, user_id: str) -> UserLibraryAccess:
        policy = (await self._get_user(user_id)).get("Policy") or {}
        return UserLibraryAccess(
            enable_all_folders=bool(policy.get("EnableAllFolders", True)),
            enabled_folders=[str(guid) for guid in policy.get("EnabledFolders") or []],
        )

    async def update_user_library_access(
        self, user_id: str, allowed_library_guids: list[str]
    ) -> None:
        """Replace the user's folder list, keeping every other policy field."""

        policy = dict((await self._get_user(user_id)).get("Policy") or {})
        policy["EnableAllFolders"] = False
        policy["EnabledFolders"] = list(allowed_library_guids)
        await self._request(
            "POST", f"/Users/{quote(user_id, safe='')}/Policy", json=policy
        )

    def get_stream_url(self, external_item_id: str) -> str:
        api_key = self._require_key()
        return (
            f"{self._base_url}/Videos/{quote(external_item_id, safe='')}/stream"
            f"?static=true&api_key={quote(api_key, safe='')}"
        )


class EmbyProvider(MediaServerProvider):
    auth_header = "X-Emby-Authorization"


class JellyfinProvider(MediaServerProvider):
    auth_header = "Authorization"


def create_provider(
    settings: Settings, http_client: httpx.AsyncClient
) -> MediaServerProvider:
    if settings.media_server_type == "jellyfin":
        return JellyfinProvider(settings, http_client)
    return EmbyProvider(settings, http_client)
