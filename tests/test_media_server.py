"""Tests for the Emby/Jellyfin HTTP provider."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from pickshelf.config import Settings
from pickshelf.services.media_server import (
    EmbyProvider,
    JellyfinProvider,
    MediaServerConfigError,
    MediaServerError,
    create_provider,
)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {
        "MEDIA_SERVER_URL": "http://media.local:8096/",
        "MEDIA_SERVER_API_KEY": "secret",
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_factory_picks_provider_by_type() -> None:
    client = httpx.AsyncClient()
    assert isinstance(create_provider(build_settings(), client), EmbyProvider)
    assert isinstance(
        create_provider(build_settings(MEDIA_SERVER_TYPE="jellyfin"), client),
        JellyfinProvider,
    )


@pytest.mark.anyio("asyncio")
async def test_get_libraries_parses_virtual_folders() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {
                    "Name": "Movies",
                    "ItemId": "10",
                    "Guid": "guid-10",
                    "CollectionType": "movies",
                    "Locations": ["/media/movies"],
                },
                {"Name": "AI Picks - Alice - Evening", "ItemId": "11", "Locations": []},
                {"Name": "Broken"},
            ],
        )

    async with _client(handler) as client:
        libraries = await EmbyProvider(build_settings(), client).get_libraries()

    assert [library.id for library in libraries] == ["10", "11"]
    assert libraries[0].guid == "guid-10"
    assert libraries[0].path == "/media/movies"
    assert libraries[1].guid == "11"
    request = seen[0]
    assert str(request.url) == "http://media.local:8096/Library/VirtualFolders"
    assert 'Token="secret"' in request.headers["X-Emby-Authorization"]


@pytest.mark.anyio("asyncio")
async def test_jellyfin_uses_authorization_header() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Items": []})

    async with _client(handler) as client:
        provider = JellyfinProvider(build_settings(MEDIA_SERVER_TYPE="jellyfin"), client)
        assert await provider.get_libraries() == []

    assert seen[0].headers["Authorization"].startswith("MediaBrowser Client=")
    assert "X-Emby-Authorization" not in seen[0].headers


@pytest.mark.anyio("asyncio")
async def test_create_virtual_library_encodes_query() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with _client(handler) as client:
        await EmbyProvider(build_settings(), client).create_virtual_library(
            "AI Picks - Alice - Late Night", "/strm/pickshelf/u1-c1", "movies"
        )

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/Library/VirtualFolders"
    assert request.url.params["name"] == "AI Picks - Alice - Late Night"
    assert request.url.params["paths"] == "/strm/pickshelf/u1-c1"
    assert request.url.params["collectionType"] == "movies"
    assert request.url.params["refreshLibrary"] == "true"


@pytest.mark.anyio("asyncio")
async def test_update_user_access_merges_existing_policy() -> None:
    posted: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "Id": "user-1",
                    "Policy": {
                        "IsAdministrator": False,
                        "EnableAllFolders": True,
                        "EnabledFolders": [],
                        "MaxParentalRating": 10,
                    },
                },
            )
        posted.append(json.loads(request.content))
        return httpx.Response(204)

    async with _client(handler) as client:
        provider = EmbyProvider(build_settings(), client)
        access = await provider.get_user_library_access("user-1")
        await provider.update_user_library_access("user-1", ["guid-a", "guid-b"])

    assert access.enable_all_folders is True
    assert posted == [
        {
            "IsAdministrator": False,
            "EnableAllFolders": False,
            "EnabledFolders": ["guid-a", "guid-b"],
            "MaxParentalRating": 10,
        }
    ]


@pytest.mark.anyio("asyncio")
async def test_http_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "unauthorized"})

    async with _client(handler) as client:
        provider = EmbyProvider(build_settings(), client)
        with pytest.raises(MediaServerError):
            await provider.refresh_library("11")


@pytest.mark.anyio("asyncio")
async def test_missing_api_key_is_a_configuration_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never called
        raise AssertionError("no request expected")

    async with _client(handler) as client:
        provider = EmbyProvider(build_settings(MEDIA_SERVER_API_KEY=""), client)
        assert provider.has_api_key is False
        with pytest.raises(MediaServerConfigError):
            await provider.get_libraries()
        with pytest.raises(MediaServerConfigError):
            provider.get_stream_url("abc")


def test_stream_url_points_at_static_stream() -> None:
    provider = EmbyProvider(build_settings(), httpx.AsyncClient())

    assert provider.get_stream_url("abc 1") == (
        "http://media.local:8096/Videos/abc%201/stream?static=true&api_key=secret"
    )
