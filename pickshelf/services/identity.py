"""Deterministic synthetic provider identifiers for materialized items."""

from __future__ import annotations

import hashlib
from typing import Literal

from ..utils import to_base36

IdKind = Literal["imdb", "tmdb", "tvdb"]

ID_KINDS: tuple[IdKind, ...] = ("imdb", "tmdb", "tvdb")
IDENTITY_PREFIX = "pickshelf"


def synthetic_identity(owner_key: str, item_id: str, id_kind: str) -> str:
    """Return a stable fake external id for ``item_id`` within ``owner_key``.

    Only the three arguments feed the hash, so title, score or rank changes
    never alter the value a media server keys its de-duplication on.
    """

    key = f"{IDENTITY_PREFIX}:{id_kind}:{owner_key}:{item_id}"
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return IDENTITY_PREFIX + to_base36(int.from_bytes(digest[:8], "big"))


def synthetic_identities(owner_key: str, item_id: str) -> dict[str, str]:
    return {
        kind: synthetic_identity(owner_key, item_id, kind) for kind in ID_KINDS
    }
