"""Domain types shared by the candidate pipeline and the library sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ContentType = Literal["movie", "series"]
RunStatus = Literal["running", "completed", "failed", "cancelled"]


class ArtifactKind(str, Enum):
    """Kinds of on-disk artifacts materialized for a virtual library."""

    POINTER = "pointer"
    METADATA_SIDECAR = "metadataSidecar"
    POSTER_IMAGE = "posterImage"
    BACKDROP_IMAGE = "backdropImage"
    ORDERING_PLACEHOLDER = "orderingPlaceholder"
    MEDIA_LINK = "mediaLink"


@dataclass(frozen=True, slots=True)
class TasteDefinition:
    """A channel's saved taste signal together with its owner's policy ceiling."""

    channel_id: str
    owner_id: str
    name: str
    media_type: ContentType
    genre_filters: frozenset[str] = frozenset()
    text_preferences: str | None = None
    example_item_ids: tuple[str, ...] = ()
    policy_rating_ceiling: int | None = None
    item_count: int | None = None


@dataclass(slots=True)
class Candidate:
    """A scored item proposed for a recommendation set."""

    item_id: str
    external_item_id: str
    title: str
    year: int | None
    score: float


@dataclass(slots=True)
class SelectedCandidate(Candidate):
    """A candidate that survived sampling, with its final 1-based rank."""

    rank: int
    is_selected: bool = True


@dataclass(frozen=True, slots=True)
class ActorCredit:
    name: str
    role: str | None = None
    thumb: str | None = None


@dataclass(slots=True)
class EpisodeMetadata:
    """Episode fields needed to write an episode pointer and sidecar."""

    episode_id: str
    external_item_id: str
    season_number: int
    episode_number: int
    title: str
    overview: str | None = None
    premiere_date: str | None = None
    runtime_minutes: int | None = None
    path: str | None = None


@dataclass(slots=True)
class ItemMetadata:
    """Everything a metadata sidecar exposes for one movie or series."""

    item_id: str
    external_item_id: str
    media_type: ContentType
    title: str
    year: int | None = None
    original_title: str | None = None
    sort_title: str | None = None
    premiere_date: str | None = None
    path: str | None = None
    overview: str | None = None
    tagline: str | None = None
    community_rating: float | None = None
    critic_rating: float | None = None
    content_rating: str | None = None
    runtime_minutes: int | None = None
    genres: list[str] = field(default_factory=list)
    studios: list[str] = field(default_factory=list)
    directors: list[str] = field(default_factory=list)
    writers: list[str] = field(default_factory=list)
    actors: list[ActorCredit] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    production_countries: list[str] = field(default_factory=list)
    network: str | None = None
    status: str | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    episodes: list[EpisodeMetadata] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class VirtualLibraryEntry:
    """One expected on-disk artifact, addressed relative to the target directory.

    Text artifacts carry ``content``; image artifacts carry the ``source_url``
    they are downloaded from; media links carry the ``link_target`` they point
    at and, for the main video, the ``fallback_path`` of a pointer file written
    when the link cannot be created.
    """

    path: str
    kind: ArtifactKind
    owner_key: str
    content: str | None = None
    source_url: str | None = None
    item_id: str | None = None
    locked: bool = False
    link_target: str | None = None
    fallback_path: str | None = None

    @property
    def is_text(self) -> bool:
        return self.content is not None

    @property
    def is_link(self) -> bool:
        return self.link_target is not None


@dataclass(slots=True)
class RunSelection:
    """The selected candidates of the latest completed run for a channel."""

    run_id: str
    created_at: datetime
    candidates: list[SelectedCandidate]
    metadata: dict[str, ItemMetadata]


@dataclass(frozen=True, slots=True)
class LibraryTarget:
    """A user/channel pair materialized as one virtual library."""

    owner_key: str
    channel_id: str
    channel_name: str
    owner_id: str
    provider_user_id: str
    display_name: str
    media_type: ContentType
    library_name: str | None = None

    @property
    def collection_type(self) -> Literal["movies", "tvshows"]:
        return "movies" if self.media_type == "movie" else "tvshows"


@dataclass(slots=True)
class ReconcileResult:
    directory: Path
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class LibraryHandle:
    """Identifiers of a virtual library registered in the media server."""

    library_id: str
    library_guid: str
    name: str
    path: str
    created: bool = False


class SyncRequest(BaseModel):
    """Payload accepted by the sync trigger endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    regenerate: bool = True
    channel_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("channelId", "channel_id", "channel"),
    )

    @field_validator("channel_id", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value
