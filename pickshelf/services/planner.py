"""Map a ranked selection to the artifacts a virtual library should contain."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from pathlib import PurePosixPath
from typing import Callable, Mapping, Sequence

from ..models import (
    ArtifactKind,
    EpisodeMetadata,
    ItemMetadata,
    SelectedCandidate,
    VirtualLibraryEntry,
)
from ..utils import format_date_added, sanitize_filename, utcnow
from . import nfo
from .identity import synthetic_identities

logger = logging.getLogger(__name__)

POINTER_SUFFIX = ".strm"
SIDECAR_SUFFIX = ".nfo"
PLACEHOLDER_SEASON = "Season 00"

VIDEO_EXTENSIONS = (
    ".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm", ".m4v", ".mpg",
    ".mpeg", ".ts", ".m2ts", ".vob", ".iso", ".divx", ".xvid", ".3gp", ".ogv",
    ".rmvb",
)
SUBTITLE_EXTENSIONS = (
    ".srt", ".sub", ".idx", ".ass", ".ssa", ".vtt", ".smi", ".pgs", ".sup",
)
ARTWORK_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".tbn", ".gif")
# Symlinks with these suffixes inside a target directory belong to the engine.
MEDIA_LINK_SUFFIXES = VIDEO_EXTENSIONS + SUBTITLE_EXTENSIONS + ARTWORK_EXTENSIONS
# Written by the engine itself, never linked from the source folder.
LINK_SKIP_NAMES = frozenset({"poster.jpg", "fanart.jpg", "movie.nfo"})


def base_name(title: str, year: int | None, external_item_id: str) -> str:
    """Filesystem-safe name made unique by the embedded external id."""

    name = sanitize_filename(title)
    if year:
        name = f"{name} ({year})"
    return f"{name} [{sanitize_filename(external_item_id)}]"


def season_folder(season_number: int) -> str:
    return f"Season {season_number:02d}"


def episode_stem(series_title: str, episode: EpisodeMetadata) -> str:
    stem = (
        f"{sanitize_filename(series_title)} "
        f"S{episode.season_number:02d}E{episode.episode_number:02d}"
    )
    if episode.title and episode.title.strip():
        stem = f"{stem} {sanitize_filename(episode.title)}"
    return stem


def list_media_siblings(media_path: str) -> list[str]:
    """Names of the regular files next to ``media_path``; empty when unreadable."""

    folder = os.path.dirname(media_path)
    try:
        with os.scandir(folder) as entries:
            return sorted(entry.name for entry in entries if entry.is_file())
    except OSError as exc:
        logger.debug("Could not list %s for sibling links: %s", folder, exc)
        return []


class ArtifactPlanner:
    """Compute the expected artifact set for one user/channel target."""

    def __init__(
        self,
        *,
        stream_url: Callable[[str], str] | None = None,
        use_streaming_url: bool = False,
        download_images: bool = False,
        interval_seconds: int = 60,
        use_symlinks: bool = False,
        list_siblings: Callable[[str], Sequence[str]] | None = None,
    ):
        self._stream_url = stream_url
        self._use_streaming_url = use_streaming_url
        self._download_images = download_images
        self._interval = timedelta(seconds=interval_seconds)
        self._use_symlinks = use_symlinks
        self._list_siblings = list_siblings

    def date_added(self, anchor: datetime, rank: int) -> str:
        """Rank 1 gets the anchor itself; each later rank is one interval older."""

        return format_date_added(anchor - self._interval * max(rank - 1, 0))

    def plan(
        self,
        owner_key: str,
        selected: Sequence[SelectedCandidate],
        metadata: Mapping[str, ItemMetadata] | None = None,
        *,
        anchor: datetime | None = None,
    ) -> list[VirtualLibraryEntry]:
        anchor = anchor or utcnow()
        metadata = metadata or {}
        entries: list[VirtualLibraryEntry] = []
        seen_paths: set[str] = set()

        for candidate in sorted(selected, key=lambda item: item.rank):
            item = metadata.get(candidate.item_id) or ItemMetadata(
                item_id=candidate.item_id,
                external_item_id=candidate.external_item_id,
                media_type="movie",
                title=candidate.title,
                year=candidate.year,
            )
            if item.media_type == "series":
                planned = self._plan_series(owner_key, candidate, item, anchor)
            elif self._use_symlinks:
                planned = self._plan_linked_movie(owner_key, candidate, item, anchor)
            else:
                planned = self._plan_movie(owner_key, candidate, item, anchor)
            for entry in planned:
                if entry.path in seen_paths:
                    continue
                seen_paths.add(entry.path)
                entries.append(entry)

        logger.debug("Planned %d artifacts for %s", len(entries), owner_key)
        return entries

    def _pointer_target(self, path: str | None, external_item_id: str) -> str | None:
        if self._stream_url is not None and (self._use_streaming_url or not path):
            return self._stream_url(external_item_id)
        return path

    def _plan_movie(
        self,
        owner_key: str,
        candidate: SelectedCandidate,
        item: ItemMetadata,
        anchor: datetime,
    ) -> list[VirtualLibraryEntry]:
        base = base_name(item.title, item.year, item.external_item_id)
        target = self._pointer_target(item.path, item.external_item_id)
        if target is None:
            logger.warning(
                "Skipping %s: no file path and no streaming URL available", base
            )
            return []

        content = nfo.movie_sidecar(
            item,
            synthetic_identities(owner_key, item.item_id),
            self.date_added(anchor, candidate.rank),
            locked=True,
            remote_art=not self._download_images,
        )
        entries = [
            VirtualLibraryEntry(
                path=f"{base}{POINTER_SUFFIX}",
                kind=ArtifactKind.POINTER,
                owner_key=owner_key,
                content=target,
                item_id=item.item_id,
            ),
            VirtualLibraryEntry(
                path=f"{base}{SIDECAR_SUFFIX}",
                kind=ArtifactKind.METADATA_SIDECAR,
                owner_key=owner_key,
                content=content,
                item_id=item.item_id,
                locked=True,
            ),
        ]
        entries.extend(
            self._images(owner_key, item, f"{base}-poster.jpg", f"{base}-fanart.jpg")
        )
        return entries

    def _plan_linked_movie(
        self,
        owner_key: str,
        candidate: SelectedCandidate,
        item: ItemMetadata,
        anchor: datetime,
    ) -> list[VirtualLibraryEntry]:
        """Folder per movie holding a symlink to the real file."""

        base = base_name(item.title, item.year, item.external_item_id)
        pointer_path = f"{base}/{base}{POINTER_SUFFIX}"
        media = PurePosixPath(item.path) if item.path else None
        if media is not None and media.suffix.lower() in VIDEO_EXTENSIONS:
            main = VirtualLibraryEntry(
                path=f"{base}/{base}{media.suffix}",
                kind=ArtifactKind.MEDIA_LINK,
                owner_key=owner_key,
                item_id=item.item_id,
                link_target=item.path,
                fallback_path=pointer_path,
            )
        else:
            target = self._pointer_target(item.path, item.external_item_id)
            if target is None:
                logger.warning(
                    "Skipping %s: no file path and no streaming URL available", base
                )
                return []
            main = VirtualLibraryEntry(
                path=pointer_path,
                kind=ArtifactKind.POINTER,
                owner_key=owner_key,
                content=target,
                item_id=item.item_id,
            )

        entries = [
            main,
            VirtualLibraryEntry(
                path=f"{base}/{base}{SIDECAR_SUFFIX}",
                kind=ArtifactKind.METADATA_SIDECAR,
                owner_key=owner_key,
                content=nfo.movie_sidecar(
                    item,
                    synthetic_identities(owner_key, item.item_id),
                    self.date_added(anchor, candidate.rank),
                    locked=True,
                    remote_art=not self._download_images,
                ),
                item_id=item.item_id,
                locked=True,
            ),
        ]
        entries.extend(
            self._images(owner_key, item, f"{base}/poster.jpg", f"{base}/fanart.jpg")
        )
        if main.is_link and item.path:
            entries.extend(self._sibling_links(owner_key, item, item.path, base))
        return entries

    def _sibling_links(
        self, owner_key: str, item: ItemMetadata, media_path: str, base: str
    ) -> list[VirtualLibraryEntry]:
        """Subtitles renamed to ``base`` and artwork linked under its own name."""

        if self._list_siblings is None:
            return []
        media = PurePosixPath(media_path)
        original_stem = media.stem.lower()
        links: list[VirtualLibraryEntry] = []
        for name in self._list_siblings(media_path):
            lowered = name.lower()
            if name == media.name or lowered in LINK_SKIP_NAMES:
                continue
            if lowered.endswith(SUBTITLE_EXTENSIONS):
                if not lowered.startswith(original_stem):
                    continue
                link_name = f"{base}{name[len(original_stem):]}"
            elif lowered.endswith(ARTWORK_EXTENSIONS):
                link_name = name
            else:
                continue
            links.append(
                VirtualLibraryEntry(
                    path=f"{base}/{link_name}",
                    kind=ArtifactKind.MEDIA_LINK,
                    owner_key=owner_key,
                    item_id=item.item_id,
                    link_target=str(media.parent / name),
                )
            )
        return links

    def _plan_series(
        self,
        owner_key: str,
        candidate: SelectedCandidate,
        item: ItemMetadata,
        anchor: datetime,
    ) -> list[VirtualLibraryEntry]:
        folder = base_name(item.title, item.year, item.external_item_id)
        date_added = self.date_added(anchor, candidate.rank)
        entries = [
            VirtualLibraryEntry(
                path=f"{folder}/tvshow.nfo",
                kind=ArtifactKind.METADATA_SIDECAR,
                owner_key=owner_key,
                content=nfo.tvshow_sidecar(
                    item,
                    synthetic_identities(owner_key, item.item_id),
                    date_added,
                    locked=True,
                    remote_art=not self._download_images,
                ),
                item_id=item.item_id,
                locked=True,
            )
        ]

        # Series sort by their newest episode, so a watched S00E00 carries the
        # rank timestamp into "recently added" views.
        placeholder_target = self._pointer_target(None, item.external_item_id)
        if placeholder_target is None:
            placeholder_target = item.path or item.external_item_id
        placeholder_stem = (
            f"{folder}/{PLACEHOLDER_SEASON}/"
            f"{sanitize_filename(item.title)} S00E00 Sorting Placeholder"
        )
        entries.append(
            VirtualLibraryEntry(
                path=f"{placeholder_stem}{POINTER_SUFFIX}",
                kind=ArtifactKind.ORDERING_PLACEHOLDER,
                owner_key=owner_key,
                content=placeholder_target,
                item_id=item.item_id,
            )
        )
        entries.append(
            VirtualLibraryEntry(
                path=f"{placeholder_stem}{SIDECAR_SUFFIX}",
                kind=ArtifactKind.ORDERING_PLACEHOLDER,
                owner_key=owner_key,
                content=nfo.placeholder_sidecar(item, date_added),
                item_id=item.item_id,
                locked=True,
            )
        )

        for episode in item.episodes:
            target = self._pointer_target(episode.path, episode.external_item_id)
            if target is None:
                logger.debug(
                    "Skipping episode %s of %s without a playable target",
                    episode.episode_id,
                    item.title,
                )
                continue
            stem = (
                f"{folder}/{season_folder(episode.season_number)}/"
                f"{episode_stem(item.title, episode)}"
            )
            entries.append(
                VirtualLibraryEntry(
                    path=f"{stem}{POINTER_SUFFIX}",
                    kind=ArtifactKind.POINTER,
                    owner_key=owner_key,
                    content=target,
                    item_id=episode.episode_id,
                )
            )
            entries.append(
                VirtualLibraryEntry(
                    path=f"{stem}{SIDECAR_SUFFIX}",
                    kind=ArtifactKind.METADATA_SIDECAR,
                    owner_key=owner_key,
                    content=nfo.episode_sidecar(item, episode, date_added),
                    item_id=episode.episode_id,
                )
            )

        entries.extend(
            self._images(owner_key, item, f"{folder}/poster.jpg", f"{folder}/fanart.jpg")
        )
        return entries

    def _images(
        self, owner_key: str, item: ItemMetadata, poster_path: str, fanart_path: str
    ) -> list[VirtualLibraryEntry]:
        if not self._download_images:
            return []
        images: list[VirtualLibraryEntry] = []
        if item.poster_url:
            images.append(
                VirtualLibraryEntry(
                    path=poster_path,
                    kind=ArtifactKind.POSTER_IMAGE,
                    owner_key=owner_key,
                    source_url=item.poster_url,
                    item_id=item.item_id,
                )
            )
        if item.backdrop_url:
            images.append(
                VirtualLibraryEntry(
                    path=fanart_path,
                    kind=ArtifactKind.BACKDROP_IMAGE,
                    owner_key=owner_key,
                    source_url=item.backdrop_url,
                    item_id=item.item_id,
                )
            )
        return images
