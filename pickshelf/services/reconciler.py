"""Diff an expected artifact set against a target directory and apply it."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import replace
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable, Literal, Sequence, TypeVar

import httpx

from ..models import ArtifactKind, ReconcileResult, VirtualLibraryEntry
from .planner import MEDIA_LINK_SUFFIXES
from .progress import JobProgress

logger = logging.getLogger(__name__)

OWNED_SUFFIXES = (".strm", ".nfo", "-poster.jpg", "-fanart.jpg")
OWNED_NAMES = frozenset({"poster.jpg", "fanart.jpg"})

Outcome = Literal["created", "updated", "unchanged", "deleted", "failed"]
T = TypeVar("T")


def is_owned(name: str) -> bool:
    """Whether a file name matches a pattern this engine writes."""

    lowered = name.lower()
    return lowered in OWNED_NAMES or lowered.endswith(OWNED_SUFFIXES)


def is_owned_link(path: Path) -> bool:
    """Symlinks to media, subtitles or artwork are engine-made links."""

    return path.is_symlink() and path.name.lower().endswith(MEDIA_LINK_SUFFIXES)


def _scan_owned(directory: Path) -> set[str]:
    owned: set[str] = set()
    for current, _, files in os.walk(directory):
        base = Path(current)
        for name in files:
            path = base / name
            if is_owned(name) or is_owned_link(path):
                owned.add(path.relative_to(directory).as_posix())
    return owned


def _write_text_if_changed(path: Path, content: str) -> Literal["created", "updated", "unchanged"]:
    data = content.encode("utf-8")
    if path.is_symlink():
        # Never write through a link into the media it points at.
        path.unlink()
        path.write_bytes(data)
        return "updated"
    if path.exists():
        if path.read_bytes() == data:
            return "unchanged"
        path.write_bytes(data)
        return "updated"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return "created"


def _link_if_changed(path: Path, target: str) -> Literal["created", "updated", "unchanged"]:
    if path.is_symlink():
        if os.readlink(path) == target:
            return "unchanged"
        path.unlink()
        outcome: Literal["created", "updated"] = "updated"
    elif path.exists():
        path.unlink()
        outcome = "updated"
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        outcome = "created"
    os.symlink(target, path)
    return outcome


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _prune_empty_dirs(directory: Path) -> int:
    removed = 0
    for current, _, _ in os.walk(directory, topdown=False):
        path = Path(current)
        if path == directory:
            continue
        try:
            if not any(path.iterdir()):
                path.rmdir()
                removed += 1
        except OSError as exc:
            logger.warning("Failed to prune %s: %s", path, exc)
    return removed


class LibraryReconciler:
    """Apply the minimal create/update/delete set for one target directory."""

    def __init__(
        self,
        root: Path,
        http_client: httpx.AsyncClient | None = None,
        *,
        file_batch_size: int = 20,
        image_batch_size: int = 10,
    ):
        self._root = Path(root)
        self._http = http_client
        self._file_batch_size = max(file_batch_size, 1)
        self._image_batch_size = max(image_batch_size, 1)

    def directory_for(self, owner_key: str) -> Path:
        return self._root / owner_key

    async def reconcile(
        self,
        owner_key: str,
        expected: Sequence[VirtualLibraryEntry],
        *,
        progress: JobProgress | None = None,
    ) -> ReconcileResult:
        directory = self.directory_for(owner_key)
        # Failing to create or list the directory is fatal for the target.
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        actual = await asyncio.to_thread(_scan_owned, directory)

        wanted: dict[str, VirtualLibraryEntry] = {}
        for entry in expected:
            relative = PurePosixPath(entry.path)
            if relative.is_absolute() or ".." in relative.parts:
                raise ValueError(f"Artifact path escapes target directory: {entry.path}")
            wanted.setdefault(relative.as_posix(), entry)

        texts = [entry for entry in wanted.values() if entry.is_text]
        links = [entry for entry in wanted.values() if entry.is_link]
        images = [
            entry
            for path, entry in wanted.items()
            if not entry.is_text and not entry.is_link and path not in actual
        ]
        candidates = actual - wanted.keys()
        # Pointer files written in place of links that could not be created.
        fallbacks: set[str] = set()

        result = ReconcileResult(directory=directory)
        total = len(texts) + len(links) + len(images) + len(candidates)
        processed = 0
        if progress is not None:
            progress.update_progress(0, total)

        def _tally(outcomes: list[Outcome]) -> None:
            nonlocal processed
            for outcome in outcomes:
                if outcome == "created":
                    result.created += 1
                elif outcome == "updated":
                    result.updated += 1
                elif outcome == "deleted":
                    result.deleted += 1
                elif outcome == "failed":
                    result.failed += 1
            processed += len(outcomes)
            if progress is not None:
                progress.update_progress(processed, total)

        await self._in_batches(
            texts,
            self._file_batch_size,
            lambda entry: self._write_text(directory, entry),
            _tally,
            progress,
        )
        await self._in_batches(
            links,
            self._file_batch_size,
            lambda entry: self._write_link(directory, entry, fallbacks),
            _tally,
            progress,
        )
        await self._in_batches(
            images,
            self._image_batch_size,
            lambda entry: self._download_image(directory, entry),
            _tally,
            progress,
        )
        stale = sorted(candidates - fallbacks)
        total -= len(candidates) - len(stale)
        if stale:
            _tally(
                list(
                    await asyncio.gather(
                        *(self._delete(directory, name) for name in stale)
                    )
                )
            )
            await asyncio.to_thread(_prune_empty_dirs, directory)

        logger.info(
            "Reconciled %s: %d created, %d updated, %d deleted, %d failed",
            owner_key,
            result.created,
            result.updated,
            result.deleted,
            result.failed,
        )
        return result

    @staticmethod
    async def _in_batches(
        entries: Sequence[T],
        batch_size: int,
        worker: Callable[[T], Awaitable[Outcome]],
        on_batch: Callable[[list[Outcome]], None],
        progress: JobProgress | None,
    ) -> None:
        for start in range(0, len(entries), batch_size):
            if progress is not None:
                progress.raise_if_cancelled()
            batch = entries[start : start + batch_size]
            outcomes = await asyncio.gather(*(worker(entry) for entry in batch))
            logger.debug(
                "Batch %d-%d finished", start + 1, start + len(batch)
            )
            on_batch(list(outcomes))

    async def _write_text(
        self, directory: Path, entry: VirtualLibraryEntry
    ) -> Outcome:
        path = directory / entry.path
        try:
            return await asyncio.to_thread(
                _write_text_if_changed, path, entry.content or ""
            )
        except OSError as exc:
            logger.warning("Failed to write %s: %s", path, exc)
            return "failed"

    async def _write_link(
        self, directory: Path, entry: VirtualLibraryEntry, fallbacks: set[str]
    ) -> Outcome:
        path = directory / entry.path
        try:
            return await asyncio.to_thread(
                _link_if_changed, path, entry.link_target or ""
            )
        except OSError as exc:
            if entry.fallback_path is None:
                logger.warning("Failed to link %s: %s", path, exc)
                return "failed"
            logger.debug(
                "Failed to link %s, writing %s instead: %s", path, entry.fallback_path, exc
            )
        fallbacks.add(entry.fallback_path)
        pointer = replace(
            entry,
            path=entry.fallback_path,
            kind=ArtifactKind.POINTER,
            content=entry.link_target,
            link_target=None,
            fallback_path=None,
        )
        return await self._write_text(directory, pointer)

    async def _download_image(
        self, directory: Path, entry: VirtualLibraryEntry
    ) -> Outcome:
        path = directory / entry.path
        if self._http is None or not entry.source_url:
            logger.warning("No image source available for %s", path)
            return "failed"
        try:
            response = await self._http.get(entry.source_url, follow_redirects=True)
            response.raise_for_status()
            await asyncio.to_thread(_write_bytes, path, response.content)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Failed to download %s: %s", entry.source_url, exc)
            return "failed"
        except OSError as exc:
            logger.warning("Failed to write %s: %s", path, exc)
            return "failed"
        return "created"

    async def _delete(self, directory: Path, relative: str) -> Outcome:
        path = directory / relative
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return "deleted"
        except OSError as exc:
            logger.warning("Failed to delete %s: %s", path, exc)
            return "failed"
        return "deleted"
