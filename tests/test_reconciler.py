"""Filesystem reconciliation tests."""

from __future__ import annotations

import os
from pathlib import Path

import httpx
import pytest

from pickshelf.models import ArtifactKind, VirtualLibraryEntry
from pickshelf.services.progress import JobRegistry, RunCancelled
from pickshelf.services.reconciler import LibraryReconciler, is_owned, is_owned_link


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def _pointer(name: str, content: str | None = None) -> VirtualLibraryEntry:
    return VirtualLibraryEntry(
        path=f"{name}.strm",
        kind=ArtifactKind.POINTER,
        owner_key="owner",
        content=content if content is not None else f"/media/{name}.mkv",
    )


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _backdate(path: Path) -> float:
    stamp = 1_600_000_000.0
    os.utime(path, (stamp, stamp))
    return stamp


def test_is_owned_patterns() -> None:
    assert is_owned("Movie [1].strm")
    assert is_owned("Movie [1].nfo")
    assert is_owned("Movie [1]-poster.jpg")
    assert is_owned("fanart.jpg")
    assert not is_owned("notes.txt")
    assert not is_owned("cover.jpg")


@pytest.mark.anyio("asyncio")
async def test_reconcile_creates_missing_and_deletes_stale(tmp_path) -> None:
    directory = tmp_path / "owner"
    _write(directory / "B.strm", "/media/B.mkv")
    _write(directory / "C.strm", "/media/C.mkv")
    _write(directory / "D.strm", "/media/D.mkv")
    untouched = {name: _backdate(directory / name) for name in ("B.strm", "C.strm")}

    reconciler = LibraryReconciler(tmp_path)
    result = await reconciler.reconcile(
        "owner", [_pointer("A"), _pointer("B"), _pointer("C")]
    )

    assert (result.created, result.updated, result.deleted, result.failed) == (1, 0, 1, 0)
    assert sorted(path.name for path in directory.iterdir()) == ["A.strm", "B.strm", "C.strm"]
    assert (directory / "A.strm").read_text(encoding="utf-8") == "/media/A.mkv"
    for name, stamp in untouched.items():
        assert (directory / name).stat().st_mtime == stamp


@pytest.mark.anyio("asyncio")
async def test_second_reconcile_is_a_no_op(tmp_path) -> None:
    reconciler = LibraryReconciler(tmp_path, file_batch_size=2)
    expected = [_pointer(name) for name in ("one", "two", "three", "four", "five")]
    expected.append(
        VirtualLibraryEntry(
            path="Show [9]/Season 01/Show S01E01.nfo",
            kind=ArtifactKind.METADATA_SIDECAR,
            owner_key="owner",
            content="<episodedetails />\n",
        )
    )

    first = await reconciler.reconcile("owner", expected)
    second = await reconciler.reconcile("owner", expected)

    assert first.created == 6
    assert (second.created, second.updated, second.deleted, second.failed) == (0, 0, 0, 0)


@pytest.mark.anyio("asyncio")
async def test_changed_content_is_rewritten(tmp_path) -> None:
    directory = tmp_path / "owner"
    _write(directory / "A.strm", "/old/location.mkv")

    result = await LibraryReconciler(tmp_path).reconcile("owner", [_pointer("A")])

    assert result.updated == 1
    assert result.created == 0
    assert (directory / "A.strm").read_text(encoding="utf-8") == "/media/A.mkv"


@pytest.mark.anyio("asyncio")
async def test_unowned_files_are_left_alone_and_empty_dirs_pruned(tmp_path) -> None:
    directory = tmp_path / "owner"
    _write(directory / "notes.txt", "keep me")
    _write(directory / "Old Show [1]" / "tvshow.nfo", "<tvshow />")
    _write(directory / "Old Show [1]" / "Season 00" / "Old S00E00.strm", "x")
    _write(directory / "Kept [2]" / "tvshow.nfo", "<tvshow />")
    _write(directory / "Kept [2]" / "readme.md", "unrelated")

    result = await LibraryReconciler(tmp_path).reconcile("owner", [])

    assert result.deleted == 3
    assert (directory / "notes.txt").exists()
    assert not (directory / "Old Show [1]").exists()
    assert (directory / "Kept [2]" / "readme.md").exists()
    assert directory.exists()


@pytest.mark.anyio("asyncio")
async def test_images_are_downloaded_once(tmp_path) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("missing.jpg"):
            return httpx.Response(404)
        return httpx.Response(200, content=b"\xff\xd8image")

    expected = [
        VirtualLibraryEntry(
            path="Movie [1]-poster.jpg",
            kind=ArtifactKind.POSTER_IMAGE,
            owner_key="owner",
            source_url="https://images.example/poster.jpg",
        ),
        VirtualLibraryEntry(
            path="Movie [1]-fanart.jpg",
            kind=ArtifactKind.BACKDROP_IMAGE,
            owner_key="owner",
            source_url="https://images.example/missing.jpg",
        ),
    ]

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        reconciler = LibraryReconciler(tmp_path, client, image_batch_size=1)
        first = await reconciler.reconcile("owner", expected)
        second = await reconciler.reconcile("owner", expected[:1])

    assert (first.created, first.failed) == (1, 1)
    assert (tmp_path / "owner" / "Movie [1]-poster.jpg").read_bytes() == b"\xff\xd8image"
    assert (second.created, second.deleted, second.failed) == (0, 0, 0)
    assert len(requests) == 2


@pytest.mark.anyio("asyncio")
async def test_write_failures_are_counted_not_raised(tmp_path) -> None:
    directory = tmp_path / "owner"
    # A directory where a pointer file should go makes that single write fail.
    (directory / "Blocked.strm").mkdir(parents=True)

    result = await LibraryReconciler(tmp_path).reconcile(
        "owner", [_pointer("Blocked"), _pointer("Fine")]
    )

    assert result.failed == 1
    assert result.created == 1
    assert (directory / "Fine.strm").exists()


@pytest.mark.anyio("asyncio")
async def test_unwritable_target_is_fatal(tmp_path) -> None:
    (tmp_path / "owner").write_text("not a directory", encoding="utf-8")

    with pytest.raises(OSError):
        await LibraryReconciler(tmp_path).reconcile("owner", [_pointer("A")])


@pytest.mark.anyio("asyncio")
async def test_cancellation_is_checked_between_batches(tmp_path) -> None:
    job = JobRegistry().create_run("sync", 1)
    job.request_cancel()

    with pytest.raises(RunCancelled):
        await LibraryReconciler(tmp_path).reconcile(
            "owner", [_pointer("A")], progress=job
        )
    assert not (tmp_path / "owner" / "A.strm").exists()


@pytest.mark.anyio("asyncio")
async def test_progress_reports_processed_items(tmp_path) -> None:
    job = JobRegistry().create_run("sync", 1)

    await LibraryReconciler(tmp_path, file_batch_size=2).reconcile(
        "owner", [_pointer("A"), _pointer("B"), _pointer("C")], progress=job
    )

    assert job.items_processed == 3
    assert job.items_total == 3


@pytest.mark.anyio("asyncio")
async def test_paths_escaping_the_target_are_rejected(tmp_path) -> None:
    with pytest.raises(ValueError):
        await LibraryReconciler(tmp_path).reconcile(
            "owner", [_pointer("../outside")]
        )


@pytest.mark.anyio("asyncio")
async def test_malformed_image_url_fails_only_that_artifact(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"\xff\xd8image")

    expected = [
        _pointer("A"),
        VirtualLibraryEntry(
            path="A-poster.jpg",
            kind=ArtifactKind.POSTER_IMAGE,
            owner_key="owner",
            source_url="http://[::1/poster.jpg",
        ),
        VirtualLibraryEntry(
            path="B-poster.jpg",
            kind=ArtifactKind.POSTER_IMAGE,
            owner_key="owner",
            source_url="https://images.example/b.jpg",
        ),
    ]
    _write(tmp_path / "owner" / "Stale.strm", "/media/stale.mkv")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await LibraryReconciler(tmp_path, client).reconcile("owner", expected)

    assert (result.created, result.failed, result.deleted) == (2, 1, 1)
    assert (tmp_path / "owner" / "B-poster.jpg").exists()
    assert not (tmp_path / "owner" / "A-poster.jpg").exists()


def _link(path: str, target: Path, fallback: str | None = None) -> VirtualLibraryEntry:
    return VirtualLibraryEntry(
        path=path,
        kind=ArtifactKind.MEDIA_LINK,
        owner_key="owner",
        link_target=str(target),
        fallback_path=fallback,
    )


def _media(tmp_path: Path) -> Path:
    media = tmp_path / "media"
    media.mkdir()
    for name in ("a.mkv", "b.mkv", "a.en.srt"):
        (media / name).write_bytes(name.encode())
    return media


def test_only_media_symlinks_are_owned(tmp_path) -> None:
    media = _media(tmp_path)
    (tmp_path / "linked.mkv").symlink_to(media / "a.mkv")
    (tmp_path / "linked.txt").symlink_to(media / "a.mkv")
    (tmp_path / "real.mkv").write_bytes(b"")

    assert is_owned_link(tmp_path / "linked.mkv")
    assert not is_owned_link(tmp_path / "linked.txt")
    assert not is_owned_link(tmp_path / "real.mkv")


@pytest.mark.anyio("asyncio")
async def test_media_links_are_created_retargeted_and_removed(tmp_path) -> None:
    media = _media(tmp_path)
    reconciler = LibraryReconciler(tmp_path / "strm")
    directory = tmp_path / "strm" / "owner"
    expected = [
        _link("A/A.mkv", media / "a.mkv", fallback="A/A.strm"),
        _link("A/A.en.srt", media / "a.en.srt"),
    ]

    first = await reconciler.reconcile("owner", expected)
    second = await reconciler.reconcile("owner", expected)

    assert (first.created, first.failed) == (2, 0)
    assert (directory / "A" / "A.mkv").is_symlink()
    assert (directory / "A" / "A.mkv").read_bytes() == b"a.mkv"
    assert (second.created, second.updated, second.deleted, second.failed) == (0, 0, 0, 0)

    (directory / "keep.mkv").write_bytes(b"not ours")
    (directory / "notes.txt").symlink_to(media / "b.mkv")
    third = await reconciler.reconcile("owner", [_link("A/A.mkv", media / "b.mkv")])

    assert (third.created, third.updated, third.deleted) == (0, 1, 1)
    assert os.readlink(directory / "A" / "A.mkv") == str(media / "b.mkv")
    assert not (directory / "A" / "A.en.srt").is_symlink()
    assert (directory / "keep.mkv").read_bytes() == b"not ours"
    assert (directory / "notes.txt").is_symlink()
    assert sorted(path.name for path in media.iterdir()) == ["a.en.srt", "a.mkv", "b.mkv"]


@pytest.mark.anyio("asyncio")
async def test_failed_link_falls_back_to_pointer_file(tmp_path, monkeypatch) -> None:
    media = _media(tmp_path)
    reconciler = LibraryReconciler(tmp_path / "strm")
    directory = tmp_path / "strm" / "owner"
    expected = [
        _link("A/A.mkv", media / "a.mkv", fallback="A/A.strm"),
        _link("A/A.en.srt", media / "a.en.srt"),
    ]

    def refuse(*args, **kwargs):
        raise PermissionError("symlinks are not permitted here")

    monkeypatch.setattr(os, "symlink", refuse)
    first = await reconciler.reconcile("owner", expected)
    pointer = (directory / "A" / "A.strm").read_text(encoding="utf-8")
    second = await reconciler.reconcile("owner", expected)
    monkeypatch.undo()
    third = await reconciler.reconcile("owner", expected)

    assert (first.created, first.failed) == (1, 1)
    assert pointer == str(media / "a.mkv")
    assert (second.created, second.deleted, second.failed) == (0, 0, 1)
    assert (third.created, third.deleted, third.failed) == (2, 1, 0)
    assert (directory / "A" / "A.mkv").is_symlink()
    assert not (directory / "A" / "A.strm").exists()
