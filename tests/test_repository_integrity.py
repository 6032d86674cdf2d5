"""Repository-level checks that generated library output stays out of the tree."""

from __future__ import annotations

from pathlib import Path

import pytest

from pickshelf.services.reconciler import is_owned, is_owned_link

REPO_ROOT = Path(__file__).resolve().parents[1]
DATABASE_SUFFIXES = (".db", ".sqlite", ".sqlite3", ".db-journal", ".db-wal", ".db-shm")
IGNORED_PARTS = {"__pycache__", ".mypy_cache", ".pytest_cache"}


def _generated_files(root: Path) -> list[Path]:
    found: list[Path] = []
    for path in root.rglob("*"):
        if any(part in IGNORED_PARTS for part in path.parts):
            continue
        if path.is_symlink() and is_owned_link(path):
            found.append(path)
        elif path.is_file() and (
            is_owned(path.name) or path.name.lower().endswith(DATABASE_SUFFIXES)
        ):
            found.append(path)
    return sorted(found)


@pytest.mark.parametrize("folder", ["pickshelf", "tests"])
def test_source_folders_hold_no_generated_artifacts(folder: str) -> None:
    """Reconciled pointers, sidecars, links and SQLite files never land in source."""

    offending = _generated_files(REPO_ROOT / folder)

    assert not offending, "Generated artifacts found in the source tree: " + ", ".join(
        str(path.relative_to(REPO_ROOT)) for path in offending
    )
