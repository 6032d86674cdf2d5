"""Utility helpers for the PickShelf service."""

from __future__ import annotations

import re
import string
import unicodedata
from datetime import datetime, timezone


_UNSAFE_FILENAME_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_WHITESPACE_RE = re.compile(r"\s+")
_BASE36_ALPHABET = string.digits + string.ascii_lowercase

MAX_FILENAME_LENGTH = 180
DATE_ADDED_FORMAT = "%Y-%m-%d %H:%M:%S"


def slugify(value: str) -> str:
    """Return a filesystem-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower() or "item"


def sanitize_filename(value: str) -> str:
    """Strip characters media servers and filesystems reject from a name."""

    cleaned = _WHITESPACE_RE.sub(" ", value)
    cleaned = _UNSAFE_FILENAME_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    # Windows shares refuse trailing dots and spaces.
    cleaned = cleaned.rstrip(". ")
    if len(cleaned) > MAX_FILENAME_LENGTH:
        cleaned = cleaned[:MAX_FILENAME_LENGTH].rstrip(". ")
    return cleaned or "Untitled"


def to_base36(number: int) -> str:
    if number < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if number == 0:
        return "0"
    digits: list[str] = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def format_date_added(value: datetime) -> str:
    """Format a timestamp the way media server sidecars expect it."""

    return value.strftime(DATE_ADDED_FORMAT)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the stored columns."""

    return datetime.now(timezone.utc).replace(tzinfo=None)
