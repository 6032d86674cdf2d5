"""NFO sidecar rendering for movies, series, episodes and placeholders."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Iterable, Mapping

from ..models import EpisodeMetadata, ItemMetadata

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8" standalone="yes"?>'
PLACEHOLDER_PLOT = (
    "Sorting placeholder. This entry only keeps the series ordered in "
    "recently added views and is not real content."
)


def _text(parent: ET.Element, tag: str, value: object | None) -> None:
    if value is None:
        return
    text = str(value).strip()
    if text:
        ET.SubElement(parent, tag).text = text


def _texts(parent: ET.Element, tag: str, values: Iterable[str]) -> None:
    for value in values:
        _text(parent, tag, value)


def _format_rating(value: float | None) -> str | None:
    if value is None:
        return None
    return f"{value:.1f}"


def _unique_ids(
    parent: ET.Element, identities: Mapping[str, str], default_kind: str
) -> None:
    for kind, value in identities.items():
        element = ET.SubElement(parent, "uniqueid", type=kind)
        if kind == default_kind:
            element.set("default", "true")
        element.text = value


def _render(root: ET.Element) -> str:
    ET.indent(root, space="  ")
    return f"{XML_DECLARATION}\n{ET.tostring(root, encoding='unicode')}\n"


def _common_fields(root: ET.Element, item: ItemMetadata) -> None:
    _text(root, "title", item.title)
    _text(root, "originaltitle", item.original_title)
    _text(root, "sorttitle", item.sort_title)
    _text(root, "year", item.year)
    _text(root, "plot", item.overview)
    _text(root, "outline", item.overview)
    _text(root, "tagline", item.tagline)
    _text(root, "runtime", item.runtime_minutes)
    _text(root, "mpaa", item.content_rating)
    _text(root, "rating", _format_rating(item.community_rating))
    _text(root, "criticrating", _format_rating(item.critic_rating))
    _text(root, "premiered", item.premiere_date)
    _texts(root, "genre", item.genres)
    _texts(root, "studio", item.studios)
    _texts(root, "country", item.production_countries)
    _texts(root, "tag", item.tags)


def _credits(root: ET.Element, item: ItemMetadata) -> None:
    _texts(root, "director", item.directors)
    _texts(root, "credits", item.writers)
    for order, actor in enumerate(item.actors):
        element = ET.SubElement(root, "actor")
        _text(element, "name", actor.name)
        _text(element, "role", actor.role)
        _text(element, "order", order)
        _text(element, "thumb", actor.thumb)


def _remote_art(root: ET.Element, item: ItemMetadata) -> None:
    if item.poster_url:
        ET.SubElement(root, "thumb", aspect="poster").text = item.poster_url
    if item.backdrop_url:
        fanart = ET.SubElement(root, "fanart")
        ET.SubElement(fanart, "thumb").text = item.backdrop_url


def _lock_and_date(root: ET.Element, locked: bool, date_added: str) -> None:
    if locked:
        _text(root, "lockdata", "true")
    _text(root, "dateadded", date_added)


def movie_sidecar(
    item: ItemMetadata,
    identities: Mapping[str, str],
    date_added: str,
    *,
    locked: bool = True,
    remote_art: bool = True,
) -> str:
    root = ET.Element("movie")
    _common_fields(root, item)
    _credits(root, item)
    _unique_ids(root, identities, "imdb")
    if remote_art:
        _remote_art(root, item)
    _lock_and_date(root, locked, date_added)
    return _render(root)


def tvshow_sidecar(
    item: ItemMetadata,
    identities: Mapping[str, str],
    date_added: str,
    *,
    locked: bool = True,
    remote_art: bool = True,
) -> str:
    root = ET.Element("tvshow")
    _common_fields(root, item)
    _text(root, "studio", item.network if item.network not in item.studios else None)
    _text(root, "status", item.status)
    _credits(root, item)
    _unique_ids(root, identities, "tvdb")
    if remote_art:
        _remote_art(root, item)
    _lock_and_date(root, locked, date_added)
    return _render(root)


def episode_sidecar(
    series: ItemMetadata, episode: EpisodeMetadata, date_added: str
) -> str:
    root = ET.Element("episodedetails")
    _text(root, "title", episode.title)
    _text(root, "showtitle", series.title)
    _text(root, "season", episode.season_number)
    _text(root, "episode", episode.episode_number)
    _text(root, "plot", episode.overview)
    _text(root, "aired", episode.premiere_date)
    _text(root, "runtime", episode.runtime_minutes)
    _text(root, "dateadded", date_added)
    return _render(root)


def placeholder_sidecar(series: ItemMetadata, date_added: str) -> str:
    root = ET.Element("episodedetails")
    _text(root, "title", f"{series.title} Sorting Placeholder")
    _text(root, "showtitle", series.title)
    _text(root, "season", 0)
    _text(root, "episode", 0)
    _text(root, "plot", PLACEHOLDER_PLOT)
    _text(root, "playcount", 1)
    _text(root, "watched", "true")
    _text(root, "lockdata", "true")
    _text(root, "dateadded", date_added)
    return _render(root)
