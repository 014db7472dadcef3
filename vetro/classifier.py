"""Filename heuristics turning raw video file names into catalog metadata."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable

VIDEO_EXTENSIONS: frozenset[str] = frozenset(
    {".mp4", ".mkv", ".avi", ".webm", ".mov", ".wmv", ".flv", ".m4v", ".ts"}
)
IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp"}
)

FALLBACK_TITLE = "Untitled"

# Release metadata stripped from titles. Matched case-insensitively as whole words.
RESOLUTION_TAGS = ("2160p", "1080p", "720p", "480p", "4k", "uhd", "hdr", "10bit", "8bit")
SOURCE_TAGS = (
    "webrip", "web-rip", "web-dl", "webdl", "bluray", "blu-ray", "brrip", "bdrip",
    "dvdrip", "hdtv", "hdrip", "remux",
)
CODEC_TAGS = (
    "x264", "x265", "h264", "h265", "hevc", "avc", "aac", "ac3", "dts", "atmos",
    "truehd", "flac", "mp3",
)
EDITION_TAGS = (
    "remastered", "extended", "unrated", "directors cut", "proper", "repack",
)
LANGUAGE_TAGS = (
    "multi", "dual", "sub", "subs", "dubbed", "eng", "ita", "fra", "ger", "spa",
    "por", "rus", "hin", "jpn", "kor", "chi",
)
SERVICE_TAGS = ("amzn", "nf", "hulu", "dsnp", "hmax", "atvp", "pcok")
GROUP_TAGS = (
    "yts", "rarbg", "eztv", "ettv", "sparks", "fgt", "ion10", "yify", "shaanig",
    "ganool", "mkvcage", "tigole", "qxr", "ntb", "ctrlhd", "epsilon", "drones",
    "megusta", "playar", "vxt", "cinefile", "nogrp",
)

RELEASE_TAGS: tuple[str, ...] = (
    RESOLUTION_TAGS
    + SOURCE_TAGS
    + CODEC_TAGS
    + EDITION_TAGS
    + LANGUAGE_TAGS
    + SERVICE_TAGS
    + GROUP_TAGS
)

EXTENSION_RE = re.compile(r"\.([A-Za-z0-9]{1,4})$")
SEPARATOR_RE = re.compile(r"[._]+")
EPISODE_RE = re.compile(
    r"(?<![A-Za-z0-9])S[\s.\-]*(\d{1,2})[\s.\-]*E[\s.\-]*(\d{1,3})(?!\d)",
    re.IGNORECASE,
)
YEAR_RE = re.compile(r"(?<![^\s(\[\-])((?:19|20)\d{2})(?![^\s)\]\-])")
BRACKETS_RE = re.compile(r"[\[\](){}]")
LONE_HYPHEN_RE = re.compile(r"(?:^|\s)-+(?=\s|$)")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class ParsedName:
    """Best-effort metadata extracted from a file name."""

    title: str
    year: int = 0
    season: int = 0
    episode: int = 0

    @property
    def is_episode(self) -> bool:
        """Return whether the name carries a usable season/episode marker."""

        return self.season >= 1 and self.episode >= 1


def extension(name: str) -> str:
    """Return the lowercase extension of ``name`` including the dot."""

    _, dot, suffix = name.rpartition(".")
    return f".{suffix.lower()}" if dot else ""


def is_video(name: str) -> bool:
    return extension(name) in VIDEO_EXTENSIONS and not name.startswith(".")


def is_image(name: str) -> bool:
    return extension(name) in IMAGE_EXTENSIONS and not name.startswith(".")


def series_key(title: str) -> str:
    """Normalise a series title for case and whitespace-insensitive grouping."""

    return WHITESPACE_RE.sub(" ", (title or "").lower()).strip()


@lru_cache(maxsize=8)
def _tag_pattern(tags: tuple[str, ...]) -> re.Pattern[str] | None:
    cleaned = sorted({tag.strip().lower() for tag in tags if tag.strip()}, key=len, reverse=True)
    if not cleaned:
        return None
    alternation = "|".join(re.escape(tag) for tag in cleaned)
    return re.compile(rf"(?<![A-Za-z0-9])(?:{alternation})(?![A-Za-z0-9])", re.IGNORECASE)


def strip_release_tags(value: str, tags: Iterable[str] = RELEASE_TAGS) -> str:
    """Remove release metadata tokens from ``value``."""

    pattern = _tag_pattern(tuple(tags))
    if pattern is None:
        return value
    return pattern.sub(" ", value)


def _strip_extension(name: str) -> str:
    match = EXTENSION_RE.search(name)
    if match and not match.group(1).isdigit():
        return name[: match.start()]
    return name


def classify(
    file_name: str | None, *, release_tags: Iterable[str] = RELEASE_TAGS
) -> ParsedName:
    """Infer title, year and season/episode numbers from a file name.

    The function never raises: names without any recognisable tokens degrade to
    the cleaned raw name, and empty input yields ``"Untitled"``. Anything after
    an ``SxxEyy`` marker is discarded, so episode titles are not extracted.
    """

    if not file_name:
        return ParsedName(title=FALLBACK_TITLE)

    base = str(file_name).replace("\\", "/").rsplit("/", 1)[-1]
    working = SEPARATOR_RE.sub(" ", _strip_extension(base))

    season = episode = 0
    marker = EPISODE_RE.search(working)
    if marker:
        season = int(marker.group(1))
        episode = int(marker.group(2))
        working = working[: marker.start()]

    year = 0
    year_matches = list(YEAR_RE.finditer(working))
    if year_matches:
        # The last candidate wins so titles such as "2001 A Space Odyssey 1968" keep their lead.
        chosen = year_matches[-1]
        year = int(chosen.group(1))
        working = working[: chosen.start()] + " " + working[chosen.end():]

    title = _clean(strip_release_tags(working, release_tags))
    return ParsedName(
        title=title or FALLBACK_TITLE,
        year=year,
        season=season,
        episode=episode,
    )


def _clean(value: str) -> str:
    value = BRACKETS_RE.sub(" ", value)
    value = LONE_HYPHEN_RE.sub(" ", value)
    return WHITESPACE_RE.sub(" ", value).strip()
