"""Dedup, integrity filtering and scene grouping for raw indexer results."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Iterable

from config.settings import (
    DEFAULT_GROUPING_THRESHOLD,
    GROUP_PREFIX_MIN_LENGTH,
    GROUP_SHORT_TITLE_LENGTH,
)
from engine.title_normalization import extract_scene_title
from engine.types import QUALITY_UNKNOWN, SOURCE_UNKNOWN, CandidateRelease

logger = logging.getLogger(__name__)

# Checked in order; first hit wins.
_QUALITY_MARKERS = (
    ("2160p", ("2160p", "4k")),
    ("1080p", ("1080p",)),
    ("720p", ("720p",)),
    ("480p", ("480p",)),
)
_SOURCE_MARKERS = (
    ("WEB-DL", ("web-dl", "webdl")),
    ("WEBRip", ("webrip",)),
    ("BluRay", ("bluray", "blu-ray")),
    ("HDTV", ("hdtv",)),
)


@dataclass
class ReleaseGroup:
    """Releases that denote the same underlying scene."""

    key: str
    releases: list[CandidateRelease] = field(default_factory=list)

    @property
    def indexers(self) -> set[str]:
        names = set()
        for release in self.releases:
            names.update(release.indexers or ((release.indexer,) if release.indexer else ()))
        return names


def detect_quality(title: str) -> str:
    lowered = str(title or "").lower()
    for label, markers in _QUALITY_MARKERS:
        if any(marker in lowered for marker in markers):
            return label
    return QUALITY_UNKNOWN


def detect_source(title: str) -> str:
    lowered = str(title or "").lower()
    for label, markers in _SOURCE_MARKERS:
        if any(marker in lowered for marker in markers):
            return label
    return SOURCE_UNKNOWN


def label_release(release: CandidateRelease) -> CandidateRelease:
    """Fill quality/source labels detected from the release title."""
    return replace(
        release,
        quality=detect_quality(release.title),
        source=detect_source(release.title),
        indexers=release.indexers or ((release.indexer,) if release.indexer else ()),
    )


def dedupe_releases(releases: Iterable[CandidateRelease]) -> list[CandidateRelease]:
    """Collapse releases sharing a content hash into the first occurrence.

    Releases without a hash are keyed by ``title-size``. Indexer names are
    merged and the better-seeded copy's counts and download URL are kept.
    """
    merged: dict[str, CandidateRelease] = {}
    for release in releases:
        key = release.dedup_key
        existing = merged.get(key)
        own_indexers = release.indexers or ((release.indexer,) if release.indexer else ())
        if existing is None:
            merged[key] = replace(release, indexers=tuple(dict.fromkeys(own_indexers)))
            continue
        if not release.info_hash:
            continue
        indexers = tuple(dict.fromkeys((*existing.indexers, *own_indexers)))
        updated = replace(existing, indexers=indexers)
        if release.seeders > existing.seeders:
            updated = replace(
                updated,
                seeders=release.seeders,
                leechers=release.leechers,
                download_url=release.download_url or existing.download_url,
            )
        merged[key] = updated
    return list(merged.values())


def _name_pattern(name: str) -> re.Pattern[str] | None:
    words = [re.escape(word) for word in name.lower().split() if word]
    if not words:
        return None
    if len(words) == 1:
        return re.compile(rf"\b{words[0]}\b", re.IGNORECASE)
    pattern = rf"\b{words[0]}"
    for word in words[1:]:
        pattern += rf"(\s+\w+){{0,2}}\s+{word}"
    return re.compile(pattern + r"\b", re.IGNORECASE)


def filter_by_name(
    releases: Iterable[CandidateRelease],
    name: str,
    aliases: Iterable[str] = (),
) -> list[CandidateRelease]:
    """Keep releases whose title carries the entity name or one of its aliases.

    Multi-word names must appear in order with at most two words between them,
    so "jade kush" never passes for "jade harper".
    """
    patterns = [p for p in (_name_pattern(n) for n in (name, *aliases)) if p is not None]
    releases = list(releases)
    kept = [r for r in releases if any(p.search(r.title.lower()) for p in patterns)]
    eliminated = len(releases) - len(kept)
    if eliminated:
        logger.info(
            "[SEARCH] name filter entity=%r before=%d after=%d eliminated=%d",
            name,
            len(releases),
            len(kept),
            eliminated,
        )
    return kept


def group_by_scene(
    releases: Iterable[CandidateRelease],
    *,
    threshold: float = DEFAULT_GROUPING_THRESHOLD,
) -> list[ReleaseGroup]:
    """Cluster releases whose cleaned titles denote the same scene.

    Short keys only group on exact equality. Longer keys also merge when one is
    a prefix of the other, the shorter has enough characters and the length
    ratio reaches ``threshold``; the merged group takes the longer key.
    """
    groups: dict[str, list[CandidateRelease]] = {}
    for release in releases:
        key = extract_scene_title(release.title)
        if len(key) < GROUP_SHORT_TITLE_LENGTH:
            groups.setdefault(key, []).append(release)
            continue

        matched_key = None
        for existing_key in list(groups):
            if len(existing_key) < GROUP_SHORT_TITLE_LENGTH:
                continue
            if existing_key == key:
                matched_key = existing_key
                break
            shorter, longer = (key, existing_key) if len(key) < len(existing_key) else (existing_key, key)
            if len(shorter) < GROUP_PREFIX_MIN_LENGTH or not longer.startswith(shorter):
                continue
            if len(shorter) / len(longer) < threshold:
                continue
            if longer == existing_key:
                matched_key = existing_key
            else:
                groups[longer] = groups.pop(existing_key)
                matched_key = longer
            break

        groups.setdefault(matched_key or key, []).append(release)
    return [ReleaseGroup(key=key, releases=members) for key, members in groups.items()]


def _compact(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(value or "").lower())


def filter_by_studio(
    releases: Iterable[CandidateRelease],
    name: str,
    aliases: Iterable[str] = (),
) -> list[CandidateRelease]:
    """Keep releases whose title carries the studio name, ignoring spacing and punctuation.

    Studio names are usually written run together ("BrazzersExxtra"), so the
    comparison happens on alphanumerics only.
    """
    needles = [c for c in (_compact(n) for n in (name, *aliases)) if len(c) >= 3]
    releases = list(releases)
    kept = [r for r in releases if any(n in _compact(r.title) for n in needles)]
    if len(kept) != len(releases):
        logger.info(
            "[SEARCH] studio filter entity=%r before=%d after=%d",
            name,
            len(releases),
            len(kept),
        )
    return kept
