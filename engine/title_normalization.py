from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

_WS_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]")

_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "with", "for", "from", "at", "by",
        "in", "on", "to", "of", "is", "are", "was", "were",
        "xxx", "porn", "sex", "video", "scene", "clip",
        "mp4", "mkv", "avi", "1080p", "720p", "480p", "2160p", "4k",
    }
)
_MIN_TOKEN_LENGTH = 3

# Applied in order; each pattern is replaced by the paired string.
_CORE_TITLE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(
            r"\s+(want more|watch and download|get of accounts|backup/latest|to watch video|#hd|#in).*",
            re.IGNORECASE,
        ),
        "",
    ),
    (re.compile(r"t\.me/\S+", re.IGNORECASE), ""),
    (re.compile(r"https?://\S+", re.IGNORECASE), ""),
    (re.compile(r"ftp://\S+", re.IGNORECASE), ""),
    (re.compile(r"www\.\S+", re.IGNORECASE), ""),
    (re.compile(r"[a-z0-9-]+\.(com|net|org|io|to|cc|tv|xxx|html)\S*", re.IGNORECASE), ""),
    (re.compile(r"\b(savefiles|lulustream|doodstream|streamtape|bigwarp)\.[\w/]+", re.IGNORECASE), ""),
    (re.compile(r"[-=]>"), " "),
    (re.compile(r"<[-=]"), " "),
    (re.compile(r"\\r\\n|\\n"), " "),
    (
        re.compile(
            r"\b(onlyfans|manyvids|fansly|patreon|fancentro|pornhub|xvideos|chaturbate|cam4|"
            r"myfreecams|mfc|streamate|mrluckyraw|tagteampov|baddiesonlypov)[-\s]*",
            re.IGNORECASE,
        ),
        "",
    ),
    (
        re.compile(
            r"\b(new|full|xxx|nsfw|leaked|exclusive|premium|vip|hot|sexy|latest|hd|rq)\b",
            re.IGNORECASE,
        ),
        "",
    ),
    (re.compile(r"\b\d{2}\s+\d{2}\s+\d{2}\b"), ""),
    (re.compile(r"\b\d{4}\s+\d{2}\s+\d{2}\b"), ""),
    (re.compile(r"\b(19|20)\d{2}[-_.]\d{2}[-_.]\d{2}\b"), ""),
    (re.compile(r"\b(19|20)\d{2}\b"), ""),
    (re.compile(r"\b(2160p|1080p|720p|480p|4k|uhd|hd|sd)\b", re.IGNORECASE), ""),
    (re.compile(r"\b(web-?dl|webrip|bluray|blu-ray|hdtv|dvdrip|bdrip|brrip)\b", re.IGNORECASE), ""),
    (re.compile(r"\b(h\.?264|h\.?265|x264|x265|hevc|avc|mpeg|divx|xvid)\b", re.IGNORECASE), ""),
    (re.compile(r"\b(aac|ac3|dts|flac|mp3|dd5\.1|dd2\.0|atmos)\b", re.IGNORECASE), ""),
    (re.compile(r"\b(mp4|mkv|avi|wmv|mov|flv|m4v|ts|mpg|mpeg)\b", re.IGNORECASE), ""),
    (re.compile(r"\[.*?\]"), ""),
    (re.compile(r"\(.*?\)"), ""),
    (re.compile(r"\b\d+(\.\d+)?\s?(gb|mb|gib|mib)\b", re.IGNORECASE), ""),
    (re.compile(r"\b(s\d{2}e\d{2}|e\d{2,3})\b", re.IGNORECASE), ""),
    (
        re.compile(
            r"\b(repack|proper|real|retail|extended|unrated|directors?\.cut|remastered|xleech|p2p|xc)\b",
            re.IGNORECASE,
        ),
        "",
    ),
    (re.compile(r'\\"'), '"'),
    (re.compile(r"[-_.]{2,}"), " "),
)
_EDGE_PUNCT_RE = re.compile(r'^[-_.,"]+|[-_.,"]+$')


def normalize(title: str | None) -> str:
    """Lowercase, replace punctuation with spaces and collapse whitespace."""
    text = str(title or "").lower()
    text = _NON_WORD_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def tokenize(title: str | None) -> list[str]:
    """Return meaningful tokens: no stop-words, no short or numeric-only tokens."""
    tokens = []
    for word in normalize(title).split(" "):
        if len(word) < _MIN_TOKEN_LENGTH:
            continue
        if word in _STOP_WORDS or word.isdigit():
            continue
        tokens.append(word)
    return tokens


def extract_core_title(title: str | None) -> str:
    """Strip release noise (sites, dates, resolution, codecs, tags) from a release title.

    Falls back to the raw title when nothing survives the cleanup.
    """
    raw = str(title or "")
    cleaned = raw
    for pattern, replacement in _CORE_TITLE_PATTERNS:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = _WS_RE.sub(" ", cleaned).strip()
    cleaned = _EDGE_PUNCT_RE.sub("", cleaned)
    return cleaned or raw


def remove_metadata(title: str | None) -> str:
    return normalize(extract_core_title(title))


def extract_scene_title(title: str | None) -> str:
    """Grouping key for releases of the same underlying scene."""
    return remove_metadata(title)


def length_ratio(first: str, second: str) -> float:
    len_first = len(first or "")
    len_second = len(second or "")
    if len_first == 0 or len_second == 0:
        return 0.0
    return min(len_first, len_second) / max(len_first, len_second)


def is_partial_match(shorter: str, longer: str, min_length: int = 20) -> bool:
    return len(shorter) >= min_length and longer.startswith(shorter)


def levenshtein_similarity(first: str, second: str) -> float:
    """``1 - distance / max_len``; two empty strings are identical."""
    max_len = max(len(first), len(second))
    if max_len == 0:
        return 1.0
    return (max_len - Levenshtein.distance(first, second)) / max_len
