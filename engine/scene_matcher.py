"""Staged title matcher used before a release is queued automatically.

Strategies are tried per scene in priority order (exact, truncated, partial,
learned, levenshtein). The first one that accepts wins for that scene and the
best score across all scenes is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from config.settings import (
    DEFAULT_GROUPING_THRESHOLD,
    DEFAULT_MATCH_THRESHOLD,
    PARTIAL_MATCH_MIN_LENGTH,
)
from engine.date_extraction import date_bonus, extract_date
from engine.title_normalization import (
    is_partial_match,
    length_ratio,
    levenshtein_similarity,
    normalize,
    remove_metadata,
)
from engine.types import MatchResult, SceneMetadata

logger = logging.getLogger(__name__)

METHOD_EXACT = "exact"
METHOD_TRUNCATED = "truncated"
METHOD_PARTIAL = "partial"
METHOD_LEARNED = "learned"
METHOD_LEVENSHTEIN = "levenshtein"

EXACT_SCORE = 100.0


class _TitleSimilarity(Protocol):
    @property
    def is_available(self) -> bool:
        ...

    def similarity(self, first: str, second: str) -> float:
        """Return a 0-1 relevance score for two titles."""


@dataclass(frozen=True)
class MatchSettings:
    learned_enabled: bool = False
    learned_threshold: float = DEFAULT_GROUPING_THRESHOLD
    grouping_threshold: float = DEFAULT_GROUPING_THRESHOLD
    levenshtein_threshold: float = DEFAULT_MATCH_THRESHOLD


def _match_truncated(first: str, second: str, threshold: float) -> tuple[float, float] | None:
    if not (first.startswith(second) or second.startswith(first)):
        return None
    ratio = length_ratio(first, second)
    if ratio < threshold:
        return None
    return 90.0 + ratio * 5.0, ratio


def _match_partial(first: str, second: str) -> tuple[float, float] | None:
    shorter, longer = (first, second) if len(first) < len(second) else (second, first)
    if not is_partial_match(shorter, longer, PARTIAL_MATCH_MIN_LENGTH):
        return None
    ratio = length_ratio(first, second)
    return 80.0 + ratio * 5.0, ratio


class SceneMatcher:
    def __init__(self, scorer: _TitleSimilarity | None = None) -> None:
        self._scorer = scorer

    def match_titles(
        self,
        first: str,
        second: str,
        settings: MatchSettings | None = None,
    ) -> tuple[float, str, float] | None:
        """Compare two already-normalized titles.

        Returns ``(score, method, confidence)`` or ``None`` when no strategy accepts.
        The accept/reject decision does not depend on argument order.
        """
        settings = settings or MatchSettings()
        if first == second:
            return EXACT_SCORE, METHOD_EXACT, 1.0

        truncated = _match_truncated(first, second, settings.grouping_threshold)
        if truncated:
            return truncated[0], METHOD_TRUNCATED, truncated[1]

        partial = _match_partial(first, second)
        if partial:
            return partial[0], METHOD_PARTIAL, partial[1]

        if settings.learned_enabled and self._scorer is not None and self._scorer.is_available:
            try:
                similarity = self._scorer.similarity(first, second)
            except Exception as exc:
                logger.warning("Learned matching failed, falling back to levenshtein: %s", exc)
            else:
                if similarity >= settings.learned_threshold:
                    return similarity * 100.0, METHOD_LEARNED, similarity

        similarity = levenshtein_similarity(first, second)
        if similarity >= settings.levenshtein_threshold:
            return similarity * 100.0, METHOD_LEVENSHTEIN, similarity
        return None

    def find_best_match(
        self,
        release_title: str,
        scenes: Iterable[SceneMetadata],
        settings: MatchSettings | None = None,
    ) -> MatchResult | None:
        settings = settings or MatchSettings()
        normalized_release = remove_metadata(release_title)
        release_date = extract_date(release_title)

        best: MatchResult | None = None
        for scene in scenes:
            matched = self.match_titles(normalized_release, normalize(scene.title), settings)
            if matched is None:
                continue
            score, method, confidence = matched
            score += date_bonus(release_date, scene.date)
            if best is None or score > best.score:
                best = MatchResult(
                    scene_id=scene.id,
                    score=score,
                    method=method,
                    confidence=confidence,
                    scene_title=scene.title,
                )
            if score >= EXACT_SCORE:
                break
        return best
