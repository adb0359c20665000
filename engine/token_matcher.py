"""Deterministic token-set matcher.

Scores a release title against candidate scenes from meaningful title tokens
and refuses to guess: thin queries, low scores, near-ties and negligible
overlap all produce no match.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from config.settings import (
    TOKEN_MATCH_GAP_FLOOR,
    TOKEN_MATCH_MIN_OVERLAP,
    TOKEN_MATCH_MIN_TOKENS,
    TOKEN_MATCH_REQUIRED_GAP,
    TOKEN_MATCH_THRESHOLD,
)
from engine.title_normalization import tokenize
from engine.types import SceneMetadata

logger = logging.getLogger(__name__)

_WEIGHTS = {
    "overlap": 0.50,
    "sequence": 0.25,
    "length": 0.15,
    "date": 0.06,
    "studio": 0.04,
}

_EMPTY_BREAKDOWN = {key: 0.0 for key in _WEIGHTS}


@dataclass(frozen=True)
class TokenMatchOptions:
    threshold: float = TOKEN_MATCH_THRESHOLD
    min_tokens: int = TOKEN_MATCH_MIN_TOKENS
    required_gap: float = TOKEN_MATCH_REQUIRED_GAP
    gap_floor: float = TOKEN_MATCH_GAP_FLOOR
    min_overlap: float = TOKEN_MATCH_MIN_OVERLAP


@dataclass(frozen=True)
class TokenMatchResult:
    scene_id: str
    scene_title: str
    score: float
    breakdown: dict[str, float]


def jaccard(first: list[str], second: list[str]) -> float:
    if not first or not second:
        return 0.0
    set_first = set(first)
    set_second = set(second)
    return len(set_first & set_second) / len(set_first | set_second)


def sequence_ratio(first: list[str], second: list[str]) -> float:
    """Longest common subsequence of tokens over the longer token list."""
    if not first or not second:
        return 0.0
    previous = [0] * (len(second) + 1)
    for token in first:
        current = [0]
        for j, other in enumerate(second, start=1):
            if token == other:
                current.append(previous[j - 1] + 1)
            else:
                current.append(max(previous[j], current[j - 1]))
        previous = current
    return previous[-1] / max(len(first), len(second))


def length_similarity(first_count: int, second_count: int) -> float:
    longest = max(first_count, second_count)
    if longest == 0:
        return 1.0
    return min(first_count, second_count) / longest


def _exact_date(first: str | None, second: str | None) -> float:
    if not first or not second:
        return 0.0
    return 1.0 if first == second else 0.0


def _exact_studio(first: str | None, second: str | None) -> float:
    if not first or not second:
        return 0.0
    return 1.0 if first.lower() == second.lower() else 0.0


def score_tokens(
    query_tokens: list[str],
    candidate_tokens: list[str],
    *,
    query_date: str | None = None,
    candidate_date: str | None = None,
    query_studio: str | None = None,
    candidate_studio: str | None = None,
) -> tuple[float, dict[str, float]]:
    """Weighted score in [0, 1]; zero whenever either side has no tokens."""
    if not query_tokens or not candidate_tokens:
        return 0.0, dict(_EMPTY_BREAKDOWN)
    breakdown = {
        "overlap": jaccard(query_tokens, candidate_tokens),
        "sequence": sequence_ratio(query_tokens, candidate_tokens),
        "length": length_similarity(len(query_tokens), len(candidate_tokens)),
        "date": _exact_date(query_date, candidate_date),
        "studio": _exact_studio(query_studio, candidate_studio),
    }
    score = sum(breakdown[key] * weight for key, weight in _WEIGHTS.items())
    return min(1.0, max(0.0, score)), breakdown


def select_match(
    scored: list[TokenMatchResult],
    options: TokenMatchOptions | None = None,
    *,
    query: str = "",
) -> TokenMatchResult | None:
    """Apply the acceptance rules to candidates already scored against one query."""
    options = options or TokenMatchOptions()
    if not scored:
        return None
    ranked = sorted(scored, key=lambda item: -item.score)
    best = ranked[0]
    second = ranked[1] if len(ranked) > 1 else None

    if best.score < options.threshold:
        logger.info(
            "[TOKEN_MATCH] reject=below_threshold query=%r best=%r score=%.3f threshold=%.2f",
            query,
            best.scene_title,
            best.score,
            options.threshold,
        )
        return None

    if second is not None and second.score > options.gap_floor:
        ratio = best.score / second.score
        if ratio < options.required_gap:
            logger.info(
                "[TOKEN_MATCH] reject=ambiguous query=%r best=%r second=%r ratio=%.2f required=%.2f",
                query,
                best.scene_title,
                second.scene_title,
                ratio,
                options.required_gap,
            )
            return None

    if best.breakdown.get("overlap", 0.0) < options.min_overlap:
        logger.info(
            "[TOKEN_MATCH] reject=low_overlap query=%r best=%r overlap=%.3f",
            query,
            best.scene_title,
            best.breakdown.get("overlap", 0.0),
        )
        return None
    return best


class TokenMatcher:
    def __init__(self, options: TokenMatchOptions | None = None) -> None:
        self.options = options or TokenMatchOptions()

    def score_candidates(
        self,
        query: str,
        candidates: Iterable[SceneMetadata],
        *,
        query_date: str | None = None,
        query_studio: str | None = None,
    ) -> list[TokenMatchResult]:
        query_tokens = tokenize(query)
        results = []
        for candidate in candidates:
            score, breakdown = score_tokens(
                query_tokens,
                tokenize(candidate.title),
                query_date=query_date,
                candidate_date=candidate.date,
                query_studio=query_studio,
                candidate_studio=candidate.studio,
            )
            results.append(
                TokenMatchResult(
                    scene_id=candidate.id,
                    scene_title=candidate.title,
                    score=score,
                    breakdown=breakdown,
                )
            )
        return results

    def find_best_match(
        self,
        query: str,
        candidates: Iterable[SceneMetadata],
        *,
        query_date: str | None = None,
        query_studio: str | None = None,
    ) -> TokenMatchResult | None:
        candidates = list(candidates)
        if not candidates:
            return None
        query_tokens = tokenize(query)
        if len(query_tokens) < self.options.min_tokens:
            logger.info(
                "[TOKEN_MATCH] reject=too_few_tokens query=%r tokens=%d required=%d",
                query,
                len(query_tokens),
                self.options.min_tokens,
            )
            return None
        scored = self.score_candidates(
            query,
            candidates,
            query_date=query_date,
            query_studio=query_studio,
        )
        return select_match(scored, self.options, query=query)
