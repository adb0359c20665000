from __future__ import annotations

import logging
from typing import Iterable, Sequence

from engine.types import ANY, CandidateRelease, QualityProfile, QualityRule

logger = logging.getLogger(__name__)

_BYTES_PER_GB = 1024 * 1024 * 1024


def _label_key(value: str | None) -> str:
    return str(value or "").strip().lower().replace("-", "").replace(" ", "")


def rule_matches(rule: QualityRule, release: CandidateRelease) -> bool:
    if _label_key(rule.quality) not in ("", ANY) and _label_key(rule.quality) != _label_key(release.quality):
        return False
    if _label_key(rule.source) not in ("", ANY) and _label_key(rule.source) != _label_key(release.source):
        return False
    if release.seeders < int(rule.min_seeders or 0):
        return False
    if rule.max_size_gb and release.size > rule.max_size_gb * _BYTES_PER_GB:
        return False
    return True


def _preference_key(release: CandidateRelease) -> tuple:
    # Ties on seeders fall back to indexer coverage, then title.
    return (-release.seeders, -release.indexer_count, release.title)


def select_release(
    releases: Iterable[CandidateRelease],
    profile: QualityProfile | None,
    *,
    fallback_to_best: bool = False,
) -> CandidateRelease | None:
    """Pick one release using the profile's rules in preference order.

    The first rule satisfied by any release decides; ties inside that rule go
    to the better-seeded release. With no profile (or an empty one) the
    best-seeded release wins. When no rule is satisfied nothing is selected
    unless ``fallback_to_best`` is set.
    """
    candidates: Sequence[CandidateRelease] = list(releases)
    if not candidates:
        return None
    if profile is None or not profile.rules:
        return sorted(candidates, key=_preference_key)[0]

    for index, rule in enumerate(profile.rules):
        satisfied = [release for release in candidates if rule_matches(rule, release)]
        if satisfied:
            selected = sorted(satisfied, key=_preference_key)[0]
            logger.debug(
                "[QUALITY] profile=%s rule=%d selected=%r seeders=%d",
                profile.name,
                index,
                selected.title,
                selected.seeders,
            )
            return selected

    logger.info(
        "[QUALITY] no release satisfies profile=%s candidates=%d fallback=%s",
        profile.name,
        len(candidates),
        fallback_to_best,
    )
    if fallback_to_best:
        return sorted(candidates, key=_preference_key)[0]
    return None
