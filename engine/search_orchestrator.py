"""Entity and scene searches: indexer results in, quality-selected matches out."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Sequence

from config.settings import (
    DEFAULT_GROUPING_THRESHOLD,
    DEFAULT_MATCH_THRESHOLD,
    INDEXER_SEARCH_LIMIT,
    LEARNED_MATCH_THRESHOLD,
    MIN_GROUP_INDEXERS,
)
from engine.date_extraction import extract_date
from engine.errors import IndexerError, ScenarrError
from engine.learned_scorer import LearnedScorer, ScoringCandidate, ScoringQuery
from engine.quality_selection import select_release
from engine.scene_matcher import MatchSettings, SceneMatcher
from engine.search_filters import (
    ReleaseGroup,
    dedupe_releases,
    filter_by_name,
    filter_by_studio,
    group_by_scene,
    label_release,
)
from engine.title_normalization import extract_core_title, remove_metadata
from engine.token_matcher import TokenMatcher
from engine.types import (
    ENTITY_PERFORMER,
    ENTITY_SCENE,
    ENTITY_STUDIO,
    CandidateRelease,
    EntityRecord,
    MatchResult,
    QualityProfile,
    SceneMetadata,
    SearchResult,
)

logger = logging.getLogger(__name__)

MATCH_STAGED = "staged"
MATCH_TOKEN = "token"
MATCH_LEARNED = "learned"
MATCH_METHODS = (MATCH_STAGED, MATCH_TOKEN, MATCH_LEARNED)


@dataclass(frozen=True)
class SearchSettings:
    match_method: str = MATCH_STAGED
    learned_enabled: bool = False
    include_aliases: bool = False
    accept_unmatched: bool = True
    min_indexers: int = MIN_GROUP_INDEXERS
    search_limit: int = INDEXER_SEARCH_LIMIT
    grouping_threshold: float = DEFAULT_GROUPING_THRESHOLD
    match_threshold: float = DEFAULT_MATCH_THRESHOLD
    learned_threshold: float = LEARNED_MATCH_THRESHOLD
    fallback_to_best: bool = False

    @property
    def match_settings(self) -> MatchSettings:
        return MatchSettings(
            learned_enabled=self.learned_enabled,
            learned_threshold=self.learned_threshold,
            grouping_threshold=self.grouping_threshold,
            levenshtein_threshold=self.match_threshold,
        )


@dataclass
class _SceneClaim:
    match: MatchResult
    releases: list[CandidateRelease] = field(default_factory=list)


def _run_indexer_search(indexer, query: str, limit: int) -> list[CandidateRelease]:
    """Query one indexer; connectivity failures are logged and yield no releases."""
    try:
        releases = indexer.search(query, limit)
    except IndexerError as exc:
        logger.warning(
            "[SEARCH] indexer failed indexer=%s query=%r error=%s",
            getattr(indexer, "name", repr(indexer)),
            query,
            exc,
        )
        return []
    return [label_release(release) for release in releases or ()]


def _result_order(result: SearchResult) -> tuple:
    return (0 if result.is_matched else 1, -result.release.seeders, result.release.title)


class SearchOrchestrator:
    """Runs the search pipeline for one entity or scene at a time.

    Collaborators are injected: ``indexers`` expose ``search(query, limit)``,
    ``entity_source`` resolves entities and their known scenes.
    """

    def __init__(
        self,
        indexers: Sequence,
        *,
        entity_source=None,
        settings: SearchSettings | None = None,
        scene_matcher: SceneMatcher | None = None,
        token_matcher: TokenMatcher | None = None,
        learned_scorer: LearnedScorer | None = None,
    ) -> None:
        self.indexers = list(indexers)
        self.entity_source = entity_source
        self.settings = settings or SearchSettings()
        self.learned_scorer = learned_scorer
        self.scene_matcher = scene_matcher or SceneMatcher(learned_scorer)
        self.token_matcher = token_matcher or TokenMatcher()

    def fetch_releases(self, queries: Iterable[str]) -> list[CandidateRelease]:
        raw: list[CandidateRelease] = []
        for query in dict.fromkeys(q for q in queries if q):
            for indexer in self.indexers:
                raw.extend(_run_indexer_search(indexer, query, self.settings.search_limit))
        return raw

    def search_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        profile: QualityProfile | None = None,
    ) -> list[SearchResult]:
        if self.entity_source is None:
            raise ScenarrError("search_for_entity needs an entity source")
        if entity_type == ENTITY_SCENE:
            scene = self.entity_source.get_scene(entity_id)
            if scene is None:
                logger.warning("[SEARCH] scene not found id=%s", entity_id)
                return []
            result = self.search_for_scene(scene, profile)
            return [result] if result else []

        entity = self.entity_source.get_entity(entity_type, entity_id)
        if entity is None:
            logger.warning("[SEARCH] %s not found id=%s", entity_type, entity_id)
            return []
        scenes = self.entity_source.list_scenes(entity)
        queries = [entity.name]
        if self.settings.include_aliases:
            queries.extend(entity.aliases)
        raw = self.fetch_releases(queries)
        logger.info(
            "[SEARCH] entity=%s name=%r queries=%d raw=%d known_scenes=%d",
            entity_type,
            entity.name,
            len(queries),
            len(raw),
            len(scenes),
        )
        return self.rank_releases(entity, scenes, raw, profile)

    def rank_releases(
        self,
        entity: EntityRecord,
        scenes: Sequence[SceneMetadata],
        raw: Iterable[CandidateRelease],
        profile: QualityProfile | None = None,
    ) -> list[SearchResult]:
        """Dedup, filter, group, match and quality-select raw indexer output.

        Pure with respect to its inputs, so the same raw output always yields
        the same selection.
        """
        aliases = entity.aliases if self.settings.include_aliases else ()
        releases = dedupe_releases(raw)
        if entity.entity_type == ENTITY_STUDIO:
            releases = filter_by_studio(releases, entity.name, aliases)
        else:
            releases = filter_by_name(releases, entity.name, aliases)
        groups = group_by_scene(releases, threshold=self.settings.grouping_threshold)
        logger.info(
            "[SEARCH] entity=%r unique=%d groups=%d",
            entity.name,
            len(releases),
            len(groups),
        )

        matches = self._match_groups(entity, groups, scenes)
        claims: dict[str, _SceneClaim] = {}
        unmatched: list[ReleaseGroup] = []
        for group, match in zip(groups, matches):
            if match is None:
                unmatched.append(group)
                continue
            claim = claims.get(match.scene_id)
            if claim is None:
                claims[match.scene_id] = _SceneClaim(match=match, releases=list(group.releases))
                continue
            # Another group already claimed this scene; pool the releases.
            claim.releases.extend(group.releases)
            if match.score > claim.match.score:
                claim.match = match

        results: list[SearchResult] = []
        for scene_id, claim in claims.items():
            selected = select_release(claim.releases, profile, fallback_to_best=self.settings.fallback_to_best)
            if selected is None:
                continue
            results.append(
                SearchResult(
                    release=selected,
                    scene_id=scene_id,
                    scene_title=claim.match.scene_title or selected.title,
                    group_size=len(claim.releases),
                    match=claim.match,
                )
            )

        if self.settings.accept_unmatched:
            results.extend(self._accept_unmatched(unmatched, profile))

        results.sort(key=_result_order)
        logger.info(
            "[SEARCH] entity=%r matched=%d unmatched_accepted=%d",
            entity.name,
            sum(1 for r in results if r.is_matched),
            sum(1 for r in results if not r.is_matched),
        )
        return results

    def _accept_unmatched(self, groups: Iterable[ReleaseGroup], profile) -> list[SearchResult]:
        accepted = []
        for group in groups:
            indexers = group.indexers
            if len(indexers) < self.settings.min_indexers:
                logger.debug(
                    "[SEARCH] unmatched group dropped key=%r indexers=%d required=%d",
                    group.key,
                    len(indexers),
                    self.settings.min_indexers,
                )
                continue
            selected = select_release(group.releases, profile, fallback_to_best=self.settings.fallback_to_best)
            if selected is None:
                continue
            accepted.append(
                SearchResult(
                    release=selected,
                    scene_id=None,
                    scene_title=extract_core_title(selected.title),
                    group_size=len(group.releases),
                    extra={"indexers": sorted(indexers)},
                )
            )
        return accepted

    def _match_groups(
        self,
        entity: EntityRecord,
        groups: Sequence[ReleaseGroup],
        scenes: Sequence[SceneMetadata],
    ) -> list[MatchResult | None]:
        if not groups or not scenes:
            return [None for _ in groups]
        titles = [group.releases[0].title for group in groups]
        method = self.settings.match_method
        settings = self.settings.match_settings
        if method == MATCH_LEARNED and self.learned_scorer is not None and self.learned_scorer.is_available:
            matched = self._match_learned(entity, titles, scenes)
            if matched is not None:
                return matched
            method = MATCH_STAGED
            settings = replace(settings, learned_enabled=False)
        if method == MATCH_TOKEN:
            return [self._match_token(entity, title, scenes) for title in titles]
        if settings.learned_enabled and self.learned_scorer is not None and self.learned_scorer.is_available:
            with self.learned_scorer.session():
                return [self.scene_matcher.find_best_match(title, scenes, settings) for title in titles]
        return [self.scene_matcher.find_best_match(title, scenes, settings) for title in titles]

    def _match_token(self, entity: EntityRecord, title: str, scenes: Sequence[SceneMetadata]) -> MatchResult | None:
        release_date = extract_date(title)
        best = self.token_matcher.find_best_match(
            remove_metadata(title),
            scenes,
            query_date=release_date.isoformat() if release_date else None,
            query_studio=entity.name if entity.entity_type == ENTITY_STUDIO else None,
        )
        if best is None:
            return None
        return MatchResult(
            scene_id=best.scene_id,
            score=best.score * 100.0,
            method=MATCH_TOKEN,
            confidence=best.score,
            breakdown=dict(best.breakdown),
            scene_title=best.scene_title,
        )

    def _match_learned(
        self,
        entity: EntityRecord,
        titles: Sequence[str],
        scenes: Sequence[SceneMetadata],
    ) -> list[MatchResult | None] | None:
        """Batch cross-encoder matching; ``None`` means fall back to deterministic matching."""
        queries = []
        for title in titles:
            release_date = extract_date(title)
            queries.append(
                ScoringQuery(
                    title=extract_core_title(title),
                    performer=entity.name if entity.entity_type == ENTITY_PERFORMER else None,
                    studio=entity.name if entity.entity_type == ENTITY_STUDIO else None,
                    date=release_date.isoformat() if release_date else None,
                )
            )
        candidates = [
            ScoringCandidate(
                id=scene.id,
                title=scene.title,
                date=scene.date,
                studio=scene.studio,
                performers=scene.performers,
            )
            for scene in scenes
        ]
        try:
            with self.learned_scorer.session() as scorer:
                best = scorer.find_best_match_batch(queries, candidates, self.settings.learned_threshold)
        except Exception as exc:
            logger.warning("[SEARCH] learned matching unavailable, using staged matcher: %s", exc)
            return None
        results: list[MatchResult | None] = []
        for match in best:
            if match is None:
                results.append(None)
                continue
            results.append(
                MatchResult(
                    scene_id=match.candidate.id,
                    score=match.score * 100.0,
                    method=MATCH_LEARNED,
                    confidence=match.score,
                    scene_title=match.candidate.title,
                )
            )
        return results

    def search_for_scene(
        self,
        scene: SceneMetadata,
        profile: QualityProfile | None = None,
    ) -> SearchResult | None:
        """Search by the scene title and keep only releases validated against that scene."""
        raw = self.fetch_releases([scene.title])
        releases = dedupe_releases(raw)
        settings = MatchSettings(
            grouping_threshold=self.settings.grouping_threshold,
            levenshtein_threshold=self.settings.match_threshold,
        )
        validated: list[tuple[CandidateRelease, MatchResult]] = []
        for release in releases:
            match = self.scene_matcher.find_best_match(release.title, [scene], settings)
            if match is not None:
                validated.append((release, match))
        logger.info(
            "[SEARCH] scene=%s title=%r raw=%d unique=%d validated=%d",
            scene.id,
            scene.title,
            len(raw),
            len(releases),
            len(validated),
        )
        if not validated:
            return None
        selected = select_release(
            [release for release, _ in validated],
            profile,
            fallback_to_best=self.settings.fallback_to_best,
        )
        if selected is None:
            return None
        match = next(m for r, m in validated if r is selected)
        return SearchResult(
            release=selected,
            scene_id=scene.id,
            scene_title=scene.title,
            group_size=len(validated),
            match=match,
        )


class CatalogEntitySource:
    """Resolves entities from the metadata provider, falling back to cached subscription data."""

    def __init__(self, scene_store, subscription_store=None, provider=None) -> None:
        self.scene_store = scene_store
        self.subscription_store = subscription_store
        self.provider = provider

    def get_entity(self, entity_type: str, entity_id: str) -> EntityRecord | None:
        if self.provider is not None:
            try:
                entity = self.provider.get_entity(entity_type, entity_id)
            except ScenarrError as exc:
                logger.warning("[SEARCH] provider lookup failed %s=%s error=%s", entity_type, entity_id, exc)
            else:
                if entity is not None:
                    return entity
        if self.subscription_store is None:
            return None
        sub = self.subscription_store.get(entity_type, entity_id)
        if sub is None or not sub.entity_name:
            return None
        return EntityRecord(id=entity_id, name=sub.entity_name, entity_type=entity_type, aliases=sub.aliases)

    def list_scenes(self, entity: EntityRecord) -> list[SceneMetadata]:
        return self.scene_store.list_for_entity(entity.entity_type, entity.name)

    def get_scene(self, scene_id: str) -> SceneMetadata | None:
        scene = self.scene_store.get(scene_id)
        if scene is not None or self.provider is None:
            return scene
        try:
            scene = self.provider.get_scene_by_id(scene_id)
        except ScenarrError as exc:
            logger.warning("[SEARCH] provider scene lookup failed id=%s error=%s", scene_id, exc)
            return None
        if scene is not None:
            self.scene_store.upsert(scene)
        return scene
