"""Scheduler job searching indexers for every active subscription."""

from __future__ import annotations

import logging
from typing import Any

from config.settings import SEARCH_RETRY_AFTER_MINUTES
from engine.errors import MetadataProviderError
from engine.types import ENTITY_PERFORMER, ENTITY_SCENE, ENTITY_STUDIO, EntityRecord
from scheduler.jobs.base import BaseJob

logger = logging.getLogger(__name__)

MAX_SCENE_PAGES = 20


def _covered_by_entity(scene, performer_names: set[str], studio_names: set[str]) -> bool:
    if scene is None:
        return False
    if any(name.lower() in performer_names for name in scene.performers):
        return True
    return bool(scene.studio and scene.studio.lower() in studio_names)


class SubscriptionSearchJob(BaseJob):
    """Performers first, then studios, then scene subscriptions no entity covers.

    One entity failing is logged and skipped; the run continues with the rest
    and always ends with the long-cadence retry of rejected submissions.
    """

    name = "subscription-search"

    def __init__(
        self,
        orchestrator,
        download_queue,
        subscription_store,
        scene_store,
        quality_profile_store,
        *,
        provider=None,
        retry_coordinator=None,
        rate_limiter=None,
        learned_scorer=None,
        retry_after_minutes: int = SEARCH_RETRY_AFTER_MINUTES,
        max_scene_pages: int = MAX_SCENE_PAGES,
    ) -> None:
        super().__init__()
        self.orchestrator = orchestrator
        self.download_queue = download_queue
        self.subscription_store = subscription_store
        self.scene_store = scene_store
        self.quality_profile_store = quality_profile_store
        self.provider = provider
        self.retry_coordinator = retry_coordinator
        self.rate_limiter = rate_limiter
        self.learned_scorer = learned_scorer
        self.retry_after_minutes = retry_after_minutes
        self.max_scene_pages = max_scene_pages

    def _refresh_scenes(self, subscription) -> int:
        if self.provider is None:
            return 0
        try:
            scenes = list(
                self.provider.iter_entity_scenes(
                    subscription.entity_type,
                    subscription.entity_id,
                    max_pages=self.max_scene_pages,
                )
            )
        except MetadataProviderError as exc:
            logger.warning(
                "[SUBSCRIPTIONS] scene refresh failed %s=%s error=%s; using cached scenes",
                subscription.entity_type,
                subscription.entity_id,
                exc,
            )
            return 0
        return self.scene_store.upsert_many(scenes)

    def _search_subscription(self, subscription, totals: dict[str, int]) -> None:
        if subscription.entity_type != ENTITY_SCENE:
            refreshed = self._refresh_scenes(subscription)
            logger.debug("[SUBSCRIPTIONS] refreshed scenes=%d entity=%s", refreshed, subscription.entity_id)
        profile = self.quality_profile_store.resolve(subscription.quality_profile_id)
        results = self.orchestrator.search_for_entity(
            subscription.entity_type,
            subscription.entity_id,
            profile,
        )
        entity = None
        if subscription.entity_name and subscription.entity_type != ENTITY_SCENE:
            entity = EntityRecord(
                id=subscription.entity_id,
                name=subscription.entity_name,
                entity_type=subscription.entity_type,
                aliases=subscription.aliases,
            )
        summary = self.download_queue.submit_results(results, entity=entity)
        self.subscription_store.mark_searched(subscription.id)
        totals["results"] += len(results)
        totals["submitted"] += summary.submitted
        totals["add_failed"] += summary.add_failed
        totals["skipped"] += summary.skipped

    def run(self) -> dict[str, Any]:
        if self.learned_scorer is not None:
            self.learned_scorer.clear_degraded()

        performers = self.subscription_store.list_active(ENTITY_PERFORMER)
        studios = self.subscription_store.list_active(ENTITY_STUDIO)
        performer_names = {s.entity_name.lower() for s in performers if s.entity_name}
        studio_names = {s.entity_name.lower() for s in studios if s.entity_name}
        scene_subs = [
            sub
            for sub in self.subscription_store.list_active(ENTITY_SCENE)
            if not _covered_by_entity(self.scene_store.get(sub.entity_id), performer_names, studio_names)
        ]
        subscriptions = [*performers, *studios, *scene_subs]

        totals = {
            "entities": len(subscriptions),
            "searched": 0,
            "errors": 0,
            "results": 0,
            "submitted": 0,
            "add_failed": 0,
            "skipped": 0,
        }
        for index, subscription in enumerate(subscriptions, start=1):
            if self.rate_limiter is not None and index > 1:
                self.rate_limiter.wait()
            try:
                self._search_subscription(subscription, totals)
            except Exception:
                totals["errors"] += 1
                logger.exception(
                    "[SUBSCRIPTIONS] search failed %s=%s",
                    subscription.entity_type,
                    subscription.entity_id,
                )
                continue
            totals["searched"] += 1
            self.progress(
                f"{subscription.entity_type} {subscription.entity_name or subscription.entity_id}",
                current=index,
                total=len(subscriptions),
            )

        if self.retry_coordinator is not None:
            retry = self.retry_coordinator.retry_failed(self.retry_after_minutes)
            totals["retried"] = retry.total
            totals["retry_succeeded"] = retry.succeeded
        return totals
