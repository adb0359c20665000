"""Bounded resubmission of queue items the torrent client rejected."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from config.settings import MAX_ADD_ATTEMPTS
from engine.types import QUEUE_STATUS_ADD_FAILED, QueueItem

logger = logging.getLogger(__name__)


@dataclass
class RetrySummary:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    permanent_failures: int = 0


class RetryCoordinator:
    """Retries ``add_failed`` items only; failed downloads are never resubmitted here.

    An item whose attempt counter reached ``max_attempts`` is moved to
    ``failed`` and counted as a permanent failure. Items whose scene is no
    longer wanted by any subscription are skipped.
    """

    def __init__(
        self,
        queue_store,
        scene_store,
        subscription_store,
        download_queue,
        *,
        max_attempts: int = MAX_ADD_ATTEMPTS,
    ) -> None:
        self.queue_store = queue_store
        self.scene_store = scene_store
        self.subscription_store = subscription_store
        self.download_queue = download_queue
        self.max_attempts = int(max_attempts)

    def _exhausted(self, item: QueueItem) -> bool:
        return item.add_attempts >= self.max_attempts

    def _fail_permanently(self, item: QueueItem) -> None:
        self.queue_store.mark_failed(
            item.id,
            error=f"gave up after {item.add_attempts} add attempts: {item.add_error or 'unknown error'}",
        )
        logger.warning(
            "[RETRY] permanent failure item=%s scene=%s attempts=%d",
            item.id,
            item.scene_id,
            item.add_attempts,
        )

    def retry_failed(self, retry_after_minutes: int) -> RetrySummary:
        items = self.queue_store.list_add_failed(older_than_minutes=retry_after_minutes)
        summary = RetrySummary(total=len(items))
        for item in items:
            if self._exhausted(item):
                self._fail_permanently(item)
                summary.permanent_failures += 1
                continue
            scene = self.scene_store.get(item.scene_id)
            if scene is None or not self.subscription_store.covers_scene(scene):
                logger.info("[RETRY] skip item=%s scene=%s reason=not_subscribed", item.id, item.scene_id)
                summary.skipped += 1
                continue
            if self.download_queue.submit(item):
                summary.succeeded += 1
            else:
                summary.failed += 1
        if summary.total:
            logger.info(
                "[RETRY] total=%d succeeded=%d failed=%d skipped=%d permanent=%d",
                summary.total,
                summary.succeeded,
                summary.failed,
                summary.skipped,
                summary.permanent_failures,
            )
        return summary

    def retry_single(self, item_id: str) -> bool:
        """Operator-triggered retry of one item; the subscription check is not applied."""
        item = self.queue_store.get(item_id)
        if item is None:
            logger.warning("[RETRY] item not found id=%s", item_id)
            return False
        if item.status != QUEUE_STATUS_ADD_FAILED:
            logger.warning("[RETRY] item=%s status=%s is not retryable", item_id, item.status)
            return False
        if self._exhausted(item):
            self._fail_permanently(item)
            return False
        return self.download_queue.submit(item)
