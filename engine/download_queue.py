"""Acceptance of search results into the download queue and torrent submission."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import quote

from config.settings import MAX_TORRENTS_PER_RUN, SUBMIT_TIMEOUT_SECONDS
from engine.types import (
    ENTITY_PERFORMER,
    ENTITY_STUDIO,
    PENDING_STATUSES,
    QUEUE_STATUS_ADD_FAILED,
    QUEUE_STATUS_QUEUED,
    EntityRecord,
    QueueItem,
    SearchResult,
)

logger = logging.getLogger(__name__)


def build_magnet(info_hash: str, title: str) -> str:
    return f"magnet:?xt=urn:btih:{info_hash}&dn={quote(title)}"


def submission_url(info_hash: str | None, title: str, magnet_url: str | None, download_url: str | None) -> str | None:
    """Preferred order: a magnet rebuilt from the hash, the indexer magnet, the download URL."""
    if info_hash:
        return build_magnet(info_hash, title)
    return magnet_url or download_url or None


@dataclass
class SubmitSummary:
    submitted: int = 0
    add_failed: int = 0
    skipped: int = 0
    items: list[QueueItem] = field(default_factory=list)


class DownloadQueue:
    """Creates queue items for accepted releases and hands them to the torrent client.

    Dedup rules are enforced here, at acceptance time: one pending item per
    scene and per content hash, where an add_failed item awaiting retry counts
    as pending.
    """

    def __init__(
        self,
        queue_store,
        scene_store,
        torrent_client,
        *,
        submit_timeout_seconds: float = SUBMIT_TIMEOUT_SECONDS,
        max_per_run: int = MAX_TORRENTS_PER_RUN,
    ) -> None:
        self.queue_store = queue_store
        self.scene_store = scene_store
        self.torrent_client = torrent_client
        self.submit_timeout_seconds = float(submit_timeout_seconds)
        self.max_per_run = int(max_per_run)

    def add_to_queue(self, result: SearchResult, scene_id: str | None = None) -> QueueItem | None:
        scene_id = scene_id or result.scene_id
        release = result.release
        if not scene_id:
            logger.warning("[QUEUE] result has no scene title=%r", release.title)
            return None
        if not self.scene_store.exists(scene_id):
            logger.warning("[QUEUE] scene not found id=%s title=%r", scene_id, release.title)
            return None
        if self.scene_store.has_files(scene_id):
            logger.info("[QUEUE] skip scene=%s reason=has_files", scene_id)
            return None
        existing = self.queue_store.find_active_by_scene(scene_id, PENDING_STATUSES)
        if existing is not None:
            logger.info("[QUEUE] skip scene=%s reason=active_item item=%s", scene_id, existing.id)
            return None
        if release.info_hash and self.queue_store.find_active_by_hash(release.info_hash, PENDING_STATUSES) is not None:
            logger.info("[QUEUE] skip scene=%s reason=hash_queued hash=%s", scene_id, release.info_hash)
            return None

        url = submission_url(release.info_hash, release.title, release.magnet_url, release.download_url)
        if not url:
            logger.warning("[QUEUE] skip scene=%s reason=no_download_url title=%r", scene_id, release.title)
            return None

        item = self.queue_store.create(
            scene_id=scene_id,
            title=release.title,
            status=QUEUE_STATUS_QUEUED,
            torrent_hash=release.info_hash,
            size=release.size,
            seeders=release.seeders,
            quality=release.quality,
            source_url=url,
        )
        self.submit(item)
        return self.queue_store.get(item.id)

    def submit(self, item: QueueItem) -> bool:
        """Send one queue item to the torrent client and record the attempt.

        Any client failure becomes an ``add_failed`` attempt; nothing is raised.
        """
        url = item.source_url or submission_url(item.torrent_hash, item.title, None, None)
        client_hash = None
        error = None
        if not url:
            error = "no download url"
        elif self.torrent_client is None:
            error = "no torrent client configured"
        else:
            try:
                client_hash = self.torrent_client.add_torrent_and_get_hash(
                    url,
                    title=item.title,
                    info_hash=item.torrent_hash,
                    timeout_seconds=self.submit_timeout_seconds,
                )
            except Exception as exc:
                logger.exception("[QUEUE] submit failed item=%s title=%r", item.id, item.title)
                error = str(exc) or exc.__class__.__name__
            else:
                if not client_hash:
                    error = "torrent client did not confirm the add"
        status = self.queue_store.record_add_attempt(item.id, client_hash=client_hash, error=error)
        logger.info(
            "[QUEUE] submit item=%s scene=%s status=%s attempts=%d",
            item.id,
            item.scene_id,
            status,
            item.add_attempts + 1,
        )
        return client_hash is not None

    def _placeholder_scene_id(self, result: SearchResult, entity: EntityRecord | None) -> str | None:
        title = result.scene_title or result.release.title
        existing = self.scene_store.find_placeholder_by_title(title)
        if existing is not None:
            return existing.id
        performers = (entity.name,) if entity and entity.entity_type == ENTITY_PERFORMER else ()
        studio = entity.name if entity and entity.entity_type == ENTITY_STUDIO else None
        scene = self.scene_store.create_placeholder(title, performers=performers, studio=studio)
        logger.info("[QUEUE] placeholder scene=%s title=%r", scene.id, title)
        return scene.id

    def submit_results(
        self,
        results: Iterable[SearchResult],
        *,
        entity: EntityRecord | None = None,
    ) -> SubmitSummary:
        """Queue each result in order, stopping after ``max_per_run`` submissions."""
        summary = SubmitSummary()
        for result in results:
            if summary.submitted + summary.add_failed >= self.max_per_run:
                logger.info("[QUEUE] per-run limit reached limit=%d", self.max_per_run)
                break
            scene_id = result.scene_id
            if scene_id is None:
                scene_id = self._placeholder_scene_id(result, entity)
            item = self.add_to_queue(result, scene_id)
            if item is None:
                summary.skipped += 1
                continue
            summary.items.append(item)
            if item.status == QUEUE_STATUS_ADD_FAILED:
                summary.add_failed += 1
            else:
                summary.submitted += 1
        return summary
