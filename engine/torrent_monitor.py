"""Polls the torrent client and drives queue item status transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from config.settings import (
    MONITOR_RETRY_AFTER_MINUTES,
    REMOVE_COMPLETED_AFTER_DAYS,
    STALL_MIN_SEEDS,
    STALL_MIN_SPEED_BYTES,
)
from engine.errors import TorrentClientError
from engine.types import (
    QUEUE_STATUS_COMPLETED,
    QUEUE_STATUS_DOWNLOADING,
    QUEUE_STATUS_FAILED,
    QUEUE_STATUS_PAUSED,
    QUEUE_STATUS_QUEUED,
    QueueItem,
    TorrentInfo,
)

logger = logging.getLogger(__name__)

CLIENT_STATE_DOWNLOADING = "downloading"
CLIENT_PAUSED_STATES = frozenset({"pausedDL", "pausedUP", "stoppedDL", "stoppedUP"})


def is_stalled(
    torrent: TorrentInfo,
    *,
    min_seeds: int = STALL_MIN_SEEDS,
    min_speed: int = STALL_MIN_SPEED_BYTES,
) -> bool:
    if torrent.num_seeds == 0:
        return True
    if torrent.state == CLIENT_STATE_DOWNLOADING and torrent.download_speed == 0 and torrent.progress < 1:
        return True
    return torrent.num_seeds < min_seeds and torrent.download_speed < min_speed


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class MonitorSummary:
    checked: int = 0
    stalled: int = 0
    paused: int = 0
    resumed: int = 0
    completed: int = 0
    failed: int = 0
    removed: int = 0
    errors: int = 0
    skipped: bool = False


class TorrentMonitor:
    def __init__(
        self,
        queue_store,
        torrent_client,
        completion_handler,
        *,
        retry_coordinator=None,
        speed_profiles=None,
        remove_completed_after_days: int = REMOVE_COMPLETED_AFTER_DAYS,
        retry_after_minutes: int = MONITOR_RETRY_AFTER_MINUTES,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.queue_store = queue_store
        self.torrent_client = torrent_client
        self.completion_handler = completion_handler
        self.retry_coordinator = retry_coordinator
        self.speed_profiles = speed_profiles
        self.remove_completed_after_days = remove_completed_after_days
        self.retry_after_minutes = retry_after_minutes
        self._now = now

    def _index_items(self) -> dict[str, QueueItem]:
        items = self.queue_store.list_by_status(
            QUEUE_STATUS_QUEUED,
            QUEUE_STATUS_DOWNLOADING,
            QUEUE_STATUS_PAUSED,
            QUEUE_STATUS_COMPLETED,
        )
        index: dict[str, QueueItem] = {}
        for item in items:
            for key in (item.client_hash, item.torrent_hash):
                if key:
                    index.setdefault(key.lower(), item)
        return index

    def run_once(self) -> MonitorSummary:
        summary = MonitorSummary()
        if self.torrent_client is None:
            logger.info("[MONITOR] no torrent client configured, skipping")
            summary.skipped = True
            return summary
        try:
            torrents = self.torrent_client.get_torrents()
        except TorrentClientError as exc:
            logger.warning("[MONITOR] could not list torrents: %s", exc)
            summary.skipped = True
            return summary

        items = self._index_items()
        for torrent in torrents:
            item = items.get(torrent.hash.lower())
            if item is None:
                continue
            summary.checked += 1
            try:
                self._check_torrent(item, torrent, summary)
            except Exception:
                summary.errors += 1
                logger.exception("[MONITOR] torrent check failed hash=%s item=%s", torrent.hash, item.id)

        if self.speed_profiles is not None:
            try:
                self.speed_profiles.apply(self.torrent_client, self._now())
            except TorrentClientError as exc:
                logger.warning("[MONITOR] speed profile not applied: %s", exc)

        summary.removed = self._remove_old_completed(torrents, items)

        if self.retry_coordinator is not None:
            self.retry_coordinator.retry_failed(self.retry_after_minutes)

        logger.info(
            "[MONITOR] checked=%d stalled=%d paused=%d resumed=%d completed=%d failed=%d removed=%d errors=%d",
            summary.checked,
            summary.stalled,
            summary.paused,
            summary.resumed,
            summary.completed,
            summary.failed,
            summary.removed,
            summary.errors,
        )
        return summary

    def _check_torrent(self, item: QueueItem, torrent: TorrentInfo, summary: MonitorSummary) -> None:
        if item.status in (QUEUE_STATUS_COMPLETED, QUEUE_STATUS_FAILED):
            return

        if torrent.progress >= 1:
            self._complete(item, torrent, summary)
            return

        client_paused = torrent.state in CLIENT_PAUSED_STATES
        if not client_paused and is_stalled(torrent):
            logger.info(
                "[MONITOR] stalled item=%s seeds=%d speed=%d progress=%.2f",
                item.id,
                torrent.num_seeds,
                torrent.download_speed,
                torrent.progress,
            )
            self.torrent_client.set_torrent_priority(torrent.hash, "bottom")
            self.torrent_client.pause_torrent(torrent.hash)
            summary.stalled += 1
            if self.queue_store.mark_paused(item.id):
                summary.paused += 1
            return

        if client_paused and item.status == QUEUE_STATUS_DOWNLOADING:
            if self.queue_store.mark_paused(item.id):
                summary.paused += 1
            return

        if not client_paused and item.status in (QUEUE_STATUS_QUEUED, QUEUE_STATUS_PAUSED):
            if self.queue_store.mark_downloading(item.id, client_hash=item.client_hash or torrent.hash):
                summary.resumed += 1

    def _complete(self, item: QueueItem, torrent: TorrentInfo, summary: MonitorSummary) -> None:
        if not item.client_hash:
            self.queue_store.set_client_hash(item.id, torrent.hash)
        try:
            self.completion_handler.handle_completed(item, torrent)
        except Exception as exc:
            logger.exception("[MONITOR] completion handoff failed item=%s", item.id)
            self.queue_store.mark_failed(item.id, error=f"completion failed: {exc}")
            summary.failed += 1
            return
        if self.queue_store.mark_completed(item.id):
            summary.completed += 1
            logger.info("[MONITOR] completed item=%s scene=%s", item.id, item.scene_id)

    def _remove_old_completed(self, torrents: list[TorrentInfo], items: dict[str, QueueItem]) -> int:
        if not self.remove_completed_after_days or self.remove_completed_after_days <= 0:
            return 0
        cutoff = self._now() - timedelta(days=self.remove_completed_after_days)
        removed = 0
        for torrent in torrents:
            item = items.get(torrent.hash.lower())
            if item is None or item.status != QUEUE_STATUS_COMPLETED:
                continue
            completed_at = _parse_timestamp(item.completed_at)
            if completed_at is None or completed_at > cutoff:
                continue
            try:
                self.torrent_client.remove_torrent(torrent.hash, delete_files=False)
            except TorrentClientError as exc:
                logger.warning("[MONITOR] could not remove torrent hash=%s: %s", torrent.hash, exc)
                continue
            removed += 1
            logger.info("[MONITOR] removed completed torrent item=%s hash=%s", item.id, torrent.hash)
        return removed
