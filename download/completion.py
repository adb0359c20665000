"""Completion handoff from the torrent monitor to file management."""

from __future__ import annotations

import logging
from typing import Protocol

from engine.errors import CompletionError
from engine.types import QueueItem, TorrentInfo

logger = logging.getLogger(__name__)


class CompletionHandler(Protocol):
    def handle_completed(self, item: QueueItem, torrent: TorrentInfo) -> None:
        """Take ownership of a finished download; raise to mark the item failed."""


class SceneFilesHandoff:
    """Default handoff: flags the scene as having files once the torrent finished.

    File moves and sidecar generation belong to the file-management service,
    which can replace this handler entirely.
    """

    def __init__(self, scene_store) -> None:
        self._scene_store = scene_store

    def handle_completed(self, item: QueueItem, torrent: TorrentInfo) -> None:
        if not self._scene_store.exists(item.scene_id):
            raise CompletionError(f"scene {item.scene_id} missing for completed torrent {torrent.hash}")
        self._scene_store.mark_has_files(item.scene_id)
        logger.info(
            "[COMPLETION] scene=%s torrent=%s name=%r size=%d",
            item.scene_id,
            torrent.hash,
            torrent.name,
            torrent.size,
        )
