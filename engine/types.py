"""Typed records shared by the matching and acquisition pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

QUEUE_STATUS_QUEUED = "queued"
QUEUE_STATUS_DOWNLOADING = "downloading"
QUEUE_STATUS_PAUSED = "paused"
QUEUE_STATUS_COMPLETED = "completed"
QUEUE_STATUS_FAILED = "failed"
QUEUE_STATUS_ADD_FAILED = "add_failed"

ACTIVE_STATUSES = (
    QUEUE_STATUS_QUEUED,
    QUEUE_STATUS_DOWNLOADING,
    QUEUE_STATUS_PAUSED,
)

# Block acceptance of another release for the same scene or content hash.
PENDING_STATUSES = (
    *ACTIVE_STATUSES,
    QUEUE_STATUS_ADD_FAILED,
)

TERMINAL_STATUSES = (
    QUEUE_STATUS_COMPLETED,
    QUEUE_STATUS_FAILED,
)

QUEUE_ALLOWED_STATUSES = {
    *ACTIVE_STATUSES,
    *TERMINAL_STATUSES,
    QUEUE_STATUS_ADD_FAILED,
}

# Statuses each status may be entered from. Only downloading/paused cycle.
QUEUE_TRANSITIONS_FROM = {
    QUEUE_STATUS_DOWNLOADING: (QUEUE_STATUS_QUEUED, QUEUE_STATUS_PAUSED, QUEUE_STATUS_ADD_FAILED),
    QUEUE_STATUS_PAUSED: (QUEUE_STATUS_QUEUED, QUEUE_STATUS_DOWNLOADING),
    QUEUE_STATUS_COMPLETED: (QUEUE_STATUS_QUEUED, QUEUE_STATUS_DOWNLOADING, QUEUE_STATUS_PAUSED),
    QUEUE_STATUS_FAILED: (
        QUEUE_STATUS_QUEUED,
        QUEUE_STATUS_DOWNLOADING,
        QUEUE_STATUS_PAUSED,
        QUEUE_STATUS_ADD_FAILED,
    ),
    QUEUE_STATUS_ADD_FAILED: (QUEUE_STATUS_QUEUED, QUEUE_STATUS_ADD_FAILED),
}

ENTITY_PERFORMER = "performer"
ENTITY_STUDIO = "studio"
ENTITY_SCENE = "scene"
ENTITY_TYPES = (ENTITY_PERFORMER, ENTITY_STUDIO, ENTITY_SCENE)

QUALITY_UNKNOWN = "Unknown"
SOURCE_UNKNOWN = "Unknown"
ANY = "any"


@dataclass(frozen=True)
class CandidateRelease:
    title: str
    size: int = 0
    seeders: int = 0
    leechers: int = 0
    quality: str = QUALITY_UNKNOWN
    source: str = SOURCE_UNKNOWN
    indexer: str = ""
    indexers: tuple[str, ...] = ()
    info_hash: str | None = None
    download_url: str | None = None
    magnet_url: str | None = None
    publish_date: str | None = None
    scene_id: str | None = None

    @property
    def indexer_count(self) -> int:
        return len(set(self.indexers or ((self.indexer,) if self.indexer else ())))

    @property
    def dedup_key(self) -> str:
        if self.info_hash:
            return self.info_hash.lower()
        return f"{self.title}-{self.size}"


@dataclass(frozen=True)
class SceneMetadata:
    id: str
    title: str
    date: str | None = None
    performers: tuple[str, ...] = ()
    studio: str | None = None


@dataclass(frozen=True)
class MatchResult:
    scene_id: str
    score: float
    method: str
    confidence: float
    breakdown: dict[str, float] | None = None
    scene_title: str | None = None


@dataclass(frozen=True)
class QualityRule:
    quality: str
    source: str = ANY
    min_seeders: int = 0
    max_size_gb: float | None = None


@dataclass(frozen=True)
class QualityProfile:
    id: str
    name: str
    rules: tuple[QualityRule, ...] = ()


@dataclass(frozen=True)
class QueueItem:
    id: str
    scene_id: str
    torrent_hash: str | None
    client_hash: str | None
    title: str
    size: int
    seeders: int
    quality: str
    status: str
    added_at: str | None
    completed_at: str | None = None
    add_attempts: int = 0
    last_add_attempt_at: str | None = None
    add_error: str | None = None
    source_url: str | None = None


@dataclass(frozen=True)
class TorrentInfo:
    hash: str
    name: str
    size: int = 0
    progress: float = 0.0
    download_speed: int = 0
    upload_speed: int = 0
    state: str = ""
    category: str | None = None
    num_seeds: int = 0
    num_leechers: int = 0
    added_on: int = 0
    completion_on: int = 0


@dataclass(frozen=True)
class Pagination:
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


@dataclass
class SearchResult:
    """A quality-selected release with the scene it was matched to, if any."""

    release: CandidateRelease
    scene_id: str | None
    scene_title: str
    group_size: int = 1
    match: MatchResult | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_matched(self) -> bool:
        return self.scene_id is not None


@dataclass(frozen=True)
class EntityRecord:
    """A subscribable performer or studio as known to the metadata provider."""

    id: str
    name: str
    entity_type: str
    aliases: tuple[str, ...] = ()
