"""Wiring of stores, collaborators and jobs, plus the APScheduler setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.metadata_provider import build_metadata_provider
from config.settings import LEARNED_BATCH_SIZE, LEARNED_MODEL_NAME
from db import QualityProfileStore, QueueStore, SceneStore, SubscriptionStore
from db.migrations import ensure_schema
from download.completion import SceneFilesHandoff
from download.qbittorrent import build_torrent_client
from engine.config import search_settings_from_config
from engine.download_queue import DownloadQueue
from engine.learned_scorer import LearnedScorer
from engine.paths import EnginePaths, ensure_dir
from engine.rate_limit import RateLimiter
from engine.retry import RetryCoordinator
from engine.search_adapters import default_indexers
from engine.search_orchestrator import MATCH_LEARNED, CatalogEntitySource, SearchOrchestrator
from engine.speed_profiles import SpeedProfileApplier, settings_from_config
from engine.torrent_monitor import TorrentMonitor
from scheduler.jobs.subscription_search import SubscriptionSearchJob
from scheduler.jobs.torrent_monitor import TorrentMonitorJob

logger = logging.getLogger(__name__)

MONITOR_JOB_ID = "torrent_monitor"
SUBSCRIPTION_SEARCH_JOB_ID = "subscription_search"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(log_dir, level="INFO"):
    ensure_dir(log_dir)
    root = logging.getLogger("")
    root.setLevel(level)
    log_path = os.path.abspath(os.path.join(log_dir, "scenarr.log"))
    has_file = any(
        isinstance(h, logging.FileHandler) and os.path.abspath(getattr(h, "baseFilename", "")) == log_path
        for h in root.handlers
    )
    if not has_file:
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        root.addHandler(file_handler)
    has_console = any(type(h) is logging.StreamHandler for h in root.handlers)
    if not has_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        console.setLevel(level)
        root.addHandler(console)


@dataclass
class Services:
    scene_store: SceneStore
    subscription_store: SubscriptionStore
    quality_profile_store: QualityProfileStore
    queue_store: QueueStore
    orchestrator: SearchOrchestrator
    download_queue: DownloadQueue
    retry_coordinator: RetryCoordinator
    monitor: TorrentMonitor
    monitor_job: TorrentMonitorJob
    subscription_search_job: SubscriptionSearchJob
    learned_scorer: LearnedScorer | None = None


def build_services(config: dict[str, Any], paths: EnginePaths) -> Services:
    ensure_dir(os.path.dirname(paths.db_path) or ".")
    ensure_schema(paths.db_path)
    scene_store = SceneStore(paths.db_path)
    subscription_store = SubscriptionStore(paths.db_path)
    quality_profile_store = QualityProfileStore(paths.db_path)
    queue_store = QueueStore(paths.db_path)

    provider = build_metadata_provider(config)
    if provider is None:
        logger.warning("No metadata provider configured; matching uses cached scenes only")
    torrent_client = build_torrent_client(config)
    if torrent_client is None:
        logger.warning("No qBittorrent configured; downloads will be recorded as add_failed")

    matching = config.get("matching") or {}
    learned_scorer = None
    if matching.get("method") == MATCH_LEARNED or matching.get("learned_enabled"):
        learned_scorer = LearnedScorer(
            model_name=matching.get("learned_model") or LEARNED_MODEL_NAME,
            batch_size=matching.get("learned_batch_size") or LEARNED_BATCH_SIZE,
        )

    orchestrator = SearchOrchestrator(
        default_indexers(config),
        entity_source=CatalogEntitySource(scene_store, subscription_store, provider),
        settings=search_settings_from_config(config),
        learned_scorer=learned_scorer,
    )
    download = config.get("download") or {}
    download_queue = DownloadQueue(
        queue_store,
        scene_store,
        torrent_client,
        submit_timeout_seconds=download.get("submit_timeout_seconds", 10.0),
        max_per_run=download.get("max_per_run", 50),
    )
    retry_coordinator = RetryCoordinator(
        queue_store,
        scene_store,
        subscription_store,
        download_queue,
        max_attempts=download.get("max_add_attempts", 5),
    )
    jobs = config.get("jobs") or {}
    monitor = TorrentMonitor(
        queue_store,
        torrent_client,
        SceneFilesHandoff(scene_store),
        retry_coordinator=retry_coordinator,
        speed_profiles=SpeedProfileApplier(settings_from_config(config)),
        remove_completed_after_days=download.get("remove_completed_after_days", 7),
        retry_after_minutes=jobs.get("monitor_retry_after_minutes", 5),
    )
    search = config.get("search") or {}
    subscription_search_job = SubscriptionSearchJob(
        orchestrator,
        download_queue,
        subscription_store,
        scene_store,
        quality_profile_store,
        provider=provider,
        retry_coordinator=retry_coordinator,
        rate_limiter=RateLimiter(search.get("entity_delay_seconds", 1.0)),
        learned_scorer=learned_scorer,
        retry_after_minutes=jobs.get("search_retry_after_minutes", 30),
    )
    return Services(
        scene_store=scene_store,
        subscription_store=subscription_store,
        quality_profile_store=quality_profile_store,
        queue_store=queue_store,
        orchestrator=orchestrator,
        download_queue=download_queue,
        retry_coordinator=retry_coordinator,
        monitor=monitor,
        monitor_job=TorrentMonitorJob(monitor),
        subscription_search_job=subscription_search_job,
        learned_scorer=learned_scorer,
    )


def build_scheduler(services: Services, config: dict[str, Any]) -> BackgroundScheduler:
    """One APScheduler job per job kind; ``max_instances=1`` keeps runs of a kind serialized."""
    jobs = config.get("jobs") or {}
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        services.monitor_job.execute,
        trigger=IntervalTrigger(minutes=jobs.get("monitor_interval_minutes", 5)),
        id=MONITOR_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    scheduler.add_job(
        services.subscription_search_job.execute,
        trigger=IntervalTrigger(hours=jobs.get("subscription_search_interval_hours", 6)),
        id=SUBSCRIPTION_SEARCH_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    return scheduler
