"""SQLite schema for scenes, subscriptions, quality profiles and the download queue."""

from __future__ import annotations

import sqlite3


def ensure_scenes_table(conn: sqlite3.Connection) -> None:
    """Ensure the scene metadata table and indexes exist."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS scenes (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            date TEXT,
            performers TEXT,
            studio TEXT,
            is_placeholder INTEGER NOT NULL DEFAULT 0,
            has_files INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_scenes_title ON scenes (title)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_scenes_studio ON scenes (studio)")
    conn.commit()


def ensure_subscriptions_table(conn: sqlite3.Connection) -> None:
    """Ensure the subscription table exists.

    One row per subscribed performer, studio or single scene. ``entity_name``
    and ``aliases`` are cached from the metadata provider so searches do not
    need a provider round trip.
    """
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS subscriptions (
            id TEXT PRIMARY KEY,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            entity_name TEXT,
            aliases TEXT,
            quality_profile_id TEXT,
            include_aliases INTEGER NOT NULL DEFAULT 0,
            is_subscribed INTEGER NOT NULL DEFAULT 1,
            last_searched_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (entity_type, entity_id)
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_subscriptions_type_active "
        "ON subscriptions (entity_type, is_subscribed)"
    )
    conn.commit()


def ensure_quality_profiles_table(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS quality_profiles (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            rules TEXT NOT NULL,
            is_default INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.commit()


def ensure_queue_items_table(conn: sqlite3.Connection) -> None:
    """Ensure the download queue table and its lookup indexes exist."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS queue_items (
            id TEXT PRIMARY KEY,
            scene_id TEXT NOT NULL,
            torrent_hash TEXT,
            client_hash TEXT,
            title TEXT NOT NULL,
            size INTEGER NOT NULL DEFAULT 0,
            seeders INTEGER NOT NULL DEFAULT 0,
            quality TEXT,
            status TEXT NOT NULL,
            added_at TEXT,
            completed_at TEXT,
            add_attempts INTEGER NOT NULL DEFAULT 0,
            last_add_attempt_at TEXT,
            add_error TEXT,
            source_url TEXT,
            updated_at TEXT NOT NULL
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_queue_items_scene_status ON queue_items (scene_id, status)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_queue_items_torrent_hash ON queue_items (torrent_hash)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_queue_items_client_hash ON queue_items (client_hash)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_queue_items_status ON queue_items (status, last_add_attempt_at)")
    conn.commit()


def ensure_schema(db_path: str) -> None:
    conn = sqlite3.connect(db_path, check_same_thread=False, timeout=30)
    try:
        ensure_scenes_table(conn)
        ensure_subscriptions_table(conn)
        ensure_quality_profiles_table(conn)
        ensure_queue_items_table(conn)
    finally:
        conn.close()
