import logging
import uuid
from datetime import datetime, timedelta, timezone

from db.common import connect, utc_now
from db.migrations import ensure_queue_items_table
from engine.types import (
    ACTIVE_STATUSES,
    QUEUE_ALLOWED_STATUSES,
    QUEUE_STATUS_ADD_FAILED,
    QUEUE_STATUS_COMPLETED,
    QUEUE_STATUS_DOWNLOADING,
    QUEUE_STATUS_FAILED,
    QUEUE_STATUS_PAUSED,
    QUEUE_TRANSITIONS_FROM,
    QueueItem,
)

logger = logging.getLogger(__name__)


class QueueStore:
    """Download queue records; status changes are guarded by the transition table."""

    def __init__(self, db_path):
        self.db_path = db_path
        conn = self._connect()
        try:
            ensure_queue_items_table(conn)
        finally:
            conn.close()

    def _connect(self):
        return connect(self.db_path)

    def _row_to_item(self, row):
        if not row:
            return None
        return QueueItem(
            id=row["id"],
            scene_id=row["scene_id"],
            torrent_hash=row["torrent_hash"],
            client_hash=row["client_hash"],
            title=row["title"],
            size=int(row["size"] or 0),
            seeders=int(row["seeders"] or 0),
            quality=row["quality"],
            status=row["status"],
            added_at=row["added_at"],
            completed_at=row["completed_at"],
            add_attempts=int(row["add_attempts"] or 0),
            last_add_attempt_at=row["last_add_attempt_at"],
            add_error=row["add_error"],
            source_url=row["source_url"],
        )

    def _fetch_one(self, sql, params):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            return self._row_to_item(cur.fetchone())
        finally:
            conn.close()

    def _fetch_all(self, sql, params=()):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            return [self._row_to_item(row) for row in cur.fetchall()]
        finally:
            conn.close()

    def create(
        self,
        *,
        scene_id,
        title,
        status,
        torrent_hash=None,
        client_hash=None,
        size=0,
        seeders=0,
        quality=None,
        add_attempts=0,
        add_error=None,
        source_url=None,
    ):
        if status not in QUEUE_ALLOWED_STATUSES:
            raise ValueError(f"invalid queue status: {status}")
        now = utc_now()
        item_id = uuid.uuid4().hex
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO queue_items (
                    id, scene_id, torrent_hash, client_hash, title, size, seeders, quality,
                    status, added_at, add_attempts, last_add_attempt_at, add_error, source_url, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item_id,
                    scene_id,
                    torrent_hash.lower() if torrent_hash else None,
                    client_hash.lower() if client_hash else None,
                    title,
                    int(size or 0),
                    int(seeders or 0),
                    quality,
                    status,
                    now,
                    int(add_attempts),
                    now if add_attempts else None,
                    add_error,
                    source_url,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get(item_id)

    def get(self, item_id):
        return self._fetch_one("SELECT * FROM queue_items WHERE id=?", (item_id,))

    def find_active_by_scene(self, scene_id, statuses=ACTIVE_STATUSES):
        placeholders = ", ".join("?" for _ in statuses)
        return self._fetch_one(
            f"""
            SELECT * FROM queue_items
            WHERE scene_id=? AND status IN ({placeholders})
            ORDER BY added_at DESC
            LIMIT 1
            """,
            (scene_id, *statuses),
        )

    def find_active_by_hash(self, torrent_hash, statuses=ACTIVE_STATUSES):
        if not torrent_hash:
            return None
        value = torrent_hash.lower()
        placeholders = ", ".join("?" for _ in statuses)
        return self._fetch_one(
            f"""
            SELECT * FROM queue_items
            WHERE (torrent_hash=? OR client_hash=?) AND status IN ({placeholders})
            LIMIT 1
            """,
            (value, value, *statuses),
        )

    def list_by_status(self, *statuses):
        if not statuses:
            return []
        placeholders = ", ".join("?" for _ in statuses)
        return self._fetch_all(
            f"SELECT * FROM queue_items WHERE status IN ({placeholders}) ORDER BY added_at ASC",
            statuses,
        )

    def list_add_failed(self, *, older_than_minutes=0, now=None):
        """Return add_failed items whose last attempt is at least ``older_than_minutes`` old."""
        reference = now or datetime.now(timezone.utc)
        cutoff = utc_now(reference - timedelta(minutes=older_than_minutes))
        return self._fetch_all(
            """
            SELECT * FROM queue_items
            WHERE status=? AND (last_add_attempt_at IS NULL OR last_add_attempt_at<=?)
            ORDER BY last_add_attempt_at ASC
            """,
            (QUEUE_STATUS_ADD_FAILED, cutoff),
        )

    def _transition(self, item_id, status, assignments=None, params=()):
        allowed_from = QUEUE_TRANSITIONS_FROM.get(status, ())
        if not allowed_from:
            raise ValueError(f"no transition into status: {status}")
        now = utc_now()
        set_clause = "status=?, updated_at=?"
        if assignments:
            set_clause += ", " + assignments
        placeholders = ", ".join("?" for _ in allowed_from)
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE queue_items SET {set_clause} WHERE id=? AND status IN ({placeholders})",
                (status, now, *params, item_id, *allowed_from),
            )
            conn.commit()
            changed = cur.rowcount > 0
        finally:
            conn.close()
        if not changed:
            logger.debug("[QUEUE] transition refused id=%s to=%s", item_id, status)
        return changed

    def mark_downloading(self, item_id, *, client_hash=None):
        if client_hash:
            return self._transition(
                item_id,
                QUEUE_STATUS_DOWNLOADING,
                "client_hash=?",
                (client_hash.lower(),),
            )
        return self._transition(item_id, QUEUE_STATUS_DOWNLOADING)

    def mark_paused(self, item_id):
        return self._transition(item_id, QUEUE_STATUS_PAUSED)

    def mark_completed(self, item_id):
        return self._transition(item_id, QUEUE_STATUS_COMPLETED, "completed_at=?", (utc_now(),))

    def mark_failed(self, item_id, *, error=None):
        return self._transition(item_id, QUEUE_STATUS_FAILED, "add_error=COALESCE(?, add_error)", (error,))

    def set_client_hash(self, item_id, client_hash):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "UPDATE queue_items SET client_hash=?, updated_at=? WHERE id=?",
                (client_hash.lower(), utc_now(), item_id),
            )
            conn.commit()
        finally:
            conn.close()

    def record_add_attempt(self, item_id, *, client_hash=None, error=None):
        """Count one submission attempt; success moves the item to downloading.

        The attempt counter only ever grows.
        """
        now = utc_now()
        if client_hash:
            status = QUEUE_STATUS_DOWNLOADING
            assignments = "client_hash=?, add_attempts=add_attempts+1, last_add_attempt_at=?, add_error=NULL"
            params = (client_hash.lower(), now)
        else:
            status = QUEUE_STATUS_ADD_FAILED
            assignments = "add_attempts=add_attempts+1, last_add_attempt_at=?, add_error=?"
            params = (now, error)
        if not self._transition(item_id, status, assignments, params):
            return None
        return status

    def count_by_status(self):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT status, COUNT(*) AS total FROM queue_items GROUP BY status")
            return {row["status"]: int(row["total"]) for row in cur.fetchall()}
        finally:
            conn.close()
