import json
import uuid
from dataclasses import dataclass

from db.common import connect, load_json_list, utc_now
from db.migrations import ensure_subscriptions_table
from engine.types import ENTITY_PERFORMER, ENTITY_SCENE, ENTITY_STUDIO, ENTITY_TYPES


@dataclass(frozen=True)
class Subscription:
    id: str
    entity_type: str
    entity_id: str
    entity_name: str | None
    aliases: tuple
    quality_profile_id: str | None
    include_aliases: bool
    is_subscribed: bool
    last_searched_at: str | None


class SubscriptionStore:
    def __init__(self, db_path):
        self.db_path = db_path
        conn = self._connect()
        try:
            ensure_subscriptions_table(conn)
        finally:
            conn.close()

    def _connect(self):
        return connect(self.db_path)

    def _row_to_subscription(self, row):
        if not row:
            return None
        return Subscription(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            entity_name=row["entity_name"],
            aliases=tuple(str(a) for a in load_json_list(row["aliases"])),
            quality_profile_id=row["quality_profile_id"],
            include_aliases=bool(row["include_aliases"]),
            is_subscribed=bool(row["is_subscribed"]),
            last_searched_at=row["last_searched_at"],
        )

    def subscribe(
        self,
        entity_type,
        entity_id,
        *,
        entity_name=None,
        aliases=(),
        quality_profile_id=None,
        include_aliases=False,
    ):
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"unsupported entity type: {entity_type}")
        now = utc_now()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO subscriptions (
                    id, entity_type, entity_id, entity_name, aliases, quality_profile_id,
                    include_aliases, is_subscribed, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(entity_type, entity_id) DO UPDATE SET
                    entity_name=COALESCE(excluded.entity_name, subscriptions.entity_name),
                    aliases=excluded.aliases,
                    quality_profile_id=excluded.quality_profile_id,
                    include_aliases=excluded.include_aliases,
                    is_subscribed=1,
                    updated_at=excluded.updated_at
                """,
                (
                    uuid.uuid4().hex,
                    entity_type,
                    str(entity_id),
                    entity_name,
                    json.dumps(list(aliases or ())),
                    quality_profile_id,
                    1 if include_aliases else 0,
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get(entity_type, entity_id)

    def unsubscribe(self, entity_type, entity_id):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "UPDATE subscriptions SET is_subscribed=0, updated_at=? WHERE entity_type=? AND entity_id=?",
                (utc_now(), entity_type, str(entity_id)),
            )
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def get(self, entity_type, entity_id):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM subscriptions WHERE entity_type=? AND entity_id=?",
                (entity_type, str(entity_id)),
            )
            return self._row_to_subscription(cur.fetchone())
        finally:
            conn.close()

    def list_active(self, entity_type):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM subscriptions
                WHERE entity_type=? AND is_subscribed=1
                ORDER BY last_searched_at IS NOT NULL, last_searched_at ASC, created_at ASC
                """,
                (entity_type,),
            )
            return [self._row_to_subscription(row) for row in cur.fetchall()]
        finally:
            conn.close()

    def mark_searched(self, subscription_id):
        now = utc_now()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "UPDATE subscriptions SET last_searched_at=?, updated_at=? WHERE id=?",
                (now, now, subscription_id),
            )
            conn.commit()
        finally:
            conn.close()

    def covers_scene(self, scene):
        """True when the scene is still wanted by an active subscription.

        A scene is covered by its own scene subscription, by a subscribed
        performer appearing in it, or by its subscribed studio.
        """
        if scene is None:
            return False
        scene_sub = self.get(ENTITY_SCENE, scene.id)
        if scene_sub is not None and scene_sub.is_subscribed:
            return True
        performers = {name.lower() for name in scene.performers}
        for sub in self.list_active(ENTITY_PERFORMER):
            if sub.entity_name and sub.entity_name.lower() in performers:
                return True
        if scene.studio:
            studio = scene.studio.lower()
            for sub in self.list_active(ENTITY_STUDIO):
                if sub.entity_name and sub.entity_name.lower() == studio:
                    return True
        return False
