import json
import uuid

from db.common import connect, load_json_list, utc_now
from db.migrations import ensure_quality_profiles_table
from engine.types import ANY, QualityProfile, QualityRule


def rule_to_dict(rule):
    return {
        "quality": rule.quality,
        "source": rule.source,
        "min_seeders": rule.min_seeders,
        "max_size_gb": rule.max_size_gb,
    }


def rule_from_dict(payload):
    max_size = payload.get("max_size_gb", payload.get("maxSize"))
    return QualityRule(
        quality=str(payload.get("quality") or ANY),
        source=str(payload.get("source") or ANY),
        min_seeders=int(payload.get("min_seeders", payload.get("minSeeders")) or 0),
        max_size_gb=float(max_size) if max_size else None,
    )


class QualityProfileStore:
    def __init__(self, db_path):
        self.db_path = db_path
        conn = self._connect()
        try:
            ensure_quality_profiles_table(conn)
        finally:
            conn.close()

    def _connect(self):
        return connect(self.db_path)

    def _row_to_profile(self, row):
        if not row:
            return None
        rules = tuple(rule_from_dict(item) for item in load_json_list(row["rules"]) if isinstance(item, dict))
        return QualityProfile(id=row["id"], name=row["name"], rules=rules)

    def save(self, name, rules, *, profile_id=None, is_default=False):
        profile_id = profile_id or uuid.uuid4().hex
        now = utc_now()
        conn = self._connect()
        try:
            cur = conn.cursor()
            if is_default:
                cur.execute("UPDATE quality_profiles SET is_default=0")
            cur.execute(
                """
                INSERT INTO quality_profiles (id, name, rules, is_default, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name,
                    rules=excluded.rules,
                    is_default=excluded.is_default,
                    updated_at=excluded.updated_at
                """,
                (
                    profile_id,
                    name,
                    json.dumps([rule_to_dict(rule) for rule in rules]),
                    1 if is_default else 0,
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get(profile_id)

    def get(self, profile_id):
        if not profile_id:
            return None
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM quality_profiles WHERE id=?", (profile_id,))
            return self._row_to_profile(cur.fetchone())
        finally:
            conn.close()

    def get_default(self):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM quality_profiles ORDER BY is_default DESC, created_at ASC LIMIT 1")
            return self._row_to_profile(cur.fetchone())
        finally:
            conn.close()

    def resolve(self, profile_id):
        """The requested profile, else the default one, else ``None`` (best-seeded wins)."""
        return self.get(profile_id) or self.get_default()

    def list_profiles(self):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM quality_profiles ORDER BY name ASC")
            return [self._row_to_profile(row) for row in cur.fetchall()]
        finally:
            conn.close()
