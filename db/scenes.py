"""Persistence for scene metadata records."""

from __future__ import annotations

import json
import uuid
from typing import Iterable

from db.common import connect, load_json_list, utc_now
from db.migrations import ensure_scenes_table
from engine.types import ENTITY_PERFORMER, ENTITY_STUDIO, SceneMetadata

PLACEHOLDER_PREFIX = "placeholder-"


class SceneStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        conn = self._connect()
        try:
            ensure_scenes_table(conn)
        finally:
            conn.close()

    def _connect(self):
        return connect(self.db_path)

    @staticmethod
    def _row_to_scene(row) -> SceneMetadata | None:
        if not row:
            return None
        return SceneMetadata(
            id=row["id"],
            title=row["title"],
            date=row["date"],
            performers=tuple(str(name) for name in load_json_list(row["performers"])),
            studio=row["studio"],
        )

    def get(self, scene_id: str) -> SceneMetadata | None:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM scenes WHERE id=?", (scene_id,))
            return self._row_to_scene(cur.fetchone())
        finally:
            conn.close()

    def exists(self, scene_id: str) -> bool:
        return self.get(scene_id) is not None

    def upsert_many(self, scenes: Iterable[SceneMetadata]) -> int:
        """Insert or refresh scenes from the metadata provider; returns rows written.

        Provider refreshes never clear the ``has_files`` flag.
        """
        now = utc_now()
        rows = [
            (
                scene.id,
                scene.title,
                scene.date,
                json.dumps(list(scene.performers)),
                scene.studio,
                now,
                now,
            )
            for scene in scenes
        ]
        if not rows:
            return 0
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.executemany(
                """
                INSERT INTO scenes (id, title, date, performers, studio, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=excluded.title,
                    date=excluded.date,
                    performers=excluded.performers,
                    studio=excluded.studio,
                    updated_at=excluded.updated_at
                """,
                rows,
            )
            conn.commit()
            return len(rows)
        finally:
            conn.close()

    def upsert(self, scene: SceneMetadata) -> None:
        self.upsert_many([scene])

    def create_placeholder(
        self,
        title: str,
        *,
        performers: Iterable[str] = (),
        studio: str | None = None,
    ) -> SceneMetadata:
        """Create a metadata-less scene for a release group no provider scene matched."""
        scene = SceneMetadata(
            id=f"{PLACEHOLDER_PREFIX}{uuid.uuid4().hex}",
            title=title,
            performers=tuple(performers),
            studio=studio,
        )
        now = utc_now()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO scenes (id, title, date, performers, studio, is_placeholder, created_at, updated_at)
                VALUES (?, ?, NULL, ?, ?, 1, ?, ?)
                """,
                (scene.id, scene.title, json.dumps(list(scene.performers)), scene.studio, now, now),
            )
            conn.commit()
        finally:
            conn.close()
        return scene

    def find_placeholder_by_title(self, title: str) -> SceneMetadata | None:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM scenes WHERE is_placeholder=1 AND lower(title)=lower(?) LIMIT 1",
                (title,),
            )
            return self._row_to_scene(cur.fetchone())
        finally:
            conn.close()

    def list_for_entity(self, entity_type: str, name: str) -> list[SceneMetadata]:
        """Known scenes featuring a performer, or released by a studio, by name."""
        wanted = (name or "").strip().lower()
        if not wanted:
            return []
        conn = self._connect()
        try:
            cur = conn.cursor()
            if entity_type == ENTITY_STUDIO:
                cur.execute(
                    "SELECT * FROM scenes WHERE lower(studio)=? AND is_placeholder=0 ORDER BY date DESC",
                    (wanted,),
                )
                return [self._row_to_scene(row) for row in cur.fetchall()]
            if entity_type != ENTITY_PERFORMER:
                raise ValueError(f"unsupported entity type: {entity_type}")
            # LIKE narrows the scan; the JSON list decides.
            cur.execute(
                "SELECT * FROM scenes WHERE lower(performers) LIKE ? AND is_placeholder=0 ORDER BY date DESC",
                (f"%{wanted}%",),
            )
            scenes = [self._row_to_scene(row) for row in cur.fetchall()]
        finally:
            conn.close()
        return [s for s in scenes if any(p.lower() == wanted for p in s.performers)]

    def has_files(self, scene_id: str) -> bool:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT has_files FROM scenes WHERE id=?", (scene_id,))
            row = cur.fetchone()
            return bool(row and row["has_files"])
        finally:
            conn.close()

    def mark_has_files(self, scene_id: str) -> None:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "UPDATE scenes SET has_files=1, updated_at=? WHERE id=?",
                (utc_now(), scene_id),
            )
            conn.commit()
        finally:
            conn.close()
