"""Contract shared by metadata providers (TPDB, StashDB)."""

from __future__ import annotations

from engine.types import ENTITY_PERFORMER, ENTITY_STUDIO, EntityRecord, Pagination, SceneMetadata

SCENES_PAGE_SIZE = 25


class MetadataProvider:
    name = ""

    def get_scene_by_id(self, scene_id: str) -> SceneMetadata | None:
        raise NotImplementedError

    def get_scenes_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        page: int = 1,
    ) -> tuple[list[SceneMetadata], Pagination]:
        raise NotImplementedError

    def get_entity(self, entity_type: str, entity_id: str) -> EntityRecord | None:
        raise NotImplementedError

    def get_performer(self, performer_id: str) -> EntityRecord | None:
        return self.get_entity(ENTITY_PERFORMER, performer_id)

    def get_studio(self, studio_id: str) -> EntityRecord | None:
        return self.get_entity(ENTITY_STUDIO, studio_id)

    def iter_entity_scenes(self, entity_type: str, entity_id: str, *, max_pages: int = 20):
        page = 1
        while page <= max_pages:
            scenes, pagination = self.get_scenes_for_entity(entity_type, entity_id, page)
            yield from scenes
            if not scenes or not pagination.has_more:
                return
            page += 1

    def test_connection(self) -> bool:
        return False


def build_metadata_provider(config: dict | None) -> MetadataProvider | None:
    cfg = config or {}
    cache = None
    if cfg.get("metadata_cache_enabled", True):
        from app.metadata_cache import MetadataCache

        cache = MetadataCache(cfg.get("metadata_cache_path") or None)
    provider = str(cfg.get("metadata_provider") or "tpdb").lower()
    if provider == "stashdb":
        from app.stashdb.client import StashDBClient

        stash_cfg = cfg.get("stashdb") or {}
        if not stash_cfg.get("api_key"):
            return None
        return StashDBClient(
            api_key=stash_cfg["api_key"],
            api_url=stash_cfg.get("url") or None,
            cache=cache,
        )

    from app.tpdb.client import TPDBClient

    tpdb_cfg = cfg.get("tpdb") or {}
    if not tpdb_cfg.get("api_key"):
        return None
    return TPDBClient(api_key=tpdb_cfg["api_key"], base_url=tpdb_cfg.get("url") or None, cache=cache)
