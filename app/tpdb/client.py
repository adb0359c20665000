import logging
import os
from typing import Any
from urllib.parse import urljoin

import requests

from app.metadata_cache import ENTITY_TTL_SECONDS, SCENE_LIST_TTL_SECONDS, SCENE_TTL_SECONDS
from app.metadata_provider import SCENES_PAGE_SIZE, MetadataProvider
from config.settings import METADATA_MIN_INTERVAL_SECONDS
from engine.errors import MetadataProviderError
from engine.rate_limit import RateLimiter
from engine.search_adapters import build_session
from engine.types import ENTITY_PERFORMER, ENTITY_STUDIO, EntityRecord, Pagination, SceneMetadata

logger = logging.getLogger(__name__)

TPDB_BASE_URL = os.getenv("TPDB_BASE_URL", "https://api.theporndb.net")
TPDB_TIMEOUT_SECONDS = float(os.getenv("TPDB_TIMEOUT_SECONDS", "15"))


def _scene_from_payload(payload: dict[str, Any]) -> SceneMetadata | None:
    scene_id = payload.get("id")
    title = payload.get("title")
    if scene_id is None or not title:
        return None
    performers = tuple(
        str(p.get("name"))
        for p in payload.get("performers") or ()
        if isinstance(p, dict) and p.get("name")
    )
    site = payload.get("site") if isinstance(payload.get("site"), dict) else {}
    return SceneMetadata(
        id=str(scene_id),
        title=str(title),
        date=payload.get("date") or None,
        performers=performers,
        studio=site.get("name") or None,
    )


def _pagination_from_meta(meta: Any, page: int, count: int) -> Pagination:
    if not isinstance(meta, dict):
        return Pagination(total=count, page=page, page_size=SCENES_PAGE_SIZE)
    return Pagination(
        total=int(meta.get("total") or 0),
        page=int(meta.get("current_page") or page),
        page_size=int(meta.get("per_page") or SCENES_PAGE_SIZE),
    )


class TPDBClient(MetadataProvider):
    name = "tpdb"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        session: requests.Session | None = None,
        rate_limiter: RateLimiter | None = None,
        cache=None,
        timeout_seconds: float = TPDB_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key
        self.base_url = (base_url or TPDB_BASE_URL).rstrip("/") + "/"
        self.timeout_seconds = float(timeout_seconds)
        self._session = session or build_session()
        self._rate_limiter = rate_limiter or RateLimiter(METADATA_MIN_INTERVAL_SECONDS)
        self._cache = cache

    def get_json(
        self,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        cache_key: str | None = None,
        ttl_seconds: int | None = None,
    ) -> dict[str, Any] | None:
        """GET an endpoint; ``None`` means the provider has no such record (404)."""
        if cache_key and self._cache is not None:
            cached = self._cache.get(cache_key)
            if isinstance(cached, dict):
                logger.info(f"[TPDB] request={endpoint} status=200 cache=hit")
                return cached

        self._rate_limiter.wait()
        url = urljoin(self.base_url, endpoint.lstrip("/"))
        try:
            resp = self._session.get(
                url,
                params=params or {},
                headers={"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.info(f"[TPDB] request={endpoint} status=error cache=miss")
            raise MetadataProviderError(f"TPDB request failed endpoint={endpoint}: {exc}") from exc

        status = int(resp.status_code)
        logger.info(f"[TPDB] request={endpoint} status={status} cache=miss")
        if status == 404:
            return None
        if status != 200:
            raise MetadataProviderError(f"TPDB API error status={status} endpoint={endpoint}")
        try:
            payload = resp.json() if resp.content else {}
        except ValueError as exc:
            raise MetadataProviderError(f"TPDB returned invalid JSON endpoint={endpoint}") from exc
        if not isinstance(payload, dict):
            raise MetadataProviderError(f"TPDB returned {type(payload).__name__} endpoint={endpoint}")
        if cache_key and ttl_seconds and self._cache is not None:
            self._cache.set(cache_key, payload, ttl_seconds)
        return payload

    def get_scene_by_id(self, scene_id):
        payload = self.get_json(
            f"/scenes/{scene_id}",
            cache_key=f"tpdb:scene:{scene_id}",
            ttl_seconds=SCENE_TTL_SECONDS,
        )
        if not payload or not isinstance(payload.get("data"), dict):
            return None
        return _scene_from_payload(payload["data"])

    def get_scenes_for_entity(self, entity_type, entity_id, page=1):
        if entity_type == ENTITY_PERFORMER:
            endpoint = f"/performers/{entity_id}/scenes"
            params = {"page": page, "per_page": SCENES_PAGE_SIZE}
        elif entity_type == ENTITY_STUDIO:
            endpoint = "/scenes"
            params = {"site_id": entity_id, "page": page, "per_page": SCENES_PAGE_SIZE}
        else:
            raise ValueError(f"unsupported entity type: {entity_type}")

        payload = self.get_json(
            endpoint,
            params=params,
            cache_key=f"tpdb:{entity_type}:{entity_id}:scenes:{page}",
            ttl_seconds=SCENE_LIST_TTL_SECONDS,
        )
        if not payload:
            return [], Pagination(total=0, page=page, page_size=SCENES_PAGE_SIZE)
        scenes = [
            scene
            for scene in (_scene_from_payload(item) for item in payload.get("data") or () if isinstance(item, dict))
            if scene is not None
        ]
        pagination = _pagination_from_meta(payload.get("meta"), page, len(scenes))
        logger.info(
            f"[TPDB] {entity_type} scenes page={pagination.page} count={len(scenes)} total={pagination.total}"
        )
        return scenes, pagination

    def get_entity(self, entity_type, entity_id):
        if entity_type == ENTITY_PERFORMER:
            endpoint = f"/performers/{entity_id}"
        elif entity_type == ENTITY_STUDIO:
            endpoint = f"/sites/{entity_id}"
        else:
            raise ValueError(f"unsupported entity type: {entity_type}")
        payload = self.get_json(
            endpoint,
            cache_key=f"tpdb:{entity_type}:{entity_id}",
            ttl_seconds=ENTITY_TTL_SECONDS,
        )
        data = (payload or {}).get("data")
        if not isinstance(data, dict) or not data.get("name"):
            return None
        aliases = tuple(str(a) for a in data.get("aliases") or () if a and str(a) != data["name"])
        return EntityRecord(id=str(entity_id), name=str(data["name"]), entity_type=entity_type, aliases=aliases)

    def test_connection(self):
        try:
            self.get_json("/scenes", params={"per_page": 1})
        except MetadataProviderError:
            logger.exception("TPDB connection test failed")
            return False
        return True
