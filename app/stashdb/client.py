import logging
import os
from typing import Any

import requests

from app.metadata_cache import ENTITY_TTL_SECONDS, SCENE_LIST_TTL_SECONDS, SCENE_TTL_SECONDS
from app.metadata_provider import SCENES_PAGE_SIZE, MetadataProvider
from config.settings import METADATA_MIN_INTERVAL_SECONDS
from engine.errors import MetadataProviderError
from engine.rate_limit import RateLimiter
from engine.search_adapters import build_session
from engine.types import ENTITY_PERFORMER, ENTITY_STUDIO, EntityRecord, Pagination, SceneMetadata

logger = logging.getLogger(__name__)

STASHDB_API_URL = os.getenv("STASHDB_API_URL", "https://stashdb.org/graphql")
STASHDB_TIMEOUT_SECONDS = float(os.getenv("STASHDB_TIMEOUT_SECONDS", "15"))

_SCENE_FIELDS = """
    id
    title
    release_date
    performers { performer { name } }
    studio { name }
"""

FIND_SCENE_QUERY = f"""
query FindScene($id: ID!) {{
  findScene(id: $id) {{ {_SCENE_FIELDS} }}
}}
"""

QUERY_SCENES_QUERY = f"""
query QueryScenes($input: SceneQueryInput!) {{
  queryScenes(input: $input) {{
    count
    scenes {{ {_SCENE_FIELDS} }}
  }}
}}
"""

FIND_PERFORMER_QUERY = """
query FindPerformer($id: ID!) {
  findPerformer(id: $id) { id name aliases }
}
"""

FIND_STUDIO_QUERY = """
query FindStudio($id: ID!) {
  findStudio(id: $id) { id name }
}
"""


def _scene_from_payload(payload):
    if not isinstance(payload, dict) or not payload.get("id") or not payload.get("title"):
        return None
    performers = []
    for appearance in payload.get("performers") or ():
        performer = (appearance or {}).get("performer") or {}
        if performer.get("name"):
            performers.append(str(performer["name"]))
    studio = payload.get("studio") or {}
    return SceneMetadata(
        id=str(payload["id"]),
        title=str(payload["title"]),
        date=payload.get("release_date") or None,
        performers=tuple(performers),
        studio=studio.get("name") or None,
    )


class StashDBClient(MetadataProvider):
    name = "stashdb"

    def __init__(
        self,
        api_key,
        *,
        api_url=None,
        session=None,
        rate_limiter=None,
        cache=None,
        timeout_seconds=STASHDB_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.api_url = api_url or STASHDB_API_URL
        self.timeout_seconds = float(timeout_seconds)
        self._session = session or build_session()
        self._rate_limiter = rate_limiter or RateLimiter(METADATA_MIN_INTERVAL_SECONDS)
        self._cache = cache

    def query(self, operation: str, document: str, variables: dict[str, Any], *, cache_key=None, ttl_seconds=None):
        if cache_key and self._cache is not None:
            cached = self._cache.get(cache_key)
            if isinstance(cached, dict):
                logger.info(f"[STASHDB] operation={operation} status=200 cache=hit")
                return cached

        self._rate_limiter.wait()
        try:
            resp = self._session.post(
                self.api_url,
                json={"query": document, "variables": variables},
                headers={"ApiKey": self.api_key, "Content-Type": "application/json"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.info(f"[STASHDB] operation={operation} status=error cache=miss")
            raise MetadataProviderError(f"StashDB request failed operation={operation}: {exc}") from exc

        status = int(resp.status_code)
        logger.info(f"[STASHDB] operation={operation} status={status} cache=miss")
        if status != 200:
            raise MetadataProviderError(f"StashDB API error status={status} operation={operation}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise MetadataProviderError(f"StashDB returned invalid JSON operation={operation}") from exc
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            message = "; ".join(str((e or {}).get("message")) for e in errors)
            raise MetadataProviderError(f"StashDB GraphQL error operation={operation}: {message}")
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise MetadataProviderError(f"StashDB response missing data operation={operation}")
        if cache_key and ttl_seconds and self._cache is not None:
            self._cache.set(cache_key, data, ttl_seconds)
        return data

    def get_scene_by_id(self, scene_id):
        data = self.query(
            "findScene",
            FIND_SCENE_QUERY,
            {"id": scene_id},
            cache_key=f"stashdb:scene:{scene_id}",
            ttl_seconds=SCENE_TTL_SECONDS,
        )
        return _scene_from_payload(data.get("findScene"))

    def get_scenes_for_entity(self, entity_type, entity_id, page=1):
        if entity_type == ENTITY_PERFORMER:
            filter_key = "performers"
        elif entity_type == ENTITY_STUDIO:
            filter_key = "studios"
        else:
            raise ValueError(f"unsupported entity type: {entity_type}")
        scene_input = {
            filter_key: {"value": [entity_id], "modifier": "INCLUDES"},
            "page": page,
            "per_page": SCENES_PAGE_SIZE,
            "sort": "DATE",
            "direction": "DESC",
        }
        data = self.query(
            "queryScenes",
            QUERY_SCENES_QUERY,
            {"input": scene_input},
            cache_key=f"stashdb:{entity_type}:{entity_id}:scenes:{page}",
            ttl_seconds=SCENE_LIST_TTL_SECONDS,
        )
        result = data.get("queryScenes") or {}
        scenes = [s for s in (_scene_from_payload(item) for item in result.get("scenes") or ()) if s is not None]
        pagination = Pagination(total=int(result.get("count") or 0), page=page, page_size=SCENES_PAGE_SIZE)
        logger.info(f"[STASHDB] {entity_type} scenes page={page} count={len(scenes)} total={pagination.total}")
        return scenes, pagination

    def get_entity(self, entity_type, entity_id):
        if entity_type == ENTITY_PERFORMER:
            operation, document = "findPerformer", FIND_PERFORMER_QUERY
        elif entity_type == ENTITY_STUDIO:
            operation, document = "findStudio", FIND_STUDIO_QUERY
        else:
            raise ValueError(f"unsupported entity type: {entity_type}")
        data = self.query(
            operation,
            document,
            {"id": entity_id},
            cache_key=f"stashdb:{entity_type}:{entity_id}",
            ttl_seconds=ENTITY_TTL_SECONDS,
        )
        record = data.get(operation)
        if not isinstance(record, dict) or not record.get("name"):
            return None
        aliases = tuple(str(a) for a in record.get("aliases") or () if a and a != record["name"])
        return EntityRecord(id=str(entity_id), name=str(record["name"]), entity_type=entity_type, aliases=aliases)

    def test_connection(self):
        try:
            self.query("queryScenes", QUERY_SCENES_QUERY, {"input": {"page": 1, "per_page": 1}})
        except MetadataProviderError:
            logger.exception("StashDB connection test failed")
            return False
        return True
