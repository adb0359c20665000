import pytest

from app.metadata_cache import MetadataCache
from app.tpdb.client import TPDBClient
from engine.errors import MetadataProviderError
from engine.rate_limit import RateLimiter

from tests.fakes import FakeResponse, FakeSession


def _scene(scene_id, title, performers=("Jane Doe",), site="Studio X"):
    return {
        "id": scene_id,
        "title": title,
        "date": "2024-03-01",
        "performers": [{"name": name} for name in performers],
        "site": {"name": site},
    }


def _client(session, cache=None):
    return TPDBClient(
        "token-1",
        base_url="https://tpdb.test",
        session=session,
        rate_limiter=RateLimiter(0),
        cache=cache,
    )


def test_scene_lookup_sends_bearer_token() -> None:
    session = FakeSession([FakeResponse(200, payload={"data": _scene(7, "Pool Day")})])

    scene = _client(session).get_scene_by_id("7")

    assert scene.id == "7"
    assert scene.performers == ("Jane Doe",)
    assert scene.studio == "Studio X"
    assert session.calls[0]["url"] == "https://tpdb.test/scenes/7"
    assert session.calls[0]["headers"]["Authorization"] == "Bearer token-1"


def test_missing_scene_returns_none() -> None:
    assert _client(FakeSession([FakeResponse(404)])).get_scene_by_id("nope") is None


def test_server_errors_raise() -> None:
    with pytest.raises(MetadataProviderError):
        _client(FakeSession([FakeResponse(500)])).get_scene_by_id("7")


def test_cached_responses_skip_the_network(tmp_path) -> None:
    cache = MetadataCache(str(tmp_path / "metadata.json"))
    session = FakeSession([FakeResponse(200, payload={"data": _scene(7, "Pool Day")})])
    client = _client(session, cache=cache)

    first = client.get_scene_by_id("7")
    second = client.get_scene_by_id("7")

    assert first == second
    assert len(session.calls) == 1


def test_performer_scenes_are_paginated() -> None:
    page_one = {
        "data": [_scene(1, "Pool Day"), _scene(2, "Pool Night"), {"id": 3}],
        "meta": {"total": 3, "current_page": 1, "per_page": 2},
    }
    page_two = {"data": [_scene(4, "Garden Party")], "meta": {"total": 3, "current_page": 2, "per_page": 2}}
    session = FakeSession([FakeResponse(200, payload=page_one), FakeResponse(200, payload=page_two)])

    scenes = list(_client(session).iter_entity_scenes("performer", "p1"))

    assert [s.id for s in scenes] == ["1", "2", "4"]
    assert session.calls[0]["url"] == "https://tpdb.test/performers/p1/scenes"
    assert session.calls[1]["params"]["page"] == 2


def test_studio_scenes_filter_by_site() -> None:
    session = FakeSession([FakeResponse(200, payload={"data": []})])

    scenes, pagination = _client(session).get_scenes_for_entity("studio", "st1")

    assert scenes == []
    assert pagination.has_more is False
    assert session.calls[0]["params"]["site_id"] == "st1"


def test_entity_lookup_drops_duplicate_alias() -> None:
    payload = {"data": {"name": "Jane Doe", "aliases": ["Jane Doe", "JD"]}}
    entity = _client(FakeSession([FakeResponse(200, payload=payload)])).get_entity("performer", "p1")

    assert entity.name == "Jane Doe"
    assert entity.aliases == ("JD",)
    with pytest.raises(ValueError):
        _client(FakeSession()).get_entity("scene", "s1")


def test_studio_lookup_uses_sites_endpoint() -> None:
    session = FakeSession([FakeResponse(200, payload={"data": {"name": "Studio X"}})])

    studio = _client(session).get_studio("st1")

    assert studio.entity_type == "studio"
    assert session.calls[0]["url"] == "https://tpdb.test/sites/st1"
