import pytest

from app.stashdb.client import StashDBClient
from engine.errors import MetadataProviderError
from engine.rate_limit import RateLimiter

from tests.fakes import FakeResponse, FakeSession


def _client(session):
    return StashDBClient("key-1", api_url="https://stash.test/graphql", session=session, rate_limiter=RateLimiter(0))


def _scene(scene_id, title):
    return {
        "id": scene_id,
        "title": title,
        "release_date": "2024-03-01",
        "performers": [{"performer": {"name": "Jane Doe"}}],
        "studio": {"name": "Studio X"},
    }


def test_scene_lookup_posts_graphql_with_api_key() -> None:
    session = FakeSession([FakeResponse(200, payload={"data": {"findScene": _scene("abc", "Pool Day")}})])

    scene = _client(session).get_scene_by_id("abc")

    assert scene.title == "Pool Day"
    assert scene.date == "2024-03-01"
    assert scene.performers == ("Jane Doe",)
    call = session.calls[0]
    assert call["headers"]["ApiKey"] == "key-1"
    assert call["json"]["variables"] == {"id": "abc"}


def test_missing_scene_returns_none() -> None:
    session = FakeSession([FakeResponse(200, payload={"data": {"findScene": None}})])

    assert _client(session).get_scene_by_id("abc") is None


def test_graphql_errors_raise() -> None:
    payload = {"errors": [{"message": "not authorized"}], "data": None}

    with pytest.raises(MetadataProviderError, match="not authorized"):
        _client(FakeSession([FakeResponse(200, payload=payload)])).get_scene_by_id("abc")


def test_http_errors_raise() -> None:
    with pytest.raises(MetadataProviderError):
        _client(FakeSession([FakeResponse(502)])).get_entity("performer", "p1")


def test_studio_scenes_query_input() -> None:
    payload = {"data": {"queryScenes": {"count": 30, "scenes": [_scene("1", "A"), _scene("2", "B")]}}}
    session = FakeSession([FakeResponse(200, payload=payload)])

    scenes, pagination = _client(session).get_scenes_for_entity("studio", "st1")

    assert [s.id for s in scenes] == ["1", "2"]
    assert pagination.has_more is True
    scene_input = session.calls[0]["json"]["variables"]["input"]
    assert scene_input["studios"] == {"value": ["st1"], "modifier": "INCLUDES"}
    assert scene_input["sort"] == "DATE"
