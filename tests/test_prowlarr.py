import pytest

from engine.errors import IndexerError
from engine.rate_limit import RateLimiter
from engine.search_adapters import ProwlarrIndexer, default_indexers, extract_info_hash

from tests.fakes import FakeResponse, FakeSession

HEX_HASH = "0123456789abcdef0123456789abcdef01234567"


def _indexer(session):
    return ProwlarrIndexer("http://prowlarr:9696/", "key-1", session=session, rate_limiter=RateLimiter(0))


def test_extract_info_hash() -> None:
    assert extract_info_hash(f"magnet:?xt=urn:btih:{HEX_HASH}&dn=x") == HEX_HASH.upper()
    assert extract_info_hash("http://example.test/file.torrent") is None
    assert extract_info_hash(None) is None


def test_search_maps_entries_and_skips_usenet() -> None:
    payload = [
        {
            "title": "Jane Doe - Pool Day 1080p",
            "guid": f"magnet:?xt=urn:btih:{HEX_HASH}",
            "size": 1000,
            "seeders": 12,
            "indexer": "TrackerA",
            "protocol": "torrent",
        },
        {"title": "Pool Day nzb", "protocol": "usenet"},
        {"title": "Pool Day 720p", "infoHash": "deadbeef", "downloadUrl": "http://prowlarr/dl/1", "indexerId": 4},
        {"title": "", "protocol": "torrent"},
    ]
    session = FakeSession([FakeResponse(200, payload=payload)])

    releases = _indexer(session).search("Jane Doe Pool Day")

    assert [r.title for r in releases] == ["Jane Doe - Pool Day 1080p", "Pool Day 720p"]
    first, second = releases
    assert first.info_hash == HEX_HASH.upper()
    assert first.magnet_url.startswith("magnet:")
    assert first.indexers == ("TrackerA",)
    assert second.info_hash == "DEADBEEF"
    assert second.download_url == "http://prowlarr/dl/1"
    assert second.indexer == "prowlarr-4"

    call = session.calls[0]
    assert call["url"] == "http://prowlarr:9696/api/v1/search"
    assert call["headers"]["X-Api-Key"] == "key-1"
    assert call["params"]["query"] == "Jane Doe Pool Day"


def test_empty_query_makes_no_request() -> None:
    assert _indexer(FakeSession()).search("") == []


def test_api_errors_raise() -> None:
    with pytest.raises(IndexerError):
        _indexer(FakeSession([FakeResponse(401, text="unauthorized")])).search("Pool Day")
    with pytest.raises(IndexerError):
        _indexer(FakeSession([FakeResponse(200, payload={"message": "x"})])).search("Pool Day")


def test_connection_check() -> None:
    assert _indexer(FakeSession([FakeResponse(200, payload=[])])).test_connection() is True
    assert _indexer(FakeSession([FakeResponse(500, text="boom")])).test_connection() is False


def test_default_indexers_need_url_and_key() -> None:
    assert default_indexers({"prowlarr": {"url": "http://prowlarr:9696"}}) == []
    [indexer] = default_indexers({"prowlarr": {"url": "http://prowlarr:9696", "api_key": "k"}})
    assert indexer.name == "prowlarr"
