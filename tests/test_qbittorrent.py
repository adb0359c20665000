import pytest
import requests

from download.qbittorrent import QBittorrentClient, build_torrent_client
from engine.errors import TorrentClientError

from tests.fakes import FakeResponse, FakeSession


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def _ok():
    return FakeResponse(200, text="Ok.")


def _client(session, **kwargs):
    clock = _Clock()
    return QBittorrentClient(
        "http://qbit:8080/",
        "admin",
        "secret",
        session=session,
        clock=clock,
        sleep=clock.sleep,
        wall_clock=lambda: 1_700_000_000,
        **kwargs,
    )


def test_login_happens_once_before_requests() -> None:
    session = FakeSession([_ok(), FakeResponse(200, payload=[]), FakeResponse(200, payload=[])])
    client = _client(session)

    client.get_torrents()
    client.get_torrents(status_filter="downloading", category="scenes")

    assert [c["method"] for c in session.calls] == ["POST", "GET", "GET"]
    assert session.calls[0]["url"] == "http://qbit:8080/api/v2/auth/login"
    assert session.calls[0]["data"] == {"username": "admin", "password": "secret"}
    assert session.calls[2]["params"] == {"filter": "downloading", "category": "scenes"}


def test_rejected_login_raises() -> None:
    client = _client(FakeSession([FakeResponse(200, text="Fails.")]))

    with pytest.raises(TorrentClientError):
        client.get_torrents()


def test_expired_session_triggers_one_relogin() -> None:
    session = FakeSession([_ok(), FakeResponse(403), _ok(), FakeResponse(200, payload=[])])
    client = _client(session)

    assert client.get_torrents() == []
    assert [c["method"] for c in session.calls] == ["POST", "GET", "POST", "GET"]


def test_second_forbidden_response_is_an_error() -> None:
    session = FakeSession([_ok(), FakeResponse(403), _ok(), FakeResponse(403)])

    with pytest.raises(TorrentClientError):
        _client(session).get_torrents()


def test_network_failures_become_client_errors() -> None:
    session = FakeSession([_ok(), requests.ConnectionError("refused")])

    with pytest.raises(TorrentClientError):
        _client(session).pause_torrent("abc")


def test_torrent_list_is_normalized() -> None:
    entry = {
        "hash": "ABCDEF",
        "name": "Pool Day",
        "progress": 0.5,
        "dlspeed": 2048,
        "state": "downloading",
        "num_seeds": 3,
        "num_leechs": 1,
        "category": "",
    }
    client = _client(FakeSession([_ok(), FakeResponse(200, payload=[entry, "junk"])]))

    [torrent] = client.get_torrents()

    assert torrent.hash == "abcdef"
    assert torrent.download_speed == 2048
    assert torrent.num_seeds == 3
    assert torrent.num_leechers == 1
    assert torrent.category is None


def test_add_returns_hash_once_listed() -> None:
    listed = [{"hash": "ABC123", "name": "something else"}]
    session = FakeSession([_ok(), _ok(), FakeResponse(200, payload=listed)])
    client = _client(session, category="scenes")

    found = client.add_torrent_and_get_hash("magnet:?xt=urn:btih:abc123", title="Pool Day", info_hash="ABC123")

    assert found == "abc123"
    add_call = session.calls[1]
    assert add_call["url"] == "http://qbit:8080/api/v2/torrents/add"
    assert add_call["data"]["urls"] == "magnet:?xt=urn:btih:abc123"
    assert add_call["data"]["category"] == "scenes"


def test_add_matches_by_title_without_hash() -> None:
    listed = [{"hash": "FFF", "name": "Pool Day"}]
    session = FakeSession([_ok(), _ok(), FakeResponse(200, payload=listed)])

    assert _client(session).add_torrent_and_get_hash("http://x/t.torrent", title="Pool Day") == "fff"


def test_add_gives_up_after_the_deadline() -> None:
    session = FakeSession([_ok(), _ok()] + [FakeResponse(200, payload=[]) for _ in range(3)])
    client = _client(session, poll_interval_seconds=0.5)

    assert client.add_torrent_and_get_hash("magnet:?xt=urn:btih:abc", title="Pool Day", timeout_seconds=1.0) is None
    assert session.responses == []


def test_rejected_add_returns_none() -> None:
    session = FakeSession([_ok(), FakeResponse(200, text="Fails.")])

    assert _client(session).add_torrent_and_get_hash("magnet:?xt=urn:btih:abc", title="Pool Day") is None


def test_priority_endpoints() -> None:
    session = FakeSession([_ok(), _ok(), _ok()])
    client = _client(session)

    client.set_torrent_priority("h1", "bottom")
    client.set_torrent_priority("h1", "top")

    assert session.calls[1]["url"].endswith("/api/v2/torrents/bottomPrio")
    assert session.calls[1]["data"] == {"hashes": "h1"}
    assert session.calls[2]["url"].endswith("/api/v2/torrents/topPrio")
    with pytest.raises(ValueError):
        client.set_torrent_priority("h1", "middle")


def test_remove_and_speed_limits() -> None:
    session = FakeSession([_ok(), _ok(), _ok(), _ok()])
    client = _client(session)

    client.remove_torrent("h1")
    client.set_global_speed_limits(1024, 0)

    assert session.calls[1]["data"] == {"hashes": "h1", "deleteFiles": "false"}
    assert session.calls[2]["data"] == {"limit": 1024}
    assert session.calls[3]["url"].endswith("/transfer/setUploadLimit")


def test_build_torrent_client_requires_url() -> None:
    assert build_torrent_client({}) is None
    client = build_torrent_client({"qbittorrent": {"url": "http://qbit:8080", "category": "scenes"}})
    assert isinstance(client, QBittorrentClient)
    assert client.category == "scenes"


def test_poll_interval_comes_from_config() -> None:
    default = build_torrent_client({"qbittorrent": {"url": "http://qbit:8080"}})
    tuned = build_torrent_client({"qbittorrent": {"url": "http://qbit:8080", "poll_interval_seconds": 2}})

    assert default.poll_interval_seconds == 0.5
    assert tuned.poll_interval_seconds == 2.0
