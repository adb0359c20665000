"""In-memory collaborators shared by the queue, retry, monitor and job tests."""

import json

from engine.errors import TorrentClientError


class FakeTorrentClient:
    def __init__(self, client_hash="abc123", error=None, torrents=None):
        self.client_hash = client_hash
        self.error = error
        self.torrents = list(torrents or [])
        self.added = []
        self.paused = []
        self.resumed = []
        self.priorities = []
        self.removed = []
        self.speed_limits = []

    def add_torrent_and_get_hash(self, url, *, title, info_hash=None, timeout_seconds=10.0):
        self.added.append({"url": url, "title": title, "info_hash": info_hash, "timeout": timeout_seconds})
        if self.error is not None:
            raise self.error
        return self.client_hash

    def get_torrents(self, *, status_filter=None, category=None):
        if isinstance(self.error, TorrentClientError):
            raise self.error
        return list(self.torrents)

    def pause_torrent(self, torrent_hash):
        self.paused.append(torrent_hash)

    def resume_torrent(self, torrent_hash):
        self.resumed.append(torrent_hash)

    def set_torrent_priority(self, torrent_hash, priority):
        self.priorities.append((torrent_hash, priority))

    def remove_torrent(self, torrent_hash, *, delete_files=False):
        self.removed.append((torrent_hash, delete_files))

    def set_global_speed_limits(self, download_limit, upload_limit):
        self.speed_limits.append((download_limit, upload_limit))


class RecordingCompletionHandler:
    def __init__(self, error=None):
        self.error = error
        self.completed = []

    def handle_completed(self, item, torrent):
        if self.error is not None:
            raise self.error
        self.completed.append((item.id, torrent.hash))


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = "" if payload is None else json.dumps(payload)
        self.text = text
        self.content = text.encode("utf-8")

    def json(self):
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


class FakeSession:
    """Replays queued responses in order and records every call."""

    def __init__(self, responses=()):
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected request {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    def request(self, method, url, **kwargs):
        return self._next(method, url, kwargs)
