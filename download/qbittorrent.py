"""qBittorrent Web API client used by the download queue and the torrent monitor."""

import logging
import time

import requests

from config.settings import SUBMIT_POLL_INTERVAL_SECONDS
from engine.errors import TorrentClientError
from engine.search_adapters import build_session
from engine.types import TorrentInfo

logger = logging.getLogger(__name__)

_PRIORITY_ENDPOINTS = {"top": "/torrents/topPrio", "bottom": "/torrents/bottomPrio"}

_RECENT_ADD_WINDOW_SECONDS = 30


def _to_torrent_info(entry):
    return TorrentInfo(
        hash=str(entry.get("hash") or "").lower(),
        name=str(entry.get("name") or ""),
        size=int(entry.get("size") or 0),
        progress=float(entry.get("progress") or 0.0),
        download_speed=int(entry.get("dlspeed") or 0),
        upload_speed=int(entry.get("upspeed") or 0),
        state=str(entry.get("state") or ""),
        category=entry.get("category") or None,
        num_seeds=int(entry.get("num_seeds") or 0),
        num_leechers=int(entry.get("num_leechs") or 0),
        added_on=int(entry.get("added_on") or 0),
        completion_on=int(entry.get("completion_on") or 0),
    )


class QBittorrentClient:
    def __init__(
        self,
        base_url,
        username,
        password,
        *,
        session=None,
        timeout_seconds=15.0,
        category=None,
        save_path=None,
        poll_interval_seconds=SUBMIT_POLL_INTERVAL_SECONDS,
        clock=time.monotonic,
        sleep=time.sleep,
        wall_clock=time.time,
    ):
        self.base_url = str(base_url or "").rstrip("/")
        self.username = username
        self.password = password
        self.timeout_seconds = float(timeout_seconds)
        self.category = category
        self.save_path = save_path
        self.poll_interval_seconds = float(poll_interval_seconds)
        self._session = session or build_session()
        self._clock = clock
        self._sleep = sleep
        self._wall_clock = wall_clock
        self._authenticated = False

    def _login(self):
        url = f"{self.base_url}/api/v2/auth/login"
        try:
            resp = self._session.post(
                url,
                data={"username": self.username, "password": self.password},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise TorrentClientError(f"qBittorrent login failed: {exc}") from exc
        logger.info(f"[QBITTORRENT] request=/auth/login status={resp.status_code}")
        if resp.status_code != 200 or resp.text.strip() != "Ok.":
            self._authenticated = False
            raise TorrentClientError(f"qBittorrent login rejected status={resp.status_code}")
        self._authenticated = True

    def _request(self, method, endpoint, *, params=None, data=None, _retry_auth=True):
        if not self._authenticated:
            self._login()
        url = f"{self.base_url}/api/v2{endpoint}"
        try:
            resp = self._session.request(
                method,
                url,
                params=params,
                data=data,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise TorrentClientError(f"qBittorrent request failed endpoint={endpoint}: {exc}") from exc
        logger.debug("[QBITTORRENT] request=%s status=%s", endpoint, resp.status_code)
        if resp.status_code == 403 and _retry_auth:
            # Session cookie expired.
            self._authenticated = False
            return self._request(method, endpoint, params=params, data=data, _retry_auth=False)
        if resp.status_code != 200:
            raise TorrentClientError(f"qBittorrent API error status={resp.status_code} endpoint={endpoint}")
        return resp

    def get_torrents(self, *, status_filter=None, category=None):
        params = {}
        if status_filter:
            params["filter"] = status_filter
        if category:
            params["category"] = category
        resp = self._request("GET", "/torrents/info", params=params)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise TorrentClientError("qBittorrent returned invalid torrent list") from exc
        return [_to_torrent_info(entry) for entry in payload or () if isinstance(entry, dict)]

    def add_torrent(self, urls, *, category=None, save_path=None, paused=False):
        if isinstance(urls, str):
            urls = [urls]
        data = {
            "urls": "\n".join(urls),
            "paused": "true" if paused else "false",
        }
        category = category or self.category
        save_path = save_path or self.save_path
        if category:
            data["category"] = category
        if save_path:
            data["savepath"] = save_path
        resp = self._request("POST", "/torrents/add", data=data)
        accepted = resp.text.strip() == "Ok."
        if not accepted:
            logger.warning("[QBITTORRENT] add rejected response=%r", resp.text[:200])
        return accepted

    def _find_added(self, torrents, *, info_hash, title, category, started_at):
        if info_hash:
            wanted = info_hash.lower()
            for torrent in torrents:
                if torrent.hash == wanted:
                    return torrent.hash
        for torrent in torrents:
            if torrent.name == title:
                return torrent.hash
        if category:
            # Names often differ from the indexer title; accept a single fresh add in our category.
            recent = [
                t
                for t in torrents
                if t.category == category and t.added_on >= started_at - _RECENT_ADD_WINDOW_SECONDS
            ]
            if len(recent) == 1:
                return recent[0].hash
        return None

    def add_torrent_and_get_hash(
        self,
        url,
        *,
        title,
        info_hash=None,
        category=None,
        save_path=None,
        timeout_seconds=10.0,
    ):
        """Submit a torrent and wait until the client lists it.

        Returns the client-assigned hash, or ``None`` when the client rejected
        the add or did not list it before the deadline.
        """
        category = category or self.category
        started_at = self._wall_clock()
        if not self.add_torrent(url, category=category, save_path=save_path):
            return None
        deadline = self._clock() + float(timeout_seconds)
        while True:
            torrents = self.get_torrents(category=category)
            found = self._find_added(
                torrents,
                info_hash=info_hash,
                title=title,
                category=category,
                started_at=started_at,
            )
            if found:
                logger.info("[QBITTORRENT] added title=%r hash=%s", title, found)
                return found
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self.poll_interval_seconds, remaining))
        logger.warning("[QBITTORRENT] torrent not listed within %.1fs title=%r", timeout_seconds, title)
        return None

    def pause_torrent(self, torrent_hash):
        self._request("POST", "/torrents/pause", data={"hashes": torrent_hash})

    def resume_torrent(self, torrent_hash):
        self._request("POST", "/torrents/resume", data={"hashes": torrent_hash})

    def remove_torrent(self, torrent_hash, *, delete_files=False):
        self._request(
            "POST",
            "/torrents/delete",
            data={"hashes": torrent_hash, "deleteFiles": "true" if delete_files else "false"},
        )

    def set_torrent_priority(self, torrent_hash, priority):
        if priority not in _PRIORITY_ENDPOINTS:
            raise ValueError(f"priority must be 'top' or 'bottom', got {priority!r}")
        self._request("POST", _PRIORITY_ENDPOINTS[priority], data={"hashes": torrent_hash})

    def set_global_speed_limits(self, download_limit, upload_limit):
        """Limits are bytes per second; 0 means unlimited."""
        self._request("POST", "/transfer/setDownloadLimit", data={"limit": int(download_limit)})
        self._request("POST", "/transfer/setUploadLimit", data={"limit": int(upload_limit)})

    def test_connection(self):
        try:
            self._login()
        except TorrentClientError:
            logger.exception("qBittorrent connection test failed")
            return False
        return True


def build_torrent_client(config):
    cfg = (config or {}).get("qbittorrent") or {}
    if not cfg.get("url"):
        return None
    return QBittorrentClient(
        cfg["url"],
        cfg.get("username") or "",
        cfg.get("password") or "",
        timeout_seconds=cfg.get("timeout_seconds", 15.0),
        category=cfg.get("category") or None,
        save_path=cfg.get("save_path") or None,
        poll_interval_seconds=cfg.get("poll_interval_seconds", SUBMIT_POLL_INTERVAL_SECONDS),
    )
