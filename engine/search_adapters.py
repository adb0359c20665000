import logging
import re
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config.settings import INDEXER_MIN_INTERVAL_SECONDS, INDEXER_SEARCH_LIMIT
from engine.errors import IndexerError
from engine.rate_limit import RateLimiter
from engine.types import CandidateRelease

logger = logging.getLogger(__name__)

_HEX_HASH_RE = re.compile(r"magnet:\?xt=urn:btih:([a-f0-9]{40})", re.IGNORECASE)
_BASE32_HASH_RE = re.compile(r"magnet:\?xt=urn:btih:([a-z2-7]{32})", re.IGNORECASE)


def _is_http_url(value):
    if not value or not isinstance(value, str):
        return False
    try:
        return urlparse(value).scheme in ("http", "https")
    except ValueError:
        return False


def extract_info_hash(magnet_url):
    """Return the upper-cased btih hash (hex or base32) from a magnet link."""
    if not magnet_url or not str(magnet_url).startswith("magnet:"):
        return None
    match = _HEX_HASH_RE.search(magnet_url) or _BASE32_HASH_RE.search(magnet_url)
    if not match:
        return None
    return match.group(1).upper()


def build_session(*, total_retries=3, backoff_factor=0.4):
    session = requests.Session()
    retry = Retry(
        total=total_retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class IndexerAdapter:
    name = ""

    def search(self, query, limit=INDEXER_SEARCH_LIMIT):
        """Return CandidateRelease items; an empty list means no results."""
        raise NotImplementedError

    def test_connection(self):
        return False


class ProwlarrIndexer(IndexerAdapter):
    name = "prowlarr"

    def __init__(self, base_url, api_key, *, session=None, rate_limiter=None, timeout_seconds=30.0):
        self.base_url = str(base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = float(timeout_seconds)
        self._session = session or build_session()
        self._rate_limiter = rate_limiter or RateLimiter(INDEXER_MIN_INTERVAL_SECONDS)

    def _get_json(self, endpoint, params=None):
        self._rate_limiter.wait()
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self._session.get(
                url,
                params=params or {},
                headers={"X-Api-Key": self.api_key, "Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise IndexerError(f"Prowlarr request failed url={url}: {exc}") from exc
        status = int(resp.status_code)
        logger.info(f"[PROWLARR] request={endpoint} status={status}")
        if status != 200:
            raise IndexerError(f"Prowlarr API error status={status} url={url} body={resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as exc:
            raise IndexerError(f"Prowlarr returned invalid JSON url={url}") from exc

    def _to_release(self, entry):
        guid = entry.get("guid") or ""
        magnet_url = entry.get("magnetUrl") or ""
        info_hash = entry.get("infoHash") or extract_info_hash(guid) or extract_info_hash(magnet_url)
        actual_magnet = None
        if guid.startswith("magnet:"):
            actual_magnet = guid
        elif magnet_url.startswith("magnet:"):
            actual_magnet = magnet_url
        if not info_hash:
            logger.debug("[PROWLARR] no info hash title=%r", entry.get("title"))
        download_url = entry.get("downloadUrl")
        if not _is_http_url(download_url) and not str(download_url or "").startswith("magnet:"):
            download_url = None
        indexer_name = str(entry.get("indexer") or f"prowlarr-{entry.get('indexerId')}")
        return CandidateRelease(
            title=str(entry.get("title") or ""),
            size=int(entry.get("size") or 0),
            seeders=int(entry.get("seeders") or 0),
            leechers=int(entry.get("leechers") or 0),
            indexer=indexer_name,
            indexers=(indexer_name,),
            info_hash=info_hash.upper() if info_hash else None,
            download_url=download_url,
            magnet_url=actual_magnet,
            publish_date=entry.get("publishDate"),
        )

    def search(self, query, limit=INDEXER_SEARCH_LIMIT):
        if not query:
            return []
        payload = self._get_json(
            "/api/v1/search",
            params={"query": query, "limit": int(limit), "type": "search"},
        )
        if not isinstance(payload, list):
            raise IndexerError(f"Prowlarr search returned {type(payload).__name__}, expected list")
        releases = []
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            if entry.get("protocol") not in (None, "torrent"):
                continue
            release = self._to_release(entry)
            if release.title:
                releases.append(release)
        logger.debug("[PROWLARR] search query=%r results=%d", query, len(releases))
        return releases

    def test_connection(self):
        try:
            self._get_json("/api/v1/indexer")
        except IndexerError:
            logger.exception("Prowlarr connection test failed")
            return False
        return True


def default_indexers(config):
    cfg = (config or {}).get("prowlarr") or {}
    if not cfg.get("url") or not cfg.get("api_key"):
        return []
    return [
        ProwlarrIndexer(
            cfg["url"],
            cfg["api_key"],
            timeout_seconds=cfg.get("timeout_seconds", 30.0),
            rate_limiter=RateLimiter(cfg.get("min_interval_seconds", INDEXER_MIN_INTERVAL_SECONDS)),
        )
    ]
