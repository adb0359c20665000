import copy
import json

from config.settings import (
    DEFAULT_GROUPING_THRESHOLD,
    DEFAULT_MATCH_THRESHOLD,
    INDEXER_SEARCH_LIMIT,
    LEARNED_BATCH_SIZE,
    LEARNED_MATCH_THRESHOLD,
    LEARNED_MODEL_NAME,
    MAX_ADD_ATTEMPTS,
    MAX_TORRENTS_PER_RUN,
    METADATA_MIN_INTERVAL_SECONDS,
    MIN_GROUP_INDEXERS,
    MONITOR_INTERVAL_MINUTES,
    MONITOR_RETRY_AFTER_MINUTES,
    REMOVE_COMPLETED_AFTER_DAYS,
    SEARCH_RETRY_AFTER_MINUTES,
    SUBMIT_TIMEOUT_SECONDS,
    SUBSCRIPTION_SEARCH_INTERVAL_HOURS,
)
from engine.search_orchestrator import MATCH_METHODS, MATCH_STAGED, SearchSettings

DEFAULT_CONFIG = {
    "log_level": "INFO",
    "metadata_provider": "tpdb",
    "metadata_cache_enabled": True,
    "prowlarr": {},
    "qbittorrent": {},
    "tpdb": {},
    "stashdb": {},
    "matching": {
        "method": MATCH_STAGED,
        "learned_enabled": False,
        "match_threshold": DEFAULT_MATCH_THRESHOLD,
        "grouping_threshold": DEFAULT_GROUPING_THRESHOLD,
        "learned_threshold": LEARNED_MATCH_THRESHOLD,
        "learned_model": LEARNED_MODEL_NAME,
        "learned_batch_size": LEARNED_BATCH_SIZE,
    },
    "search": {
        "include_aliases": False,
        "accept_unmatched": True,
        "min_indexers": MIN_GROUP_INDEXERS,
        "search_limit": INDEXER_SEARCH_LIMIT,
        "fallback_to_best": False,
        "entity_delay_seconds": METADATA_MIN_INTERVAL_SECONDS,
    },
    "download": {
        "max_per_run": MAX_TORRENTS_PER_RUN,
        "submit_timeout_seconds": SUBMIT_TIMEOUT_SECONDS,
        "max_add_attempts": MAX_ADD_ATTEMPTS,
        "remove_completed_after_days": REMOVE_COMPLETED_AFTER_DAYS,
    },
    "jobs": {
        "monitor_interval_minutes": MONITOR_INTERVAL_MINUTES,
        "subscription_search_interval_hours": SUBSCRIPTION_SEARCH_INTERVAL_HOURS,
        "monitor_retry_after_minutes": MONITOR_RETRY_AFTER_MINUTES,
        "search_retry_after_minutes": SEARCH_RETRY_AFTER_MINUTES,
    },
    "speed_profiles": {"enabled": False},
}


def load_config(path):
    with open(path, "r") as f:
        return json.load(f)


def merge_defaults(config, defaults=None):
    """Return a copy of ``config`` with missing keys filled from ``defaults`` (nested dicts merged)."""
    merged = copy.deepcopy(DEFAULT_CONFIG if defaults is None else defaults)
    for key, value in (config or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_defaults(value, merged[key])
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _check_number(errors, name, section, key, *, minimum=None, maximum=None, integer=False):
    if not isinstance(section, dict) or section.get(key) is None:
        return
    value = section[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)) or (integer and not isinstance(value, int)):
        errors.append(f"{name}.{key} must be {'an integer' if integer else 'a number'}")
        return
    if minimum is not None and value < minimum:
        errors.append(f"{name}.{key} must be >= {minimum}")
    if maximum is not None and value > maximum:
        errors.append(f"{name}.{key} must be <= {maximum}")


def validate_config(config):
    errors = []
    if not isinstance(config, dict):
        return ["config must be a JSON object"]

    for name in ("prowlarr", "qbittorrent", "tpdb", "stashdb", "matching", "search", "download", "jobs"):
        section = config.get(name)
        if section is not None and not isinstance(section, dict):
            errors.append(f"{name} must be an object")

    prowlarr = config.get("prowlarr")
    if isinstance(prowlarr, dict) and prowlarr.get("url") and not prowlarr.get("api_key"):
        errors.append("prowlarr.api_key is required when prowlarr.url is set")

    qbittorrent = config.get("qbittorrent")
    if isinstance(qbittorrent, dict) and qbittorrent.get("url"):
        url = qbittorrent["url"]
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            errors.append("qbittorrent.url must be an http(s) URL")

    provider = config.get("metadata_provider")
    if provider is not None and provider not in {"tpdb", "stashdb"}:
        errors.append("metadata_provider must be 'tpdb' or 'stashdb'")

    matching = config.get("matching")
    if isinstance(matching, dict):
        method = matching.get("method")
        if method is not None and method not in MATCH_METHODS:
            errors.append(f"matching.method must be one of {', '.join(MATCH_METHODS)}")
        for key in ("match_threshold", "grouping_threshold", "learned_threshold"):
            _check_number(errors, "matching", matching, key, minimum=0, maximum=1)
        _check_number(errors, "matching", matching, "learned_batch_size", minimum=1, integer=True)

    search = config.get("search")
    if isinstance(search, dict):
        _check_number(errors, "search", search, "min_indexers", minimum=1, integer=True)
        _check_number(errors, "search", search, "search_limit", minimum=1, integer=True)
        _check_number(errors, "search", search, "entity_delay_seconds", minimum=0)

    download = config.get("download")
    if isinstance(download, dict):
        _check_number(errors, "download", download, "max_per_run", minimum=1, integer=True)
        _check_number(errors, "download", download, "submit_timeout_seconds", minimum=0)
        _check_number(errors, "download", download, "max_add_attempts", minimum=1, integer=True)
        _check_number(errors, "download", download, "remove_completed_after_days", minimum=0, integer=True)

    jobs = config.get("jobs")
    if isinstance(jobs, dict):
        for key in ("monitor_interval_minutes", "subscription_search_interval_hours"):
            _check_number(errors, "jobs", jobs, key, minimum=1)

    speed = config.get("speed_profiles")
    if speed is not None:
        if not isinstance(speed, dict):
            errors.append("speed_profiles must be an object")
        else:
            rules = speed.get("rules")
            if rules is not None and not isinstance(rules, list):
                errors.append("speed_profiles.rules must be a list")
            for idx, rule in enumerate(rules or []):
                if not isinstance(rule, dict):
                    errors.append(f"speed_profiles.rules[{idx}] must be an object")
                    continue
                for key in ("start_hour", "end_hour"):
                    value = rule.get(key)
                    if not isinstance(value, int) or not 0 <= value <= 23:
                        errors.append(f"speed_profiles.rules[{idx}].{key} must be an hour 0-23")
                days = rule.get("days_of_week")
                if days is not None and (
                    not isinstance(days, list) or any(not isinstance(d, int) or not 0 <= d <= 6 for d in days)
                ):
                    errors.append(f"speed_profiles.rules[{idx}].days_of_week must list days 0-6")

    return errors


def search_settings_from_config(config):
    matching = (config or {}).get("matching") or {}
    search = (config or {}).get("search") or {}
    return SearchSettings(
        match_method=matching.get("method", MATCH_STAGED),
        learned_enabled=bool(matching.get("learned_enabled", False)),
        include_aliases=bool(search.get("include_aliases", False)),
        accept_unmatched=bool(search.get("accept_unmatched", True)),
        min_indexers=int(search.get("min_indexers", MIN_GROUP_INDEXERS)),
        search_limit=int(search.get("search_limit", INDEXER_SEARCH_LIMIT)),
        grouping_threshold=float(matching.get("grouping_threshold", DEFAULT_GROUPING_THRESHOLD)),
        match_threshold=float(matching.get("match_threshold", DEFAULT_MATCH_THRESHOLD)),
        learned_threshold=float(matching.get("learned_threshold", LEARNED_MATCH_THRESHOLD)),
        fallback_to_best=bool(search.get("fallback_to_best", False)),
    )
