"""Time-of-day bandwidth limits for the torrent client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)

ALL_DAYS = (0, 1, 2, 3, 4, 5, 6)
WEEKDAYS = (1, 2, 3, 4, 5)
WEEKEND = (0, 6)


@dataclass(frozen=True)
class SpeedRule:
    """Limits in KiB/s, 0 meaning unlimited. Days use 0 for Sunday."""

    name: str
    start_hour: int
    end_hour: int
    days_of_week: tuple[int, ...] = ALL_DAYS
    download_limit: int = 0
    upload_limit: int = 0
    enabled: bool = True


@dataclass(frozen=True)
class SpeedSettings:
    enabled: bool = False
    rules: tuple[SpeedRule, ...] = ()
    default_download_limit: int = 0
    default_upload_limit: int = 0


DEFAULT_RULES = (
    SpeedRule("Daytime (Slow)", 8, 22, WEEKDAYS, download_limit=1024, upload_limit=256),
    SpeedRule("Nighttime (Fast)", 22, 8, ALL_DAYS, download_limit=0, upload_limit=512),
    SpeedRule("Weekend (Medium)", 8, 22, WEEKEND, download_limit=2048, upload_limit=512),
)


def _day_of_week(when: datetime) -> int:
    # datetime.weekday() is Monday=0.
    return (when.weekday() + 1) % 7


def rule_covers(rule: SpeedRule, when: datetime) -> bool:
    if not rule.enabled or _day_of_week(when) not in rule.days_of_week:
        return False
    hour = when.hour
    if rule.start_hour == rule.end_hour:
        return True
    if rule.start_hour < rule.end_hour:
        return rule.start_hour <= hour < rule.end_hour
    return hour >= rule.start_hour or hour < rule.end_hour


def active_limits(settings: SpeedSettings, when: datetime) -> tuple[int, int, str | None]:
    """Return ``(download_kib, upload_kib, rule_name)``; the first covering rule wins."""
    for rule in settings.rules:
        if rule_covers(rule, when):
            return rule.download_limit, rule.upload_limit, rule.name
    return settings.default_download_limit, settings.default_upload_limit, None


def settings_from_config(config: dict | None) -> SpeedSettings:
    cfg = (config or {}).get("speed_profiles") or {}
    raw_rules = cfg.get("rules")
    if raw_rules is None:
        rules = DEFAULT_RULES
    else:
        rules = tuple(
            SpeedRule(
                name=str(item.get("name") or f"rule-{index}"),
                start_hour=int(item.get("start_hour", 0)),
                end_hour=int(item.get("end_hour", 0)),
                days_of_week=tuple(int(d) for d in item.get("days_of_week", ALL_DAYS)),
                download_limit=int(item.get("download_limit", 0)),
                upload_limit=int(item.get("upload_limit", 0)),
                enabled=bool(item.get("enabled", True)),
            )
            for index, item in enumerate(raw_rules)
            if isinstance(item, dict)
        )
    return SpeedSettings(
        enabled=bool(cfg.get("enabled", False)),
        rules=rules,
        default_download_limit=int(cfg.get("default_download_limit", 0)),
        default_upload_limit=int(cfg.get("default_upload_limit", 0)),
    )


class SpeedProfileApplier:
    """Pushes the active limits to the client, only when they change."""

    def __init__(self, settings: SpeedSettings) -> None:
        self.settings = settings
        self._applied: tuple[int, int] | None = None

    def apply(self, client, when: datetime) -> bool:
        if not self.settings.enabled:
            return False
        download_kib, upload_kib, rule_name = active_limits(self.settings, when)
        limits = (download_kib, upload_kib)
        if limits == self._applied:
            return False
        client.set_global_speed_limits(download_kib * 1024, upload_kib * 1024)
        self._applied = limits
        logger.info(
            "[SPEED] rule=%s download_kib=%d upload_kib=%d",
            rule_name or "default",
            download_kib,
            upload_kib,
        )
        return True
