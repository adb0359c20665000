from __future__ import annotations

from dataclasses import asdict

from scheduler.jobs.base import BaseJob


class TorrentMonitorJob(BaseJob):
    """Polls the torrent client, updates queue items and runs the short retry cadence."""

    name = "torrent-monitor"

    def __init__(self, monitor) -> None:
        super().__init__()
        self.monitor = monitor

    def run(self):
        return asdict(self.monitor.run_once())
