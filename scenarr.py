#!/usr/bin/env python3
"""
Scene acquisition service.
- Searches release indexers for subscribed performers, studios and scenes.
- Matches releases to scene metadata and submits the best one to qBittorrent.
- Monitors transfers, pauses stalled torrents and retries rejected submissions.
"""

import argparse
import json
import logging
import os
import sys
import time

from engine.config import load_config, merge_defaults, validate_config
from engine.paths import build_engine_paths
from scheduler.service import build_scheduler, build_services, setup_logging


def _load(config_path):
    paths = build_engine_paths(config_path)
    if not os.path.exists(paths.config_path):
        logging.warning("Config file not found: %s; using defaults", paths.config_path)
        raw = {}
    else:
        raw = load_config(paths.config_path)
    errors = validate_config(raw)
    config = merge_defaults(raw)
    return paths, config, errors


def main(argv=None):
    parser = argparse.ArgumentParser(prog="scenarr")
    parser.add_argument("--config", default=None, help="Path to config.json (default: <config dir>/config.json).")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("validate-config", help="Validate the config file and exit.")
    sub.add_parser("run-monitor", help="Run one torrent monitor pass and exit.")
    sub.add_parser("run-search", help="Run one subscription search and exit.")
    retry = sub.add_parser("retry", help="Retry one add_failed queue item.")
    retry.add_argument("item_id")
    sub.add_parser("serve", help="Run both jobs on their schedules until interrupted.")
    args = parser.parse_args(argv)

    paths, config, errors = _load(args.config)
    setup_logging(paths.log_dir, config.get("log_level") or "INFO")
    if errors:
        for error in errors:
            logging.error("Config error: %s", error)
        return 1
    if args.command == "validate-config":
        logging.info("Config OK: %s", paths.config_path)
        return 0

    services = build_services(config, paths)

    if args.command == "run-monitor":
        print(json.dumps(services.monitor_job.execute(), indent=2, default=str))
        return 0
    if args.command == "run-search":
        print(json.dumps(services.subscription_search_job.execute(), indent=2, default=str))
        return 0
    if args.command == "retry":
        return 0 if services.retry_coordinator.retry_single(args.item_id) else 1

    scheduler = build_scheduler(services, config)
    scheduler.start()
    logging.info("Scheduler started jobs=%s", [job.id for job in scheduler.get_jobs()])
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logging.info("Shutting down scheduler")
    finally:
        scheduler.shutdown(wait=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
