"""Application settings constants."""

from __future__ import annotations

# Staged matcher thresholds.
DEFAULT_MATCH_THRESHOLD = 0.7
DEFAULT_GROUPING_THRESHOLD = 0.7
PARTIAL_MATCH_MIN_LENGTH = 20

# Token-set matcher acceptance rules.
TOKEN_MATCH_THRESHOLD = 0.7
TOKEN_MATCH_MIN_TOKENS = 2
TOKEN_MATCH_REQUIRED_GAP = 1.5
# Second-best scores at or below this floor never trigger the gap rule.
TOKEN_MATCH_GAP_FLOOR = 0.3
TOKEN_MATCH_MIN_OVERLAP = 0.10

# Learned scorer.
LEARNED_MODEL_NAME = "cross-encoder/ms-marco-MiniLM-L-6-v2"
LEARNED_MATCH_THRESHOLD = 0.7
LEARNED_BATCH_SIZE = 5000
LEARNED_MAX_LENGTH = 512

# Search orchestration.
INDEXER_SEARCH_LIMIT = 1000
MIN_GROUP_INDEXERS = 2
GROUP_SHORT_TITLE_LENGTH = 15
GROUP_PREFIX_MIN_LENGTH = 30

# Download queue and monitor.
MAX_TORRENTS_PER_RUN = 50
SUBMIT_TIMEOUT_SECONDS = 10.0
SUBMIT_POLL_INTERVAL_SECONDS = 0.5
MAX_ADD_ATTEMPTS = 5
MONITOR_RETRY_AFTER_MINUTES = 5
SEARCH_RETRY_AFTER_MINUTES = 30
STALL_MIN_SEEDS = 2
STALL_MIN_SPEED_BYTES = 10 * 1024
REMOVE_COMPLETED_AFTER_DAYS = 7

# Scheduler cadences.
MONITOR_INTERVAL_MINUTES = 5
SUBSCRIPTION_SEARCH_INTERVAL_HOURS = 6

# Minimum seconds between calls to one external collaborator.
INDEXER_MIN_INTERVAL_SECONDS = 2.0
METADATA_MIN_INTERVAL_SECONDS = 1.0
