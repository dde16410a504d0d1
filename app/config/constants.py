"""
Application constants.

Centralized constants for the indexer.
"""

# ========================================================================
# BLOCKCHAIN CONSTANTS
# ========================================================================

DEFAULT_CHAIN_ID = 137  # Polygon PoS
DEFAULT_BATCH_SIZE = 100  # Blocks per eth_getLogs query

# Blockchain operation timeouts (in seconds)
BLOCKCHAIN_TIMEOUT = 30.0  # Standard blockchain operations
BLOCKCHAIN_RPC_TIMEOUT = 30  # RPC provider HTTP timeout

# Substrings of provider errors that mean the range itself is unacceptable
RANGE_LIMIT_ERROR_MARKERS = (
    "block range",
    "range is too large",
    "range too large",
    "query returned more than",
    "exceed maximum block range",
    "too many results",
    "limit exceeded",
)

# ========================================================================
# QUEUE CONSTANTS
# ========================================================================

INDEXING_QUEUE = "indexing"
BLOCK_PROCESSING_QUEUE = "block-processing"
MAINTENANCE_QUEUE = "maintenance"

ALL_QUEUES = (INDEXING_QUEUE, BLOCK_PROCESSING_QUEUE, MAINTENANCE_QUEUE)

# Unit-of-work kinds (actor names)
START_INDEXING = "start_indexing"
PROCESS_BLOCK_RANGE = "process_block_range"
BLOCK_RANGE_EXHAUSTED = "block_range_exhausted"
RETRY_FAILED_EVENTS = "retry_failed_events"

# Redis hash holding per-contract cancellation cutoffs (epoch ms)
CANCELLATION_KEY = "indexer:cancelled-before"

# ========================================================================
# LIFECYCLE CONSTANTS
# ========================================================================

RECOVERY_GRACE_SECONDS = 5.0  # Let other components initialize first
DRAIN_TIMEOUT_SECONDS = 30.0  # Upper bound for shutdown drain
DRAIN_POLL_INTERVAL_SECONDS = 1.0
WORKER_STOP_TIMEOUT_MS = 10000  # Passed to dramatiq Worker.stop

# ========================================================================
# DRAMATIQ TIME LIMITS (milliseconds)
# ========================================================================

RUN_TIME_LIMIT_MS = 120_000  # 2 min: one start_indexing run
BLOCK_RANGE_TIME_LIMIT_MS = 300_000  # 5 min: one sub-range
MAINTENANCE_TIME_LIMIT_MS = 600_000  # 10 min: retry pass
