"""Project-wide constants (chunk budgets, lifetimes, rate limits)."""

DEFAULT_MAX_CHUNK_SIZE_BYTES: int = 30 * 1024 * 1024  # 30 MiB default chunk budget

STREAM_PIECE_SIZE_BYTES: int = 64 * 1024

RECLAIM_DELAY_SECONDS: float = 3 * 60
JANITOR_INTERVAL_SECONDS: float = 60
JANITOR_MAX_AGE_SECONDS: float = 60

RATE_LIMIT_CAPACITY: int = 10
RATE_LIMIT_PERIOD_SECONDS: float = 60
RATE_LIMIT_IDLE_EVICTION_SECONDS: float = 10 * 60

RESYNC_DEBOUNCE_SECONDS: float = 5

ZIP_CHUNKS_PREFIX: str = "/zip-chunks"
