"""
Global constants for the recommendation engine.

Centralizes magic numbers and default configuration values used throughout
the engine for easier maintenance and tuning. Runtime overrides live in
config.EngineConfig.
"""

# Directory provider (Every.org partners API)
DIRECTORY_BASE_URL = "https://partners.every.org/v0.2"
PROFILE_BASE_URL = "https://www.every.org"
API_KEY_ENV_VAR = "EVERY_ORG_API_PUBLIC_KEY"

# Network and Timeouts
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0  # Per-call timeout
REQUEST_DEADLINE_SECONDS = 10.0  # Whole-request budget shared by every sub-call

# Retry Configuration
RETRY_MAX_ATTEMPTS = 3  # 1 initial call + 2 retries
RETRY_BASE_DELAY_SECONDS = 0.25  # 250ms, then 1000ms
RETRY_BACKOFF_MULTIPLIER = 4.0
RETRY_MAX_DELAY_SECONDS = 2.0

# Thread and Concurrency
GENERATION_CONCURRENCY = 8  # Parallel browse/search calls
ENRICHMENT_CONCURRENCY = 5  # Parallel detail calls

# Candidate Generation
MAX_CAUSES_TO_BROWSE = 3
MAX_SEARCH_TERMS = 5
MAX_AFFECTED_GROUP_TERMS = 2
RESULTS_PER_QUERY = 50
MAX_CANDIDATES = 200

# Enrichment and Response
ENRICHMENT_TOP_K = 20
MAX_RESPONSE_SIZE = 10

# Cache TTLs (seconds) per namespace
CACHE_TTL_SECONDS = {
    "search": 6 * 60 * 60,  # 6 hours
    "browse": 6 * 60 * 60,  # 6 hours
    "details": 24 * 60 * 60,  # 24 hours
    "recommendation": 60 * 60,  # 1 hour
}
CACHE_MAX_ENTRIES = 1000
CACHE_PURGE_INTERVAL_SECONDS = 5 * 60

# Vetting fallback quality gate
MIN_DESCRIPTION_LENGTH = 50  # Description must be longer than this
REQUIRE_DISBURSABLE = True
REQUIRE_WEBSITE = True

# Ranking policy
MIN_RESULTS_BEFORE_BACKFILL = 5  # Keep cause-level-4 candidates below this count
DIVERSITY_CATEGORY_CAP = 2  # Max candidates per category within the window
DIVERSITY_WINDOW = 10
FLEXIBILITY_SCORE_THRESHOLD = 0.5  # Explicit flexibility_score (0-1) needed for geo tier 3
RAPID_RESPONSE_MARKER_MIN = 2  # Distinct rapid-response phrases needed for geo tier 3
