"""
Central configuration for the recommendation engine.

Defaults come from constants.py. Override via environment variables
(a local .env file is loaded first):
  - EVERY_ORG_API_PUBLIC_KEY (directory API key)
  - RELIEF_RECS_BASE_URL (default: https://partners.every.org/v0.2)
  - RELIEF_RECS_TIMEOUT (per-call timeout, seconds)
  - RELIEF_RECS_DEADLINE (whole-request deadline, seconds)
  - RELIEF_RECS_LOG_LEVEL (default: INFO)
  - RELIEF_RECS_POLICY_PATH (ranking policy YAML)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from . import constants


def get_config_dir() -> Path:
    """Get the directory holding YAML configuration files."""
    return Path(__file__).parent.parent / "config"


def get_policy_path() -> Path:
    """
    Get the ranking policy YAML path.

    Uses RELIEF_RECS_POLICY_PATH if set, otherwise config/ranking_policy.yaml.
    """
    env_path = os.environ.get("RELIEF_RECS_POLICY_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return get_config_dir() / "ranking_policy.yaml"


@dataclass
class EngineConfig:
    """Tunables for the recommendation pipeline.

    Attributes:
        api_key: Directory API key (public key)
        base_url: Directory API base URL
        request_timeout: Per-call timeout in seconds
        request_deadline: Whole-request budget in seconds
        retry_max_attempts: Total attempts per call (initial + retries)
        retry_base_delay: First backoff delay in seconds
        retry_multiplier: Backoff growth factor
        generation_concurrency: Parallel browse/search calls
        enrichment_concurrency: Parallel detail calls
        enrichment_top_k: How many ranked candidates to enrich
        max_response_size: Hard cap on returned recommendations
        cache_ttls: Per-namespace TTL in seconds
        min_description_length: Fallback gate description threshold
        min_results_before_backfill: Cause-level-4 backfill floor
        flexibility_score_threshold: Explicit flexibility_score (0-1) needed for geo tier 3
        rapid_response_marker_min: Rapid-response phrases needed for geo tier 3
    """

    # Directory provider
    api_key: str = ""
    base_url: str = constants.DIRECTORY_BASE_URL
    profile_base_url: str = constants.PROFILE_BASE_URL
    request_timeout: float = constants.DEFAULT_REQUEST_TIMEOUT_SECONDS
    request_deadline: float = constants.REQUEST_DEADLINE_SECONDS
    min_request_interval: float = 0.0  # Throttle spacing between calls per endpoint

    # Retry policy
    retry_max_attempts: int = constants.RETRY_MAX_ATTEMPTS
    retry_base_delay: float = constants.RETRY_BASE_DELAY_SECONDS
    retry_multiplier: float = constants.RETRY_BACKOFF_MULTIPLIER
    retry_max_delay: float = constants.RETRY_MAX_DELAY_SECONDS

    # Concurrency
    generation_concurrency: int = constants.GENERATION_CONCURRENCY
    enrichment_concurrency: int = constants.ENRICHMENT_CONCURRENCY

    # Candidate generation
    max_causes_to_browse: int = constants.MAX_CAUSES_TO_BROWSE
    max_search_terms: int = constants.MAX_SEARCH_TERMS
    results_per_query: int = constants.RESULTS_PER_QUERY
    max_candidates: int = constants.MAX_CANDIDATES

    # Enrichment and response
    enrichment_top_k: int = constants.ENRICHMENT_TOP_K
    max_response_size: int = constants.MAX_RESPONSE_SIZE

    # Caching
    cache_ttls: dict[str, int] = field(default_factory=lambda: dict(constants.CACHE_TTL_SECONDS))
    cache_max_entries: int = constants.CACHE_MAX_ENTRIES

    # Vetting fallback gate
    min_description_length: int = constants.MIN_DESCRIPTION_LENGTH
    require_disbursable: bool = constants.REQUIRE_DISBURSABLE
    require_website: bool = constants.REQUIRE_WEBSITE

    # Ranking policy
    min_results_before_backfill: int = constants.MIN_RESULTS_BEFORE_BACKFILL
    diversity_category_cap: int = constants.DIVERSITY_CATEGORY_CAP
    diversity_window: int = constants.DIVERSITY_WINDOW
    flexibility_score_threshold: float = constants.FLEXIBILITY_SCORE_THRESHOLD
    rapid_response_marker_min: int = constants.RAPID_RESPONSE_MARKER_MIN

    # Ranking vocabulary
    policy_path: Optional[Path] = None

    log_level: str = "INFO"

    def __post_init__(self):
        """Set default policy path if not provided."""
        if self.policy_path is None:
            self.policy_path = get_policy_path()

    @classmethod
    def from_env(cls, **overrides) -> "EngineConfig":
        """
        Build a config from environment variables.

        Args:
            **overrides: Explicit values that win over the environment

        Returns:
            EngineConfig instance
        """
        load_dotenv()

        values = {
            "api_key": os.environ.get(constants.API_KEY_ENV_VAR, ""),
            "base_url": os.environ.get("RELIEF_RECS_BASE_URL", constants.DIRECTORY_BASE_URL),
            "log_level": os.environ.get("RELIEF_RECS_LOG_LEVEL", "INFO"),
        }
        timeout = os.environ.get("RELIEF_RECS_TIMEOUT")
        if timeout:
            values["request_timeout"] = float(timeout)
        deadline = os.environ.get("RELIEF_RECS_DEADLINE")
        if deadline:
            values["request_deadline"] = float(deadline)

        values.update(overrides)
        return cls(**values)
