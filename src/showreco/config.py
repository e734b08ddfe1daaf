"""
Configuration constants for the show recommendation engine.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Database Configuration
DB_PATH = Path(os.environ.get("SHOWRECO_DB", "data/showreco.db"))

# External catalog (TMDB)
TMDB_API_KEY = os.environ.get("TMDB_API_KEY", "")
TMDB_BASE_URL = os.environ.get("TMDB_BASE_URL", "https://api.themoviedb.org/3")
TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
HTTP_TIMEOUT = _get_float_env("SHOWRECO_HTTP_TIMEOUT", 15.0, min_val=1.0)
MAX_HTTP_RETRIES = 3
DEFAULT_RETRY_AFTER = 5  # Seconds to wait on 429 without a Retry-After header
MAX_429_RETRY_SECONDS = 60

# Similarity
MIN_SHARED_SHOWS = _get_int_env("SHOWRECO_MIN_SHARED", 3, min_val=1)
DEFAULT_SIMILARITY = 0.3  # Below MIN_SHARED_SHOWS: weak signal, not zero
ENJOYMENT_SCALE = 10.0

# Recommendation gates
MIN_USER_RATINGS = 3  # Taste baseline required before personalizing
MIN_RATERS_PER_SHOW = _get_int_env("SHOWRECO_MIN_RATERS", 2, min_val=1)

# Per-rater weighting
SIMILARITY_WEIGHT = 0.7
FOLLOW_BONUS = 0.3

# Recency multipliers: (days below which "recent" applies, upper bound of the
# neutral window, inclusive)
RECENCY_RECENT_DAYS = 30
RECENCY_NEUTRAL_MAX_DAYS = 180
RECENCY_MULTIPLIERS = {
    'tonight': {'recent': 1.3, 'neutral': 1.0, 'stale': 0.8},
    'this_weekend': {'recent': 1.1, 'neutral': 1.0, 'stale': 0.8},
}

# Mode content multiplier
MODE_SUBSCORE_THRESHOLD = 7.0
TONIGHT_HOOK_BONUS = 0.1
TONIGHT_ENJOYMENT_BONUS = 0.1
TONIGHT_EASY_WATCH_BONUS = 0.15
WEEKEND_PAYOFF_BONUS = 0.1
WEEKEND_CONSISTENCY_BONUS = 0.1
EASY_WATCH_TAG = "easy watch"

SCORE_MIN = 0.0
SCORE_MAX = 10.0

# Explanations
EXPLANATION_TOP_CONTRIBUTORS = 2
EXPLANATION_SEPARATOR = " • "
EXPLANATION_FALLBACK = "Based on similar users"

# Fallback composition
HOME_PICKS_TARGET = 10
SHELF_TARGET = 3
COMMUNITY_WINDOW_DAYS = 7
DISMISS_EXCLUSION_DAYS = 30
FOLLOW_RATINGS_LIMIT = 100
COMMUNITY_CANDIDATE_LIMIT = 20
STATS_RATINGS_LIMIT = 500
CRITICALLY_LOVED_MIN_ENJOYMENT = 8
COMMUNITY_PICK_SCORE = 7.5
TRENDING_PICK_SCORE = 7.0
TOP_RATED_LIMIT = 20

# Tier labels
LABEL_POPULAR_THIS_WEEK = "Popular this week"
LABEL_TRENDING_NOW = "Trending now"
LABEL_POPULAR = "Popular"
LABEL_TRENDING = "Trending"
LABEL_TOP_RATED = "Top rated"

# Development bypass
DEV_MODE = _get_bool_env("SHOWRECO_DEV_MODE", False)
DEV_USER_ID = os.environ.get("SHOWRECO_DEV_USER_ID", "00000000-0000-0000-0000-000000000001")


class NotAuthenticatedError(RuntimeError):
    """Raised when no user id can be resolved for a request."""


@dataclass
class Settings:
    """
    Deployment-time switches threaded through the entry points.

    Scoring code never reads these; only the caller resolving "who is asking"
    does.
    """

    tmdb_api_key: str = TMDB_API_KEY
    tmdb_base_url: str = TMDB_BASE_URL
    dev_mode: bool = DEV_MODE
    dev_user_id: str = DEV_USER_ID


def load_settings() -> Settings:
    """Build a Settings snapshot from the current environment."""
    return Settings(
        tmdb_api_key=os.environ.get("TMDB_API_KEY", TMDB_API_KEY),
        tmdb_base_url=os.environ.get("TMDB_BASE_URL", TMDB_BASE_URL),
        dev_mode=_get_bool_env("SHOWRECO_DEV_MODE", DEV_MODE),
        dev_user_id=os.environ.get("SHOWRECO_DEV_USER_ID", DEV_USER_ID),
    )


def resolve_user_id(settings: Settings, explicit_user_id: str | None = None) -> str:
    """
    Resolve the requesting user.

    An explicit id (an authenticated session) always wins. Without one, dev
    mode falls back to the configured dev user.
    """
    if explicit_user_id:
        return explicit_user_id
    if settings.dev_mode:
        return settings.dev_user_id
    raise NotAuthenticatedError("User not authenticated")
