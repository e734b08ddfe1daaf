import logging
from datetime import datetime

from .config import RECENCY_MULTIPLIERS, RECENCY_NEUTRAL_MAX_DAYS, RECENCY_RECENT_DAYS
from .database import parse_timestamp_naive, utcnow
from .models import DeckMode

logger = logging.getLogger(__name__)


def age_in_days(created_at: datetime | str, reference_time: datetime | None = None) -> int:
    """
    Whole days between ``created_at`` and ``reference_time`` (default: now).

    Floored, and never negative: a timestamp in the future counts as age 0.
    """
    if isinstance(created_at, str):
        created_at = parse_timestamp_naive(created_at)
    elif created_at.tzinfo:
        created_at = parse_timestamp_naive(created_at.isoformat())
    if reference_time is None:
        reference_time = utcnow()
    elif reference_time.tzinfo:
        reference_time = parse_timestamp_naive(reference_time.isoformat())

    days = (reference_time - created_at).days
    if days < 0:
        logger.debug(f"Rating timestamp {created_at.isoformat()} is in the future; treating as age 0")
        return 0
    return days


def multiplier_for_age(days: int, mode: DeckMode | str = DeckMode.TONIGHT) -> float:
    table = RECENCY_MULTIPLIERS[DeckMode.parse(mode).value]
    if days < RECENCY_RECENT_DAYS:
        return table['recent']
    if days <= RECENCY_NEUTRAL_MAX_DAYS:
        return table['neutral']
    return table['stale']


def get_recency_multiplier(
    created_at: datetime | str,
    mode: DeckMode | str = DeckMode.TONIGHT,
    reference_time: datetime | None = None,
) -> float:
    """Boost or decay factor for a rating created at ``created_at``."""
    return multiplier_for_age(age_in_days(created_at, reference_time), mode)
