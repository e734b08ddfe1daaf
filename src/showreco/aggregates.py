"""Aggregation helpers for computing community statistics from ratings."""

from collections import Counter
from typing import Iterable

from .config import STATS_RATINGS_LIMIT
from .models import Rating, RecommendStats


def _recommend_flag(entry) -> bool | None:
    if isinstance(entry, dict):
        return entry.get('recommend')
    return getattr(entry, 'recommend', None)


def compute_recommend_stats(ratings: Iterable) -> RecommendStats:
    """
    Share of ratings that recommend a show.

    Entries without a recommend answer are ignored entirely. With no valid
    entries the percent is None, which is not the same as 0% recommend.

    Args:
        ratings: Rating objects or dicts carrying a ``recommend`` field

    Returns:
        RecommendStats(total=valid entries, positive=truthy entries, percent)
    """
    valid = [flag for flag in (_recommend_flag(r) for r in ratings) if flag is not None]
    total = len(valid)
    positive = sum(1 for flag in valid if flag)
    # round-half-up, matching how the percentages are displayed
    percent = int(100 * positive / total + 0.5) if total > 0 else None
    return RecommendStats(total=total, positive=positive, percent=percent)


def compute_recommend_percent(ratings: Iterable) -> int | None:
    return compute_recommend_stats(ratings).percent


def recommend_label(percent: int | None, fallback: str) -> str:
    """Shelf label: "82% recommend" when there is data, else the tier's label."""
    return f"{percent}% recommend" if percent is not None else fallback


def rank_by_count(ratings: Iterable[Rating], exclude: set[str] | None = None) -> list[tuple[str, int]]:
    """
    Count ratings per show and rank by count descending (ties by show id).

    Used for the community tier: callers pre-filter ``ratings`` to the signal
    they want counted (recent recommends, high-enjoyment recommends...).
    """
    exclude = exclude or set()
    counts = Counter(r.show_id for r in ratings if r.show_id not in exclude)
    return sorted(counts.items(), key=lambda x: (-x[1], x[0]))


def fetch_recommend_stats(store, show_id: str, user_ids: Iterable[str] | None = None) -> RecommendStats:
    """Recommend statistic for one show over its latest STATS_RATINGS_LIMIT ratings."""
    ratings = store.fetch_ratings(show_id=show_id, user_ids=user_ids, newest_first=True, limit=STATS_RATINGS_LIMIT)
    return compute_recommend_stats(ratings)
