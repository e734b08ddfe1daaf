import logging
from datetime import datetime

from .database import parse_timestamp_naive, utcnow
from .models import FollowingActivity
from .ports import RecommendationStore

logger = logging.getLogger(__name__)

FEED_LIMIT = 20


def get_following_activity(store: RecommendationStore, user_id: str, limit: int = FEED_LIMIT) -> list[FollowingActivity]:
    """
    Latest ratings by the users ``user_id`` follows, newest first.

    Ratings whose show or rater profile is missing from the cache are dropped.
    """
    followed = store.fetch_follows(user_id)
    if not followed:
        return []

    ratings = store.fetch_ratings(user_ids=followed, newest_first=True, limit=limit)
    shows = store.fetch_shows({r.show_id for r in ratings})
    usernames = store.fetch_usernames()

    activity = []
    for rating in ratings:
        show = shows.get(rating.show_id)
        username = usernames.get(rating.user_id)
        if show is None or username is None:
            logger.debug(f"Dropping activity {rating.user_id}/{rating.show_id}: show or profile missing")
            continue
        activity.append(FollowingActivity(
            rating_id=f"{rating.user_id}:{rating.show_id}",
            username=username,
            show_title=show.title or "Unknown",
            poster_path=show.poster_path,
            enjoyment=rating.enjoyment,
            created_at=rating.created_at,
        ))
    return activity


def format_time_ago(timestamp: datetime | str, now: datetime | None = None) -> str:
    """Compact relative time: "just now", "5m ago", "3h ago", "2d ago"."""
    if isinstance(timestamp, str):
        timestamp = parse_timestamp_naive(timestamp)
    elif timestamp.tzinfo is not None:
        timestamp = parse_timestamp_naive(timestamp.isoformat())
    now = now or utcnow()

    seconds = int((now - timestamp).total_seconds())
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"
