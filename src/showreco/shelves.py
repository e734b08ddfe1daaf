"""Browse shelves: three small rows, each topped up from the external catalog."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Sequence

from .aggregates import fetch_recommend_stats, rank_by_count, recommend_label
from .config import (
    COMMUNITY_CANDIDATE_LIMIT,
    COMMUNITY_WINDOW_DAYS,
    CRITICALLY_LOVED_MIN_ENJOYMENT,
    LABEL_POPULAR,
    LABEL_TOP_RATED,
    LABEL_TRENDING,
    SHELF_TARGET,
)
from .database import utcnow
from .fallback import Tier, compose_tiers, lookup_shows, write_through
from .models import ShelfItem, Show
from .ports import CatalogSource, RecommendationStore

logger = logging.getLogger(__name__)

FRIENDS_RATINGS_LIMIT = 50
COMMUNITY_RATINGS_LIMIT = 100

SHELF_NAMES = ("popular_this_week", "friends_trending", "critically_loved")


def _community_item(store: RecommendationStore, show: Show, fallback_label: str) -> ShelfItem:
    try:
        percent = fetch_recommend_stats(store, show.id).percent
    except Exception as e:
        logger.warning(f"Failed to compute recommend stats for {show.id}: {e}")
        percent = None
    return ShelfItem(
        show_id=show.id,
        title=show.title,
        poster_path=show.poster_path,
        recommend_percent=percent,
        label=recommend_label(percent, fallback_label),
        media_type=show.media_type,
    )


def _catalog_item(show: Show, label: str) -> ShelfItem:
    return ShelfItem(
        show_id=show.id,
        title=show.title,
        poster_path=show.poster_path,
        recommend_percent=None,
        label=label,
        media_type=show.media_type,
    )


def _ranked_tier(store: RecommendationStore, load_ratings, fallback_label: str):
    """Community tier: shows ranked by how many of ``load_ratings()`` mention them."""
    def fetch(remaining: int, seen: frozenset) -> list[ShelfItem]:
        ranked = rank_by_count(load_ratings(), exclude=set(seen))[:COMMUNITY_CANDIDATE_LIMIT]
        shows = lookup_shows(store, [show_id for show_id, _ in ranked])
        return [_community_item(store, show, fallback_label) for show in shows[:remaining]]

    return fetch


def _catalog_tier(store: RecommendationStore, load_shows, label: str):
    def fetch(remaining: int, seen: frozenset) -> list[ShelfItem]:
        shows = [show for show in load_shows() if show.poster_path and show.id not in seen][:remaining]
        write_through(store, shows)
        return [_catalog_item(show, label) for show in shows]

    return fetch


def _recent_recommends(store: RecommendationStore, now: datetime):
    since = now - timedelta(days=COMMUNITY_WINDOW_DAYS)
    return lambda: store.fetch_ratings(since=since, recommend=True, newest_first=True, limit=COMMUNITY_RATINGS_LIMIT)


def fetch_popular_this_week(
    store: RecommendationStore,
    catalog: CatalogSource,
    user_id: str | None = None,
    reference_time: datetime | None = None,
) -> list[ShelfItem]:
    """Most recommended this week, backed by the catalog's weekly trending list."""
    now = reference_time or utcnow()
    return compose_tiers([
        Tier("community", _ranked_tier(store, _recent_recommends(store, now), LABEL_POPULAR)),
        Tier("trending_weekly", _catalog_tier(store, lambda: catalog.trending("week"), LABEL_TRENDING)),
    ], SHELF_TARGET)


def fetch_friends_trending(
    store: RecommendationStore,
    catalog: CatalogSource,
    user_id: str | None = None,
    reference_time: datetime | None = None,
) -> list[ShelfItem]:
    """
    Shows the user's follows rated this week, newest first.

    Falls back to recent community recommends, then the catalog's weekly
    trending list.
    """
    now = reference_time or utcnow()
    since = now - timedelta(days=COMMUNITY_WINDOW_DAYS)

    def friends(remaining: int, seen: frozenset) -> list[ShelfItem]:
        if not user_id:
            return []
        followed = store.fetch_follows(user_id)
        if not followed:
            return []
        ratings = store.fetch_ratings(user_ids=followed, since=since, newest_first=True, limit=FRIENDS_RATINGS_LIMIT)
        # latest first, one slot per show
        show_ids = [sid for sid in dict.fromkeys(r.show_id for r in ratings) if sid not in seen]
        shows = lookup_shows(store, show_ids[:remaining])
        return [_community_item(store, show, LABEL_TRENDING) for show in shows]

    def community(remaining: int, seen: frozenset) -> list[ShelfItem]:
        ratings = _recent_recommends(store, now)()
        show_ids = [sid for sid in dict.fromkeys(r.show_id for r in ratings) if sid not in seen]
        shows = lookup_shows(store, show_ids[:remaining])
        return [_community_item(store, show, LABEL_POPULAR) for show in shows]

    return compose_tiers([
        Tier("friends", friends),
        Tier("community", community),
        Tier("trending_weekly", _catalog_tier(store, lambda: catalog.trending("week"), LABEL_TRENDING)),
    ], SHELF_TARGET)


def fetch_critically_loved(
    store: RecommendationStore,
    catalog: CatalogSource,
    user_id: str | None = None,
    reference_time: datetime | None = None,
) -> list[ShelfItem]:
    """High-enjoyment recommends of all time, backed by the catalog's top rated."""
    def loved():
        return store.fetch_ratings(
            min_enjoyment=CRITICALLY_LOVED_MIN_ENJOYMENT,
            recommend=True,
            limit=COMMUNITY_RATINGS_LIMIT,
        )

    return compose_tiers([
        Tier("community", _ranked_tier(store, loved, LABEL_TOP_RATED)),
        Tier("top_rated", _catalog_tier(store, catalog.top_rated, LABEL_TOP_RATED)),
    ], SHELF_TARGET)


SHELF_FETCHERS = {
    "popular_this_week": fetch_popular_this_week,
    "friends_trending": fetch_friends_trending,
    "critically_loved": fetch_critically_loved,
}


async def fetch_inspiration_shelves(
    store: RecommendationStore,
    catalog: CatalogSource,
    user_id: str | None = None,
    names: Sequence[str] = SHELF_NAMES,
) -> dict[str, list[ShelfItem]]:
    """
    Build every shelf concurrently.

    Shelves are independent: one that raises is logged and comes back empty
    while the others are still returned.
    """
    results = await asyncio.gather(
        *[asyncio.to_thread(SHELF_FETCHERS[name], store, catalog, user_id) for name in names],
        return_exceptions=True,
    )

    shelves: dict[str, list[ShelfItem]] = {}
    for name, result in zip(names, results):
        if isinstance(result, BaseException):
            logger.error(f"Shelf '{name}' failed: {result}")
            shelves[name] = []
        else:
            shelves[name] = result
    return shelves
