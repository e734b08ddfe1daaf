"""
Home deck: swipeable picks with a guaranteed fallback.

Tiers, in order, until HOME_PICKS_TARGET picks are collected:
    A. personalized picks restricted to shows the user's follows rated lately
    B. community shows with the most recommends in the last week
    C. external catalog trending today (cached locally before being served)
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable

from .aggregates import fetch_recommend_stats, rank_by_count
from .config import (
    COMMUNITY_CANDIDATE_LIMIT,
    COMMUNITY_PICK_SCORE,
    COMMUNITY_WINDOW_DAYS,
    DISMISS_EXCLUSION_DAYS,
    FOLLOW_RATINGS_LIMIT,
    HOME_PICKS_TARGET,
    LABEL_POPULAR_THIS_WEEK,
    LABEL_TRENDING_NOW,
    TRENDING_PICK_SCORE,
)
from .database import to_naive_utc, utcnow
from .fallback import Tier, compose_tiers, lookup_shows, write_through
from .models import DeckMode, HomePick, Rating, Show, WatchAction, WatchActionKind
from .ports import CatalogSource, RecommendationStore
from .recommender import get_personalized_recommendations

logger = logging.getLogger(__name__)

ALWAYS_EXCLUDED = (WatchActionKind.WATCHED, WatchActionKind.NOT_FOR_ME)


def build_exclusion_set(
    user_ratings: Iterable[Rating],
    watch_actions: Iterable[WatchAction],
    extra: Iterable[str] | None = None,
    now: datetime | None = None,
) -> set[str]:
    """
    Shows that must not appear in the user's deck.

    Rated shows, anything ever marked watched or not_for_me, and anything
    dismissed in the last DISMISS_EXCLUSION_DAYS days. Saved shows stay.
    """
    now = to_naive_utc(now) if now else utcnow()
    dismiss_cutoff = now - timedelta(days=DISMISS_EXCLUSION_DAYS)

    excluded = set(extra or ())
    excluded.update(r.show_id for r in user_ratings)

    for action in watch_actions:
        kind = WatchActionKind.parse(action.action)
        if kind in ALWAYS_EXCLUDED:
            excluded.add(action.show_id)
        elif kind == WatchActionKind.DISMISSED and action.created_at >= dismiss_cutoff:
            excluded.add(action.show_id)

    return excluded


def _pick_from_show(show: Show, score: float, explanation: str) -> HomePick:
    return HomePick(
        show_id=show.id,
        title=show.title,
        poster_path=show.poster_path,
        score=score,
        explanation=explanation,
    )


def _follows_tier(store, user_id, mode, excluded, followed, now):
    def fetch(remaining: int, seen: frozenset) -> list[HomePick]:
        if not followed:
            return []
        follow_ratings = store.fetch_ratings(user_ids=followed, newest_first=True, limit=FOLLOW_RATINGS_LIMIT)
        follow_show_ids = {r.show_id for r in follow_ratings} - excluded
        if not follow_show_ids:
            return []

        recs = get_personalized_recommendations(store, user_id, mode, excluded, reference_time=now)
        return [
            HomePick(
                show_id=rec.show_id,
                title=rec.title,
                poster_path=rec.poster_path,
                score=rec.score,
                explanation=rec.explanation,
                tags=rec.tags,
            )
            for rec in recs
            if rec.show_id in follow_show_ids
        ][:remaining]

    return fetch


def _community_tier(store, excluded, now):
    def fetch(remaining: int, seen: frozenset) -> list[HomePick]:
        since = now - timedelta(days=COMMUNITY_WINDOW_DAYS)
        recent = store.fetch_ratings(since=since, recommend=True)
        ranked = rank_by_count(recent, exclude=excluded | seen)[:COMMUNITY_CANDIDATE_LIMIT]
        shows = lookup_shows(store, [show_id for show_id, _ in ranked])
        return [_pick_from_show(show, COMMUNITY_PICK_SCORE, LABEL_POPULAR_THIS_WEEK) for show in shows[:remaining]]

    return fetch


def _trending_tier(store, catalog, excluded):
    def fetch(remaining: int, seen: frozenset) -> list[HomePick]:
        trending = [
            show for show in catalog.trending("day")
            if show.poster_path and show.id not in excluded and show.id not in seen
        ][:remaining]
        write_through(store, trending)
        return [_pick_from_show(show, TRENDING_PICK_SCORE, LABEL_TRENDING_NOW) for show in trending]

    return fetch


def _attach_stats(store: RecommendationStore, picks: list[HomePick], followed: list[str]) -> None:
    """Fill in the overall and following recommend percentages, best effort per pick."""
    for pick in picks:
        try:
            pick.overall_percent = fetch_recommend_stats(store, pick.show_id).percent
            if followed:
                pick.following_percent = fetch_recommend_stats(store, pick.show_id, followed).percent
        except Exception as e:
            logger.warning(f"Failed to compute recommend stats for {pick.show_id}: {e}")


def get_home_picks(
    store: RecommendationStore,
    catalog: CatalogSource,
    user_id: str,
    mode: DeckMode | str = DeckMode.TONIGHT,
    exclude_show_ids: Iterable[str] | None = None,
    reference_time: datetime | None = None,
) -> list[HomePick]:
    """
    Up to HOME_PICKS_TARGET picks for the home deck, never repeating a show.

    The user's ratings and watch actions are required to build the exclusion
    set and their failures propagate. Every tier after that is best effort.
    """
    mode = DeckMode.parse(mode)
    now = to_naive_utc(reference_time) if reference_time else utcnow()

    excluded = build_exclusion_set(
        store.fetch_ratings(user_id=user_id),
        store.fetch_watch_actions(user_id),
        extra=exclude_show_ids,
        now=now,
    )

    try:
        followed = store.fetch_follows(user_id)
    except Exception as e:
        logger.warning(f"Failed to fetch follows for {user_id}: {e}. Skipping follows tier.")
        followed = []

    tiers = [
        Tier("follows", _follows_tier(store, user_id, mode, excluded, followed, now)),
        Tier("community", _community_tier(store, excluded, now)),
        Tier("trending", _trending_tier(store, catalog, excluded)),
    ]
    picks = compose_tiers(tiers, HOME_PICKS_TARGET)
    _attach_stats(store, picks, followed)

    logger.debug(
        f"Home picks for {user_id} ({mode.value}): {len(picks)} picks, "
        f"{len(excluded)} excluded, {len(followed)} follows"
    )
    return picks
