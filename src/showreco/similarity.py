"""User-user taste similarity from overlapping enjoyment ratings."""

import logging
from collections import defaultdict
from typing import Iterable, Mapping

import numpy as np

from .config import DEFAULT_SIMILARITY, ENJOYMENT_SCALE, MIN_SHARED_SHOWS, MIN_USER_RATINGS
from .models import Rating, UserSimilarity

logger = logging.getLogger(__name__)


def calculate_similarity(
    user_ratings: Mapping[str, float],
    other_ratings: Mapping[str, float],
    min_shared: int = MIN_SHARED_SHOWS,
) -> float:
    """
    Similarity between the current user and another user, in [0, 1].

    Args:
        user_ratings: Current user's show_id -> enjoyment
        other_ratings: Other user's show_id -> enjoyment
        min_shared: Overlap needed before the ratings are compared at all

    Returns:
        DEFAULT_SIMILARITY when fewer than ``min_shared`` shows overlap,
        otherwise 1 - mean absolute enjoyment difference / 10, clamped.
    """
    shared = [show_id for show_id in user_ratings if show_id in other_ratings]
    if len(shared) < min_shared:
        return DEFAULT_SIMILARITY

    mine = np.fromiter((user_ratings[s] for s in shared), dtype=np.float64, count=len(shared))
    theirs = np.fromiter((other_ratings[s] for s in shared), dtype=np.float64, count=len(shared))
    mean_abs_diff = float(np.mean(np.abs(mine - theirs)))

    similarity = 1.0 - mean_abs_diff / ENJOYMENT_SCALE
    return max(0.0, min(1.0, similarity))


def enjoyment_by_user(ratings: Iterable[Rating]) -> dict[str, dict[str, float]]:
    """Group ratings into user_id -> {show_id: enjoyment}."""
    grouped: dict[str, dict[str, float]] = defaultdict(dict)
    for rating in ratings:
        grouped[rating.user_id][rating.show_id] = rating.enjoyment
    return dict(grouped)


def build_similarity_map(
    user_id: str,
    ratings_by_user: Mapping[str, Mapping[str, float]],
    candidate_users: Iterable[str] | None = None,
) -> dict[str, float]:
    """
    Similarity of ``user_id`` against every other user (or just ``candidate_users``).

    Always computed with ``user_id``'s ratings as the "current" side.
    """
    mine = ratings_by_user.get(user_id, {})
    others = candidate_users if candidate_users is not None else ratings_by_user.keys()
    return {
        other: calculate_similarity(mine, ratings_by_user.get(other, {}))
        for other in others
        if other != user_id
    }


def find_similar_users(
    user_id: str,
    ratings: Iterable[Rating],
    usernames: Mapping[str, str],
    limit: int | None = None,
) -> list[UserSimilarity]:
    """
    Rank other users by taste similarity to ``user_id``.

    Users with too few ratings of their own get no list: there is no
    baseline to compare against.
    """
    ratings_by_user = enjoyment_by_user(ratings)
    if len(ratings_by_user.get(user_id, {})) < MIN_USER_RATINGS:
        return []

    similarities = build_similarity_map(user_id, ratings_by_user)
    ranked = sorted(similarities.items(), key=lambda x: (-x[1], x[0]))
    if limit is not None:
        ranked = ranked[:limit]

    logger.debug(f"Computed similarity for {user_id} against {len(similarities)} users")
    return [
        UserSimilarity(user_id=other, username=usernames.get(other, "Unknown"), similarity=sim)
        for other, sim in ranked
    ]
