from collections import defaultdict
import logging
from datetime import datetime
from typing import Iterable, Mapping

from .config import MIN_RATERS_PER_SHOW, MIN_USER_RATINGS
from .models import DeckMode, Rating, Show, ShowRecommendation
from .ports import RecommendationStore
from .scoring import Contribution, score_show
from .similarity import build_similarity_map, enjoyment_by_user

logger = logging.getLogger(__name__)


def _latest_per_pair(ratings: Iterable[Rating]) -> list[Rating]:
    """Keep one rating per (user, show); a later write overwrites an earlier one."""
    latest: dict[tuple[str, str], Rating] = {}
    for rating in ratings:
        key = (rating.user_id, rating.show_id)
        current = latest.get(key)
        if current is None or rating.created_at >= current.created_at:
            latest[key] = rating
    return list(latest.values())


class ShowRecommender:
    """
    Collaborative show recommender.
    Finds users with similar taste and recommends shows they rated.

    Pure computation over request-scoped snapshots; holds no state that
    outlives the request.
    """

    def __init__(
        self,
        ratings: Iterable[Rating],
        shows: Mapping[str, Show],
        usernames: Mapping[str, str] | None = None,
        min_raters: int = MIN_RATERS_PER_SHOW,
    ):
        """
        Args:
            ratings: Every known rating, all users
            shows: Catalog lookup keyed by show id
            usernames: user id -> username, used for explanations
            min_raters: Distinct raters a show needs before it is scored
        """
        self.ratings = _latest_per_pair(ratings)
        self.shows = shows
        self.usernames = usernames or {}
        self.min_raters = min_raters
        self._by_user = enjoyment_by_user(self.ratings)

    def recommend(
        self,
        user_id: str,
        mode: DeckMode | str = DeckMode.TONIGHT,
        exclude_show_ids: Iterable[str] | None = None,
        followed: Iterable[str] | None = None,
        n: int | None = None,
        reference_time: datetime | None = None,
    ) -> list[ShowRecommendation]:
        """Rank shows ``user_id`` has not rated, best first (ties by show id)."""
        mode = DeckMode.parse(mode)
        user_ratings = self._by_user.get(user_id, {})
        if len(user_ratings) < MIN_USER_RATINGS:
            logger.debug(f"{user_id} has {len(user_ratings)} ratings (min: {MIN_USER_RATINGS}), skipping")
            return []

        excluded = set(exclude_show_ids or ()) | set(user_ratings)
        followed_set = set(followed or ())

        candidates = [r for r in self.ratings if r.user_id != user_id and r.show_id not in excluded]

        # Only users who rated at least one candidate can influence the ranking
        raters = {r.user_id for r in candidates}
        similarities = build_similarity_map(user_id, self._by_user, raters)

        by_show: dict[str, list[Contribution]] = defaultdict(list)
        for rating in candidates:
            similarity = similarities.get(rating.user_id, 0.0)
            if similarity == 0:
                continue
            by_show[rating.show_id].append(Contribution(
                rating=rating,
                similarity=similarity,
                is_followed=rating.user_id in followed_set,
                username=self.usernames.get(rating.user_id),
            ))

        results: list[ShowRecommendation] = []
        for show_id, contributions in by_show.items():
            show = self.shows.get(show_id)
            if show is None:
                logger.debug(f"Show {show_id} missing from catalog cache, skipping")
                continue
            rec = score_show(show, contributions, mode, reference_time, self.min_raters)
            if rec is not None:
                results.append(rec)

        results.sort(key=lambda r: (-r.score, r.show_id))
        logger.debug(
            f"Scored {len(results)} of {len(by_show)} candidate shows for {user_id} "
            f"({len(similarities)} raters compared)"
        )
        return results[:n] if n is not None else results


def get_personalized_recommendations(
    store: RecommendationStore,
    user_id: str,
    mode: DeckMode | str = DeckMode.TONIGHT,
    exclude_show_ids: Iterable[str] | None = None,
    reference_time: datetime | None = None,
) -> list[ShowRecommendation]:
    """
    Personalized ranking for ``user_id``.

    Reads of ratings, profiles and shows are required: their failures
    propagate to the caller. The follows read only adds a bonus, so a failure
    there is logged and the ranking proceeds without it.
    """
    mode = DeckMode.parse(mode)
    all_ratings = store.fetch_ratings()

    if sum(1 for r in all_ratings if r.user_id == user_id) < MIN_USER_RATINGS:
        return []

    usernames = store.fetch_usernames()

    try:
        followed = store.fetch_follows(user_id)
    except Exception as e:
        logger.warning(f"Failed to fetch follows for {user_id}: {e}. Continuing without follow bonus.")
        followed = []

    shows = store.fetch_shows({r.show_id for r in all_ratings if r.user_id != user_id})

    recommender = ShowRecommender(all_ratings, shows, usernames)
    return recommender.recommend(
        user_id,
        mode=mode,
        exclude_show_ids=exclude_show_ids,
        followed=followed,
        reference_time=reference_time,
    )
