"""
Per-show score aggregation.

Each contributing rating is weighted by how closely the rater's taste aligns
with the current user, whether the user follows them, and how recent the
rating is. The weighted mean enjoyment is then nudged by a mode-specific
content multiplier and explained by the strongest contributors.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from .config import (
    SIMILARITY_WEIGHT,
    FOLLOW_BONUS,
    MIN_RATERS_PER_SHOW,
    MODE_SUBSCORE_THRESHOLD,
    TONIGHT_HOOK_BONUS,
    TONIGHT_ENJOYMENT_BONUS,
    TONIGHT_EASY_WATCH_BONUS,
    WEEKEND_PAYOFF_BONUS,
    WEEKEND_CONSISTENCY_BONUS,
    EASY_WATCH_TAG,
    SCORE_MIN,
    SCORE_MAX,
    EXPLANATION_TOP_CONTRIBUTORS,
    EXPLANATION_SEPARATOR,
    EXPLANATION_FALLBACK,
)
from .models import DeckMode, Rating, Show, ShowRecommendation
from .recency import get_recency_multiplier

logger = logging.getLogger(__name__)


@dataclass
class Contribution:
    """One other user's rating of a candidate show, as seen by the current user."""
    rating: Rating
    similarity: float
    is_followed: bool = False
    username: str | None = None
    weight: float = 0.0


def rater_weight(similarity: float, is_followed: bool, recency_multiplier: float) -> float:
    base_weight = similarity * SIMILARITY_WEIGHT
    follow_bonus = FOLLOW_BONUS if is_followed else 0.0
    return (base_weight + follow_bonus) * recency_multiplier


def _mean_subscore(contributions: Sequence[Contribution], attr: str) -> float:
    # Missing sub-scores count as 0, so sparse sub-scores pull the mean down.
    return sum(getattr(c.rating, attr) or 0.0 for c in contributions) / len(contributions)


def _normalize_tag(tag: str) -> str:
    return " ".join(tag.strip().lower().replace("-", " ").replace("_", " ").split())


def collect_tags(contributions: Sequence[Contribution]) -> list[str]:
    """Union of contributor tags, first occurrence order, case-insensitive dedupe."""
    seen: set[str] = set()
    tags: list[str] = []
    for contribution in contributions:
        for tag in contribution.rating.tags or []:
            key = _normalize_tag(tag)
            if key and key not in seen:
                seen.add(key)
                tags.append(tag)
    return tags


def has_easy_watch_tag(tags: Sequence[str]) -> bool:
    target = _normalize_tag(EASY_WATCH_TAG)
    return any(_normalize_tag(t) == target for t in tags)


def mode_multiplier(
    mode: DeckMode,
    average_enjoyment: float,
    contributions: Sequence[Contribution],
    tags: Sequence[str],
) -> float:
    """
    Content multiplier for the viewing context, applied once per show.

    Tonight favours a strong hook, high enjoyment and easy-watch shows; this
    weekend favours payoff and consistency.
    """
    multiplier = 1.0
    if mode is DeckMode.TONIGHT:
        if _mean_subscore(contributions, 'hook') >= MODE_SUBSCORE_THRESHOLD:
            multiplier += TONIGHT_HOOK_BONUS
        if average_enjoyment >= MODE_SUBSCORE_THRESHOLD:
            multiplier += TONIGHT_ENJOYMENT_BONUS
        if has_easy_watch_tag(tags):
            multiplier += TONIGHT_EASY_WATCH_BONUS
    else:
        if _mean_subscore(contributions, 'payoff') >= MODE_SUBSCORE_THRESHOLD:
            multiplier += WEEKEND_PAYOFF_BONUS
        if _mean_subscore(contributions, 'consistency') >= MODE_SUBSCORE_THRESHOLD:
            multiplier += WEEKEND_CONSISTENCY_BONUS
    return multiplier


def build_explanation(contributions: Sequence[Contribution]) -> str:
    """Render the top contributors by weight, e.g. "You follow @sam • align 0.91"."""
    named = [c for c in contributions if c.username and c.weight > 0]
    named.sort(key=lambda c: (-c.weight, c.username))
    parts = []
    for c in named[:EXPLANATION_TOP_CONTRIBUTORS]:
        part = f"@{c.username} • align {c.similarity:.2f}"
        if c.is_followed:
            part = f"You follow {part}"
        parts.append(part)
    return EXPLANATION_SEPARATOR.join(parts) if parts else EXPLANATION_FALLBACK


def score_show(
    show: Show,
    contributions: Sequence[Contribution],
    mode: DeckMode | str = DeckMode.TONIGHT,
    reference_time: datetime | None = None,
    min_raters: int = MIN_RATERS_PER_SHOW,
) -> ShowRecommendation | None:
    """
    Aggregate contributions into one recommendation for ``show``.

    Returns None when fewer than ``min_raters`` distinct users rated the show
    or when no contribution carries weight.
    """
    mode = DeckMode.parse(mode)
    if len({c.rating.user_id for c in contributions}) < min_raters:
        return None

    weighted_sum = 0.0
    total_weight = 0.0
    for contribution in contributions:
        recency = get_recency_multiplier(contribution.rating.created_at, mode, reference_time)
        contribution.weight = rater_weight(contribution.similarity, contribution.is_followed, recency)
        weighted_sum += contribution.rating.enjoyment * contribution.weight
        total_weight += contribution.weight

    if total_weight <= 0:
        logger.debug(f"Dropping {show.id}: no weighted signal")
        return None

    base_score = weighted_sum / total_weight
    tags = collect_tags(contributions)
    final_score = base_score * mode_multiplier(mode, base_score, contributions, tags)

    return ShowRecommendation(
        show_id=show.id,
        title=show.title,
        poster_path=show.poster_path,
        score=max(SCORE_MIN, min(SCORE_MAX, final_score)),
        explanation=build_explanation(contributions),
        tags=tags,
    )
