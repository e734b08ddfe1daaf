"""Tiered fallback composition for decks and shelves."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from .models import Show

logger = logging.getLogger(__name__)

# (slots still open, ids already taken) -> candidate items, best first
TierFetcher = Callable[[int, frozenset], Sequence[Any]]


@dataclass
class Tier:
    name: str
    fetch: TierFetcher


def _show_id(item: Any) -> str:
    return item.show_id


def compose_tiers(
    tiers: Sequence[Tier],
    target: int,
    key: Callable[[Any], str] = _show_id,
) -> list:
    """
    Fill up to ``target`` items by cascading through ``tiers`` in order.

    A tier only runs while slots remain. Each tier is its own failure
    boundary: an exception is logged and the tier contributes nothing.
    Items are deduplicated by ``key`` across tiers, first occurrence wins.
    """
    results: list = []
    seen: set[str] = set()

    for tier in tiers:
        remaining = target - len(results)
        if remaining <= 0:
            break

        try:
            items = tier.fetch(remaining, frozenset(seen))
        except Exception as e:
            logger.error(f"Tier '{tier.name}' failed: {e}")
            continue

        added = 0
        for item in items or ():
            if len(results) >= target:
                break
            item_key = key(item)
            if item_key in seen:
                continue
            seen.add(item_key)
            results.append(item)
            added += 1

        logger.debug(f"Tier '{tier.name}' contributed {added} items ({len(results)}/{target})")

    return results


def write_through(store, shows: Iterable[Show]) -> None:
    """
    Cache externally sourced shows locally before they are served.

    A failed upsert is logged and skipped; the show is still served.
    """
    for show in shows:
        try:
            store.upsert_show(show)
        except Exception as e:
            logger.warning(f"Failed to cache show {show.id} ({show.title}): {e}")


def lookup_shows(store, show_ids: Sequence[str]) -> list[Show]:
    """Cached shows for ``show_ids`` in the given order; unknown ids are skipped."""
    if not show_ids:
        return []
    shows = store.fetch_shows(show_ids)
    return [shows[show_id] for show_id in show_ids if show_id in shows]
