"""Collaborator ports: the reads and writes the recommendation core relies on."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable

from .models import Rating, Show, WatchAction


class RecommendationStore(ABC):
    """Ratings, follows, profiles, catalog cache and watch actions."""

    @abstractmethod
    def fetch_ratings(
        self,
        *,
        user_id: str | None = None,
        user_ids: Iterable[str] | None = None,
        show_id: str | None = None,
        since: datetime | None = None,
        recommend: bool | None = None,
        min_enjoyment: float | None = None,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[Rating]:
        """Return ratings matching every filter that is not None."""
        ...

    @abstractmethod
    def fetch_follows(self, follower_id: str) -> list[str]:
        """Return the ids of users followed by ``follower_id``."""
        ...

    @abstractmethod
    def fetch_username(self, user_id: str) -> str | None:
        ...

    @abstractmethod
    def fetch_usernames(self) -> dict[str, str]:
        """Return user id -> username for every known profile."""
        ...

    @abstractmethod
    def fetch_show(self, show_id: str) -> Show | None:
        ...

    @abstractmethod
    def fetch_shows(self, show_ids: Iterable[str] | None = None) -> dict[str, Show]:
        """Return cached shows keyed by id; all shows when ``show_ids`` is None."""
        ...

    @abstractmethod
    def upsert_show(self, show: Show) -> None:
        ...

    @abstractmethod
    def fetch_watch_actions(self, user_id: str) -> list[WatchAction]:
        ...


class CatalogSource(ABC):
    """External trending / top-rated catalog."""

    @abstractmethod
    def trending(self, window: str = "day") -> list[Show]:
        """Trending shows for ``window`` ("day" or "week")."""
        ...

    @abstractmethod
    def top_rated(self) -> list[Show]:
        ...
