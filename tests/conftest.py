import importlib
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from showreco.models import Rating, Show, WatchAction, WatchActionKind  # noqa: E402
from showreco.ports import CatalogSource, RecommendationStore  # noqa: E402

NOW = datetime(2026, 10, 1, 12, 0, 0)


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("SHOWRECO_DB", str(db_path))
    import showreco.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("SHOWRECO_DB", str(db_path))

    import showreco.config as config
    import showreco.database as database

    importlib.reload(config)
    importlib.reload(database)
    database.init_db()

    yield database
    database.close_pool()


def rating(user_id, show_id, enjoyment, days_ago=10, **kwargs):
    return Rating(
        user_id=user_id,
        show_id=show_id,
        enjoyment=enjoyment,
        created_at=NOW - timedelta(days=days_ago),
        **kwargs,
    )


class InMemoryStore(RecommendationStore):
    """Store double. Method names listed in ``failing`` raise RuntimeError."""

    def __init__(self, ratings=(), shows=(), usernames=None, follows=None, watch_actions=(), failing=()):
        self.ratings = list(ratings)
        self.shows = {s.id: s for s in shows}
        self.usernames = dict(usernames or {})
        self.follows = {k: list(v) for k, v in (follows or {}).items()}
        self.watch_actions = list(watch_actions)
        self.failing = set(failing)
        self.upserted: list[Show] = []

    def _check(self, name):
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def fetch_ratings(self, *, user_id=None, user_ids=None, show_id=None, since=None,
                      recommend=None, min_enjoyment=None, newest_first=False, limit=None):
        self._check("fetch_ratings")
        ids = set(user_ids) if user_ids is not None else None
        rows = [
            r for r in self.ratings
            if (user_id is None or r.user_id == user_id)
            and (ids is None or r.user_id in ids)
            and (show_id is None or r.show_id == show_id)
            and (since is None or r.created_at >= since)
            and (recommend is None or r.recommend is recommend)
            and (min_enjoyment is None or r.enjoyment >= min_enjoyment)
        ]
        if newest_first:
            rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[:limit] if limit is not None else rows

    def fetch_follows(self, follower_id):
        self._check("fetch_follows")
        return list(self.follows.get(follower_id, []))

    def fetch_username(self, user_id):
        return self.usernames.get(user_id)

    def fetch_usernames(self):
        self._check("fetch_usernames")
        return dict(self.usernames)

    def fetch_show(self, show_id):
        return self.shows.get(show_id)

    def fetch_shows(self, show_ids=None):
        self._check("fetch_shows")
        if show_ids is None:
            return dict(self.shows)
        return {sid: self.shows[sid] for sid in show_ids if sid in self.shows}

    def upsert_show(self, show):
        self._check("upsert_show")
        self.shows[show.id] = show
        self.upserted.append(show)

    def fetch_watch_actions(self, user_id):
        self._check("fetch_watch_actions")
        return [a for a in self.watch_actions if a.user_id == user_id]


class FakeCatalog(CatalogSource):
    def __init__(self, day=(), week=(), top=(), failing=False):
        self.lists = {"day": list(day), "week": list(week)}
        self.top = list(top)
        self.failing = failing
        self.calls: list[str] = []

    def trending(self, window="day"):
        self.calls.append(f"trending:{window}")
        if self.failing:
            raise RuntimeError("catalog down")
        return list(self.lists[window])

    def top_rated(self):
        self.calls.append("top_rated")
        if self.failing:
            raise RuntimeError("catalog down")
        return list(self.top)


def show(show_id, title=None, poster="/p.jpg", first_air_date="2020-01-01", kind=None):
    return Show(id=show_id, title=title or f"Show {show_id}", poster_path=poster,
                first_air_date=first_air_date, kind=kind)


def action(user_id, show_id, kind, days_ago=1):
    return WatchAction(user_id=user_id, show_id=show_id, action=WatchActionKind(kind),
                       created_at=NOW - timedelta(days=days_ago))


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_rating():
    return rating


@pytest.fixture
def make_show():
    return show


@pytest.fixture
def make_action():
    return action


@pytest.fixture
def make_store():
    return InMemoryStore


@pytest.fixture
def make_catalog():
    return FakeCatalog
