import sqlite3
import json
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable

from .config import DB_PATH
from .models import Rating, Show, WatchAction, WatchActionKind
from .ports import RecommendationStore
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)


def parse_timestamp_naive(timestamp_str: str) -> datetime:
    """
    Parse ISO format timestamp string to naive UTC datetime.

    Aware timestamps are converted to UTC before the tzinfo is dropped so that
    rows written by different clients compare correctly.
    """
    if timestamp_str.endswith("Z"):
        timestamp_str = timestamp_str[:-1] + "+00:00"
    dt = datetime.fromisoformat(timestamp_str)
    if dt.tzinfo:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def utcnow() -> datetime:
    """Naive UTC now, matching what parse_timestamp_naive returns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Aware datetimes are converted to naive UTC; naive ones are assumed UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class ConnectionPool:
    """
    Thread-safe SQLite connection pool with health checks and automatic cleanup.

    - One connection per thread (SQLite threading requirement)
    - Periodic health checks via SELECT 1
    - Automatic cleanup of dead thread connections
    - Explicit transaction nesting tracking
    """

    def __init__(self, db_path, max_size: int = 50, health_check_interval: int = 300):
        self._db_path = db_path
        self._max_size = max_size
        self._health_check_interval = health_check_interval

        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._last_health_check: dict[int, float] = {}
        self._transaction_depth: dict[int, int] = {}
        self._last_cleanup = time.time()
        self._cleanup_interval = 60

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _health_check(self, conn: sqlite3.Connection) -> bool:
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def _maybe_cleanup(self):
        """Periodically close connections owned by threads that have exited."""
        now = time.time()
        if now - self._last_cleanup < self._cleanup_interval:
            return

        self._last_cleanup = now
        alive_threads = {t.ident for t in threading.enumerate()}
        dead_threads = set(self._connections.keys()) - alive_threads

        for thread_id in dead_threads:
            conn = self._connections.pop(thread_id, None)
            self._last_health_check.pop(thread_id, None)
            self._transaction_depth.pop(thread_id, None)
            if conn:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")

        if dead_threads:
            logger.debug(f"Connection pool cleanup: removed {len(dead_threads)} dead connections")

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()
        now = time.time()

        with self._lock:
            self._maybe_cleanup()
            conn = self._connections.get(thread_id)

            if conn is not None and now - self._last_health_check.get(thread_id, 0) > self._health_check_interval:
                if self._health_check(conn):
                    self._last_health_check[thread_id] = now
                else:
                    logger.warning(f"Connection for thread {thread_id} failed health check, replacing")
                    conn = None

            if conn is None:
                if len(self._connections) >= self._max_size:
                    self._last_cleanup = 0
                    self._maybe_cleanup()
                    if len(self._connections) >= self._max_size:
                        raise RuntimeError(
                            f"Connection pool exhausted ({self._max_size} connections). "
                            f"Possible connection leak or too many threads."
                        )
                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._last_health_check[thread_id] = now
                self._transaction_depth[thread_id] = 0

            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            self._connections.clear()
            self._last_health_check.clear()
            self._transaction_depth.clear()


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get database connection with proper transaction handling.

    Args:
        read_only: If True, skip commit on exit

    Only the outermost context commits or rolls back; nested contexts are
    no-ops for transaction control.
    """
    pool = _get_pool()
    conn = pool.get_connection()

    is_outermost = pool.get_transaction_depth() == 0
    pool.increment_transaction_depth()

    try:
        yield conn
        if is_outermost and not read_only:
            conn.commit()
    except Exception:
        if is_outermost:
            conn.rollback()
        raise
    finally:
        pool.decrement_transaction_depth()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                username TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS shows (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                poster_path TEXT,
                overview TEXT DEFAULT '',
                first_air_date TEXT
            );

            CREATE TABLE IF NOT EXISTS ratings (
                user_id TEXT NOT NULL,
                show_id TEXT NOT NULL,
                enjoyment REAL NOT NULL,
                hook REAL,
                consistency REAL,
                payoff REAL,
                heat REAL,
                recommend INTEGER,  -- NULL = no answer
                tags TEXT,          -- JSON list
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, show_id)
            );

            CREATE TABLE IF NOT EXISTS follows (
                follower_id TEXT NOT NULL,
                followee_id TEXT NOT NULL,
                PRIMARY KEY (follower_id, followee_id)
            );

            CREATE TABLE IF NOT EXISTS watch_actions (
                user_id TEXT NOT NULL,
                show_id TEXT NOT NULL,
                action TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, show_id, action)
            );

            CREATE INDEX IF NOT EXISTS idx_ratings_show ON ratings(show_id);
            CREATE INDEX IF NOT EXISTS idx_ratings_created ON ratings(created_at);
            CREATE INDEX IF NOT EXISTS idx_ratings_recommend ON ratings(recommend, created_at);
            CREATE INDEX IF NOT EXISTS idx_follows_followee ON follows(followee_id);
            CREATE INDEX IF NOT EXISTS idx_watch_actions_user ON watch_actions(user_id, created_at);
        """)


def load_json(val):
    """Safely load a JSON list from a db field."""
    if not val:
        return []
    if isinstance(val, list):
        return val
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON '{str(val)[:50]}...': {e}")
        return []


def _rating_from_row(row: sqlite3.Row) -> Rating:
    recommend = row['recommend']
    return Rating(
        user_id=row['user_id'],
        show_id=row['show_id'],
        enjoyment=row['enjoyment'],
        hook=row['hook'],
        consistency=row['consistency'],
        payoff=row['payoff'],
        heat=row['heat'],
        recommend=None if recommend is None else bool(recommend),
        tags=load_json(row['tags']),
        created_at=parse_timestamp_naive(row['created_at']),
    )


def _show_from_row(row: sqlite3.Row) -> Show:
    return Show(
        id=row['id'],
        title=row['title'],
        poster_path=row['poster_path'],
        overview=row['overview'] or "",
        first_air_date=row['first_air_date'],
    )


@retry_with_backoff((sqlite3.OperationalError,))
def upsert_show(show: Show) -> None:
    with get_db() as conn:
        conn.execute("""
            INSERT INTO shows (id, title, poster_path, overview, first_air_date)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                poster_path = excluded.poster_path,
                overview = excluded.overview,
                first_air_date = excluded.first_air_date
        """, (show.id, show.title, show.poster_path, show.overview, show.first_air_date))


def upsert_rating(rating: Rating) -> None:
    """Insert or overwrite the single rating a user holds for a show."""
    with get_db() as conn:
        conn.execute("""
            INSERT INTO ratings (user_id, show_id, enjoyment, hook, consistency, payoff, heat,
                                 recommend, tags, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, show_id) DO UPDATE SET
                enjoyment = excluded.enjoyment,
                hook = excluded.hook,
                consistency = excluded.consistency,
                payoff = excluded.payoff,
                heat = excluded.heat,
                recommend = excluded.recommend,
                tags = excluded.tags,
                created_at = excluded.created_at
        """, (
            rating.user_id,
            rating.show_id,
            rating.enjoyment,
            rating.hook,
            rating.consistency,
            rating.payoff,
            rating.heat,
            None if rating.recommend is None else int(rating.recommend),
            json.dumps(rating.tags or []),
            rating.created_at.isoformat(),
        ))


def ensure_profile(user_id: str, email: str) -> str:
    """Create or refresh a profile whose username is the e-mail prefix."""
    username = email.split("@")[0]
    with get_db() as conn:
        conn.execute("""
            INSERT INTO profiles (id, username) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET username = excluded.username
        """, (user_id, username))
    return username


def follow(follower_id: str, followee_id: str) -> bool:
    """Record a follow edge. Returns False if it already existed."""
    if follower_id == followee_id:
        raise ValueError("Users cannot follow themselves")
    with get_db() as conn:
        cursor = conn.execute(
            "INSERT OR IGNORE INTO follows (follower_id, followee_id) VALUES (?, ?)",
            (follower_id, followee_id),
        )
        return cursor.rowcount > 0


def unfollow(follower_id: str, followee_id: str) -> None:
    with get_db() as conn:
        conn.execute(
            "DELETE FROM follows WHERE follower_id = ? AND followee_id = ?",
            (follower_id, followee_id),
        )


def record_watch_action(
    user_id: str,
    show_id: str,
    action: "WatchActionKind | str",
    created_at: datetime | None = None,
) -> None:
    """
    Record a swipe action. Re-recording the same action refreshes its timestamp.

    Raises:
        ValueError: if show_id is empty or action is not a known kind
    """
    if not show_id:
        raise ValueError("show_id and action are required")
    kind = WatchActionKind.parse(action)
    timestamp = (created_at or utcnow()).isoformat()
    with get_db() as conn:
        conn.execute("""
            INSERT INTO watch_actions (user_id, show_id, action, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, show_id, action) DO UPDATE SET created_at = excluded.created_at
        """, (user_id, show_id, kind.value, timestamp))


def delete_watch_action(user_id: str, show_id: str, action: "WatchActionKind | str") -> None:
    kind = WatchActionKind.parse(action)
    with get_db() as conn:
        conn.execute(
            "DELETE FROM watch_actions WHERE user_id = ? AND show_id = ? AND action = ?",
            (user_id, show_id, kind.value),
        )


def _watch_actions_from_rows(rows) -> list[WatchAction]:
    actions = []
    for row in rows:
        try:
            kind = WatchActionKind(row['action'])
        except ValueError:
            logger.warning(f"Skipping unknown watch action '{row['action']}' for show {row['show_id']}")
            continue
        actions.append(WatchAction(
            user_id=row['user_id'],
            show_id=row['show_id'],
            action=kind,
            created_at=parse_timestamp_naive(row['created_at']),
        ))
    return actions


def fetch_show_watch_actions(user_id: str, show_id: str) -> list[WatchAction]:
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT user_id, show_id, action, created_at FROM watch_actions
            WHERE user_id = ? AND show_id = ?
            ORDER BY created_at DESC
        """, (user_id, show_id)).fetchall()
    return _watch_actions_from_rows(rows)


def database_stats() -> dict:
    with get_db(read_only=True) as conn:
        return {
            'users': conn.execute("SELECT COUNT(*) FROM profiles").fetchone()[0],
            'shows': conn.execute("SELECT COUNT(*) FROM shows").fetchone()[0],
            'ratings': conn.execute("SELECT COUNT(*) FROM ratings").fetchone()[0],
            'follows': conn.execute("SELECT COUNT(*) FROM follows").fetchone()[0],
            'watch_actions': conn.execute("SELECT COUNT(*) FROM watch_actions").fetchone()[0],
        }


class SQLiteStore(RecommendationStore):
    """RecommendationStore backed by the pooled sqlite database."""

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
        clauses: list[str] = []
        params: list = []

        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if user_ids is not None:
            ids = list(user_ids)
            if not ids:
                return []
            clauses.append(f"user_id IN ({','.join('?' * len(ids))})")
            params.extend(ids)
        if show_id is not None:
            clauses.append("show_id = ?")
            params.append(show_id)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since.isoformat())
        if recommend is not None:
            clauses.append("recommend = ?")
            params.append(int(recommend))
        if min_enjoyment is not None:
            clauses.append("enjoyment >= ?")
            params.append(min_enjoyment)

        query = "SELECT * FROM ratings"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, user_id, show_id" if newest_first else " ORDER BY user_id, show_id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with get_db(read_only=True) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_rating_from_row(row) for row in rows]

    def fetch_follows(self, follower_id: str) -> list[str]:
        with get_db(read_only=True) as conn:
            rows = conn.execute(
                "SELECT followee_id FROM follows WHERE follower_id = ? ORDER BY followee_id",
                (follower_id,),
            ).fetchall()
        return [row['followee_id'] for row in rows]

    def fetch_username(self, user_id: str) -> str | None:
        with get_db(read_only=True) as conn:
            row = conn.execute("SELECT username FROM profiles WHERE id = ?", (user_id,)).fetchone()
        return row['username'] if row else None

    def fetch_usernames(self) -> dict[str, str]:
        with get_db(read_only=True) as conn:
            rows = conn.execute("SELECT id, username FROM profiles").fetchall()
        return {row['id']: row['username'] for row in rows}

    def fetch_show(self, show_id: str) -> Show | None:
        with get_db(read_only=True) as conn:
            row = conn.execute("SELECT * FROM shows WHERE id = ?", (show_id,)).fetchone()
        return _show_from_row(row) if row else None

    def fetch_shows(self, show_ids: Iterable[str] | None = None) -> dict[str, Show]:
        with get_db(read_only=True) as conn:
            if show_ids is None:
                rows = conn.execute("SELECT * FROM shows").fetchall()
            else:
                ids = list(show_ids)
                if not ids:
                    return {}
                placeholders = ','.join('?' * len(ids))
                rows = conn.execute(f"SELECT * FROM shows WHERE id IN ({placeholders})", ids).fetchall()
        return {row['id']: _show_from_row(row) for row in rows}

    def upsert_show(self, show: Show) -> None:
        upsert_show(show)

    def fetch_watch_actions(self, user_id: str) -> list[WatchAction]:
        with get_db(read_only=True) as conn:
            rows = conn.execute("""
                SELECT user_id, show_id, action, created_at FROM watch_actions
                WHERE user_id = ?
                ORDER BY created_at DESC
            """, (user_id,)).fetchall()
        return _watch_actions_from_rows(rows)
