import logging
import time

import httpx

from .config import (
    DEFAULT_RETRY_AFTER,
    HTTP_TIMEOUT,
    MAX_429_RETRY_SECONDS,
    MAX_HTTP_RETRIES,
    TMDB_API_KEY,
    TMDB_BASE_URL,
    TMDB_IMAGE_BASE_URL,
    TOP_RATED_LIMIT,
)
from .models import Show
from .ports import CatalogSource
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)


class CatalogError(RuntimeError):
    """The external catalog is not usable (e.g. no API key configured)."""


def poster_url(poster_path: str | None) -> str:
    if not poster_path:
        return ""
    return f"{TMDB_IMAGE_BASE_URL}/w500{poster_path}"


def backdrop_url(backdrop_path: str | None) -> str:
    if not backdrop_path:
        return ""
    return f"{TMDB_IMAGE_BASE_URL}/w1280{backdrop_path}"


def media_type_of(item: dict) -> str:
    """
    "movie" or "tv" for a raw TMDB result.

    Multi-search and trending results carry ``media_type``; list endpoints
    don't, in which case movies are the ones with a ``title``.
    """
    if item.get("media_type"):
        return "movie" if item["media_type"] == "movie" else "tv"
    return "movie" if item.get("title") else "tv"


def _show_from_tmdb(item: dict) -> Show:
    return Show(
        id=str(item["id"]),
        title=item.get("title") or item.get("name") or "Unknown",
        poster_path=item.get("poster_path"),
        overview=item.get("overview") or "",
        first_air_date=item.get("first_air_date") or item.get("release_date") or None,
        kind=media_type_of(item),
    )


def _with_poster(items: list[dict]) -> list[dict]:
    return [item for item in items if item.get("poster_path")]


class TMDBClient(CatalogSource):
    """
    Thin TMDB v3 client used as the external catalog fallback.

    Transport problems (timeouts, HTTP errors, exhausted 429 budget) are
    logged and surface as empty results. A missing API key is a
    configuration error and raises CatalogError.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = TMDB_BASE_URL,
        client: httpx.Client | None = None,
    ):
        self.api_key = TMDB_API_KEY if api_key is None else api_key
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(
            headers={"User-Agent": "showreco/0.1"},
            follow_redirects=True,
            timeout=HTTP_TIMEOUT,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @retry_with_backoff((httpx.TimeoutException,), attempts=MAX_HTTP_RETRIES, initial_delay=1.0)
    def _send(self, url: str, query: dict) -> httpx.Response:
        return self.client.get(url, params=query)

    def _get(self, path: str, params: dict | None = None) -> dict | None:
        if not self.api_key:
            raise CatalogError("TMDB API key is not configured")

        url = f"{self.base_url}{path}"
        query = {"api_key": self.api_key, **(params or {})}

        total_429_wait_time = 0

        while True:
            try:
                resp = self._send(url, query)
                if resp.status_code == 404:
                    return None

                if resp.status_code == 429:
                    try:
                        retry_after = int(resp.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
                    except ValueError:
                        retry_after = DEFAULT_RETRY_AFTER

                    if total_429_wait_time + retry_after > MAX_429_RETRY_SECONDS:
                        logger.error(f"Max 429 wait time exceeded for {path} (waited {total_429_wait_time}s, would need {retry_after}s more)")
                        return None

                    logger.warning(f"Rate limited (429) on {path}, waiting {retry_after}s... (total 429 wait: {total_429_wait_time}s)")
                    time.sleep(retry_after)
                    total_429_wait_time += retry_after
                    continue

                resp.raise_for_status()
                return resp.json()
            except httpx.TimeoutException as e:
                logger.error(f"Max retries exceeded for {path}: {e}")
                return None
            except httpx.HTTPStatusError as e:
                logger.error(f"HTTP error on {path}: {e}")
                return None
            except httpx.HTTPError as e:
                logger.error(f"Request error on {path}: {e}")
                return None
            except ValueError as e:
                logger.error(f"Invalid JSON from {path}: {e}")
                return None

    def _results(self, path: str, params: dict | None = None) -> list[dict]:
        data = self._get(path, params)
        if not data:
            return []
        return data.get("results") or []

    def trending(self, window: str = "day") -> list[Show]:
        """Trending movies and series. Entries without a poster are dropped."""
        if window not in ("day", "week"):
            raise ValueError(f"Invalid trending window: {window}. Must be 'day' or 'week'")
        items = _with_poster(self._results(f"/trending/all/{window}"))
        logger.debug(f"TMDB trending/{window}: {len(items)} shows with posters")
        return [_show_from_tmdb(item) for item in items]

    def top_rated(self) -> list[Show]:
        """Top rated movies then series, poster-filtered, capped at TOP_RATED_LIMIT."""
        movies = [{**m, "media_type": "movie"} for m in self._results("/movie/top_rated")]
        series = [{**t, "media_type": "tv"} for t in self._results("/tv/top_rated")]
        combined = _with_poster(movies + series)[:TOP_RATED_LIMIT]
        return [_show_from_tmdb(item) for item in combined]

    def search(self, query: str) -> list[Show]:
        """Multi-search restricted to movies and series."""
        query = query.strip()
        if not query:
            return []
        items = self._results("/search/multi", {"query": query, "include_adult": "false"})
        return [_show_from_tmdb(item) for item in items if item.get("media_type", "tv") in ("movie", "tv")]

    def details(self, show_id: str | int, media_type: str) -> dict | None:
        if media_type not in ("movie", "tv"):
            raise ValueError(f"Invalid media type: {media_type}. Must be 'movie' or 'tv'")
        return self._get(f"/{media_type}/{show_id}")

    def close(self):
        self.client.close()
