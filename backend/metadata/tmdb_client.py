"""TMDB API v3 client for the title/year lookups some providers need.

Authenticates with a v3 api_key query parameter. Returns None on errors
(never crashes).
"""

import logging

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 8


class TMDBClient:
    """TMDB (The Movie Database) API v3 client."""

    BASE_URL = "https://api.themoviedb.org"

    def __init__(self, api_key: str, session: requests.Session | None = None):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.session.headers["Accept"] = "application/json"

    def _get(self, path: str, params: dict = None) -> dict | None:
        """GET request helper. Returns parsed JSON or None on failure."""
        url = f"{self.BASE_URL}{path}"
        query = {"api_key": self.api_key, **(params or {})}
        try:
            resp = self.session.get(url, params=query, timeout=REQUEST_TIMEOUT)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("TMDB GET %s failed: %s", path, e)
            return None
        return data if isinstance(data, dict) else None

    def get_movie_details(self, movie_id: str | int) -> dict | None:
        return self._get(f"/3/movie/{movie_id}")

    def get_tv_details(self, tv_id: str | int) -> dict | None:
        return self._get(f"/3/tv/{tv_id}")

    def get_title_and_year(self, tmdb_id: str | int, tmdb_type: str) -> tuple[str, str] | None:
        """Resolve display title and release year.

        Args:
            tmdb_id: TMDB id of the movie or series.
            tmdb_type: 'movie' or 'tv'.

        Returns:
            (title, year) or None if either is unavailable.
        """
        if tmdb_type == "movie":
            meta = self.get_movie_details(tmdb_id)
            if not meta:
                return None
            title = meta.get("title") or meta.get("original_title")
            date = meta.get("release_date")
        else:
            meta = self.get_tv_details(tmdb_id)
            if not meta:
                return None
            title = meta.get("name") or meta.get("original_name")
            date = meta.get("first_air_date")

        year = date.split("-")[0] if date else None
        if not title or not year:
            return None
        return title, year
