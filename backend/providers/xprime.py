"""Xprime stream provider.

Xprime searches by title and year, so the TMDB id is first resolved through
the TMDB API (a configured key is required). Each returned quality entry
becomes one candidate; sizes are probed with a HEAD request.
"""

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor

import requests

from config import get_tmdb_api_key
from metadata.tmdb_client import TMDBClient
from providers import register_provider
from providers.base import FetchContext, ProviderError, StreamCandidate, StreamProvider
from providers.http_session import create_session

logger = logging.getLogger(__name__)

PRIMEBOX_API = "https://backend.xprime.tv/primebox"
MAX_RETRIES = 3
RETRY_DELAY = 1.0
SIZE_PROBE_TIMEOUT = 5
SIZE_CACHE_MAX = 512

PLAYLIST_SIZE = "Playlist (size N/A)"
UNKNOWN_SIZE = "Unknown size"


def format_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 ** 2:
        return f"{num_bytes / 1024:.2f} KB"
    if num_bytes < 1024 ** 3:
        return f"{num_bytes / 1024 ** 2:.2f} MB"
    return f"{num_bytes / 1024 ** 3:.2f} GB"


@register_provider
class XprimeProvider(StreamProvider):
    """Xprime.tv provider (title/year lookup)."""

    name = "xprime"
    display_name = "Xprime.tv"
    timeout = 25

    def __init__(self):
        self.session = create_session(max_retries=0, timeout=10)
        self.tmdb_session = requests.Session()
        self._size_cache: OrderedDict[str, str] = OrderedDict()
        self._size_lock = threading.Lock()

    def close(self):
        self.session.close()
        self.tmdb_session.close()

    def fetch_streams(self, ctx: FetchContext) -> list[StreamCandidate]:
        api_key = get_tmdb_api_key(ctx.config) if ctx.config is not None else get_tmdb_api_key()
        if not api_key:
            logger.warning("xprime skipped: TMDB API key missing")
            return []

        tmdb = TMDBClient(api_key, session=self.tmdb_session)
        meta = tmdb.get_title_and_year(ctx.media_id, ctx.tmdb_type)
        if meta is None:
            logger.info("xprime missing title/year after TMDB lookup for %s", ctx.media_id)
            return []
        title, year = meta

        params = {"name": title, "year": year, "fallback_year": year}
        if ctx.is_series:
            params["season"] = ctx.season
            params["episode"] = ctx.episode

        logger.info("Xprime fetch attempt '%s' (%s) type=%s", title, year, ctx.tmdb_type)
        payload = self._get_with_retry(params)
        if payload is None:
            return []

        items = payload if isinstance(payload, list) else [payload]
        suffix = f"S{ctx.season:02d}E{ctx.episode:02d} " if ctx.is_series else ""
        streams = []
        for item in items:
            if not isinstance(item, dict) or item.get("error") or not isinstance(item.get("streams"), dict):
                continue
            for quality, url in item["streams"].items():
                if not url or not isinstance(url, str):
                    continue
                streams.append(
                    StreamCandidate(
                        title=f"{title} - {suffix}{quality}",
                        url=url,
                        quality=quality or "Unknown",
                        provider=self.name,
                        headers=None,
                    )
                )

        if streams:
            use_cache = not (ctx.config is not None and ctx.config.disable_cache)
            with ThreadPoolExecutor(max_workers=min(8, len(streams))) as executor:
                sizes = list(executor.map(lambda s: self.fetch_stream_size(s.url, use_cache), streams))
            for stream, size in zip(streams, sizes):
                stream.size = size

        logger.info("Xprime returning %d streams", len(streams))
        return streams

    def _get_with_retry(self, params: dict):
        """GET the primebox API with exponential backoff. Returns JSON or None."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                resp = self.session.get(PRIMEBOX_API, params=params)
                resp.raise_for_status()
                return resp.json()
            except (requests.RequestException, ProviderError, ValueError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAY * 2 ** (attempt - 1)
                    logger.debug("Xprime attempt %d/%d failed (%s), retrying in %.1fs",
                                 attempt, MAX_RETRIES, e, delay)
                    time.sleep(delay)
                else:
                    logger.error("Xprime fetch failed: %s", e)
        return None

    def fetch_stream_size(self, url: str, use_cache: bool = True) -> str:
        """Human-readable size from Content-Length (memoized per URL, least recently used evicted)."""
        key = hashlib.md5(url.encode(), usedforsecurity=False).hexdigest()  # noqa: S324
        if use_cache:
            with self._size_lock:
                cached = self._size_cache.get(key)
                if cached:
                    self._size_cache.move_to_end(key)
            if cached:
                return cached

        if ".m3u8" in url.lower():
            size = PLAYLIST_SIZE
        else:
            size = UNKNOWN_SIZE
            try:
                head = self.session.head(url, timeout=SIZE_PROBE_TIMEOUT, allow_redirects=True)
                length = head.headers.get("content-length")
                if length and length.isdigit():
                    size = format_size(int(length))
            except (requests.RequestException, ProviderError) as e:
                logger.debug("Xprime size probe failed for %s: %s", url, e)

        if use_cache:
            with self._size_lock:
                self._size_cache[key] = size
                self._size_cache.move_to_end(key)
                while len(self._size_cache) > SIZE_CACHE_MAX:
                    self._size_cache.popitem(last=False)
        return size
