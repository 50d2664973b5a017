"""Shared HTTP plumbing for stream provider adapters.

Adapters talk to embed players and CDNs that expect a browser. ProviderSession
sends browser-like headers, applies a default per-request timeout, retries
5xx answers through urllib3 and turns 429/401/403 into provider exceptions.
A host that answered 429 is not contacted again until its Retry-After window
has passed.
"""

import logging
import threading
import time
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from providers.base import ProviderAuthError, ProviderRateLimitError, ProviderTimeoutError

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/136.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-GB,en-US;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

DEFAULT_RETRY_AFTER = 60
RETRY_STATUSES = (500, 502, 503, 504)


def _retry_after_seconds(value: str | None) -> int:
    if value and value.strip().isdigit():
        return int(value.strip())
    return DEFAULT_RETRY_AFTER


class ProviderSession(requests.Session):
    """requests.Session with a default timeout and per-host 429 backoff."""

    def __init__(self, timeout: float = 10):
        super().__init__()
        self.default_timeout = timeout
        self._blocked_until: dict[str, float] = {}
        self._blocked_lock = threading.Lock()

    def _check_backoff(self, host: str) -> None:
        with self._blocked_lock:
            until = self._blocked_until.get(host)
        if until is None:
            return
        remaining = until - time.time()
        if remaining > 0:
            raise ProviderRateLimitError(f"{host} rate limited for another {remaining:.0f}s")
        with self._blocked_lock:
            self._blocked_until.pop(host, None)

    def request(self, method, url, **kwargs):
        kwargs.setdefault("timeout", self.default_timeout)
        host = urlsplit(url).netloc
        self._check_backoff(host)

        try:
            resp = super().request(method, url, **kwargs)
        except requests.Timeout as e:
            logger.debug("%s %s timed out after %ss", method, url, kwargs["timeout"])
            raise ProviderTimeoutError(f"{method} {url} timed out") from e

        status = resp.status_code
        if status == 429:
            wait_seconds = _retry_after_seconds(resp.headers.get("Retry-After"))
            with self._blocked_lock:
                self._blocked_until[host] = time.time() + wait_seconds
            logger.warning("%s answered 429, backing off %ds", host, wait_seconds)
            raise ProviderRateLimitError(f"{host} rate limited, retry after {wait_seconds}s")
        if status in (401, 403):
            raise ProviderAuthError(f"{host} refused {method} {url}: HTTP {status}")
        return resp


def create_session(
    max_retries: int = 2,
    backoff_factor: float = 0.5,
    timeout: float = 10,
    headers: dict | None = None,
) -> ProviderSession:
    """Build a ProviderSession with browser headers and 5xx retries.

    Args:
        max_retries: urllib3 retry budget for GET/HEAD on 5xx (0 disables).
        backoff_factor: urllib3 exponential backoff factor.
        timeout: Default per-request timeout in seconds.
        headers: Extra headers merged over the browser defaults.
    """
    session = ProviderSession(timeout=timeout)
    session.headers.update(BROWSER_HEADERS)
    session.headers.update(headers or {})

    adapter = HTTPAdapter(
        max_retries=Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=("GET", "HEAD"),
            raise_on_status=False,
        )
    )
    for prefix in ("https://", "http://"):
        session.mount(prefix, adapter)
    return session
