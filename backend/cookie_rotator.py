"""Session-credential rotation for credential-gated providers.

Every call draws one credential uniformly at random from the pool (no
round-robin, no stickiness). The pool itself is never mutated, so concurrent
provider tasks can share it without locking. The most recent selection is
kept as anonymized CookieStats for the debug endpoint.
"""

import logging
import random
import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

# Max characters of a credential that may appear in stats or logs
PREFIX_LENGTH = 16
ELLIPSIS = "..."


def anonymize(value: str) -> str:
    """Truncate a credential to PREFIX_LENGTH characters plus an ellipsis."""
    return value[:PREFIX_LENGTH] + ELLIPSIS


@dataclass(frozen=True)
class CookieSelection:
    """One credential drawn from the pool."""

    value: str
    index: int

    @property
    def header_value(self) -> str:
        """Cookie header form ('ui=<value>')."""
        return self.value if self.value.startswith("ui=") else f"ui={self.value}"

    def __repr__(self) -> str:
        return f"CookieSelection(value={anonymize(self.value)!r}, index={self.index})"


@dataclass(frozen=True)
class CookieStats:
    selected_prefix: str
    index: int
    pool_size: int
    remaining_quota: Optional[float] = None
    timestamp: float = 0.0


class CookieRotator:
    """Uniform random credential selection with anonymized stats.

    Args:
        rng: Random source (injectable for tests). Defaults to a private
            random.Random instance.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()
        self._stats: Optional[CookieStats] = None
        self._lock = threading.Lock()

    def select(self, pool: Sequence[str]) -> Optional[CookieSelection]:
        """Draw one credential from pool, or None if the pool is empty."""
        if not pool:
            return None
        index = self._rng.randrange(len(pool))
        value = pool[index]
        with self._lock:
            self._stats = CookieStats(
                selected_prefix=anonymize(value),
                index=index,
                pool_size=len(pool),
                remaining_quota=None,
                timestamp=time.time(),
            )
        logger.info("Cookie random pick index=%d total=%d", index, len(pool))
        return CookieSelection(value=value, index=index)

    def record_quota(self, remaining: Optional[float]) -> None:
        """Attach a post-call quota reading to the latest stats."""
        if remaining is None:
            return
        with self._lock:
            if self._stats is not None:
                self._stats = replace(self._stats, remaining_quota=remaining)

    @property
    def stats(self) -> Optional[CookieStats]:
        return self._stats

    def get_stats(self) -> dict:
        """Return a JSON-serialisable stats dict."""
        stats = self._stats
        if stats is None:
            return {"selected": None, "index": None, "total": 0, "remainingMB": None, "timestamp": None}
        data = asdict(stats)
        return {
            "selected": data["selected_prefix"],
            "index": data["index"],
            "total": data["pool_size"],
            "remainingMB": data["remaining_quota"],
            "timestamp": data["timestamp"],
        }


_rotator: Optional[CookieRotator] = None
_rotator_lock = threading.Lock()


def get_cookie_rotator() -> CookieRotator:
    """Get or create the process-wide CookieRotator."""
    global _rotator
    if _rotator is None:
        with _rotator_lock:
            if _rotator is None:
                _rotator = CookieRotator()
    return _rotator
