"""Abstract base class for stream providers and shared data models.

Every provider adapter implements the same capability: given a FetchContext,
return a list of StreamCandidate. Adapters must never raise out of fetch();
any internal failure becomes an empty list.

License: GPL-3.0
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from config import Config
    from cookie_rotator import CookieRotator, CookieSelection

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base exception for provider errors (auth, rate-limit, network)."""
    pass


class ProviderAuthError(ProviderError):
    """Authentication or authorization failed."""
    pass


class ProviderRateLimitError(ProviderError):
    """Provider rate limit exceeded."""
    pass


class ProviderTimeoutError(ProviderError):
    """Provider request timed out."""
    pass


class MediaType(StrEnum):
    MOVIE = "movie"
    SERIES = "series"


@dataclass(frozen=True)
class FetchContext:
    """What to look up. Built by the serving layer from a media identifier.

    config is the snapshot captured by the aggregator at the start of an
    aggregate call; adapters read tunables from it instead of global state.
    """

    media_id: str
    media_type: MediaType = MediaType.MOVIE
    season: int | None = None
    episode: int | None = None
    config: Optional["Config"] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if not isinstance(self.media_type, MediaType):
            value = str(self.media_type).lower()
            # TMDB and Stremio spell series as 'tv' / 'series'
            object.__setattr__(
                self, "media_type", MediaType.SERIES if value in ("tv", "series", "show") else MediaType(value)
            )
        # Season and episode arrive as path segments; unparseable values fail validate()
        for attr in ("season", "episode"):
            value = getattr(self, attr)
            if value is not None and not isinstance(value, int):
                try:
                    value = int(str(value).strip())
                except ValueError:
                    value = None
                object.__setattr__(self, attr, value)

    @property
    def is_series(self) -> bool:
        return self.media_type == MediaType.SERIES

    @property
    def tmdb_type(self) -> str:
        """Media type as TMDB spells it ('movie' or 'tv')."""
        return "tv" if self.is_series else "movie"

    def validate(self) -> tuple[bool, str]:
        """Check required fields. Returns (ok, reason)."""
        if not self.media_id:
            return False, "media id is required"
        if self.is_series and (self.season is None or self.episode is None):
            return False, "season and episode are required for series"
        return True, ""

    def with_config(self, config: "Config") -> "FetchContext":
        return replace(self, config=config)

    @property
    def display_name(self) -> str:
        if self.is_series and self.season is not None and self.episode is not None:
            return f"{self.media_id} S{self.season:02d}E{self.episode:02d}"
        return self.media_id


@dataclass
class SubtitleTrack:
    language: str
    url: str
    type: str = "srt"


@dataclass
class StreamCandidate:
    """A playable stream found by a provider."""

    url: str
    title: str = ""
    quality: str = ""
    provider: str = ""
    size: str = "Unknown size"
    language: str | None = None
    headers: dict[str, str] | None = None
    subtitles: list[SubtitleTrack] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StreamCandidate":
        """Build a candidate from an adapter's dict result.

        Accepts the legacy 'behaviorHints.headers' shape and a 'name' field
        as title fallback.
        """
        headers = data.get("headers")
        hints = data.get("behaviorHints")
        if not headers and isinstance(hints, Mapping):
            headers = hints.get("headers")

        subtitles = None
        raw_subs = data.get("subtitles")
        if isinstance(raw_subs, list):
            subtitles = [
                SubtitleTrack(
                    language=str(s.get("language") or s.get("lang") or ""),
                    url=str(s.get("url") or ""),
                    type=str(s.get("type") or "srt"),
                )
                for s in raw_subs
                if isinstance(s, Mapping) and s.get("url")
            ]

        return cls(
            url=str(data.get("url") or ""),
            title=str(data.get("title") or data.get("name") or ""),
            quality=str(data.get("quality") or ""),
            provider=str(data.get("provider") or ""),
            size=str(data.get("size") or "Unknown size"),
            language=data.get("language") or None,
            headers=dict(headers) if isinstance(headers, Mapping) and headers else None,
            subtitles=subtitles or None,
        )

    def to_dict(self) -> dict:
        """External shape; optional fields are omitted when empty."""
        data: dict[str, Any] = {
            "title": self.title,
            "url": self.url,
            "quality": self.quality,
            "provider": self.provider,
            "size": self.size,
        }
        if self.language:
            data["language"] = self.language
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.subtitles:
            data["subtitles"] = [
                {"language": s.language, "url": s.url, "type": s.type} for s in self.subtitles
            ]
        return data


class StreamProvider(ABC):
    """Base class for all stream providers.

    Subclasses set `name` and implement fetch_streams(). Class attributes:
        display_name: Label used in candidate titles.
        timeout: Per-call deadline in seconds enforced by the aggregator
            (0 = use the configured provider_timeout).
    """

    name: str = "unknown"
    display_name: str = ""
    timeout: float = 0

    def fetch(self, ctx: FetchContext) -> list[StreamCandidate]:
        """Validate the context, then fetch. Validation failures return []."""
        ok, reason = ctx.validate()
        if not ok:
            logger.warning("%s skipped for %s: %s", self.name, ctx.display_name, reason)
            return []
        return self.fetch_streams(ctx)

    @abstractmethod
    def fetch_streams(self, ctx: FetchContext) -> list[StreamCandidate]:
        """Fetch candidates for a validated context."""
        ...

    def close(self) -> None:
        """Release resources (HTTP sessions). Override if needed."""
        pass


class CredentialedProvider(StreamProvider):
    """Provider that needs a session credential from the cookie pool.

    A fresh credential is drawn for every call. With an empty pool the call
    proceeds anonymously when allow_anonymous is True, otherwise returns [].
    """

    allow_anonymous: bool = False

    def __init__(self, rotator: Optional["CookieRotator"] = None) -> None:
        if rotator is None:
            from cookie_rotator import get_cookie_rotator
            rotator = get_cookie_rotator()
        self.rotator = rotator

    def fetch_streams(self, ctx: FetchContext) -> list[StreamCandidate]:
        pool = ctx.config.febbox_cookies if ctx.config is not None else ()
        selection = self.rotator.select(pool)
        if selection is None and not self.allow_anonymous:
            logger.info("%s skipped: credential pool is empty", self.name)
            return []
        return self.fetch_streams_with_credential(ctx, selection)

    @abstractmethod
    def fetch_streams_with_credential(
        self, ctx: FetchContext, selection: Optional["CookieSelection"]
    ) -> list[StreamCandidate]:
        """Fetch candidates using the selected credential (None = anonymous)."""
        ...

    def report_quota(self, remaining: float | None) -> None:
        """Surface a post-call quota reading (e.g. remaining MB) to the stats."""
        self.rotator.record_quota(remaining)
