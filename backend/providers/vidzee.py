"""VidZee stream provider.

VidZee exposes one JSON endpoint per mirror server; all ten servers are
queried in parallel and their sources merged. media_id is a TMDB id.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor

import requests

from providers import register_provider
from providers.base import FetchContext, ProviderError, StreamCandidate, StreamProvider
from providers.http_session import create_session

logger = logging.getLogger(__name__)

SERVER_API = "https://player.vidzee.wtf/api/server"
EMBED_REFERER = "https://player.vidzee.wtf/embed/movie/{tmdb_id}"
STREAM_REFERER = "https://core.vidzee.wtf/"
SERVERS = tuple(range(1, 11))
SERVER_TIMEOUT = 7

_RESOLUTION = re.compile(r"\d{3,4}p")


def _quality_label(source: dict) -> str:
    label = str(source.get("name") or source.get("type") or "VidZee")
    if label.isdigit():
        label = f"{label}p"
    # Server names such as "Nova" carry no resolution
    if not _RESOLUTION.search(label.lower()):
        return "720p"
    return label


@register_provider
class VidZeeProvider(StreamProvider):
    """VidZee multi-server provider."""

    name = "vidzee"
    display_name = "VidZee"
    timeout = 20

    def __init__(self):
        self.session = create_session(max_retries=0, timeout=SERVER_TIMEOUT)

    def close(self):
        self.session.close()

    def fetch_streams(self, ctx: FetchContext) -> list[StreamCandidate]:
        with ThreadPoolExecutor(max_workers=len(SERVERS), thread_name_prefix="vidzee") as executor:
            per_server = list(executor.map(lambda sr: self._fetch_server(ctx, sr), SERVERS))

        streams = [s for server_streams in per_server for s in server_streams]
        logger.info(
            "VidZee found %d streams for %s across %d servers",
            len(streams),
            ctx.display_name,
            len(SERVERS),
        )
        return streams

    def _fetch_server(self, ctx: FetchContext, server: int) -> list[StreamCandidate]:
        params = {"id": ctx.media_id, "sr": server}
        if ctx.is_series:
            params["ss"] = ctx.season
            params["ep"] = ctx.episode
        headers = {"Referer": EMBED_REFERER.format(tmdb_id=ctx.media_id)}

        try:
            resp = self.session.get(SERVER_API, params=params, headers=headers)
            if resp.status_code != 200:
                logger.debug("VidZee S%d: HTTP %d", server, resp.status_code)
                return []
            data = resp.json()
        except (requests.RequestException, ProviderError, ValueError) as e:
            logger.debug("VidZee S%d fetch failed: %s", server, e)
            return []

        if not isinstance(data, dict):
            logger.debug("VidZee S%d: invalid response payload", server)
            return []

        if isinstance(data.get("url"), list):
            sources = data["url"]
        elif isinstance(data.get("link"), str):
            sources = [data]
        else:
            return []

        streams = []
        for source in sources:
            if not isinstance(source, dict) or not source.get("link"):
                continue
            quality = _quality_label(source)
            streams.append(
                StreamCandidate(
                    title=f"VidZee S{server} - {quality}",
                    url=source["link"],
                    quality=quality,
                    language=source.get("language") or source.get("lang"),
                    provider=self.name,
                    size="Unknown size",
                    headers={"Referer": STREAM_REFERER},
                )
            )
        logger.debug("VidZee S%d: %d streams", server, len(streams))
        return streams
