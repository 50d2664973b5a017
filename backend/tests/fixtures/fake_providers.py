"""In-process provider adapters for registry and aggregator tests."""

import time

from providers.base import StreamCandidate, StreamProvider


class StaticProvider(StreamProvider):
    """Returns a fixed result list (dicts or StreamCandidate)."""

    def __init__(self, name, results, delay=0.0):
        self.name = name
        self.results = results
        self.delay = delay
        self.calls = []

    def fetch_streams(self, ctx):
        self.calls.append(ctx)
        if self.delay:
            time.sleep(self.delay)
        return list(self.results)


class FailingProvider(StreamProvider):
    """Raises from fetch_streams (adapter that breaks its contract)."""

    def __init__(self, name="broken", error=None):
        self.name = name
        self.error = error or RuntimeError("boom")
        self.calls = 0

    def fetch_streams(self, ctx):
        self.calls += 1
        raise self.error


def candidate(url, quality="1080p", provider="", title="Stream"):
    return StreamCandidate(url=url, quality=quality, provider=provider, title=title)
