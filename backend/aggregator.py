"""Aggregate fetch: call every enabled provider concurrently, merge results.

fetch_all() never raises. Each provider runs in its own worker and is fully
isolated: an exception, a malformed payload or a missed deadline only removes
that provider's contribution. Results are tagged with the provider name,
quality labels are normalized, and lists are concatenated in registry order.

Usage:
    from aggregator import fetch_all
    from providers.base import FetchContext

    candidates = fetch_all(FetchContext("tt0133093", "movie"))
"""

import logging
import threading
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Optional

from config import ConfigStore, get_config_store
from providers import ProviderDescriptor, ProviderRegistry, get_registry
from providers.base import FetchContext, StreamCandidate
from quality import normalize_quality

logger = logging.getLogger(__name__)


def _run_provider(descriptor: ProviderDescriptor, ctx: FetchContext) -> tuple[Any, float, str]:
    """Call one provider. Returns (raw result, elapsed_ms, error message)."""
    start = time.monotonic()
    try:
        result = descriptor.fetch(ctx)
    except Exception as e:
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.warning(
            "Provider %s fetch failed after %.0fms: %s", descriptor.name, elapsed_ms, e
        )
        logger.debug("Provider %s traceback", descriptor.name, exc_info=True)
        return [], elapsed_ms, str(e) or type(e).__name__
    elapsed_ms = (time.monotonic() - start) * 1000
    logger.info("Provider %s fetch duration %.0fms", descriptor.name, elapsed_ms)
    return result, elapsed_ms, ""


def _finalize(name: str, raw: Any) -> list[StreamCandidate]:
    """Coerce, tag and normalize one provider's raw result."""
    if not isinstance(raw, list):
        logger.warning("Provider %s returned %s instead of a list", name, type(raw).__name__)
        return []

    candidates = []
    for item in raw:
        if isinstance(item, StreamCandidate):
            candidate = item
        elif isinstance(item, Mapping):
            candidate = StreamCandidate.from_mapping(item)
        else:
            logger.debug("Provider %s returned a non-candidate entry: %r", name, item)
            continue
        if not candidate.url:
            continue
        if not candidate.provider:
            candidate.provider = name
        candidate.quality = normalize_quality(candidate.quality)
        candidates.append(candidate)
    return candidates


class AggregationEngine:
    """Concurrent fan-out over the enabled providers of a registry.

    Args:
        registry: Registry to use when fetch_all() is not given one
            (default: the singleton from get_registry()).
        config_store: Source of the config snapshot captured per call.
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        config_store: Optional[ConfigStore] = None,
    ) -> None:
        self._registry = registry
        self._config_store = config_store
        self._last_run: dict[str, dict] = {}

    def get_last_run(self) -> dict[str, dict]:
        """Per-provider summary of the previous aggregate call."""
        return dict(self._last_run)

    def fetch_all(
        self, ctx: FetchContext, registry: Optional[ProviderRegistry] = None
    ) -> list[StreamCandidate]:
        """Fetch from all enabled providers. Always returns a list."""
        try:
            return self._fetch_all(ctx, registry)
        except Exception as e:
            logger.error(
                "Aggregate fetch for %s failed: %s", getattr(ctx, "media_id", None), e, exc_info=True
            )
            return []

    def _fetch_all(
        self, ctx: FetchContext, registry: Optional[ProviderRegistry]
    ) -> list[StreamCandidate]:
        # One snapshot for the whole call; concurrent reloads do not leak in
        if ctx.config is None:
            store = self._config_store or get_config_store()
            ctx = ctx.with_config(store.snapshot)
        config = ctx.config

        registry = registry or self._registry or get_registry()
        descriptors = registry.enabled()
        if not descriptors:
            logger.info("No enabled providers for %s", ctx.display_name)
            self._last_run = {}
            return []

        logger.info(
            "Fetching %s from %d providers: %s",
            ctx.display_name,
            len(descriptors),
            [d.name for d in descriptors],
        )

        executor = ThreadPoolExecutor(
            max_workers=len(descriptors), thread_name_prefix="provider"
        )
        start = time.monotonic()
        summary: dict[str, dict] = {}
        merged: list[StreamCandidate] = []
        try:
            futures = [
                (descriptor, executor.submit(_run_provider, descriptor, ctx))
                for descriptor in descriptors
            ]
            # Collect in registry order; each provider has its own deadline from start
            for descriptor, future in futures:
                # The adapter's own timeout is only known once its worker has loaded it
                descriptor.wait_resolved(
                    max(0.0, start + config.provider_timeout - time.monotonic())
                )
                deadline = descriptor.timeout or config.provider_timeout
                remaining = max(0.0, start + deadline - time.monotonic())
                try:
                    raw, elapsed_ms, error = future.result(timeout=remaining)
                except FutureTimeoutError:
                    logger.warning(
                        "Provider %s timed out after %.0fs", descriptor.name, deadline
                    )
                    summary[descriptor.name] = {
                        "count": 0,
                        "elapsed_ms": deadline * 1000,
                        "error": "timeout",
                    }
                    continue

                candidates = _finalize(descriptor.name, raw) if not error else []
                summary[descriptor.name] = {
                    "count": len(candidates),
                    "elapsed_ms": round(elapsed_ms),
                    "error": error or None,
                }
                merged.extend(candidates)
        finally:
            # Never wait for stalled workers; they finish (or hang) on their own
            executor.shutdown(wait=False, cancel_futures=True)

        self._last_run = summary
        logger.info(
            "Aggregate fetch for %s returned %d candidates in %.0fms",
            ctx.display_name,
            len(merged),
            (time.monotonic() - start) * 1000,
        )
        return merged


# Singleton engine
_engine: Optional[AggregationEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> AggregationEngine:
    """Get or create the singleton AggregationEngine (thread-safe)."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = AggregationEngine()
    return _engine


def fetch_all(ctx: FetchContext, registry: Optional[ProviderRegistry] = None) -> list[StreamCandidate]:
    """Aggregate fetch through the singleton engine."""
    return get_engine().fetch_all(ctx, registry)
