"""Stream provider system: registry of pluggable provider adapters.

Adapters are resolved lazily. Each known provider name has a loader (by
default: import providers.<name> and instantiate the class it registered
with @register_provider). The loader runs on the first fetch; if it fails,
the failure is logged once and cached, and that descriptor returns [] from
then on. A broken adapter never prevents the registry from being built or
other adapters from working.

Usage:
    from providers import get_registry

    registry = get_registry()
    registry.list()          # [{"name": "vidzee", "enabled": True}, ...]
    registry.get("VidZee")   # case-insensitive
"""

import importlib
import logging
import threading
from collections.abc import Callable
from typing import Optional

from config import PROVIDER_NAMES, Config, provider_flag_key
from providers.base import (
    FetchContext,
    StreamCandidate,
    StreamProvider,
)

logger = logging.getLogger(__name__)

# Provider registry: name -> adapter class (filled by @register_provider on import)
_PROVIDER_CLASSES: dict[str, type[StreamProvider]] = {}

# Loader registry: name -> zero-argument constructor
_LOADERS: dict[str, Callable[[], StreamProvider]] = {}

# Names whose loader failed this process; never retried
_FAILED_LOADS: dict[str, str] = {}
_failed_lock = threading.Lock()

# Known providers in enumeration order: (name, module under providers/)
KNOWN_PROVIDERS: tuple[tuple[str, str], ...] = tuple((name, name) for name in PROVIDER_NAMES)


def register_provider(cls: type[StreamProvider]) -> type[StreamProvider]:
    """Decorator to register a provider class.

    If a name is already registered, a warning is logged and the duplicate
    is skipped.
    """
    if cls.name in _PROVIDER_CLASSES and _PROVIDER_CLASSES[cls.name] is not cls:
        logger.warning(
            "Provider name collision: '%s' already registered by %s, skipping %s",
            cls.name,
            _PROVIDER_CLASSES[cls.name].__name__,
            cls.__name__,
        )
        return cls
    _PROVIDER_CLASSES[cls.name] = cls
    return cls


def _module_loader(name: str, module: str) -> Callable[[], StreamProvider]:
    def load() -> StreamProvider:
        importlib.import_module(f"providers.{module}")
        cls = _PROVIDER_CLASSES.get(name)
        if cls is None:
            raise LookupError(f"module providers.{module} did not register provider '{name}'")
        return cls()

    return load


def register_loader(name: str, loader: Callable[[], StreamProvider]) -> None:
    """Register (or replace) the constructor used to resolve a provider.

    Replacing a loader clears any cached load failure for that name.
    """
    key = name.lower()
    _LOADERS[key] = loader
    with _failed_lock:
        _FAILED_LOADS.pop(key, None)


def get_loader(name: str) -> Callable[[], StreamProvider]:
    key = name.lower()
    if key not in _LOADERS:
        _LOADERS[key] = _module_loader(key, key)
    return _LOADERS[key]


for _name, _module in KNOWN_PROVIDERS:
    _LOADERS.setdefault(_name, _module_loader(_name, _module))


def clear_load_failures() -> None:
    """Forget cached load failures (tests / plugin reinstall)."""
    with _failed_lock:
        _FAILED_LOADS.clear()


class ProviderDescriptor:
    """One registry entry: a provider name plus its lazily bound adapter."""

    def __init__(
        self,
        name: str,
        enabled: bool = True,
        loader: Optional[Callable[[], StreamProvider]] = None,
    ) -> None:
        self.name = name
        self.enabled = enabled
        self._loader = loader or get_loader(name)
        self._provider: Optional[StreamProvider] = None
        self._lock = threading.Lock()
        self._resolved = threading.Event()

    @property
    def available(self) -> bool:
        """False once the adapter failed to load."""
        return self.name not in _FAILED_LOADS

    @property
    def timeout(self) -> float:
        """Adapter-specific deadline (0 when unknown or unset)."""
        return getattr(self._provider, "timeout", 0) or 0

    def wait_resolved(self, timeout: Optional[float] = None) -> bool:
        """Block until a resolve() attempt has finished. Returns False on timeout."""
        return self._resolved.wait(timeout)

    def resolve(self) -> Optional[StreamProvider]:
        """Resolve the adapter on first use. Returns None if unavailable."""
        if self._provider is not None:
            return self._provider
        with self._lock:
            if self._provider is not None:
                return self._provider
            if not self.available:
                self._resolved.set()
                return None
            try:
                self._provider = self._loader()
            except Exception as e:
                with _failed_lock:
                    _FAILED_LOADS[self.name] = str(e)
                logger.error("Failed to load %s provider: %s", self.name, e)
                return None
            finally:
                self._resolved.set()
            logger.debug("Provider %s loaded: %s", self.name, type(self._provider).__name__)
            return self._provider

    def fetch(self, ctx: FetchContext) -> list[StreamCandidate]:
        """The provider's fetch capability. Unavailable adapters return []."""
        provider = self.resolve()
        if provider is None:
            return []
        return provider.fetch(ctx)

    def close(self) -> None:
        if self._provider is not None:
            try:
                self._provider.close()
            except Exception as e:
                logger.debug("Provider %s close failed: %s", self.name, e)

    def __repr__(self) -> str:
        return f"ProviderDescriptor(name={self.name!r}, enabled={self.enabled})"


class ProviderRegistry:
    """Holds the descriptors of enabled providers in enumeration order."""

    def __init__(self, descriptors: Optional[list[ProviderDescriptor]] = None) -> None:
        self._descriptors: list[ProviderDescriptor] = list(descriptors or [])

    @classmethod
    def build(cls, config: Config) -> "ProviderRegistry":
        """One descriptor per known provider whose enable flag is true."""
        descriptors = []
        for name, _module in KNOWN_PROVIDERS:
            if config.is_provider_enabled(name):
                descriptors.append(ProviderDescriptor(name, enabled=True))
                logger.info("%s provider enabled", name)
            else:
                logger.info("%s disabled via config (%s)", name, provider_flag_key(name))
        return cls(descriptors)

    @property
    def descriptors(self) -> list[ProviderDescriptor]:
        return list(self._descriptors)

    def enabled(self) -> list[ProviderDescriptor]:
        return [d for d in self._descriptors if d.enabled]

    def list(self) -> list[dict]:
        return [{"name": d.name, "enabled": d.enabled} for d in self._descriptors]

    def get(self, name: str) -> Optional[ProviderDescriptor]:
        key = name.lower()
        for descriptor in self._descriptors:
            if descriptor.name.lower() == key:
                return descriptor
        return None

    def shutdown(self) -> None:
        for descriptor in self._descriptors:
            descriptor.close()


# Singleton registry
_registry: Optional[ProviderRegistry] = None
_registry_lock = threading.Lock()
# Store the reload listener is attached to
_listener_store = None


def _on_config_reload(config: Config) -> None:
    """Rebuild the registry from the new snapshot."""
    global _registry
    new_registry = ProviderRegistry.build(config)
    with _registry_lock:
        old, _registry = _registry, new_registry
    if old is not None:
        old.shutdown()


def get_registry() -> ProviderRegistry:
    """Get or create the singleton ProviderRegistry (thread-safe).

    The registry follows config patches: a reload rebuilds it.
    """
    global _registry, _listener_store
    if _registry is None:
        from config import get_config_store

        store = get_config_store()
        with _registry_lock:
            if _listener_store is not store:
                store.add_listener(_on_config_reload)
                _listener_store = store
            if _registry is None:
                _registry = ProviderRegistry.build(store.snapshot)
    return _registry


def invalidate_registry() -> None:
    """Reset the registry (next get_registry() rebuilds from current config)."""
    global _registry
    with _registry_lock:
        old, _registry = _registry, None
    if old is not None:
        old.shutdown()
