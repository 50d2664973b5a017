"""Tests for the provider registry: enumeration, lookup and lazy loading."""

import pytest

import providers
from config import (
    PROVIDER_NAMES,
    get_config_store,
    normalize_config,
    provider_flag_key,
    reset_config_store,
)
from providers import (
    ProviderDescriptor,
    ProviderRegistry,
    get_loader,
    get_registry,
    invalidate_registry,
    register_provider,
)
from providers.base import FetchContext, StreamProvider
from providers.vidzee import VidZeeProvider
from tests.fixtures.fake_providers import FailingProvider, StaticProvider, candidate


@pytest.fixture
def store(make_store):
    """Singleton store backed by the temp override document."""
    s = make_store()
    reset_config_store(s)
    return s


class TestBuild:

    def test_all_known_providers_in_order(self):
        registry = ProviderRegistry.build(normalize_config({}))
        assert [p["name"] for p in registry.list()] == list(PROVIDER_NAMES)
        assert all(p["enabled"] for p in registry.list())

    def test_disabled_providers_are_omitted(self):
        cfg = normalize_config({"enableVidzeeProvider": False, "enableShowboxProvider": "false"})
        names = [p["name"] for p in ProviderRegistry.build(cfg).list()]
        assert "vidzee" not in names
        assert "showbox" not in names
        assert names[0] == "xprime"

    def test_build_does_not_load_adapters(self):
        registry = ProviderRegistry.build(normalize_config({}))
        assert providers._FAILED_LOADS == {}
        assert all(d.timeout == 0 for d in registry.descriptors)

    def test_get_is_case_insensitive(self):
        registry = ProviderRegistry.build(normalize_config({}))
        assert registry.get("VidZee").name == "vidzee"
        assert registry.get("4KHDHUB").name == "4khdhub"
        assert registry.get("unknown") is None

    def test_empty_registry(self):
        cfg = normalize_config({provider_flag_key(n): False for n in PROVIDER_NAMES})
        registry = ProviderRegistry.build(cfg)
        assert registry.list() == []
        assert registry.enabled() == []


class TestLazyLoading:

    def test_bundled_adapter_resolves(self):
        descriptor = ProviderDescriptor("vidzee")
        provider = descriptor.resolve()
        assert isinstance(provider, VidZeeProvider)
        assert descriptor.resolve() is provider
        assert descriptor.timeout == VidZeeProvider.timeout
        descriptor.close()

    def test_missing_adapter_is_unavailable(self):
        descriptor = ProviderDescriptor("showbox")
        assert descriptor.resolve() is None
        assert descriptor.available is False
        assert descriptor.fetch(FetchContext("603")) == []
        assert "showbox" in providers._FAILED_LOADS

    def test_broken_loader_attempted_once(self):
        calls = []

        def loader():
            calls.append(1)
            raise ImportError("adapter dependencies missing")

        descriptor = ProviderDescriptor("mp4hydra", loader=loader)
        ctx = FetchContext("603")
        assert descriptor.fetch(ctx) == []
        assert descriptor.fetch(ctx) == []

        # A rebuilt registry shares the process-wide failure cache
        again = ProviderDescriptor("mp4hydra", loader=loader)
        assert again.fetch(ctx) == []
        assert len(calls) == 1

    def test_broken_loader_does_not_affect_others(self):
        def bad_loader():
            raise RuntimeError("bad")

        good = StaticProvider("vidzee", [candidate("https://a.example/1.m3u8")])
        registry = ProviderRegistry([
            ProviderDescriptor("moviesmod", loader=bad_loader),
            ProviderDescriptor("vidzee", loader=lambda: good),
        ])
        ctx = FetchContext("603")
        assert registry.get("moviesmod").fetch(ctx) == []
        assert len(registry.get("vidzee").fetch(ctx)) == 1

    def test_register_loader_clears_failure(self, monkeypatch):
        monkeypatch.setattr(providers, "_LOADERS", dict(providers._LOADERS))
        assert ProviderDescriptor("vixsrc").resolve() is None

        replacement = StaticProvider("vixsrc", [])
        providers.register_loader("vixsrc", lambda: replacement)
        assert get_loader("VIXSRC")() is replacement
        assert ProviderDescriptor("vixsrc").resolve() is replacement

    def test_wait_resolved_signals_success_and_failure(self):
        loaded = ProviderDescriptor("vidzee", loader=lambda: StaticProvider("vidzee", []))
        assert loaded.wait_resolved(0) is False
        loaded.resolve()
        assert loaded.wait_resolved(0) is True

        def bad_loader():
            raise RuntimeError("bad")

        broken = ProviderDescriptor("moviesmod", loader=bad_loader)
        broken.resolve()
        assert broken.wait_resolved(0) is True

        # Known-failed names resolve immediately on later registries
        again = ProviderDescriptor("moviesmod", loader=bad_loader)
        assert again.resolve() is None
        assert again.wait_resolved(0) is True

    def test_module_without_registration(self):
        load = providers._module_loader("ghost", "http_session")
        with pytest.raises(LookupError):
            load()

    def test_failing_adapter_fetch_propagates_to_caller(self):
        descriptor = ProviderDescriptor("broken", loader=lambda: FailingProvider())
        with pytest.raises(RuntimeError):
            descriptor.fetch(FetchContext("603"))


class TestRegisterProvider:

    def test_name_collision_keeps_first(self, monkeypatch):
        monkeypatch.setattr(providers, "_PROVIDER_CLASSES", {})

        @register_provider
        class First(StreamProvider):
            name = "dupe"

            def fetch_streams(self, ctx):
                return []

        @register_provider
        class Second(StreamProvider):
            name = "dupe"

            def fetch_streams(self, ctx):
                return []

        assert providers._PROVIDER_CLASSES["dupe"] is First


class TestSingleton:

    def test_registry_follows_config_patch(self, store):
        first = get_registry()
        assert first.get("vidzee") is not None

        assert store.patch({"enableVidzeeProvider": False}) is True
        second = get_registry()
        assert second is not first
        assert second.get("vidzee") is None
        assert [p["name"] for p in second.list()] == [n for n in PROVIDER_NAMES if n != "vidzee"]

    def test_listener_registered_once(self, store):
        get_registry()
        invalidate_registry()
        get_registry()
        assert store._listeners.count(providers._on_config_reload) == 1

    def test_invalidate_rebuilds(self, store):
        first = get_registry()
        invalidate_registry()
        assert get_registry() is not first
        assert get_config_store() is store
