"""Shared pytest fixtures for all tests."""

import json
import os

import pytest

import aggregator
import config as config_module
import providers
from config import PROVIDER_NAMES, ConfigStore, provider_env_name
from providers import ProviderDescriptor, ProviderRegistry

# Every variable the config layer reads or mirrors
CONFIG_ENV_VARS = [
    "API_PORT",
    "DEFAULT_REGION",
    "FEBBOX_REGION",
    "DEFAULT_PROVIDERS",
    "MIN_QUALITIES",
    "EXCLUDE_CODECS",
    "TMDB_API_KEY",
    "TMDB_API_KEYS",
    "FEBBOX_COOKIES",
    "DISABLE_CACHE",
    "ENABLE_PSTREAM_API",
    "SHOWBOX_CACHE_DIR",
    "DISABLE_URL_VALIDATION",
    "DISABLE_4KHDHUB_URL_VALIDATION",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "LOG_FILE",
    "PROVIDER_TIMEOUT",
    "STREAMSCOUT_OVERRIDE_PATH",
] + [provider_env_name(name) for name in PROVIDER_NAMES]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate every test from the host environment, .env files and singletons."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)

    config_module.reset_config_store()
    providers.invalidate_registry()
    providers.clear_load_failures()
    monkeypatch.setattr(aggregator, "_engine", None)
    yield
    config_module.reset_config_store()
    providers.invalidate_registry()
    providers.clear_load_failures()
    # Singleton stores mirror into os.environ; monkeypatch restores the originals afterwards
    for name in CONFIG_ENV_VARS:
        os.environ.pop(name, None)


@pytest.fixture
def override_path(tmp_path):
    """Path of an (initially absent) override document."""
    return str(tmp_path / "utils" / "user-config.json")


@pytest.fixture
def write_override(override_path):
    """Factory fixture writing raw text or a dict to the override document."""
    def _write(content):
        os.makedirs(os.path.dirname(override_path), exist_ok=True)
        with open(override_path, "w", encoding="utf-8") as f:
            if isinstance(content, str):
                f.write(content)
            else:
                json.dump(content, f)
        return override_path

    return _write


@pytest.fixture
def mirror_env():
    """Dict receiving mirrored config values instead of os.environ."""
    return {}


@pytest.fixture
def make_store(override_path, mirror_env):
    """Factory fixture building a ConfigStore on the temp override document."""
    def _make(**kwargs):
        kwargs.setdefault("override_path", override_path)
        kwargs.setdefault("environ", mirror_env)
        return ConfigStore(**kwargs)

    return _make


@pytest.fixture
def make_registry():
    """Factory fixture: make_registry(provider, ...) -> ProviderRegistry."""
    def _make(*provider_instances):
        descriptors = [
            ProviderDescriptor(p.name, enabled=True, loader=(lambda p=p: p))
            for p in provider_instances
        ]
        return ProviderRegistry(descriptors)

    return _make
