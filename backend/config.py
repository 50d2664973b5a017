"""Layered runtime configuration using Pydantic Settings.

Settings are merged from three layers, lowest to highest precedence:

1. built-in defaults
2. environment variables (or a .env file), e.g. TMDB_API_KEY, FEBBOX_COOKIES
3. the persisted override document (utils/user-config.json)

The merged mapping is normalized into an immutable Config snapshot. ConfigStore
owns the live snapshot and replaces it wholesale on reload, so readers always
see a complete merge. Every load mirrors the resolved values back into
os.environ for adapter code that reads environment variables directly.

Usage:
    from config import get_config, get_config_store

    cfg = get_config()
    if cfg.is_provider_enabled("vidzee"):
        ...
    get_config_store().patch({"enableVidzeeProvider": False})
"""

import json
import logging
import os
import random
import re
import tempfile
import threading
from collections.abc import Callable, Iterable, MutableMapping
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Increment when structure / semantics of the override document change
CONFIG_SCHEMA_VERSION = 1

DEFAULT_PORT = 8787
DEFAULT_PROVIDER_TIMEOUT = 30.0

# Order matters: the registry enumerates providers in this order
PROVIDER_NAMES = (
    "showbox",
    "xprime",
    "4khdhub",
    "moviesmod",
    "mp4hydra",
    "vidzee",
    "vixsrc",
)

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}

# Proxy support was removed; these are always cleared from the environment
_LEGACY_PROXY_ENV = (
    "SHOWBOX_USE_ROTATING_PROXY",
    "SHOWBOX_PROXY_URL_VALUE",
    "SHOWBOX_PROXY_URL_ALTERNATE",
    "XPRIME_PROXY_URL",
    "VIDZEE_PROXY_URL",
    "VIDSRC_PROXY_URL",
    "MOVIESMOD_PROXY_URL",
)

MASKED_VALUE = "***configured***"


def provider_flag_key(name: str) -> str:
    """Document key of a provider enable flag, e.g. 'enableVidzeeProvider'."""
    return f"enable{name.lower().capitalize()}Provider"


def provider_flag_attr(name: str) -> str:
    """Config attribute of a provider enable flag, e.g. 'enable_vidzee_provider'."""
    return f"enable_{name.lower()}_provider"


def provider_env_name(name: str) -> str:
    return f"ENABLE_{name.upper()}_PROVIDER"


def parse_json_maybe(value: Any) -> Any:
    """Parse value as JSON only when it looks like an object or array."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed or trimmed[0] not in "{[":
        return None
    try:
        return json.loads(trimmed)
    except ValueError:
        return None


def _dedupe(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return list(seen)


def _strip_ui_prefix(value: str) -> str:
    value = value.strip()
    if value.startswith("ui="):
        value = value[3:]
    return value.strip()


def parse_cookies(raw: Any) -> list[str]:
    """Parse a credential pool from a JSON array or a delimited string.

    Accepts ',', ';' or newline as separators. Values are trimmed, a leading
    'ui=' marker is stripped, empties are dropped and duplicates removed while
    keeping the first occurrence.
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(c) for c in raw if c is not None]
    else:
        text = str(raw).strip()
        if not text:
            return []
        parsed = parse_json_maybe(text)
        if isinstance(parsed, list):
            items = [str(c) for c in parsed if c is not None]
        else:
            items = re.split(r"[,;\n]+", text)
    return _dedupe(_strip_ui_prefix(c) for c in items)


def _split_keys(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        parsed = parse_json_maybe(raw)
        if isinstance(parsed, list):
            return [str(k) for k in parsed]
        return re.split(r"[\n,;]+", raw)
    if isinstance(raw, (list, tuple)):
        return [str(k) for k in raw if k is not None]
    return []


def _split_providers(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        items = re.split(r"[\s,]+", raw)
    elif isinstance(raw, (list, tuple)):
        items = [str(p) for p in raw if p is not None]
    else:
        return []
    return _dedupe(p.strip().lower() for p in items)


def _coerce_bool(value: Any, default: bool, key: str = "") -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    if text:
        logger.warning("Config %s has unrecognized boolean %r, using %s", key, value, default)
    return default


def _coerce_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_number(value: Any, default: float, cast: type, key: str = "") -> Any:
    if value is None or value == "":
        return cast(default)
    try:
        number = cast(value)
    except (TypeError, ValueError):
        logger.warning("Config %s has invalid value %r, using %s", key, value, default)
        return cast(default)
    return number if number > 0 else cast(default)


class EnvSettings(BaseSettings):
    """Environment layer. Values stay raw here and are normalized with the
    other layers, so an unparseable variable never aborts startup."""

    api_port: Optional[str] = Field(None, validation_alias="API_PORT")
    default_region: Optional[str] = Field(
        None, validation_alias=AliasChoices("DEFAULT_REGION", "FEBBOX_REGION")
    )
    default_providers: Optional[str] = Field(None, validation_alias="DEFAULT_PROVIDERS")
    min_qualities: Optional[str] = Field(None, validation_alias="MIN_QUALITIES")
    exclude_codecs: Optional[str] = Field(None, validation_alias="EXCLUDE_CODECS")
    tmdb_api_key: Optional[str] = Field(None, validation_alias="TMDB_API_KEY")
    tmdb_api_keys: Optional[str] = Field(None, validation_alias="TMDB_API_KEYS")
    febbox_cookies: Optional[str] = Field(None, validation_alias="FEBBOX_COOKIES")

    # Provider enable flags
    enable_showbox_provider: Optional[str] = Field(None, validation_alias="ENABLE_SHOWBOX_PROVIDER")
    enable_xprime_provider: Optional[str] = Field(None, validation_alias="ENABLE_XPRIME_PROVIDER")
    enable_4khdhub_provider: Optional[str] = Field(None, validation_alias="ENABLE_4KHDHUB_PROVIDER")
    enable_moviesmod_provider: Optional[str] = Field(
        None, validation_alias="ENABLE_MOVIESMOD_PROVIDER"
    )
    enable_mp4hydra_provider: Optional[str] = Field(
        None, validation_alias="ENABLE_MP4HYDRA_PROVIDER"
    )
    enable_vidzee_provider: Optional[str] = Field(None, validation_alias="ENABLE_VIDZEE_PROVIDER")
    enable_vixsrc_provider: Optional[str] = Field(None, validation_alias="ENABLE_VIXSRC_PROVIDER")

    # Caching / validation
    disable_cache: Optional[str] = Field(None, validation_alias="DISABLE_CACHE")
    enable_pstream_api: Optional[str] = Field(None, validation_alias="ENABLE_PSTREAM_API")
    showbox_cache_dir: Optional[str] = Field(None, validation_alias="SHOWBOX_CACHE_DIR")
    disable_url_validation: Optional[str] = Field(None, validation_alias="DISABLE_URL_VALIDATION")
    disable_4khdhub_url_validation: Optional[str] = Field(
        None, validation_alias="DISABLE_4KHDHUB_URL_VALIDATION"
    )

    # Logging / runtime
    log_level: Optional[str] = Field(None, validation_alias="LOG_LEVEL")
    log_format: Optional[str] = Field(None, validation_alias="LOG_FORMAT")
    log_file: Optional[str] = Field(None, validation_alias="LOG_FILE")
    provider_timeout: Optional[str] = Field(None, validation_alias="PROVIDER_TIMEOUT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def to_layer(self) -> dict:
        """Express the environment layer with override-document keys."""
        layer = {
            "port": self.api_port,
            "defaultRegion": self.default_region,
            "defaultProviders": _split_providers(self.default_providers),
            "minQualitiesRaw": self.min_qualities,
            "excludeCodecsRaw": self.exclude_codecs,
            "tmdbApiKey": self.tmdb_api_key,
            "tmdbApiKeys": self.tmdb_api_keys,
            "febboxCookies": parse_cookies(self.febbox_cookies),
            "disableCache": self.disable_cache,
            "enablePStreamApi": self.enable_pstream_api,
            "showboxCacheDir": self.showbox_cache_dir,
            "disableUrlValidation": self.disable_url_validation,
            "disable4khdhubUrlValidation": self.disable_4khdhub_url_validation,
            "logLevel": self.log_level,
            "logFormat": self.log_format,
            "logFile": self.log_file,
            "providerTimeout": self.provider_timeout,
        }
        for name in PROVIDER_NAMES:
            layer[provider_flag_key(name)] = getattr(self, provider_flag_attr(name))
        return layer


class Config(BaseModel):
    """Fully resolved configuration snapshot.

    Attributes are snake_case; aliases are the keys used by the override
    document (tmdb_api_keys <-> tmdbApiKeys).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    config_version: int = Field(CONFIG_SCHEMA_VERSION, alias="configVersion")
    port: int = Field(DEFAULT_PORT, alias="port")
    default_region: Optional[str] = Field(None, alias="defaultRegion")
    default_providers: tuple[str, ...] = Field((), alias="defaultProviders")

    min_qualities_raw: Optional[str] = Field(None, alias="minQualitiesRaw")
    min_qualities: Optional[Any] = Field(None, alias="minQualities")
    exclude_codecs_raw: Optional[str] = Field(None, alias="excludeCodecsRaw")
    exclude_codecs: Optional[Any] = Field(None, alias="excludeCodecs")

    tmdb_api_keys: tuple[str, ...] = Field((), alias="tmdbApiKeys")
    febbox_cookies: tuple[str, ...] = Field((), alias="febboxCookies")

    enable_showbox_provider: bool = Field(True, alias="enableShowboxProvider")
    enable_xprime_provider: bool = Field(True, alias="enableXprimeProvider")
    enable_4khdhub_provider: bool = Field(True, alias="enable4khdhubProvider")
    enable_moviesmod_provider: bool = Field(True, alias="enableMoviesmodProvider")
    enable_mp4hydra_provider: bool = Field(True, alias="enableMp4hydraProvider")
    enable_vidzee_provider: bool = Field(True, alias="enableVidzeeProvider")
    enable_vixsrc_provider: bool = Field(True, alias="enableVixsrcProvider")

    disable_cache: bool = Field(False, alias="disableCache")
    enable_pstream_api: bool = Field(True, alias="enablePStreamApi")
    showbox_cache_dir: Optional[str] = Field(None, alias="showboxCacheDir")
    disable_url_validation: bool = Field(False, alias="disableUrlValidation")
    disable_4khdhub_url_validation: bool = Field(False, alias="disable4khdhubUrlValidation")

    log_level: str = Field("INFO", alias="logLevel")
    log_format: str = Field("text", alias="logFormat")
    log_file: Optional[str] = Field(None, alias="logFile")
    provider_timeout: float = Field(DEFAULT_PROVIDER_TIMEOUT, alias="providerTimeout")

    def is_provider_enabled(self, name: str) -> bool:
        return bool(getattr(self, provider_flag_attr(name), False))

    def to_document(self) -> dict:
        """Merged config as a JSON-serialisable dict with document keys."""
        return self.model_dump(mode="json", by_alias=True)

    def get_safe_config(self) -> dict:
        """Get config dict without sensitive values (API keys, cookies)."""
        data = self.to_document()
        for key in ("tmdbApiKeys", "febboxCookies"):
            data[key] = [MASKED_VALUE for _ in data[key]]
        return data


def normalize_config(base: dict) -> Config:
    """Resolve a merged layer mapping into a Config snapshot.

    Derives structured views, splits key/cookie lists, coerces booleans and
    fills defaults. Keys whose value is None count as unset.
    """
    cfg = dict(base)

    raw_keys = cfg.get("tmdbApiKeys")
    # An explicit empty list (from the override document) must not resurrect the legacy key
    explicit_empty_keys = isinstance(raw_keys, (list, tuple)) and len(raw_keys) == 0
    keys = _dedupe(k.strip() for k in _split_keys(raw_keys))
    if not keys and not explicit_empty_keys:
        legacy = _coerce_str(cfg.get("tmdbApiKey"))
        keys = [legacy] if legacy else []

    min_qualities_raw = _coerce_str(cfg.get("minQualitiesRaw"))
    min_qualities = parse_json_maybe(min_qualities_raw)
    if min_qualities is None and min_qualities_raw:
        min_qualities = {"default": min_qualities_raw}
    exclude_codecs_raw = _coerce_str(cfg.get("excludeCodecsRaw"))

    version = cfg.get("configVersion")
    resolved = {
        "configVersion": _coerce_number(version, CONFIG_SCHEMA_VERSION, int, "configVersion"),
        "port": _coerce_number(cfg.get("port"), DEFAULT_PORT, int, "port"),
        "defaultRegion": _coerce_str(cfg.get("defaultRegion")),
        "defaultProviders": _split_providers(cfg.get("defaultProviders")),
        "minQualitiesRaw": min_qualities_raw,
        "minQualities": min_qualities,
        "excludeCodecsRaw": exclude_codecs_raw,
        "excludeCodecs": parse_json_maybe(exclude_codecs_raw),
        "tmdbApiKeys": keys,
        "febboxCookies": parse_cookies(cfg.get("febboxCookies")),
        "disableCache": _coerce_bool(cfg.get("disableCache"), False, "disableCache"),
        "enablePStreamApi": _coerce_bool(cfg.get("enablePStreamApi"), True, "enablePStreamApi"),
        "showboxCacheDir": _coerce_str(cfg.get("showboxCacheDir")),
        "disableUrlValidation": _coerce_bool(
            cfg.get("disableUrlValidation"), False, "disableUrlValidation"
        ),
        "disable4khdhubUrlValidation": _coerce_bool(
            cfg.get("disable4khdhubUrlValidation"), False, "disable4khdhubUrlValidation"
        ),
        "logLevel": (_coerce_str(cfg.get("logLevel")) or "INFO").upper(),
        "logFormat": (_coerce_str(cfg.get("logFormat")) or "text").lower(),
        "logFile": _coerce_str(cfg.get("logFile")),
        "providerTimeout": _coerce_number(
            cfg.get("providerTimeout"), DEFAULT_PROVIDER_TIMEOUT, float, "providerTimeout"
        ),
    }
    for name in PROVIDER_NAMES:
        key = provider_flag_key(name)
        resolved[key] = _coerce_bool(cfg.get(key), True, key)

    return Config.model_validate(resolved)


def _set_env(environ: MutableMapping[str, str], name: str, value: Optional[str]) -> None:
    if value:
        environ[name] = value
    else:
        environ.pop(name, None)


def _flag(value: bool) -> str:
    return "true" if value else "false"


def apply_config_to_env(cfg: Config, environ: Optional[MutableMapping[str, str]] = None) -> None:
    """Mirror resolved values into the environment so adapters that read
    environment variables directly observe the same configuration."""
    env = os.environ if environ is None else environ

    env["API_PORT"] = str(cfg.port)
    _set_env(env, "TMDB_API_KEY", cfg.tmdb_api_keys[0] if cfg.tmdb_api_keys else None)
    _set_env(env, "DEFAULT_PROVIDERS", ",".join(cfg.default_providers))
    _set_env(env, "MIN_QUALITIES", cfg.min_qualities_raw)
    _set_env(env, "EXCLUDE_CODECS", cfg.exclude_codecs_raw)
    _set_env(env, "FEBBOX_COOKIES", ",".join(cfg.febbox_cookies))
    _set_env(env, "DEFAULT_REGION", cfg.default_region)
    _set_env(env, "FEBBOX_REGION", cfg.default_region)

    for name in PROVIDER_NAMES:
        env[provider_env_name(name)] = _flag(cfg.is_provider_enabled(name))

    env["DISABLE_CACHE"] = _flag(cfg.disable_cache)
    env["ENABLE_PSTREAM_API"] = _flag(cfg.enable_pstream_api)
    env["DISABLE_URL_VALIDATION"] = _flag(cfg.disable_url_validation)
    env["DISABLE_4KHDHUB_URL_VALIDATION"] = _flag(cfg.disable_4khdhub_url_validation)
    _set_env(env, "SHOWBOX_CACHE_DIR", cfg.showbox_cache_dir)

    for name in _LEGACY_PROXY_ENV:
        env.pop(name, None)


def resolve_override_path(base_dir: Optional[str] = None) -> str:
    """Location of the override document.

    STREAMSCOUT_OVERRIDE_PATH wins. Otherwise utils/user-config.json under the
    working directory, falling back to a legacy user-config.json at the root
    only when it exists and the new file does not.
    """
    explicit = os.environ.get("STREAMSCOUT_OVERRIDE_PATH")
    if explicit:
        return explicit
    base = base_dir or os.getcwd()
    new_path = os.path.join(base, "utils", "user-config.json")
    legacy_path = os.path.join(base, "user-config.json")
    if os.path.exists(new_path) or not os.path.exists(legacy_path):
        return new_path
    return legacy_path


class ConfigStore:
    """Owns the live Config snapshot and the persisted override document.

    The environment layer is read once at construction: after the first load
    os.environ also carries mirrored values, which must not be mistaken for
    the real environment when an override is later removed.

    Args:
        override_path: Path of the override document (default: resolve_override_path()).
        env_settings: Pre-built environment layer (default: read from os.environ / .env).
        environ: Mapping that receives mirrored values (default: os.environ).
    """

    def __init__(
        self,
        override_path: Optional[str] = None,
        env_settings: Optional[EnvSettings] = None,
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> None:
        self.override_path = override_path or resolve_override_path()
        self._env_layer = (env_settings or EnvSettings()).to_layer()
        self._environ = environ
        self._write_lock = threading.Lock()
        self._notify_lock = threading.RLock()
        self._listeners: list[Callable[[Config], None]] = []
        self._snapshot = self.load()

    @property
    def snapshot(self) -> Config:
        """Current immutable snapshot. Capture it once per operation."""
        return self._snapshot

    def add_listener(self, callback: Callable[[Config], None]) -> None:
        """Register a callable invoked with each new snapshot after a swap."""
        self._listeners.append(callback)

    def read_override(self) -> dict:
        """Read the override document. Malformed content is logged and ignored."""
        path = self.override_path
        if not os.path.exists(path):
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Failed to read override file %s: %s", path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "Override file %s is not a mapping (%s), ignoring", path, type(data).__name__
            )
            return {}
        return data

    def _write_override(self, data: dict) -> bool:
        path = self.override_path
        try:
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".user-config-", suffix=".json", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write override file %s: %s", path, e)
            return False
        return True

    def load(self) -> Config:
        """Merge defaults, environment and override document into a new snapshot.

        Does not replace the live snapshot; see reload().
        """
        merged = {**self._env_layer, **self.read_override()}
        cfg = normalize_config(merged)
        apply_config_to_env(cfg, self._environ)
        return cfg

    def _notify(self) -> None:
        # Serialized; listeners always receive the live snapshot
        with self._notify_lock:
            cfg = self._snapshot
            for callback in list(self._listeners):
                try:
                    callback(cfg)
                except Exception as e:
                    logger.warning("Config reload listener %r failed: %s", callback, e)

    def reload(self) -> Config:
        """Recompute the snapshot from all layers and swap it in."""
        with self._write_lock:
            cfg = self.load()
            self._snapshot = cfg
        self._notify()
        return cfg

    def patch(self, partial: dict) -> bool:
        """Merge partial into the override document, persist it and reload.

        Keys set to None are removed from the document, so the setting falls
        back to the environment/default layer.

        Returns:
            True on success, False if the document could not be written (the
            live snapshot is left unchanged in that case).
        """
        with self._write_lock:
            updated = {**self.read_override(), **partial}
            if not updated.get("configVersion"):
                updated["configVersion"] = CONFIG_SCHEMA_VERSION
            updated = {k: v for k, v in updated.items() if v is not None}
            if not self._write_override(updated):
                return False
            self._snapshot = self.load()
        logger.info("Config patched: %s", sorted(partial.keys()))
        self._notify()
        return True


def get_tmdb_api_key(cfg: Optional[Config] = None) -> Optional[str]:
    """Pick one of the configured TMDB keys at random, or None."""
    cfg = cfg or get_config()
    if not cfg.tmdb_api_keys:
        return None
    return random.choice(cfg.tmdb_api_keys)


# Singleton store instance
_store: Optional[ConfigStore] = None
_store_lock = threading.Lock()


def get_config_store() -> ConfigStore:
    """Get or create the singleton ConfigStore (thread-safe)."""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = ConfigStore()
    return _store


def get_config() -> Config:
    """Current configuration snapshot."""
    return get_config_store().snapshot


def reset_config_store(store: Optional[ConfigStore] = None) -> None:
    """Replace (or drop) the singleton store. Used by tests and restarts."""
    global _store
    with _store_lock:
        _store = store
