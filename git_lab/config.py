"""Layered configuration resolution.

Each key is resolved independently by asking an ordered list of providers and
taking the first value found:

    command-line flag > environment variable > local git config
        > global git config > built-in default

Precedence only applies to absence. A value that is present but malformed is an
error, it never falls through to a lower-precedence source.
"""

from __future__ import annotations

import logging
import math
import urllib.parse
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from git_lab.errors import InvalidConfigValue, MissingCredentials, UnknownConfigKey
from git_lab.models import (
    DEFAULT_ANCESTOR_MAX_DEPTH,
    DEFAULT_CACHE_MAX_AGE_HOURS,
    LOGGER_NAME,
    ConfigSource,
    EffectiveConfig,
    OutputFormat,
    Scope,
    env_var_name,
)
from git_lab.store import KeyValueStore

logger = logging.getLogger(LOGGER_NAME)

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


# ---------------------------------------------------------------------------
# Value parsers
# ---------------------------------------------------------------------------


def parse_host(raw: Any) -> str:
    value = str(raw).strip()
    if not value:
        raise ValueError("host is empty")
    if "://" not in value:
        value = f"https://{value}"
    parsed = urllib.parse.urlparse(value)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"unsupported URL scheme '{parsed.scheme}' (expected http or https)")
    if not parsed.hostname:
        raise ValueError(f"'{raw}' is not a valid URL")
    try:
        parsed.port
    except ValueError as e:
        raise ValueError(f"'{raw}' has an invalid port") from e
    return value.rstrip("/")


def parse_token(raw: Any) -> str:
    value = str(raw).strip()
    if not value:
        raise ValueError("token is empty")
    return value


def parse_positive_int(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError(f"'{raw}' is not a positive integer")
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ValueError(f"'{raw}' is not a positive integer") from None
    if value <= 0:
        raise ValueError(f"'{raw}' is not a positive integer")
    return value


def parse_hours(raw: Any) -> float:
    try:
        value = float(str(raw).strip())
    except ValueError:
        raise ValueError(f"'{raw}' is not a number of hours") from None
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"'{raw}' must be a finite number greater than zero")
    try:
        timedelta(hours=value)
    except OverflowError:
        raise ValueError(f"'{raw}' hours is out of range") from None
    return value


def parse_format(raw: Any) -> OutputFormat:
    if isinstance(raw, OutputFormat):
        return raw
    value = str(raw).strip().lower()
    try:
        return OutputFormat(value)
    except ValueError:
        choices = ", ".join(f.value for f in OutputFormat)
        raise ValueError(f"'{raw}' is not one of: {choices}") from None


def parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"'{raw}' is not a boolean (use true or false)")


@dataclass(frozen=True)
class KeySpec:
    name: str
    parse: Callable[[Any], Any]
    field: str
    default: Any = None
    required: bool = False
    secret: bool = False


KEYS: dict[str, KeySpec] = {
    spec.name: spec
    for spec in (
        KeySpec("host", parse_host, "host", required=True),
        KeySpec("token", parse_token, "token", required=True, secret=True),
        KeySpec("projectid", parse_positive_int, "project_id"),
        KeySpec("format", parse_format, "output_format", default=OutputFormat.TEXT),
        KeySpec("tls.verify", parse_bool, "tls_verify", default=True),
        KeySpec("cache.maxage", parse_hours, "cache_max_age_hours", default=DEFAULT_CACHE_MAX_AGE_HOURS),
        KeySpec("ancestors.maxdepth", parse_positive_int, "ancestor_max_depth", default=DEFAULT_ANCESTOR_MAX_DEPTH),
    )
}

REQUIRED_KEYS = [name for name, spec in KEYS.items() if spec.required]


def key_spec(key: str) -> KeySpec:
    try:
        return KEYS[key]
    except KeyError:
        raise UnknownConfigKey(key) from None


def format_value(value: Any) -> str:
    """Render a parsed value the way it is written to git config."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, OutputFormat):
        return value.value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class FlagProvider:
    source = ConfigSource.FLAG

    def __init__(self, flags: Mapping[str, Any]):
        self.flags = flags

    def lookup(self, key: str) -> Any:
        return self.flags.get(key)


class EnvironmentProvider:
    source = ConfigSource.ENVIRONMENT

    def __init__(self, environment: Mapping[str, str]):
        self.environment = environment

    def lookup(self, key: str) -> str | None:
        # An exported but empty variable counts as unset
        return self.environment.get(env_var_name(key)) or None


class StoreProvider:
    def __init__(self, store: KeyValueStore):
        self.store = store
        self.source = ConfigSource.LOCAL if store.scope == Scope.LOCAL else ConfigSource.GLOBAL

    def lookup(self, key: str) -> str | None:
        return self.store.get(key)


class DefaultsProvider:
    source = ConfigSource.DEFAULT

    def lookup(self, key: str) -> Any:
        return KEYS[key].default


def build_providers(
    flags: Mapping[str, Any],
    environment: Mapping[str, str],
    local_store: KeyValueStore,
    global_store: KeyValueStore,
) -> list:
    return [
        FlagProvider(flags),
        EnvironmentProvider(environment),
        StoreProvider(local_store),
        StoreProvider(global_store),
        DefaultsProvider(),
    ]


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_key(key: str, providers: list) -> tuple[Any, ConfigSource] | None:
    """Return (value, source) from the first provider that has ``key``, or None when all lack it."""
    spec = KEYS[key]
    for provider in providers:
        raw = provider.lookup(key)
        if raw is None:
            continue
        try:
            value = spec.parse(raw)
        except ValueError as e:
            raise InvalidConfigValue(key, provider.source, str(e)) from e
        logger.debug(f"config {key}: from {provider.source.value}")
        return value, provider.source
    return None


def resolve_values(providers: list) -> tuple[dict[str, Any], dict[str, ConfigSource]]:
    """Fold the providers per key. Absent keys are left out of both dicts."""
    values: dict[str, Any] = {}
    sources: dict[str, ConfigSource] = {}
    for key in KEYS:
        found = resolve_key(key, providers)
        if found is not None:
            values[key], sources[key] = found
    return values, sources


def resolve_output_format(providers: list) -> OutputFormat:
    """The output format on its own. A malformed value falls back to text so errors can still be shown."""
    try:
        found = resolve_key("format", providers)
    except InvalidConfigValue:
        return OutputFormat.TEXT
    return found[0] if found is not None else OutputFormat.TEXT


def resolve(
    flags: Mapping[str, Any],
    environment: Mapping[str, str],
    local_store: KeyValueStore,
    global_store: KeyValueStore,
) -> EffectiveConfig:
    """Merge every configuration source into one EffectiveConfig.

    Raises MissingCredentials when host or token is absent everywhere and
    InvalidConfigValue when a present value does not parse.
    """
    providers = build_providers(flags, environment, local_store, global_store)
    values, sources = resolve_values(providers)

    missing = [key for key in REQUIRED_KEYS if key not in values]
    if missing:
        raise MissingCredentials(missing, [p.source for p in providers])

    kwargs = {KEYS[key].field: value for key, value in values.items()}
    return EffectiveConfig(sources=sources, **kwargs)


def persist(
    key: str,
    value: Any,
    scope: Scope,
    *,
    local_store: KeyValueStore | None = None,
    global_store: KeyValueStore | None = None,
) -> str:
    """Validate ``value`` and write it to exactly the store for ``scope``.

    Returns the string that was written.
    """
    spec = key_spec(key)
    store = local_store if scope == Scope.LOCAL else global_store
    if store is None:
        raise ValueError(f"No {scope.value} store supplied")
    source = ConfigSource.LOCAL if scope == Scope.LOCAL else ConfigSource.GLOBAL
    try:
        parsed = spec.parse(value)
    except ValueError as e:
        raise InvalidConfigValue(key, source, str(e)) from e
    text = format_value(parsed)
    store.set(key, text)
    if spec.secret:
        logger.info(f"Saved {key} to {scope.value} config")
    else:
        logger.info(f"Saved {key}={text} to {scope.value} config")
    return text


def unset(key: str, store: KeyValueStore) -> bool:
    key_spec(key)
    return store.unset(key)


def mask(key: str, value: Any) -> str:
    text = format_value(value)
    if not KEYS[key].secret:
        return text
    if len(text) <= 8:
        return "*" * 8
    return f"{text[:4]}{'*' * (len(text) - 4)}"
