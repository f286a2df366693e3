"""Configuration loading for sakai-status.

Settings come from an optional YAML file, then ``SAKAI_STATUS_<FIELD>``
environment variables, which win over the file.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import structlog
import yaml

from sakai_status.caches import EvictionPolicy, PersistenceStrategy
from sakai_status.errors import ConfigError

logger = structlog.get_logger(__name__)

ENV_PREFIX = "SAKAI_STATUS_"

_CACHE_KEYS = {"name", "max_entries", "eviction_policy", "ttl", "tti", "eternal", "persistence_strategy"}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(slots=True)
class StatusConfig:
    """Runtime settings of the status server."""

    host: str = "127.0.0.1"
    port: int = 8080
    context_path: str = ""  # prefix stripped from request paths, e.g. '/status'
    worker_threads: int = 8
    report_timeout: float | None = None  # seconds, None waits indefinitely
    log_level: str = "INFO"
    json_logs: bool = False
    caches: list[dict[str, Any]] = field(default_factory=list)

    def validate(self) -> None:
        if not 0 < self.port < 65536:
            raise ConfigError(f"port out of range: {self.port}")
        if self.worker_threads < 1:
            raise ConfigError(f"worker_threads must be at least 1: {self.worker_threads}")
        if self.report_timeout is not None and self.report_timeout <= 0:
            raise ConfigError(f"report_timeout must be positive: {self.report_timeout}")
        if self.context_path and (
            not self.context_path.startswith("/") or self.context_path.endswith("/")
        ):
            raise ConfigError(f"context_path must start and not end with '/': {self.context_path!r}")
        names = set()
        for cache in self.caches:
            if not isinstance(cache, dict) or "name" not in cache:
                raise ConfigError(f"cache definition needs a name: {cache!r}")
            unknown = set(cache) - _CACHE_KEYS
            if unknown:
                raise ConfigError(f"unknown cache settings for {cache['name']!r}: {sorted(unknown)}")
            _validate_cache(cache)
            if cache["name"] in names:
                raise ConfigError(f"cache {cache['name']!r} defined twice")
            names.add(cache["name"])


def _validate_cache(cache: dict[str, Any]) -> None:
    name = cache["name"]
    if not isinstance(name, str) or not name:
        raise ConfigError(f"cache name must be a non-empty string: {name!r}")
    for key in ("max_entries", "ttl", "tti"):
        value = cache.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(f"{key} of cache {name!r} must be a non-negative integer: {value!r}")
    if not isinstance(cache.get("eternal", False), bool):
        raise ConfigError(f"eternal of cache {name!r} must be true or false: {cache['eternal']!r}")
    for key, kind in (("eviction_policy", EvictionPolicy), ("persistence_strategy", PersistenceStrategy)):
        if key not in cache:
            continue
        value = cache[key]
        try:
            kind(str(value).upper())
        except ValueError:
            choices = ", ".join(member.value for member in kind)
            raise ConfigError(f"{key} of cache {name!r} must be one of {choices}: {value!r}") from None


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert a raw (possibly string) setting to the type of its default."""
    try:
        if name == "report_timeout":
            return None if value in (None, "", "none") else float(value)
        if isinstance(default, bool):
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            raise ValueError(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, list):
            if not isinstance(value, list):
                raise ValueError(value)
            return value
        return str(value)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid value for {name}: {value!r}") from None


def load_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> StatusConfig:
    """
    Build the configuration.

    Args:
        path: YAML file to read; skipped when None.
        environ: Environment to read overrides from; defaults to os.environ.

    Raises:
        ConfigError: The file is missing or holds an invalid value.
    """
    environ = os.environ if environ is None else environ
    raw: dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"configuration file not found: {config_path}")
        with open(config_path) as f:
            try:
                loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"cannot parse {config_path}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"{config_path} must hold a mapping")
        raw.update(loaded or {})
        logger.info("config_file_loaded", path=str(config_path))

    known = {f.name for f in fields(StatusConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"unknown settings: {sorted(unknown)}")

    for name in known - {"caches"}:
        env_value = environ.get(ENV_PREFIX + name.upper())
        if env_value is not None:
            raw[name] = env_value

    defaults = StatusConfig()
    values = {name: _coerce(name, value, getattr(defaults, name)) for name, value in raw.items()}
    config = StatusConfig(**values)
    config.validate()
    return config
