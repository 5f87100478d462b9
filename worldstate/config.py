"""
Configuration loading.

Settings come from a YAML file (default: config/settings.yaml) with
${ENV_VAR} expansion, then a handful of environment overrides
(REDIS_HOST, REDIS_PORT, REDIS_DB, REDIS_PASSWORD, LOG_LEVEL).

A missing file is not an error: the built-in defaults are used.
"""

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from dotenv import load_dotenv

logger = structlog.get_logger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


@dataclass
class RedisSettings:
    """Durable store connection."""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    socket_timeout: float = 2.0
    key_prefix: str = "ws"


@dataclass
class CacheSettings:
    """Cache Coordinator tuning."""
    operation_timeout: float = 2.0


@dataclass
class WorldSettings:
    tick_interval_seconds: float = 30.0
    snapshot_ttl_seconds: int = 300


@dataclass
class EconomySettings:
    tick_interval_seconds: float = 300.0
    snapshot_ttl_seconds: int = 3600
    # Overrides for PricingParameters fields
    pricing: dict = field(default_factory=dict)


@dataclass
class BroadcastSettings:
    queue_size: int = 1000


@dataclass
class Settings:
    """Top-level service settings."""
    environment: str = "development"
    log_level: str = "INFO"
    json_logs: bool = False
    redis: RedisSettings = field(default_factory=RedisSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    world: WorldSettings = field(default_factory=WorldSettings)
    economy: EconomySettings = field(default_factory=EconomySettings)
    broadcast: BroadcastSettings = field(default_factory=BroadcastSettings)


def expand_env_vars(value: Any) -> Any:
    """
    Expand ${VAR} and ${VAR:-default} references in strings, recursively
    through dicts and lists. An unset ${VAR} without a default is left as-is.
    """
    if isinstance(value, str) and "${" in value:
        def replace_env(match):
            name, default = match.group(1), match.group(2)
            current = os.environ.get(name)
            if current:
                return current
            if default is not None:
                return default
            return match.group(0) if current is None else current
        return _ENV_PATTERN.sub(replace_env, value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


def _build_section(cls, raw: Optional[dict]):
    """Build a settings dataclass from a raw dict, ignoring unknown keys."""
    raw = raw or {}
    known = {f.name: f for f in fields(cls)}
    kwargs = {}

    for key, value in raw.items():
        if key not in known:
            logger.warning("unknown_config_key", section=cls.__name__, key=key)
            continue
        default = getattr(cls(), key)
        if isinstance(default, bool):
            value = str(value).lower() in ("1", "true", "yes") if isinstance(value, str) else bool(value)
        elif isinstance(default, int) and value is not None:
            value = int(value)
        elif isinstance(default, float) and value is not None:
            value = float(value)
        kwargs[key] = value

    return cls(**kwargs)


def _apply_env_overrides(settings: Settings) -> None:
    """Environment variables win over the YAML file."""
    env = os.environ

    if env.get("REDIS_HOST"):
        settings.redis.host = env["REDIS_HOST"]
    if env.get("REDIS_PORT"):
        settings.redis.port = int(env["REDIS_PORT"])
    if env.get("REDIS_DB"):
        settings.redis.db = int(env["REDIS_DB"])
    if env.get("REDIS_PASSWORD"):
        settings.redis.password = env["REDIS_PASSWORD"]
    if env.get("LOG_LEVEL"):
        settings.log_level = env["LOG_LEVEL"]


def settings_from_dict(raw: dict) -> Settings:
    """Build Settings from an already-parsed config mapping."""
    raw = expand_env_vars(raw or {})

    return Settings(
        environment=raw.get("environment", "development"),
        log_level=raw.get("log_level", "INFO"),
        json_logs=bool(raw.get("json_logs", False)),
        redis=_build_section(RedisSettings, raw.get("redis")),
        cache=_build_section(CacheSettings, raw.get("cache")),
        world=_build_section(WorldSettings, raw.get("world")),
        economy=_build_section(EconomySettings, raw.get("economy")),
        broadcast=_build_section(BroadcastSettings, raw.get("broadcast")),
    )


def load_settings(path: str = "config/settings.yaml", use_env: bool = True) -> Settings:
    """
    Load settings from YAML.

    Args:
        path: Path to the YAML settings file
        use_env: Load .env and apply environment overrides

    Returns:
        Settings (defaults if the file does not exist)
    """
    if use_env:
        load_dotenv()

    config_path = Path(path)

    if not config_path.exists():
        logger.warning("config_not_found_using_defaults", path=path)
        settings = Settings()
    else:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        settings = settings_from_dict(raw)
        logger.info("config_loaded", path=path)

    if use_env:
        _apply_env_overrides(settings)

    return settings
