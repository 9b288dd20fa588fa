"""
Central configuration loader for the FlowForge cache service.

Reads ``config/config.yaml`` and ``.env``, merges environment-variable
overrides (``FLOWFORGE_`` prefix), and exposes a typed :class:`Settings`
singleton via :func:`get_settings`.
"""

import logging
import os
import threading
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from flowforge.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve project root (directory containing ``config/``)
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent          # flowforge/
_PROJECT_ROOT = _THIS_DIR.parent                     # repo root


def _project_path(*parts: str) -> Path:
    """Build an absolute path relative to the project root."""
    return _PROJECT_ROOT.joinpath(*parts)


# ---------------------------------------------------------------------------
# Nested settings dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ApiSettings:
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    version: str = "1.0.0"


@dataclass
class CacheSettings:
    backend: str = "memory"
    default_ttl_seconds: int = 3600
    sweep_interval_seconds: int = 300
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "flowforge:cache"
    native_ttl_grace_seconds: int = 3600
    strict: bool = False


@dataclass
class AuthSettings:
    cron_secret: str = ""


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: str = "json"


@dataclass
class Settings:
    """Top-level settings container."""
    api: ApiSettings = field(default_factory=ApiSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def _load_yaml(path: Path) -> Dict[str, Any]:
    """Read and parse a YAML file.  Returns ``{}`` if the file is missing."""
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


def _apply_dict(target: object, data: Dict[str, Any]) -> None:
    """Apply *data* values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if not hasattr(target, key):
            logger.debug("Ignoring unknown config key: %s", key)
            continue
        setattr(target, key, value)


# ---------------------------------------------------------------------------
# Env-var overrides  (FLOWFORGE_SECTION_KEY  e.g. FLOWFORGE_CACHE_BACKEND)
# ---------------------------------------------------------------------------

_SECTIONS = [f.name for f in fields(Settings)]

_TYPE_MAP = {
    int: int,
    float: float,
    bool: lambda v: v.lower() in ("1", "true", "yes"),
    str: str,
}


def _apply_env_overrides(settings: Settings) -> None:
    """Override flat scalar fields via ``FLOWFORGE_<SECTION>_<KEY>`` env vars.

    ``CRON_SECRET`` and ``REDIS_URL`` are also honoured, since that is how
    the deployment platform provides them.
    """
    cron_secret = os.environ.get("CRON_SECRET")
    if cron_secret:
        settings.auth.cron_secret = cron_secret
    redis_url = os.environ.get("REDIS_URL")
    if redis_url:
        settings.cache.redis_url = redis_url

    for section_name in _SECTIONS:
        section = getattr(settings, section_name, None)
        if section is None:
            continue
        prefix = f"FLOWFORGE_{section_name.upper()}_"
        for key in list(vars(section)):
            env_key = prefix + key.upper()
            env_val = os.environ.get(env_key)
            if env_val is None:
                continue
            current = getattr(section, key)
            if isinstance(current, list):
                setattr(section, key, [v.strip() for v in env_val.split(",") if v.strip()])
                continue
            cast = _TYPE_MAP.get(type(current), str)
            try:
                setattr(section, key, cast(env_val))
                logger.debug("Env override applied: %s", env_key)
            except (ValueError, TypeError):
                logger.warning("Invalid env override %s=%s", env_key, env_val)


_BACKENDS = ("memory", "redis")
_LOG_FORMATS = ("json", "console")


def _validate(settings: Settings) -> None:
    """Reject values the cache service cannot run with.

    Raises:
        ConfigurationError: Naming the first offending setting.
    """
    cache = settings.cache
    if cache.backend.lower() not in _BACKENDS:
        raise ConfigurationError(
            f"cache.backend must be one of {_BACKENDS}, got {cache.backend!r}"
        )
    if cache.default_ttl_seconds <= 0:
        raise ConfigurationError("cache.default_ttl_seconds must be positive")
    if cache.sweep_interval_seconds < 0:
        raise ConfigurationError("cache.sweep_interval_seconds must not be negative")
    if cache.native_ttl_grace_seconds < 0:
        raise ConfigurationError("cache.native_ttl_grace_seconds must not be negative")
    if settings.logging.format.lower() not in _LOG_FORMATS:
        raise ConfigurationError(
            f"logging.format must be one of {_LOG_FORMATS}, got {settings.logging.format!r}"
        )


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Optional[Settings] = None
_lock = threading.Lock()


def get_settings(
    *,
    yaml_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
    _force_reload: bool = False,
) -> Settings:
    """Return the application-wide :class:`Settings` singleton.

    On first call (or when ``_force_reload=True``) the function:

    1. Calls ``load_dotenv()`` to populate env vars from ``.env``.
    2. Reads ``config/config.yaml``.
    3. Applies ``FLOWFORGE_*`` environment-variable overrides.
    4. Validates the merged values.

    Args:
        yaml_path: Override the YAML config file path (testing).
        env_path: Override the ``.env`` file path (testing).
        _force_reload: Re-read everything even if already loaded.

    Returns:
        The global ``Settings`` instance.

    Raises:
        ConfigurationError: If a merged value is unusable.
    """
    global _settings

    if _settings is not None and not _force_reload:
        return _settings

    with _lock:
        # Double-check after acquiring lock
        if _settings is not None and not _force_reload:
            return _settings

        dotenv_path = env_path or _project_path(".env")
        load_dotenv(dotenv_path, override=False)

        config_path = yaml_path or _project_path("config", "config.yaml")
        raw = _load_yaml(config_path)

        settings = Settings()
        for section_name in _SECTIONS:
            section_data = raw.get(section_name)
            if isinstance(section_data, dict):
                _apply_dict(getattr(settings, section_name), section_data)

        _apply_env_overrides(settings)
        _validate(settings)

        _settings = settings
        logger.info("Settings loaded from %s", config_path)
        return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for testing)."""
    global _settings
    with _lock:
        _settings = None
