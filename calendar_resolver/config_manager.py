"""Configuration management for calendar_resolver."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from datetime import tzinfo
from pathlib import Path
from typing import Any, Optional

from .datetime_utils import get_timezone

logger = logging.getLogger(__name__)

ENV_PREFIX = "CALENDAR_RESOLVER_"

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off")


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
        - Handles KEY=VALUE format with optional whitespace
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return {}

    for raw_line in content.splitlines():
        line = raw_line.strip()

        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")

        if key:
            result[key] = val

    return result


def _parse_bool(name: str, raw: str) -> Optional[bool]:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    logger.warning("Invalid %s=%r; ignoring", name, raw)
    return None


def _parse_positive_int(name: str, raw: str) -> Optional[int]:
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; ignoring", name, raw)
        return None
    if value < 1:
        logger.warning("Invalid %s=%r (must be positive); ignoring", name, raw)
        return None
    return value


@dataclass(frozen=True)
class EngineSettings:
    """Settings for one resolution engine."""

    timezone: Optional[str] = None
    max_occurrences_per_rule: int = 1000
    enable_rrule_expansion: bool = True
    parser_concurrency: int = 4
    log_level: Optional[str] = None
    debug: bool = False

    def local_tzinfo(self) -> tzinfo:
        """Resolve the configured timezone name (system local zone if unset).

        Raises:
            ConfigurationError: If the timezone name is unknown
        """
        return get_timezone(self.timezone)

    def with_overrides(self, **overrides: Any) -> EngineSettings:
        """Copy with the given non-None fields replaced."""
        return replace(self, **{key: val for key, val in overrides.items() if val is not None})

    @classmethod
    def coerce(cls, config: Any) -> EngineSettings:
        """Build settings from None, an EngineSettings, a dict or any attribute-bearing object."""
        if config is None:
            return cls()
        if isinstance(config, cls):
            return config
        defaults = cls()
        return cls(
            **{
                name: get_config_value(config, name, getattr(defaults, name))
                for name in cls.__dataclass_fields__
            }
        )


class ConfigManager:
    """Manages engine configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        parsed = parse_env_file(self.env_file_path)

        set_keys = []
        for key, val in parsed.items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_settings_from_env(self) -> EngineSettings:
        """Build EngineSettings from CALENDAR_RESOLVER_* environment variables.

        Recognizes:
        - CALENDAR_RESOLVER_TIMEZONE -> 'timezone'
        - CALENDAR_RESOLVER_MAX_OCCURRENCES_PER_RULE -> 'max_occurrences_per_rule' (int)
        - CALENDAR_RESOLVER_ENABLE_RRULE_EXPANSION -> 'enable_rrule_expansion' (bool)
        - CALENDAR_RESOLVER_PARSER_CONCURRENCY -> 'parser_concurrency' (int)
        - CALENDAR_RESOLVER_LOG_LEVEL -> 'log_level'
        - CALENDAR_RESOLVER_DEBUG -> 'debug' (bool)

        Invalid values are logged and the default is kept.
        """
        cfg: dict[str, Any] = {}

        timezone_name = os.environ.get(f"{ENV_PREFIX}TIMEZONE")
        if timezone_name:
            cfg["timezone"] = timezone_name.strip()

        for key in ("max_occurrences_per_rule", "parser_concurrency"):
            env_name = f"{ENV_PREFIX}{key.upper()}"
            raw = os.environ.get(env_name)
            if raw:
                value = _parse_positive_int(env_name, raw)
                if value is not None:
                    cfg[key] = value

        for key in ("enable_rrule_expansion", "debug"):
            env_name = f"{ENV_PREFIX}{key.upper()}"
            raw = os.environ.get(env_name)
            if raw:
                flag = _parse_bool(env_name, raw)
                if flag is not None:
                    cfg[key] = flag

        log_level = os.environ.get(f"{ENV_PREFIX}LOG_LEVEL")
        if log_level:
            cfg["log_level"] = log_level.strip().upper()

        return EngineSettings(**cfg)

    def load_settings(self) -> EngineSettings:
        """Load .env file and build settings from the environment.

        This is the main entry point for loading configuration.
        """
        self.load_env_file()
        return self.build_settings_from_env()


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and dataclass-like objects.

    Args:
        config: Configuration object (dict or object with attributes)
        key: Configuration key to retrieve
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
