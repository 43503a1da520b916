"""
Settings master configuration and global helpers.
"""

from __future__ import annotations

import dataclasses
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
from dotenv import find_dotenv, load_dotenv

from ..config_schema import CONFIG_SCHEMA
from ..errors import InvalidConfigError
from .lanes import LaneConfig, PersistenceConfig
from .logging import LoggingConfig

# env suffix -> (section, field, converter)
_ENV_FIELDS: dict[str, tuple[str, str, Any]] = {
    "LANE_COUNT": ("lanes", "lane_count", int),
    "CONCURRENCY": ("lanes", "concurrency", int),
    "DEFAULT_TIMEOUT_MS": ("lanes", "default_timeout_ms", int),
    "PERSISTENCE_BACKEND": ("persistence", "backend", str.lower),
    "DATABASE_URL": ("persistence", "dsn", str),
    "TABLE_NAME": ("persistence", "table_name", str),
    "BATCH_SIZE": ("persistence", "batch_size", int),
    "FLUSH_INTERVAL_MS": ("persistence", "flush_interval_ms", int),
    "CLEANUP_AFTER_DAYS": ("persistence", "cleanup_after_days", float),
    "CLEANUP_INTERVAL_MS": ("persistence", "cleanup_interval_ms", int),
    "LOG_LEVEL": ("logging", "level", str.upper),
    "LOG_FORMAT": ("logging", "format", str.lower),
}

_SECTIONS: dict[str, type] = {
    "lanes": LaneConfig,
    "persistence": PersistenceConfig,
    "logging": LoggingConfig,
}


def _build_section(section: str, values: dict[str, Any]) -> Any:
    config_cls = _SECTIONS[section]
    names = {f.name for f in dataclasses.fields(config_cls)}
    return config_cls(**{k: v for k, v in values.items() if k in names})


@dataclass
class Settings:
    """
    Master configuration for the dispatcher.

    Aggregates all configuration sections into a single object that can be
    loaded from environment variables, files, or constructed programmatically.
    """

    lanes: LaneConfig = field(default_factory=LaneConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, prefix: str = "DISPATCH_") -> Settings:
        """
        Load settings from environment variables.

        Example:
            DISPATCH_LANE_COUNT=4
            DISPATCH_CONCURRENCY=2
            DISPATCH_PERSISTENCE_BACKEND=postgres
            DISPATCH_DATABASE_URL=postgresql://localhost/jobs
        """
        sections: dict[str, dict[str, Any]] = {name: {} for name in _SECTIONS}
        for suffix, (section, name, convert) in _ENV_FIELDS.items():
            raw = os.getenv(f"{prefix}{suffix}")
            if raw is None or raw == "":
                continue
            try:
                sections[section][name] = convert(raw)
            except ValueError as e:
                raise InvalidConfigError(f"Invalid value for {prefix}{suffix}: {raw!r}") from e

        return cls(**{name: _build_section(name, values) for name, values in sections.items()})

    @classmethod
    def from_file(cls, path: str | Path) -> Settings:
        """
        Load settings from a YAML or TOML file.

        Args:
            path: Path to configuration file (.yaml, .yml, or .toml)

        Returns:
            Settings object with values from file
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            try:
                import yaml  # type: ignore[import-untyped]
            except ImportError as exc:
                raise ImportError("PyYAML is required for YAML config files: pip install pyyaml") from exc
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        elif suffix == ".toml":
            with open(path, "rb") as f:
                data = tomllib.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {suffix}")

        return cls._from_dict(data)

    @classmethod
    def default(cls) -> Settings:
        """Create default configuration."""
        return cls()

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> Settings:
        """
        Create Settings from a dictionary.

        The dictionary is validated against the configuration schema before
        any section is built.
        """
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise InvalidConfigError(f"Configuration validation failed: {e.message}") from e

        return cls(**{
            name: _build_section(name, data.get(name) or {})
            for name in _SECTIONS
        })

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""
        return dataclasses.asdict(self)


# =============================================================================
# Global Settings & Helpers
# =============================================================================

_global_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance, creating with defaults if needed."""
    global _global_settings
    if _global_settings is None:
        _global_settings = Settings.from_env()
    return _global_settings


def configure(settings: Settings | None = None, **kwargs) -> Settings:
    """
    Configure global settings.

    Args:
        settings: Settings object to use globally
        **kwargs: Override specific sections (lanes=..., persistence=..., logging=...)

    Returns:
        The configured Settings object
    """
    global _global_settings

    if settings is not None:
        _global_settings = settings
    elif _global_settings is None:
        _global_settings = Settings.from_env()

    for key, value in kwargs.items():
        if hasattr(_global_settings, key):
            setattr(_global_settings, key, value)

    return _global_settings


def load_env(path: str | None = None, *, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Args:
        path: Optional path to a .env file. If not provided, uses find_dotenv().
        override: Whether to override existing environment variables.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        return False
    return load_dotenv(env_path, override=override)


__all__ = ["Settings", "get_settings", "configure", "load_env"]
