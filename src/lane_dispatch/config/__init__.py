"""
Configuration system for lane-dispatch.

This package provides typed configuration classes with:
- Dataclass-based settings with validation
- Environment variable loading
- YAML/TOML file loading
- Sensible defaults with override capability
"""

from .base import LogFormat, LogLevel, PersistenceBackendType
from .lanes import LaneConfig, PersistenceConfig
from .logging import LoggingConfig
from .settings import Settings, configure, get_settings, load_env

__all__ = [
    # Types
    "PersistenceBackendType",
    "LogLevel",
    "LogFormat",
    # Section configs
    "LaneConfig",
    "PersistenceConfig",
    "LoggingConfig",
    # Master config
    "Settings",
    # Global functions
    "get_settings",
    "configure",
    "load_env",
]
