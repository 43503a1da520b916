"""
Base types for configuration.
"""

from __future__ import annotations

from typing import Literal

PersistenceBackendType = Literal["none", "memory", "postgres"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]


__all__ = ["PersistenceBackendType", "LogLevel", "LogFormat"]
