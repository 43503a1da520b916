"""
JSON schemas for configuration validation.
"""

LANES_SCHEMA = {
    "type": "object",
    "properties": {
        "lane_count": {"type": "integer", "minimum": 1},
        "concurrency": {"type": "integer", "minimum": 1},
        "default_timeout_ms": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}

PERSISTENCE_SCHEMA = {
    "type": "object",
    "properties": {
        "backend": {"type": "string", "enum": ["none", "memory", "postgres"]},
        "dsn": {"type": ["string", "null"]},
        "table_name": {"type": "string", "pattern": "^[a-zA-Z0-9_]+$"},
        "batch_size": {"type": "integer", "minimum": 1},
        "flush_interval_ms": {"type": "integer", "minimum": 1},
        "cleanup_after_days": {"type": "number", "minimum": 0},
        "cleanup_interval_ms": {"type": "integer", "minimum": 1},
    },
    "allOf": [
        {
            "if": {"properties": {"backend": {"const": "postgres"}}, "required": ["backend"]},
            "then": {"required": ["dsn"]},
        },
    ],
}

LOGGING_SCHEMA = {
    "type": "object",
    "properties": {
        "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "format": {"type": "string", "enum": ["text", "json"]},
    },
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "lanes": LANES_SCHEMA,
        "persistence": PERSISTENCE_SCHEMA,
        "logging": LOGGING_SCHEMA,
    },
}
