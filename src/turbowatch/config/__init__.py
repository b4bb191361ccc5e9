"""Configuration management for turbowatch.

Configuration lives in ``turbowatch.yaml`` at the project root, with
environment variable overrides for logging (TW_LOG, TW_LOG_LEVEL).

Example usage:
    from turbowatch.config import load_config, build_triggers

    config = load_config(project="/path/to/project")
    triggers = build_triggers(config)
"""

from turbowatch.config.loader import (
    build_triggers,
    deep_merge,
    dict_to_config,
    load_config,
    load_yaml_file,
    resolve_handler,
)
from turbowatch.config.schema import Config, LoggingConfig, TriggerConfig

__all__ = [
    # Main API
    "Config",
    "load_config",
    "build_triggers",
    "resolve_handler",
    # Schema types
    "LoggingConfig",
    "TriggerConfig",
    # Helpers
    "deep_merge",
    "dict_to_config",
    "load_yaml_file",
]
