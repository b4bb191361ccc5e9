"""Configuration schema dataclasses for turbowatch.

Example turbowatch.yaml:
    project: .
    logging:
      level: info
    defaults:
      interruptible: false
      retry:
        retries: 1
    triggers:
      - name: build
        expression: ["anyof", ["match", "*.py", "basename"], ["match", "*.toml", "basename"]]
        handler: "tasks:build"
        throttle_output:
          delay: 500
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class TriggerConfig:
    """A trigger declaration.

    ``handler`` and ``on_teardown`` are import references of the form
    "package.module:function".
    """

    name: str
    expression: list[Any]
    handler: str
    on_teardown: str | None = None
    relative_path: str = ""
    interruptible: bool = True
    initial_run: bool = True
    retries: int = 3
    throttle_delay: float = 1000  # milliseconds


@dataclass
class Config:
    """Root configuration object."""

    project: str = "."
    triggers: list[TriggerConfig] = field(default_factory=list)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
