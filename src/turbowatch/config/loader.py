"""Configuration file loading.

Handles:
- YAML file parsing
- Environment variable overrides
- Applying the ``defaults:`` section to every trigger
- Conversion from dict to typed Config dataclasses
- Building runtime Triggers with imported handlers
"""

from __future__ import annotations

import hashlib
import importlib
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from turbowatch.config.schema import Config, LoggingConfig, TriggerConfig
from turbowatch.errors import ConfigError
from turbowatch.types import RetryPolicy, ThrottlePolicy, Trigger
from turbowatch.watching.expressions import compile_expression

if TYPE_CHECKING:
    from turbowatch.cancellation import CancellationToken

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("turbowatch.config")

CONFIG_FILENAME = "turbowatch.yaml"

_TRIGGER_KEYS = {
    "name",
    "expression",
    "handler",
    "on_teardown",
    "relative_path",
    "interruptible",
    "initial_run",
    "retry",
    "throttle_output",
}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` overlaid with ``override``.

    Nested dicts merge recursively, lists and scalars are replaced, and
    None in ``override`` leaves the base value alone.
    """
    result = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


def get_config_path(project: str | Path) -> Path:
    return Path(project) / CONFIG_FILENAME


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from TW_LOG and TW_LOG_LEVEL."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("TW_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    log_level = os.environ.get("TW_LOG_LEVEL")
    if log_level:
        overrides.setdefault("logging", {})["level"] = log_level

    return overrides


def _trigger_config(data: dict[str, Any], index: int) -> TriggerConfig:
    for key in ("name", "expression", "handler"):
        if not data.get(key):
            raise ConfigError(f"trigger #{index} is missing {key!r}")

    unknown = set(data) - _TRIGGER_KEYS
    if unknown:
        _log.warning("Ignoring unknown keys in trigger %r: %s", data["name"], sorted(unknown))

    expression = data["expression"]
    compile_expression(expression)

    retry = data.get("retry") or {}
    throttle = data.get("throttle_output") or {}
    for key, section in (("retry", retry), ("throttle_output", throttle)):
        if not isinstance(section, Mapping):
            raise ConfigError(f"trigger {data['name']!r}: {key!r} must be a mapping")
    try:
        retries = int(retry.get("retries", 3))
        delay = float(throttle.get("delay", 1000))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"trigger {data['name']!r}: {e}") from e
    if retries < 0 or delay < 0:
        raise ConfigError(f"trigger {data['name']!r}: retries and delay must be >= 0")

    return TriggerConfig(
        name=str(data["name"]),
        expression=expression,
        handler=str(data["handler"]),
        on_teardown=data.get("on_teardown"),
        relative_path=data.get("relative_path", ""),
        interruptible=bool(data.get("interruptible", True)),
        initial_run=bool(data.get("initial_run", True)),
        retries=retries,
        throttle_delay=delay,
    )


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass.

    Raises:
        ConfigError: If a trigger declaration is incomplete or its
            expression does not compile.
    """
    defaults = data.get("defaults") or {}
    triggers_data = data.get("triggers") or []
    if not isinstance(triggers_data, list):
        raise ConfigError("'triggers' must be a list")

    triggers = []
    for index, trigger_data in enumerate(triggers_data):
        if not isinstance(trigger_data, dict):
            raise ConfigError(f"trigger #{index} must be a mapping")
        triggers.append(_trigger_config(deep_merge(defaults, trigger_data), index))

    log_data = data.get("logging") or {}
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    known_keys = {"project", "triggers", "defaults", "logging"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        project=str(data.get("project", ".")),
        triggers=triggers,
        logging=logging_config,
        extra=extra,
    )


def load_config(path: str | Path | None = None, project: str | Path | None = None) -> Config:
    """Load configuration from a YAML file plus environment overrides.

    Args:
        path: Config file. Defaults to ``<project>/turbowatch.yaml``.
        project: Project root. Defaults to the current directory, or the
            ``project`` key of the file resolved relative to the file.

    Returns:
        The Config object with an absolute ``project``.
    """
    config_path = Path(path) if path else get_config_path(project or ".")
    data = load_yaml_file(config_path)
    if data:
        _log.debug("Loaded config from %s", config_path)

    merged = deep_merge(data, env_overrides())
    config = dict_to_config(merged)

    if project is not None:
        config.project = str(Path(project).resolve())
    else:
        config.project = str((config_path.parent / config.project).resolve())
    return config


def resolve_handler(reference: str) -> Any:
    """Import a handler from a "package.module:attribute" reference.

    Raises:
        ConfigError: If the module or attribute cannot be found, or the
            attribute is not callable.
    """
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigError(f"handler must look like 'module:function', got {reference!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"cannot import handler module {module_name!r}: {e}") from e

    target: Any = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise ConfigError(f"{module_name!r} has no attribute {attribute!r}") from e

    if not callable(target):
        raise ConfigError(f"handler {reference!r} is not callable")
    return target


def trigger_id(trigger_config: TriggerConfig) -> str:
    """Stable id derived from a trigger's name and expression."""
    payload = trigger_config.name + json.dumps(trigger_config.expression, sort_keys=True)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:12]


def build_triggers(
    config: Config,
    abort_signal: CancellationToken | None = None,
) -> list[Trigger]:
    """Turn trigger declarations into runtime Triggers.

    Args:
        config: Loaded configuration.
        abort_signal: Process-level shutdown token shared by all triggers.
    """
    root = str(Path(config.project).resolve())
    triggers = []
    for tc in config.triggers:
        triggers.append(
            Trigger(
                id=trigger_id(tc),
                name=tc.name,
                expression=tc.expression,
                watch=root,
                relative_path=tc.relative_path,
                on_change=resolve_handler(tc.handler),
                on_teardown=resolve_handler(tc.on_teardown) if tc.on_teardown else None,
                interruptible=tc.interruptible,
                initial_run=tc.initial_run,
                retry=RetryPolicy(retries=tc.retries),
                throttle_output=ThrottlePolicy(delay=tc.throttle_delay),
                abort_signal=abort_signal,
            )
        )
    return triggers
