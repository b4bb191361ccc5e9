"""turbowatch: run async handlers on file changes with controlled concurrency."""

__version__ = "0.1.0"

# Public API
from turbowatch.cancellation import CancellationToken
from turbowatch.capabilities import is_native_watcher_available
from turbowatch.changes import shape_files
from turbowatch.config import Config, build_triggers, load_config
from turbowatch.errors import (
    ConfigError,
    ExpressionError,
    MalformedChangeError,
    OperationCancelledError,
    SubscriptionClosedError,
    TurbowatchError,
)
from turbowatch.subscription import Subscription, subscribe
from turbowatch.terminal import ShellResult, SubprocessTerminalExecutor
from turbowatch.types import ChangeEvent, File, RetryPolicy, ThrottlePolicy, Trigger
from turbowatch.watching import ChangeFeed, Watcher, watch

__all__ = [
    # Controller
    "Subscription",
    "subscribe",
    "Trigger",
    "ChangeEvent",
    "File",
    "RetryPolicy",
    "ThrottlePolicy",
    "shape_files",
    # Cancellation
    "CancellationToken",
    # Watching
    "ChangeFeed",
    "Watcher",
    "watch",
    "is_native_watcher_available",
    # Config
    "Config",
    "load_config",
    "build_triggers",
    # Terminal
    "ShellResult",
    "SubprocessTerminalExecutor",
    # Errors
    "TurbowatchError",
    "ConfigError",
    "ExpressionError",
    "MalformedChangeError",
    "OperationCancelledError",
    "SubscriptionClosedError",
]
