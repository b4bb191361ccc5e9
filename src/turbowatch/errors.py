"""Exception hierarchy for turbowatch."""

from __future__ import annotations


class TurbowatchError(Exception):
    """Base class for all turbowatch errors."""


class MalformedChangeError(TurbowatchError, ValueError):
    """A raw change entry is missing its name or has an unsupported shape."""


class SubscriptionClosedError(TurbowatchError, RuntimeError):
    """A batch was delivered to a subscription that has been torn down."""


class OperationCancelledError(TurbowatchError):
    """Raised by CancellationToken.raise_if_cancelled()."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or "operation cancelled")
        self.reason = reason


class ConfigError(TurbowatchError, ValueError):
    """Invalid configuration."""


class ExpressionError(ConfigError):
    """A watch expression could not be compiled."""
