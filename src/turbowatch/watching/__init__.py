"""File watching for turbowatch.

Provides the watchdog-backed change feed, watch expression evaluation, and
the Watcher that connects triggers to feeds.
"""

from turbowatch.watching.expressions import compile_expression, matches
from turbowatch.watching.feed import ChangeFeed
from turbowatch.watching.watcher import Watcher, watch

__all__ = [
    "ChangeFeed",
    "Watcher",
    "compile_expression",
    "matches",
    "watch",
]
