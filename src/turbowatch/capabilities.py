"""Runtime capability probing for the change feed.

The feed prefers watchdog's native observer (inotify on Linux, FSEvents on
macOS) and falls back to polling when it cannot be trusted.
"""

from __future__ import annotations

import os
import sys

MIN_NATIVE_PYTHON = (3, 10)
NATIVE_PLATFORMS = ("linux", "darwin")


def is_wsl() -> bool:
    """Detect if we're running inside WSL.

    inotify events do not propagate across WSL's 9P bridge, so native
    watching is unreliable there.
    """
    if os.environ.get("WSL_DISTRO_NAME"):
        return True
    try:
        with open("/proc/version", encoding="utf-8") as f:
            version = f.read().lower()
    except OSError:
        return False
    return "microsoft" in version or "wsl" in version


def is_native_watcher_available() -> bool:
    """Return True if the native filesystem observer can be used."""
    if sys.version_info[:2] < MIN_NATIVE_PYTHON:
        return False
    if not sys.platform.startswith(NATIVE_PLATFORMS):
        return False
    if sys.platform.startswith("linux") and is_wsl():
        return False
    return True
