"""Shaping raw change batches into File records.

Everything here is pure: no I/O, no state outside the call.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from typing import Any

from turbowatch.errors import MalformedChangeError
from turbowatch.types import File, RawChange


def to_file(entry: RawChange) -> File:
    """Map one raw change entry to a File record.

    Accepts a File, a path (str or os.PathLike), or a mapping carrying
    ``name`` (watchman style) or ``filename`` (native watcher style) plus
    optional ``exists``, ``mtime``/``mtime_ms`` and ``size``.

    Raises:
        MalformedChangeError: If the entry has no usable name.
    """
    if isinstance(entry, File):
        if not entry.name:
            raise MalformedChangeError("change entry has an empty name")
        return entry

    if isinstance(entry, (str, os.PathLike)):
        name = os.fspath(entry)
        if not name:
            raise MalformedChangeError("change entry has an empty path")
        return File(name=str(name))

    if isinstance(entry, Mapping):
        name = entry.get("name", entry.get("filename"))
        if not isinstance(name, str) or not name:
            raise MalformedChangeError(f"change entry is missing a name: {entry!r}")
        return File(
            name=name,
            exists=bool(entry.get("exists", True)),
            mtime=_mtime(entry),
            size=int(entry.get("size") or 0),
        )

    raise MalformedChangeError(f"unsupported change entry: {entry!r}")


def _mtime(entry: Mapping[str, Any]) -> float:
    if entry.get("mtime") is not None:
        return float(entry["mtime"])
    if entry.get("mtime_ms") is not None:
        return float(entry["mtime_ms"]) / 1000
    return 0.0


def shape_files(raw_changes: Iterable[RawChange]) -> list[File]:
    """Deduplicate a raw batch by name and map it to File records.

    Later duplicates of an already-seen name are dropped, so
    ``[A, A, B]`` becomes ``[File(A), File(B)]``.

    Raises:
        MalformedChangeError: If the batch is not iterable or any entry is
            malformed. Nothing is dropped silently.
    """
    if isinstance(raw_changes, (str, bytes, Mapping)) or not isinstance(raw_changes, Iterable):
        raise MalformedChangeError(
            f"change batch must be a sequence of entries, got {type(raw_changes).__name__}"
        )

    return merge_files([], (to_file(entry) for entry in raw_changes))


def merge_files(existing: Iterable[File], incoming: Iterable[File]) -> list[File]:
    """Append incoming files whose names are not already present."""
    merged: dict[str, File] = {}
    for file in existing:
        merged.setdefault(file.name, file)
    for file in incoming:
        merged.setdefault(file.name, file)
    return list(merged.values())
