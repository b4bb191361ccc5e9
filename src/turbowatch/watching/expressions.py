"""Watch expression evaluation.

Expressions use watchman's list syntax and are compiled once into a
predicate over (absolute path, path relative to the watch root).

Supported terms:
    ["true"], ["false"]
    ["allof", expr, ...], ["anyof", expr, ...], ["not", expr]
    ["match" | "imatch", glob | [globs], "basename" | "wholename"]
    ["name" | "iname", name | [names], "basename" | "wholename"]
    ["pcre" | "ipcre", regex, "basename" | "wholename"]
    ["suffix", suffix | [suffixes]]
    ["dirname" | "idirname", dir, ["depth", op, n]]
    ["exists"], ["empty"], ["type", "f" | "d" | "l" | ...]
    ["size", op, n]
    ["since", timestamp, "mtime" | "ctime"]
where op is one of eq, ne, gt, ge, lt, le.
"""

from __future__ import annotations

import fnmatch
import operator
import os
import re
import stat
from collections.abc import Callable
from pathlib import Path, PurePosixPath
from typing import Any

from turbowatch.errors import ExpressionError

_RELATIONAL: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "ge": operator.ge,
    "lt": operator.lt,
    "le": operator.le,
}

_FILE_TYPES: dict[str, Callable[[int], bool]] = {
    "f": stat.S_ISREG,
    "d": stat.S_ISDIR,
    "l": stat.S_ISLNK,
    "p": stat.S_ISFIFO,
    "s": stat.S_ISSOCK,
    "b": stat.S_ISBLK,
    "c": stat.S_ISCHR,
}


class Candidate:
    """A path being evaluated, with a lazily cached lstat()."""

    __slots__ = ("path", "relative", "_stat", "_statted")

    def __init__(self, path: Path, relative: str) -> None:
        self.path = path
        self.relative = relative
        self._stat: os.stat_result | None = None
        self._statted = False

    @property
    def basename(self) -> str:
        return PurePosixPath(self.relative).name or self.path.name

    @property
    def stat(self) -> os.stat_result | None:
        if not self._statted:
            self._statted = True
            try:
                self._stat = self.path.lstat()
            except OSError:
                self._stat = None
        return self._stat


Matcher = Callable[[Candidate], bool]


def compile_expression(expression: Any) -> Matcher:
    """Compile a watch expression into a predicate.

    Raises:
        ExpressionError: If the expression is malformed or uses an
            unsupported term.
    """
    if isinstance(expression, str):
        expression = [expression]
    if not isinstance(expression, (list, tuple)) or not expression:
        raise ExpressionError(f"expression must be a non-empty list, got {expression!r}")

    term, *args = expression
    compiler = _COMPILERS.get(term)
    if compiler is None:
        raise ExpressionError(f"unsupported expression term: {term!r}")
    try:
        return compiler(term, args)
    except ExpressionError:
        raise
    except (AttributeError, IndexError, TypeError, ValueError, re.error) as e:
        raise ExpressionError(f"invalid {term!r} expression {expression!r}: {e}") from e


def matches(expression: Any, path: str | Path, root: str | Path) -> bool:
    """Evaluate an expression against a single path."""
    path = Path(path)
    return compile_expression(expression)(Candidate(path, relative_to(path, root)))


def relative_to(path: Path, root: str | Path) -> str:
    """Posix-style path of ``path`` relative to ``root`` ("" if outside)."""
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return ""


def _constant(term: str, args: list[Any]) -> Matcher:
    value = term == "true"
    return lambda candidate: value


def _allof(term: str, args: list[Any]) -> Matcher:
    matchers = [compile_expression(arg) for arg in args]
    return lambda candidate: all(m(candidate) for m in matchers)


def _anyof(term: str, args: list[Any]) -> Matcher:
    matchers = [compile_expression(arg) for arg in args]
    return lambda candidate: any(m(candidate) for m in matchers)


def _not(term: str, args: list[Any]) -> Matcher:
    if len(args) != 1:
        raise ExpressionError("'not' takes exactly one sub-expression")
    inner = compile_expression(args[0])
    return lambda candidate: not inner(candidate)


def _scope(args: list[Any], index: int) -> Callable[[Candidate], str]:
    scope = args[index] if len(args) > index else "basename"
    if scope == "basename":
        return lambda candidate: candidate.basename
    if scope == "wholename":
        return lambda candidate: candidate.relative
    raise ExpressionError(f"scope must be 'basename' or 'wholename', got {scope!r}")


def _patterns(value: Any) -> list[str]:
    patterns = [value] if isinstance(value, str) else list(value)
    if not patterns or not all(isinstance(p, str) for p in patterns):
        raise ExpressionError(f"expected a string or list of strings, got {value!r}")
    return patterns


def _match(term: str, args: list[Any]) -> Matcher:
    fold = term.startswith("i")
    patterns = _patterns(args[0])
    if fold:
        patterns = [p.lower() for p in patterns]
    subject = _scope(args, 1)

    def check(candidate: Candidate) -> bool:
        value = subject(candidate)
        if fold:
            value = value.lower()
        return any(fnmatch.fnmatchcase(value, p) for p in patterns)

    return check


def _name(term: str, args: list[Any]) -> Matcher:
    fold = term.startswith("i")
    names = {n.lower() if fold else n for n in _patterns(args[0])}
    subject = _scope(args, 1)

    def check(candidate: Candidate) -> bool:
        value = subject(candidate)
        return (value.lower() if fold else value) in names

    return check


def _pcre(term: str, args: list[Any]) -> Matcher:
    flags = re.IGNORECASE if term.startswith("i") else 0
    regex = re.compile(args[0], flags)
    subject = _scope(args, 1)
    return lambda candidate: regex.search(subject(candidate)) is not None


def _suffix(term: str, args: list[Any]) -> Matcher:
    suffixes = {s.lower().lstrip(".") for s in _patterns(args[0])}

    def check(candidate: Candidate) -> bool:
        suffix = PurePosixPath(candidate.basename).suffix
        return bool(suffix) and suffix[1:].lower() in suffixes

    return check


def _dirname(term: str, args: list[Any]) -> Matcher:
    fold = term.startswith("i")
    directory = args[0].strip("/")
    if fold:
        directory = directory.lower()

    relation: Callable[[Any, Any], bool] = operator.ge
    depth = 0
    if len(args) > 1:
        spec = args[1]
        if len(spec) != 3 or spec[0] != "depth" or spec[1] not in _RELATIONAL:
            raise ExpressionError(f"invalid depth clause: {spec!r}")
        relation = _RELATIONAL[spec[1]]
        depth = int(spec[2])

    def check(candidate: Candidate) -> bool:
        parent = PurePosixPath(candidate.relative).parent.as_posix()
        if parent == ".":
            parent = ""
        if fold:
            parent = parent.lower()
        if directory == "":
            below = parent
        elif parent == directory:
            below = ""
        elif parent.startswith(directory + "/"):
            below = parent[len(directory) + 1 :]
        else:
            return False
        file_depth = len(below.split("/")) if below else 0
        return relation(file_depth, depth)

    return check


def _exists(term: str, args: list[Any]) -> Matcher:
    return lambda candidate: candidate.stat is not None


def _empty(term: str, args: list[Any]) -> Matcher:
    def check(candidate: Candidate) -> bool:
        st = candidate.stat
        if st is None:
            return False
        if stat.S_ISREG(st.st_mode):
            return st.st_size == 0
        if stat.S_ISDIR(st.st_mode):
            try:
                return not any(candidate.path.iterdir())
            except OSError:
                return False
        return False

    return check


def _type(term: str, args: list[Any]) -> Matcher:
    if len(args) != 1 or args[0] not in _FILE_TYPES:
        raise ExpressionError(f"unsupported file type: {args!r}")
    predicate = _FILE_TYPES[args[0]]

    def check(candidate: Candidate) -> bool:
        st = candidate.stat
        return st is not None and predicate(st.st_mode)

    return check


def _size(term: str, args: list[Any]) -> Matcher:
    if len(args) != 2 or args[0] not in _RELATIONAL:
        raise ExpressionError(f"invalid size expression: {args!r}")
    relation = _RELATIONAL[args[0]]
    size = int(args[1])

    def check(candidate: Candidate) -> bool:
        st = candidate.stat
        return st is not None and relation(st.st_size, size)

    return check


def _since(term: str, args: list[Any]) -> Matcher:
    # Only timestamps; watchman clock strings need a watchman server
    if not args or isinstance(args[0], bool) or not isinstance(args[0], (int, float)):
        raise ExpressionError(f"'since' needs a numeric timestamp, got {args!r}")
    field = args[1] if len(args) > 1 else "mtime"
    if field not in ("mtime", "ctime") or len(args) > 2:
        raise ExpressionError(f"'since' supports mtime or ctime, got {args[1:]!r}")
    threshold = float(args[0])
    attribute = f"st_{field}"

    def check(candidate: Candidate) -> bool:
        st = candidate.stat
        return st is not None and getattr(st, attribute) > threshold

    return check


_COMPILERS: dict[str, Callable[[str, list[Any]], Matcher]] = {
    "true": _constant,
    "false": _constant,
    "allof": _allof,
    "anyof": _anyof,
    "not": _not,
    "match": _match,
    "imatch": _match,
    "name": _name,
    "iname": _name,
    "pcre": _pcre,
    "ipcre": _pcre,
    "suffix": _suffix,
    "dirname": _dirname,
    "idirname": _dirname,
    "exists": _exists,
    "empty": _empty,
    "type": _type,
    "size": _size,
    "since": _since,
}
