"""The JSON document that flows through an execution.

A :class:`Document` is immutable: every operation returns a new instance and
values are deep-copied on the way in and on the way out, so branches of a
Parallel state can share an input without sharing mutable state.

Reference paths follow the JSONPath subset used by state definitions:

- ``$``                       the whole document
- ``$.reminder.email``        member access
- ``$.items[0].name``         list index
- ``$['key with spaces']``    quoted member access
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from .errors import InvalidPath, PathNotFound

PathToken = str | int

_EMPTY: Any = object()

_TOKEN_RE = re.compile(
    r"""
    \.(?P<name>[^.\[\]'"\s]+)
    | \[(?P<index>\d+)\]
    | \['(?P<single>[^']*)'\]
    | \["(?P<double>[^"]*)"\]
    """,
    re.VERBOSE,
)


@lru_cache(maxsize=256)
def parse_path(path: str) -> tuple[PathToken, ...]:
    """Split a reference path into member names and list indices."""

    if not isinstance(path, str) or not path.startswith("$"):
        raise InvalidPath(f"Reference path must start with '$': {path!r}")

    tokens: list[PathToken] = []
    pos = 1
    while pos < len(path):
        match = _TOKEN_RE.match(path, pos)
        if match is None:
            raise InvalidPath(f"Invalid reference path {path!r} at offset {pos}")
        if match.group("name") is not None:
            tokens.append(match.group("name"))
        elif match.group("index") is not None:
            tokens.append(int(match.group("index")))
        elif match.group("single") is not None:
            tokens.append(match.group("single"))
        else:
            tokens.append(match.group("double"))
        pos = match.end()
    return tuple(tokens)


def _copy_json(value: Any) -> Any:
    if value is None or isinstance(value, bool | str):
        return value
    if isinstance(value, int | float):
        if isinstance(value, float) and not math.isfinite(value):
            raise TypeError(f"Non-finite number is not JSON compatible: {value!r}")
        return value
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Document keys must be strings, got {key!r}")
            out[key] = _copy_json(item)
        return out
    if isinstance(value, list | tuple):
        return [_copy_json(item) for item in value]
    raise TypeError(f"Value of type {type(value).__name__} is not JSON compatible")


def _step(current: Any, token: PathToken, path: str) -> Any:
    if isinstance(token, int):
        if isinstance(current, list) and token < len(current):
            return current[token]
        raise PathNotFound(path)
    if isinstance(current, dict) and token in current:
        return current[token]
    raise PathNotFound(path)


class Document:
    """An immutable JSON value addressed with reference paths."""

    __slots__ = ("_value",)

    def __init__(self, value: Any = _EMPTY) -> None:
        self._value = {} if value is _EMPTY else _copy_json(value)

    @classmethod
    def from_json_text(cls, text: str) -> Document:
        return cls(json.loads(text))

    def to_json(self) -> Any:
        """Return a deep copy of the underlying JSON value."""

        return _copy_json(self._value)

    def get(self, path: str) -> Any:
        """Read the value at ``path``; raises :class:`PathNotFound` when absent."""

        current = self._value
        for token in parse_path(path):
            current = _step(current, token, path)
        return _copy_json(current)

    def contains(self, path: str) -> bool:
        try:
            self.get(path)
        except PathNotFound:
            return False
        return True

    def set(self, path: str, value: Any) -> Document:
        """Return a new document with ``value`` written at ``path``.

        Missing intermediate members are created as objects. List indices must
        already exist.
        """

        tokens = parse_path(path)
        if not tokens:
            return Document(value)

        root = _copy_json(self._value)
        current = root
        for token in tokens[:-1]:
            if isinstance(token, str) and isinstance(current, dict) and token not in current:
                current[token] = {}
            current = _step(current, token, path)

        last = tokens[-1]
        if isinstance(last, int):
            if not isinstance(current, list) or last >= len(current):
                raise PathNotFound(path)
        elif not isinstance(current, dict):
            raise PathNotFound(path)
        current[last] = _copy_json(value)
        return Document(root)

    def merge(self, partial: Mapping[str, Any]) -> Document:
        """Return a new document with the top-level keys of ``partial`` applied."""

        if not isinstance(self._value, dict):
            raise TypeError("Only object documents can be merged")
        return Document({**self._value, **_copy_json(partial)})

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(json.dumps(self._value, sort_keys=True))

    def __repr__(self) -> str:
        return f"Document({self._value!r})"
