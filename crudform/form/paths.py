"""Dotted-path access into nested input mappings.

``"comments.0.body"`` addresses ``data["comments"][0]["body"]``. A literal key
containing dots wins over the nested lookup, so flat and nested input can be
mixed.
"""

from __future__ import annotations

from typing import Any, Mapping

from .values import MISSING


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, Mapping):
        if segment in current:
            return current[segment]
        if segment.isdigit() and int(segment) in current:
            return current[int(segment)]
        return MISSING
    if isinstance(current, (list, tuple)) and segment.isdigit():
        index = int(segment)
        if index < len(current):
            return current[index]
    return MISSING


def get_path(data: Any, path: str, default: Any = MISSING) -> Any:
    if isinstance(data, Mapping) and path in data:
        return data[path]
    current = data
    for segment in str(path).split("."):
        current = _step(current, segment)
        if current is MISSING:
            return default
    return current


def has_path(data: Any, path: str) -> bool:
    return get_path(data, path) is not MISSING


def set_path(data: dict, path: str, value: Any) -> dict:
    segments = str(path).split(".")
    current = data
    for segment in segments[:-1]:
        nested = current.get(segment)
        if not isinstance(nested, dict):
            nested = {}
            current[segment] = nested
        current = nested
    current[segments[-1]] = value
    return data


def forget_path(data: dict, path: str) -> None:
    if path in data:
        del data[path]
        return
    segments = str(path).split(".")
    current: Any = data
    for segment in segments[:-1]:
        current = _step(current, segment)
        if not isinstance(current, dict):
            return
    current.pop(segments[-1], None)


def dot(data: Mapping, prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping) and value:
            flat.update(dot(value, name + "."))
        elif isinstance(value, (list, tuple)) and value:
            flat.update(dot(dict(enumerate(value)), name + "."))
        else:
            flat[name] = value
    return flat


def is_assoc(value: Any) -> bool:
    if not isinstance(value, Mapping):
        return False
    keys = [str(key) for key in value.keys()]
    return keys != [str(index) for index in range(len(keys))]
