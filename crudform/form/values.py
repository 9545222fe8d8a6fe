from __future__ import annotations

from typing import Any, Mapping

REMOVE_FLAG_NAME = "_remove_"


class _Missing:
    """Marker for "no value was submitted".

    Distinct from ``None`` and ``False``, which are real values and must reach
    the record untouched.
    """

    _instance: "_Missing | None" = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


MISSING = _Missing()


def is_removal_flagged(row: Any) -> bool:
    if not isinstance(row, Mapping):
        return False
    flag = row.get(REMOVE_FLAG_NAME)
    if isinstance(flag, bool):
        return flag
    return str(flag).strip() == "1"
