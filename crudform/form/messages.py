from __future__ import annotations

from typing import Iterable, Mapping


class MessageBag:
    """Validation messages grouped by dotted input key."""

    def __init__(self, messages: Mapping[str, Iterable[str]] | None = None):
        self._messages: dict[str, list[str]] = {}
        if messages:
            self.merge(messages)

    def add(self, key: str, message: str) -> "MessageBag":
        bucket = self._messages.setdefault(str(key), [])
        if message not in bucket:
            bucket.append(message)
        return self

    def merge(self, other: "MessageBag | Mapping[str, Iterable[str]]") -> "MessageBag":
        source = other.messages() if isinstance(other, MessageBag) else other
        for key, messages in source.items():
            for message in messages:
                self.add(key, message)
        return self

    def any(self) -> bool:
        return any(self._messages.values())

    def has(self, key: str) -> bool:
        return bool(self._messages.get(key))

    def get(self, key: str) -> list[str]:
        return list(self._messages.get(key, []))

    def first(self, key: str | None = None) -> str:
        if key is not None:
            messages = self._messages.get(key) or [""]
            return messages[0]
        for messages in self._messages.values():
            if messages:
                return messages[0]
        return ""

    def messages(self) -> dict[str, list[str]]:
        return {key: list(messages) for key, messages in self._messages.items() if messages}

    def dot(self) -> dict[str, str]:
        flat: dict[str, str] = {}
        for key, messages in self.messages().items():
            for index, message in enumerate(messages):
                flat[f"{key}.{index}"] = message
        return flat

    def keys(self) -> list[str]:
        return list(self.messages().keys())

    def __bool__(self) -> bool:
        return self.any()

    def __len__(self) -> int:
        return sum(len(messages) for messages in self._messages.values())

    def __repr__(self) -> str:
        return f"MessageBag({self.messages()!r})"
