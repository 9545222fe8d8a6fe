from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from starlette.responses import Response

from .errors import FormConfigurationError

if TYPE_CHECKING:
    from .context import Submission

_LOG = logging.getLogger("crudform.form")

HOOK_PHASES = ("submitted", "saving", "saved", "editing", "deleting", "deleted")

Hook = Callable[["Submission"], Any]


@dataclass(frozen=True)
class HookOutcome:
    response: Response | None = None

    @property
    def halted(self) -> bool:
        return self.response is not None


CONTINUE = HookOutcome()


class HookRegistry:
    def __init__(self):
        self._hooks: dict[str, list[Hook]] = {phase: [] for phase in HOOK_PHASES}

    def register(self, phase: str, callback: Hook) -> Hook:
        if phase not in self._hooks:
            raise FormConfigurationError(f'Unknown hook phase "{phase}"')
        if not callable(callback):
            raise FormConfigurationError(f'Hook for "{phase}" must be callable')
        self._hooks[phase].append(callback)
        return callback

    def registered(self, phase: str) -> tuple[Hook, ...]:
        if phase not in self._hooks:
            raise FormConfigurationError(f'Unknown hook phase "{phase}"')
        return tuple(self._hooks[phase])

    def call(self, phase: str, submission: "Submission") -> HookOutcome:
        for callback in self.registered(phase):
            result = callback(submission)
            if isinstance(result, Response):
                _LOG.info("hook halted phase=%s callback=%s", phase, getattr(callback, "__name__", repr(callback)))
                return HookOutcome(result)
        return CONTINUE
