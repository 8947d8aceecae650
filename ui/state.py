"""Screen modes of the desktop front-end and the moves allowed between them."""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class Mode(str, Enum):
    NORMAL = "normal"
    TEMPLATE_EDIT = "template_edit"
    RESTORE_OPENING = "restore_opening"
    RESTORE_SELECT = "restore_select"


_TRANSITIONS: Dict[Mode, FrozenSet[Mode]] = {
    Mode.NORMAL: frozenset({Mode.TEMPLATE_EDIT, Mode.RESTORE_OPENING}),
    Mode.TEMPLATE_EDIT: frozenset({Mode.NORMAL}),
    # opening fails back to normal, succeeds into the selection tree
    Mode.RESTORE_OPENING: frozenset({Mode.NORMAL, Mode.RESTORE_SELECT}),
    Mode.RESTORE_SELECT: frozenset({Mode.NORMAL}),
}


class InvalidTransition(ValueError):
    """Raised when the front-end asks for a mode change that is not defined."""


class ModeMachine:
    def __init__(self, mode: Mode = Mode.NORMAL) -> None:
        self._mode = mode

    @property
    def mode(self) -> Mode:
        return self._mode

    def can_transition(self, target: Mode) -> bool:
        return target in _TRANSITIONS[self._mode]

    def transition(self, target: Mode) -> Mode:
        if not self.can_transition(target):
            raise InvalidTransition(f"cannot move from {self._mode.value} to {target.value}")
        self._mode = target
        return self._mode

    def reset(self) -> None:
        self._mode = Mode.NORMAL


__all__ = ["InvalidTransition", "Mode", "ModeMachine"]
