"""Lifecycle states and sentinel messages.

Any state may follow any other; there is no transition table. Setting a
state on an agent publishes a ``state`` event and a ``prompt`` event.
"""

from __future__ import annotations

from enum import Enum

OFFLINE = "AGENT OFFLINE"
LOADED = "DEVAS LOADED"
STOPPED = "DEVAS STOPPED"
NOTEXT = "NO TEXT"


class DevaState(str, Enum):
    """Lifecycle state of an agent.

    The value doubles as the bus topic suffix (``<key>:<value>``) and as the
    name of the agent method the default state listener dispatches to.
    """

    OFFLINE = "offline"
    INIT = "init"
    START = "start"
    STOP = "stop"
    ENTER = "enter"
    EXIT = "exit"
    DONE = "done"
    WAIT = "wait"
    ASK = "ask"
    QUESTION = "question"
    ANSWER = "answer"
    ERROR = "error"
    SECURITY = "security"
    MEDIC = "medic"

    @property
    def label(self) -> str:
        """Human readable uppercase label."""
        return _LABELS[self]


_LABELS = {
    DevaState.OFFLINE: "OFFLINE",
    DevaState.INIT: "INITIALIZE",
    DevaState.START: "START",
    DevaState.STOP: "STOP",
    DevaState.ENTER: "ENTER",
    DevaState.EXIT: "EXIT",
    DevaState.DONE: "DONE",
    DevaState.WAIT: "WAITING",
    DevaState.ASK: "ASK",
    DevaState.QUESTION: "QUESTION",
    DevaState.ANSWER: "ANSWER",
    DevaState.ERROR: "ERROR",
    DevaState.SECURITY: "SECURITY",
    DevaState.MEDIC: "MEDICAL",
}


__all__ = [
    "DevaState",
    "OFFLINE",
    "LOADED",
    "STOPPED",
    "NOTEXT",
]
