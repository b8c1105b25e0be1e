"""deva - composable, message-driven agents.

A Deva is a long-lived unit that moves through a fixed lifecycle, answers
structured questions from local callers and from other agents on a shared
bus, and can own a tree of child agents started and stopped as a group.

Quick Start:
    ```python
    from deva import Deva, EventBus, method

    class Buddy(Deva):
        @method("hello", description="Greet the caller")
        async def hello(self, packet):
            return f"hello {packet.q.text}"

    bus = EventBus()
    buddy = Buddy(agent={"key": "buddy", "name": "Buddy"}, events=bus)
    caller = Deva(agent={"key": "caller", "name": "Caller"}, events=bus)
    await buddy.init()
    await caller.init()

    local = await buddy.question("!hello world")        # local method
    remote = await caller.question("#buddy hello world")  # ask over the bus
    ```

Module structure:
    - agent: Deva base class (lifecycle, question/ask, tree fan-out)
    - bus: EventBus publish/subscribe channel
    - packet: Packet envelope and question parsing
    - states: Lifecycle states and sentinel messages
    - method: @method decorator for method tables
    - config: deva.toml loading
    - telemetry: OpenTelemetry tracing
"""

from .agent import Deva
from .bus import EventBus
from .config import DevaConfig, TelemetryConfig, load_config
from .errors import (
    AskTimeoutError,
    DevaError,
    MissingPacketError,
    MissingProfileError,
    NoTextError,
)
from .method import Method, method
from .packet import Answer, AnswerMeta, Packet, Question, QuestionMeta, parse_question
from .profile import Profile
from .states import LOADED, NOTEXT, OFFLINE, STOPPED, DevaState
from .telemetry import init_telemetry, shutdown_telemetry
from .uid import uid

__version__ = "0.1.0"

__all__ = [
    # Agent
    "Deva",
    "EventBus",
    "Profile",
    # Packet
    "Packet",
    "Question",
    "QuestionMeta",
    "Answer",
    "AnswerMeta",
    "parse_question",
    # Methods
    "Method",
    "method",
    # States
    "DevaState",
    "OFFLINE",
    "LOADED",
    "STOPPED",
    "NOTEXT",
    # Errors
    "DevaError",
    "NoTextError",
    "MissingPacketError",
    "MissingProfileError",
    "AskTimeoutError",
    # Config
    "DevaConfig",
    "TelemetryConfig",
    "load_config",
    # Telemetry
    "init_telemetry",
    "shutdown_telemetry",
    "uid",
]
