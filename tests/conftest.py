"""Test fixtures and configuration for deva tests.

Test Structure:
    tests/
    ├── conftest.py          # Shared fixtures
    ├── test_bus.py          # EventBus semantics
    ├── test_packet.py       # Packet and question parsing
    ├── test_lifecycle.py    # State events and lifecycle chain
    ├── test_question.py     # Local question and remote ask protocol
    ├── test_tree.py         # Inheritance, binding and fan-out
    ├── test_utilities.py    # status, hash and the error funnel
    ├── test_config.py       # deva.toml loading
    └── test_telemetry.py    # Tracing opt-in and spans

Running tests:
    pytest -v
"""

from typing import Any, Callable

import pytest

from deva import Deva, EventBus


@pytest.fixture
def bus() -> EventBus:
    """A fresh bus per test."""
    return EventBus()


@pytest.fixture
def make_deva(bus: EventBus) -> Callable[..., Deva]:
    """Build agents that share the test bus."""

    def factory(key: str = "buddy", name: str = "", cls: type = Deva, **opts: Any) -> Deva:
        opts.setdefault("events", bus)
        profile = {"key": key, "name": name or key.title(), "prompt": f"{key}>"}
        return cls(agent=profile, **opts)

    return factory


@pytest.fixture
def recorded(bus: EventBus) -> list[tuple[str, Any]]:
    """Every payload published on the global state/prompt/error topics, in order."""
    seen: list[tuple[str, Any]] = []
    for topic in ("state", "prompt", "error"):
        bus.listen(topic, lambda payload, topic=topic: seen.append((topic, payload)))
    return seen
