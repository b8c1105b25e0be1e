from __future__ import annotations

from typing import Any, Callable, Iterator


class Method:
    """A method table entry declared on an agent class.

    The handler receives exactly one Packet and returns (or resolves to)
    either a plain value used as answer text or a mapping/object with
    optional ``text``/``html``/``data``.
    """

    def __init__(self, name: str, description: str, func: Callable[..., Any]):
        self.name = name
        self.description = description
        self.func = func

    def __repr__(self) -> str:
        return f"Method({self.name!r})"


def method(name: str = "", description: str = ""):
    """Decorator to declare an agent method as a method table entry.

    Args:
        name: Method name used in questions (defaults to the function name)
        description: Human-readable description of what the method does

    Example:
        class Buddy(Deva):
            @method("hello", description="Greet the caller")
            async def hello(self, packet):
                return f"hello {packet.q.text}"

        await buddy.question("!hello world")
    """

    def wrapper(func: Callable[..., Any]):
        func.__deva_method__ = Method(
            name=name or func.__name__,
            description=description or func.__doc__ or "",
            func=func,
        )
        return func

    return wrapper


def declared_methods(cls: type) -> Iterator[tuple[str, Method]]:
    """Yield (attribute name, Method) for decorated methods, base classes first."""
    seen: set[str] = set()
    for klass in reversed(cls.__mro__):
        for attr, value in vars(klass).items():
            declared = getattr(value, "__deva_method__", None)
            if isinstance(declared, Method):
                seen.add(attr)
    for attr in sorted(seen):
        declared = getattr(getattr(cls, attr), "__deva_method__", None)
        if isinstance(declared, Method):
            yield attr, declared


__all__ = ["Method", "method", "declared_methods"]
