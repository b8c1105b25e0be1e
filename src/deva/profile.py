from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


@dataclass
class Profile:
    """Identity of an agent or of the client talking to it.

    ``translate`` and ``parse`` are optional text hooks; when present on an
    agent profile they are bound to the owning agent at init.
    """

    key: str = ""
    name: str = ""
    prompt: str = ""
    translate: Optional[Callable[..., Any]] = None
    parse: Optional[Callable[..., Any]] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Profile:
        known = {"key", "name", "prompt", "translate", "parse"}
        return cls(
            key=data.get("key", ""),
            name=data.get("name", ""),
            prompt=data.get("prompt", ""),
            translate=data.get("translate"),
            parse=data.get("parse"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    @classmethod
    def coerce(cls, value: Any) -> Optional[Profile]:
        """Accept a Profile, a mapping or None."""
        if value is None or value is False:
            return None
        if isinstance(value, Profile):
            return value
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise TypeError(f"Cannot build a Profile from {type(value).__name__}")

    def to_dict(self) -> dict[str, Any]:
        data = {"key": self.key, "name": self.name, "prompt": self.prompt}
        data.update(self.extra)
        return data


__all__ = ["Profile"]
