"""Unique id generator shared by agents and packets."""

from __future__ import annotations

import uuid


def uid() -> str:
    """Return a fresh random identifier (uuid4 hex)."""
    return uuid.uuid4().hex


__all__ = ["uid"]
