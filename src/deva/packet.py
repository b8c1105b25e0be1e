"""Packet - request/response envelope exchanged between agents.

A packet is created per question, travels over the bus to the answering
agent and comes back on ``<key>:ask:<id>`` with its answer side filled in.
Packets are never persisted; they live for one request/response cycle.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Optional

from .profile import Profile
from .uid import uid

ASK_CHR = "#"
CMD_CHR = "!"
DEFAULT_METHOD = "question"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class QuestionMeta:
    key: str
    orig: str
    method: str
    params: list[str] = field(default_factory=list)


@dataclass
class Question:
    agent: Optional[Profile]
    client: Optional[Profile]
    meta: QuestionMeta
    text: str = ""
    data: Any = None
    created: int = field(default_factory=now_ms)


@dataclass
class AnswerMeta:
    key: str
    method: Optional[str]
    params: list[str] = field(default_factory=list)


@dataclass
class Answer:
    agent: Optional[Profile]
    client: Optional[Profile]
    meta: AnswerMeta
    text: Any = None
    html: Any = None
    data: Any = None
    # Set on error-tagged packets
    error: Optional[str] = None
    created: int = field(default_factory=now_ms)

    def apply_result(self, result: Any, *, mirror_html: bool = False) -> None:
        """Copy a method result into the answer.

        Mappings and objects contribute ``text``/``html``/``data``; any other
        value becomes the text. With ``mirror_html`` a plain value is also
        used as the html rendering.
        """
        if isinstance(result, Mapping):
            self.text = result.get("text")
            self.html = result.get("html")
            self.data = result.get("data")
        elif result is not None and not isinstance(result, (str, bytes, int, float, bool)):
            self.text = getattr(result, "text", None)
            self.html = getattr(result, "html", None)
            self.data = getattr(result, "data", None)
        else:
            self.text = result
            self.html = result if mirror_html else None


@dataclass
class Packet:
    id: str
    q: Optional[Question] = None
    a: Optional[Answer] = None
    created: int = field(default_factory=now_ms)

    @classmethod
    def new(cls, q: Optional[Question] = None) -> Packet:
        return cls(id=uid(), q=q)

    @property
    def method(self) -> Optional[str]:
        """Method named by the question side."""
        return self.q.meta.method if self.q else None

    def to_dict(self) -> dict[str, Any]:
        """Shallow dict view; profiles and payloads are not copied."""
        return _to_plain(self)


def _to_plain(value: Any) -> Any:
    if isinstance(value, Profile):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_plain(getattr(value, f.name)) for f in fields(value)}
    return value


@dataclass
class ParsedQuestion:
    """Result of splitting question text into routing fields."""

    key: str
    method: str
    params: list[str]
    text: str
    is_ask: bool = False
    is_cmd: bool = False


def parse_question(
    text: str,
    *,
    key: str,
    ask_chr: str = ASK_CHR,
    cmd_chr: str = CMD_CHR,
) -> ParsedQuestion:
    """Split question text into target key, method, params and free text.

    ``#other method:p1:p2 text`` asks agent ``other``, ``!method a:b text``
    runs a local method, and anything else goes to the local ``question``
    method with the whole text.
    """
    tokens = text.split(" ")
    head = tokens[0]
    second = tokens[1] if len(tokens) > 1 else ""

    if head.startswith(ask_chr):
        segments = second.split(":") if second else []
        method = segments[0] if segments and segments[0] else DEFAULT_METHOD
        return ParsedQuestion(
            key=head[len(ask_chr) :],
            method=method,
            params=segments[1:],
            text=" ".join(tokens[2:]).strip(),
            is_ask=True,
        )

    if head.startswith(cmd_chr):
        return ParsedQuestion(
            key=key,
            method=head[len(cmd_chr) :],
            params=second.split(":") if second else [],
            text=" ".join(tokens[1:]).strip(),
            is_cmd=True,
        )

    return ParsedQuestion(key=key, method=DEFAULT_METHOD, params=[], text=text)


__all__ = [
    "ASK_CHR",
    "CMD_CHR",
    "DEFAULT_METHOD",
    "Answer",
    "AnswerMeta",
    "Packet",
    "ParsedQuestion",
    "Question",
    "QuestionMeta",
    "now_ms",
    "parse_question",
]
