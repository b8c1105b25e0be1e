"""Deva - lifecycle managed, message addressable agent.

This module provides the Deva class - the base every agent extends. A Deva:
- moves through a fixed lifecycle (init -> start -> enter -> done, stop -> exit -> done)
- answers questions from local callers and asks from other agents over the bus
- owns a tree of child agents that inherit its bus, config and security
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import os
import types
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, Optional

from opentelemetry import trace

from .bus import EventBus, Handler
from .config import DEFAULT_ASK_TIMEOUT_SEC, DevaConfig, TelemetryConfig
from .errors import AskTimeoutError, MissingPacketError, MissingProfileError, NoTextError
from .method import declared_methods
from .packet import (
    ASK_CHR,
    CMD_CHR,
    Answer,
    AnswerMeta,
    Packet,
    Question,
    QuestionMeta,
    now_ms,
    parse_question,
)
from .profile import Profile
from .states import LOADED, OFFLINE, STOPPED, DevaState
from .uid import uid as new_uid

logger = logging.getLogger(__name__)

# Get tracer for question/ask spans
tracer = trace.get_tracer(__name__)

Rejector = Callable[[BaseException], Any]


async def _resolve(value: Any) -> Any:
    """Await ``value`` if it is awaitable; hooks and handlers may be sync."""
    if inspect.isawaitable(value):
        return await value
    return value


def _raise(err: BaseException) -> Any:
    raise err


def _takes_self(value: Any) -> bool:
    """True for plain functions whose first parameter is named ``self``."""
    if not inspect.isfunction(value):
        return False
    try:
        params = list(inspect.signature(value).parameters)
    except (TypeError, ValueError):
        return False
    return bool(params) and params[0] == "self"


def _format_time(moment: datetime) -> str:
    # e.g. "Oct 19, 2026, 2:51:07 PM"
    hour = moment.hour % 12 or 12
    return f"{moment:%b} {moment.day}, {moment.year}, {hour}:{moment:%M:%S %p}"


class Deva:
    """Base agent.

    Agents are built either by subclassing (hooks and ``@method`` entries as
    class members) or by passing tables to the constructor. Method table
    handlers take exactly one Packet.

    Example:
        class Buddy(Deva):
            async def on_init(self):
                return await self.start()

            @method("hello")
            async def hello(self, packet):
                return f"hello {packet.q.text}"

        bus = EventBus()
        buddy = Buddy(agent={"key": "buddy", "name": "Buddy"}, events=bus)
        await buddy.init()

        answer = await buddy.question("!hello world")
        print(answer.a.text)  # hello world
    """

    # Fields copied by reference from a parent onto each child
    inherit = ("events", "config", "lib", "security", "client")
    # Tables whose `self`-taking functions get bound to the owning agent
    bind = ("listeners", "methods", "func", "lib", "security", "agent", "client")

    def __init__(
        self,
        *,
        config: Any = None,
        events: Optional[EventBus] = None,
        lib: Optional[dict[str, Any]] = None,
        agent: Any = None,
        client: Any = None,
        devas: Optional[Mapping[str, Deva]] = None,
        vars: Optional[dict[str, Any]] = None,
        listeners: Optional[Mapping[str, Handler]] = None,
        modules: Optional[dict[str, Any]] = None,
        func: Optional[Mapping[str, Callable[..., Any]]] = None,
        methods: Optional[Mapping[str, Callable[..., Any]]] = None,
        security: Any = None,
        max_listeners: int = 0,
        **opts: Any,
    ):
        """Initialize agent.

        Args:
            config: Shared configuration object (DevaConfig or any mapping/object)
            events: Bus to talk on (a new EventBus if omitted)
            lib: Library functions, shared with children
            agent: Agent profile (Profile or mapping with key/name/prompt)
            client: Client profile, shared with children
            devas: Child agents keyed by agent key
            vars: Private scratch state
            listeners: Extra topic -> handler subscriptions made at init
            modules: Third party modules used by the agent
            func: Local helper functions
            methods: Method table, name -> handler(packet)
            security: Security capability, shared with children
            max_listeners: Bus listener cap (0 = unlimited)
            **opts: Copied onto the instance (hooks such as on_start are bound)
        """
        self.id: str = new_uid()
        self._state = DevaState.OFFLINE
        # Activation time; None while inactive
        self.active: Optional[datetime] = None
        # Bus the state/declared listeners were registered on
        self._wired: Optional[EventBus] = None
        self.security = security
        self.config = config if config is not None else DevaConfig()
        self.events = events if events is not None else EventBus()
        self.lib = lib if lib is not None else {}
        self.agent = Profile.coerce(agent)
        self.client = Profile.coerce(client)
        self.devas: dict[str, Deva] = dict(devas) if devas else {}
        self.vars = vars if vars is not None else {}
        self.listeners: dict[str, Handler] = dict(listeners) if listeners else {}
        self.modules = modules if modules is not None else {}
        self.func: dict[str, Callable[..., Any]] = dict(func) if func else {}
        self.methods: dict[str, Callable[..., Any]] = dict(methods) if methods else {}
        self.max_listeners = max_listeners

        for attr, declared in declared_methods(type(self)):
            self.methods.setdefault(declared.name, getattr(self, attr))

        for name, value in opts.items():
            if isinstance(getattr(type(self), name, None), property) or getattr(self, name, None):
                continue
            setattr(self, name, self._bound(value))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} key={self.key!r} state={self._state.label}>"

    # ==========================================
    # Identity and settings
    # ==========================================

    @property
    def key(self) -> str:
        return self.agent.key if self.agent else ""

    @property
    def ask_chr(self) -> str:
        return self._setting("ask_chr", ASK_CHR)

    @property
    def cmd_chr(self) -> str:
        return self._setting("cmd_chr", CMD_CHR)

    @property
    def ask_timeout(self) -> Optional[float]:
        """Seconds to wait for a remote answer; None waits forever."""
        timeout = float(self._setting("ask_timeout_sec", DEFAULT_ASK_TIMEOUT_SEC))
        return timeout if timeout > 0 else None

    def _setting(self, name: str, default: Any) -> Any:
        if isinstance(self.config, Mapping):
            value = self.config.get(name)
        else:
            value = getattr(self.config, name, None)
        return default if value is None else value

    def uid(self) -> str:
        """Generate a new unique id."""
        return new_uid()

    # ==========================================
    # State
    # ==========================================

    @property
    def state(self) -> DevaState:
        """Current lifecycle state."""
        return self._state

    @state.setter
    def state(self, value: DevaState) -> None:
        # Every transition is broadcast so security/monitoring can watch it
        self._state = DevaState(value)
        self.talk(
            "state",
            {
                "uid": self.id,
                "agent": self.agent,
                "state": self._state.label,
                "created": now_ms(),
            },
        )
        self.prompt(self._state.label)

    def prompt(self, text: Any) -> None:
        """Emit a global prompt notification."""
        self.talk("prompt", {"text": text, "prompt": self.agent.prompt if self.agent else None})

    # ==========================================
    # Bus
    # ==========================================

    def talk(self, topic: str, payload: Any = None) -> bool:
        return self.events.talk(topic, payload)

    def listen(self, topic: str, handler: Handler) -> None:
        self.events.listen(topic, handler)

    def once(self, topic: str, handler: Handler) -> None:
        self.events.once(topic, handler)

    def ignore(self, topic: str, handler: Handler) -> None:
        self.events.ignore(topic, handler)

    # ==========================================
    # Init wiring
    # ==========================================

    def _assign_inherit(self) -> None:
        for child in self.devas.values():
            self._inherit_into(child)

    def _inherit_into(self, child: Deva) -> None:
        for name in self.inherit:
            setattr(child, name, getattr(self, name))

    def _assign_bind(self) -> None:
        for name in self.bind:
            table = getattr(self, name, None)
            if table:
                self._bind_table(table)

        if self.agent:
            for hook in ("translate", "parse"):
                fn = getattr(self.agent, hook, None)
                if callable(fn):
                    setattr(self.agent, hook, self._bound(fn))

    def _bind_table(self, table: Any) -> None:
        if isinstance(table, dict):
            for name, value in list(table.items()):
                table[name] = self._bound(value)
            return

        attrs = getattr(table, "__dict__", None)
        if attrs is None:
            return
        for name, value in list(attrs.items()):
            if _takes_self(value):
                setattr(table, name, self._bound(value))

    def _bound(self, value: Any) -> Any:
        # Already bound callables keep their owner
        if _takes_self(value):
            return types.MethodType(value, self)
        return value

    def _assign_listeners(self) -> None:
        if not self.key:
            raise MissingProfileError(f"{type(self).__name__} needs an agent profile with a key")
        # Subscribed once per bus; re-running init must not double deliveries
        if self._wired is self.events:
            return
        self._wired = self.events

        for st in DevaState:
            self.listen(f"{self.key}:{st.value}", functools.partial(self._dispatch_state, st))

        for topic, handler in self.listeners.items():
            self.listen(topic, handler)

    def _dispatch_state(self, st: DevaState, payload: Any = None) -> Any:
        """Route a ``<key>:<state>`` event to the agent method of that name."""
        if not inspect.isfunction(getattr(type(self), st.value, None)):
            logger.debug("[deva] %s has no handler for %s", self.key, st.value)
            return None
        handler = getattr(self, st.value)
        return handler() if payload is None else handler(payload)

    def _maybe_init_telemetry(self) -> None:
        telemetry = TelemetryConfig.coerce(self._setting("telemetry", None))
        if not (telemetry.enabled or os.getenv("DEVA_TELEMETRY", "0") == "1"):
            return

        from .telemetry import tracing

        try:
            tracing.init_telemetry(telemetry, agent_key=self.key)
        except Exception as e:
            logger.warning(
                "[deva] Failed to initialize telemetry for %s: %s. Continuing without tracing.",
                self.key,
                e,
            )

    # ==========================================
    # Lifecycle
    # ==========================================

    async def init(self) -> Any:
        """Wire the agent up, then run ``on_init`` or ``start``.

        Order: inherit to children, bind tables, register listeners.
        Any failure propagates to the caller.
        """
        self.state = DevaState.INIT
        max_listeners = self.max_listeners or self._setting("max_listeners", 0)
        if max_listeners:
            self.events.set_max_listeners(max_listeners)
        self._maybe_init_telemetry()

        self._assign_inherit()
        self._assign_bind()
        self._assign_listeners()

        return await self._hook_or("on_init", self.start)

    async def start(self) -> Any:
        if self.active:
            return OFFLINE
        self.state = DevaState.START
        self.active = datetime.now()
        logger.info("[deva] %s started", self.key)
        return await self._hook_or("on_start", self.enter)

    async def stop(self) -> Any:
        if not self.active:
            return OFFLINE
        self.state = DevaState.STOP
        try:
            # exit/done still see the agent as active
            return await self._hook_or("on_stop", self.exit)
        finally:
            self.active = None
            logger.info("[deva] %s stopped", self.key)

    async def enter(self) -> Any:
        if not self.active:
            return OFFLINE
        self.state = DevaState.ENTER
        return await self._hook_or("on_enter", self.done, self._state.label)

    async def exit(self) -> Any:
        if not self.active:
            return OFFLINE
        self.state = DevaState.EXIT
        return await self._hook_or("on_exit", self.done, self._state.label)

    async def done(self, msg: Any = None) -> Any:
        if not self.active:
            return OFFLINE
        self.state = DevaState.DONE
        on_done = getattr(self, "on_done", None)
        if callable(on_done):
            return await _resolve(on_done())
        return {"message": msg or self._state.label, "agent": self.agent}

    async def _hook_or(self, hook_name: str, fallback: Callable[..., Any], *args: Any) -> Any:
        hook = getattr(self, hook_name, None)
        if callable(hook):
            return await _resolve(hook())
        return await fallback(*args)

    # ==========================================
    # Question / Ask
    # ==========================================

    async def question(self, text: Optional[str] = None, data: Any = None) -> Any:
        """Ask this agent, or another agent on the bus, a question.

        ``#key method:p1:p2 text`` asks agent ``key`` over the bus,
        ``!method params text`` runs a local method, anything else goes to
        the local ``question`` method.

        Args:
            text: Question text
            data: Arbitrary payload carried as ``q.data``

        Returns:
            The answered Packet, or OFFLINE if the agent is not running

        Raises:
            NoTextError: If text is empty
            AskTimeoutError: If a remote agent does not answer in time
        """
        if not text:
            raise NoTextError()
        if not self.active:
            return OFFLINE

        self.state = DevaState.QUESTION
        parsed = parse_question(text, key=self.key, ask_chr=self.ask_chr, cmd_chr=self.cmd_chr)
        packet = Packet.new(
            Question(
                agent=self.agent,
                client=self.client,
                meta=QuestionMeta(
                    key=parsed.key,
                    orig=text,
                    method=parsed.method,
                    params=parsed.params,
                ),
                text=parsed.text,
                data=data,
            )
        )

        with tracer.start_as_current_span(
            "deva.question",
            attributes={
                "deva.key": self.key,
                "deva.target": parsed.key,
                "deva.method": parsed.method,
                "packet.id": packet.id,
            },
        ) as span:
            try:
                if parsed.is_ask:
                    return await self._ask_remote(packet, parsed.key)

                handler = self.methods.get(parsed.method)
                if not callable(handler):
                    return self._method_not_found(packet)

                result = await _resolve(handler(packet))
                packet.a = Answer(
                    agent=self.agent,
                    client=self.client,
                    meta=AnswerMeta(key=self.key, method=parsed.method, params=parsed.params),
                )
                # Plain results double as html on the local path
                packet.a.apply_result(result, mirror_html=True)
                self.state = DevaState.ANSWER
                return packet
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                span.record_exception(e)
                return await self.error(e, packet, reject=_raise)

    async def _ask_remote(self, packet: Packet, key: str) -> Packet:
        self.state = DevaState.ASK
        reply: asyncio.Future[Packet] = asyncio.get_running_loop().create_future()
        reply_topic = f"{key}:ask:{packet.id}"

        def on_reply(answer: Packet) -> None:
            if not reply.done():
                reply.set_result(answer)

        # Subscribe before publishing so a synchronous reply cannot be missed
        self.once(reply_topic, on_reply)
        if not self.talk(f"{key}:ask", packet):
            logger.warning("[deva] No agent listening on %s:ask", key)

        timeout = self.ask_timeout
        try:
            return await asyncio.wait_for(reply, timeout=timeout)
        except asyncio.TimeoutError:
            raise AskTimeoutError(key, packet.id, timeout or 0.0) from None
        finally:
            # No-op once the reply arrived; covers timeout and cancellation
            self.ignore(reply_topic, on_reply)

    async def ask(self, packet: Packet) -> Any:
        """Answer a packet published on ``<key>:ask`` by another agent.

        The answered packet is published on ``<key>:ask:<packet id>``, also
        when the method is unknown or fails.
        """
        if not self.active:
            return OFFLINE

        self.state = DevaState.ASK
        reply_topic = f"{self.key}:ask:{packet.id}"

        with tracer.start_as_current_span(
            "deva.ask",
            attributes={"deva.key": self.key, "packet.id": packet.id},
        ) as span:
            try:
                method = packet.method
                span.set_attribute("deva.method", method or "")
                params = list(packet.q.meta.params) if packet.q else []
                packet.a = Answer(
                    agent=self.agent,
                    client=self.client,
                    meta=AnswerMeta(key=self.key, method=method, params=params),
                )

                handler = self.methods.get(method)
                if not callable(handler):
                    await asyncio.sleep(0)
                    packet.a.text = f"INVALID METHOD ({method})"
                    self.talk(reply_topic, packet)
                    return packet

                result = await _resolve(handler(packet))
                packet.a.apply_result(result)
                self.talk(reply_topic, packet)
                return packet
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                span.record_exception(e)
                self.state = DevaState.ERROR
                if packet.a is None:
                    # Malformed question side; reply with a bare answer
                    packet.a = Answer(
                        agent=self.agent,
                        client=self.client,
                        meta=AnswerMeta(key=self.key, method=None),
                    )
                packet.a.error = str(e)
                self.talk(reply_topic, packet)
                return await self.error(e, packet)

    def _method_not_found(self, packet: Packet) -> Packet:
        method = packet.method
        packet.a = Answer(
            agent=self.agent,
            client=self.client,
            meta=AnswerMeta(key=self.key, method=method),
            text=f"{method} is NOT a valid method.",
        )
        return packet

    # ==========================================
    # Children
    # ==========================================

    async def load(self, deva: Deva, key: Optional[str] = None) -> None:
        """Add a child agent and give it the inherited fields."""
        key = key or deva.key
        if not key:
            raise MissingProfileError("Cannot load a deva without a key")
        self.devas[key] = deva
        self._inherit_into(deva)

    async def unload(self, key: str) -> None:
        self.devas.pop(key, None)

    async def init_devas(self) -> str:
        """Init every direct child; the first failure is raised."""
        self._assign_inherit()
        await asyncio.gather(*(deva.init() for deva in self.devas.values()))
        return LOADED

    async def stop_devas(self) -> str:
        """Stop every direct child; the first failure is raised."""
        await asyncio.gather(*(deva.stop() for deva in self.devas.values()))
        return STOPPED

    # ==========================================
    # Utilities
    # ==========================================

    async def status(self, addtl: Optional[str] = None) -> Any:
        if not self.active:
            return OFFLINE
        name = self.agent.name if self.agent else self.key
        text = f"{name} is ONLINE since {_format_time(self.active)}"
        if addtl:
            text = f"{text}\n{addtl}"
        return {"text": text}

    async def hash(self, packet: Optional[Packet]) -> dict[str, str]:
        """Accumulating hash buffer kept in ``vars["hash"]``.

        ``clear`` resets it, ``add <value>`` appends, anything else views.
        """
        if not self.vars.get("hash"):
            self.vars["hash"] = "0x"
        if not packet:
            raise MissingPacketError()

        params = (packet.q.text or "").split(" ") if packet.q else [""]
        command = params[0] or "view"
        if command == "clear":
            self.vars["hash"] = "0x"
        elif command == "add":
            value = params[1] if len(params) > 1 else ""
            self.vars["hash"] = f"{self.vars['hash']}{value}"

        current = self.vars["hash"]
        return {"text": current, "html": f'<div class="hash">{current}</div>'}

    async def error(
        self,
        err: Any,
        packet: Optional[Packet] = None,
        reject: Optional[Rejector] = None,
    ) -> Any:
        """Unified error funnel.

        Broadcasts a global ``error`` event, then hands off to ``on_error``
        if defined, else to ``reject``, else returns False.
        """
        self.state = DevaState.ERROR
        self.talk(
            "error",
            {
                "id": new_uid(),
                "agent": self.agent,
                "client": self.client,
                "error": str(err),
                "data": packet,
                "created": now_ms(),
            },
        )
        logger.error(
            "[deva] %s error: %s",
            self.key,
            err,
            exc_info=err if isinstance(err, BaseException) else None,
        )

        on_error = getattr(self, "on_error", None)
        if callable(on_error):
            return await _resolve(on_error(err, packet, reject))
        if reject is not None:
            return reject(err)
        return False


__all__ = ["Deva"]
