"""Process-wide message bus with broadcast and call channels.

Usage:
    bus = get_bus()

    # Broadcast: every subscriber runs, return values are ignored
    bus.subscribe("file.changed", on_file_changed)
    bus.publish("file.changed", {"file": "/path/to/file"})

    # Call: one handler per topic, the caller gets a result
    bus.register("user.lookup", lookup_user)
    user = bus.invoke_sync("user.lookup", {"id": 7})
    user = await bus.invoke("user.lookup", {"id": 7})
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
import inspect
import logging
import threading
from typing import Any
import warnings

from .exceptions import (
    DuplicateRegistrationWarning,
    HandlerExecutionError,
    InvalidArgumentError,
)

LOGGER = logging.getLogger(__name__)

Handler = Callable[..., Any]

BROADCAST = "broadcast"
CALL = "call"


def _validate_topic(topic: Any) -> None:
    if not isinstance(topic, str) or not topic.strip():
        raise InvalidArgumentError("Topic must be a non-empty string.")


def _validate_handler(handler: Any) -> None:
    if not callable(handler):
        raise InvalidArgumentError("Handler must be callable.")


@dataclass(frozen=True, eq=False)
class _Binding:
    handler: Handler
    context: Any = None

    def matches(self, handler: Handler, context: Any) -> bool:
        # Bound methods are recreated on every attribute access, so compare
        # handlers by equality and receivers by identity.
        return self.handler == handler and self.context is context

    def __call__(self, data: Any) -> Any:
        if self.context is None:
            return self.handler(data)
        return self.handler(self.context, data)


@dataclass(frozen=True, eq=False)
class Subscription(_Binding):
    """One entry in a topic's broadcast listener list."""


@dataclass(frozen=True, eq=False)
class Registration(_Binding):
    """The single call handler bound to a topic."""


@dataclass(frozen=True)
class TopicStatus:
    """Snapshot returned by :meth:`MessageBus.check`."""

    subscriber_count: int
    has_call_handler: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "subscriber_count": self.subscriber_count,
            "has_call_handler": self.has_call_handler,
        }


@dataclass(frozen=True)
class _Outcome:
    value: Any = None
    error: Exception | None = None


class MessageBus:
    """In-process bus offering broadcast fan-out and request/response calls.

    Only one instance exists per process: constructing the class again
    returns the shared instance with its registrations intact. Use
    :meth:`clear_all_subscriptions` and :meth:`clear_all_registrations`
    to reset it.

    Handlers receive the event data as their only argument. When a
    ``context`` is supplied it is passed first, as the receiver, so an
    unbound method can be subscribed together with the object it belongs to.
    """

    _instance: MessageBus | None = None
    _instance_lock = threading.Lock()

    _listeners: dict[str, list[Subscription]]
    _calls: dict[str, Registration]
    _lock: threading.RLock

    def __new__(cls) -> MessageBus:
        with cls._instance_lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._listeners = {}
                instance._calls = {}
                instance._lock = threading.RLock()
                cls._instance = instance
                LOGGER.debug("bus.created", extra={"event": "bus.created"})
        return cls._instance

    @property
    def listeners(self) -> dict[str, tuple[Subscription, ...]]:
        """Copy of the broadcast registry."""
        with self._lock:
            return {topic: tuple(subs) for topic, subs in self._listeners.items()}

    @property
    def calls(self) -> dict[str, Registration]:
        """Copy of the call registry."""
        with self._lock:
            return dict(self._calls)

    # Broadcast channel

    def subscribe(
        self, topic: str, handler: Handler, context: Any = None
    ) -> MessageBus:
        """Append a broadcast subscription for ``topic``.

        Subscribing the same handler and context twice yields two entries
        that both fire on publish.
        """
        _validate_topic(topic)
        _validate_handler(handler)
        with self._lock:
            self._listeners.setdefault(topic, []).append(
                Subscription(handler, context)
            )
        LOGGER.debug("bus.subscribed", extra={"event": "bus.subscribed", "topic": topic})
        return self

    def publish(self, topic: str, data: Any = None) -> MessageBus:
        """Deliver ``data`` to every subscriber of ``topic`` in order.

        Runs in the caller's thread. A failing subscriber is logged and
        skipped; the exception never reaches the publisher. Events for a
        topic without subscribers are dropped.
        """
        _validate_topic(topic)
        with self._lock:
            subscriptions = tuple(self._listeners.get(topic, ()))
        if not subscriptions:
            return self

        for subscription in subscriptions:
            self._execute(topic, BROADCAST, subscription, data)
        return self

    def unsubscribe(
        self, topic: str, handler: Handler, context: Any = None
    ) -> MessageBus:
        """Remove every subscription matching ``handler`` and ``context``."""
        _validate_topic(topic)
        _validate_handler(handler)
        with self._lock:
            subscriptions = self._listeners.get(topic)
            if subscriptions is None:
                return self
            remaining = [s for s in subscriptions if not s.matches(handler, context)]
            if remaining:
                self._listeners[topic] = remaining
            else:
                del self._listeners[topic]
        LOGGER.debug(
            "bus.unsubscribed", extra={"event": "bus.unsubscribed", "topic": topic}
        )
        return self

    def clear_all_subscriptions(self) -> MessageBus:
        with self._lock:
            self._listeners.clear()
        return self

    # Call channel

    def register(
        self, topic: str, handler: Handler, context: Any = None
    ) -> MessageBus:
        """Bind the call handler for ``topic``.

        An existing registration is never replaced: the second attempt emits
        a :class:`DuplicateRegistrationWarning` and leaves the bus unchanged.
        """
        _validate_topic(topic)
        _validate_handler(handler)
        with self._lock:
            if topic in self._calls:
                duplicate = True
            else:
                self._calls[topic] = Registration(handler, context)
                duplicate = False

        if duplicate:
            LOGGER.warning(
                "bus.call.duplicate",
                extra={"event": "bus.call.duplicate", "topic": topic},
            )
            warnings.warn(
                f"Call handler for {topic!r} is already registered; "
                "skipping duplicate registration.",
                DuplicateRegistrationWarning,
                stacklevel=2,
            )
        else:
            LOGGER.debug(
                "bus.call.registered",
                extra={"event": "bus.call.registered", "topic": topic},
            )
        return self

    def invoke(self, topic: str, data: Any = None) -> asyncio.Future[Any]:
        """Run the call handler for ``topic`` on a later loop iteration.

        Returns a future bound to the running event loop. It resolves to
        ``None`` right away when no handler is registered; otherwise it is
        still pending when this method returns. Awaitable handler results
        are chained, so the future settles with their value or failure.
        """
        _validate_topic(topic)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        with self._lock:
            registration = self._calls.get(topic)
        if registration is None:
            future.set_result(None)
            return future

        loop.call_soon(self._run_deferred, topic, registration, data, future)
        return future

    def invoke_sync(self, topic: str, data: Any = None) -> Any:
        """Run the call handler for ``topic`` now and return its result.

        Returns ``None`` when no handler is registered. Handler exceptions are
        logged and re-raised.
        """
        _validate_topic(topic)
        with self._lock:
            registration = self._calls.get(topic)
        if registration is None:
            return None

        outcome = self._execute(topic, CALL, registration, data)
        if outcome.error is not None:
            raise outcome.error
        return outcome.value

    def unregister(
        self, topic: str, handler: Handler | None = None, context: Any = None
    ) -> MessageBus:
        """Remove the call handler for ``topic``.

        Without ``handler`` any registration is removed. With it, the
        registration is removed only if both handler and context match.
        """
        _validate_topic(topic)
        if handler is not None:
            _validate_handler(handler)
        with self._lock:
            registration = self._calls.get(topic)
            if registration is None:
                return self
            if handler is None or registration.matches(handler, context):
                del self._calls[topic]
                LOGGER.debug(
                    "bus.call.unregistered",
                    extra={"event": "bus.call.unregistered", "topic": topic},
                )
        return self

    def clear_all_registrations(self) -> MessageBus:
        with self._lock:
            self._calls.clear()
        return self

    # Introspection

    def check(self, topic: str) -> TopicStatus:
        """Report how ``topic`` is bound on both channels."""
        _validate_topic(topic)
        with self._lock:
            return TopicStatus(
                subscriber_count=len(self._listeners.get(topic, ())),
                has_call_handler=topic in self._calls,
            )

    # Handler invocation

    def _execute(
        self, topic: str, channel: str, binding: _Binding, data: Any
    ) -> _Outcome:
        try:
            return _Outcome(value=binding(data))
        except Exception as exc:
            self._report(topic, channel, exc)
            return _Outcome(error=exc)

    def _report(self, topic: str, channel: str, exc: BaseException) -> None:
        error = HandlerExecutionError(topic, channel, exc)
        LOGGER.error(
            "bus.handler.failed",
            exc_info=exc,
            extra={
                "event": "bus.handler.failed",
                "topic": topic,
                "channel": channel,
                "error_type": type(exc).__name__,
                "error": str(error),
            },
        )

    def _run_deferred(
        self,
        topic: str,
        registration: Registration,
        data: Any,
        future: asyncio.Future[Any],
    ) -> None:
        outcome = self._execute(topic, CALL, registration, data)
        if outcome.error is not None:
            if not future.done():
                future.set_exception(outcome.error)
            return

        result = outcome.value
        if inspect.isawaitable(result):
            inner = asyncio.ensure_future(result)
            inner.add_done_callback(partial(self._settle_from_inner, topic, future))
            return
        if not future.done():
            future.set_result(result)

    def _settle_from_inner(
        self, topic: str, future: asyncio.Future[Any], inner: asyncio.Future[Any]
    ) -> None:
        if inner.cancelled():
            future.cancel()
            return
        exc = inner.exception()
        if exc is not None:
            self._report(topic, CALL, exc)
            if not future.done():
                future.set_exception(exc)
            return
        if not future.done():
            future.set_result(inner.result())


def get_bus() -> MessageBus:
    """Return the process-wide bus, creating it on first use."""
    return MessageBus()
