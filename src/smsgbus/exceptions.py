"""Domain exception hierarchy for the message bus."""

from __future__ import annotations

from typing import Any


class MessageBusError(RuntimeError):
    """Base class for all bus-level errors."""


class InvalidArgumentError(MessageBusError, ValueError):
    """Raised when a topic is not a non-empty string or a handler is not callable."""


class DuplicateRegistrationWarning(UserWarning):
    """Emitted when a call handler is registered for an already-bound topic."""


class HandlerExecutionError(MessageBusError):
    """Report of a failure raised by a user handler.

    The original exception is kept as ``__cause__`` and as ``error``.
    """

    def __init__(self, topic: str, channel: str, error: BaseException) -> None:
        super().__init__(f"{channel} handler for {topic!r} failed: {error}")
        self.topic = topic
        self.channel = channel
        self.error = error
        self.__cause__ = error


class RequestTimeoutError(MessageBusError, TimeoutError):
    """Raised when a bridged request does not complete before its deadline."""

    def __init__(self, topic: str, timeout: float) -> None:
        super().__init__(f"request {topic!r} timed out after {timeout:g}s")
        self.topic = topic
        self.timeout = timeout


class HandlerNotFoundError(MessageBusError, LookupError):
    """Raised when a request requires a call handler and none is registered."""

    def __init__(self, topic: str) -> None:
        super().__init__(f"no call handler registered for {topic!r}")
        self.topic = topic


class ModuleLoadError(MessageBusError):
    """Raised when a bus module cannot be attached."""

    def __init__(self, name: str, reason: Any) -> None:
        super().__init__(f"unable to load module {name!r}: {reason}")
        self.name = name


class ConfigValidationError(MessageBusError):
    """Raised when configuration cannot be validated safely."""
