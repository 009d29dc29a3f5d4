"""Request/response helpers layered on the bus call channel.

The bus itself never times out an ``invoke``; deadlines live here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .bus import MessageBus, get_bus
from .exceptions import HandlerNotFoundError, InvalidArgumentError, RequestTimeoutError

LOGGER = logging.getLogger(__name__)


async def request(
    topic: str,
    data: Any = None,
    *,
    timeout: float | None = None,
    require_handler: bool = False,
    bus: MessageBus | None = None,
) -> Any:
    """Invoke ``topic`` on the call channel and wait for its result.

    Args:
        topic: Call topic to invoke.
        data: Payload passed to the handler.
        timeout: Seconds to wait, or ``None`` to wait indefinitely.
        require_handler: Raise :class:`HandlerNotFoundError` instead of
            resolving to ``None`` when nothing is registered.
        bus: Bus to use; defaults to the process-wide instance.

    Raises:
        RequestTimeoutError: The handler did not finish in time.
    """
    if timeout is not None and timeout <= 0:
        raise InvalidArgumentError("timeout must be a positive number of seconds.")
    target = bus or get_bus()
    if require_handler and not target.check(topic).has_call_handler:
        raise HandlerNotFoundError(topic)

    future = target.invoke(topic, data)
    if timeout is None:
        return await future
    try:
        return await asyncio.wait_for(future, timeout)
    except TimeoutError as exc:
        # wait_for cancels the future on expiry; a TimeoutError raised by the
        # handler itself leaves it settled.
        if not future.cancelled():
            raise
        LOGGER.warning(
            "bridge.request.timeout",
            extra={"event": "bridge.request.timeout", "topic": topic, "timeout": timeout},
        )
        raise RequestTimeoutError(topic, timeout) from exc


class RequestBridge:
    """Call-channel client with a default deadline."""

    def __init__(
        self, bus: MessageBus | None = None, default_timeout: float | None = None
    ) -> None:
        if default_timeout is not None and default_timeout <= 0:
            raise InvalidArgumentError(
                "default_timeout must be a positive number of seconds."
            )
        self.bus = bus or get_bus()
        self.default_timeout = default_timeout

    @classmethod
    def from_config(
        cls, config: dict[str, Any], bus: MessageBus | None = None
    ) -> RequestBridge:
        """Build a bridge from the ``[bridge]`` section of a loaded config."""
        timeout = float(config.get("bridge", {}).get("default_timeout_seconds", 0))
        return cls(bus=bus, default_timeout=timeout or None)

    async def request(
        self,
        topic: str,
        data: Any = None,
        *,
        timeout: float | None = None,
        require_handler: bool = False,
    ) -> Any:
        return await request(
            topic,
            data,
            timeout=timeout if timeout is not None else self.default_timeout,
            require_handler=require_handler,
            bus=self.bus,
        )

    def notify(self, topic: str, data: Any = None) -> None:
        """Fire-and-forget broadcast on the same bus."""
        self.bus.publish(topic, data)
