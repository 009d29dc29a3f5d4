"""Top-level package for smsgbus."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .bus import MessageBus, Registration, Subscription, TopicStatus, get_bus
from .exceptions import (
    DuplicateRegistrationWarning,
    HandlerExecutionError,
    HandlerNotFoundError,
    InvalidArgumentError,
    MessageBusError,
    ModuleLoadError,
    RequestTimeoutError,
)

if TYPE_CHECKING:
    from .bridge import RequestBridge, request
    from .config import load_config
    from .loadtest import LoadTester
    from .modules import BusModule, ModuleHost

__all__ = [
    "BusModule",
    "DuplicateRegistrationWarning",
    "HandlerExecutionError",
    "HandlerNotFoundError",
    "InvalidArgumentError",
    "LoadTester",
    "MessageBus",
    "MessageBusError",
    "ModuleHost",
    "ModuleLoadError",
    "Registration",
    "RequestBridge",
    "RequestTimeoutError",
    "Subscription",
    "TopicStatus",
    "get_bus",
    "load_config",
    "request",
]


def __getattr__(name: str) -> Any:
    """Lazily import the collaborators so the core bus stays dependency-free at import time."""
    if name in {"RequestBridge", "request"}:
        from .bridge import RequestBridge, request

        return {"RequestBridge": RequestBridge, "request": request}[name]
    if name in {"BusModule", "ModuleHost"}:
        from .modules import BusModule, ModuleHost

        return {"BusModule": BusModule, "ModuleHost": ModuleHost}[name]
    if name == "load_config":
        from .config import load_config

        return load_config
    if name == "LoadTester":
        from .loadtest import LoadTester

        return LoadTester
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
