"""Module host that attaches bus modules and announces their lifecycle.

Usage:
    # Define a module
    class Inventory(BusModule):
        name = "inventory"
        version = "1.0.0"

        def attach(self, bus):
            bus.register("inventory.count", self.count)

        def detach(self, bus):
            bus.unregister("inventory.count", self.count)

    # Load it; subscribers of "module.initialized" are notified
    host = ModuleHost()
    host.load(Inventory())
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import importlib
import logging
from typing import Any

from .bus import MessageBus, get_bus
from .exceptions import ModuleLoadError

LOGGER = logging.getLogger(__name__)

MODULE_INITIALIZED = "module.initialized"
MODULE_FAILED = "module.failed"
MODULE_UNLOADED = "module.unloaded"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BusModule(ABC):
    """Base class for components that talk to each other over the bus.

    Modules can provide:
    - Broadcast subscriptions
    - Call handlers
    - Lifecycle cleanup
    """

    name: str = "unknown"
    version: str = "0.0.0"
    description: str = ""

    @abstractmethod
    def attach(self, bus: MessageBus) -> None:
        """Subscribe and register this module's handlers.

        Args:
            bus: The bus the module is loaded into
        """

    def detach(self, bus: MessageBus) -> None:
        """Remove this module's handlers from ``bus``."""

    def describe(self) -> dict[str, Any]:
        """Return module state included in lifecycle events."""
        return {"module": self.name, "version": self.version}


class ModuleHost:
    """Loads modules into a bus and publishes their lifecycle events.

    Responsibilities:
    - Attach and detach modules
    - Announce module.initialized / module.failed / module.unloaded
    - Import modules from dotted paths
    """

    def __init__(self, bus: MessageBus | None = None) -> None:
        self.bus = bus or get_bus()
        self._modules: dict[str, BusModule] = {}

    def load(self, module: BusModule) -> BusModule:
        """Attach ``module`` and announce it.

        Raises:
            ModuleLoadError: The name is taken or ``attach`` failed.
        """
        if module.name in self._modules:
            raise ModuleLoadError(module.name, "a module with this name is loaded")

        try:
            module.attach(self.bus)
        except Exception as exc:
            LOGGER.error(
                "module.attach.failed",
                exc_info=exc,
                extra={"event": "module.attach.failed", "module_name": module.name},
            )
            self.bus.publish(
                MODULE_FAILED,
                {"module": module.name, "error": str(exc), "timestamp": _now()},
            )
            raise ModuleLoadError(module.name, exc) from exc

        self._modules[module.name] = module
        LOGGER.info(
            "module.loaded",
            extra={
                "event": "module.loaded",
                "module_name": module.name,
                "version": module.version,
            },
        )
        self.bus.publish(MODULE_INITIALIZED, {**module.describe(), "timestamp": _now()})
        return module

    def load_from_path(self, target: str) -> BusModule:
        """Import ``package.module:ClassName``, instantiate it and load it."""
        module_path, sep, class_name = target.partition(":")
        if not sep or not module_path or not class_name:
            raise ModuleLoadError(target, "expected 'package.module:ClassName'")
        try:
            imported = importlib.import_module(module_path)
            factory = getattr(imported, class_name)
        except (ImportError, AttributeError) as exc:
            raise ModuleLoadError(target, exc) from exc

        try:
            instance = factory()
        except Exception as exc:
            raise ModuleLoadError(target, exc) from exc
        if not isinstance(instance, BusModule):
            raise ModuleLoadError(target, "not a BusModule subclass")
        return self.load(instance)

    def unload(self, name: str) -> None:
        """Detach the named module; unknown names are ignored."""
        module = self._modules.pop(name, None)
        if module is None:
            return
        try:
            module.detach(self.bus)
        except Exception as exc:
            LOGGER.error(
                "module.detach.failed",
                exc_info=exc,
                extra={"event": "module.detach.failed", "module_name": name},
            )
        self.bus.publish(MODULE_UNLOADED, {"module": name, "timestamp": _now()})

    def unload_all(self) -> None:
        # Reverse load order.
        for name in reversed(list(self._modules)):
            self.unload(name)

    def get(self, name: str) -> BusModule | None:
        return self._modules.get(name)

    def names(self) -> list[str]:
        return list(self._modules)
