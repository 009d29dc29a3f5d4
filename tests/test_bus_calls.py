"""Tests for the call channel."""

from __future__ import annotations

import asyncio
import unittest
from unittest.mock import Mock

from smsgbus.bus import get_bus
from smsgbus.exceptions import DuplicateRegistrationWarning, InvalidArgumentError


class Service:
    """Receiver object used to test bound-context registrations."""

    def __init__(self, factor: int) -> None:
        self.factor = factor

    def scale(self, data: int) -> int:
        return data * self.factor


class _BusTestMixin:
    def setUp(self) -> None:
        self.bus = get_bus()
        self.bus.clear_all_subscriptions()
        self.bus.clear_all_registrations()

    def tearDown(self) -> None:
        self.bus.clear_all_subscriptions()
        self.bus.clear_all_registrations()


class SyncCallTests(_BusTestMixin, unittest.TestCase):
    """Validate register/invoke_sync/unregister."""

    def test_invoke_sync_returns_handler_value(self) -> None:
        self.bus.register("y", lambda data: 42)
        self.assertEqual(self.bus.invoke_sync("y", None), 42)

    def test_invoke_sync_unregistered_returns_none(self) -> None:
        self.assertIsNone(self.bus.invoke_sync("missing", {"a": 1}))

    def test_invoke_sync_reraises_handler_error(self) -> None:
        def boom(data: object) -> None:
            raise ValueError("boom")

        self.bus.register("z", boom)
        with self.assertLogs("smsgbus.bus", level="ERROR") as logs:
            with self.assertRaises(ValueError) as ctx:
                self.bus.invoke_sync("z", None)
        self.assertEqual(str(ctx.exception), "boom")
        self.assertTrue(any("bus.handler.failed" in line for line in logs.output))
        self.assertTrue(self.bus.check("z").has_call_handler)

    def test_duplicate_register_keeps_first_handler(self) -> None:
        first = Mock(return_value="first")
        second = Mock(return_value="second")
        self.bus.register("y", first)

        with self.assertLogs("smsgbus.bus", level="WARNING") as logs:
            with self.assertWarns(DuplicateRegistrationWarning):
                result = self.bus.register("y", second)

        self.assertIs(result, self.bus)
        self.assertTrue(self.bus.check("y").has_call_handler)
        self.assertEqual(self.bus.invoke_sync("y", 1), "first")
        second.assert_not_called()
        self.assertTrue(any("bus.call.duplicate" in line for line in logs.output))

    def test_context_is_passed_as_receiver(self) -> None:
        service = Service(factor=3)
        self.bus.register("scale", Service.scale, service)
        self.assertEqual(self.bus.invoke_sync("scale", 5), 15)

    def test_unregister_without_handler_removes_any(self) -> None:
        self.bus.register("y", Mock())
        result = self.bus.unregister("y")
        self.assertIs(result, self.bus)
        self.assertFalse(self.bus.check("y").has_call_handler)

    def test_unregister_requires_matching_handler_and_context(self) -> None:
        service = Service(factor=2)
        other = Service(factor=2)
        self.bus.register("scale", Service.scale, service)

        self.bus.unregister("scale", Mock())
        self.assertTrue(self.bus.check("scale").has_call_handler)
        self.bus.unregister("scale", Service.scale, other)
        self.assertTrue(self.bus.check("scale").has_call_handler)
        self.bus.unregister("scale", Service.scale)
        self.assertTrue(self.bus.check("scale").has_call_handler)

        self.bus.unregister("scale", Service.scale, service)
        self.assertFalse(self.bus.check("scale").has_call_handler)

    def test_unregister_unknown_topic_is_noop(self) -> None:
        self.assertIs(self.bus.unregister("missing"), self.bus)

    def test_register_after_unregister(self) -> None:
        self.bus.register("y", lambda data: 1)
        self.bus.unregister("y")
        self.bus.register("y", lambda data: 2)
        self.assertEqual(self.bus.invoke_sync("y"), 2)

    def test_clear_all_registrations(self) -> None:
        self.bus.register("a", Mock()).register("b", Mock())
        self.assertIs(self.bus.clear_all_registrations(), self.bus)
        self.assertEqual(self.bus.calls, {})

    def test_invalid_arguments_raise_immediately(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            self.bus.register("", Mock())
        with self.assertRaises(InvalidArgumentError):
            self.bus.register("y", 42)  # type: ignore[arg-type]
        with self.assertRaises(InvalidArgumentError):
            self.bus.invoke_sync(" ", None)
        with self.assertRaises(InvalidArgumentError):
            self.bus.unregister("y", "nope")  # type: ignore[arg-type]


class AsyncCallTests(_BusTestMixin, unittest.IsolatedAsyncioTestCase):
    """Validate deferred invoke semantics."""

    async def test_invoke_resolves_to_handler_value(self) -> None:
        self.bus.register("y", lambda data: 42)
        self.assertEqual(await self.bus.invoke("y", None), 42)

    async def test_invoke_unregistered_resolves_to_none(self) -> None:
        future = self.bus.invoke("missing", {})
        self.assertTrue(future.done())
        self.assertIsNone(await future)

    async def test_invoke_never_runs_handler_synchronously(self) -> None:
        handler = Mock(return_value="done")
        self.bus.register("y", handler)

        future = self.bus.invoke("y", "payload")

        handler.assert_not_called()
        self.assertFalse(future.done())
        await asyncio.sleep(0)
        handler.assert_called_once_with("payload")
        self.assertEqual(await future, "done")

    async def test_invoke_rejects_with_handler_error(self) -> None:
        def boom(data: object) -> None:
            raise ValueError("boom")

        self.bus.register("z", boom)
        with self.assertLogs("smsgbus.bus", level="ERROR"):
            with self.assertRaises(ValueError) as ctx:
                await self.bus.invoke("z", None)
        self.assertEqual(str(ctx.exception), "boom")
        self.assertTrue(self.bus.check("z").has_call_handler)

    async def test_invoke_awaits_coroutine_handler(self) -> None:
        async def slow_double(data: int) -> int:
            await asyncio.sleep(0)
            return data * 2

        self.bus.register("double", slow_double)
        self.assertEqual(await self.bus.invoke("double", 21), 42)

    async def test_invoke_propagates_coroutine_failure(self) -> None:
        async def failing(data: object) -> None:
            await asyncio.sleep(0)
            raise KeyError("gone")

        self.bus.register("fail", failing)
        with self.assertLogs("smsgbus.bus", level="ERROR"):
            with self.assertRaises(KeyError):
                await self.bus.invoke("fail", None)

    async def test_invoke_chains_returned_future(self) -> None:
        loop = asyncio.get_running_loop()
        inner: asyncio.Future[str] = loop.create_future()
        self.bus.register("pending", lambda data: inner)

        outer = self.bus.invoke("pending", None)
        await asyncio.sleep(0)
        self.assertFalse(outer.done())

        inner.set_result("later")
        self.assertEqual(await outer, "later")

    async def test_invoke_uses_registration_at_call_time(self) -> None:
        self.bus.register("y", lambda data: "original")
        future = self.bus.invoke("y", None)
        self.bus.unregister("y")
        self.assertEqual(await future, "original")

    async def test_cancelled_invoke_still_runs_handler(self) -> None:
        handler = Mock(return_value=1)
        self.bus.register("y", handler)

        future = self.bus.invoke("y", None)
        future.cancel()
        await asyncio.sleep(0)

        handler.assert_called_once_with(None)
        self.assertTrue(future.cancelled())

    async def test_invoke_validates_topic_synchronously(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            self.bus.invoke("", None)

    async def test_invoke_sync_with_coroutine_handler_returns_awaitable(self) -> None:
        async def answer(data: object) -> int:
            return 7

        self.bus.register("answer", answer)
        self.assertEqual(await self.bus.invoke_sync("answer", None), 7)


class InvokeWithoutLoopTests(_BusTestMixin, unittest.TestCase):
    """invoke needs a running event loop."""

    def test_invoke_outside_loop_raises_runtime_error(self) -> None:
        self.bus.register("y", Mock())
        with self.assertRaises(RuntimeError):
            self.bus.invoke("y", None)


if __name__ == "__main__":
    unittest.main()
