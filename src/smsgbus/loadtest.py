"""Throughput ramp for the message bus.

Each step sends ``rps * step_duration_seconds`` operations spread evenly
over the step, waits for pending calls, and compares how many handler
runs completed against how many were sent. The ramp stops at the first
step whose completion rate falls below the threshold.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import itertools
import logging
from typing import Any

from rich.console import Console
from rich.table import Table

from .bus import MessageBus, get_bus
from .config import LoadTestOptions

LOGGER = logging.getLogger(__name__)

BROADCAST_TOPIC_PREFIX = "loadtest.broadcast"
CALL_TOPIC_PREFIX = "loadtest.call"

_TESTER_IDS = itertools.count(1)


class Counter:
    """Receiver object for the load-test handlers."""

    def __init__(self) -> None:
        self.value = 0

    def on_broadcast(self, data: Any) -> None:
        self.value += 1

    def on_call(self, data: Any) -> dict[str, bool]:
        self.value += 1
        return {"success": True}

    def reset(self) -> None:
        self.value = 0


@dataclass(frozen=True)
class StepResult:
    """Measurements for one ramp step."""

    target_rps: int
    sent: int
    completed: int
    failed: int
    elapsed_seconds: float

    @property
    def completion_rate(self) -> float:
        return self.completed / self.sent if self.sent else 0.0

    @property
    def actual_rps(self) -> float:
        return self.completed / self.elapsed_seconds if self.elapsed_seconds > 0 else 0.0


class LoadTester:
    """Drive broadcast and call traffic through a bus and measure completion."""

    def __init__(
        self, options: LoadTestOptions | None = None, bus: MessageBus | None = None
    ) -> None:
        self.options = options or LoadTestOptions()
        self.bus = bus or get_bus()
        self.counter = Counter()
        self._pattern = self._build_pattern()
        # One private call slot per tester.
        suffix = next(_TESTER_IDS)
        self.broadcast_topic = f"{BROADCAST_TOPIC_PREFIX}.{suffix}"
        self.call_topic = f"{CALL_TOPIC_PREFIX}.{suffix}"
        # Handlers are unbound methods; the counter is passed as their receiver.
        self.bus.subscribe(self.broadcast_topic, Counter.on_broadcast, self.counter)
        self.bus.register(self.call_topic, Counter.on_call, self.counter)

    def _build_pattern(self) -> list[str]:
        if self.options.mode == "broadcast":
            return ["broadcast"]
        if self.options.mode == "call":
            return ["call"]
        return ["broadcast"] * self.options.broadcast_ratio + [
            "call"
        ] * self.options.call_ratio

    async def run_step(self, rps: int) -> StepResult:
        """Send one step of traffic at ``rps`` and measure it."""
        duration = self.options.step_duration_seconds
        total = max(1, int(rps * duration))
        interval = duration / total
        loop = asyncio.get_running_loop()

        self.counter.reset()
        pending: list[asyncio.Future[Any]] = []
        start = loop.time()
        for index in range(total):
            kind = self._pattern[index % len(self._pattern)]
            if kind == "broadcast":
                self.bus.publish(self.broadcast_topic, index)
            else:
                pending.append(self.bus.invoke(self.call_topic, index))
            delay = start + (index + 1) * interval - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

        failed = 0
        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            failed = sum(1 for item in results if isinstance(item, BaseException))
        elapsed = loop.time() - start

        result = StepResult(
            target_rps=rps,
            sent=total,
            completed=self.counter.value,
            failed=failed,
            elapsed_seconds=elapsed,
        )
        LOGGER.info(
            "loadtest.step",
            extra={
                "event": "loadtest.step",
                "target_rps": rps,
                "sent": result.sent,
                "completed": result.completed,
                "failed": result.failed,
                "elapsed_seconds": round(elapsed, 4),
            },
        )
        return result

    async def run(self) -> list[StepResult]:
        """Ramp from ``initial_rps`` until the threshold or ``max_rps``."""
        results: list[StepResult] = []
        rps = self.options.initial_rps
        while rps <= self.options.max_rps:
            result = await self.run_step(rps)
            results.append(result)
            if result.completion_rate < self.options.success_threshold:
                LOGGER.warning(
                    "loadtest.threshold",
                    extra={
                        "event": "loadtest.threshold",
                        "target_rps": rps,
                        "completion_rate": result.completion_rate,
                    },
                )
                break
            rps += self.options.rps_increment
        return results

    def close(self) -> None:
        """Remove the load-test handlers from the bus."""
        self.bus.unsubscribe(self.broadcast_topic, Counter.on_broadcast, self.counter)
        self.bus.unregister(self.call_topic, Counter.on_call, self.counter)


def render_results(results: list[StepResult], console: Console | None = None) -> Table:
    """Print ``results`` as a table and return it."""
    table = Table(title="smsgbus load test")
    table.add_column("target rps", justify="right")
    table.add_column("sent", justify="right")
    table.add_column("completed", justify="right")
    table.add_column("failed", justify="right")
    table.add_column("completion", justify="right")
    table.add_column("actual rps", justify="right")
    for result in results:
        table.add_row(
            str(result.target_rps),
            str(result.sent),
            str(result.completed),
            str(result.failed),
            f"{result.completion_rate:.2%}",
            f"{result.actual_rps:,.0f}",
        )
    (console or Console()).print(table)
    return table
