"""Cooperative scheduler running the bot's recurring tasks on fixed periods."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .monitoring.event_bus import EVENT_BUS, BroadcastKind, EventBus, EventSeverity
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS

TaskFn = Callable[[], Union[None, Awaitable[Any]]]

logger = get_logger(__name__)


@dataclass(slots=True)
class PeriodicTask:
    """A named callable fired every ``interval_seconds``."""

    name: str
    interval_seconds: float
    fn: TaskFn
    run_immediately: bool = False
    runs: int = 0
    failures: int = 0
    last_error: Optional[str] = None

    async def run_once(self) -> bool:
        """Run one tick. Exceptions are logged and counted, never raised."""

        try:
            result = self.fn()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.failures += 1
            self.last_error = str(exc)
            METRICS.increment(f"scheduler_task_failures.{self.name}")
            logger.exception("Periodic task %s failed: %s", self.name, exc, extra={"task": self.name})
            return False
        finally:
            self.runs += 1
        return True


class PeriodicScheduler:
    """Owns one asyncio task per periodic job and cancels them together on stop."""

    def __init__(
        self,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        bus: Optional[EventBus] = None,
    ) -> None:
        self._sleep = sleep
        self._bus = bus or EVENT_BUS
        self._tasks: Dict[str, PeriodicTask] = {}
        self._handles: List["asyncio.Task[None]"] = []

    def add(
        self,
        name: str,
        interval_seconds: float,
        fn: TaskFn,
        *,
        run_immediately: bool = False,
    ) -> PeriodicTask:
        if interval_seconds <= 0:
            raise ValueError(f"interval for {name} must be positive")
        if name in self._tasks:
            raise ValueError(f"periodic task {name} already registered")
        task = PeriodicTask(name, interval_seconds, fn, run_immediately=run_immediately)
        self._tasks[name] = task
        return task

    @property
    def tasks(self) -> Dict[str, PeriodicTask]:
        return dict(self._tasks)

    @property
    def running(self) -> bool:
        return any(not handle.done() for handle in self._handles)

    def start(self) -> None:
        if self.running:
            return
        self._handles = [
            asyncio.create_task(self._loop(task), name=f"periodic-{task.name}")
            for task in self._tasks.values()
        ]
        logger.info("Scheduler started %d periodic tasks", len(self._handles))

    async def stop(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()
        for handle in handles:
            try:
                await handle
            except asyncio.CancelledError:
                pass

    async def _loop(self, task: PeriodicTask) -> None:
        if task.run_immediately:
            await self._tick(task)
        while True:
            await self._sleep(task.interval_seconds)
            await self._tick(task)

    async def _tick(self, task: PeriodicTask) -> None:
        if not await task.run_once():
            self._bus.publish(
                BroadcastKind.SYSTEM_STATUS,
                {"task": task.name, "error": task.last_error, "failures": task.failures},
                severity=EventSeverity.WARNING,
            )


__all__ = ["PeriodicScheduler", "PeriodicTask", "TaskFn"]
