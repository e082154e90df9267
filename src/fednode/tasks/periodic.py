"""In-process periodic task scheduler."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from fednode.tasks.runner import TaskRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    name: str
    interval_seconds: float
    kwargs: dict[str, object]
    next_run: float


class PeriodicScheduler:
    def __init__(self, runner: TaskRunner) -> None:
        self._runner = runner
        self._entries: list[_Entry] = []
        self._shutdown = asyncio.Event()

    @property
    def task_names(self) -> list[str]:
        return [entry.name for entry in self._entries]

    def add(
        self,
        name: str,
        interval_seconds: float,
        kwargs: dict[str, object] | None = None,
        initial_delay_seconds: float | None = None,
    ) -> None:
        interval = max(1.0, float(interval_seconds))
        delay = interval if initial_delay_seconds is None else max(0.0, initial_delay_seconds)
        self._entries.append(
            _Entry(
                name=name,
                interval_seconds=interval,
                kwargs=kwargs or {},
                next_run=time.monotonic() + delay,
            )
        )

    def tick(self, now: float | None = None) -> list[str]:
        """Dispatch every due task and return the names sent to the runner."""
        now = time.monotonic() if now is None else now
        dispatched: list[str] = []
        for entry in self._entries:
            if now < entry.next_run:
                continue
            if self._runner.is_running(entry.name):
                # The previous run is still going; try again next interval.
                logger.debug("Skipping periodic task still in flight: %s", entry.name)
                entry.next_run = now + entry.interval_seconds
                continue
            if self._runner.send_task(entry.name, kwargs=entry.kwargs):
                dispatched.append(entry.name)
            else:
                logger.warning("Failed to dispatch periodic task: %s", entry.name)
            entry.next_run = now + entry.interval_seconds
        return dispatched

    async def run(self) -> None:
        while not self._shutdown.is_set():
            self.tick()
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=1.0)
            except TimeoutError:
                continue

    async def shutdown(self) -> None:
        self._shutdown.set()
