"""Background refresh jobs."""
import asyncio
from typing import Awaitable, Callable, Dict, Optional

import structlog

logger = structlog.get_logger()

Job = Callable[[], Awaitable[None]]


class PeriodicTask:
    """
    Runs a job immediately and then once every ``interval`` seconds.

    Runs never overlap: a tick that finds the previous run still in flight is
    skipped. A failing run is logged and does not stop the task.
    """

    def __init__(self, name: str, interval: float, job: Job):
        self.name = name
        self.interval = interval
        self.job = job
        self.is_running = False
        self.skipped = 0
        self._task: Optional[asyncio.Task] = None
        self._run: Optional[asyncio.Task] = None

    def start(self):
        """Start the tick loop on the running event loop."""
        if self.is_running:
            return

        self.is_running = True
        self._task = asyncio.create_task(self._tick_loop())
        logger.info("periodic_task_started", task=self.name, interval=self.interval)

    async def stop(self):
        """Cancel the tick loop and any run in flight, and wait for both."""
        if not self.is_running:
            return

        self.is_running = False
        for task in (self._task, self._run):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._run = None
        logger.info("periodic_task_stopped", task=self.name)

    async def _tick_loop(self):
        while self.is_running:
            if self._run is None or self._run.done():
                self._run = asyncio.create_task(self._run_once())
            else:
                self.skipped += 1
                logger.info("periodic_task_tick_skipped", task=self.name)
            await asyncio.sleep(self.interval)

    async def _run_once(self):
        try:
            await self.job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("periodic_task_failed", task=self.name, error=str(e))


class Scheduler:
    """Owns the gateway's periodic tasks."""

    def __init__(self):
        self.tasks: Dict[str, PeriodicTask] = {}

    def add(self, name: str, interval: float, job: Job) -> PeriodicTask:
        task = PeriodicTask(name, interval, job)
        self.tasks[name] = task
        return task

    def start(self):
        for task in self.tasks.values():
            task.start()

    async def stop(self):
        for task in self.tasks.values():
            await task.stop()
