"""Periodic invocation of the signal and position ticks.

Both loops run as tasks on the server's event loop. A tick that raises is
logged and the loop keeps going; overlap between a slow tick and the next
interval is handled by the orchestrator's tick locks.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from trader.config import SchedulerSettings
from trader.logging import get_logger

if TYPE_CHECKING:
    from trader.orchestrator import TriggerOrchestrator

logger = get_logger(__name__)


class TickScheduler:
    """Runs the orchestrator ticks on fixed intervals.

    Args:
        orchestrator: Orchestrator whose ticks are invoked.
        settings: Scheduler intervals.
    """

    def __init__(self, orchestrator: TriggerOrchestrator, settings: SchedulerSettings) -> None:
        self._orchestrator = orchestrator
        self._settings = settings
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start both tick loops as background tasks."""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(
                self._loop(
                    "signal",
                    self._orchestrator.run_signal_tick,
                    self._settings.signal_interval_seconds,
                )
            ),
            asyncio.create_task(
                self._loop(
                    "position",
                    self._orchestrator.run_position_tick,
                    self._settings.monitor_interval_seconds,
                )
            ),
        ]
        logger.info(
            "scheduler_started",
            signal_interval=self._settings.signal_interval_seconds,
            monitor_interval=self._settings.monitor_interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel the loops and wait for them to finish."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("scheduler_stopped")

    async def _loop(
        self,
        name: str,
        tick: Callable[[], Awaitable[dict[str, Any]]],
        interval: float,
    ) -> None:
        while self._running:
            try:
                summary = await tick()
                logger.debug("tick_finished", tick=name, skipped=summary.get("skipped", False))
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("tick_failed", tick=name, error=str(e), exc_info=True)
            await asyncio.sleep(interval)
