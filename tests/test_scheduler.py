"""Tests for TickScheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from trader.config import SchedulerSettings
from trader.orchestrator import TriggerOrchestrator
from trader.scheduler import TickScheduler


@pytest.fixture
def orchestrator() -> MagicMock:
    orchestrator = MagicMock(spec=TriggerOrchestrator)
    orchestrator.run_signal_tick = AsyncMock(return_value={"processed": 0})
    orchestrator.run_position_tick = AsyncMock(return_value={"skipped": True})
    return orchestrator


@pytest.fixture
def settings() -> SchedulerSettings:
    return SchedulerSettings(signal_interval_seconds=0, monitor_interval_seconds=0)


class TestTickScheduler:
    @pytest.mark.asyncio
    async def test_runs_both_ticks_until_stopped(
        self, orchestrator: MagicMock, settings: SchedulerSettings
    ) -> None:
        scheduler = TickScheduler(orchestrator, settings)
        scheduler.start()
        assert scheduler.is_running

        await asyncio.sleep(0.01)
        await scheduler.stop()

        assert not scheduler.is_running
        assert orchestrator.run_signal_tick.await_count >= 1
        assert orchestrator.run_position_tick.await_count >= 1

        calls = orchestrator.run_signal_tick.await_count
        await asyncio.sleep(0.01)
        assert orchestrator.run_signal_tick.await_count == calls

    @pytest.mark.asyncio
    async def test_failing_tick_does_not_stop_loop(
        self, orchestrator: MagicMock, settings: SchedulerSettings
    ) -> None:
        orchestrator.run_signal_tick.side_effect = RuntimeError("venue down")
        scheduler = TickScheduler(orchestrator, settings)
        scheduler.start()

        await asyncio.sleep(0.01)
        await scheduler.stop()

        assert orchestrator.run_signal_tick.await_count >= 2

    @pytest.mark.asyncio
    async def test_start_is_idempotent(
        self, orchestrator: MagicMock, settings: SchedulerSettings
    ) -> None:
        scheduler = TickScheduler(orchestrator, settings)
        scheduler.start()
        scheduler.start()
        assert len(scheduler._tasks) == 2
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(
        self, orchestrator: MagicMock, settings: SchedulerSettings
    ) -> None:
        scheduler = TickScheduler(orchestrator, settings)
        await scheduler.stop()
        assert not scheduler.is_running
