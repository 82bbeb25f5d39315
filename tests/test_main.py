"""Tests for component wiring and the application lifespan."""

from pathlib import Path

import pytest

from trader.api.app import create_app
from trader.config import AdvisorySettings, AppSettings, DatabaseSettings, SchedulerSettings
from trader.data.repository import InMemoryRepository
from trader.data.sqlite_repository import SqliteRepository
from trader.main import build_components, lifespan
from trader.orchestrator import TriggerOrchestrator


class TestBuildComponents:
    @pytest.mark.asyncio
    async def test_memory_backend(self, mock_settings: AppSettings) -> None:
        components = await build_components(mock_settings)
        try:
            assert isinstance(components["repository"], InMemoryRepository)
            assert isinstance(components["orchestrator"], TriggerOrchestrator)
            assert components["gate"]._advisor is None
        finally:
            await components["http_client"].aclose()

    @pytest.mark.asyncio
    async def test_sqlite_backend_with_advisor(self, tmp_path: Path) -> None:
        settings = AppSettings(
            database=DatabaseSettings(backend="sqlite", path=str(tmp_path / "trader.db")),
            advisory=AdvisorySettings(enabled=True, api_key="k"),
            scheduler=SchedulerSettings(enabled=False),
        )
        components = await build_components(settings)
        try:
            assert isinstance(components["repository"], SqliteRepository)
            assert components["gate"]._advisor is not None
        finally:
            await components["http_client"].aclose()
            await components["repository"].close()


class TestLifespan:
    @pytest.mark.asyncio
    async def test_publishes_orchestrator_and_releases_resources(
        self, mock_settings: AppSettings
    ) -> None:
        components = await build_components(mock_settings)
        app = create_app(lifespan=lifespan)
        app.state.settings = mock_settings
        app.state.components = components

        async with lifespan(app):
            assert app.state.orchestrator is components["orchestrator"]

        assert components["http_client"].is_closed

    @pytest.mark.asyncio
    async def test_scheduler_runs_when_enabled(self, mock_settings: AppSettings) -> None:
        settings = mock_settings.model_copy(
            update={
                "scheduler": SchedulerSettings(
                    enabled=True, signal_interval_seconds=3600, monitor_interval_seconds=3600
                )
            }
        )
        components = await build_components(settings)
        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        async with lifespan(app):
            pass

        assert components["http_client"].is_closed
