"""Entry point for the signal-to-settlement trader.

Wires all components together and serves the FastAPI app with uvicorn.
When the scheduler is enabled, the signal and position ticks run as
background tasks in the same event loop.

Component wiring order (in build_components):
1. Repository (SQLite via aiosqlite, or in-memory)
2. TradingStore and CredentialStore
3. Shared httpx client, MarketDataGateway and venue client factory
4. GasFeeLedger and ProfitSharingEngine
5. Advisory filter (optional) and RiskGate
6. OrderExecutor and PositionReconciler
7. TriggerOrchestrator
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI

from trader.api.app import create_app
from trader.concurrency import KeyedLocks
from trader.config import AppSettings
from trader.data.credentials import RepositoryCredentialStore
from trader.data.database import Database
from trader.data.repository import InMemoryRepository, Repository
from trader.data.sqlite_repository import SqliteRepository
from trader.data.store import TradingStore
from trader.exchange.factory import make_client_factory
from trader.execution.executor import OrderExecutor
from trader.logging import get_logger, setup_logging
from trader.market_data.gateway import MarketDataGateway
from trader.orchestrator import TriggerOrchestrator
from trader.pnl.ledger import GasFeeLedger
from trader.pnl.profit_sharing import ProfitSharingEngine
from trader.position.reconciler import PositionReconciler
from trader.position.sizing import PositionSizer
from trader.risk.advisory import AdvisoryPolicy, GeminiAdvisor
from trader.risk.gate import RiskGate
from trader.scheduler import TickScheduler


async def _open_repository(settings: AppSettings) -> Repository:
    if settings.database.backend == "memory":
        return InMemoryRepository()
    database = Database(settings.database.path)
    await database.connect()
    return SqliteRepository(database)


async def build_components(settings: AppSettings) -> dict[str, Any]:
    """Build the full dependency graph from settings.

    Returns:
        Dict of named components. The caller owns "repository" and
        "http_client" and must close them.
    """
    repository = await _open_repository(settings)
    store = TradingStore(repository)
    credentials = RepositoryCredentialStore(repository)
    locks = KeyedLocks()

    http_client = httpx.AsyncClient(timeout=settings.venue.request_timeout_seconds)
    gateway = MarketDataGateway(http_client, settings.venue)
    client_factory = make_client_factory(settings.venue)

    ledger = GasFeeLedger(store, locks)
    profit_sharing = ProfitSharingEngine(store, ledger, settings.profit, locks)

    advisor = GeminiAdvisor(settings.advisory, http_client) if settings.advisory.enabled else None
    gate = RiskGate(
        store,
        gateway=gateway,
        advisor=advisor,
        advisory_policy=AdvisoryPolicy(settings.advisory.unavailable_policy),
    )

    executor = OrderExecutor(PositionSizer(), settings.venue.quantity_decimals)
    reconciler = PositionReconciler(store, credentials, client_factory, profit_sharing, locks)
    orchestrator = TriggerOrchestrator(
        settings,
        store,
        credentials,
        client_factory,
        gateway,
        gate,
        executor,
        reconciler,
        locks,
    )

    return {
        "repository": repository,
        "http_client": http_client,
        "store": store,
        "credentials": credentials,
        "ledger": ledger,
        "profit_sharing": profit_sharing,
        "gate": gate,
        "reconciler": reconciler,
        "orchestrator": orchestrator,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the tick scheduler on startup; stop it and release resources on shutdown."""
    logger = get_logger("trader.main")
    settings: AppSettings = app.state.settings
    components = app.state.components
    app.state.orchestrator = components["orchestrator"]

    scheduler = TickScheduler(components["orchestrator"], settings.scheduler)
    if settings.scheduler.enabled:
        scheduler.start()

    logger.info(
        "lifespan_started",
        scheduler=settings.scheduler.enabled,
        database=settings.database.backend,
    )

    yield

    if scheduler.is_running:
        await scheduler.stop()
    await components["http_client"].aclose()
    await components["repository"].close()
    logger.info("trader_stopped")


async def run() -> None:
    """Load settings, build components and serve the API."""
    settings = AppSettings()
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("trader.main")

    components = await build_components(settings)

    app = create_app(lifespan=lifespan)
    app.state.settings = settings
    app.state.components = components

    logger.info(
        "starting_server",
        host=settings.server.host,
        port=settings.server.port,
    )
    config = uvicorn.Config(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level="warning",  # structlog handles application logging
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
