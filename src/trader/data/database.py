"""Async SQLite database manager for pipeline records.

Uses aiosqlite for non-blocking database operations with WAL mode
for concurrent read/write performance.
"""

import os
from typing import Self

import aiosqlite

from trader.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

#: One table per entity. Each row holds the JSON-encoded record.
TABLES: tuple[str, ...] = (
    "trading_strategies",
    "api_keys",
    "trades",
    "positions",
    "webhook_logs",
    "gas_fee_balances",
    "gas_fee_transactions",
    "referral_commissions",
    "admin_earnings",
    "profit_settlements",
    "profiles",
    "bot_status",
)

_CREATE_SCHEMA_VERSION_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);
"""


def _create_table_sql(table: str) -> str:
    return (
        f'CREATE TABLE IF NOT EXISTS "{table}" ('
        "id TEXT PRIMARY KEY, "
        "data TEXT NOT NULL"
        ");"
    )


class Database:
    """Async SQLite connection manager.

    Manages database lifecycle including schema creation, WAL mode
    configuration, and clean resource cleanup.

    Usage:
        async with Database("/path/to/db") as db:
            await db.db.execute("SELECT ...")
    """

    def __init__(self, db_path: str = "data/trader.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, configure pragmas, and create the schema.

        Creates the parent directory if it does not exist.
        """
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._create_tables()
        await self._ensure_schema_version()

        logger.info("database_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed", db_path=self._db_path)

    async def _create_tables(self) -> None:
        script = _CREATE_SCHEMA_VERSION_SQL + "\n".join(_create_table_sql(t) for t in TABLES)
        await self.db.executescript(script)
        await self.db.commit()

    async def _ensure_schema_version(self) -> None:
        cursor = await self.db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            await self.db.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await self.db.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
