"""Repository implementation over an aiosqlite Database.

Rows are ``(id, data)`` with the record JSON-encoded in ``data``. Filtering,
ordering and limits are applied after decoding, using the same semantics as
InMemoryRepository.
"""

import asyncio
import json
from typing import Any

from trader.data.database import TABLES, Database
from trader.data.repository import Repository, matches, sort_and_limit
from trader.models import new_id


class SqliteRepository(Repository):
    """Persistent repository.

    Writes are serialized by an asyncio.Lock so read-modify-write updates
    from concurrent coroutines never interleave.

    Args:
        database: Connected Database. Closed by close().
    """

    def __init__(self, database: Database) -> None:
        self._database = database
        self._write_lock = asyncio.Lock()

    @staticmethod
    def _check_table(table: str) -> None:
        if table not in TABLES:
            raise KeyError(f"Unknown table: {table}")

    async def _load(self, table: str, record_id: str) -> dict[str, Any] | None:
        cursor = await self._database.db.execute(
            f'SELECT data FROM "{table}" WHERE id = ?', (record_id,)
        )
        row = await cursor.fetchone()
        return json.loads(row[0]) if row is not None else None

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        self._check_table(table)
        stored = dict(record)
        stored.setdefault("id", new_id())
        async with self._write_lock:
            await self._database.db.execute(
                f'INSERT INTO "{table}" (id, data) VALUES (?, ?)',
                (stored["id"], json.dumps(stored)),
            )
            await self._database.db.commit()
        return stored

    async def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        self._check_table(table)
        return await self._load(table, record_id)

    async def update(
        self, table: str, record_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        self._check_table(table)
        async with self._write_lock:
            record = await self._load(table, record_id)
            if record is None:
                return None
            record.update(changes)
            record["id"] = record_id
            await self._database.db.execute(
                f'UPDATE "{table}" SET data = ? WHERE id = ?',
                (json.dumps(record), record_id),
            )
            await self._database.db.commit()
        return record

    async def delete(self, table: str, record_id: str) -> bool:
        self._check_table(table)
        async with self._write_lock:
            cursor = await self._database.db.execute(
                f'DELETE FROM "{table}" WHERE id = ?', (record_id,)
            )
            await self._database.db.commit()
        return cursor.rowcount > 0

    async def find(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._check_table(table)
        cursor = await self._database.db.execute(f'SELECT data FROM "{table}"')
        rows = await cursor.fetchall()
        found = [r for r in (json.loads(row[0]) for row in rows) if matches(r, where)]
        return sort_and_limit(found, order_by, descending, limit)

    async def close(self) -> None:
        await self._database.close()
