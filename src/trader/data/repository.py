"""Keyed-record repository contract and an in-memory implementation.

Records are plain JSON-safe dicts keyed by ``id``, grouped in named tables.
Components receive a Repository by injection; there is no global store.

Filtering: ``where`` maps field names to expected values. A list, tuple or
set value means membership, anything else means equality.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any

from trader.models import new_id


def matches(record: dict[str, Any], where: dict[str, Any] | None) -> bool:
    """Return True if record satisfies every condition in where."""
    if not where:
        return True
    for key, expected in where.items():
        actual = record.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def sort_and_limit(
    records: list[dict[str, Any]],
    order_by: str | None,
    descending: bool,
    limit: int | None,
) -> list[dict[str, Any]]:
    if order_by is not None:
        # None values sort last regardless of direction
        present = [r for r in records if r.get(order_by) is not None]
        missing = [r for r in records if r.get(order_by) is None]
        present.sort(key=lambda r: r[order_by], reverse=descending)
        records = present + missing
    if limit is not None:
        records = records[:limit]
    return records


class Repository(ABC):
    """Abstract keyed-record store."""

    @abstractmethod
    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Append a record (an id is assigned if missing) and return the stored copy."""
        ...

    @abstractmethod
    async def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        """Return the record with record_id, or None."""
        ...

    @abstractmethod
    async def update(
        self, table: str, record_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Merge changes into an existing record. Returns the updated record or None."""
        ...

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> bool:
        """Delete a record. Returns True if it existed."""
        ...

    @abstractmethod
    async def find(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return records matching where, optionally sorted and limited."""
        ...

    async def find_one(
        self, table: str, where: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        found = await self.find(table, where, limit=1)
        return found[0] if found else None

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryRepository(Repository):
    """Dict-backed repository for tests and ephemeral runs.

    Every method completes without awaiting, so each call is atomic with
    respect to other coroutines on the event loop. Records are deep-copied
    in and out.
    """

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}

    def _table(self, table: str) -> dict[str, dict[str, Any]]:
        return self._tables.setdefault(table, {})

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(record)
        stored.setdefault("id", new_id())
        rows = self._table(table)
        if stored["id"] in rows:
            raise KeyError(f"Duplicate id {stored['id']} in {table}")
        rows[stored["id"]] = stored
        return copy.deepcopy(stored)

    async def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        record = self._table(table).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def update(
        self, table: str, record_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        record = self._table(table).get(record_id)
        if record is None:
            return None
        record.update(copy.deepcopy(changes))
        record["id"] = record_id
        return copy.deepcopy(record)

    async def delete(self, table: str, record_id: str) -> bool:
        return self._table(table).pop(record_id, None) is not None

    async def find(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        found = [copy.deepcopy(r) for r in self._table(table).values() if matches(r, where)]
        return sort_and_limit(found, order_by, descending, limit)
