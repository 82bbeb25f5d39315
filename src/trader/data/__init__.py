"""Persistence layer.

Provides the keyed-record repository contract, in-memory and SQLite
implementations, the typed TradingStore and the venue credential store.
"""

from trader.data.credentials import CredentialStore, RepositoryCredentialStore
from trader.data.database import Database
from trader.data.records import from_record, to_record
from trader.data.repository import InMemoryRepository, Repository
from trader.data.sqlite_repository import SqliteRepository
from trader.data.store import TradingStore

__all__ = [
    "CredentialStore",
    "Database",
    "InMemoryRepository",
    "Repository",
    "RepositoryCredentialStore",
    "SqliteRepository",
    "TradingStore",
    "from_record",
    "to_record",
]
