"""SQLite infrastructure for the local message feed, tenants and credentials."""

from leadsync.infrastructure.sqlite.client import (
    SQLiteClient,
    get_sqlite_client,
    parse_destinations,
)
from leadsync.infrastructure.sqlite.feed import PollingSubscription, SQLitePollingFeed

__all__ = [
    "SQLiteClient",
    "get_sqlite_client",
    "parse_destinations",
    "SQLitePollingFeed",
    "PollingSubscription",
]
