"""Polling change feed over unprocessed messages in SQLite."""

from __future__ import annotations

import threading

from loguru import logger

from leadsync.application.ports.message_feed import ErrorHandler, RecordsHandler
from leadsync.infrastructure.sqlite.client import SQLiteClient


class PollingSubscription:
    """Background poller delivering newly added unprocessed messages.

    Test messages are never delivered. Each record is delivered once per
    subscription; a new subscription starts again from the oldest pending one.
    """

    def __init__(
        self,
        client: SQLiteClient,
        on_records: RecordsHandler,
        on_error: ErrorHandler,
        poll_interval: float,
        batch_size: int,
    ):
        self._client = client
        self._on_records = on_records
        self._on_error = on_error
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._stop = threading.Event()
        self._cursor = 0
        self._thread = threading.Thread(target=self._run, name="leadsync-feed", daemon=True)

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        self._thread.start()

    def unsubscribe(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=max(self._poll_interval * 2, 5.0))

    def poll_once(self) -> int:
        """Deliver the next page of pending records. Returns how many were delivered."""
        rows = self._client.fetch_pending(after=self._cursor, limit=self._batch_size)
        if not rows:
            return 0
        # Unmarked rows stay behind the cursor
        self._cursor = rows[-1][0]
        records = [record for _, record in rows]
        self._on_records(records)
        return len(records)

    def _run(self) -> None:
        logger.debug(f"Feed poller started (interval={self._poll_interval}s)")
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Feed poll failed: {e}")
                self._stop.set()
                self._on_error(e)
                break
            self._stop.wait(self._poll_interval)
        logger.debug("Feed poller stopped")


class SQLitePollingFeed:
    """Message feed reading the ``messages`` table at a fixed interval."""

    def __init__(self, client: SQLiteClient, poll_interval: float = 2.0, batch_size: int = 500):
        self.client = client
        self.poll_interval = poll_interval
        self.batch_size = batch_size

    def subscribe(self, on_records: RecordsHandler, on_error: ErrorHandler) -> PollingSubscription:
        subscription = PollingSubscription(
            self.client,
            on_records,
            on_error,
            poll_interval=self.poll_interval,
            batch_size=self.batch_size,
        )
        subscription.start()
        return subscription
