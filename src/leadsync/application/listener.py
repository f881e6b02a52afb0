"""Change feed listener driving message processing."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger

from leadsync.application.ports.message_feed import MessageFeed, Subscription
from leadsync.application.use_cases.process_message import ProcessMessageUseCase
from leadsync.domain.entities.inbound_message import FeedRecord
from leadsync.domain.models import MessageState


@dataclass
class ListenerStats:
    """Track listener statistics."""

    deliveries: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    untouched: int = 0
    last_delivery: datetime | None = None
    by_state: dict[str, int] = field(default_factory=dict)

    def record(self, state: MessageState | None) -> None:
        if state is None:
            self.untouched += 1
            return
        self.processed += 1
        if state == MessageState.SKIPPED:
            self.skipped += 1
        elif state in (MessageState.ERROR, MessageState.PARTIAL_FAILURE):
            self.failed += 1
        self.by_state[state.value] = self.by_state.get(state.value, 0) + 1

    def to_dict(self) -> dict:
        return {
            "deliveries": self.deliveries,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "untouched": self.untouched,
            "last_delivery": self.last_delivery.isoformat() if self.last_delivery else None,
            "by_state": dict(self.by_state),
        }


class ListenerSubscription:
    """Handle owned by whoever started the listener. ``stop()`` ends deliveries."""

    def __init__(self, listener: "ChangeFeedListener", feed_subscription: Subscription) -> None:
        self._listener = listener
        self._feed_subscription = feed_subscription

    @property
    def active(self) -> bool:
        return self._feed_subscription.active

    def stop(self) -> None:
        self._listener._detach(self)

    def _unsubscribe(self) -> None:
        self._feed_subscription.unsubscribe()


class ChangeFeedListener:
    """
    Subscribe to unprocessed messages and process new ones one at a time.

    Only newly added feed entries are delivered. A feed-level error tears the
    subscription down; it is not restarted automatically. Stopping does not
    cancel the message currently being processed.
    """

    def __init__(self, feed: MessageFeed, processor: ProcessMessageUseCase) -> None:
        self.feed = feed
        self.processor = processor
        self.stats = ListenerStats()
        self.last_error: str | None = None
        self._subscription: ListenerSubscription | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        sub = self._subscription
        return sub is not None and sub.active

    def start(self) -> ListenerSubscription:
        """Subscribe to the feed and return the owned subscription."""
        with self._lock:
            if self._subscription is not None:
                logger.warning("Listener already running. Stop it first.")
                return self._subscription

            logger.info("Starting change feed listener for unprocessed messages...")
            feed_subscription = self.feed.subscribe(self.handle_records, self.handle_error)
            self._subscription = ListenerSubscription(self, feed_subscription)
            self.last_error = None
            logger.info("Change feed listener is active.")
            return self._subscription

    def stop(self) -> None:
        """Stop the current subscription, if any."""
        sub = self._subscription
        if sub is None:
            logger.warning("Attempted to stop listener, but it was not running.")
            return
        self._detach(sub)

    def _detach(self, sub: ListenerSubscription) -> None:
        with self._lock:
            if self._subscription is not sub:
                return
            logger.info("Stopping change feed listener...")
            sub._unsubscribe()
            self._subscription = None
            logger.info("Change feed listener stopped.")

    def handle_records(self, records: list[FeedRecord]) -> None:
        """Process one delivery of newly added records, sequentially."""
        self.stats.deliveries += 1
        self.stats.last_delivery = datetime.now(timezone.utc)
        if not records:
            return

        logger.info(f"Found {len(records)} new message(s) to process.")
        ordered = sorted(
            records,
            key=lambda r: (r.created_at is not None, r.created_at or datetime.min),
        )
        for record in ordered:
            if self._subscription is None:
                logger.info("Listener stopped, leaving remaining messages for the next subscription")
                break
            try:
                status = self.processor.process(record)
            except Exception as e:
                logger.exception(f"Unhandled error during sequential processing of {record.address}: {e}")
                self.stats.failed += 1
                continue
            self.stats.record(status.state if status else None)

    def handle_error(self, error: Exception) -> None:
        """Feed-level failure: tear the subscription down."""
        logger.error(f"CRITICAL: Change feed encountered an error: {error}")
        self.last_error = str(error)
        sub = self._subscription
        if sub is not None:
            self._detach(sub)
