from __future__ import annotations
from typing import Callable, Protocol

from leadsync.domain.entities.inbound_message import FeedRecord

# Receives the newly added records of one feed delivery, in order
RecordsHandler = Callable[[list[FeedRecord]], None]
ErrorHandler = Callable[[Exception], None]


class Subscription(Protocol):
    @property
    def active(self) -> bool: ...
    def unsubscribe(self) -> None: ...


class MessageFeed(Protocol):
    """Change feed over messages whose processed flag is false."""

    def subscribe(self, on_records: RecordsHandler, on_error: ErrorHandler) -> Subscription: ...
