"""Write the terminal outcome back onto a source message."""

from __future__ import annotations

from loguru import logger

from leadsync.application.ports.message_status import MessageStatusWriter
from leadsync.domain.entities.inbound_message import FeedRecord
from leadsync.domain.models import MessageStatus


class MarkProcessedUseCase:
    """Set the processed flag and store the status payload.

    Re-marking overwrites the previous status. A failed write is logged and
    reported as False so the caller can carry on with the next message.
    """

    def __init__(self, writer: MessageStatusWriter) -> None:
        self.writer = writer

    def mark(self, record: FeedRecord, status: MessageStatus) -> bool:
        payload = status.to_payload()
        try:
            self.writer.write_status(record.ref, payload, status.processed_at)
        except Exception as e:
            logger.error(f"Failed to mark message {record.address} as processed: {e}")
            return False

        logger.info(f"Marked message {record.address} as processed. Status: {status.state.value}")
        return True
