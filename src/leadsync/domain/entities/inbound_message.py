from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from leadsync.domain.errors import ValidationError

# whatsapp/{tenant_id}/chats/{thread_key}/messages/{message_id}
ADDRESS_ROOT = "whatsapp"


@dataclass(frozen=True)
class FeedRecord:
    """A raw entry delivered by the change feed."""
    ref: str  # store-specific handle used to write the status back
    address: str
    text: str
    sender: Optional[str]
    is_test: bool
    processed: bool
    created_at: Optional[datetime]


@dataclass(frozen=True)
class InboundMessage:
    tenant_id: str
    thread_key: str
    message_id: str
    text: str
    sender_role: Optional[str]
    is_test: bool
    processed: bool
    created_at: Optional[datetime]

    @classmethod
    def from_record(cls, record: FeedRecord) -> InboundMessage:
        """Derive tenant and thread from the record address."""
        tenant_id, thread_key, message_id = parse_address(record.address)
        return cls(
            tenant_id=tenant_id,
            thread_key=thread_key,
            message_id=message_id,
            text=(record.text or "").strip(),
            sender_role=record.sender,
            is_test=record.is_test,
            processed=record.processed,
            created_at=record.created_at,
        )


def parse_address(address: str) -> tuple[str, str, str]:
    """Split an address into (tenant_id, thread_key, message_id)."""
    segments = (address or "").split("/")
    if (
        len(segments) != 6
        or segments[0] != ADDRESS_ROOT
        or segments[2] != "chats"
        or segments[4] != "messages"
        or not all(s.strip() for s in (segments[1], segments[3], segments[5]))
    ):
        raise ValidationError(
            f"Could not extract tenant or thread from address: {address}",
            {"address": address},
        )
    return segments[1], segments[3], segments[5]


def build_address(tenant_id: str, thread_key: str, message_id: str) -> str:
    return f"{ADDRESS_ROOT}/{tenant_id}/chats/{thread_key}/messages/{message_id}"
