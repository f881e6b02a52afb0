from __future__ import annotations
from datetime import datetime
from typing import Any, Protocol


class MessageStatusWriter(Protocol):
    def write_status(self, ref: str, status: dict[str, Any], processed_at: datetime) -> None:
        """Set the processed flag and overwrite the stored status."""
        ...
