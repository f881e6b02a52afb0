from __future__ import annotations
from typing import Protocol


class ChatCompletionClient(Protocol):
    def complete(self, model: str, system: str, user: str) -> str:
        """Return the content of the first choice."""
        ...
