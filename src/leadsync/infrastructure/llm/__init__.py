"""Language model clients."""

from leadsync.infrastructure.llm.chat_client import OpenAICompatibleChatClient

__all__ = ["OpenAICompatibleChatClient"]
