"""OpenAI-compatible chat completions client (Groq by default)."""

from __future__ import annotations

import httpx
from loguru import logger

from leadsync.domain.errors import TransientExternalError, UpstreamRequestError


class OpenAICompatibleChatClient:
    """Synchronous ``/chat/completions`` client.

    Network errors, 429 and 5xx are transient; other 4xx responses and
    malformed bodies are not.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        if not api_key:
            raise ValueError("LLM API key is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._http = http_client or httpx.Client(timeout=timeout)

    def complete(self, model: str, system: str, user: str) -> str:
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        try:
            response = self._http.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
        except httpx.TimeoutException as e:
            logger.error(f"LLM API timeout (model={model})")
            raise TransientExternalError(f"LLM request timed out (model={model})") from e
        except httpx.TransportError as e:
            logger.error(f"LLM API transport error (model={model}): {e}")
            raise TransientExternalError(f"LLM request failed (model={model}): {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            logger.error(f"LLM API error {status} (model={model}): {response.text[:200]}")
            raise TransientExternalError(f"LLM service returned HTTP {status}", status_code=status)
        if status != 200:
            logger.error(f"LLM API error {status} (model={model}): {response.text[:200]}")
            raise UpstreamRequestError(f"LLM service rejected request: HTTP {status}", status_code=status)

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamRequestError(f"Unexpected LLM response shape from model {model}") from e

        logger.debug(f"LLM response received (model={model}, chars={len(content or '')})")
        return content or ""

    def close(self) -> None:
        self._http.close()
