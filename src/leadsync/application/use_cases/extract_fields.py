"""Extract structured column values from a free-text chat message."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from leadsync.application.ports.chat_completion import ChatCompletionClient
from leadsync.application.retry import RetryPolicy, run_with_retry
from leadsync.domain.errors import ParseError
from leadsync.domain.models import SENTINEL, ColumnSpec, SemanticType

DEFAULT_FIELD_PROMPTS: dict[SemanticType, str] = {
    SemanticType.NAME: "Extract the person's full name if mentioned. Look for proper names in the message.",
    SemanticType.PHONE: "Extract the phone number, including the country code, if mentioned.",
    SemanticType.DATE: "Extract any dates mentioned and format as YYYY-MM-DD if possible.",
    SemanticType.PRODUCT: "Extract any products or services mentioned or that the person is interested in.",
    SemanticType.INQUIRY: "Summarize the customer's question or request in one short sentence.",
}
GENERIC_FIELD_PROMPT = "Extract relevant information for this field."

# Values models use to say "nothing found"
_EMPTY_MARKERS = {"", "n/a", "na", "none", "null", "unknown", "not available", "not mentioned"}

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_LINE_PREFIX = re.compile(r"^[\s\-\*•>#]+")


@dataclass
class ExtractionResult:
    """Field values keyed by column id, or the reason nothing was extracted."""

    fields: dict[str, str] = field(default_factory=dict)
    skipped_reason: str | None = None
    model: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class ExtractFieldsUseCase:
    """
    Pull column values out of a message with one LLM call.

    Flow:
    1. Build one instruction listing every column (explicit prompt or type default)
    2. Call the primary model, falling back per the retry policy on transient errors
    3. Parse a JSON object from the reply, else ``key: value`` lines
    4. Fill anything unresolved with the sentinel
    """

    def __init__(self, chat: ChatCompletionClient, policy: RetryPolicy) -> None:
        self.chat = chat
        self.policy = policy

    def extract(self, text: str, columns: list[ColumnSpec]) -> ExtractionResult:
        """Extract every column from ``text``.

        Raises only when the model service fails fatally (4xx, or transient
        errors on every attempt).
        """
        text = (text or "").strip()
        if not text:
            return ExtractionResult(skipped_reason="empty message")
        if not columns:
            return ExtractionResult()

        system = self.build_instructions(columns)
        used: dict[str, str] = {}

        def _call(model: str) -> str:
            used["model"] = model
            logger.debug(f"Requesting extraction of {len(columns)} fields from {model}")
            return self.chat.complete(model=model, system=system, user=text)

        content = run_with_retry(self.policy, _call)
        fields = self.parse_response(content, columns)

        resolved = sum(1 for v in fields.values() if v != SENTINEL)
        logger.info(f"Extracted {resolved}/{len(columns)} fields using {used.get('model')}")
        return ExtractionResult(fields=fields, model=used.get("model"))

    @staticmethod
    def build_instructions(columns: list[ColumnSpec]) -> str:
        lines = []
        for col in columns:
            prompt = (col.extraction_prompt or "").strip()
            if not prompt:
                prompt = DEFAULT_FIELD_PROMPTS.get(col.semantic_type, GENERIC_FIELD_PROMPT)
            lines.append(f'- "{col.id}" ({col.display_name}): {prompt}')
        field_prompts = "\n".join(lines)

        return (
            "You are a data extraction assistant. Extract the following fields from the customer message:\n"
            f"{field_prompts}\n\n"
            "Respond with a single valid JSON object whose keys are exactly the quoted field ids above "
            "and whose values are the extracted strings.\n"
            f'If a field cannot be extracted, use "{SENTINEL}". '
            "Be concise and only extract what is explicitly mentioned."
        )

    def parse_response(self, content: str, columns: list[ColumnSpec]) -> dict[str, str]:
        """Map a model reply onto the requested columns.

        The result always has one entry per column id.
        """
        content = _THINK_BLOCK.sub("", content or "")
        try:
            raw = _parse_json_object(content)
        except ParseError as e:
            logger.warning(f"No JSON object in model reply, falling back to line parsing: {e}")
            raw = _parse_key_value_lines(content)

        lookup = {_normalize_key(k): v for k, v in raw.items()}
        fields: dict[str, str] = {}
        for col in columns:
            value = raw.get(col.id)
            if value is None:
                value = lookup.get(_normalize_key(col.id))
            if value is None:
                value = lookup.get(_normalize_key(col.display_name))
            fields[col.id] = _clean_value(value)
        return fields


def _parse_json_object(content: str) -> dict[str, Any]:
    """Return the first JSON object embedded in ``content``."""
    decoder = json.JSONDecoder()
    start = content.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(content, start)
        except json.JSONDecodeError:
            start = content.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = content.find("{", start + 1)
    raise ParseError("No JSON object found in response", {"length": len(content)})


def _parse_key_value_lines(content: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for line in content.splitlines():
        line = _LINE_PREFIX.sub("", line).replace("**", "")
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip().strip("\"'`")
        if key and key not in result:
            result[key] = value.strip().strip(",").strip().strip("\"'`")
    return result


def _normalize_key(key: Any) -> str:
    return str(key).strip().strip("\"'`").lower()


def _clean_value(value: Any) -> str:
    if value is None:
        return SENTINEL
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v) for v in value if v is not None)
    elif isinstance(value, dict):
        value = json.dumps(value, ensure_ascii=False)
    text = str(value).strip()
    if text.lower() in _EMPTY_MARKERS:
        return SENTINEL
    return text
