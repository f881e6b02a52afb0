"""Domain models for LeadSync."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Placeholder for a field the model could not extract
SENTINEL = "N/A"


class TriggerPolicy(str, Enum):
    """When a destination should receive rows for a message."""

    ON_FIRST_CONTACT = "on-first-contact"
    ON_DETECTED_INTEREST = "on-detected-interest"
    MANUAL = "manual"

    @classmethod
    def parse(cls, raw: Any) -> "TriggerPolicy":
        """Map stored trigger values (including legacy spellings) to a policy.

        Unknown values fall back to ON_FIRST_CONTACT.
        """
        if isinstance(raw, cls):
            return raw
        value = str(raw or "").strip().lower().replace("_", "-").replace(" ", "-")
        if value in ("", "on-first-contact", "first-message", "first-contact"):
            return cls.ON_FIRST_CONTACT
        if value in ("on-detected-interest", "interest-detected", "detected-interest"):
            return cls.ON_DETECTED_INTEREST
        if value == "manual":
            return cls.MANUAL
        logger.warning(f"Unknown trigger policy '{raw}', treating as '{cls.ON_FIRST_CONTACT.value}'")
        return cls.ON_FIRST_CONTACT


class SemanticType(str, Enum):
    """What kind of value a column holds."""

    TEXT = "text"
    NAME = "name"
    PHONE = "phone"
    DATE = "date"
    PRODUCT = "product"
    INQUIRY = "inquiry"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, raw: Any) -> "SemanticType":
        if isinstance(raw, cls):
            return raw
        value = str(raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown column type '{raw}', treating as '{cls.TEXT.value}'")
            return cls.TEXT


def column_letter(index: int) -> str:
    """Convert a 0-based column index to its A1 letter (0 -> A, 26 -> AA)."""
    if index < 0:
        raise ValueError(f"Column index must be >= 0, got {index}")
    letters = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def column_index(letter: str) -> int:
    """Convert an A1 column letter to its 0-based index (A -> 0, AA -> 26)."""
    index = 0
    for ch in letter.strip().upper():
        if not "A" <= ch <= "Z":
            raise ValueError(f"Invalid column letter: {letter!r}")
        index = index * 26 + (ord(ch) - 64)
    if index == 0:
        raise ValueError(f"Invalid column letter: {letter!r}")
    return index - 1


# =============================================================================
# Destination configuration
# =============================================================================


class ColumnSpec(BaseModel):
    """A single column of a destination table."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    display_name: str = Field(validation_alias=AliasChoices("display_name", "displayName", "name"))
    semantic_type: SemanticType = Field(
        default=SemanticType.TEXT,
        validation_alias=AliasChoices("semantic_type", "semanticType", "type"),
    )
    extraction_prompt: str | None = Field(
        default=None,
        validation_alias=AliasChoices("extraction_prompt", "extractionPrompt", "aiPrompt"),
    )
    # Explicit A1 column letter; positional when unset
    column: str | None = None

    @field_validator("semantic_type", mode="before")
    @classmethod
    def _parse_semantic_type(cls, value: Any) -> SemanticType:
        return SemanticType.parse(value)

    @field_validator("column")
    @classmethod
    def _check_column(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        column_index(value)
        return value.strip().upper()

    @property
    def is_timestamp(self) -> bool:
        return self.id.strip().lower() == "timestamp" or self.display_name.strip().lower() == "timestamp"


class DestinationConfig(BaseModel):
    """One spreadsheet target and the rules for writing to it."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    destination_id: str = Field(
        default="",
        validation_alias=AliasChoices("destination_id", "destinationId", "sheetId"),
    )
    active: bool = True
    columns: list[ColumnSpec] = Field(default_factory=list)
    trigger_policy: TriggerPolicy = Field(
        default=TriggerPolicy.ON_FIRST_CONTACT,
        validation_alias=AliasChoices("trigger_policy", "triggerPolicy", "addTrigger"),
    )
    auto_update_existing: bool = Field(
        default=True,
        validation_alias=AliasChoices("auto_update_existing", "autoUpdateExisting", "autoUpdateFields"),
    )
    interest_keywords: frozenset[str] = Field(
        default_factory=frozenset,
        validation_alias=AliasChoices("interest_keywords", "interestKeywords"),
    )
    sheet_name: str = Field(default="Sheet1", validation_alias=AliasChoices("sheet_name", "sheetName"))
    key_column_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("key_column_id", "keyColumnId"),
    )

    @field_validator("trigger_policy", mode="before")
    @classmethod
    def _parse_trigger(cls, value: Any) -> TriggerPolicy:
        return TriggerPolicy.parse(value)

    @field_validator("interest_keywords", mode="before")
    @classmethod
    def _normalize_keywords(cls, value: Any) -> frozenset[str]:
        if not value:
            return frozenset()
        if isinstance(value, str):
            value = value.split(",")
        return frozenset(k.strip().lower() for k in value if k and k.strip())

    @property
    def is_usable(self) -> bool:
        """Active and complete enough to write rows."""
        return self.active and bool(self.destination_id) and bool(self.columns)

    def key_column(self) -> ColumnSpec | None:
        """Column used to look up an existing contact row."""
        if self.key_column_id:
            for col in self.columns:
                if col.id == self.key_column_id:
                    return col
            return None
        for col in self.columns:
            if col.semantic_type == SemanticType.PHONE:
                return col
        return None

    def column_address(self, col: ColumnSpec) -> str:
        """A1 column letter for a column of this destination."""
        if col.column:
            return col.column
        for position, candidate in enumerate(self.columns):
            if candidate.id == col.id:
                return column_letter(position)
        raise KeyError(f"Column {col.id} is not part of destination {self.destination_id}")


class TenantProfile(BaseModel):
    """Per-tenant settings relevant to the pipeline."""

    tenant_id: str
    display_name: str | None = None
    contact_name: str | None = None
    global_agent_disabled: bool = False
    destinations: list[DestinationConfig] = Field(default_factory=list)

    def active_destinations(self) -> list[DestinationConfig]:
        return [d for d in self.destinations if d.is_usable]


class ThreadState(BaseModel):
    """Per-conversation flags."""

    tenant_id: str
    thread_key: str
    agent_status: str | None = None
    human_agent: bool = False
    contact_name: str | None = None

    @property
    def agent_disabled(self) -> bool:
        return self.agent_status == "off" or self.human_agent


# =============================================================================
# Outcomes
# =============================================================================


class OutcomeKind(str, Enum):
    """Result of processing a message against one destination."""

    APPENDED = "appended"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


class ReconciliationOutcome(BaseModel):
    """Outcome for one (message, destination) pair."""

    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind
    row: int | None = None
    reason: str | None = None

    @classmethod
    def appended(cls) -> "ReconciliationOutcome":
        return cls(kind=OutcomeKind.APPENDED)

    @classmethod
    def updated(cls, row: int) -> "ReconciliationOutcome":
        return cls(kind=OutcomeKind.UPDATED, row=row)

    @classmethod
    def skipped(cls, reason: str) -> "ReconciliationOutcome":
        return cls(kind=OutcomeKind.SKIPPED, reason=reason)

    @classmethod
    def error(cls, reason: str) -> "ReconciliationOutcome":
        return cls(kind=OutcomeKind.ERROR, reason=reason)

    @property
    def failed(self) -> bool:
        return self.kind == OutcomeKind.ERROR


class MessageState(str, Enum):
    """Aggregate state written back onto the message."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    SKIPPED = "skipped"
    ERROR = "error"


class MessageStatus(BaseModel):
    """Status payload stored on a processed message."""

    state: MessageState
    reason: str | None = None
    details: dict[str, ReconciliationOutcome] = Field(default_factory=dict)
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def skipped(cls, reason: str) -> "MessageStatus":
        return cls(state=MessageState.SKIPPED, reason=reason)

    @classmethod
    def error(cls, reason: str) -> "MessageStatus":
        return cls(state=MessageState.ERROR, reason=reason)

    @classmethod
    def from_outcomes(cls, outcomes: dict[str, ReconciliationOutcome]) -> "MessageStatus":
        """Success only when no destination failed."""
        if any(o.failed for o in outcomes.values()):
            return cls(
                state=MessageState.PARTIAL_FAILURE,
                reason="One or more destination configurations failed",
                details=outcomes,
            )
        return cls(state=MessageState.SUCCESS, details=outcomes)

    @property
    def succeeded(self) -> bool:
        return self.state in (MessageState.SUCCESS, MessageState.SKIPPED)

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready representation for the message store."""
        return self.model_dump(mode="json", exclude_none=True)
