"""Domain models and entities."""

from leadsync.domain.models import (
    SENTINEL,
    ColumnSpec,
    DestinationConfig,
    MessageState,
    MessageStatus,
    OutcomeKind,
    ReconciliationOutcome,
    SemanticType,
    TenantProfile,
    ThreadState,
    TriggerPolicy,
)

__all__ = [
    "SENTINEL",
    "TriggerPolicy",
    "SemanticType",
    "ColumnSpec",
    "DestinationConfig",
    "TenantProfile",
    "ThreadState",
    "OutcomeKind",
    "ReconciliationOutcome",
    "MessageState",
    "MessageStatus",
]
