"""Decide whether a message should be processed, per message and per destination."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from loguru import logger

from leadsync.application.ports.chat_completion import ChatCompletionClient
from leadsync.application.ports.tenant_store import CredentialStore, TenantConfigStore
from leadsync.application.retry import RetryPolicy, run_with_retry
from leadsync.domain.entities.inbound_message import InboundMessage
from leadsync.domain.models import DestinationConfig, TenantProfile, ThreadState, TriggerPolicy

DEFAULT_ALLOWED_SENDER_ROLES = ("user", "customer")

INTEREST_SYSTEM_PROMPT = (
    "You classify customer chat messages. Answer with exactly one word: "
    "YES if the customer shows interest in buying, booking or learning the price of a product "
    "or service, otherwise NO."
)


@dataclass
class MessageDecision:
    """Message-level verdict.

    ``mark`` is False only when the message must be left untouched
    (UI test messages, already processed re-deliveries).
    """

    proceed: bool
    mark: bool = True
    reason: str | None = None
    tenant: TenantProfile | None = None
    thread: ThreadState | None = None
    destinations: list[DestinationConfig] = field(default_factory=list)

    @classmethod
    def ignore(cls, reason: str) -> "MessageDecision":
        return cls(proceed=False, mark=False, reason=reason)

    @classmethod
    def skip(cls, reason: str) -> "MessageDecision":
        return cls(proceed=False, mark=True, reason=reason)


@dataclass(frozen=True)
class TriggerDecision:
    """Destination-level verdict."""

    proceed: bool
    reason: str | None = None


class InterestClassifier:
    """Lightweight yes/no model call used when no interest keywords are configured."""

    def __init__(self, chat: ChatCompletionClient, policy: RetryPolicy) -> None:
        self.chat = chat
        self.policy = policy

    def has_interest(self, text: str) -> bool:
        reply = run_with_retry(
            self.policy,
            lambda model: self.chat.complete(model=model, system=INTEREST_SYSTEM_PROMPT, user=text),
        )
        answer = (reply or "").strip().split()
        return bool(answer) and answer[0].strip(".,!\"'").lower() in ("yes", "true")


def matches_keywords(text: str, keywords: Iterable[str]) -> bool:
    """Case-insensitive substring match against any keyword."""
    lowered = text.lower()
    return any(k and k.lower() in lowered for k in keywords)


class EvaluateTriggerUseCase:
    """Apply the skip rules and each destination's trigger policy."""

    def __init__(
        self,
        tenants: TenantConfigStore,
        credentials: CredentialStore,
        interest_classifier: InterestClassifier | None = None,
        allowed_sender_roles: Iterable[str] = DEFAULT_ALLOWED_SENDER_ROLES,
    ) -> None:
        self.tenants = tenants
        self.credentials = credentials
        self.interest_classifier = interest_classifier
        self.allowed_sender_roles = frozenset(r.lower() for r in allowed_sender_roles)

    def evaluate_message(self, message: InboundMessage) -> MessageDecision:
        """Checks that apply to the message as a whole."""
        if message.is_test:
            return MessageDecision.ignore("test message")
        if message.processed:
            return MessageDecision.ignore("already processed")

        sender = (message.sender_role or "").lower()
        if sender not in self.allowed_sender_roles:
            allowed = ", ".join(sorted(self.allowed_sender_roles))
            return MessageDecision.skip(f"Sender ({message.sender_role}) not in allowed list [{allowed}]")

        tenant = self.tenants.get_tenant(message.tenant_id)
        if tenant is None:
            return MessageDecision.skip(f"Tenant {message.tenant_id} not found")
        if tenant.global_agent_disabled:
            return MessageDecision.skip("Agent is globally disabled")

        thread = self.tenants.get_thread(message.tenant_id, message.thread_key)
        if thread is not None and thread.agent_disabled:
            return MessageDecision.skip(
                f"Agent is disabled for chat (agent_status: {thread.agent_status}, "
                f"human_agent: {thread.human_agent})"
            )

        destinations = tenant.active_destinations()
        if not destinations:
            return MessageDecision.skip("No active destination configs")

        credential = self.credentials.load(message.tenant_id)
        if credential is None or not credential.has_refresh_token:
            return MessageDecision.skip("Google credential missing")

        return MessageDecision(
            proceed=True,
            tenant=tenant,
            thread=thread,
            destinations=destinations,
        )

    def evaluate_destination(self, message: InboundMessage, config: DestinationConfig) -> TriggerDecision:
        """Apply one destination's trigger policy."""
        policy = config.trigger_policy

        if policy == TriggerPolicy.MANUAL:
            return TriggerDecision(proceed=False, reason="manual trigger")

        if policy == TriggerPolicy.ON_DETECTED_INTEREST:
            if not message.text:
                return TriggerDecision(proceed=False, reason="empty message")
            detected = self._detect_interest(message.text, config)
            logger.info(f"Interest check for {message.message_id} / {config.destination_id}: {detected}")
            if not detected:
                return TriggerDecision(proceed=False, reason="interest not detected")
            return TriggerDecision(proceed=True)

        return TriggerDecision(proceed=True)

    def _detect_interest(self, text: str, config: DestinationConfig) -> bool:
        if config.interest_keywords:
            return matches_keywords(text, config.interest_keywords)
        if self.interest_classifier is None:
            logger.warning(
                f"No interest keywords or classifier for destination {config.destination_id}, "
                "treating as not interested"
            )
            return False
        return self.interest_classifier.has_interest(text)
