"""Tests for message-level skip rules and per-destination trigger policies."""

import pytest

from conftest import TENANT, THREAD, FakeChatClient, make_destination, make_record
from leadsync.application.use_cases.evaluate_trigger import (
    EvaluateTriggerUseCase,
    InterestClassifier,
    matches_keywords,
)
from leadsync.domain.entities.inbound_message import InboundMessage
from leadsync.domain.models import DestinationConfig, TenantProfile, ThreadState, TriggerPolicy


@pytest.fixture
def tenant(store):
    profile = TenantProfile(tenant_id=TENANT, display_name="Sara's Shop", destinations=[make_destination()])
    store.tenants[TENANT] = profile
    return profile


@pytest.fixture
def evaluator(store):
    return EvaluateTriggerUseCase(tenants=store, credentials=store)


def message(**kwargs) -> InboundMessage:
    return InboundMessage.from_record(make_record(**kwargs))


class TestEvaluateMessage:
    def test_proceeds_with_active_destinations(self, evaluator, tenant, seed_credential):
        seed_credential()

        decision = evaluator.evaluate_message(message())

        assert decision.proceed
        assert decision.tenant == tenant
        assert [d.destination_id for d in decision.destinations] == ["sheet-1"]

    def test_test_message_left_untouched(self, evaluator, tenant, seed_credential):
        seed_credential()

        decision = evaluator.evaluate_message(message(is_test=True))

        assert not decision.proceed
        assert not decision.mark

    def test_already_processed_left_untouched(self, evaluator, tenant, seed_credential):
        seed_credential()

        decision = evaluator.evaluate_message(message(processed=True))

        assert not decision.proceed
        assert not decision.mark

    @pytest.mark.parametrize("sender", ["assistant", "agent", None])
    def test_disallowed_sender_is_skipped(self, evaluator, tenant, seed_credential, sender):
        seed_credential()

        decision = evaluator.evaluate_message(message(sender=sender))

        assert not decision.proceed
        assert decision.mark
        assert "not in allowed list" in decision.reason

    def test_customer_sender_allowed(self, evaluator, tenant, seed_credential):
        seed_credential()

        assert evaluator.evaluate_message(message(sender="Customer")).proceed

    def test_unknown_tenant_is_skipped(self, evaluator):
        decision = evaluator.evaluate_message(message())

        assert not decision.proceed
        assert decision.mark
        assert "not found" in decision.reason

    def test_globally_disabled_agent(self, evaluator, store, seed_credential):
        store.tenants[TENANT] = TenantProfile(
            tenant_id=TENANT, global_agent_disabled=True, destinations=[make_destination()]
        )
        seed_credential()

        decision = evaluator.evaluate_message(message())

        assert decision.reason == "Agent is globally disabled"

    @pytest.mark.parametrize("status, human", [("off", False), ("on", True)])
    def test_thread_disabled(self, evaluator, store, tenant, seed_credential, status, human):
        store.threads[(TENANT, THREAD)] = ThreadState(
            tenant_id=TENANT, thread_key=THREAD, agent_status=status, human_agent=human
        )
        seed_credential()

        decision = evaluator.evaluate_message(message())

        assert not decision.proceed
        assert decision.reason.startswith("Agent is disabled for chat")

    def test_inactive_and_incomplete_destinations_ignored(self, evaluator, store, seed_credential):
        store.tenants[TENANT] = TenantProfile(
            tenant_id=TENANT,
            destinations=[
                make_destination(active=False),
                DestinationConfig(destination_id="no-columns"),
                make_destination(destination_id=""),
            ],
        )
        seed_credential()

        decision = evaluator.evaluate_message(message())

        assert decision.reason == "No active destination configs"

    def test_missing_credential(self, evaluator, tenant):
        decision = evaluator.evaluate_message(message())

        assert not decision.proceed
        assert decision.reason == "Google credential missing"


class TestEvaluateDestination:
    def test_first_contact_always_proceeds(self, evaluator):
        assert evaluator.evaluate_destination(message(), make_destination()).proceed

    def test_manual_never_proceeds(self, evaluator):
        decision = evaluator.evaluate_destination(message(), make_destination(trigger=TriggerPolicy.MANUAL))

        assert not decision.proceed
        assert decision.reason == "manual trigger"

    def test_interest_keywords_match(self, evaluator):
        config = make_destination(trigger=TriggerPolicy.ON_DETECTED_INTEREST, interest_keywords="price, sofa")

        assert evaluator.evaluate_destination(message(text="How much is the SOFA?"), config).proceed
        decision = evaluator.evaluate_destination(message(text="hello there"), config)
        assert not decision.proceed
        assert decision.reason == "interest not detected"

    def test_interest_with_empty_text(self, evaluator):
        config = make_destination(trigger=TriggerPolicy.ON_DETECTED_INTEREST, interest_keywords=["sofa"])

        decision = evaluator.evaluate_destination(message(text="  "), config)

        assert decision.reason == "empty message"

    def test_interest_without_keywords_uses_classifier(self, store, policy):
        chat = FakeChatClient(["YES."])
        evaluator = EvaluateTriggerUseCase(store, store, interest_classifier=InterestClassifier(chat, policy))
        config = make_destination(trigger=TriggerPolicy.ON_DETECTED_INTEREST)

        assert evaluator.evaluate_destination(message(text="what does the sofa cost"), config).proceed
        assert chat.calls[0]["user"] == "what does the sofa cost"

    def test_interest_without_keywords_or_classifier(self, evaluator):
        config = make_destination(trigger=TriggerPolicy.ON_DETECTED_INTEREST)

        assert not evaluator.evaluate_destination(message(), config).proceed


class TestHelpers:
    def test_matches_keywords_case_insensitive(self):
        assert matches_keywords("I want the BLUE sofa", ["blue"])
        assert not matches_keywords("just browsing", ["buy", "price"])

    def test_classifier_no_answer(self, policy):
        classifier = InterestClassifier(FakeChatClient(["No"]), policy)

        assert not classifier.has_interest("thanks, bye")

    def test_legacy_trigger_spellings(self):
        assert TriggerPolicy.parse("first_message") == TriggerPolicy.ON_FIRST_CONTACT
        assert TriggerPolicy.parse("Interest Detected") == TriggerPolicy.ON_DETECTED_INTEREST
        assert TriggerPolicy.parse("something-else") == TriggerPolicy.ON_FIRST_CONTACT
