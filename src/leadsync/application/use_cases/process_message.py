"""Run one delivered message through trigger, extraction and reconciliation."""

from __future__ import annotations

from loguru import logger

from leadsync.application.ports.destination import DestinationFactory, DestinationTable
from leadsync.application.use_cases.evaluate_trigger import EvaluateTriggerUseCase, MessageDecision
from leadsync.application.use_cases.extract_fields import ExtractFieldsUseCase
from leadsync.application.use_cases.mark_processed import MarkProcessedUseCase
from leadsync.application.use_cases.reconcile_row import ReconcileRowUseCase, RowContext
from leadsync.domain.entities.inbound_message import FeedRecord, InboundMessage
from leadsync.domain.errors import AuthError, LeadSyncError, UnexpectedError, ValidationError
from leadsync.domain.models import DestinationConfig, MessageStatus, ReconciliationOutcome


class ProcessMessageUseCase:
    """
    Process a single message from the change feed.

    Flow:
    1. Derive tenant/thread from the address (malformed -> skip-mark)
    2. Message-level checks (test flag, sender, disabled agent, configs, credential)
    3. For each active destination, in order and inside its own failure boundary:
       trigger policy -> extraction -> row reconciliation
    4. Mark the message processed exactly once, whatever happened above

    Failed destinations are recorded in the status and not retried.
    """

    def __init__(
        self,
        trigger: EvaluateTriggerUseCase,
        extractor: ExtractFieldsUseCase,
        reconciler: ReconcileRowUseCase,
        destinations: DestinationFactory,
        marker: MarkProcessedUseCase,
    ) -> None:
        self.trigger = trigger
        self.extractor = extractor
        self.reconciler = reconciler
        self.destinations = destinations
        self.marker = marker

    def process(self, record: FeedRecord) -> MessageStatus | None:
        """Process ``record`` and mark it.

        Returns the status written, or None when the message was deliberately
        left unmarked (test message, already processed).
        """
        logger.debug(f"Starting processing for message: {record.address}")

        try:
            message = InboundMessage.from_record(record)
            decision = self.trigger.evaluate_message(message)

            if not decision.mark:
                logger.info(f"Leaving message {record.address} untouched: {decision.reason}")
                return None

            if not decision.proceed:
                logger.info(f"Skipping message {record.address}: {decision.reason}")
                status = MessageStatus.skipped(decision.reason or "skipped")
            else:
                status = self._process_destinations(message, decision)

        except ValidationError as e:
            logger.warning(f"Invalid message {record.address}: {e.message}")
            status = MessageStatus.skipped(e.message)
        except Exception as e:
            logger.exception(f"CRITICAL: Failed to process message {record.address}: {e}")
            status = MessageStatus.error(UnexpectedError.wrap(e).message)

        self.marker.mark(record, status)
        return status

    def _process_destinations(self, message: InboundMessage, decision: MessageDecision) -> MessageStatus:
        table = self.destinations(message.tenant_id)
        context = RowContext(
            thread_key=message.thread_key,
            created_at=message.created_at,
            contact_name=self._contact_name(decision),
        )

        outcomes: dict[str, ReconciliationOutcome] = {}
        for config in decision.destinations:
            key = config.destination_id
            if key in outcomes:
                key = f"{key}#{len(outcomes) + 1}"
            logger.info(
                f"Processing message {message.message_id} against sheet {config.destination_id} "
                f"(tenant: {message.tenant_id}). Trigger: {config.trigger_policy.value}"
            )
            outcomes[key] = self._process_destination(message, config, table, context)

        return MessageStatus.from_outcomes(outcomes)

    def _process_destination(
        self,
        message: InboundMessage,
        config: DestinationConfig,
        table: DestinationTable,
        context: RowContext,
    ) -> ReconciliationOutcome:
        try:
            trigger = self.trigger.evaluate_destination(message, config)
            if not trigger.proceed:
                logger.info(f"Skipping sheet {config.destination_id} for {message.message_id}: {trigger.reason}")
                return ReconciliationOutcome.skipped(trigger.reason or "skipped")

            extraction = self.extractor.extract(message.text, config.columns)
            if extraction.skipped:
                logger.info(
                    f"Extraction skipped for {message.message_id} / {config.destination_id}: "
                    f"{extraction.skipped_reason}"
                )
                return ReconciliationOutcome.skipped(extraction.skipped_reason or "skipped")

            return self.reconciler.reconcile(table, config, extraction.fields, context)

        except AuthError as e:
            reason = e.message
            if e.needs_reauthorization:
                reason = f"{reason} Google account needs to be reconnected."
            logger.error(f"Authorization failed for sheet {config.destination_id}: {reason}")
            return ReconciliationOutcome.error(reason)
        except LeadSyncError as e:
            logger.error(f"Error processing sheet {config.destination_id} on message {message.message_id}: {e}")
            return ReconciliationOutcome.error(e.message)
        except Exception as e:
            logger.exception(f"Unexpected error processing sheet {config.destination_id}: {e}")
            return ReconciliationOutcome.error(str(e) or type(e).__name__)

    @staticmethod
    def _contact_name(decision: MessageDecision) -> str | None:
        if decision.thread is not None and decision.thread.contact_name:
            return decision.thread.contact_name
        if decision.tenant is not None:
            return decision.tenant.contact_name or decision.tenant.display_name
        return None
