"""Assemble the extraction-and-reconciliation pipeline from settings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from loguru import logger

from leadsync.application.listener import ChangeFeedListener
from leadsync.application.ports.chat_completion import ChatCompletionClient
from leadsync.application.ports.destination import DestinationFactory
from leadsync.application.retry import RetryPolicy
from leadsync.application.use_cases.evaluate_trigger import EvaluateTriggerUseCase, InterestClassifier
from leadsync.application.use_cases.extract_fields import ExtractFieldsUseCase
from leadsync.application.use_cases.mark_processed import MarkProcessedUseCase
from leadsync.application.use_cases.process_message import ProcessMessageUseCase
from leadsync.application.use_cases.reconcile_row import ReconcileRowUseCase
from leadsync.infrastructure.google.credentials import CredentialManager
from leadsync.infrastructure.google.crypto import TokenCipher
from leadsync.infrastructure.google.oauth import GoogleOAuthProvider
from leadsync.infrastructure.google.sheets import sheets_destination_factory
from leadsync.infrastructure.llm.chat_client import OpenAICompatibleChatClient
from leadsync.infrastructure.settings import Settings, get_settings
from leadsync.infrastructure.sqlite.client import SQLiteClient, get_sqlite_client
from leadsync.infrastructure.sqlite.feed import SQLitePollingFeed


@dataclass
class Pipeline:
    """Everything the API and the worker need, built once per process."""

    store: SQLiteClient
    credentials: CredentialManager
    oauth: GoogleOAuthProvider
    extractor: ExtractFieldsUseCase
    processor: ProcessMessageUseCase
    listener: ChangeFeedListener


def build_chat_client(settings: Settings) -> OpenAICompatibleChatClient:
    if settings.llm_api_key is None:
        raise ValueError("LLM_API_KEY is required")
    return OpenAICompatibleChatClient(
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key.get_secret_value(),
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout_seconds,
    )


def build_oauth_provider(settings: Settings) -> GoogleOAuthProvider:
    if not settings.google_client_id or settings.google_client_secret is None:
        raise ValueError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are required")
    return GoogleOAuthProvider(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret.get_secret_value(),
        token_url=settings.google_token_url,
        auth_url=settings.google_auth_url,
        redirect_uri=settings.google_redirect_uri,
        scopes=settings.google_scopes,
    )


def build_pipeline(
    settings: Settings | None = None,
    store: SQLiteClient | None = None,
    chat: ChatCompletionClient | None = None,
    oauth: GoogleOAuthProvider | None = None,
    destinations: DestinationFactory | None = None,
) -> Pipeline:
    """Wire adapters into use cases. Collaborators can be overridden."""
    settings = settings or get_settings()
    if settings.token_encryption_key is None:
        raise ValueError("TOKEN_ENCRYPTION_KEY is required")

    store = store or SQLiteClient(settings.sqlite_db_path)
    chat = chat or build_chat_client(settings)
    oauth = oauth or build_oauth_provider(settings)

    credentials = CredentialManager(
        store=store,
        cipher=TokenCipher(settings.token_encryption_key.get_secret_value()),
        provider=oauth,
        refresh_window=timedelta(seconds=settings.credential_refresh_window_seconds),
    )
    policy = RetryPolicy.with_fallback(settings.llm_primary_model, settings.llm_fallback_model)
    extractor = ExtractFieldsUseCase(chat, policy)

    processor = ProcessMessageUseCase(
        trigger=EvaluateTriggerUseCase(
            tenants=store,
            credentials=store,
            interest_classifier=InterestClassifier(chat, policy),
            allowed_sender_roles=settings.allowed_sender_roles,
        ),
        extractor=extractor,
        reconciler=ReconcileRowUseCase(),
        destinations=destinations or sheets_destination_factory(credentials),
        marker=MarkProcessedUseCase(store),
    )
    listener = ChangeFeedListener(
        feed=SQLitePollingFeed(store, poll_interval=settings.feed_poll_interval_seconds),
        processor=processor,
    )

    logger.info(
        f"Pipeline ready: primary model {settings.llm_primary_model}, "
        f"fallback {settings.llm_fallback_model or 'none'}"
    )
    return Pipeline(
        store=store,
        credentials=credentials,
        oauth=oauth,
        extractor=extractor,
        processor=processor,
        listener=listener,
    )


# Singleton instance
_pipeline: Pipeline | None = None


def get_pipeline() -> Pipeline:
    """Get or create the process-wide pipeline."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(store=get_sqlite_client())
    return _pipeline
