"""Per-tenant Google credential lifecycle: decrypt, refresh, persist."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol, TypeVar

from loguru import logger
from pydantic import SecretStr

from leadsync.application.ports.tenant_store import CredentialStore
from leadsync.domain.entities.credential import OAuthCredential, TokenGrant
from leadsync.domain.errors import AuthError, CredentialMissingError
from leadsync.infrastructure.google.crypto import TokenCipher

T = TypeVar("T")

DEFAULT_REFRESH_WINDOW = timedelta(minutes=5)


class TokenProvider(Protocol):
    def refresh(self, refresh_token: str) -> TokenGrant: ...


@dataclass(frozen=True)
class ValidCredential:
    """A usable access token. The plaintext stays wrapped until the API call."""

    tenant_id: str
    access_token: SecretStr
    expires_at: datetime


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class CredentialManager:
    """
    Hand out valid access tokens for a tenant, refreshing them when needed.

    Flow:
    1. Load the encrypted credential (missing -> terminal AuthError)
    2. If the access token expires within the refresh window, refresh it under
       the tenant's lock, re-checking first so concurrent callers share one refresh
    3. Persist the new access token and expiry, re-encrypted
    4. Decrypt and return the access token

    A revoked refresh token or an undecryptable envelope needs the tenant to
    reconnect their account; nothing here retries those.
    """

    def __init__(
        self,
        store: CredentialStore,
        cipher: TokenCipher,
        provider: TokenProvider,
        refresh_window: timedelta = DEFAULT_REFRESH_WINDOW,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.cipher = cipher
        self.provider = provider
        self.refresh_window = refresh_window
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # =========================================================================
    # Public API
    # =========================================================================

    def get_valid_credential(self, tenant_id: str) -> ValidCredential:
        """Return a token valid for at least the refresh window."""
        credential = self._load(tenant_id)
        if not self._needs_refresh(credential):
            return self._unwrap(credential)

        with self._lock_for(tenant_id):
            credential = self._load(tenant_id)
            if not self._needs_refresh(credential):
                logger.debug(f"Token for tenant {tenant_id} was refreshed by another caller")
                return self._unwrap(credential)
            logger.info(f"Google token expired or expiring soon for tenant {tenant_id}. Refreshing...")
            return self._refresh(credential)

    def force_refresh(self, tenant_id: str, failed_token: str | None = None) -> ValidCredential:
        """Refresh regardless of expiry.

        When ``failed_token`` is given and the stored token already differs from
        it, another caller refreshed in the meantime and that token is returned.
        """
        with self._lock_for(tenant_id):
            credential = self._load(tenant_id)
            if failed_token is not None and not self._needs_refresh(credential):
                current = self._unwrap(credential)
                if current.access_token.get_secret_value() != failed_token:
                    return current
            logger.info(f"Forcing Google token refresh for tenant {tenant_id}")
            return self._refresh(credential)

    def call_with_credential(self, tenant_id: str, fn: Callable[[str], T]) -> T:
        """Run ``fn(access_token)``; on an authorization failure refresh once and retry once."""
        credential = self.get_valid_credential(tenant_id)
        token = credential.access_token.get_secret_value()
        try:
            return fn(token)
        except AuthError as e:
            if e.needs_reauthorization:
                raise
            logger.warning(f"Google rejected token for tenant {tenant_id}, refreshing and retrying once: {e}")
            refreshed = self.force_refresh(tenant_id, failed_token=token)
        return fn(refreshed.access_token.get_secret_value())

    def store_authorization(self, tenant_id: str, grant: TokenGrant) -> OAuthCredential:
        """Persist tokens from an authorization-code exchange."""
        existing = self.store.load(tenant_id)
        if grant.refresh_token:
            refresh_token = self.cipher.encrypt(grant.refresh_token)
        elif existing is not None and existing.refresh_token is not None:
            refresh_token = existing.refresh_token
        else:
            raise AuthError(
                "Google did not return a refresh token. Reconnect with offline access.",
                needs_reauthorization=True,
                details={"tenant_id": tenant_id},
            )

        now = self._clock()
        credential = OAuthCredential(
            tenant_id=tenant_id,
            access_token=self.cipher.encrypt(grant.access_token),
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=grant.expires_in),
            updated_at=now,
        )
        self.store.save(credential)
        logger.info(f"Stored Google authorization for tenant {tenant_id}")
        return credential

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_for(self, tenant_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = self._locks[tenant_id] = threading.Lock()
            return lock

    def _load(self, tenant_id: str) -> OAuthCredential:
        credential = self.store.load(tenant_id)
        if credential is None or credential.refresh_token is None:
            raise CredentialMissingError(tenant_id)
        return credential

    def _needs_refresh(self, credential: OAuthCredential) -> bool:
        if credential.access_token is None or credential.expires_at is None:
            return True
        return self._clock() >= _utc(credential.expires_at) - self.refresh_window

    def _unwrap(self, credential: OAuthCredential) -> ValidCredential:
        return ValidCredential(
            tenant_id=credential.tenant_id,
            access_token=SecretStr(self.cipher.decrypt(credential.access_token)),
            expires_at=_utc(credential.expires_at),
        )

    def _refresh(self, credential: OAuthCredential) -> ValidCredential:
        refresh_token = self.cipher.decrypt(credential.refresh_token)
        try:
            grant = self.provider.refresh(refresh_token)
        except AuthError:
            logger.error(f"Google refresh token for tenant {credential.tenant_id} is invalid or revoked")
            raise

        now = self._clock()
        expires_at = now + timedelta(seconds=grant.expires_in)
        encrypted_access = self.cipher.encrypt(grant.access_token)

        if grant.refresh_token:
            self.store.save(
                OAuthCredential(
                    tenant_id=credential.tenant_id,
                    access_token=encrypted_access,
                    refresh_token=self.cipher.encrypt(grant.refresh_token),
                    expires_at=expires_at,
                    updated_at=now,
                )
            )
        else:
            self.store.save_access_token(credential.tenant_id, encrypted_access, expires_at)

        logger.info(f"Successfully refreshed Google token for tenant {credential.tenant_id}")
        return ValidCredential(
            tenant_id=credential.tenant_id,
            access_token=SecretStr(grant.access_token),
            expires_at=expires_at,
        )
