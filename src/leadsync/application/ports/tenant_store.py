from __future__ import annotations
from datetime import datetime
from typing import Optional, Protocol

from leadsync.domain.entities.credential import EncryptedToken, OAuthCredential
from leadsync.domain.models import TenantProfile, ThreadState


class TenantConfigStore(Protocol):
    def get_tenant(self, tenant_id: str) -> Optional[TenantProfile]: ...
    def get_thread(self, tenant_id: str, thread_key: str) -> Optional[ThreadState]: ...


class CredentialStore(Protocol):
    def load(self, tenant_id: str) -> Optional[OAuthCredential]: ...
    def save(self, credential: OAuthCredential) -> None: ...
    def save_access_token(self, tenant_id: str, access_token: EncryptedToken, expires_at: datetime) -> None: ...
