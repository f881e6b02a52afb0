from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional


@dataclass(frozen=True)
class EncryptedToken:
    # AES-256-GCM envelope, all parts hex encoded
    iv: str
    encrypted_data: str
    auth_tag: str

    def to_dict(self) -> dict[str, str]:
        return {"iv": self.iv, "encryptedData": self.encrypted_data, "authTag": self.auth_tag}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, str]]) -> Optional[EncryptedToken]:
        if not data or not data.get("encryptedData"):
            return None
        return cls(
            iv=data.get("iv", ""),
            encrypted_data=data["encryptedData"],
            auth_tag=data.get("authTag", ""),
        )


@dataclass(frozen=True)
class OAuthCredential:
    tenant_id: str
    access_token: Optional[EncryptedToken]
    refresh_token: Optional[EncryptedToken]
    expires_at: Optional[datetime]
    updated_at: Optional[datetime] = None

    @property
    def has_refresh_token(self) -> bool:
        return self.refresh_token is not None


@dataclass(frozen=True)
class TokenGrant:
    """Plaintext tokens returned by the OAuth provider."""
    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    def __repr__(self) -> str:
        return f"TokenGrant(expires_in={self.expires_in}, has_refresh_token={self.refresh_token is not None})"
