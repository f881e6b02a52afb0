"""AES-256-GCM encryption for OAuth tokens at rest."""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from loguru import logger

from leadsync.domain.entities.credential import EncryptedToken
from leadsync.domain.errors import AuthError

IV_BYTES = 16
TAG_BYTES = 16


class TokenCipher:
    """Encrypt and decrypt token strings into hex ``{iv, encryptedData, authTag}`` envelopes."""

    def __init__(self, key_hex: str):
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as e:
            raise ValueError("Token encryption key must be hex encoded") from e
        if len(key) != 32:
            raise ValueError(f"Token encryption key must be 32 bytes, got {len(key)}")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> EncryptedToken:
        iv = os.urandom(IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return EncryptedToken(iv=iv.hex(), encrypted_data=ciphertext.hex(), auth_tag=tag.hex())

    def decrypt(self, token: EncryptedToken) -> str:
        """Decrypt ``token``. A tampered or foreign envelope means the account must be reconnected."""
        try:
            iv = bytes.fromhex(token.iv)
            sealed = bytes.fromhex(token.encrypted_data) + bytes.fromhex(token.auth_tag)
            return self._aead.decrypt(iv, sealed, None).decode("utf-8")
        except (InvalidTag, ValueError) as e:
            logger.error(f"Decryption error: {type(e).__name__}")
            raise AuthError("Failed to decrypt stored Google token", needs_reauthorization=True) from e
