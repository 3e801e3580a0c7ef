"""Symmetric encryption for Slack tokens persisted in the credential store."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken


class TokenCipherService:
    """Encrypt and decrypt token strings using a Fernet key derived from a secret."""

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            # A rotated TOKEN_ENCRYPTION_SECRET makes every stored token unreadable.
            raise ValueError(
                "Failed to decrypt stored Slack token; check TOKEN_ENCRYPTION_SECRET."
            ) from exc
        return plaintext.decode("utf-8")


__all__ = ["TokenCipherService"]
