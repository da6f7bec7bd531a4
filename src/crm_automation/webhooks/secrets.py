"""Generation and at-rest encryption of webhook signing secrets.

Signing needs the plaintext secret, so secrets are encrypted (Fernet) rather
than hashed.  The Fernet key is derived from ``SECRET_ENCRYPTION_KEY`` via
PBKDF2-HMAC-SHA256.
"""

from __future__ import annotations

import base64
import secrets

import structlog
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = structlog.get_logger()

_ENCRYPTED_PREFIX = "enc:"
_PBKDF2_SALT = b"crm-automation-webhook-secrets-v1"
_PBKDF2_ITERATIONS = 480_000


def generate_secret() -> str:
    """Return a new signing secret: 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


class SecretCipher:
    """Encrypts and decrypts webhook secrets with Fernet.

    Args:
        fernet: The Fernet instance to use.  Build one with
            :meth:`from_passphrase` or :meth:`ephemeral`.
    """

    def __init__(self, fernet: Fernet) -> None:
        self._fernet = fernet

    @classmethod
    def from_passphrase(cls, passphrase: str) -> SecretCipher:
        """Derive the Fernet key from *passphrase* with PBKDF2."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_PBKDF2_SALT,
            iterations=_PBKDF2_ITERATIONS,
        )
        derived = kdf.derive(passphrase.encode("utf-8"))
        return cls(Fernet(base64.urlsafe_b64encode(derived)))

    @classmethod
    def ephemeral(cls) -> SecretCipher:
        """Use a random key that only lives as long as the process."""
        logger.warning("secret_cipher_ephemeral_key")
        return cls(Fernet(Fernet.generate_key()))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt *plaintext*, returning an ``enc:``-prefixed token."""
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return f"{_ENCRYPTED_PREFIX}{token.decode('utf-8')}"

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a value produced by :meth:`encrypt`.

        Raises:
            ValueError: If the value is not prefixed or the key is wrong.
        """
        if not ciphertext.startswith(_ENCRYPTED_PREFIX):
            raise ValueError("Stored secret is not an encrypted value")
        raw = ciphertext[len(_ENCRYPTED_PREFIX) :]
        try:
            return self._fernet.decrypt(raw.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Secret decryption failed: invalid token or wrong key") from exc


def build_cipher(passphrase: str) -> SecretCipher:
    """Return a cipher for *passphrase*, or an ephemeral one when it is empty."""
    if passphrase:
        return SecretCipher.from_passphrase(passphrase)
    return SecretCipher.ephemeral()
