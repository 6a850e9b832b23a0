"""Authenticated encryption for stored conversation history.

AES-256-GCM from the ``cryptography`` library. The 32-byte key is stretched
from the operator secret (``ENCRYPTION_KEY``) with PBKDF2-HMAC-SHA256 using a
fixed salt and iteration count, so every process sharing the secret derives
the same key and can read rows written by any other process.

Ciphertext, IV and tag are hex strings, stored side by side on the
conversation row.
"""

import os
from functools import lru_cache
from typing import NamedTuple, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from pamoja.errors import DecryptionError, EncryptionError


KDF_SALT = b"salt"
KDF_ITERATIONS = 10000
KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16


class EncryptedPayload(NamedTuple):
    ciphertext: str
    iv: str
    auth_tag: str


@lru_cache(maxsize=8)
def derive_key(secret: str) -> bytes:
    """Stretch *secret* into a 32-byte AES key. Same secret, same key."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=KDF_SALT,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


def generate_secret() -> str:
    """Random secret suitable for ``ENCRYPTION_KEY``."""
    return os.urandom(32).hex()


class HistoryCipher:
    def __init__(self, secret: Optional[str]):
        self._secret = secret

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def _aead(self) -> AESGCM:
        return AESGCM(derive_key(self._secret))

    def encrypt(self, plaintext: str) -> EncryptedPayload:
        if not plaintext:
            raise EncryptionError("Text to encrypt cannot be empty")
        if not self._secret:
            raise EncryptionError("Encryption key is not configured")

        iv = os.urandom(IV_LENGTH)
        sealed = self._aead().encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        body, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return EncryptedPayload(ciphertext=body.hex(), iv=iv.hex(), auth_tag=tag.hex())

    def decrypt(self, ciphertext: Optional[str], iv: Optional[str], auth_tag: Optional[str]) -> str:
        if not ciphertext or not iv or not auth_tag:
            raise DecryptionError("Missing required parameters for decryption")
        if not self._secret:
            raise DecryptionError("Encryption key is not configured")

        try:
            raw_iv = bytes.fromhex(iv)
            sealed = bytes.fromhex(ciphertext) + bytes.fromhex(auth_tag)
        except ValueError as e:
            raise DecryptionError(f"Malformed encrypted payload: {e}")

        try:
            plain = self._aead().decrypt(raw_iv, sealed, None)
        except InvalidTag:
            raise DecryptionError("Authentication tag verification failed")
        except ValueError as e:
            # bad IV length
            raise DecryptionError(str(e))

        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError(str(e))
