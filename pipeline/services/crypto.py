"""
AES-256-GCM decryption of message bodies.

Key, IV and auth tag are hex-encoded, as written by the message producer.
"""

import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


class DecryptionError(Exception):
    """The payload could not be authenticated or decoded. Retrying will not help."""


def validate_key(key_hex: str | None) -> bytes:
    """Check the configured key once at startup: exactly 64 hex characters."""
    if not key_hex or not KEY_PATTERN.match(key_hex):
        raise ValueError(
            "Missing or invalid ENCRYPTION_KEY. Must be a 64-character hexadecimal string."
        )
    return bytes.fromhex(key_hex)


class Decryptor:
    def __init__(self, key_hex: str | None):
        self._aead = AESGCM(validate_key(key_hex))

    def decrypt(self, cipher_hex: str | None, iv_hex: str | None, tag_hex: str | None) -> str:
        if not cipher_hex or not iv_hex or not tag_hex:
            raise DecryptionError("Encrypted body, IV and auth tag are all required")

        try:
            ciphertext = bytes.fromhex(cipher_hex)
            nonce = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
        except ValueError as e:
            raise DecryptionError(f"Malformed hex input: {e}") from e

        if not nonce:
            raise DecryptionError("Empty IV")

        try:
            # AESGCM expects the tag appended to the ciphertext
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag mismatch") from e
        except ValueError as e:
            raise DecryptionError(str(e)) from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Plaintext is not valid UTF-8") from e
