"""Callback token codec for provider webhook URLs.

The generation_id is never exposed in plaintext in webhook URLs. It is sealed
with AES-256-GCM and the result is made path-safe:

    token = hex( base64( iv(12) || auth_tag(16) || ciphertext ) )

Decoding any token that was not produced with the same key fails with
InvalidTokenError; callers map that to 400 and never to 500.
"""

import base64
import binascii
import os
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from genflow.services.exceptions import InvalidTokenError

IV_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


class TokenCodec(Protocol):
    """Reversible mapping between generation_id and an opaque URL token."""

    def encode(self, generation_id: str) -> str: ...

    def decode(self, token: str) -> str: ...


class AesGcmTokenCodec:
    """AES-256-GCM implementation of TokenCodec."""

    def __init__(self, key: bytes):
        """Initialize codec.

        Args:
            key: Raw 32 byte AES key

        Raises:
            ValueError: If key length is not 32 bytes
        """
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Token key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_base64_key(cls, encoded_key: str) -> "AesGcmTokenCodec":
        """Build codec from a base64-encoded key (GENERATION_TOKEN_KEY)."""
        try:
            key = base64.b64decode(encoded_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("GENERATION_TOKEN_KEY is not valid base64") from e
        return cls(key)

    def encode(self, generation_id: str) -> str:
        """Seal generation_id into a path-safe token.

        Args:
            generation_id: Plaintext generation identifier

        Returns:
            Lowercase hex token
        """
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, generation_id.encode("utf-8"), None)
        # AESGCM appends the tag; the wire layout puts it before the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        blob = base64.b64encode(iv + tag + ciphertext)
        return blob.hex()

    def decode(self, token: str) -> str:
        """Recover generation_id from a token.

        Args:
            token: Token from the webhook path

        Returns:
            Plaintext generation_id

        Raises:
            InvalidTokenError: Token is malformed, tampered with, or sealed with another key
        """
        try:
            blob = bytes.fromhex(token)
            data = base64.b64decode(blob, validate=True)
        except (ValueError, binascii.Error) as e:
            raise InvalidTokenError("Malformed callback token") from e

        if len(data) <= IV_LENGTH + TAG_LENGTH:
            raise InvalidTokenError("Malformed callback token")

        iv = data[:IV_LENGTH]
        tag = data[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
        ciphertext = data[IV_LENGTH + TAG_LENGTH :]

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as e:
            raise InvalidTokenError("Callback token could not be decrypted") from e
