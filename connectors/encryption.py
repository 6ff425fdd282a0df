"""
Credential vault — encrypt / decrypt connector configs at rest.

Uses AES-256-GCM (``AESGCM``) from the ``cryptography`` library with a
fresh 128-bit nonce per call and a 128-bit authentication tag.  The
envelope is three base64 segments joined by ``.``::

    base64(nonce) . base64(tag) . base64(ciphertext)

The key is loaded once from ``config.encryption_key`` (env var:
``ENCRYPTION_KEY``) and must decode to exactly 32 bytes.  Generate one with::

    python -c "import base64, os; print(base64.b64encode(os.urandom(32)).decode())"
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from connectors.errors import ConfigurationError, EnvelopeFormatError, IntegrityError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 16
TAG_LENGTH = 16
_SEPARATOR = "."


def _b64decode(segment: str) -> bytes:
    try:
        return base64.b64decode(segment.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise EnvelopeFormatError("Invalid encrypted data format: bad base64 segment") from exc


class CredentialVault:
    """Symmetric encryption of opaque strings and JSON values."""

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(
                f"ENCRYPTION_KEY must decode to exactly {KEY_LENGTH} bytes (got {len(key)})"
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_base64_key(cls, encoded: str | None) -> "CredentialVault":
        """Build the vault from the base64 key in configuration. Fails fast."""
        if not encoded:
            raise ConfigurationError("ENCRYPTION_KEY environment variable is not set")
        try:
            key = base64.b64decode(encoded.strip().encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise ConfigurationError("ENCRYPTION_KEY is not valid base64") from exc
        vault = cls(key)
        logger.info("Credential vault ready (AES-256-GCM)")
        return vault

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return _SEPARATOR.join(
            base64.b64encode(part).decode("ascii") for part in (nonce, tag, ciphertext)
        )

    def decrypt(self, envelope: str) -> str:
        """
        Decrypt an envelope produced by :meth:`encrypt`.

        Raises
        ------
        EnvelopeFormatError – wrong segment count, bad base64, bad nonce/tag length
        IntegrityError      – tag verification failed (tampered data or wrong key)
        """
        parts = envelope.split(_SEPARATOR)
        if len(parts) != 3:
            raise EnvelopeFormatError(
                f"Invalid encrypted data format: expected 3 segments, got {len(parts)}"
            )

        nonce, tag, ciphertext = (_b64decode(p) for p in parts)
        if len(nonce) != NONCE_LENGTH:
            raise EnvelopeFormatError("Invalid nonce length")
        if len(tag) != TAG_LENGTH:
            raise EnvelopeFormatError("Invalid auth tag length")

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise IntegrityError("Encrypted data failed authentication") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise IntegrityError("Decrypted data is not valid UTF-8") from exc

    def encrypt_json(self, value: Any) -> str:
        return self.encrypt(json.dumps(value))

    def decrypt_json(self, envelope: str) -> Any:
        raw = self.decrypt(envelope)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise IntegrityError("Decrypted data is not valid JSON") from exc
