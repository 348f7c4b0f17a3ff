"""
Public-key encryption channel for delivering K to the recipient.

The orchestrator depends only on :class:`PublicKeyChannel`. The default
implementation, :class:`X25519Channel`, derives a conversation key from a
static X25519 exchange between sender and recipient and seals the plaintext
with ChaCha20-Poly1305. Its security rests on elliptic-curve discrete logs,
so this is the convenient channel, not the long-term one.
"""

import base64
import binascii
import os
from abc import ABC, abstractmethod

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .keys import channel_public_key, x25519_ecdh
from .types import (
    CHANNEL_INFO_PREFIX,
    CHANNEL_VERSION,
    NONCE_SIZE,
    TAG_SIZE,
    DecryptionFailedError,
)


class PublicKeyChannel(ABC):
    """Authenticated public-key encryption between two parties."""

    @abstractmethod
    def encrypt(self, plaintext: str, sender_private_key: bytes, recipient_public_key: bytes) -> str:
        """Encrypt plaintext from sender to recipient."""
        pass

    @abstractmethod
    def decrypt(self, ciphertext: str, recipient_private_key: bytes, sender_public_key: bytes) -> str:
        """Decrypt ciphertext sent by the holder of sender_public_key."""
        pass


class X25519Channel(PublicKeyChannel):
    """
    Static-static X25519 + HKDF-SHA256 + ChaCha20-Poly1305.

    Wire format (base64):
        [0]      version (0x01)
        [1-12]   nonce (12 bytes)
        [13+]    ciphertext + 16-byte tag
    """

    def encrypt(self, plaintext: str, sender_private_key: bytes, recipient_public_key: bytes) -> str:
        sender_public_key = channel_public_key(sender_private_key)
        key = self._conversation_key(
            x25519_ecdh(sender_private_key, recipient_public_key),
            sender_public_key,
            recipient_public_key,
        )

        nonce = os.urandom(NONCE_SIZE)
        ciphertext = ChaCha20Poly1305(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(bytes([CHANNEL_VERSION]) + nonce + ciphertext).decode("ascii")

    def decrypt(self, ciphertext: str, recipient_private_key: bytes, sender_public_key: bytes) -> str:
        try:
            data = base64.b64decode(ciphertext, validate=True)
        except binascii.Error as e:
            raise DecryptionFailedError(f"Ciphertext is not valid base64: {e}") from e

        if len(data) < 1 + NONCE_SIZE + TAG_SIZE or data[0] != CHANNEL_VERSION:
            raise DecryptionFailedError("Ciphertext has an unknown format")

        nonce = data[1 : 1 + NONCE_SIZE]
        sealed = data[1 + NONCE_SIZE :]

        try:
            shared_secret = x25519_ecdh(recipient_private_key, sender_public_key)
        except ValueError as e:
            raise DecryptionFailedError(f"Key exchange failed: {e}") from e

        key = self._conversation_key(shared_secret, sender_public_key, channel_public_key(recipient_private_key))

        try:
            plaintext = ChaCha20Poly1305(key).decrypt(nonce, sealed, None)
            return plaintext.decode("utf-8")
        except InvalidTag as e:
            raise DecryptionFailedError("Decryption failed - wrong key or corrupted data") from e
        except UnicodeDecodeError as e:
            raise DecryptionFailedError("Decrypted plaintext is not valid UTF-8") from e

    @staticmethod
    def _conversation_key(shared_secret: bytes, sender_public_key: bytes, recipient_public_key: bytes) -> bytes:
        hkdf = HKDF(
            algorithm=SHA256(),
            length=32,
            salt=None,
            info=CHANNEL_INFO_PREFIX + sender_public_key + recipient_public_key,
        )
        return hkdf.derive(shared_secret)
