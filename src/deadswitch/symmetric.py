"""Symmetric encryption of secrets under the key K (ChaCha20-Poly1305)."""

import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from .types import NONCE_SIZE, SYMMETRIC_KEY_SIZE, DecryptionFailedError


def generate_symmetric_key() -> bytes:
    """Generate a random 256-bit key K."""
    return os.urandom(SYMMETRIC_KEY_SIZE)


def encrypt_with_key(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
    """
    Encrypt plaintext with ChaCha20-Poly1305 under a fresh random nonce.

    Args:
        plaintext: Data to encrypt
        key: 32-byte key

    Returns:
        Tuple of (ciphertext with 16-byte tag appended, 12-byte nonce)
    """
    if len(key) != SYMMETRIC_KEY_SIZE:
        raise ValueError(f"Key must be {SYMMETRIC_KEY_SIZE} bytes, got {len(key)}")

    nonce = os.urandom(NONCE_SIZE)
    ciphertext = ChaCha20Poly1305(key).encrypt(nonce, plaintext, None)
    return ciphertext, nonce


def decrypt_with_key(ciphertext: bytes, nonce: bytes, key: bytes) -> bytes:
    """
    Decrypt ChaCha20-Poly1305 ciphertext.

    Raises:
        ValueError: If key or nonce has the wrong length
        DecryptionFailedError: If authentication fails
    """
    if len(key) != SYMMETRIC_KEY_SIZE:
        raise ValueError(f"Key must be {SYMMETRIC_KEY_SIZE} bytes, got {len(key)}")
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

    try:
        return ChaCha20Poly1305(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise DecryptionFailedError("Decryption failed - wrong key or corrupted data") from e
