"""
Passphrase-based encryption of the key K.

## Bundle Format

- Salt: 16 bytes (random, for PBKDF2)
- Nonce: 12 bytes (random, for AES-GCM)
- Ciphertext: 32 bytes (encrypted K) + 16-byte tag

## Security

- PBKDF2-SHA256 with 600,000 iterations for key derivation
- AES-256-GCM for authenticated encryption
- Both are symmetric primitives, so this channel does not depend on the
  hardness of discrete logarithms
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .types import NONCE_SIZE, PBKDF2_ITERATIONS, SALT_SIZE, DecryptionFailedError


@dataclass(frozen=True)
class PassphraseBundle:
    """K encrypted under a passphrase-derived key."""
    ciphertext: bytes
    nonce: bytes  # 12 bytes
    salt: bytes  # 16 bytes

    def __post_init__(self) -> None:
        if len(self.nonce) != NONCE_SIZE:
            raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(self.nonce)}")
        if len(self.salt) != SALT_SIZE:
            raise ValueError(f"Salt must be {SALT_SIZE} bytes, got {len(self.salt)}")
        if not self.ciphertext:
            raise ValueError("Ciphertext must not be empty")

    def to_json(self) -> str:
        """Serialize for a recovery kit (base64 fields)."""
        return json.dumps(
            {
                "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
                "nonce": base64.b64encode(self.nonce).decode("ascii"),
                "salt": base64.b64encode(self.salt).decode("ascii"),
            }
        )

    @classmethod
    def from_json(cls, bundle_json: str) -> "PassphraseBundle":
        """
        Parse a recovery-kit bundle.

        Expected format:
            {"ciphertext": "<base64>", "nonce": "<base64>", "salt": "<base64>"}

        Raises:
            ValueError: If the JSON or any field is invalid
        """
        try:
            parsed = json.loads(bundle_json)
        except json.JSONDecodeError as e:
            raise ValueError("Invalid JSON: could not parse encrypted key bundle") from e

        if not isinstance(parsed, dict) or not all(
            parsed.get(name) for name in ("ciphertext", "nonce", "salt")
        ):
            raise ValueError("Invalid bundle: must contain ciphertext, nonce, and salt fields")

        try:
            return cls(
                ciphertext=base64.b64decode(parsed["ciphertext"], validate=True),
                nonce=base64.b64decode(parsed["nonce"], validate=True),
                salt=base64.b64decode(parsed["salt"], validate=True),
            )
        except (binascii.Error, TypeError) as e:
            raise ValueError(f"Invalid bundle: bad base64 field ({e})") from e


def derive_key_from_passphrase(passphrase: str, salt: Optional[bytes] = None) -> Tuple[bytes, bytes]:
    """
    Derive a 256-bit AES key from a passphrase using PBKDF2-SHA256.

    Args:
        passphrase: User-provided passphrase
        salt: Salt for decryption (a fresh one is generated if omitted)

    Returns:
        Tuple of (derived_key, salt)
    """
    if not passphrase:
        raise ValueError("Passphrase must not be empty")

    if salt is None:
        salt = os.urandom(SALT_SIZE)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8")), salt


def encrypt_with_passphrase(plaintext: bytes, passphrase: str) -> PassphraseBundle:
    """Encrypt data under a key derived from the passphrase and a fresh salt."""
    derived_key, salt = derive_key_from_passphrase(passphrase)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(derived_key).encrypt(nonce, plaintext, None)
    return PassphraseBundle(ciphertext=ciphertext, nonce=nonce, salt=salt)


def decrypt_with_passphrase(bundle: PassphraseBundle, passphrase: str) -> bytes:
    """
    Decrypt a passphrase bundle.

    Raises:
        DecryptionFailedError: If the passphrase is wrong or the bundle was tampered with
    """
    derived_key, _ = derive_key_from_passphrase(passphrase, bundle.salt)
    try:
        return AESGCM(derived_key).decrypt(bundle.nonce, bundle.ciphertext, None)
    except InvalidTag as e:
        raise DecryptionFailedError("Decryption failed - incorrect passphrase or corrupted data") from e
