"""
Three-path recovery of the symmetric key K.

A secret is encrypted once under a random key K. K itself is then made
available through three independent channels:

1. Public-key channel - K (hex) encrypted sender -> recipient. Convenient,
   but not safe against a future adversary that can break elliptic curves.
2. Passphrase channel - K encrypted under a PBKDF2-derived AES-256-GCM key.
   Symmetric only; requires sharing the passphrase out of band.
3. On-chain channel - plaintext K in the disclosure transaction's OP_RETURN.
   Protected only by the escrow timelock until the owner stops refreshing.

Each channel recovers the same 32 bytes, and each fails on its own.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Union

from .channel import PublicKeyChannel, X25519Channel
from .codec import extract_payload
from .models import RecoveryPayload
from .passphrase import PassphraseBundle, decrypt_with_passphrase, encrypt_with_passphrase
from .symmetric import decrypt_with_key, encrypt_with_key, generate_symmetric_key
from .types import (
    SYMMETRIC_KEY_SIZE,
    DeadSwitchError,
    DecryptionFailedError,
    InvalidKeyLengthError,
    RecoveryFailedError,
)


@dataclass(frozen=True)
class EncryptedSecret:
    """Everything produced when a secret is encrypted for recovery."""
    ciphertext: bytes  # secret under K (ChaCha20-Poly1305)
    nonce: bytes
    public_key_ciphertext: str  # hex(K) through the public-key channel
    passphrase_bundle: Optional[PassphraseBundle]
    symmetric_key: bytes = field(repr=False)  # plaintext K, for the disclosure payload


@dataclass(frozen=True)
class PublicKeyRecovery:
    """Recover K from the public-key channel ciphertext."""
    ciphertext: str
    recipient_private_key: bytes = field(repr=False)
    sender_public_key: bytes

    name = "public-key"

    def __post_init__(self) -> None:
        if not self.ciphertext:
            raise ValueError("Ciphertext must not be empty")
        if len(self.recipient_private_key) != 32:
            raise ValueError(f"Recipient private key must be 32 bytes, got {len(self.recipient_private_key)}")
        if len(self.sender_public_key) != 32:
            raise ValueError(f"Sender public key must be 32 bytes, got {len(self.sender_public_key)}")


@dataclass(frozen=True)
class PassphraseRecovery:
    """Recover K from a passphrase bundle."""
    bundle: PassphraseBundle
    passphrase: str = field(repr=False)

    name = "passphrase"

    def __post_init__(self) -> None:
        if not self.passphrase:
            raise ValueError("Passphrase must not be empty")


@dataclass(frozen=True)
class OnChainRecovery:
    """Recover K from the disclosure transaction's payload."""
    symmetric_key: bytes = field(repr=False)

    name = "on-chain"

    def __post_init__(self) -> None:
        if len(self.symmetric_key) != SYMMETRIC_KEY_SIZE:
            raise InvalidKeyLengthError(len(self.symmetric_key))

    @classmethod
    def from_payload(cls, payload: RecoveryPayload) -> "OnChainRecovery":
        return cls(payload.symmetric_key)

    @classmethod
    def from_transaction(cls, tx_hex: str) -> "OnChainRecovery":
        """Pull K out of a broadcast disclosure transaction."""
        return cls.from_payload(extract_payload(tx_hex))


RecoveryInput = Union[PublicKeyRecovery, PassphraseRecovery, OnChainRecovery]


def encrypt_secret(
    secret: Union[str, bytes],
    recipient_public_key: bytes,
    sender_private_key: bytes,
    passphrase: Optional[str] = None,
    channel: Optional[PublicKeyChannel] = None,
) -> EncryptedSecret:
    """
    Encrypt a secret under a fresh key K and prepare all recovery channels.

    Args:
        secret: The secret to protect
        recipient_public_key: Recipient identity on the public-key channel
        sender_private_key: Sender identity on the public-key channel
        passphrase: Optional passphrase for the passphrase channel
        channel: Public-key channel (defaults to X25519Channel)

    Returns:
        EncryptedSecret with the ciphertext and every form of K
    """
    channel = channel or X25519Channel()
    if isinstance(secret, str):
        secret = secret.encode("utf-8")

    key = generate_symmetric_key()
    ciphertext, nonce = encrypt_with_key(secret, key)

    public_key_ciphertext = channel.encrypt(key.hex(), sender_private_key, recipient_public_key)

    bundle = encrypt_with_passphrase(key, passphrase) if passphrase else None

    return EncryptedSecret(
        ciphertext=ciphertext,
        nonce=nonce,
        public_key_ciphertext=public_key_ciphertext,
        passphrase_bundle=bundle,
        symmetric_key=key,
    )


def decrypt_secret(ciphertext: bytes, nonce: bytes, key: bytes) -> bytes:
    """Decrypt a secret with the recovered key K."""
    return decrypt_with_key(ciphertext, nonce, key)


def recover_key_from_public_key(
    ciphertext: str,
    recipient_private_key: bytes,
    sender_public_key: bytes,
    channel: Optional[PublicKeyChannel] = None,
) -> bytes:
    """
    Recover K from the public-key channel.

    Raises:
        DecryptionFailedError: If the channel cannot authenticate the ciphertext
        InvalidKeyLengthError: If the decrypted value is not 32 bytes of hex
    """
    channel = channel or X25519Channel()
    try:
        key_hex = channel.decrypt(ciphertext, recipient_private_key, sender_public_key)
    except DeadSwitchError:
        raise
    except Exception as e:
        raise DecryptionFailedError(f"Public-key channel failed: {e}") from e
    try:
        key = bytes.fromhex(key_hex)
    except ValueError as e:
        raise InvalidKeyLengthError(len(key_hex) // 2) from e
    return _checked(key)


def recover_key_from_passphrase(bundle: PassphraseBundle, passphrase: str) -> bytes:
    """
    Recover K from a passphrase bundle.

    Raises:
        DecryptionFailedError: If the passphrase is wrong
        InvalidKeyLengthError: If the decrypted value is not 32 bytes
    """
    return _checked(decrypt_with_passphrase(bundle, passphrase))


def recover_key_from_payload(payload: Union[RecoveryPayload, bytes]) -> bytes:
    """
    Recover K from the on-chain payload.

    Accepts a parsed payload or the raw 32-byte key field.
    """
    if isinstance(payload, RecoveryPayload):
        return _checked(payload.symmetric_key)
    return _checked(bytes(payload))


def recover_key(recovery: RecoveryInput, channel: Optional[PublicKeyChannel] = None) -> bytes:
    """Recover K through whichever channel the input describes."""
    if isinstance(recovery, PublicKeyRecovery):
        return recover_key_from_public_key(
            recovery.ciphertext,
            recovery.recipient_private_key,
            recovery.sender_public_key,
            channel,
        )
    if isinstance(recovery, PassphraseRecovery):
        return recover_key_from_passphrase(recovery.bundle, recovery.passphrase)
    if isinstance(recovery, OnChainRecovery):
        return recover_key_from_payload(recovery.symmetric_key)
    raise TypeError(f"Unknown recovery input: {type(recovery).__name__}")


def recover_key_from_any(
    recoveries: Sequence[RecoveryInput],
    channel: Optional[PublicKeyChannel] = None,
) -> bytes:
    """
    Try each recovery channel in order until one yields K.

    Raises:
        RecoveryFailedError: If every channel fails (carries each channel's error)
    """
    errors: Dict[str, DeadSwitchError] = {}
    for index, recovery in enumerate(recoveries):
        try:
            return recover_key(recovery, channel)
        except DeadSwitchError as e:
            label = recovery.name if recovery.name not in errors else f"{recovery.name}#{index}"
            errors[label] = e
    raise RecoveryFailedError(errors)


def _checked(key: bytes) -> bytes:
    if len(key) != SYMMETRIC_KEY_SIZE:
        raise InvalidKeyLengthError(len(key))
    return bytes(key)
