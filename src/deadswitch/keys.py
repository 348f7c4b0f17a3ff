"""Key generation and management for deadswitch.

Two key families are used:

- secp256k1 keypairs sign the escrow, refresh and disclosure transactions.
- X25519 keypairs address the public-key recovery channel.
"""

import os
from typing import Tuple

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .models import Keypair
from .types import COMPRESSED_PUBKEY_SIZE, PRIVATE_KEY_SIZE

# secp256k1 group order
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def generate_keypair() -> Keypair:
    """
    Generate a fresh secp256k1 keypair.

    Returns:
        Keypair with a 32-byte private key and 33-byte compressed public key
    """
    while True:
        candidate = os.urandom(PRIVATE_KEY_SIZE)
        if 0 < int.from_bytes(candidate, "big") < SECP256K1_ORDER:
            return keypair_from_private_bytes(candidate)


def keypair_from_private_bytes(private_key: bytes) -> Keypair:
    """
    Build a keypair from raw private key bytes.

    Args:
        private_key: 32-byte secp256k1 secret

    Returns:
        Keypair with the derived compressed public key
    """
    if len(private_key) != PRIVATE_KEY_SIZE:
        raise ValueError(f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(private_key)}")

    secret = int.from_bytes(private_key, "big")
    if not 0 < secret < SECP256K1_ORDER:
        raise ValueError("Private key is outside the secp256k1 group order")

    return Keypair(private_key=private_key, public_key=compressed_public_key(load_signing_key(private_key)))


def load_signing_key(private_key: bytes) -> ec.EllipticCurvePrivateKey:
    """Create a secp256k1 signing key object from raw bytes."""
    return ec.derive_private_key(int.from_bytes(private_key, "big"), ec.SECP256K1())


def compressed_public_key(signing_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Serialize the public half of a signing key in 33-byte compressed form."""
    return signing_key.public_key().public_bytes(Encoding.X962, PublicFormat.CompressedPoint)


def load_verifying_key(public_key: bytes) -> ec.EllipticCurvePublicKey:
    """Create a secp256k1 public key object from compressed bytes."""
    if len(public_key) != COMPRESSED_PUBKEY_SIZE:
        raise ValueError(
            f"Public key must be {COMPRESSED_PUBKEY_SIZE} bytes (compressed), got {len(public_key)}"
        )
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_key)


def generate_channel_keypair() -> Tuple[bytes, bytes]:
    """
    Generate a random X25519 keypair for the public-key recovery channel.

    Returns:
        Tuple of (private_key, public_key) as raw 32-byte values
    """
    private_key = X25519PrivateKey.generate()
    return private_key.private_bytes_raw(), x25519_public_bytes(private_key.public_key())


def channel_public_key(private_key: bytes) -> bytes:
    """Derive the raw X25519 public key for a raw private key."""
    return x25519_public_bytes(X25519PrivateKey.from_private_bytes(private_key).public_key())


def x25519_ecdh(private_key: bytes, public_key: bytes) -> bytes:
    """
    Perform X25519 ECDH key exchange.

    Args:
        private_key: Our raw private key
        public_key: Their raw public key

    Returns:
        32-byte shared secret
    """
    ours = X25519PrivateKey.from_private_bytes(private_key)
    theirs = X25519PublicKey.from_public_bytes(public_key)
    return ours.exchange(theirs)


def x25519_public_bytes(public_key: X25519PublicKey) -> bytes:
    """Convert X25519 public key to raw bytes."""
    return public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
