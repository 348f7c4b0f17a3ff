"""Tests for symmetric, passphrase and public-key channel encryption."""

import base64
import json

import pytest
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from deadswitch.channel import X25519Channel
from deadswitch.keys import generate_channel_keypair, x25519_ecdh
from deadswitch.passphrase import (
    PassphraseBundle,
    decrypt_with_passphrase,
    derive_key_from_passphrase,
    encrypt_with_passphrase,
)
from deadswitch.symmetric import decrypt_with_key, encrypt_with_key, generate_symmetric_key
from deadswitch.types import DecryptionFailedError
from .test_vectors import PASSPHRASE, SYMMETRIC_KEY_HEX


@pytest.fixture(scope="module")
def bundle():
    return encrypt_with_passphrase(bytes.fromhex(SYMMETRIC_KEY_HEX), PASSPHRASE)


class TestSymmetric:
    """Test ChaCha20-Poly1305 encryption under K."""

    def test_encrypt_decrypt(self) -> None:
        key = generate_symmetric_key()
        ciphertext, nonce = encrypt_with_key(b"the secret", key)

        assert len(nonce) == 12
        assert len(ciphertext) == len(b"the secret") + 16
        assert decrypt_with_key(ciphertext, nonce, key) == b"the secret"

    def test_fresh_nonce_per_encryption(self) -> None:
        key = generate_symmetric_key()
        first, nonce1 = encrypt_with_key(b"same", key)
        second, nonce2 = encrypt_with_key(b"same", key)

        assert nonce1 != nonce2
        assert first != second

    def test_wrong_key(self) -> None:
        ciphertext, nonce = encrypt_with_key(b"the secret", generate_symmetric_key())
        with pytest.raises(DecryptionFailedError):
            decrypt_with_key(ciphertext, nonce, generate_symmetric_key())

    def test_tampered_ciphertext(self) -> None:
        key = generate_symmetric_key()
        ciphertext, nonce = encrypt_with_key(b"the secret", key)
        tampered = bytes([ciphertext[0] ^ 0x01]) + ciphertext[1:]

        with pytest.raises(DecryptionFailedError):
            decrypt_with_key(tampered, nonce, key)

    def test_invalid_key_length(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            encrypt_with_key(b"data", b"short")

    def test_invalid_nonce_length(self) -> None:
        with pytest.raises(ValueError, match="12 bytes"):
            decrypt_with_key(b"x" * 32, b"short", generate_symmetric_key())


class TestPassphrase:
    """Test the PBKDF2 + AES-256-GCM passphrase channel."""

    def test_bundle_layout(self, bundle) -> None:
        assert len(bundle.salt) == 16
        assert len(bundle.nonce) == 12
        assert len(bundle.ciphertext) == 32 + 16

    def test_decrypt(self, bundle) -> None:
        assert decrypt_with_passphrase(bundle, PASSPHRASE).hex() == SYMMETRIC_KEY_HEX

    def test_wrong_passphrase(self, bundle) -> None:
        with pytest.raises(DecryptionFailedError, match="passphrase"):
            decrypt_with_passphrase(bundle, "wrong horse battery staple")

    def test_derivation_is_salted(self) -> None:
        key1, salt1 = derive_key_from_passphrase(PASSPHRASE)
        key2, _ = derive_key_from_passphrase(PASSPHRASE, salt1)
        key3, salt3 = derive_key_from_passphrase(PASSPHRASE)

        assert len(key1) == 32
        assert key1 == key2
        assert salt1 != salt3
        assert key1 != key3

    def test_empty_passphrase(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            derive_key_from_passphrase("")

    def test_json_round_trip(self, bundle) -> None:
        """Recovery-kit format uses base64 fields."""
        encoded = bundle.to_json()
        fields = json.loads(encoded)

        assert set(fields) == {"ciphertext", "nonce", "salt"}
        assert base64.b64decode(fields["salt"]) == bundle.salt
        assert PassphraseBundle.from_json(encoded) == bundle

    @pytest.mark.parametrize(
        "bundle_json,message",
        [
            ("not json", "Invalid JSON"),
            ('{"ciphertext": "AA=="}', "must contain"),
            ('["ciphertext", "nonce", "salt"]', "must contain"),
            ('{"ciphertext": "!!", "nonce": "AAAAAAAAAAAAAAAA", "salt": "AAAAAAAAAAAAAAAAAAAAAA=="}', "base64"),
            ('{"ciphertext": "AA==", "nonce": "AA==", "salt": "AAAAAAAAAAAAAAAAAAAAAA=="}', "Nonce"),
        ],
    )
    def test_invalid_json(self, bundle_json: str, message: str) -> None:
        with pytest.raises(ValueError, match=message):
            PassphraseBundle.from_json(bundle_json)


class TestX25519Channel:
    """Test the default public-key channel."""

    @pytest.fixture
    def alice(self):
        return generate_channel_keypair()

    @pytest.fixture
    def bob(self):
        return generate_channel_keypair()

    def test_encrypt_decrypt(self, alice, bob) -> None:
        channel = X25519Channel()
        ciphertext = channel.encrypt(SYMMETRIC_KEY_HEX, alice[0], bob[1])

        assert channel.decrypt(ciphertext, bob[0], alice[1]) == SYMMETRIC_KEY_HEX

    def test_wire_format(self, alice, bob) -> None:
        data = base64.b64decode(X25519Channel().encrypt("hello", alice[0], bob[1]))

        assert data[0] == 0x01
        assert len(data) == 1 + 12 + len("hello") + 16

    def test_third_party_cannot_decrypt(self, alice, bob) -> None:
        eve = generate_channel_keypair()
        ciphertext = X25519Channel().encrypt(SYMMETRIC_KEY_HEX, alice[0], bob[1])

        with pytest.raises(DecryptionFailedError):
            X25519Channel().decrypt(ciphertext, eve[0], alice[1])

    def test_wrong_sender_key(self, alice, bob) -> None:
        eve = generate_channel_keypair()
        ciphertext = X25519Channel().encrypt(SYMMETRIC_KEY_HEX, alice[0], bob[1])

        with pytest.raises(DecryptionFailedError):
            X25519Channel().decrypt(ciphertext, bob[0], eve[1])

    def test_not_base64(self, bob, alice) -> None:
        with pytest.raises(DecryptionFailedError, match="base64"):
            X25519Channel().decrypt("***", bob[0], alice[1])

    def test_unknown_version(self, alice, bob) -> None:
        data = bytearray(base64.b64decode(X25519Channel().encrypt("hello", alice[0], bob[1])))
        data[0] = 0x02

        with pytest.raises(DecryptionFailedError, match="format"):
            X25519Channel().decrypt(base64.b64encode(bytes(data)).decode(), bob[0], alice[1])

    def test_low_order_sender_key(self, alice, bob) -> None:
        ciphertext = X25519Channel().encrypt(SYMMETRIC_KEY_HEX, alice[0], bob[1])

        with pytest.raises(DecryptionFailedError, match="Key exchange"):
            X25519Channel().decrypt(ciphertext, bob[0], bytes(32))

    def test_plaintext_not_utf8(self, alice, bob) -> None:
        key = X25519Channel._conversation_key(x25519_ecdh(alice[0], bob[1]), alice[1], bob[1])
        nonce = b"\x00" * 12
        sealed = ChaCha20Poly1305(key).encrypt(nonce, b"\xff\xfe", None)
        ciphertext = base64.b64encode(b"\x01" + nonce + sealed).decode()

        with pytest.raises(DecryptionFailedError, match="UTF-8"):
            X25519Channel().decrypt(ciphertext, bob[0], alice[1])
