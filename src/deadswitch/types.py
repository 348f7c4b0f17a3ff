"""Type definitions and protocol constants for deadswitch."""

from typing import Dict, List, Literal, Optional


Network = Literal["mainnet", "testnet"]


# Key and payload sizes
COMPRESSED_PUBKEY_SIZE = 33
PRIVATE_KEY_SIZE = 32
SYMMETRIC_KEY_SIZE = 32
EVENT_ID_SIZE = 32
PAYLOAD_SIZE = 64  # symmetric key K + event id
MAX_OP_RETURN_SIZE = 80

# Timelock constants
MAX_CSV_BLOCKS = 65535  # 16-bit relative lock (~455 days)
BLOCKS_PER_DAY = 144

# Output value thresholds (satoshis)
DUST_THRESHOLD = 546
MIN_ESCROW_SATS = 10_000

# Estimated virtual sizes (vbytes)
SETUP_VBYTES = 153  # P2WPKH in, P2WSH out, P2WPKH change
REFRESH_VBYTES = 204  # P2WSH owner-branch in, P2WSH out
DISCLOSURE_VBYTES = 267  # P2WSH recipient-branch in, OP_RETURN out, P2WPKH out

# Sequence numbers
SEQUENCE_RBF = 0xFFFFFFFE  # no relative lock, signals replaceability

# Symmetric encryption
NONCE_SIZE = 12
TAG_SIZE = 16

# Passphrase key derivation (OWASP 2023 for PBKDF2-SHA256)
PBKDF2_ITERATIONS = 600_000
SALT_SIZE = 16

# Public-key channel
CHANNEL_VERSION = 0x01
CHANNEL_INFO_PREFIX = b"deadswitch-v1-key"


# Exception types
class DeadSwitchError(Exception):
    """Base exception for deadswitch errors."""
    pass


class MalformedScriptError(DeadSwitchError):
    """Script bytes do not match the escrow template."""
    pass


class UnsupportedScriptError(DeadSwitchError):
    """Funding output uses a script type that cannot be signed."""
    pass


class KeyMismatchError(DeadSwitchError):
    """Signing key does not match the key committed to in the script."""
    pass


class TtlMismatchError(DeadSwitchError):
    """Requested timelock differs from the one encoded in the escrow script."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"ttl_blocks {actual} does not match script timelock {expected}"
        )


class DustOutputError(DeadSwitchError):
    """Output value would fall below the minimum economical amount."""
    pass


class InsufficientFundsError(DeadSwitchError):
    """Funding UTXO cannot cover the escrow amount plus fee."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds: need {required} sats, have {available} sats"
        )


class ChainExhaustedError(DeadSwitchError):
    """Escrow cannot pay for another refresh and must be re-funded."""
    pass


class MalformedTransactionError(DeadSwitchError):
    """Raw transaction bytes could not be parsed."""
    pass


class PayloadNotFoundError(DeadSwitchError):
    """No 64-byte recovery payload found."""
    pass


class InvalidKeyLengthError(DeadSwitchError):
    """Recovered key is not exactly 32 bytes."""

    def __init__(self, length: int) -> None:
        self.length = length
        super().__init__(
            f"Recovered key must be {SYMMETRIC_KEY_SIZE} bytes, got {length}"
        )


class DecryptionFailedError(DeadSwitchError):
    """Authenticated decryption failed (wrong key, passphrase or tampered data)."""
    pass


class RecoveryFailedError(DeadSwitchError):
    """Every recovery channel that was tried failed."""

    def __init__(self, errors: Dict[str, DeadSwitchError]) -> None:
        self.errors = errors
        detail = "; ".join(f"{name}: {err}" for name, err in errors.items())
        super().__init__(f"All recovery channels failed: {detail}")


class ProviderError(DeadSwitchError):
    """Every configured endpoint failed a request."""

    action = "query"

    def __init__(self, errors: List[str], action: Optional[str] = None) -> None:
        self.errors = errors
        if action is not None:
            self.action = action
        super().__init__(
            f"Failed to {self.action} via all endpoints:\n" + "\n".join(errors)
        )


class BroadcastRejectedError(ProviderError):
    """Every configured endpoint rejected the transaction or was unreachable."""

    action = "broadcast transaction"
