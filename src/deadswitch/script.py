"""
CSV timelock script construction and parsing.

The escrow output commits (via P2WSH) to a two-branch witness script:

    OP_IF
        <owner_pubkey> OP_CHECKSIG
    OP_ELSE
        <ttl_blocks> OP_CHECKSEQUENCEVERIFY OP_DROP
        <recipient_pubkey> OP_CHECKSIG
    OP_ENDIF

The owner can spend at any time (IF branch). The recipient can spend once the
output has ``ttl_blocks`` confirmations (ELSE branch). Spending and recreating
the output restarts the clock.
"""

import hashlib
from dataclasses import dataclass

from embit.networks import NETWORKS
from embit.script import Script

from .types import (
    BLOCKS_PER_DAY,
    COMPRESSED_PUBKEY_SIZE,
    MAX_CSV_BLOCKS,
    MAX_OP_RETURN_SIZE,
    MalformedScriptError,
    Network,
)

# Bitcoin script opcodes
OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_1 = 0x51
OP_16 = 0x60
OP_IF = 0x63
OP_ELSE = 0x67
OP_ENDIF = 0x68
OP_RETURN = 0x6A
OP_DROP = 0x75
OP_CHECKSIG = 0xAC
OP_CHECKSEQUENCEVERIFY = 0xB2

# embit network parameters for each supported network
EMBIT_NETWORKS = {
    "mainnet": NETWORKS["main"],
    "testnet": NETWORKS["test"],
}


@dataclass(frozen=True)
class EscrowScript:
    """Descriptor fully determining an escrow witness script."""
    owner_pubkey: bytes  # 33 bytes, compressed
    recipient_pubkey: bytes  # 33 bytes, compressed
    ttl_blocks: int  # 1..65535

    def __post_init__(self) -> None:
        _check_pubkey("Owner", self.owner_pubkey)
        _check_pubkey("Recipient", self.recipient_pubkey)
        _check_ttl(self.ttl_blocks)

    @property
    def witness_script(self) -> bytes:
        """Canonical witness script bytes."""
        return encode_escrow_script(self.owner_pubkey, self.recipient_pubkey, self.ttl_blocks)

    @property
    def output_script(self) -> bytes:
        """P2WSH scriptPubKey committing to the witness script."""
        return p2wsh_output_script(self.witness_script)

    def address(self, network: Network = "mainnet") -> str:
        """bech32 P2WSH address of the escrow output."""
        return p2wsh_address(self.witness_script, network)

    def with_ttl(self, ttl_blocks: int) -> "EscrowScript":
        """Same parties, different waiting period."""
        return EscrowScript(self.owner_pubkey, self.recipient_pubkey, ttl_blocks)

    @classmethod
    def from_bytes(cls, script: bytes) -> "EscrowScript":
        return decode_escrow_script(script)

    @classmethod
    def from_hex(cls, script_hex: str) -> "EscrowScript":
        try:
            script = bytes.fromhex(script_hex)
        except ValueError as e:
            raise MalformedScriptError(f"Script is not valid hex: {e}") from e
        return decode_escrow_script(script)


def _check_pubkey(role: str, pubkey: bytes) -> None:
    if len(pubkey) != COMPRESSED_PUBKEY_SIZE:
        raise ValueError(
            f"{role} pubkey must be {COMPRESSED_PUBKEY_SIZE} bytes (compressed), got {len(pubkey)}"
        )
    if pubkey[0] not in (0x02, 0x03):
        raise ValueError(f"{role} pubkey must start with 0x02 or 0x03")


def _check_ttl(ttl_blocks: int) -> None:
    if isinstance(ttl_blocks, bool) or not isinstance(ttl_blocks, int):
        raise ValueError(f"ttl_blocks must be an integer, got {ttl_blocks!r}")
    if not 1 <= ttl_blocks <= MAX_CSV_BLOCKS:
        raise ValueError(f"ttl_blocks must be between 1 and {MAX_CSV_BLOCKS}, got {ttl_blocks}")


def push_data(data: bytes) -> bytes:
    """Minimal push of up to 255 bytes."""
    length = len(data)
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    raise ValueError(f"Push too large: {length} bytes")


def encode_script_number(n: int) -> bytes:
    """Little-endian, sign-magnitude script number (positive values only)."""
    if n < 0:
        raise ValueError("Negative script numbers are not used")
    result = bytearray()
    while n:
        result.append(n & 0xFF)
        n >>= 8
    # Pad so the top bit is not read as a sign bit
    if result and result[-1] & 0x80:
        result.append(0x00)
    return bytes(result)


def push_int(n: int) -> bytes:
    """Minimal push of a non-negative integer."""
    if n == 0:
        return bytes([OP_0])
    if 1 <= n <= 16:
        return bytes([OP_1 + n - 1])
    return push_data(encode_script_number(n))


def encode_escrow_script(owner_pubkey: bytes, recipient_pubkey: bytes, ttl_blocks: int) -> bytes:
    """
    Encode the two-branch escrow witness script.

    Args:
        owner_pubkey: Compressed public key (33 bytes) for the refresh branch
        recipient_pubkey: Compressed public key (33 bytes) for the disclosure branch
        ttl_blocks: Relative timelock in blocks (1-65535)

    Returns:
        Witness script bytes

    Raises:
        ValueError: If a key length or ttl_blocks is out of range
    """
    _check_pubkey("Owner", owner_pubkey)
    _check_pubkey("Recipient", recipient_pubkey)
    _check_ttl(ttl_blocks)

    return (
        bytes([OP_IF])
        + push_data(owner_pubkey)
        + bytes([OP_CHECKSIG, OP_ELSE])
        + push_int(ttl_blocks)
        + bytes([OP_CHECKSEQUENCEVERIFY, OP_DROP])
        + push_data(recipient_pubkey)
        + bytes([OP_CHECKSIG, OP_ENDIF])
    )


class _Reader:
    """Cursor over script bytes."""

    def __init__(self, script: bytes) -> None:
        self.script = script
        self.offset = 0

    def opcode(self, expected: int, name: str) -> None:
        if self.offset >= len(self.script):
            raise MalformedScriptError(f"Script truncated, expected {name}")
        actual = self.script[self.offset]
        if actual != expected:
            raise MalformedScriptError(
                f"Expected {name} (0x{expected:02x}) at offset {self.offset}, got 0x{actual:02x}"
            )
        self.offset += 1

    def pubkey(self, role: str) -> bytes:
        if self.offset >= len(self.script):
            raise MalformedScriptError(f"Script truncated, expected {role} pubkey")
        length = self.script[self.offset]
        if length != COMPRESSED_PUBKEY_SIZE:
            raise MalformedScriptError(
                f"Invalid {role} pubkey push: expected {COMPRESSED_PUBKEY_SIZE} bytes, got opcode 0x{length:02x}"
            )
        start = self.offset + 1
        key = self.script[start : start + COMPRESSED_PUBKEY_SIZE]
        if len(key) != COMPRESSED_PUBKEY_SIZE:
            raise MalformedScriptError(f"Script truncated inside {role} pubkey")
        if key[0] not in (0x02, 0x03):
            raise MalformedScriptError(f"Invalid {role} pubkey prefix 0x{key[0]:02x}")
        self.offset = start + COMPRESSED_PUBKEY_SIZE
        return key

    def number(self) -> int:
        if self.offset >= len(self.script):
            raise MalformedScriptError("Script truncated, expected timelock")
        op = self.script[self.offset]
        if OP_1 <= op <= OP_16:
            self.offset += 1
            return op - OP_1 + 1
        if not 1 <= op <= 4:
            raise MalformedScriptError(f"Invalid timelock push opcode 0x{op:02x}")
        start = self.offset + 1
        data = self.script[start : start + op]
        if len(data) != op:
            raise MalformedScriptError("Script truncated inside timelock")
        value = int.from_bytes(data, "little")
        if data[-1] & 0x80:
            raise MalformedScriptError("Negative timelock value")
        if push_int(value) != self.script[self.offset : start + op]:
            raise MalformedScriptError("Timelock value is not minimally encoded")
        self.offset = start + op
        return value


def decode_escrow_script(script: bytes) -> EscrowScript:
    """
    Decode an escrow witness script into its descriptor.

    Raises:
        MalformedScriptError: If the bytes do not match the escrow template
    """
    reader = _Reader(script)
    reader.opcode(OP_IF, "OP_IF")
    owner_pubkey = reader.pubkey("owner")
    reader.opcode(OP_CHECKSIG, "OP_CHECKSIG")
    reader.opcode(OP_ELSE, "OP_ELSE")
    ttl_blocks = reader.number()
    reader.opcode(OP_CHECKSEQUENCEVERIFY, "OP_CHECKSEQUENCEVERIFY")
    reader.opcode(OP_DROP, "OP_DROP")
    recipient_pubkey = reader.pubkey("recipient")
    reader.opcode(OP_CHECKSIG, "OP_CHECKSIG")
    reader.opcode(OP_ENDIF, "OP_ENDIF")

    if reader.offset != len(script):
        raise MalformedScriptError(f"{len(script) - reader.offset} trailing bytes after OP_ENDIF")

    try:
        return EscrowScript(owner_pubkey, recipient_pubkey, ttl_blocks)
    except ValueError as e:
        raise MalformedScriptError(str(e)) from e


def p2wsh_output_script(witness_script: bytes) -> bytes:
    """Return the P2WSH scriptPubKey (OP_0 <sha256(script)>)."""
    return bytes([OP_0, 0x20]) + hashlib.sha256(witness_script).digest()


def p2wsh_address(witness_script: bytes, network: Network = "mainnet") -> str:
    """
    Create a bech32 P2WSH address from a witness script.

    Args:
        witness_script: The escrow witness script
        network: Bitcoin network ('mainnet' or 'testnet')

    Returns:
        bech32 P2WSH address
    """
    return Script(p2wsh_output_script(witness_script)).address(EMBIT_NETWORKS[network])


def op_return_script(data: bytes) -> bytes:
    """
    Encode an OP_RETURN script carrying arbitrary data.

    Args:
        data: Data to embed (max 80 bytes for standard relay policy)
    """
    if len(data) > MAX_OP_RETURN_SIZE:
        raise ValueError(f"OP_RETURN data too large: {len(data)} bytes (max {MAX_OP_RETURN_SIZE})")
    return bytes([OP_RETURN]) + push_data(data)


def days_to_blocks(days: float) -> int:
    """
    Convert days to an approximate block count (144 blocks per day).

    Raises:
        ValueError: If the result is not a usable CSV value
    """
    if days <= 0:
        raise ValueError("Days must be positive")
    blocks = round(days * BLOCKS_PER_DAY)
    if blocks > MAX_CSV_BLOCKS:
        raise ValueError(
            f"{days} days ({blocks} blocks) exceeds max CSV value of {MAX_CSV_BLOCKS} blocks "
            f"(~{blocks_to_days(MAX_CSV_BLOCKS):.0f} days)"
        )
    if blocks < 1:
        raise ValueError("Duration too short: results in 0 blocks")
    return blocks


def blocks_to_days(blocks: int) -> float:
    """Convert a block count to approximate days."""
    if blocks < 0:
        raise ValueError("Blocks must not be negative")
    return blocks / BLOCKS_PER_DAY
