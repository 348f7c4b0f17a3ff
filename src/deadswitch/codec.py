"""
Minimal raw transaction decoder for payload recovery.

Parses just enough of a transaction to enumerate its outputs: the segwit
marker/flag is skipped, inputs are walked without reading witness data, and
locktime is ignored. It does not validate signatures, compute txids or
interpret witnesses, so it cannot tell a malleated transaction from the
original. Recovery assumes the transaction comes from the chain.
"""

import struct
from dataclasses import dataclass
from typing import List, Optional

from .models import RecoveryPayload
from .script import OP_PUSHDATA1, OP_RETURN
from .types import PAYLOAD_SIZE, MalformedTransactionError, PayloadNotFoundError


@dataclass(frozen=True)
class DecodedOutput:
    """A transaction output as found on the wire."""
    script: bytes
    amount_sats: int


@dataclass(frozen=True)
class DecodedTransaction:
    """The parts of a transaction needed for payload recovery."""
    version: int
    segwit: bool
    outputs: List[DecodedOutput]


class _ByteReader:
    """Bounds-checked little-endian reader."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def read(self, n: int) -> bytes:
        end = self.offset + n
        if end > len(self.data):
            raise MalformedTransactionError(
                f"Unexpected end of transaction: need {n} bytes at offset {self.offset}, "
                f"have {len(self.data) - self.offset}"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def uint32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]

    def uint64(self) -> int:
        return struct.unpack("<Q", self.read(8))[0]

    def var_int(self) -> int:
        first = self.read(1)[0]
        if first < 0xFD:
            return first
        if first == 0xFD:
            return struct.unpack("<H", self.read(2))[0]
        if first == 0xFE:
            return self.uint32()
        return self.uint64()

    def peek(self, n: int) -> bytes:
        return self.data[self.offset : self.offset + n]


def decode_transaction(tx_hex: str) -> DecodedTransaction:
    """
    Decode a hex-encoded raw transaction into its outputs.

    Handles both legacy and segwit serializations.

    Raises:
        MalformedTransactionError: If the hex or the byte layout is invalid
    """
    try:
        data = bytes.fromhex(tx_hex.strip())
    except ValueError as e:
        raise MalformedTransactionError(f"Transaction is not valid hex: {e}") from e

    reader = _ByteReader(data)
    version = reader.uint32()

    segwit = reader.peek(2) == b"\x00\x01"
    if segwit:
        reader.read(2)

    input_count = reader.var_int()
    for _ in range(input_count):
        reader.read(32)  # previous txid
        reader.uint32()  # previous output index
        reader.read(reader.var_int())  # scriptSig
        reader.uint32()  # sequence

    output_count = reader.var_int()
    outputs = []
    for _ in range(output_count):
        amount = reader.uint64()
        script = reader.read(reader.var_int())
        outputs.append(DecodedOutput(script=script, amount_sats=amount))

    return DecodedTransaction(version=version, segwit=segwit, outputs=outputs)


def op_return_data(script: bytes) -> Optional[bytes]:
    """
    Extract the pushed data from an OP_RETURN script.

    Supports direct pushes (1-75 bytes) and OP_PUSHDATA1. Returns None for
    scripts that are not a single well-formed OP_RETURN push.
    """
    if len(script) < 2 or script[0] != OP_RETURN:
        return None

    push = script[1]
    if 1 <= push < OP_PUSHDATA1:
        start, length = 2, push
    elif push == OP_PUSHDATA1 and len(script) >= 3:
        start, length = 3, script[2]
    else:
        return None

    data = script[start : start + length]
    if len(data) != length or start + length != len(script):
        return None
    return data


def find_payload(decoded: DecodedTransaction) -> RecoveryPayload:
    """
    Find the 64-byte recovery payload among a transaction's outputs.

    Raises:
        PayloadNotFoundError: If no OP_RETURN output pushes exactly 64 bytes
    """
    for output in decoded.outputs:
        data = op_return_data(output.script)
        if data is not None and len(data) == PAYLOAD_SIZE:
            return RecoveryPayload.from_bytes(data)

    raise PayloadNotFoundError(f"No OP_RETURN output found with {PAYLOAD_SIZE}-byte payload")


def extract_payload(tx_hex: str) -> RecoveryPayload:
    """Decode a raw transaction and return its recovery payload."""
    return find_payload(decode_transaction(tx_hex))
