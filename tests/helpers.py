"""Helpers for inspecting signed transactions in tests."""

import struct
from dataclasses import dataclass, field
from typing import List, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature
from deadswitch.keys import SECP256K1_ORDER, load_verifying_key
from deadswitch.transaction import Transaction, TxInput, TxOutput


@dataclass
class ParsedTransaction:
    version: int
    inputs: List[Tuple[str, int, int]]  # (txid, output index, sequence)
    outputs: List[Tuple[int, bytes]]  # (amount, script)
    witnesses: List[List[bytes]] = field(default_factory=list)
    locktime: int = 0

    def unsigned(self) -> Transaction:
        """Rebuild the transaction without witness data."""
        return Transaction(
            inputs=[TxInput(tx_id, index, sequence) for tx_id, index, sequence in self.inputs],
            outputs=[TxOutput(amount, script) for amount, script in self.outputs],
            version=self.version,
            locktime=self.locktime,
        )


class _Cursor:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def read(self, n: int) -> bytes:
        chunk = self.data[self.offset : self.offset + n]
        assert len(chunk) == n, "transaction truncated"
        self.offset += n
        return chunk

    def var_int(self) -> int:
        first = self.read(1)[0]
        if first < 0xFD:
            return first
        size = {0xFD: "<H", 0xFE: "<I", 0xFF: "<Q"}[first]
        return struct.unpack(size, self.read(struct.calcsize(size)))[0]


def parse_transaction(tx_hex: str) -> ParsedTransaction:
    cursor = _Cursor(bytes.fromhex(tx_hex))
    version = struct.unpack("<I", cursor.read(4))[0]

    segwit = cursor.data[cursor.offset : cursor.offset + 2] == b"\x00\x01"
    if segwit:
        cursor.read(2)

    inputs = []
    for _ in range(cursor.var_int()):
        tx_id = cursor.read(32)[::-1].hex()
        index = struct.unpack("<I", cursor.read(4))[0]
        cursor.read(cursor.var_int())
        sequence = struct.unpack("<I", cursor.read(4))[0]
        inputs.append((tx_id, index, sequence))

    outputs = []
    for _ in range(cursor.var_int()):
        amount = struct.unpack("<Q", cursor.read(8))[0]
        outputs.append((amount, cursor.read(cursor.var_int())))

    witnesses = []
    if segwit:
        for _ in inputs:
            witnesses.append([cursor.read(cursor.var_int()) for _ in range(cursor.var_int())])

    locktime = struct.unpack("<I", cursor.read(4))[0]
    assert cursor.offset == len(cursor.data), "trailing bytes"
    return ParsedTransaction(version, inputs, outputs, witnesses, locktime)


def assert_valid_signature(
    tx_hex: str,
    input_index: int,
    script_code: bytes,
    amount_sats: int,
    public_key: bytes,
) -> None:
    """Check the first witness item is a low-S SIGHASH_ALL signature by public_key."""
    parsed = parse_transaction(tx_hex)
    signature = parsed.witnesses[input_index][0]
    assert signature[-1] == 0x01

    der = signature[:-1]
    _, s = decode_dss_signature(der)
    assert s <= SECP256K1_ORDER // 2

    digest = parsed.unsigned().witness_v0_sighash(input_index, script_code, amount_sats)
    # Raises InvalidSignature on mismatch
    load_verifying_key(public_key).verify(der, digest, ec.ECDSA(Prehashed(hashes.SHA256())))
