"""
Bitcoin transaction serialization and signing.

Only what the escrow transactions need: version 2 segwit transactions,
BIP143 signature hashes for witness v0 inputs, and low-S DER ECDSA signatures
over secp256k1.
"""

import hashlib
import math
import struct
from dataclasses import dataclass, field
from typing import List

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)
from embit.hashes import hash160
from embit.script import Script, address_to_scriptpubkey

from .keys import SECP256K1_ORDER, load_signing_key
from .script import EMBIT_NETWORKS, OP_0
from .types import Network

TX_VERSION = 2  # BIP68 relative locks require version >= 2
SIGHASH_ALL = 0x01


def double_sha256(data: bytes) -> bytes:
    """Double SHA256 hash."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def var_int(n: int) -> bytes:
    """Encode a compact-size integer."""
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    return bytes([0xFF]) + struct.pack("<Q", n)


def var_bytes(data: bytes) -> bytes:
    return var_int(len(data)) + data


def p2wpkh_script(pubkey: bytes) -> bytes:
    """P2WPKH scriptPubKey for a compressed public key."""
    return bytes([OP_0, 0x14]) + hash160(pubkey)


def p2pkh_script_code(pubkey_hash: bytes) -> bytes:
    """BIP143 scriptCode for a P2WPKH input."""
    return bytes([0x76, 0xA9, 0x14]) + pubkey_hash + bytes([0x88, 0xAC])


def is_p2wpkh(script: bytes) -> bool:
    return len(script) == 22 and script[0] == OP_0 and script[1] == 0x14


def address_to_script(address: str, network: Network) -> bytes:
    """
    Decode a Bitcoin address to its scriptPubKey.

    Raises:
        ValueError: If the address is invalid or belongs to another network
    """
    try:
        script = address_to_scriptpubkey(address)
        canonical = script.address(EMBIT_NETWORKS[network])
    except Exception as e:
        raise ValueError(f"Invalid address {address!r}: {e}") from e
    if canonical.lower() != address.lower():
        raise ValueError(f"Address {address!r} is not a {network} address")
    return script.data


def script_to_address(script: bytes, network: Network) -> str:
    return Script(script).address(EMBIT_NETWORKS[network])


@dataclass
class TxInput:
    """A transaction input spending a previous output."""
    tx_id: str  # display order hex
    output_index: int
    sequence: int
    witness: List[bytes] = field(default_factory=list)

    def outpoint(self) -> bytes:
        return bytes.fromhex(self.tx_id)[::-1] + struct.pack("<I", self.output_index)


@dataclass
class TxOutput:
    """A transaction output."""
    amount_sats: int
    script: bytes

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.amount_sats) + var_bytes(self.script)


@dataclass
class Transaction:
    """A mutable transaction under construction."""
    inputs: List[TxInput] = field(default_factory=list)
    outputs: List[TxOutput] = field(default_factory=list)
    version: int = TX_VERSION
    locktime: int = 0

    def has_witness(self) -> bool:
        return any(tx_in.witness for tx_in in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """
        Serialize the transaction.

        Format:
            version(4) [marker 0x00, flag 0x01] inputs outputs [witnesses] locktime(4)
        """
        segwit = include_witness and self.has_witness()

        data = struct.pack("<I", self.version)
        if segwit:
            data += bytes([0x00, 0x01])

        data += var_int(len(self.inputs))
        for tx_in in self.inputs:
            data += tx_in.outpoint()
            data += var_bytes(b"")  # scriptSig is empty for witness spends
            data += struct.pack("<I", tx_in.sequence)

        data += var_int(len(self.outputs))
        for tx_out in self.outputs:
            data += tx_out.serialize()

        if segwit:
            for tx_in in self.inputs:
                data += var_int(len(tx_in.witness))
                for item in tx_in.witness:
                    data += var_bytes(item)

        data += struct.pack("<I", self.locktime)
        return data

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        """Reversed double-SHA256 of the non-witness serialization."""
        return double_sha256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def vsize(self) -> int:
        """Virtual size in vbytes (weight / 4, rounded up)."""
        base = len(self.serialize(include_witness=False))
        total = len(self.serialize())
        weight = base * 3 + total
        return (weight + 3) // 4

    def witness_v0_sighash(
        self,
        input_index: int,
        script_code: bytes,
        amount_sats: int,
        hashtype: int = SIGHASH_ALL,
    ) -> bytes:
        """
        Calculate the BIP143 signature hash for a witness v0 input.

        Args:
            input_index: Input being signed
            script_code: Witness script (P2WSH) or P2PKH-style code (P2WPKH)
            amount_sats: Value of the output being spent
            hashtype: Only SIGHASH_ALL is used
        """
        hash_prevouts = double_sha256(b"".join(tx_in.outpoint() for tx_in in self.inputs))
        hash_sequence = double_sha256(
            b"".join(struct.pack("<I", tx_in.sequence) for tx_in in self.inputs)
        )
        hash_outputs = double_sha256(b"".join(tx_out.serialize() for tx_out in self.outputs))

        tx_in = self.inputs[input_index]
        preimage = (
            struct.pack("<I", self.version)
            + hash_prevouts
            + hash_sequence
            + tx_in.outpoint()
            + var_bytes(script_code)
            + struct.pack("<Q", amount_sats)
            + struct.pack("<I", tx_in.sequence)
            + hash_outputs
            + struct.pack("<I", self.locktime)
            + struct.pack("<I", hashtype)
        )
        return double_sha256(preimage)


def sign_digest(private_key: bytes, digest: bytes) -> bytes:
    """
    Sign a 32-byte digest, returning a low-S DER signature.

    Args:
        private_key: 32-byte secp256k1 secret
        digest: Signature hash

    Returns:
        DER-encoded signature (without sighash byte)
    """
    signing_key = load_signing_key(private_key)
    der = signing_key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    r, s = decode_dss_signature(der)
    if s > SECP256K1_ORDER // 2:
        s = SECP256K1_ORDER - s
    return encode_dss_signature(r, s)


def sign_input(
    tx: Transaction,
    input_index: int,
    private_key: bytes,
    script_code: bytes,
    amount_sats: int,
) -> bytes:
    """Produce a SIGHASH_ALL witness signature for one input."""
    digest = tx.witness_v0_sighash(input_index, script_code, amount_sats)
    return sign_digest(private_key, digest) + bytes([SIGHASH_ALL])


def fee_for(vbytes: int, fee_rate: float) -> int:
    """Total fee in sats for an estimated size at a sats/vbyte rate."""
    if fee_rate <= 0:
        raise ValueError(f"Fee rate must be positive, got {fee_rate}")
    return math.ceil(vbytes * fee_rate)
