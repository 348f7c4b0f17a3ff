"""Models for escrow instances, build results and the refresh chain."""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from .script import EscrowScript
from .types import (
    EVENT_ID_SIZE,
    PAYLOAD_SIZE,
    SYMMETRIC_KEY_SIZE,
    COMPRESSED_PUBKEY_SIZE,
    PRIVATE_KEY_SIZE,
    PayloadNotFoundError,
)


@dataclass(frozen=True)
class Keypair:
    """A secp256k1 keypair."""
    private_key: bytes = field(repr=False)  # 32 bytes
    public_key: bytes  # 33 bytes, compressed

    def __post_init__(self) -> None:
        if len(self.private_key) != PRIVATE_KEY_SIZE:
            raise ValueError(f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(self.private_key)}")
        if len(self.public_key) != COMPRESSED_PUBKEY_SIZE:
            raise ValueError(
                f"Public key must be {COMPRESSED_PUBKEY_SIZE} bytes (compressed), got {len(self.public_key)}"
            )


@dataclass(frozen=True)
class UtxoRef:
    """A spendable transaction output."""
    tx_id: str  # 64 hex chars, display (big-endian) order
    output_index: int
    amount_sats: int

    def __post_init__(self) -> None:
        if len(self.tx_id) != 64:
            raise ValueError(f"tx_id must be 64 hex chars, got {len(self.tx_id)}")
        try:
            bytes.fromhex(self.tx_id)
        except ValueError as e:
            raise ValueError(f"tx_id is not valid hex: {self.tx_id!r}") from e
        if self.output_index < 0:
            raise ValueError(f"output_index must be non-negative, got {self.output_index}")
        if self.amount_sats < 0:
            raise ValueError(f"amount_sats must be non-negative, got {self.amount_sats}")


@dataclass(frozen=True)
class EscrowInstance:
    """One funded escrow output and the script governing it."""
    utxo: UtxoRef
    script: EscrowScript

    @property
    def witness_script(self) -> bytes:
        return self.script.witness_script

    @property
    def amount_sats(self) -> int:
        return self.utxo.amount_sats

    @property
    def ttl_blocks(self) -> int:
        return self.script.ttl_blocks

    @classmethod
    def from_stored(
        cls,
        tx_id: str,
        output_index: int,
        amount_sats: int,
        script_hex: str,
    ) -> "EscrowInstance":
        """Rebuild an instance from persisted fields (script as hex)."""
        return cls(
            utxo=UtxoRef(tx_id, output_index, amount_sats),
            script=EscrowScript.from_hex(script_hex),
        )


@dataclass(frozen=True)
class RecoveryPayload:
    """The 64 bytes embedded in the disclosure transaction's OP_RETURN output."""
    symmetric_key: bytes = field(repr=False)  # 32 bytes, K
    event_id: bytes  # 32 bytes, out-of-band correlation id

    def __post_init__(self) -> None:
        if len(self.symmetric_key) != SYMMETRIC_KEY_SIZE:
            raise ValueError(f"Symmetric key must be {SYMMETRIC_KEY_SIZE} bytes, got {len(self.symmetric_key)}")
        if len(self.event_id) != EVENT_ID_SIZE:
            raise ValueError(f"Event id must be {EVENT_ID_SIZE} bytes, got {len(self.event_id)}")

    @property
    def event_id_hex(self) -> str:
        return self.event_id.hex()

    def to_bytes(self) -> bytes:
        return self.symmetric_key + self.event_id

    @classmethod
    def create(cls, symmetric_key: bytes, event_id: Union[bytes, str]) -> "RecoveryPayload":
        """Build a payload, accepting the event id as 32 bytes or 64 hex chars."""
        if isinstance(event_id, str):
            if len(event_id) != EVENT_ID_SIZE * 2:
                raise ValueError(f"Event id must be {EVENT_ID_SIZE * 2} hex chars, got {len(event_id)}")
            event_id = bytes.fromhex(event_id)
        return cls(symmetric_key=symmetric_key, event_id=event_id)

    @classmethod
    def from_bytes(cls, data: bytes) -> "RecoveryPayload":
        """
        Split a raw payload into K and the event id.

        Raises:
            PayloadNotFoundError: If data is not exactly 64 bytes
        """
        if len(data) != PAYLOAD_SIZE:
            raise PayloadNotFoundError(f"Malformed payload: expected {PAYLOAD_SIZE} bytes, got {len(data)}")
        return cls(symmetric_key=data[:SYMMETRIC_KEY_SIZE], event_id=data[SYMMETRIC_KEY_SIZE:])


@dataclass(frozen=True)
class SetupResult:
    """Result of building the funding-to-escrow transaction."""
    tx_hex: str
    tx_id: str
    output_index: int
    witness_script: bytes
    fee_sats: int
    change_sats: int
    instance: EscrowInstance


@dataclass(frozen=True)
class DisclosureResult:
    """A pre-signed disclosure transaction, valid once the timelock matures."""
    tx_hex: str
    tx_id: str
    amount_sats: int  # paid to the recipient
    fee_sats: int


@dataclass(frozen=True)
class RefreshResult:
    """Result of rolling the escrow into a new instance."""
    tx_hex: str
    new_tx_id: str
    new_output_index: int
    new_witness_script: bytes
    new_amount_sats: int
    fee_sats: int
    instance: EscrowInstance


@dataclass(frozen=True)
class RefreshChain:
    """
    Ordered escrow instances sharing owner and recipient keys.

    Each link holds strictly less value than the previous one, the difference
    having paid for the refresh transaction that created it.
    """
    instances: Tuple[EscrowInstance, ...]

    def __post_init__(self) -> None:
        if not self.instances:
            raise ValueError("A refresh chain needs at least its root instance")
        for previous, current in zip(self.instances, self.instances[1:]):
            _check_link(previous, current)

    @classmethod
    def start(cls, root: EscrowInstance) -> "RefreshChain":
        return cls((root,))

    @property
    def current(self) -> EscrowInstance:
        """The only instance eligible for disclosure."""
        return self.instances[-1]

    @property
    def root(self) -> EscrowInstance:
        return self.instances[0]

    def __len__(self) -> int:
        return len(self.instances)

    def advance(self, result: Union[RefreshResult, EscrowInstance], tx_id: Optional[str] = None) -> "RefreshChain":
        """
        Append the instance created by a refresh.

        Args:
            result: The refresh result (or the new instance itself)
            tx_id: Broadcast txid, if it differs from the precomputed one

        Returns:
            A new chain; this one is left untouched
        """
        instance = result.instance if isinstance(result, RefreshResult) else result
        if tx_id is not None and tx_id != instance.utxo.tx_id:
            instance = EscrowInstance(
                utxo=UtxoRef(tx_id, instance.utxo.output_index, instance.utxo.amount_sats),
                script=instance.script,
            )
        return RefreshChain(self.instances + (instance,))


def _check_link(previous: EscrowInstance, current: EscrowInstance) -> None:
    if current.script.owner_pubkey != previous.script.owner_pubkey:
        raise ValueError("Refresh chain links must share the owner key")
    if current.script.recipient_pubkey != previous.script.recipient_pubkey:
        raise ValueError("Refresh chain links must share the recipient key")
    if current.amount_sats >= previous.amount_sats:
        raise ValueError(
            f"Refresh chain amounts must strictly decrease: {previous.amount_sats} -> {current.amount_sats}"
        )
