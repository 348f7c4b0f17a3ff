"""
High-level escrow flows.

Each flow builds a transaction, hands it to a :class:`BlockchainClient` and
prepares the matching disclosure transaction against the new escrow output.
Private keys never leave the caller; only signed transactions are broadcast.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from .blockchain import BlockchainClient, UtxoStatus
from .disclosure import build_disclosure
from .funding import build_escrow_setup
from .models import EscrowInstance, Keypair, UtxoRef
from .refresh import build_refresh, estimate_refreshes_remaining
from .script import blocks_to_days
from .types import Network

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnableResult:
    """Outcome of funding a new escrow."""
    instance: EscrowInstance
    setup_tx_id: str
    disclosure_tx_hex: str  # hand to the recipient / storage


@dataclass(frozen=True)
class RefreshOutcome:
    """Outcome of a broadcast check-in."""
    instance: EscrowInstance
    refresh_tx_id: str
    disclosure_tx_hex: str  # supersedes the previous disclosure


@dataclass(frozen=True)
class EscrowStatus:
    """Where an escrow instance stands relative to its disclosure."""
    utxo: UtxoStatus
    blocks_remaining: Optional[int]  # None until confirmed
    days_remaining: Optional[float]
    refreshes_remaining: int

    @property
    def disclosure_matured(self) -> bool:
        """True once the disclosure transaction is valid for broadcast."""
        return self.blocks_remaining == 0 and not self.utxo.spent


async def enable_escrow(
    client: BlockchainClient,
    owner: Keypair,
    recipient: Keypair,
    recipient_address: str,
    funding_utxo: UtxoRef,
    funding_script: bytes,
    amount_sats: int,
    ttl_blocks: int,
    fee_rate: float,
    symmetric_key: bytes,
    event_id: Union[bytes, str],
    network: Network = "mainnet",
) -> EnableResult:
    """
    Lock funds in a new escrow and prepare its disclosure transaction.

    Args:
        client: Broadcast client
        owner: Owner keypair (funds and can refresh the escrow)
        recipient: Recipient keypair (signs the disclosure)
        recipient_address: Where the disclosure pays out
        funding_utxo: Owner UTXO funding the escrow
        funding_script: scriptPubKey of the funding UTXO
        amount_sats: Value to lock
        ttl_blocks: Blocks without a refresh before disclosure is valid
        fee_rate: Fee rate in sats/vbyte for both transactions
        symmetric_key: Key K carried by the disclosure payload
        event_id: Event id carried alongside K
        network: Bitcoin network

    Returns:
        EnableResult with the confirmed-to-be instance and disclosure hex
    """
    setup = build_escrow_setup(
        owner=owner,
        recipient_pubkey=recipient.public_key,
        ttl_blocks=ttl_blocks,
        amount_sats=amount_sats,
        fee_rate=fee_rate,
        funding_utxo=funding_utxo,
        funding_script=funding_script,
        network=network,
    )

    tx_id = await client.broadcast(setup.tx_hex)
    instance = _rebind(setup.instance, tx_id)
    logger.info("Escrow funded in %s (%d sats, %d blocks)", tx_id, amount_sats, ttl_blocks)

    disclosure = build_disclosure(
        instance=instance,
        recipient=recipient,
        recipient_address=recipient_address,
        ttl_blocks=ttl_blocks,
        symmetric_key=symmetric_key,
        event_id=event_id,
        fee_rate=fee_rate,
        network=network,
    )

    return EnableResult(instance=instance, setup_tx_id=tx_id, disclosure_tx_hex=disclosure.tx_hex)


async def refresh_escrow(
    client: BlockchainClient,
    instance: EscrowInstance,
    owner: Keypair,
    recipient: Keypair,
    recipient_address: str,
    fee_rate: float,
    symmetric_key: bytes,
    event_id: Union[bytes, str],
    ttl_blocks: Optional[int] = None,
    network: Network = "mainnet",
) -> RefreshOutcome:
    """
    Check in: roll the escrow into a new output and re-sign the disclosure.

    The parent instance should be confirmed before calling this; a refresh
    built on an unconfirmed parent is only as final as that parent.

    Args:
        client: Broadcast client
        instance: Current escrow instance
        owner: Owner keypair
        recipient: Recipient keypair (re-signs the disclosure)
        recipient_address: Where the disclosure pays out
        fee_rate: Fee rate in sats/vbyte for both transactions
        symmetric_key: Key K carried by the disclosure payload
        event_id: Event id carried alongside K
        ttl_blocks: New timelock (keeps the current one if omitted)
        network: Bitcoin network

    Returns:
        RefreshOutcome with the new instance and its disclosure hex
    """
    ttl = ttl_blocks if ttl_blocks is not None else instance.ttl_blocks
    refresh = build_refresh(
        instance=instance,
        owner=owner,
        recipient_pubkey=recipient.public_key,
        ttl_blocks=ttl,
        fee_rate=fee_rate,
    )

    tx_id = await client.broadcast(refresh.tx_hex)
    new_instance = _rebind(refresh.instance, tx_id)
    logger.info(
        "Escrow refreshed in %s (%d -> %d sats)",
        tx_id,
        instance.amount_sats,
        new_instance.amount_sats,
    )

    disclosure = build_disclosure(
        instance=new_instance,
        recipient=recipient,
        recipient_address=recipient_address,
        ttl_blocks=ttl,
        symmetric_key=symmetric_key,
        event_id=event_id,
        fee_rate=fee_rate,
        network=network,
    )

    return RefreshOutcome(instance=new_instance, refresh_tx_id=tx_id, disclosure_tx_hex=disclosure.tx_hex)


async def escrow_status(
    instance: EscrowInstance,
    client: BlockchainClient,
    fee_rate: float = 10,
) -> EscrowStatus:
    """
    Report how long until the disclosure for an instance becomes valid.

    Blocks remaining is ``confirmation_height + ttl - tip``, never negative,
    and unknown while the instance is unconfirmed.
    """
    utxo = await client.get_utxo_status(instance.utxo.tx_id, instance.utxo.output_index)

    blocks_remaining = None
    days_remaining = None
    if utxo.confirmed and utxo.block_height is not None:
        tip = await client.get_tip_height()
        blocks_remaining = max(0, utxo.block_height + instance.ttl_blocks - tip)
        days_remaining = blocks_to_days(blocks_remaining)

    return EscrowStatus(
        utxo=utxo,
        blocks_remaining=blocks_remaining,
        days_remaining=days_remaining,
        refreshes_remaining=estimate_refreshes_remaining(instance.amount_sats, fee_rate),
    )


def _rebind(instance: EscrowInstance, tx_id: str) -> EscrowInstance:
    """Use the txid reported by the network for the new instance."""
    if tx_id == instance.utxo.tx_id:
        return instance
    logger.warning("Broadcast txid %s differs from computed %s", tx_id, instance.utxo.tx_id)
    return EscrowInstance(
        utxo=UtxoRef(tx_id, instance.utxo.output_index, instance.utxo.amount_sats),
        script=instance.script,
    )
