"""
Check-in refresh: spend the escrow via the owner path and recreate it.

Each confirmed refresh restarts the disclosure clock, since the recipient's
relative timelock is measured from the confirmation of the output it spends.
"""

import logging

from .models import EscrowInstance, Keypair, RefreshResult, UtxoRef
from .script import EscrowScript
from .transaction import Transaction, TxInput, TxOutput, fee_for, sign_input
from .types import (
    MIN_ESCROW_SATS,
    REFRESH_VBYTES,
    SEQUENCE_RBF,
    ChainExhaustedError,
    KeyMismatchError,
)

logger = logging.getLogger(__name__)

NEW_OUTPUT_INDEX = 0
OWNER_BRANCH_SELECTOR = b"\x01"


def build_refresh(
    instance: EscrowInstance,
    owner: Keypair,
    recipient_pubkey: bytes,
    ttl_blocks: int,
    fee_rate: float,
) -> RefreshResult:
    """
    Build and sign a refresh transaction.

    Args:
        instance: The current escrow instance
        owner: Owner keypair; must match the script's owner key
        recipient_pubkey: Recipient's compressed public key (unchanged)
        ttl_blocks: Timelock for the new instance (same or updated)
        fee_rate: Fee rate in sats/vbyte

    Returns:
        RefreshResult with the signed transaction and the next escrow instance

    Raises:
        KeyMismatchError: If the owner or recipient key differs from the script's
        ChainExhaustedError: If the remaining amount falls below the escrow minimum
    """
    current = instance.script
    if owner.public_key != current.owner_pubkey:
        raise KeyMismatchError("Owner key does not match the escrow script")
    if recipient_pubkey != current.recipient_pubkey:
        raise KeyMismatchError("Recipient key does not match the escrow script")

    new_script = EscrowScript(owner.public_key, recipient_pubkey, ttl_blocks)

    fee = fee_for(REFRESH_VBYTES, fee_rate)
    new_amount = instance.amount_sats - fee
    if new_amount < MIN_ESCROW_SATS:
        raise ChainExhaustedError(
            f"After fee ({fee} sats), remaining amount {new_amount} sats is below minimum "
            f"{MIN_ESCROW_SATS} sats. Consider adding more funds or reducing fee rate."
        )

    tx = Transaction()
    tx.inputs.append(
        TxInput(
            tx_id=instance.utxo.tx_id,
            output_index=instance.utxo.output_index,
            sequence=SEQUENCE_RBF,
        )
    )
    tx.outputs.append(TxOutput(amount_sats=new_amount, script=new_script.output_script))

    witness_script = current.witness_script
    signature = sign_input(
        tx,
        0,
        owner.private_key,
        script_code=witness_script,
        amount_sats=instance.amount_sats,
    )
    tx.inputs[0].witness = [signature, OWNER_BRANCH_SELECTOR, witness_script]

    new_tx_id = tx.txid
    logger.debug(
        "Built refresh %s: %d -> %d sats, ttl %d blocks",
        new_tx_id,
        instance.amount_sats,
        new_amount,
        ttl_blocks,
    )

    return RefreshResult(
        tx_hex=tx.to_hex(),
        new_tx_id=new_tx_id,
        new_output_index=NEW_OUTPUT_INDEX,
        new_witness_script=new_script.witness_script,
        new_amount_sats=new_amount,
        fee_sats=fee,
        instance=EscrowInstance(
            utxo=UtxoRef(new_tx_id, NEW_OUTPUT_INDEX, new_amount),
            script=new_script,
        ),
    )


def estimate_refreshes_remaining(amount_sats: int, fee_rate: float) -> int:
    """
    Estimate how many refreshes the escrow can pay for.

    Args:
        amount_sats: Current escrow amount
        fee_rate: Fee rate in sats/vbyte

    Returns:
        floor(amount / per-refresh fee), never negative
    """
    fee_per_refresh = fee_for(REFRESH_VBYTES, fee_rate)
    return max(0, amount_sats // fee_per_refresh)
