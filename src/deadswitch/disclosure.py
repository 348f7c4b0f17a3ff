"""
Disclosure transaction: the recipient's pre-signed, timelocked spend.

The transaction spends the current escrow output through the ELSE branch and
carries the recovery payload (K || event id) in a zero-value OP_RETURN output.
Its input sequence equals ``ttl_blocks``, so it only becomes valid once the
escrow output has that many confirmations. After that anyone can broadcast it.
"""

import logging
from typing import Union

from .models import DisclosureResult, EscrowInstance, Keypair, RecoveryPayload
from .script import op_return_script
from .transaction import Transaction, TxInput, TxOutput, address_to_script, fee_for, sign_input
from .types import (
    DISCLOSURE_VBYTES,
    DUST_THRESHOLD,
    DustOutputError,
    KeyMismatchError,
    Network,
    TtlMismatchError,
)

logger = logging.getLogger(__name__)

PAYLOAD_OUTPUT_INDEX = 0
RECIPIENT_OUTPUT_INDEX = 1


def build_disclosure(
    instance: EscrowInstance,
    recipient: Keypair,
    recipient_address: str,
    ttl_blocks: int,
    symmetric_key: bytes,
    event_id: Union[bytes, str],
    fee_rate: float,
    network: Network = "mainnet",
) -> DisclosureResult:
    """
    Build and sign the disclosure transaction for an escrow instance.

    Args:
        instance: The escrow output to spend
        recipient: Recipient keypair; signs via the timelocked branch
        recipient_address: Where the escrowed value goes
        ttl_blocks: Must equal the timelock encoded in the escrow script
        symmetric_key: 32-byte key K to disclose
        event_id: 32-byte event id (bytes or 64 hex chars)
        fee_rate: Fee rate in sats/vbyte
        network: Bitcoin network

    Returns:
        DisclosureResult with the signed transaction hex

    Raises:
        TtlMismatchError: If ttl_blocks differs from the script's timelock
        KeyMismatchError: If the recipient key is not the script's recipient key
        DustOutputError: If the recipient output would be below dust
    """
    script = instance.script
    if ttl_blocks != script.ttl_blocks:
        raise TtlMismatchError(expected=script.ttl_blocks, actual=ttl_blocks)
    if recipient.public_key != script.recipient_pubkey:
        raise KeyMismatchError("Recipient key does not match the escrow script")

    payload = RecoveryPayload.create(symmetric_key, event_id)
    destination = address_to_script(recipient_address, network)

    fee = fee_for(DISCLOSURE_VBYTES, fee_rate)
    recipient_amount = instance.amount_sats - fee
    if recipient_amount < DUST_THRESHOLD:
        raise DustOutputError(
            f"Escrow amount {instance.amount_sats} sats too small to cover fee {fee} sats"
        )

    tx = Transaction()
    # The CSV check compares against this field
    tx.inputs.append(
        TxInput(
            tx_id=instance.utxo.tx_id,
            output_index=instance.utxo.output_index,
            sequence=ttl_blocks,
        )
    )
    tx.outputs.append(TxOutput(amount_sats=0, script=op_return_script(payload.to_bytes())))
    tx.outputs.append(TxOutput(amount_sats=recipient_amount, script=destination))

    witness_script = script.witness_script
    signature = sign_input(
        tx,
        0,
        recipient.private_key,
        script_code=witness_script,
        amount_sats=instance.amount_sats,
    )
    # Empty second item selects the ELSE branch
    tx.inputs[0].witness = [signature, b"", witness_script]

    tx_id = tx.txid
    logger.debug(
        "Built disclosure %s spending %s:%d after %d blocks",
        tx_id,
        instance.utxo.tx_id,
        instance.utxo.output_index,
        ttl_blocks,
    )

    return DisclosureResult(
        tx_hex=tx.to_hex(),
        tx_id=tx_id,
        amount_sats=recipient_amount,
        fee_sats=fee,
    )
