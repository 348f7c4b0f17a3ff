"""
Escrow setup: fund a CSV timelock output from an owner-controlled UTXO.

The funding transaction spends one P2WPKH output owned by the owner key into
the escrow P2WSH output (index 0), returning change to the owner when it is
worth keeping.
"""

import logging
from typing import Optional

from embit.hashes import hash160

from .models import EscrowInstance, Keypair, SetupResult, UtxoRef
from .script import EscrowScript
from .transaction import (
    Transaction,
    TxInput,
    TxOutput,
    fee_for,
    is_p2wpkh,
    p2pkh_script_code,
    sign_input,
)
from .types import (
    DUST_THRESHOLD,
    MIN_ESCROW_SATS,
    SEQUENCE_RBF,
    SETUP_VBYTES,
    DustOutputError,
    InsufficientFundsError,
    KeyMismatchError,
    Network,
    UnsupportedScriptError,
)

logger = logging.getLogger(__name__)

ESCROW_OUTPUT_INDEX = 0


def build_escrow_setup(
    owner: Keypair,
    recipient_pubkey: bytes,
    ttl_blocks: int,
    amount_sats: int,
    fee_rate: float,
    funding_utxo: UtxoRef,
    funding_script: bytes,
    network: Network = "mainnet",
    change_script: Optional[bytes] = None,
) -> SetupResult:
    """
    Build and sign the transaction that creates the escrow output.

    Args:
        owner: Owner keypair; signs the funding input
        recipient_pubkey: Recipient's compressed public key (33 bytes)
        ttl_blocks: Relative timelock for the disclosure branch
        amount_sats: Value locked in the escrow output
        fee_rate: Fee rate in sats/vbyte
        funding_utxo: The owner's UTXO paying for the escrow
        funding_script: scriptPubKey of the funding UTXO
        network: Bitcoin network the funding UTXO lives on
        change_script: Where change goes (defaults to the funding script)

    Returns:
        SetupResult with the signed transaction and the new escrow instance

    Raises:
        UnsupportedScriptError: If the funding output is not P2WPKH
        KeyMismatchError: If the funding output does not pay the owner key
        DustOutputError: If amount_sats is below the escrow minimum
        InsufficientFundsError: If the funding UTXO cannot cover amount and fee
    """
    if not is_p2wpkh(funding_script):
        raise UnsupportedScriptError(
            f"Unsupported funding script type (only P2WPKH can be signed): {funding_script.hex()}"
        )

    owner_hash = hash160(owner.public_key)
    if funding_script[2:] != owner_hash:
        raise KeyMismatchError("Funding output does not pay the owner public key")

    if amount_sats < MIN_ESCROW_SATS:
        raise DustOutputError(
            f"Amount {amount_sats} sats is below minimum {MIN_ESCROW_SATS} sats"
        )

    escrow = EscrowScript(owner.public_key, recipient_pubkey, ttl_blocks)

    fee = fee_for(SETUP_VBYTES, fee_rate)
    change = funding_utxo.amount_sats - amount_sats - fee
    if change < 0:
        raise InsufficientFundsError(amount_sats + fee, funding_utxo.amount_sats)

    tx = Transaction()
    tx.inputs.append(
        TxInput(
            tx_id=funding_utxo.tx_id,
            output_index=funding_utxo.output_index,
            sequence=SEQUENCE_RBF,
        )
    )
    tx.outputs.append(TxOutput(amount_sats=amount_sats, script=escrow.output_script))

    # Change at or below dust is left to the miner
    if change > DUST_THRESHOLD:
        tx.outputs.append(TxOutput(amount_sats=change, script=change_script or funding_script))
    else:
        fee += change
        change = 0

    signature = sign_input(
        tx,
        0,
        owner.private_key,
        script_code=p2pkh_script_code(owner_hash),
        amount_sats=funding_utxo.amount_sats,
    )
    tx.inputs[0].witness = [signature, owner.public_key]

    tx_id = tx.txid
    logger.debug(
        "Built escrow setup %s: %d sats locked at %s for %d blocks, fee %d sats",
        tx_id,
        amount_sats,
        escrow.address(network),
        ttl_blocks,
        fee,
    )

    return SetupResult(
        tx_hex=tx.to_hex(),
        tx_id=tx_id,
        output_index=ESCROW_OUTPUT_INDEX,
        witness_script=escrow.witness_script,
        fee_sats=fee,
        change_sats=change,
        instance=EscrowInstance(
            utxo=UtxoRef(tx_id, ESCROW_OUTPUT_INDEX, amount_sats),
            script=escrow,
        ),
    )
