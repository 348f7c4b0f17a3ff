"""Tests for the enable / refresh / status flows and the full escrow lifecycle."""

import asyncio
from typing import List, Optional

import pytest
from deadswitch.blockchain import BlockchainClient, FeePriority, UtxoStatus
from deadswitch.codec import extract_payload
from deadswitch.keys import generate_channel_keypair, keypair_from_private_bytes
from deadswitch.models import RefreshChain, UtxoRef
from deadswitch.operations import enable_escrow, escrow_status, refresh_escrow
from deadswitch.recovery import (
    OnChainRecovery,
    decrypt_secret,
    encrypt_secret,
    recover_key,
    recover_key_from_public_key,
)
from deadswitch.transaction import p2wpkh_script, script_to_address
from deadswitch.types import BroadcastRejectedError, ChainExhaustedError, KeyMismatchError
from .helpers import assert_valid_signature, parse_transaction
from .test_vectors import (
    ESCROW_AMOUNT_SATS,
    EVENT_ID_HEX,
    FEE_RATE,
    FUNDING_AMOUNT_SATS,
    FUNDING_OUTPUT_INDEX,
    FUNDING_TX_ID,
    OTHER_PRIVATE_KEY_HEX,
    OWNER_P2WPKH_SCRIPT_HEX,
    OWNER_PRIVATE_KEY_HEX,
    RECIPIENT_PRIVATE_KEY_HEX,
    SYMMETRIC_KEY_HEX,
    TTL_BLOCKS,
)

REFRESH_FEE = 1020  # ceil(204 * 5)


class FakeClient(BlockchainClient):
    """In-memory client that accepts every transaction."""

    def __init__(self, reject: bool = False, tx_id: Optional[str] = None) -> None:
        self.broadcasts: List[str] = []
        self.reject = reject
        self.tx_id = tx_id
        self.status = UtxoStatus(confirmed=False, spent=False)
        self.tip = 0

    async def broadcast(self, tx_hex: str) -> str:
        if self.reject:
            raise BroadcastRejectedError(["fake: HTTP 400 - rejected"])
        self.broadcasts.append(tx_hex)
        return self.tx_id or parse_transaction(tx_hex).unsigned().txid

    async def get_utxo_status(self, tx_id: str, output_index: int) -> UtxoStatus:
        return self.status

    async def get_fee_rate(self, priority: FeePriority = FeePriority.MEDIUM) -> float:
        return float(FEE_RATE)

    async def get_tip_height(self) -> int:
        return self.tip


@pytest.fixture
def owner():
    return keypair_from_private_bytes(bytes.fromhex(OWNER_PRIVATE_KEY_HEX))


@pytest.fixture
def recipient():
    return keypair_from_private_bytes(bytes.fromhex(RECIPIENT_PRIVATE_KEY_HEX))


@pytest.fixture
def recipient_address(recipient):
    return script_to_address(p2wpkh_script(recipient.public_key), "mainnet")


def enable(client, owner, recipient, recipient_address, symmetric_key=None):
    return asyncio.run(
        enable_escrow(
            client=client,
            owner=owner,
            recipient=recipient,
            recipient_address=recipient_address,
            funding_utxo=UtxoRef(FUNDING_TX_ID, FUNDING_OUTPUT_INDEX, FUNDING_AMOUNT_SATS),
            funding_script=bytes.fromhex(OWNER_P2WPKH_SCRIPT_HEX),
            amount_sats=ESCROW_AMOUNT_SATS,
            ttl_blocks=TTL_BLOCKS,
            fee_rate=FEE_RATE,
            symmetric_key=symmetric_key or bytes.fromhex(SYMMETRIC_KEY_HEX),
            event_id=EVENT_ID_HEX,
        )
    )


def refresh(client, instance, owner, recipient, recipient_address, symmetric_key=None, **kwargs):
    return asyncio.run(
        refresh_escrow(
            client=client,
            instance=instance,
            owner=owner,
            recipient=recipient,
            recipient_address=recipient_address,
            fee_rate=FEE_RATE,
            symmetric_key=symmetric_key or bytes.fromhex(SYMMETRIC_KEY_HEX),
            event_id=EVENT_ID_HEX,
            **kwargs,
        )
    )


class TestEnableEscrow:
    """Test funding an escrow and preparing its disclosure."""

    def test_broadcasts_setup(self, owner, recipient, recipient_address) -> None:
        client = FakeClient()
        result = enable(client, owner, recipient, recipient_address)

        assert len(client.broadcasts) == 1
        assert result.setup_tx_id == parse_transaction(client.broadcasts[0]).unsigned().txid
        assert result.instance.utxo == UtxoRef(result.setup_tx_id, 0, ESCROW_AMOUNT_SATS)

    def test_disclosure_spends_new_output(self, owner, recipient, recipient_address) -> None:
        result = enable(FakeClient(), owner, recipient, recipient_address)
        parsed = parse_transaction(result.disclosure_tx_hex)

        assert parsed.inputs == [(result.setup_tx_id, 0, TTL_BLOCKS)]
        assert extract_payload(result.disclosure_tx_hex).symmetric_key.hex() == SYMMETRIC_KEY_HEX

    def test_uses_broadcast_tx_id(self, owner, recipient, recipient_address) -> None:
        """The disclosure references whatever txid the network reports."""
        result = enable(FakeClient(tx_id="f6" * 32), owner, recipient, recipient_address)

        assert result.instance.utxo.tx_id == "f6" * 32
        assert parse_transaction(result.disclosure_tx_hex).inputs[0][0] == "f6" * 32

    def test_rejected_broadcast(self, owner, recipient, recipient_address) -> None:
        with pytest.raises(BroadcastRejectedError):
            enable(FakeClient(reject=True), owner, recipient, recipient_address)


class TestRefreshEscrow:
    """Test check-ins through the client."""

    def test_refresh(self, owner, recipient, recipient_address) -> None:
        client = FakeClient()
        enabled = enable(client, owner, recipient, recipient_address)
        outcome = refresh(client, enabled.instance, owner, recipient, recipient_address)

        assert len(client.broadcasts) == 2
        assert outcome.instance.amount_sats == ESCROW_AMOUNT_SATS - REFRESH_FEE
        assert parse_transaction(client.broadcasts[1]).inputs[0][:2] == (enabled.setup_tx_id, 0)
        assert parse_transaction(outcome.disclosure_tx_hex).inputs == [(outcome.refresh_tx_id, 0, TTL_BLOCKS)]

    def test_refresh_with_new_ttl(self, owner, recipient, recipient_address) -> None:
        client = FakeClient()
        enabled = enable(client, owner, recipient, recipient_address)
        outcome = refresh(client, enabled.instance, owner, recipient, recipient_address, ttl_blocks=144)

        assert outcome.instance.ttl_blocks == 144
        assert parse_transaction(outcome.disclosure_tx_hex).inputs[0][2] == 144

    def test_recipient_is_fixed(self, owner, recipient, recipient_address) -> None:
        client = FakeClient()
        enabled = enable(client, owner, recipient, recipient_address)
        stranger = keypair_from_private_bytes(bytes.fromhex(OTHER_PRIVATE_KEY_HEX))

        with pytest.raises(KeyMismatchError, match="Recipient key"):
            refresh(client, enabled.instance, owner, stranger, recipient_address)
        assert len(client.broadcasts) == 1


class TestEscrowStatus:
    """Test time-to-disclosure reporting."""

    @pytest.fixture
    def instance(self, owner, recipient, recipient_address):
        return enable(FakeClient(), owner, recipient, recipient_address).instance

    def test_unconfirmed(self, instance) -> None:
        status = asyncio.run(escrow_status(instance, FakeClient()))

        assert status.blocks_remaining is None
        assert status.days_remaining is None
        assert not status.disclosure_matured

    def test_blocks_remaining(self, instance) -> None:
        client = FakeClient()
        client.status = UtxoStatus(confirmed=True, spent=False, block_height=800_000)
        client.tip = 800_000 + 1440

        status = asyncio.run(escrow_status(instance, client, fee_rate=FEE_RATE))

        assert status.blocks_remaining == TTL_BLOCKS - 1440
        assert status.days_remaining == 20.0
        assert status.refreshes_remaining == ESCROW_AMOUNT_SATS // REFRESH_FEE
        assert not status.disclosure_matured

    def test_matured(self, instance) -> None:
        client = FakeClient()
        client.status = UtxoStatus(confirmed=True, spent=False, block_height=800_000)
        client.tip = 800_000 + TTL_BLOCKS + 10

        status = asyncio.run(escrow_status(instance, client))

        assert status.blocks_remaining == 0
        assert status.days_remaining == 0.0
        assert status.disclosure_matured

    def test_default_fee_rate(self, instance) -> None:
        status = asyncio.run(escrow_status(instance, FakeClient()))
        assert status.refreshes_remaining == ESCROW_AMOUNT_SATS // 2040


class TestLifecycle:
    """Enable, check in three times, then recover K from the last disclosure."""

    def test_end_to_end(self, owner, recipient, recipient_address) -> None:
        sender_private, sender_public = generate_channel_keypair()
        recipient_channel_private, recipient_channel_public = generate_channel_keypair()
        encrypted = encrypt_secret("the secret", recipient_channel_public, sender_private)
        key = encrypted.symmetric_key

        client = FakeClient()
        enabled = enable(client, owner, recipient, recipient_address, symmetric_key=key)
        chain = RefreshChain.start(enabled.instance)
        disclosures = [enabled.disclosure_tx_hex]

        for _ in range(3):
            outcome = refresh(client, chain.current, owner, recipient, recipient_address, symmetric_key=key)
            chain = chain.advance(outcome.instance)
            disclosures.append(outcome.disclosure_tx_hex)

        assert len(chain) == 4
        assert [i.amount_sats for i in chain.instances] == [
            ESCROW_AMOUNT_SATS - REFRESH_FEE * n for n in range(4)
        ]
        assert chain.current.amount_sats == 96_940

        # Each refresh spends the previous link through the owner branch
        for previous, refresh_hex in zip(chain.instances, client.broadcasts[1:]):
            parsed = parse_transaction(refresh_hex)
            assert parsed.inputs[0][:2] == (previous.utxo.tx_id, 0)
            assert parsed.witnesses[0][1] == b"\x01"
            assert_valid_signature(refresh_hex, 0, previous.witness_script, previous.amount_sats, owner.public_key)

        # Only the latest disclosure spends an unspent output
        final = parse_transaction(disclosures[-1])
        assert final.inputs == [(chain.current.utxo.tx_id, 0, TTL_BLOCKS)]
        assert final.outputs[1][0] == chain.current.amount_sats - 1335
        assert_valid_signature(
            disclosures[-1], 0, chain.current.witness_script, chain.current.amount_sats, recipient.public_key
        )
        for stale, instance in zip(disclosures, chain.instances):
            assert parse_transaction(stale).inputs[0][0] == instance.utxo.tx_id

        recovered = recover_key(OnChainRecovery.from_transaction(disclosures[-1]))
        assert recovered == key
        assert recover_key_from_public_key(
            encrypted.public_key_ciphertext, recipient_channel_private, sender_public
        ) == key
        assert decrypt_secret(encrypted.ciphertext, encrypted.nonce, recovered) == b"the secret"

    def test_refreshes_until_exhausted(self, owner, recipient, recipient_address) -> None:
        client = FakeClient()
        instance = enable(client, owner, recipient, recipient_address).instance

        refreshes = 0
        with pytest.raises(ChainExhaustedError):
            while True:
                instance = refresh(client, instance, owner, recipient, recipient_address).instance
                refreshes += 1

        assert instance.amount_sats >= 10_000
        assert instance.amount_sats - REFRESH_FEE < 10_000
        assert refreshes == (ESCROW_AMOUNT_SATS - 10_000) // REFRESH_FEE
