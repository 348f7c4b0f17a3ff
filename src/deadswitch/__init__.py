"""
deadswitch - Trustless dead man's switch on Bitcoin

Python implementation of CSV-timelocked escrow with a pre-signed disclosure
transaction, plus three-channel recovery of the symmetric key that unlocks
the protected secret.
"""

from .keys import generate_keypair, keypair_from_private_bytes, generate_channel_keypair, channel_public_key
from .script import (
    EscrowScript,
    encode_escrow_script,
    decode_escrow_script,
    p2wsh_output_script,
    p2wsh_address,
    op_return_script,
    days_to_blocks,
    blocks_to_days,
)
from .transaction import Transaction, TxInput, TxOutput, fee_for, p2wpkh_script, address_to_script
from .funding import build_escrow_setup
from .disclosure import build_disclosure
from .refresh import build_refresh, estimate_refreshes_remaining
from .codec import DecodedOutput, DecodedTransaction, decode_transaction, find_payload, extract_payload
from .symmetric import generate_symmetric_key, encrypt_with_key, decrypt_with_key
from .passphrase import PassphraseBundle, derive_key_from_passphrase, encrypt_with_passphrase, decrypt_with_passphrase
from .channel import PublicKeyChannel, X25519Channel
from .recovery import (
    EncryptedSecret,
    PublicKeyRecovery,
    PassphraseRecovery,
    OnChainRecovery,
    RecoveryInput,
    encrypt_secret,
    decrypt_secret,
    recover_key_from_public_key,
    recover_key_from_passphrase,
    recover_key_from_payload,
    recover_key,
    recover_key_from_any,
)
from .models import (
    Keypair,
    UtxoRef,
    EscrowInstance,
    RecoveryPayload,
    SetupResult,
    DisclosureResult,
    RefreshResult,
    RefreshChain,
)
from .blockchain import (
    FeePriority,
    Endpoint,
    NetworkConfig,
    UtxoStatus,
    BlockchainClient,
    EsploraClient,
    broadcast_transaction,
)
from .operations import (
    EnableResult,
    RefreshOutcome,
    EscrowStatus,
    enable_escrow,
    refresh_escrow,
    escrow_status,
)
from .types import (
    Network,
    DUST_THRESHOLD,
    MIN_ESCROW_SATS,
    MAX_CSV_BLOCKS,
    BLOCKS_PER_DAY,
    SETUP_VBYTES,
    REFRESH_VBYTES,
    DISCLOSURE_VBYTES,
    DeadSwitchError,
    MalformedScriptError,
    UnsupportedScriptError,
    KeyMismatchError,
    TtlMismatchError,
    DustOutputError,
    InsufficientFundsError,
    ChainExhaustedError,
    MalformedTransactionError,
    PayloadNotFoundError,
    InvalidKeyLengthError,
    DecryptionFailedError,
    RecoveryFailedError,
    ProviderError,
    BroadcastRejectedError,
)

__version__ = "0.1.0"

__all__ = [
    # Keys
    "generate_keypair",
    "keypair_from_private_bytes",
    "generate_channel_keypair",
    "channel_public_key",
    # Script
    "EscrowScript",
    "encode_escrow_script",
    "decode_escrow_script",
    "p2wsh_output_script",
    "p2wsh_address",
    "op_return_script",
    "days_to_blocks",
    "blocks_to_days",
    # Transaction
    "Transaction",
    "TxInput",
    "TxOutput",
    "fee_for",
    "p2wpkh_script",
    "address_to_script",
    # Builders
    "build_escrow_setup",
    "build_disclosure",
    "build_refresh",
    "estimate_refreshes_remaining",
    # Codec
    "DecodedOutput",
    "DecodedTransaction",
    "decode_transaction",
    "find_payload",
    "extract_payload",
    # Encryption
    "generate_symmetric_key",
    "encrypt_with_key",
    "decrypt_with_key",
    "PassphraseBundle",
    "derive_key_from_passphrase",
    "encrypt_with_passphrase",
    "decrypt_with_passphrase",
    "PublicKeyChannel",
    "X25519Channel",
    # Recovery
    "EncryptedSecret",
    "PublicKeyRecovery",
    "PassphraseRecovery",
    "OnChainRecovery",
    "RecoveryInput",
    "encrypt_secret",
    "decrypt_secret",
    "recover_key_from_public_key",
    "recover_key_from_passphrase",
    "recover_key_from_payload",
    "recover_key",
    "recover_key_from_any",
    # Models
    "Keypair",
    "UtxoRef",
    "EscrowInstance",
    "RecoveryPayload",
    "SetupResult",
    "DisclosureResult",
    "RefreshResult",
    "RefreshChain",
    # Blockchain
    "FeePriority",
    "Endpoint",
    "NetworkConfig",
    "UtxoStatus",
    "BlockchainClient",
    "EsploraClient",
    "broadcast_transaction",
    # Operations
    "EnableResult",
    "RefreshOutcome",
    "EscrowStatus",
    "enable_escrow",
    "refresh_escrow",
    "escrow_status",
    # Constants
    "Network",
    "DUST_THRESHOLD",
    "MIN_ESCROW_SATS",
    "MAX_CSV_BLOCKS",
    "BLOCKS_PER_DAY",
    "SETUP_VBYTES",
    "REFRESH_VBYTES",
    "DISCLOSURE_VBYTES",
    # Errors
    "DeadSwitchError",
    "MalformedScriptError",
    "UnsupportedScriptError",
    "KeyMismatchError",
    "TtlMismatchError",
    "DustOutputError",
    "InsufficientFundsError",
    "ChainExhaustedError",
    "MalformedTransactionError",
    "PayloadNotFoundError",
    "InvalidKeyLengthError",
    "DecryptionFailedError",
    "RecoveryFailedError",
    "ProviderError",
    "BroadcastRejectedError",
]
