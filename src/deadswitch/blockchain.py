"""
Blockchain interfaces for broadcasting and status queries.

This module provides an abstract base class for the network boundary and an
Esplora (mempool.space / blockstream.info) implementation on httpx. Endpoints
are tried in order; a failure moves on to the next one with no backoff.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from .types import BroadcastRejectedError, Network, ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FeePriority(Enum):
    """Fee priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# mempool.space recommended-fees field per priority
_FEE_FIELDS = {
    FeePriority.HIGH: "fastestFee",
    FeePriority.MEDIUM: "halfHourFee",
    FeePriority.LOW: "economyFee",
}

# Used when no endpoint can provide an estimate (sats/vbyte)
DEFAULT_FEE_RATES = {
    FeePriority.HIGH: 50.0,
    FeePriority.MEDIUM: 20.0,
    FeePriority.LOW: 5.0,
}


@dataclass
class Endpoint:
    """An Esplora-compatible API root."""

    name: str
    """Human-readable provider name."""

    url: str
    """API base URL, without trailing slash."""


@dataclass
class NetworkConfig:
    """Configuration for Bitcoin network access."""

    network: Network
    """Network name."""

    endpoints: List[Endpoint] = field(default_factory=list)
    """Endpoints in fallback order."""

    timeout: float = 30.0
    """Per-request timeout in seconds."""

    @classmethod
    def mainnet(cls) -> "NetworkConfig":
        """Creates configuration for mainnet (mempool.space, then blockstream.info)."""
        return cls(
            network="mainnet",
            endpoints=[
                Endpoint("mempool.space", "https://mempool.space/api"),
                Endpoint("blockstream.info", "https://blockstream.info/api"),
            ],
        )

    @classmethod
    def testnet(cls) -> "NetworkConfig":
        """Creates configuration for testnet (mempool.space, then blockstream.info)."""
        return cls(
            network="testnet",
            endpoints=[
                Endpoint("mempool.space", "https://mempool.space/testnet/api"),
                Endpoint("blockstream.info", "https://blockstream.info/testnet/api"),
            ],
        )

    @classmethod
    def for_network(cls, network: Network) -> "NetworkConfig":
        if network == "mainnet":
            return cls.mainnet()
        if network == "testnet":
            return cls.testnet()
        raise ValueError(f"Unknown network: {network}")

    def with_endpoints(self, *endpoints: Endpoint) -> "NetworkConfig":
        """Replaces the endpoint list."""
        return NetworkConfig(network=self.network, endpoints=list(endpoints), timeout=self.timeout)


@dataclass
class UtxoStatus:
    """Status of an output on the blockchain."""

    confirmed: bool
    """Whether the creating transaction is confirmed."""

    spent: bool
    """Whether the output has been spent."""

    block_height: Optional[int] = None
    """Confirmation height, if confirmed."""

    spent_by_tx_id: Optional[str] = None
    """Spending transaction, if spent."""


class BlockchainClient(ABC):
    """Abstract base class for submitting transactions and reading chain state."""

    @abstractmethod
    async def broadcast(self, tx_hex: str) -> str:
        """Submit a signed transaction, returning its txid."""
        pass

    @abstractmethod
    async def get_utxo_status(self, tx_id: str, output_index: int) -> UtxoStatus:
        """Get the confirmation and spend status of an output."""
        pass

    @abstractmethod
    async def get_fee_rate(self, priority: FeePriority = FeePriority.MEDIUM) -> float:
        """Get a fee rate estimate in sats/vbyte."""
        pass

    @abstractmethod
    async def get_tip_height(self) -> int:
        """Get the current block height."""
        pass


class EsploraClient(BlockchainClient):
    """
    Esplora REST client with linear endpoint fallback.

    Example usage:
        ```python
        async with EsploraClient(NetworkConfig.testnet()) as client:
            txid = await client.broadcast(tx_hex)
        ```
    """

    def __init__(self, config: NetworkConfig, http: Optional[httpx.AsyncClient] = None) -> None:
        """
        Initialize the client.

        Args:
            config: Network and endpoint configuration.
            http: Optional shared httpx client (one is created and owned otherwise).
        """
        if not config.endpoints:
            raise ValueError("At least one endpoint is required")
        self.config = config
        self._owns_http = http is None
        self._http = http if http is not None else httpx.AsyncClient(timeout=config.timeout)

    async def __aenter__(self) -> "EsploraClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def broadcast(self, tx_hex: str) -> str:
        """
        Broadcast a signed transaction.

        Raises:
            BroadcastRejectedError: If every endpoint rejects it or is unreachable
        """

        async def submit(endpoint: Endpoint) -> str:
            response = await self._http.post(
                f"{endpoint.url}/tx",
                content=tx_hex,
                headers={"Content-Type": "text/plain"},
            )
            response.raise_for_status()
            return response.text.strip()

        try:
            tx_id = await self._with_fallback("broadcast", submit)
        except ProviderError as e:
            raise BroadcastRejectedError(e.errors) from e
        logger.info("Broadcast transaction %s on %s", tx_id, self.config.network)
        return tx_id

    async def get_utxo_status(self, tx_id: str, output_index: int) -> UtxoStatus:
        """
        Get the status of an output.

        Raises:
            ProviderError: If no endpoint can answer
        """

        async def query(endpoint: Endpoint) -> UtxoStatus:
            tx_response = await self._http.get(f"{endpoint.url}/tx/{tx_id}")
            tx_response.raise_for_status()
            status = tx_response.json().get("status") or {}

            outspend_response = await self._http.get(f"{endpoint.url}/tx/{tx_id}/outspend/{output_index}")
            outspend_response.raise_for_status()
            outspend = outspend_response.json()

            return UtxoStatus(
                confirmed=bool(status.get("confirmed", False)),
                block_height=status.get("block_height"),
                spent=bool(outspend.get("spent", False)),
                spent_by_tx_id=outspend.get("txid"),
            )

        return await self._with_fallback("get UTXO status", query)

    async def get_fee_rate(self, priority: FeePriority = FeePriority.MEDIUM) -> float:
        """Get a recommended fee rate, falling back to conservative defaults."""

        async def query(endpoint: Endpoint) -> Dict[str, float]:
            response = await self._http.get(f"{endpoint.url}/v1/fees/recommended")
            response.raise_for_status()
            return response.json()

        try:
            fees = await self._with_fallback("estimate fees", query)
            return float(fees[_FEE_FIELDS[priority]])
        except (ProviderError, KeyError, TypeError, ValueError) as e:
            logger.warning("Fee estimation failed (%s), using defaults", e)
            return DEFAULT_FEE_RATES[priority]

    async def get_tip_height(self) -> int:
        """
        Get the current block height.

        Raises:
            ProviderError: If no endpoint can answer
        """

        async def query(endpoint: Endpoint) -> int:
            response = await self._http.get(f"{endpoint.url}/blocks/tip/height")
            response.raise_for_status()
            return int(response.text.strip())

        return await self._with_fallback("get tip height", query)

    async def _with_fallback(self, action: str, request: Callable[[Endpoint], Awaitable[T]]) -> T:
        """Run one request per endpoint until one succeeds."""
        errors: List[str] = []
        for endpoint in self.config.endpoints:
            try:
                return await request(endpoint)
            except httpx.HTTPStatusError as e:
                message = f"{endpoint.name}: HTTP {e.response.status_code} - {e.response.text}"
            except (httpx.HTTPError, ValueError) as e:
                message = f"{endpoint.name}: {e}"
            logger.warning("Failed to %s via %s", action, message)
            errors.append(message)

        raise ProviderError(errors, action)


async def broadcast_transaction(
    tx_hex: str,
    network: Network = "mainnet",
    client: Optional[BlockchainClient] = None,
) -> str:
    """
    Broadcast a signed transaction to the Bitcoin network.

    Args:
        tx_hex: Hex-encoded signed transaction
        network: Bitcoin network
        client: Client to use (a default Esplora client otherwise)

    Returns:
        Transaction ID
    """
    if client is not None:
        return await client.broadcast(tx_hex)
    async with EsploraClient(NetworkConfig.for_network(network)) as esplora:
        return await esplora.broadcast(tx_hex)
