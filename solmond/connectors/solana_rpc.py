"""
Solana JSON-RPC connector.

This module provides the ChainQueryGateway implementation that talks to
a validator RPC node and a network RPC node over HTTP JSON-RPC 2.0.
"""

import itertools
from typing import Any, Dict, List, Optional

import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from solmond.connectors.base import (
    ChainQueryGateway, ClusterNode, ConfirmedBlock, EpochInfo, GatewayError,
    GatewayTimeout, RPCError, Target, VoteAccountsSnapshot,
)

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 5.0


class SolanaRPCGateway(ChainQueryGateway):
    """Chain query gateway backed by Solana JSON-RPC endpoints."""

    def __init__(self,
                 validator_rpc: str,
                 network_rpc: str,
                 timeout: float = DEFAULT_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the gateway.

        Args:
            validator_rpc: RPC URL of the tracked validator's node
            network_rpc: RPC URL of a trusted network node
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if not validator_rpc or not network_rpc:
            raise ValueError("Both validator and network RPC endpoints are required")

        self.endpoints = {
            Target.VALIDATOR: validator_rpc,
            Target.NETWORK: network_rpc,
        }
        self.timeout = timeout
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
            logger.info("Connected Solana RPC gateway",
                        validator_rpc=self.endpoints[Target.VALIDATOR],
                        network_rpc=self.endpoints[Target.NETWORK])

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Disconnected Solana RPC gateway")

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=1),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        return await self.client.post(url, json=payload)

    async def _call(self, method: str, params: Optional[List[Any]] = None,
                    target: Target = Target.VALIDATOR) -> Any:
        """Issue one JSON-RPC call and return its ``result`` member."""
        if self.client is None:
            await self.connect()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = await self._post(self.endpoints[target], payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("RPC call timed out", method=method, target=target.value)
            raise GatewayTimeout(f"{method} timed out on {target.value}") from e
        except httpx.HTTPError as e:
            logger.error("RPC transport error", method=method, target=target.value, error=str(e))
            raise GatewayError(f"{method} failed on {target.value}: {e}") from e
        except ValueError as e:
            raise GatewayError(f"{method} returned invalid JSON on {target.value}") from e

        if "error" in data and data["error"]:
            error = data["error"]
            raise RPCError(method, int(error.get("code", 0)), str(error.get("message", "")))
        if "result" not in data:
            raise GatewayError(f"{method} response has no result on {target.value}")

        return data["result"]

    async def get_epoch_info(self, target: Target = Target.VALIDATOR) -> EpochInfo:
        result = await self._call("getEpochInfo", target=target)
        return EpochInfo.from_rpc(result)

    async def get_vote_accounts(self, target: Target = Target.VALIDATOR) -> VoteAccountsSnapshot:
        result = await self._call("getVoteAccounts", target=target)
        return VoteAccountsSnapshot.from_rpc(result)

    async def get_cluster_nodes(self) -> List[ClusterNode]:
        result = await self._call("getClusterNodes", target=Target.NETWORK)
        return [
            ClusterNode(identity=node["pubkey"],
                        gossip_address=node.get("gossip"),
                        version=node.get("version"))
            for node in result
        ]

    async def get_slot_leader(self) -> str:
        return str(await self._call("getSlotLeader"))

    async def get_current_slot(self, target: Target = Target.VALIDATOR) -> int:
        return int(await self._call("getSlot", target=target))

    async def get_tx_count(self) -> int:
        return int(await self._call("getTransactionCount"))

    async def get_confirmed_block(self, target: Target, slot: int) -> ConfirmedBlock:
        result = await self._call(
            "getBlock",
            [slot, {"encoding": "json", "transactionDetails": "none",
                    "rewards": False, "maxSupportedTransactionVersion": 0}],
            target=target,
        )
        if result is None:
            raise GatewayError(f"Block {slot} not available on {target.value}")
        return ConfirmedBlock(slot=slot, block_time=result.get("blockTime"))

    async def get_version(self) -> str:
        result = await self._call("getVersion")
        return str(result.get("solana-core", ""))

    async def get_balance(self, pubkey: str, target: Target = Target.VALIDATOR) -> int:
        result = await self._call("getBalance", [pubkey], target=target)
        # getBalance wraps the value in an RpcResponse context
        if isinstance(result, dict):
            return int(result.get("value", 0))
        return int(result)
