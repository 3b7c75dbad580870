"""
Abstract base class for chain query gateways.

This module defines the ChainQueryGateway abstract base class and the
immutable records it returns. Every query is parameterized by a Target
so the same gateway can ask either the tracked validator's own RPC node
or a trusted network RPC node.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Any


class Target(Enum):
    """Logical RPC target."""
    VALIDATOR = "validator"
    NETWORK = "network"


class GatewayError(Exception):
    """Base class for chain query failures."""


class RPCError(GatewayError):
    """The RPC node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int, message: str):
        super().__init__(f"{method} failed with code {code}: {message}")
        self.method = method
        self.code = code
        self.message = message


class GatewayTimeout(GatewayError):
    """A query did not complete within its time budget."""


@dataclass(frozen=True)
class EpochInfo:
    """Snapshot of a getEpochInfo response."""
    epoch: int
    absolute_slot: int
    slot_index: int = 0
    slots_in_epoch: int = 0
    block_height: Optional[int] = None
    transaction_count: Optional[int] = None

    @classmethod
    def from_rpc(cls, result: Dict[str, Any]) -> "EpochInfo":
        return cls(
            epoch=int(result["epoch"]),
            absolute_slot=int(result["absoluteSlot"]),
            slot_index=int(result.get("slotIndex", 0)),
            slots_in_epoch=int(result.get("slotsInEpoch", 0)),
            block_height=result.get("blockHeight"),
            transaction_count=result.get("transactionCount"),
        )


@dataclass(frozen=True)
class EpochCredit:
    """One (epoch, credits, previous credits) entry of a vote account."""
    epoch: int
    current_credits: int
    previous_credits: int


@dataclass(frozen=True)
class VoteAccountRecord:
    """One vote account as reported by getVoteAccounts."""
    node_identity: str
    vote_identity: str
    activated_stake: int
    last_vote: int
    root_slot: int
    commission: int
    is_epoch_vote_account: bool
    epoch_credits: Tuple[EpochCredit, ...] = ()

    @classmethod
    def from_rpc(cls, entry: Dict[str, Any]) -> "VoteAccountRecord":
        # Entries shorter than three elements carry no usable credit data
        credits = tuple(
            EpochCredit(int(c[0]), int(c[1]), int(c[2]))
            for c in entry.get("epochCredits", [])
            if len(c) >= 3
        )
        return cls(
            node_identity=entry["nodePubkey"],
            vote_identity=entry["votePubkey"],
            activated_stake=int(entry.get("activatedStake", 0)),
            last_vote=int(entry.get("lastVote", 0)),
            root_slot=int(entry.get("rootSlot", 0)),
            commission=int(entry.get("commission", 0)),
            is_epoch_vote_account=bool(entry.get("epochVoteAccount", False)),
            epoch_credits=credits,
        )


@dataclass(frozen=True)
class VoteAccountsSnapshot:
    """Current and delinquent vote accounts from a single query."""
    current: Tuple[VoteAccountRecord, ...] = ()
    delinquent: Tuple[VoteAccountRecord, ...] = ()

    @classmethod
    def from_rpc(cls, result: Dict[str, Any]) -> "VoteAccountsSnapshot":
        current = tuple(VoteAccountRecord.from_rpc(e) for e in result.get("current", []))
        seen = {r.node_identity for r in current}
        # A node identity belongs to at most one set; current wins
        delinquent = tuple(
            r for r in (VoteAccountRecord.from_rpc(e) for e in result.get("delinquent", []))
            if r.node_identity not in seen
        )
        return cls(current=current, delinquent=delinquent)

    def find_current(self, node_identity: str) -> Optional[VoteAccountRecord]:
        for record in self.current:
            if record.node_identity == node_identity:
                return record
        return None

    def find_delinquent(self, node_identity: str) -> Optional[VoteAccountRecord]:
        for record in self.delinquent:
            if record.node_identity == node_identity:
                return record
        return None


@dataclass(frozen=True)
class ClusterNode:
    """Gossip information for one cluster node."""
    identity: str
    gossip_address: Optional[str] = None
    version: Optional[str] = None


@dataclass(frozen=True)
class ConfirmedBlock:
    """The part of a confirmed block this monitor reads."""
    slot: int
    block_time: Optional[int] = None


class ChainQueryGateway(ABC):
    """
    Abstract base class for chain query gateways.

    Implementations raise GatewayError (or a subclass) on any transient
    failure; callers decide how to degrade.
    """

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self) -> None:
        """Open underlying connections."""

    async def disconnect(self) -> None:
        """Close underlying connections."""

    @abstractmethod
    async def get_epoch_info(self, target: Target = Target.VALIDATOR) -> EpochInfo:
        pass

    @abstractmethod
    async def get_vote_accounts(self, target: Target = Target.VALIDATOR) -> VoteAccountsSnapshot:
        pass

    @abstractmethod
    async def get_cluster_nodes(self) -> List[ClusterNode]:
        pass

    @abstractmethod
    async def get_slot_leader(self) -> str:
        pass

    @abstractmethod
    async def get_current_slot(self, target: Target = Target.VALIDATOR) -> int:
        pass

    @abstractmethod
    async def get_tx_count(self) -> int:
        pass

    @abstractmethod
    async def get_confirmed_block(self, target: Target, slot: int) -> ConfirmedBlock:
        pass

    @abstractmethod
    async def get_version(self) -> str:
        pass

    @abstractmethod
    async def get_balance(self, pubkey: str, target: Target = Target.VALIDATOR) -> int:
        """Return the account balance in lamports."""
        pass
