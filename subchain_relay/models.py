"""
Data models for the subchain relay.
"""
from enum import Enum
from typing import Any, Dict, Optional

from eth_utils import keccak
from pydantic import BaseModel, Field


def to_hex(value: Any) -> str:
    """Normalize bytes / HexBytes / str to a lowercase 0x-prefixed hex string"""
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    value = str(value)
    if not value.startswith('0x'):
        value = '0x' + value
    return value.lower()


class BlockHeader(BaseModel):
    """The part of a rootchain block the reconciler needs"""
    number: int
    hash: str
    parent_hash: str = Field(..., alias="parentHash")
    timestamp: int

    class Config:
        populate_by_name = True

    @classmethod
    def from_web3(cls, block: Dict[str, Any]) -> "BlockHeader":
        return cls(
            number=block["number"],
            hash=to_hex(block["hash"]),
            parentHash=to_hex(block["parentHash"]),
            timestamp=block["timestamp"],
        )


class LogEntry(BaseModel):
    """A Messenger event as seen on the rootchain"""
    transaction_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    block_hash: str = Field(..., alias="blockHash")
    log_index: int = Field(0, alias="logIndex")
    address: Optional[str] = None

    class Config:
        populate_by_name = True

    @classmethod
    def from_web3(cls, log: Dict[str, Any]) -> "LogEntry":
        return cls(
            transactionHash=to_hex(log["transactionHash"]),
            blockNumber=log["blockNumber"],
            blockHash=to_hex(log["blockHash"]),
            logIndex=log.get("logIndex", 0),
            address=log.get("address"),
        )


class Command(BaseModel):
    """
    A rootchain command ready to be replayed on the subchain.

    ``target`` is None for contract creations.
    """
    source_tx_id: str
    target: Optional[str] = None
    payload: bytes = b""
    origin: str
    timestamp: int
    block_number: int = 0
    log_index: int = 0

    @property
    def is_creation(self) -> bool:
        return self.target is None

    def to_transaction(self, gas: int) -> Dict[str, Any]:
        """Build the subchain transaction dict for this command"""
        tx: Dict[str, Any] = {
            'from': self.origin,
            'data': '0x' + self.payload.hex(),
            'gas': gas,
            # impersonated senders hold no subchain balance
            'gasPrice': 0,
        }
        if self.target is not None:
            tx['to'] = self.target
        return tx


class NotificationKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"


class Notification(BaseModel):
    """A log entry that entered or left the canonical rootchain"""
    kind: NotificationKind
    log: LogEntry


class ExecutionStatus(str, Enum):
    """How a command ended up after the executor ran it"""
    SKIPPED = "skipped"
    APPLIED = "applied"
    REJECTED = "rejected"
    FAILED = "failed"


class ExecutionOutcome(BaseModel):
    source_tx_id: str
    status: ExecutionStatus
    target_tx_id: Optional[str] = None
    error: Optional[str] = None


# Registry sentinels
ZERO_HASH = "0x" + "00" * 32
REJECTED = to_hex(keccak(text="rejected"))
