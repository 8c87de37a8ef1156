"""
Typed access to the two contracts the relay talks to: the Messenger on the
rootchain (command log) and the Manager on the subchain (confirmation
registry).
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from .exceptions import LedgerError, RegistryError
from .ledger import LedgerClient
from .models import REJECTED, ZERO_HASH, Command, LogEntry, to_hex
from .sandbox import SandboxClient

logger = logging.getLogger(__name__)

GENESIS_ADDRESS = "0x0000000000000000000000000000000000000000"


class CommandLog:
    """
    The Messenger contract on the rootchain.

    Its events carry no payload: the command is the ``(address to, bytes data)``
    argument of the transaction that emitted the event.
    """

    MESSENGER_ABI = [
        {
            "inputs": [],
            "name": "created",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "address", "name": "to", "type": "address"},
                {"internalType": "bytes", "name": "data", "type": "bytes"}
            ],
            "name": "sendMessage",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "anonymous": False,
            "inputs": [],
            "name": "Message",
            "type": "event"
        }
    ]

    COMMAND_TYPES = ("address", "bytes")

    def __init__(self, ledger: LedgerClient, address: str):
        self.ledger = ledger
        self.address = Web3.to_checksum_address(address)
        self.contract = ledger.w3.eth.contract(address=self.address, abi=self.MESSENGER_ABI)

    def created(self) -> int:
        """
        Rootchain block number the Messenger was deployed in.

        Raises:
            LedgerError: If the address doesn't answer created()
        """
        try:
            return int(self.contract.functions.created().call())
        except (Web3Exception, requests.RequestException, ValueError) as e:
            raise LedgerError(f"Messenger at {self.address} has no usable created(): {e}") from e

    def get_logs(self, from_block: int, to_block: int):
        return self.ledger.get_logs(self.address, from_block=from_block, to_block=to_block)

    def decode_command(self, tx: Dict[str, Any], timestamp: int, log: Optional[LogEntry] = None) -> Command:
        """
        Turn a Messenger transaction into a Command.

        Args:
            tx: The rootchain transaction (web3 dict)
            timestamp: Timestamp of the block the transaction was mined in
            log: The event that pointed at the transaction
        """
        to, data = self.ledger.decode_call_data(self.COMMAND_TYPES, tx["input"])
        # transactions to the genesis address are contract creations
        target = None if int(to, 16) == 0 else Web3.to_checksum_address(to)
        return Command(
            source_tx_id=to_hex(tx["hash"]),
            target=target,
            payload=bytes(data),
            origin=Web3.to_checksum_address(tx["from"]),
            timestamp=timestamp,
            block_number=log.block_number if log else tx.get("blockNumber", 0),
            log_index=log.log_index if log else 0,
        )


def load_artifact(path: str) -> Tuple[Any, str]:
    """
    Read ABI and creation bytecode from a compiler artifact (solc/forge/truffle).
    """
    artifact_path = Path(path)
    if not artifact_path.exists():
        raise RegistryError(f"Registry artifact not found: {artifact_path}")
    with artifact_path.open("r") as f:
        data = json.load(f)

    abi = data.get("abi")
    bytecode = data.get("bytecode")
    if isinstance(bytecode, dict):
        bytecode = bytecode.get("object")
    if not bytecode:
        raise RegistryError(f"Bytecode not found in artifact {artifact_path}")
    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode
    return abi, bytecode


class ConfirmationRegistry:
    """
    The Manager contract on the subchain: rootchain tx hash -> subchain tx
    hash, or REJECTED. Only the controller account may write.
    """

    MANAGER_ABI = [
        {
            "inputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
            "name": "confirmed",
            "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [],
            "name": "lastTx",
            "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "bytes32", "name": "rootTx", "type": "bytes32"},
                {"internalType": "bytes32", "name": "subTx", "type": "bytes32"}
            ],
            "name": "setConfirmed",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        }
    ]

    def __init__(self, sandbox: SandboxClient, address: str, controller: str, gas: int = 99_000_000):
        self.sandbox = sandbox
        self.address = Web3.to_checksum_address(address)
        self.controller = Web3.to_checksum_address(controller)
        self.gas = gas
        self.contract = sandbox.w3.eth.contract(address=self.address, abi=self.MANAGER_ABI)

    def _read(self, name: str, *args) -> str:
        try:
            value = getattr(self.contract.functions, name)(*args).call()
        except (Web3Exception, requests.RequestException, ValueError) as e:
            raise RegistryError(f"Registry {name}() failed: {e}") from e
        return to_hex(value)

    def confirmed(self, source_tx_id: str) -> str:
        return self._read("confirmed", _bytes32(source_tx_id))

    def is_confirmed(self, source_tx_id: str) -> bool:
        return self.confirmed(source_tx_id) != ZERO_HASH

    def is_rejected(self, source_tx_id: str) -> bool:
        return self.confirmed(source_tx_id) == REJECTED

    def last_tx(self) -> Optional[str]:
        """The last confirmed rootchain tx hash, or None on a fresh registry"""
        value = self._read("lastTx")
        return None if value == ZERO_HASH else value

    def set_confirmed(self, source_tx_id: str, target_tx_id: str) -> str:
        """
        Queue the confirmation write; it lands with the next mined block.

        Returns:
            The subchain hash of the setConfirmed transaction
        """
        try:
            tx_hash = self.contract.functions.setConfirmed(
                _bytes32(source_tx_id), _bytes32(target_tx_id)
            ).transact({'from': self.controller, 'gas': self.gas})
        except (Web3Exception, requests.RequestException, ValueError) as e:
            raise RegistryError(f"setConfirmed({source_tx_id}) failed: {e}") from e
        return to_hex(tx_hash)

    def reject(self, source_tx_id: str) -> str:
        return self.set_confirmed(source_tx_id, REJECTED)

    @classmethod
    def ensure_deployed(
        cls,
        sandbox: SandboxClient,
        address: str,
        controller: str,
        artifact: Optional[str],
        timestamp: int,
        gas: int = 99_000_000
    ) -> "ConfirmationRegistry":
        """
        Return the registry at ``address``, deploying it first if the subchain
        is new.

        The address is deterministic: the controller's first deployment on a
        fresh node. Deployment is mined at ``timestamp``.

        Raises:
            RegistryError: If deployment is needed but impossible or lands
                somewhere else
        """
        if sandbox.has_code(address):
            logger.debug(f"Confirmation registry found at {address}")
            return cls(sandbox, address, controller, gas)

        if not artifact:
            raise RegistryError(
                f"No confirmation registry at {address} and no registry artifact to deploy it from"
            )
        _, bytecode = load_artifact(artifact)
        logger.info(f"Deploying confirmation registry from {controller}")
        try:
            sandbox.deploy(controller, bytecode, gas)
            sandbox.mine(timestamp)
        except Exception as e:
            raise RegistryError(f"Registry deployment failed: {e}") from e

        if not sandbox.has_code(address):
            raise RegistryError(f"Registry deployment did not produce code at {address}")
        return cls(sandbox, address, controller, gas)


def _bytes32(value: str) -> bytes:
    raw = bytes.fromhex(to_hex(value)[2:])
    if len(raw) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(raw)}: {value}")
    return raw
