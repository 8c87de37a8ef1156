"""
Access to the subchain: a local EVM development node that accepts
impersonated transactions and exposes evm_* test RPC methods.
"""
import logging
import os
import subprocess
import time
from typing import Any, List, Optional

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from .exceptions import SandboxError
from .models import to_hex

logger = logging.getLogger(__name__)


class SandboxClient:
    """
    Execution sandbox adapter.

    Mutating calls (submit, mine, snapshot, revert) are not safe to run
    concurrently; callers serialize them.
    """

    def __init__(
        self,
        w3: Web3,
        impersonate_method: str = "anvil_impersonateAccount",
        logger: Optional[logging.Logger] = None
    ):
        self.w3 = w3
        self.impersonate_method = impersonate_method
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "SandboxClient":
        return cls(Web3(Web3.HTTPProvider(url)), **kwargs)

    def _request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        try:
            response = self.w3.provider.make_request(method, params or [])
        except (Web3Exception, requests.RequestException, OSError) as e:
            raise SandboxError(f"{method} failed: {e}", method=method) from e
        if "error" in response:
            error = response["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise SandboxError(f"{method} failed: {message}", method=method)
        return response.get("result")

    def stop_mining(self) -> None:
        """Turn off auto-mining; blocks are only produced by mine()"""
        self._request("evm_setAutomine", [False])

    def mine(self, timestamp: Optional[int] = None) -> None:
        """Mine one block, stamped with ``timestamp`` when given"""
        self._request("evm_mine", [timestamp] if timestamp is not None else [])

    def snapshot(self) -> str:
        snapshot_id = self._request("evm_snapshot")
        return to_hex(snapshot_id) if isinstance(snapshot_id, (bytes, bytearray)) else str(snapshot_id)

    def revert(self, snapshot_id: str) -> None:
        if self._request("evm_revert", [snapshot_id]) is False:
            raise SandboxError(f"evm_revert refused snapshot {snapshot_id}", method="evm_revert")

    def whitelist(self, address: str) -> None:
        """Let the node accept unsigned transactions from ``address``"""
        self._request(self.impersonate_method, [Web3.to_checksum_address(address)])

    def get_code(self, address: str) -> bytes:
        try:
            return bytes(self.w3.eth.get_code(Web3.to_checksum_address(address)))
        except (Web3Exception, requests.RequestException) as e:
            raise SandboxError(f"eth_getCode failed: {e}", method="eth_getCode") from e

    def has_code(self, address: str) -> bool:
        return len(self.get_code(address)) > 0

    def get_accounts(self) -> List[str]:
        try:
            return list(self.w3.eth.accounts)
        except (Web3Exception, requests.RequestException) as e:
            raise SandboxError(f"eth_accounts failed: {e}", method="eth_accounts") from e

    def submit_transaction(self, tx: dict) -> str:
        """
        Send an unsigned transaction from an unlocked/impersonated account.

        Returns:
            The subchain transaction hash; the transaction stays pending until
            the next mine().
        """
        try:
            tx_hash = self.w3.eth.send_transaction(tx)
        except (Web3Exception, requests.RequestException, ValueError) as e:
            self.logger.error(f"Failed to send transaction from {tx.get('from')}: {e}")
            raise SandboxError(f"eth_sendTransaction failed: {e}", method="eth_sendTransaction") from e
        return to_hex(tx_hash)

    def deploy(self, from_address: str, bytecode: str, gas: int) -> str:
        return self.submit_transaction({'from': from_address, 'data': bytecode, 'gas': gas})


class SandboxProcess:
    """
    Launches and supervises a local anvil node for the subchain.

    The node's genesis timestamp is pinned to the rootchain time the relay
    starts replaying from, and its state is dumped to/loaded from ``db_path``.
    """

    def __init__(
        self,
        db_path: str,
        genesis_timestamp: int,
        port: int = 8545,
        host: str = "127.0.0.1",
        mnemonic: Optional[str] = None,
        block_gas_limit: int = 100_000_000,
        anvil_bin: str = "anvil",
        startup_timeout: float = 30.0
    ):
        self.db_path = db_path
        self.genesis_timestamp = genesis_timestamp
        self.port = port
        self.host = host
        self.mnemonic = mnemonic
        self.block_gas_limit = block_gas_limit
        self.anvil_bin = anvil_bin
        self.startup_timeout = startup_timeout
        self.process: Optional[subprocess.Popen] = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def state_file(self) -> str:
        return os.path.join(self.db_path, "state.json")

    def command(self) -> List[str]:
        cmd = [
            self.anvil_bin,
            "--host", self.host,
            "--port", str(self.port),
            "--state", self.state_file,
            "--timestamp", str(self.genesis_timestamp),
            "--gas-price", "0",
            "--base-fee", "0",
            "--gas-limit", str(self.block_gas_limit),
            "--disable-code-size-limit",
            "--no-mining",
        ]
        if self.mnemonic:
            cmd.extend(["--mnemonic", self.mnemonic])
        return cmd

    def start(self) -> str:
        """
        Start the node and wait until its RPC answers.

        Returns:
            The node's RPC URL

        Raises:
            SandboxError: If the binary is missing or the node never comes up
        """
        os.makedirs(self.db_path, exist_ok=True)
        logger.debug(f"Starting subchain node: {' '.join(self.command())}")
        try:
            self.process = subprocess.Popen(
                self.command(),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise SandboxError(f"Could not start {self.anvil_bin}: {e}") from e

        w3 = Web3(Web3.HTTPProvider(self.url))
        deadline = time.monotonic() + self.startup_timeout
        while time.monotonic() < deadline:
            if self.process.poll() is not None:
                stderr = self.process.stderr.read().decode(errors="replace") if self.process.stderr else ""
                raise SandboxError(f"{self.anvil_bin} exited with code {self.process.returncode}: {stderr.strip()}")
            if w3.is_connected():
                logger.info(f"Subchain node listening on {self.url}")
                return self.url
            time.sleep(0.2)
        self.terminate()
        raise SandboxError(f"Subchain node did not answer on {self.url} within {self.startup_timeout}s")

    def terminate(self) -> None:
        if self.process is None or self.process.poll() is not None:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            logger.warning("Subchain node did not stop, killing it")
            self.process.kill()
            self.process.wait()
