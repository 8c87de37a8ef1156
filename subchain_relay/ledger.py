"""
Read-only access to the rootchain.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import requests
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3
from web3.exceptions import Web3Exception

from .exceptions import DecodeError, LedgerError
from .models import BlockHeader, LogEntry, to_hex

BlockIdentifier = Union[int, str, bytes]


def build_session(retry_count: int = 3) -> requests.Session:
    """HTTP session that retries connection errors and 5xx responses"""
    session = requests.Session()
    retries = Retry(
        total=retry_count,
        backoff_factor=0.5,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET", "POST"],
        raise_on_status=False,
        connect=retry_count,
        read=retry_count,
        other=retry_count
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


class LedgerClient:
    """
    Thin read interface to the rootchain.

    Every web3/HTTP failure is re-raised as LedgerError so callers only deal
    with relay exceptions.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        w3: Optional[Web3] = None,
        retry_count: int = 3,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None
    ):
        if w3 is None and not rpc_url:
            raise ValueError("Either rpc_url or w3 must be provided")
        self.rpc_url = rpc_url
        self.logger = logger or logging.getLogger(__name__)
        if w3 is None:
            provider = Web3.HTTPProvider(
                rpc_url,
                request_kwargs={"timeout": timeout},
                session=build_session(retry_count),
            )
            w3 = Web3(provider)
        self.w3 = w3

    def _call(self, description: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (Web3Exception, requests.RequestException, ValueError) as e:
            self.logger.debug(f"Rootchain call failed ({description}): {e}")
            raise LedgerError(f"Failed to {description}: {e}") from e

    def get_block_number(self) -> int:
        return self._call("get block number", lambda: self.w3.eth.block_number)

    def get_block(self, block_id: BlockIdentifier) -> BlockHeader:
        """
        Fetch a block header by number, hash or tag ("latest").
        """
        block = self._call(f"get block {block_id!r}", self.w3.eth.get_block, block_id)
        if block is None:
            raise LedgerError(f"Block {block_id!r} not found")
        return BlockHeader.from_web3(block)

    def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        tx = self._call(f"get transaction {tx_hash}", self.w3.eth.get_transaction, tx_hash)
        if tx is None:
            raise LedgerError(f"Transaction {tx_hash} not found")
        return dict(tx)

    def get_logs(
        self,
        address: str,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        block_hash: Optional[str] = None,
        topics: Optional[List[Any]] = None
    ) -> List[LogEntry]:
        """
        Fetch logs emitted by ``address`` either in a block range or in the
        single block identified by ``block_hash``. Results are in log order.
        """
        params: Dict[str, Any] = {"address": Web3.to_checksum_address(address)}
        if block_hash is not None:
            params["blockHash"] = block_hash
        else:
            params["fromBlock"] = from_block
            params["toBlock"] = to_block
        if topics:
            params["topics"] = topics
        logs = self._call("get logs", self.w3.eth.get_logs, params)
        entries = [LogEntry.from_web3(log) for log in logs]
        entries.sort(key=lambda e: (e.block_number, e.log_index))
        return entries

    @staticmethod
    def decode_call_data(types: Sequence[str], raw_input: Any) -> tuple:
        """
        Decode a transaction's input, skipping the 4-byte function selector.

        Raises:
            DecodeError: If the input is too short or not ABI-shaped as ``types``
        """
        data = bytes.fromhex(to_hex(raw_input)[2:])
        if len(data) < 4:
            raise DecodeError(f"Call data too short to hold a selector: {to_hex(raw_input)}")
        try:
            return tuple(abi_decode(list(types), data[4:]))
        except (DecodingError, ValueError) as e:
            raise DecodeError(f"Call data is not {tuple(types)}: {e}") from e
