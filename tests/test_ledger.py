"""
Tests for the rootchain LedgerClient.
"""
from unittest.mock import MagicMock

import pytest
from eth_abi import encode as abi_encode
from hexbytes import HexBytes
from web3.exceptions import TransactionNotFound

from subchain_relay.exceptions import DecodeError, LedgerError
from subchain_relay.ledger import LedgerClient, build_session

ROOTCHAIN_URL = "http://rootchain.test:8545"
MESSENGER = "0x1111111111111111111111111111111111111111"
TARGET = "0x0000000000000000000000000000000000000aaa"


def _web3_log(tx_byte: int, block_number: int, log_index: int) -> dict:
    return {
        "transactionHash": HexBytes(bytes([tx_byte]) * 32),
        "blockNumber": block_number,
        "blockHash": HexBytes(bytes([block_number]) * 32),
        "logIndex": log_index,
        "address": MESSENGER,
    }


@pytest.fixture
def mock_w3():
    return MagicMock()


@pytest.fixture
def ledger(mock_w3):
    return LedgerClient(w3=mock_w3)


def test_requires_url_or_w3():
    with pytest.raises(ValueError, match="rpc_url or w3"):
        LedgerClient()


def test_session_retries_server_errors():
    session = build_session(retry_count=5)
    retries = session.get_adapter("https://rootchain.example.com").max_retries
    assert retries.total == 5
    assert 502 in retries.status_forcelist


def test_get_block_number_over_http(requests_mock):
    requests_mock.post(
        ROOTCHAIN_URL,
        json=lambda request, context: {"jsonrpc": "2.0", "id": request.json()["id"], "result": "0x10"},
    )
    ledger = LedgerClient(ROOTCHAIN_URL)

    assert ledger.get_block_number() == 16
    assert requests_mock.last_request.json()["method"] == "eth_blockNumber"


def test_get_block(ledger, mock_w3):
    mock_w3.eth.get_block.return_value = {
        "number": 5,
        "hash": HexBytes(b"\x05" * 32),
        "parentHash": HexBytes(b"\x04" * 32),
        "timestamp": 1000,
    }

    block = ledger.get_block("latest")

    mock_w3.eth.get_block.assert_called_once_with("latest")
    assert block.number == 5
    assert block.parent_hash == "0x" + "04" * 32


def test_get_block_missing(ledger, mock_w3):
    mock_w3.eth.get_block.return_value = None
    with pytest.raises(LedgerError, match="not found"):
        ledger.get_block(123)


def test_web3_errors_become_ledger_errors(ledger, mock_w3):
    mock_w3.eth.get_transaction.side_effect = TransactionNotFound("no such tx")

    with pytest.raises(LedgerError, match="get transaction") as exc_info:
        ledger.get_transaction("0x" + "01" * 32)
    assert isinstance(exc_info.value.__cause__, TransactionNotFound)


def test_get_logs_by_range_sorted(ledger, mock_w3):
    mock_w3.eth.get_logs.return_value = [
        _web3_log(3, 11, 0),
        _web3_log(2, 10, 1),
        _web3_log(1, 10, 0),
    ]

    logs = ledger.get_logs(MESSENGER, from_block=10, to_block=11)

    params = mock_w3.eth.get_logs.call_args[0][0]
    assert params["fromBlock"] == 10
    assert params["toBlock"] == 11
    assert "blockHash" not in params
    assert [(log.block_number, log.log_index) for log in logs] == [(10, 0), (10, 1), (11, 0)]


def test_get_logs_by_block_hash(ledger, mock_w3):
    mock_w3.eth.get_logs.return_value = []
    block_hash = "0x" + "0a" * 32

    ledger.get_logs(MESSENGER, block_hash=block_hash)

    params = mock_w3.eth.get_logs.call_args[0][0]
    assert params["blockHash"] == block_hash
    assert "fromBlock" not in params


def test_decode_call_data():
    raw = "0xdeadbeef" + abi_encode(["address", "bytes"], [TARGET, b"\x12\x34"]).hex()

    to, data = LedgerClient.decode_call_data(["address", "bytes"], raw)

    assert to.lower() == TARGET
    assert data == b"\x12\x34"


def test_decode_call_data_too_short():
    with pytest.raises(DecodeError, match="too short"):
        LedgerClient.decode_call_data(["address", "bytes"], "0x1234")


def test_decode_call_data_garbage():
    with pytest.raises(DecodeError):
        LedgerClient.decode_call_data(["address", "bytes"], "0xdeadbeef" + "ff" * 10)
