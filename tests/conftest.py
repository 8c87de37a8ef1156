"""
Pytest fixtures for the subchain relay tests.
"""
import time

import pytest

from subchain_relay._rate_limited_log import reset_rate_limits
from subchain_relay.config import RelayConfig
from subchain_relay.contracts import CommandLog
from subchain_relay.executor import CommandExecutor
from subchain_relay.snapshots import SnapshotTable
from tests.test_helpers import FakeRegistry, FakeRootchain, FakeSubchain, MESSENGER

TEST_ROOTCHAIN_URL = "https://rootchain.example.com"


@pytest.fixture(autouse=True)
def _fresh_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def rootchain():
    """A 20 block rootchain whose Messenger was created in block 0"""
    return FakeRootchain(height=20, created=0)


@pytest.fixture
def subchain():
    return FakeSubchain()


@pytest.fixture
def registry(subchain):
    return FakeRegistry(subchain)


@pytest.fixture
def command_log(rootchain):
    return CommandLog(rootchain, MESSENGER)


@pytest.fixture
def snapshots():
    return SnapshotTable()


@pytest.fixture
def executor(rootchain, subchain, command_log, registry, snapshots):
    return CommandExecutor(rootchain, subchain, command_log, registry, snapshots, max_gas=99_000_000)


@pytest.fixture
def relay_config(tmp_path):
    return RelayConfig(
        rootchain_url=TEST_ROOTCHAIN_URL,
        messenger_address=MESSENGER,
        db_path=str(tmp_path / "db"),
        poll_interval=0.01,
    )
