"""
Shared test doubles.
"""
from .chains import (
    FakeRootchain, FakeSubchain, FakeRegistry, fake_hash, command_input,
    MESSENGER, CONTROLLER, ALICE, BOB, CONTRACT, EOA, GENESIS_TIME,
)
